"""
Unit tests for the ChatComponents factory.

Nothing here opens a connection or loads a model: every component is
lazy until initialize() or first use.
"""

from tinkerchat.components import ChatComponents
from tinkerchat.config.settings import ContextSettings, LLMSettings, Settings, StorageSettings
from tinkerchat.conversation.registry import SessionRegistry
from tinkerchat.embeddings import SentenceTransformerEmbedder
from tinkerchat.llm.debug import DebugProvider
from tinkerchat.llm.litellm_provider import LiteLLMProvider
from tinkerchat.llm.openai_compatible import OpenAICompatibleProvider
from tinkerchat.storage.chroma import ChromaRecordRepository
from tinkerchat.storage.memory import InMemoryRecordRepository


def make_settings(**kwargs) -> Settings:
    return Settings(_env_file=None, **kwargs)


class TestProviders:

    def test_openai_is_default(self):
        provider = ChatComponents(make_settings(llm=LLMSettings(api_key="sk-test"))).create_provider()

        assert isinstance(provider, OpenAICompatibleProvider)
        assert provider.api_key == "sk-test"
        assert provider.base_url == "https://openrouter.ai/api/v1"

    def test_litellm_uses_default_routing(self):
        settings = make_settings(llm=LLMSettings(provider="litellm", model="openai/gpt-4o"))

        provider = ChatComponents(settings).create_provider()

        assert isinstance(provider, LiteLLMProvider)
        assert provider.api_base is None

    def test_litellm_honours_explicit_base_url(self):
        llm = LLMSettings(provider="litellm", model="openai/gpt-4o", base_url="http://localhost:8000/v1")

        provider = ChatComponents(make_settings()).create_provider(llm)

        assert provider.api_base == "http://localhost:8000/v1"

    def test_debug(self):
        settings = make_settings(llm=LLMSettings(provider="debug", debug_port=9000))

        provider = ChatComponents(settings).create_provider()

        assert isinstance(provider, DebugProvider)
        assert provider.base_url == "http://localhost:9000"


class TestRepositories:

    def test_memory(self):
        settings = make_settings(storage=StorageSettings(backend="memory"))
        assert isinstance(ChatComponents(settings).create_repository(), InMemoryRecordRepository)

    def test_chroma(self, tmp_path):
        settings = make_settings(
            storage=StorageSettings(vector_db_path=str(tmp_path), collection_name="proj")
        )

        repository = ChatComponents(settings).create_repository()

        assert isinstance(repository, ChromaRecordRepository)
        assert repository.collection_name == "proj"


class TestRegistry:

    def test_embedder_from_settings(self):
        embedder = ChatComponents(make_settings()).create_embedder()

        assert isinstance(embedder, SentenceTransformerEmbedder)
        assert embedder.name == "sentence-transformers/all-MiniLM-L6-v2"

    def test_registry_forwards_context_settings(self, scripted_provider, repository, embedder):
        settings = make_settings(
            context=ContextSettings(response_reserve=512, knowledge_k=3, working_directory="/srv"),
            storage=StorageSettings(backend="memory", project_id="proj"),
        )

        registry = ChatComponents(settings).create_registry(scripted_provider(), repository, embedder)
        orchestrator = registry._build()

        assert isinstance(registry, SessionRegistry)
        assert orchestrator.response_reserve == 512
        assert orchestrator.knowledge_k == 3
        assert orchestrator.working_directory == "/srv"
        assert orchestrator.project_id == "proj"
