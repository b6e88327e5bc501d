"""
Component factory.

Centralises the construction of providers, repositories, embedders and
the session registry from settings, so CLI commands and tests wire things
the same way.
"""

from __future__ import annotations

from typing import Any

from tinkerchat.config.settings import LLMSettings, Settings
from tinkerchat.conversation.registry import SessionRegistry
from tinkerchat.embeddings import Embedder, SentenceTransformerEmbedder
from tinkerchat.llm.base import Provider
from tinkerchat.llm.debug import DebugProvider
from tinkerchat.llm.litellm_provider import LiteLLMProvider
from tinkerchat.llm.openai_compatible import OpenAICompatibleProvider
from tinkerchat.storage.base import RecordRepository
from tinkerchat.storage.chroma import ChromaRecordRepository
from tinkerchat.storage.memory import InMemoryRecordRepository


class ChatComponents:
    """
    Factory for building chat components from settings.

    Example::

        factory = ChatComponents(settings)
        async with factory.create_embedder() as embedder, \\
                   factory.create_repository() as repository, \\
                   factory.create_provider() as provider:
            registry = factory.create_registry(provider, repository, embedder)
            orchestrator = await registry.create_session("Scratch")
    """

    def __init__(self, settings: Settings):
        self.settings = settings

    def create_embedder(self) -> Embedder:
        """Create a SentenceTransformerEmbedder from settings."""
        return SentenceTransformerEmbedder(
            model_name=self.settings.embedding.model,
            device=self.settings.embedding.device,
            batch_size=self.settings.embedding.batch_size,
        )

    def create_repository(self) -> RecordRepository:
        """Create the configured record repository."""
        storage = self.settings.storage
        if storage.backend == "memory":
            return InMemoryRecordRepository()
        return ChromaRecordRepository(
            persist_directory=storage.vector_db_path,
            collection_name=storage.collection_name,
        )

    def create_provider(self, llm: LLMSettings | None = None) -> Provider:
        """Create the configured completion provider."""
        llm = llm or self.settings.llm
        if llm.provider == "debug":
            return DebugProvider(host=llm.debug_host, port=llm.debug_port)
        if llm.provider == "litellm":
            return LiteLLMProvider(
                model=llm.model,
                api_key=llm.api_key,
                api_base=llm.base_url if "base_url" in llm.model_fields_set else None,
                max_tokens=llm.max_tokens,
                temperature=llm.temperature,
            )
        return OpenAICompatibleProvider(
            api_key=llm.api_key,
            model=llm.model,
            base_url=llm.base_url,
            site_url=llm.site_url,
            site_name=llm.site_name,
            max_tokens=llm.max_tokens,
            temperature=llm.temperature,
            tokenizer_encoding=llm.tokenizer_encoding,
        )

    def orchestrator_options(self) -> dict[str, Any]:
        """ConversationOrchestrator keyword arguments taken from settings."""
        context = self.settings.context
        return {
            "project_id": self.settings.storage.project_id,
            "system_prompt": context.system_prompt,
            "working_directory": context.working_directory,
            "max_context_tokens": context.max_context_tokens,
            "response_reserve": context.response_reserve,
            "knowledge_k": context.knowledge_k,
        }

    def create_registry(
        self,
        provider: Provider,
        repository: RecordRepository,
        embedder: Embedder,
    ) -> SessionRegistry:
        """Create a SessionRegistry wired with settings + initialized dependencies."""
        return SessionRegistry(provider, repository, embedder, **self.orchestrator_options())
