"""
Shared fakes for the unit tests.

Fakes are exposed through fixtures (not imports) because tests are
collected with ``--import-mode=importlib``.
"""

from collections.abc import AsyncIterator

import pytest

from tinkerchat.context.models import Context
from tinkerchat.embeddings import Embedder
from tinkerchat.llm.base import Provider
from tinkerchat.llm.models import (
    CompletionOptions,
    ProviderCapabilities,
    ProviderInfo,
    StreamChunk,
    TokenUsage,
)
from tinkerchat.storage.memory import InMemoryRecordRepository


class FakeEmbedder(Embedder):
    """Deterministic 3-dim vectors derived from the text."""

    def __init__(self):
        self.calls: list[str] = []

    @property
    def name(self) -> str:
        return "fake-embedder"

    @property
    def dimensions(self) -> int:
        return 3

    async def embed(self, text: str) -> list[float]:
        self.calls.append(text)
        return [float(len(text) % 7 + 1), float(text.count(" ") + 1), 1.0]


class ScriptedProvider(Provider):
    """
    Provider that replays a fixed list of chunks.

    Every context it is asked to complete is kept in ``contexts``. When
    ``error`` is set it is raised after ``fail_after`` chunks. ``closed``
    turns True once the stream has been closed, however it ended.
    """

    def __init__(
        self,
        chunks: list[StreamChunk] | None = None,
        *,
        error: Exception | None = None,
        fail_after: int = 0,
        max_context_tokens: int = 8000,
        provider_id: str = "scripted",
    ):
        self.chunks = chunks if chunks is not None else [
            StreamChunk(content="Hello"),
            StreamChunk(content=" there"),
            StreamChunk(done=True, usage=TokenUsage(prompt_tokens=10, completion_tokens=2, total_tokens=12)),
        ]
        self.error = error
        self.fail_after = fail_after
        self.contexts: list[Context] = []
        self.closed = False
        self.info = ProviderInfo(
            id=provider_id,
            name="Scripted",
            model="scripted-model",
            capabilities=ProviderCapabilities(
                max_context_tokens=max_context_tokens,
                max_output_tokens=1000,
            ),
        )

    async def complete(
        self,
        context: Context,
        options: CompletionOptions | None = None,
    ) -> AsyncIterator[StreamChunk]:
        self.contexts.append(context)
        try:
            for i, chunk in enumerate(self.chunks):
                if self.error is not None and i == self.fail_after:
                    raise self.error
                yield chunk
            if self.error is not None and self.fail_after >= len(self.chunks):
                raise self.error
        finally:
            self.closed = True


class BrokenTokenizerProvider(ScriptedProvider):
    """A provider whose tokenizer always fails."""

    async def count_tokens(self, text: str) -> int:
        raise RuntimeError("tokenizer unavailable")


@pytest.fixture
def embedder():
    return FakeEmbedder()


@pytest.fixture
def repository():
    return InMemoryRecordRepository()


@pytest.fixture
def scripted_provider():
    """Factory for ScriptedProvider instances."""
    return ScriptedProvider


@pytest.fixture
def broken_tokenizer_provider():
    """Factory for providers whose count_tokens raises."""
    return BrokenTokenizerProvider
