"""
Base class for completion providers.

A provider turns an assembled Context into a stream of StreamChunks. Each
implementation owns one wire format; the orchestrator only sees this
interface.
"""

from abc import ABC, abstractmethod
from collections.abc import AsyncIterator

from tinkerchat.context.budget import estimate_tokens
from tinkerchat.context.models import Context, RecordKind
from tinkerchat.llm.models import CompletionOptions, ProviderInfo, StreamChunk

# Record kind → chat role. Knowledge is injected as system context; tool
# requests come from the assistant; tool results go back under the tool role.
RECORD_ROLES: dict[RecordKind, str] = {
    RecordKind.USER_INPUT: "user",
    RecordKind.AGENT_RESPONSE: "assistant",
    RecordKind.SYSTEM_INSTRUCTION: "system",
    RecordKind.KNOWLEDGE_REFERENCE: "system",
    RecordKind.TOOL_USE: "assistant",
    RecordKind.TOOL_RESULT: "tool",
}


class Provider(ABC):
    """
    Abstract base class for completion providers.

    Subclasses must expose ``info`` and implement ``complete``. Token counting
    and role translation have sensible defaults; providers with a real
    tokenizer should override ``count_tokens``.

    Providers are async context managers so that HTTP clients and similar
    resources are released deterministically.
    """

    info: ProviderInfo

    @abstractmethod
    def complete(
        self,
        context: Context,
        options: CompletionOptions | None = None,
    ) -> AsyncIterator[StreamChunk]:
        """
        Stream a completion for the given context.

        Implementations are async generators. The sequence is finite and
        ordered; its last chunk has ``done=True``. Closing the generator early
        must release the underlying connection.

        Raises:
            ProtocolError: If the server rejects the request (before any chunk)
            LLMError: If the connection fails
        """

    async def count_tokens(self, text: str) -> int:
        """Count tokens in text. Default: ~4 characters per token."""
        return estimate_tokens(text)

    def translate_record_kind(self, kind: RecordKind | str) -> str:
        """Map a record kind to this provider's chat role."""
        return RECORD_ROLES[RecordKind(kind)]

    async def initialize(self) -> None:
        """Acquire resources. No-op by default."""

    async def shutdown(self) -> None:
        """Release resources. No-op by default."""

    async def __aenter__(self):
        """Context manager entry - initialize the provider."""
        await self.initialize()
        return self

    async def __aexit__(self, exc_type, exc_val, exc_tb):
        """Context manager exit - shutdown the provider."""
        await self.shutdown()
        return False
