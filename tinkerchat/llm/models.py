"""
Data models for the completion layer.

StreamChunk is the unit every provider yields: a content delta, a
reassembled tool call, or the terminal chunk (``done=True``) that may carry
token usage and the finish reason.
"""

from typing import Any

from pydantic import BaseModel, Field


class LLMError(Exception):
    """
    Raised when a completion provider fails.

    Args:
        message: Human-readable description
        cause: The underlying exception, if any
    """

    def __init__(self, message: str, cause: Exception | None = None):
        super().__init__(message)
        self.cause = cause


class ProtocolError(LLMError):
    """
    The server answered, but not with a usable stream.

    Raised for non-2xx responses and empty bodies, always before the first
    chunk is yielded.
    """

    def __init__(
        self,
        message: str,
        status_code: int | None = None,
        body: str | None = None,
        cause: Exception | None = None,
    ):
        super().__init__(message, cause=cause)
        self.status_code = status_code
        self.body = body


class TokenUsage(BaseModel):
    """Token counts reported by the provider for one completion."""

    prompt_tokens: int = 0
    completion_tokens: int = 0
    total_tokens: int = 0


class ToolUse(BaseModel):
    """A complete tool call requested by the model."""

    id: str
    name: str
    input: Any = None


class StreamChunk(BaseModel):
    """One incremental unit of a streamed completion."""

    content: str = Field(default="", description="Text delta (may be empty)")
    done: bool = Field(default=False, description="True only on the final chunk")
    usage: TokenUsage | None = Field(None, description="Usage totals, terminal chunk only")
    tool_use: ToolUse | None = Field(None, description="Reassembled tool call")
    finish_reason: str | None = Field(None, description="Wire finish reason, terminal chunk only")


class ToolDefinition(BaseModel):
    """A tool the model may call, described by a JSON schema."""

    name: str
    description: str
    input_schema: dict[str, Any] = Field(default_factory=lambda: {"type": "object"})


class CompletionOptions(BaseModel):
    """Per-request overrides for a completion."""

    max_tokens: int | None = None
    temperature: float | None = Field(None, ge=0.0, le=2.0)
    top_p: float | None = None
    stop_sequences: list[str] | None = None
    tools: list[ToolDefinition] | None = None


class ProviderCapabilities(BaseModel):
    """What a provider/model combination supports."""

    max_context_tokens: int
    max_output_tokens: int
    streaming: bool = True
    tools: bool = False
    vision: bool = False
    system_prompt: bool = True


class ProviderInfo(BaseModel):
    """Identity and capabilities of a provider instance."""

    id: str
    name: str
    model: str
    capabilities: ProviderCapabilities
