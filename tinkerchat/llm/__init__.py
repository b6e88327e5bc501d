"""
Completion layer.

Turns an assembled Context into a stream of StreamChunks:

    Context → Provider.complete() → StreamChunk (content | tool_use | done)

Three providers are included:
- OpenAICompatibleProvider: raw SSE over httpx (OpenRouter, vLLM, Ollama, OpenAI)
- LiteLLMProvider: the same decoding over LiteLLM's streaming API
- DebugProvider: forwards context to a local debug server for manual replies
"""

from tinkerchat.llm.base import RECORD_ROLES, Provider
from tinkerchat.llm.models import (
    CompletionOptions,
    LLMError,
    ProtocolError,
    ProviderCapabilities,
    ProviderInfo,
    StreamChunk,
    TokenUsage,
    ToolDefinition,
    ToolUse,
)

__all__ = [
    "RECORD_ROLES",
    "CompletionOptions",
    "LLMError",
    "ProtocolError",
    "Provider",
    "ProviderCapabilities",
    "ProviderInfo",
    "StreamChunk",
    "TokenUsage",
    "ToolDefinition",
    "ToolUse",
]
