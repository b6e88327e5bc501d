"""
Streaming provider for OpenAI-compatible chat-completions APIs.

Works with anything that speaks the ``/chat/completions`` SSE protocol:
- OpenRouter (https://openrouter.ai/api/v1, the default)
- vLLM (http://localhost:8000/v1)
- Ollama (http://localhost:11434/v1)
- OpenAI itself

Data flow:
    Context → context_to_messages() → POST /chat/completions (stream=true)
                                              ↓
                      response.aiter_text() → iter_sse_data() → json.loads()
                                              ↓
                                 StreamDecoder.feed() → StreamChunk...

Failure handling:
- Non-2xx status or an empty body raises ProtocolError before any chunk.
- Connection errors raise LLMError. Nothing is retried here; a failed turn
  is surfaced to the caller, who decides whether to try again.
- A malformed frame is skipped; one bad line never aborts the stream.
"""

import json
from collections.abc import AsyncIterator
from typing import Any

import httpx

from tinkerchat.config.logging import get_logger
from tinkerchat.context.models import Context
from tinkerchat.llm.base import Provider
from tinkerchat.llm.messages import context_to_messages, tools_to_openai
from tinkerchat.llm.models import (
    CompletionOptions,
    LLMError,
    ProtocolError,
    ProviderCapabilities,
    ProviderInfo,
    StreamChunk,
)
from tinkerchat.llm.streaming import DONE_SENTINEL, StreamDecoder, iter_sse_data
from tinkerchat.llm.tokens import TiktokenCounter, estimate_tokens

logger = get_logger(__name__)

DEFAULT_BASE_URL = "https://openrouter.ai/api/v1"

# Completions stream for as long as the model writes; only connecting,
# sending and pool acquisition are bounded.
DEFAULT_CONNECT_TIMEOUT = 10.0
DEFAULT_WRITE_TIMEOUT = 10.0
DEFAULT_POOL_TIMEOUT = 10.0

# Capability presets for common models. Anything else gets DEFAULT_CAPABILITIES.
MODEL_CAPABILITIES: dict[str, dict[str, Any]] = {
    # Free models
    "google/gemma-3-1b-it:free": {"max_context": 32000, "max_output": 8192, "tools": False, "vision": False},
    "meta-llama/llama-3.2-3b-instruct:free": {"max_context": 131000, "max_output": 8192, "tools": False, "vision": False},
    "mistralai/mistral-7b-instruct:free": {"max_context": 32000, "max_output": 8192, "tools": False, "vision": False},
    "qwen/qwen3-14b:free": {"max_context": 40000, "max_output": 8192, "tools": False, "vision": False},
    # Paid models
    "anthropic/claude-3.5-sonnet": {"max_context": 200000, "max_output": 8192, "tools": True, "vision": True},
    "openai/gpt-4o": {"max_context": 128000, "max_output": 16384, "tools": True, "vision": True},
    "openai/gpt-4o-mini": {"max_context": 128000, "max_output": 16384, "tools": True, "vision": True},
}

DEFAULT_CAPABILITIES: dict[str, Any] = {
    "max_context": 32000,
    "max_output": 4096,
    "tools": False,
    "vision": False,
}


def capabilities_for(model: str) -> ProviderCapabilities:
    """Look up capability presets for a model id."""
    caps = MODEL_CAPABILITIES.get(model, DEFAULT_CAPABILITIES)
    return ProviderCapabilities(
        max_context_tokens=caps["max_context"],
        max_output_tokens=caps["max_output"],
        streaming=True,
        tools=caps["tools"],
        vision=caps["vision"],
        system_prompt=True,
    )


class OpenAICompatibleProvider(Provider):
    """
    SSE streaming client for OpenAI-compatible endpoints.

    Args:
        api_key: Bearer token for the API
        model: Model identifier sent on the wire
        base_url: API root (default: OpenRouter)
        site_url: Sent as HTTP-Referer for OpenRouter attribution
        site_name: Sent as X-Title for OpenRouter attribution
        max_tokens: Default response limit (falls back to the model's output limit)
        temperature: Default sampling temperature
        tokenizer_encoding: tiktoken encoding for count_tokens; None uses the heuristic
        client: Pre-built httpx.AsyncClient (tests inject one with a MockTransport)

    Example:
        >>> async with OpenAICompatibleProvider(api_key="sk-...", model="openai/gpt-4o") as provider:
        ...     async for chunk in provider.complete(context):
        ...         print(chunk.content, end="")
    """

    def __init__(
        self,
        api_key: str,
        model: str,
        base_url: str = DEFAULT_BASE_URL,
        site_url: str | None = None,
        site_name: str | None = None,
        max_tokens: int | None = None,
        temperature: float | None = None,
        tokenizer_encoding: str | None = None,
        client: httpx.AsyncClient | None = None,
    ):
        self.api_key = api_key
        self.model = model
        self.base_url = base_url.rstrip("/")
        self.site_url = site_url
        self.site_name = site_name
        self.max_tokens = max_tokens
        self.temperature = temperature

        self.info = ProviderInfo(
            id=f"openrouter:{model}" if self.base_url == DEFAULT_BASE_URL else f"openai:{model}",
            name=f"OpenRouter ({model})" if self.base_url == DEFAULT_BASE_URL else f"OpenAI-compatible ({model})",
            model=model,
            capabilities=capabilities_for(model),
        )

        self._counter = TiktokenCounter(tokenizer_encoding) if tokenizer_encoding else None
        self._client = client
        self._owns_client = client is None

    def _headers(self) -> dict[str, str]:
        headers = {
            "Authorization": f"Bearer {self.api_key}",
            "Content-Type": "application/json",
            "Accept": "text/event-stream",
        }
        if self.site_url:
            headers["HTTP-Referer"] = self.site_url
        if self.site_name:
            headers["X-Title"] = self.site_name
        return headers

    def _get_client(self) -> httpx.AsyncClient:
        if self._client is None:
            self._client = httpx.AsyncClient(
                base_url=self.base_url,
                timeout=httpx.Timeout(
                    connect=DEFAULT_CONNECT_TIMEOUT,
                    read=None,
                    write=DEFAULT_WRITE_TIMEOUT,
                    pool=DEFAULT_POOL_TIMEOUT,
                ),
            )
            self._owns_client = True
        return self._client

    def build_request(
        self,
        context: Context,
        options: CompletionOptions | None = None,
    ) -> dict[str, Any]:
        """Build the JSON body for a streaming chat-completions request."""
        options = options or CompletionOptions()

        payload: dict[str, Any] = {
            "model": self.model,
            "messages": context_to_messages(context),
            "stream": True,
            "max_tokens": (
                options.max_tokens
                or self.max_tokens
                or self.info.capabilities.max_output_tokens
            ),
        }

        temperature = options.temperature if options.temperature is not None else self.temperature
        if temperature is not None:
            payload["temperature"] = temperature
        if options.top_p is not None:
            payload["top_p"] = options.top_p
        if options.stop_sequences:
            payload["stop"] = options.stop_sequences
        if options.tools:
            payload["tools"] = tools_to_openai(options.tools)

        return payload

    async def complete(
        self,
        context: Context,
        options: CompletionOptions | None = None,
    ) -> AsyncIterator[StreamChunk]:
        """
        Stream a completion.

        The HTTP response is held open by ``async with`` for exactly as long
        as the caller keeps iterating; closing this generator closes it.

        Raises:
            ProtocolError: Non-2xx response or empty body (before any chunk)
            LLMError: Connection failure
        """
        payload = self.build_request(context, options)
        logger.debug(
            f"Streaming completion from {self.model} "
            f"({len(payload['messages'])} messages, max_tokens={payload['max_tokens']})"
        )

        try:
            async with self._get_client().stream(
                "POST",
                f"{self.base_url}/chat/completions",
                json=payload,
                headers=self._headers(),
            ) as response:
                if not response.is_success:
                    body = (await response.aread()).decode("utf-8", errors="replace")
                    logger.error(f"Completion request failed: HTTP {response.status_code} - {body}")
                    raise ProtocolError(
                        f"API error ({response.status_code}): {body}",
                        status_code=response.status_code,
                        body=body,
                    )

                decoder = StreamDecoder()
                async for data in iter_sse_data(response.aiter_text()):
                    if data == DONE_SENTINEL:
                        for chunk in decoder.close():
                            yield chunk
                        return

                    try:
                        frame = json.loads(data)
                    except json.JSONDecodeError:
                        logger.debug(f"Skipping malformed SSE frame: {data[:120]!r}")
                        continue
                    if not isinstance(frame, dict):
                        logger.debug(f"Skipping non-object SSE frame: {data[:120]!r}")
                        continue

                    for chunk in decoder.feed(frame):
                        yield chunk
                    if decoder.done:
                        return

                if response.num_bytes_downloaded == 0:
                    raise ProtocolError(
                        "No response body from completion endpoint",
                        status_code=response.status_code,
                    )

                logger.debug("Stream ended without a terminator")
                for chunk in decoder.close():
                    yield chunk

        except httpx.RequestError as e:
            logger.error(f"Completion request to {self.base_url} failed: {e}")
            raise LLMError(f"Connection to {self.base_url} failed: {e}", cause=e) from e

    async def count_tokens(self, text: str) -> int:
        """Count tokens with tiktoken when configured, else ~4 chars per token."""
        if self._counter is not None:
            return self._counter.count(text)
        return estimate_tokens(text)

    async def shutdown(self) -> None:
        """Close the HTTP client if this provider created it."""
        if self._client is not None and self._owns_client:
            await self._client.aclose()
            self._client = None
