"""
Streaming provider backed by LiteLLM.

LiteLLM gives provider abstraction: Anthropic, OpenAI, local models (Ollama)
and others are selected by the model string alone. Its streaming parts use
the OpenAI chunk shape, so they are decoded by the same StreamDecoder as
the raw SSE adapter: tool-call fragments are reassembled identically no
matter which transport delivered them.
"""

from collections.abc import AsyncIterator
from typing import Any

import litellm
from litellm import acompletion

from tinkerchat.config.logging import get_logger
from tinkerchat.context.models import Context
from tinkerchat.llm.base import Provider
from tinkerchat.llm.messages import context_to_messages, tools_to_openai
from tinkerchat.llm.models import (
    CompletionOptions,
    LLMError,
    ProviderCapabilities,
    ProviderInfo,
    StreamChunk,
)
from tinkerchat.llm.streaming import StreamDecoder

logger = get_logger(__name__)

DEFAULT_MAX_CONTEXT = 32000
DEFAULT_MAX_OUTPUT = 4096


class LiteLLMProvider(Provider):
    """
    Completion provider that streams through ``litellm.acompletion``.

    Args:
        model: LiteLLM model string, e.g. 'anthropic/claude-3-5-sonnet-20241022'
        api_key: API key for the model's provider
        api_base: Optional endpoint override (e.g. a local Ollama URL)
        max_tokens: Default response limit
        temperature: Default sampling temperature
    """

    def __init__(
        self,
        model: str,
        api_key: str = "",
        api_base: str | None = None,
        max_tokens: int | None = None,
        temperature: float | None = None,
    ):
        self.model = model
        self.api_key = api_key
        self.api_base = api_base
        self.max_tokens = max_tokens
        self.temperature = temperature
        self.info = ProviderInfo(
            id=f"litellm:{model}",
            name=f"LiteLLM ({model})",
            model=model,
            capabilities=self._lookup_capabilities(model),
        )

    @staticmethod
    def _lookup_capabilities(model: str) -> ProviderCapabilities:
        """Read limits from LiteLLM's model registry, with conservative defaults."""
        try:
            model_info = litellm.get_model_info(model)
        except Exception:
            logger.debug(f"No LiteLLM model info for '{model}', using defaults")
            model_info = {}

        return ProviderCapabilities(
            max_context_tokens=model_info.get("max_input_tokens") or DEFAULT_MAX_CONTEXT,
            max_output_tokens=model_info.get("max_output_tokens") or DEFAULT_MAX_OUTPUT,
            streaming=True,
            tools=bool(model_info.get("supports_function_calling")),
            vision=bool(model_info.get("supports_vision")),
        )

    def _call_kwargs(self, context: Context, options: CompletionOptions | None) -> dict[str, Any]:
        options = options or CompletionOptions()
        call_kwargs: dict[str, Any] = {
            "model": self.model,
            "messages": context_to_messages(context),
            "stream": True,
            "stream_options": {"include_usage": True},
            "max_tokens": (
                options.max_tokens
                or self.max_tokens
                or self.info.capabilities.max_output_tokens
            ),
        }
        if self.api_key:
            call_kwargs["api_key"] = self.api_key
        if self.api_base:
            call_kwargs["api_base"] = self.api_base

        temperature = options.temperature if options.temperature is not None else self.temperature
        if temperature is not None:
            call_kwargs["temperature"] = temperature
        if options.top_p is not None:
            call_kwargs["top_p"] = options.top_p
        if options.stop_sequences:
            call_kwargs["stop"] = options.stop_sequences
        if options.tools:
            call_kwargs["tools"] = tools_to_openai(options.tools)
        return call_kwargs

    async def complete(
        self,
        context: Context,
        options: CompletionOptions | None = None,
    ) -> AsyncIterator[StreamChunk]:
        """
        Stream a completion via LiteLLM.

        Closing this generator, early or not, closes LiteLLM's stream.

        Raises:
            LLMError: If the call cannot be started
        """
        try:
            response = await acompletion(**self._call_kwargs(context, options))
        except Exception as e:
            raise LLMError(f"LLM API call failed: {e}", cause=e)

        decoder = StreamDecoder()
        try:
            async for part in response:
                frame = _part_to_frame(part)
                if frame is None:
                    continue
                for chunk in decoder.feed(frame):
                    yield chunk
                if decoder.done:
                    return

            for chunk in decoder.close():
                yield chunk
        finally:
            await _close_stream(response)

    async def count_tokens(self, text: str) -> int:
        """Count tokens with the model's own tokenizer, as LiteLLM knows it."""
        return litellm.token_counter(model=self.model, text=text)


def _part_to_frame(part: Any) -> dict[str, Any] | None:
    """LiteLLM stream parts are pydantic objects; decode them as wire dicts."""
    if isinstance(part, dict):
        return part
    try:
        frame = part.model_dump()
    except Exception as e:
        logger.debug(f"Skipping undecodable stream part: {e}")
        return None
    return frame if isinstance(frame, dict) else None


async def _close_stream(response: Any) -> None:
    """Release the HTTP stream behind a LiteLLM response, finished or abandoned."""
    for stream in (response, getattr(response, "completion_stream", None)):
        close = getattr(stream, "aclose", None)
        if close is None:
            continue
        try:
            await close()
        except Exception as e:
            logger.warning(f"Could not close LiteLLM stream: {e}")
        return
