"""
Unit tests for LiteLLMProvider.

acompletion is patched; the fake stream yields OpenAI-shaped dicts the
way LiteLLM's parts dump to.
"""

from contextlib import aclosing
from unittest.mock import AsyncMock, MagicMock, patch

import pytest

from tinkerchat.context.budget import TokenBudget
from tinkerchat.context.models import Context
from tinkerchat.llm.litellm_provider import LiteLLMProvider
from tinkerchat.llm.models import LLMError, ToolUse


class FakeStream:
    """Async iterator over prepared parts."""

    def __init__(self, parts):
        self._parts = list(parts)

    def __aiter__(self):
        return self

    async def __anext__(self):
        if not self._parts:
            raise StopAsyncIteration
        return self._parts.pop(0)


class ClosableStream(FakeStream):
    """A stream exposing aclose(), like LiteLLM's CustomStreamWrapper."""

    def __init__(self, parts):
        super().__init__(parts)
        self.closed = False

    async def aclose(self):
        self.closed = True


class WrappedStream(FakeStream):
    """A stream that only exposes its transport via completion_stream."""

    def __init__(self, parts):
        super().__init__(parts)
        self.completion_stream = MagicMock()
        self.completion_stream.aclose = AsyncMock()


@pytest.fixture
def context():
    return Context(system_prompt="sys", items=[], budget=TokenBudget.create(total=100))


@pytest.fixture
def provider():
    with patch("tinkerchat.llm.litellm_provider.litellm.get_model_info", side_effect=Exception("unknown")):
        return LiteLLMProvider(model="openai/gpt-4o-mini", api_key="test-key", temperature=0.3)


class TestLiteLLMProvider:

    def test_unknown_model_gets_default_capabilities(self, provider):
        assert provider.info.id == "litellm:openai/gpt-4o-mini"
        assert provider.info.capabilities.max_context_tokens == 32000
        assert provider.info.capabilities.max_output_tokens == 4096

    def test_capabilities_from_model_registry(self):
        info = {"max_input_tokens": 128000, "max_output_tokens": 16384, "supports_function_calling": True}
        with patch("tinkerchat.llm.litellm_provider.litellm.get_model_info", return_value=info):
            provider = LiteLLMProvider(model="openai/gpt-4o")

        assert provider.info.capabilities.max_context_tokens == 128000
        assert provider.info.capabilities.tools is True

    @pytest.mark.asyncio
    async def test_streams_content_and_usage(self, provider, context):
        parts = [
            {"choices": [{"delta": {"content": "Hi"}, "finish_reason": None}]},
            {"choices": [{"delta": {}, "finish_reason": "stop"}]},
            {"choices": [], "usage": {"prompt_tokens": 4, "completion_tokens": 1, "total_tokens": 5}},
        ]
        with patch("tinkerchat.llm.litellm_provider.acompletion",
                   new=AsyncMock(return_value=FakeStream(parts))) as mock_call:
            chunks = [chunk async for chunk in provider.complete(context)]

        kwargs = mock_call.call_args.kwargs
        assert kwargs["stream"] is True
        assert kwargs["stream_options"] == {"include_usage": True}
        assert kwargs["api_key"] == "test-key"
        assert kwargs["temperature"] == 0.3
        assert kwargs["messages"] == [{"role": "system", "content": "sys"}]

        assert chunks[0].content == "Hi"
        assert chunks[-1].done
        assert chunks[-1].usage.total_tokens == 5

    @pytest.mark.asyncio
    async def test_pydantic_parts_are_dumped(self, provider, context):
        part = MagicMock()
        part.model_dump.return_value = {
            "choices": [{"delta": {"tool_calls": [
                {"index": 0, "id": "call_1", "function": {"name": "get_weather", "arguments": '{"city": "NYC"}'}},
            ]}, "finish_reason": "tool_calls"}],
        }
        with patch("tinkerchat.llm.litellm_provider.acompletion",
                   new=AsyncMock(return_value=FakeStream([part]))):
            chunks = [chunk async for chunk in provider.complete(context)]

        assert chunks[0].tool_use == ToolUse(id="call_1", name="get_weather", input={"city": "NYC"})
        assert chunks[-1].done

    @pytest.mark.asyncio
    async def test_call_failure_wrapped(self, provider, context):
        with patch("tinkerchat.llm.litellm_provider.acompletion",
                   new=AsyncMock(side_effect=Exception("rate limited"))):
            with pytest.raises(LLMError, match="rate limited"):
                [chunk async for chunk in provider.complete(context)]

    @pytest.mark.asyncio
    async def test_count_tokens_uses_litellm(self, provider):
        with patch("tinkerchat.llm.litellm_provider.litellm.token_counter", return_value=42) as counter:
            assert await provider.count_tokens("hello") == 42
        counter.assert_called_once_with(model="openai/gpt-4o-mini", text="hello")


class TestStreamRelease:
    """The LiteLLM stream is closed however the consumer stops."""

    PARTS = [
        {"choices": [{"delta": {"content": "a"}, "finish_reason": None}]},
        {"choices": [{"delta": {"content": "b"}, "finish_reason": None}]},
        {"choices": [{"delta": {}, "finish_reason": "stop"}],
         "usage": {"prompt_tokens": 1, "completion_tokens": 2, "total_tokens": 3}},
    ]

    @pytest.mark.asyncio
    async def test_closed_after_full_read(self, provider, context):
        stream = ClosableStream(self.PARTS)
        with patch("tinkerchat.llm.litellm_provider.acompletion", new=AsyncMock(return_value=stream)):
            chunks = [chunk async for chunk in provider.complete(context)]

        assert chunks[-1].done
        assert stream.closed

    @pytest.mark.asyncio
    async def test_closing_early_closes_the_stream(self, provider, context):
        stream = ClosableStream(self.PARTS)
        with patch("tinkerchat.llm.litellm_provider.acompletion", new=AsyncMock(return_value=stream)):
            async with aclosing(provider.complete(context)) as chunks:
                first = await chunks.__anext__()

        assert first.content == "a"
        assert stream.closed

    @pytest.mark.asyncio
    async def test_falls_back_to_completion_stream(self, provider, context):
        stream = WrappedStream(self.PARTS)
        with patch("tinkerchat.llm.litellm_provider.acompletion", new=AsyncMock(return_value=stream)):
            async with aclosing(provider.complete(context)) as chunks:
                await chunks.__anext__()

        stream.completion_stream.aclose.assert_awaited_once()
