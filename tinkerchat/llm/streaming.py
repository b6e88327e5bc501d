"""
Incremental decoding of streamed chat completions.

Three pieces, each scoped to a single ``complete`` call:

- iter_sse_data:        text chunks → SSE ``data:`` payloads. Keeps a line
                        buffer across reads because a frame can be split
                        across network reads.
- ToolCallAccumulator:  tool-call fragments keyed by their frame index.
                        ``id`` and ``name`` arrive once, ``arguments`` arrive
                        as string pieces that are concatenated.
- StreamDecoder:        OpenAI-style chunk payloads → StreamChunks, including
                        the terminal chunk with usage.

Wire frames look like:

    data: {"choices":[{"delta":{"content":"Hel"},"finish_reason":null}]}

    data: {"choices":[{"delta":{"tool_calls":[{"index":0,"function":{"arguments":"{\"ci"}}]}}]}

    data: [DONE]
"""

from __future__ import annotations

import json
from collections.abc import AsyncIterable, AsyncIterator
from dataclasses import dataclass
from typing import Any

from tinkerchat.config.logging import get_logger
from tinkerchat.llm.models import StreamChunk, TokenUsage, ToolUse

logger = get_logger(__name__)

DATA_PREFIX = "data:"
DONE_SENTINEL = "[DONE]"


async def iter_sse_data(text_chunks: AsyncIterable[str]) -> AsyncIterator[str]:
    """
    Yield the payload of every ``data:`` line in an SSE text stream.

    Non-data lines (comments, ``event:``/``id:`` fields, blank separators)
    are ignored. A trailing line without a newline is still delivered when
    the stream ends.
    """
    buffer = ""
    async for text in text_chunks:
        buffer += text
        *lines, buffer = buffer.split("\n")
        for line in lines:
            payload = _data_payload(line)
            if payload is not None:
                yield payload

    payload = _data_payload(buffer)
    if payload is not None:
        yield payload


def _data_payload(line: str) -> str | None:
    line = line.rstrip("\r")
    if not line.startswith(DATA_PREFIX):
        return None
    return line[len(DATA_PREFIX):].strip()


@dataclass
class _PendingToolCall:
    id: str = ""
    name: str = ""
    arguments: str = ""


class ToolCallAccumulator:
    """
    Reassembles tool calls whose pieces are spread over several frames.

    Owned by exactly one stream; ``finalize`` hands back the completed calls
    and empties the accumulator.
    """

    def __init__(self) -> None:
        self._calls: dict[int, _PendingToolCall] = {}

    def __len__(self) -> int:
        return len(self._calls)

    def add(self, fragment: dict[str, Any]) -> None:
        """Merge one ``delta.tool_calls[]`` fragment."""
        index = fragment.get("index") or 0
        pending = self._calls.setdefault(index, _PendingToolCall())

        if fragment.get("id"):
            pending.id = fragment["id"]

        function = fragment.get("function") or {}
        if function.get("name"):
            pending.name = function["name"]
        if function.get("arguments"):
            pending.arguments += function["arguments"]

    def finalize(self) -> list[ToolUse]:
        """Parse accumulated arguments and return calls in index order."""
        tool_uses = []
        for index in sorted(self._calls):
            pending = self._calls[index]
            tool_uses.append(
                ToolUse(id=pending.id, name=pending.name, input=_parse_arguments(pending))
            )
        self._calls.clear()
        return tool_uses


def _parse_arguments(pending: _PendingToolCall) -> Any:
    if not pending.arguments:
        return {}
    try:
        return json.loads(pending.arguments)
    except json.JSONDecodeError:
        logger.warning(
            f"Tool call '{pending.name}' ({pending.id}) has non-JSON arguments; "
            f"passing them through as a string"
        )
        return pending.arguments


class StreamDecoder:
    """
    Converts OpenAI-style streaming payloads into StreamChunks.

    Content deltas are emitted immediately. When a ``finish_reason`` arrives,
    accumulated tool calls are emitted, then the terminal chunk. If the
    finishing frame carries no usage, the terminal chunk is held back until
    a usage-only frame, the ``[DONE]`` sentinel, or end of stream.

    Example:
        >>> decoder = StreamDecoder()
        >>> decoder.feed({"choices": [{"delta": {"content": "Hi"}, "finish_reason": None}]})
        [StreamChunk(content='Hi', done=False, ...)]
    """

    def __init__(self) -> None:
        self._tool_calls = ToolCallAccumulator()
        self._finish_reason: str | None = None
        self._usage: TokenUsage | None = None
        self.done = False

    @property
    def finished(self) -> bool:
        """True once a finish reason has been seen."""
        return self._finish_reason is not None

    def feed(self, payload: dict[str, Any]) -> list[StreamChunk]:
        """Decode one parsed frame. Returns zero or more chunks."""
        if self.done:
            return []

        chunks: list[StreamChunk] = []

        if payload.get("usage"):
            self._usage = normalize_usage(payload["usage"])

        choices = payload.get("choices") or []
        if choices:
            choice = choices[0] or {}
            delta = choice.get("delta") or {}

            content = delta.get("content") or ""
            if content:
                chunks.append(StreamChunk(content=content))

            for fragment in delta.get("tool_calls") or []:
                self._tool_calls.add(fragment)

            if choice.get("finish_reason") and not self.finished:
                self._finish_reason = choice["finish_reason"]
                chunks.extend(
                    StreamChunk(tool_use=tool_use) for tool_use in self._tool_calls.finalize()
                )

        if self.finished and self._usage is not None:
            chunks.append(self.terminal())

        return chunks

    def terminal(self) -> StreamChunk:
        """Build the final chunk and stop accepting frames."""
        self.done = True
        return StreamChunk(done=True, usage=self._usage, finish_reason=self._finish_reason)

    def close(self) -> list[StreamChunk]:
        """
        End of stream (``[DONE]`` or EOF).

        Flushes tool calls that never saw a finish reason, then returns the
        terminal chunk.
        """
        if self.done:
            return []
        chunks = [StreamChunk(tool_use=tool_use) for tool_use in self._tool_calls.finalize()]
        chunks.append(self.terminal())
        return chunks


def normalize_usage(usage: dict[str, Any]) -> TokenUsage:
    """Map wire usage (snake_case, possibly partial) to TokenUsage."""
    prompt = usage.get("prompt_tokens") or 0
    completion = usage.get("completion_tokens") or 0
    total = usage.get("total_tokens") or prompt + completion
    return TokenUsage(prompt_tokens=prompt, completion_tokens=completion, total_tokens=total)
