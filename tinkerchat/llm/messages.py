"""
Context → OpenAI chat-completions wire format.

Used by every OpenAI-compatible adapter (raw SSE and LiteLLM alike):

    {"role": "system",    "content": "<system prompt>"}
    {"role": "system",    "content": "[Knowledge] ..."}
    {"role": "user",      "content": "..."}
    {"role": "assistant", "content": None, "tool_calls": [...]}
    {"role": "tool",      "content": "...", "tool_call_id": "call_1"}
"""

from typing import Any

from tinkerchat.config.logging import get_logger
from tinkerchat.context.assembler import compact_json
from tinkerchat.context.models import (
    Context,
    ContextItem,
    Knowledge,
    ToolInvocationRequest,
    ToolInvocationResult,
)
from tinkerchat.llm.base import RECORD_ROLES
from tinkerchat.llm.models import ToolDefinition

logger = get_logger(__name__)


def context_to_messages(context: Context) -> list[dict[str, Any]]:
    """
    Convert a Context to chat messages, system prompt first.

    Tool calls and tool results only go out in pairs: a request whose result
    isn't in the context (not answered yet, or dropped by the budget) is left
    out, as is a result whose request is missing. Chat-completions servers
    reject either half on its own.
    """
    messages: list[dict[str, Any]] = []

    if context.system_prompt:
        messages.append({"role": "system", "content": context.system_prompt})

    requested = {
        item.source.tool_use_id
        for item in context.items
        if isinstance(item.source, ToolInvocationRequest)
    }
    answered = {
        item.source.tool_use_id
        for item in context.items
        if isinstance(item.source, ToolInvocationResult)
    }

    for item in context.items:
        source = item.source
        if isinstance(source, ToolInvocationRequest) and source.tool_use_id not in answered:
            logger.debug(f"Omitting unanswered tool call {source.tool_use_id}")
            continue
        if isinstance(source, ToolInvocationResult) and source.tool_use_id not in requested:
            logger.debug(f"Omitting tool result without its call {source.tool_use_id}")
            continue
        messages.append(context_item_to_message(item))

    return messages


def context_item_to_message(item: ContextItem) -> dict[str, Any]:
    """Convert one ContextItem to a chat message."""
    source = item.source

    if isinstance(source, ToolInvocationRequest):
        return {
            "role": "assistant",
            "content": None,
            "tool_calls": [
                {
                    "id": source.tool_use_id,
                    "type": "function",
                    "function": {
                        "name": source.tool_name,
                        "arguments": compact_json(source.input),
                    },
                }
            ],
        }

    if isinstance(source, ToolInvocationResult):
        content = (
            source.result
            if isinstance(source.result, str)
            else compact_json(source.result)
        )
        return {"role": "tool", "content": content, "tool_call_id": source.tool_use_id}

    if isinstance(source, Knowledge) or item.type == "knowledge":
        return {"role": "system", "content": f"[Knowledge] {item.content}"}

    if source is None:
        return {"role": "system", "content": item.content}

    return {"role": RECORD_ROLES[source.kind], "content": item.content}


def tools_to_openai(tools: list[ToolDefinition]) -> list[dict[str, Any]]:
    """
    Wrap tool definitions in the OpenAI function-calling envelope.

        {"type": "function", "function": {"name": ..., "description": ..., "parameters": ...}}
    """
    return [
        {
            "type": "function",
            "function": {
                "name": tool.name,
                "description": tool.description,
                "parameters": tool.input_schema,
            },
        }
        for tool in tools
    ]
