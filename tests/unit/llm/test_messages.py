"""
Unit tests for Context → wire message mapping.
"""

from datetime import UTC, datetime

import pytest

from tinkerchat.context.budget import TokenBudget
from tinkerchat.context.models import (
    Context,
    ContextItem,
    ContextPriority,
    Knowledge,
    RecordKind,
    record_adapter,
)
from tinkerchat.llm.messages import context_item_to_message, context_to_messages, tools_to_openai
from tinkerchat.llm.models import ToolDefinition


def item_for(kind, **fields) -> ContextItem:
    record = record_adapter.validate_python({
        "kind": kind, "id": "r", "session_id": "s",
        "timestamp": datetime(2026, 1, 1, tzinfo=UTC), "token_count": 1, **fields,
    })
    return ContextItem(
        id="r", type="record", content=fields.get("content", "rendered"),
        token_count=1, priority=ContextPriority.MEDIUM, source=record,
    )


class TestRoleTable:

    @pytest.mark.parametrize("kind,role", [
        (RecordKind.USER_INPUT, "user"),
        (RecordKind.AGENT_RESPONSE, "assistant"),
        (RecordKind.SYSTEM_INSTRUCTION, "system"),
        (RecordKind.KNOWLEDGE_REFERENCE, "system"),
    ])
    def test_plain_records(self, kind, role):
        message = context_item_to_message(item_for(kind, content="text"))
        assert message == {"role": role, "content": "text"}

    def test_tool_request_becomes_assistant_tool_call(self):
        message = context_item_to_message(item_for(
            RecordKind.TOOL_USE, tool_use_id="call_1", tool_name="get_weather", input={"city": "NYC"},
        ))

        assert message["role"] == "assistant"
        assert message["content"] is None
        assert message["tool_calls"] == [{
            "id": "call_1",
            "type": "function",
            "function": {"name": "get_weather", "arguments": '{"city":"NYC"}'},
        }]

    def test_tool_result_carries_correlation_id(self):
        message = context_item_to_message(item_for(
            RecordKind.TOOL_RESULT, tool_use_id="call_1", result={"temp": 72},
        ))
        assert message == {"role": "tool", "content": '{"temp":72}', "tool_call_id": "call_1"}

    def test_string_tool_result_sent_verbatim(self):
        message = context_item_to_message(item_for(
            RecordKind.TOOL_RESULT, tool_use_id="call_1", result="sunny",
        ))
        assert message["content"] == "sunny"

    def test_knowledge_is_system_context(self):
        knowledge = Knowledge(id="k", content="Paris is in France")
        item = ContextItem(
            id="k", type="knowledge", content=knowledge.content, token_count=5,
            priority=ContextPriority.HIGH, source=knowledge,
        )
        assert context_item_to_message(item) == {
            "role": "system", "content": "[Knowledge] Paris is in France",
        }

    def test_provider_translation_uses_same_table(self, scripted_provider):
        provider = scripted_provider()
        assert provider.translate_record_kind("tool_result") == "tool"
        assert provider.translate_record_kind(RecordKind.TOOL_USE) == "assistant"


def test_system_prompt_prepended():
    context = Context(
        system_prompt="sys",
        items=[item_for(RecordKind.USER_INPUT, content="hi")],
        budget=TokenBudget.create(total=10),
    )
    assert [m["role"] for m in context_to_messages(context)] == ["system", "user"]


def test_no_system_prompt():
    context = Context(items=[], budget=TokenBudget.create(total=10))
    assert context_to_messages(context) == []


def test_tools_to_openai():
    tools = [ToolDefinition(name="get_weather", description="Current weather for a city", input_schema={"type": "object"})]
    assert tools_to_openai(tools) == [{
        "type": "function",
        "function": {"name": "get_weather", "description": "Current weather for a city", "parameters": {"type": "object"}},
    }]


class TestToolPairing:
    """Tool calls and results are only sent together."""

    def make_context(self, *items):
        return Context(items=list(items), budget=TokenBudget.create(total=100))

    def test_answered_call_is_sent(self):
        context = self.make_context(
            item_for(RecordKind.USER_INPUT, content="Weather?"),
            item_for(RecordKind.TOOL_USE, tool_use_id="call_1", tool_name="get_weather", input={}),
            item_for(RecordKind.TOOL_RESULT, tool_use_id="call_1", result="sunny"),
        )
        assert [m["role"] for m in context_to_messages(context)] == ["user", "assistant", "tool"]

    def test_unanswered_call_is_omitted(self):
        context = self.make_context(
            item_for(RecordKind.USER_INPUT, content="Weather?"),
            item_for(RecordKind.TOOL_USE, tool_use_id="call_1", tool_name="get_weather", input={}),
            item_for(RecordKind.USER_INPUT, content="Never mind"),
        )

        messages = context_to_messages(context)

        assert [m["role"] for m in messages] == ["user", "user"]
        assert not any("tool_calls" in m for m in messages)

    def test_result_without_call_is_omitted(self):
        context = self.make_context(
            item_for(RecordKind.TOOL_RESULT, tool_use_id="call_1", result="sunny"),
            item_for(RecordKind.USER_INPUT, content="Thanks"),
        )
        assert context_to_messages(context) == [{"role": "user", "content": "Thanks"}]

    def test_non_ascii_arguments_unescaped(self):
        message = context_item_to_message(item_for(
            RecordKind.TOOL_USE, tool_use_id="call_1", tool_name="get_weather", input={"city": "Zürich"},
        ))
        assert message["tool_calls"][0]["function"]["arguments"] == '{"city":"Zürich"}'
