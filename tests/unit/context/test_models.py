"""
Unit tests for the conversation record union.
"""

from datetime import UTC, datetime

import pytest
from pydantic import ValidationError

from tinkerchat.context.models import (
    AgentResponse,
    Knowledge,
    RecordKind,
    ToolInvocationRequest,
    UserInput,
    record_adapter,
)


def _base(**overrides):
    data = {
        "id": "r1",
        "session_id": "s1",
        "timestamp": datetime(2026, 1, 1, tzinfo=UTC),
        "token_count": 3,
    }
    data.update(overrides)
    return data


class TestRecordUnion:
    """Discrimination by ``kind``."""

    def test_user_input_by_kind(self):
        record = record_adapter.validate_python(_base(kind="user_input", content="hi"))
        assert isinstance(record, UserInput)
        assert record.kind is RecordKind.USER_INPUT

    def test_agent_response_defaults(self):
        record = record_adapter.validate_python(_base(kind=RecordKind.AGENT_RESPONSE, content="ok"))
        assert isinstance(record, AgentResponse)
        assert record.status == "complete"
        assert record.pinned is False
        assert record.embedding == []

    def test_tool_request_round_trips_through_json(self):
        record = record_adapter.validate_python(_base(
            kind="tool_use", tool_use_id="call_1", tool_name="get_weather", input={"city": "NYC"},
        ))
        restored = record_adapter.validate_json(record.model_dump_json())

        assert isinstance(restored, ToolInvocationRequest)
        assert restored == record

    def test_unknown_kind_rejected(self):
        with pytest.raises(ValidationError):
            record_adapter.validate_python(_base(kind="code", content="x = 1"))

    def test_negative_token_count_rejected(self):
        with pytest.raises(ValidationError):
            record_adapter.validate_python(_base(kind="user_input", content="hi", token_count=-1))

    def test_records_are_frozen(self):
        record = record_adapter.validate_python(_base(kind="user_input", content="hi"))
        with pytest.raises(ValidationError):
            record.content = "changed"


class TestKnowledge:

    def test_relevance_score_bounded(self):
        with pytest.raises(ValidationError):
            Knowledge(id="k1", content="fact", relevance_score=1.5)
