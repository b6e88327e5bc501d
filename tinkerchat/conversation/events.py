"""
Events emitted while a turn is processed.

A turn is consumed as an async stream of TurnEvents. A successful turn
emits, in order:

    recorded → assembled → stream_started → (delta | tool_use)* → stream_ended → response?

``response`` is omitted when the model produced no text. A failed turn
ends with exactly one ``error`` event.
"""

from enum import Enum
from typing import Annotated, Literal, Union

from pydantic import BaseModel, ConfigDict, Field

from tinkerchat.context.models import AgentResponse, Context, ConversationRecord
from tinkerchat.llm.models import TokenUsage, ToolUse


class TurnState(str, Enum):
    """Where the orchestrator is within a turn."""

    IDLE = "idle"
    RECORDING = "recording"
    ASSEMBLING = "assembling"
    STREAMING = "streaming"
    PERSISTING = "persisting"
    FAILED = "failed"


class RecordedEvent(BaseModel):
    type: Literal["recorded"] = "recorded"
    record: ConversationRecord


class AssembledEvent(BaseModel):
    type: Literal["assembled"] = "assembled"
    context: Context


class StreamStartedEvent(BaseModel):
    type: Literal["stream_started"] = "stream_started"


class DeltaEvent(BaseModel):
    type: Literal["delta"] = "delta"
    content: str


class ToolUseEvent(BaseModel):
    type: Literal["tool_use"] = "tool_use"
    tool_use: ToolUse


class StreamEndedEvent(BaseModel):
    type: Literal["stream_ended"] = "stream_ended"
    usage: TokenUsage | None = None
    finish_reason: str | None = None


class ResponseEvent(BaseModel):
    type: Literal["response"] = "response"
    record: AgentResponse


class ErrorEvent(BaseModel):
    """The turn was aborted. Nothing further is emitted."""

    type: Literal["error"] = "error"
    message: str = Field(description="Human-readable description")
    error: Exception | None = Field(None, exclude=True, description="The original exception")

    model_config = ConfigDict(arbitrary_types_allowed=True)


TurnEvent = Annotated[
    Union[
        RecordedEvent,
        AssembledEvent,
        StreamStartedEvent,
        DeltaEvent,
        ToolUseEvent,
        StreamEndedEvent,
        ResponseEvent,
        ErrorEvent,
    ],
    Field(discriminator="type"),
]
