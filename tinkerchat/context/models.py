"""
Conversation records and assembled context.

Records are the immutable units of session history. They form a closed,
tagged union discriminated by ``kind``:

- UserInput:              what the human said
- AgentResponse:          what the model produced
- SystemInstruction:      behavioural guidance injected into the session
- KnowledgeReference:     a retrieved fact pinned into the session
- ToolInvocationRequest:  the model asked to call a tool
- ToolInvocationResult:   the outcome of that call (``tool_use_id`` links back)

A Context is the bounded projection of records (plus knowledge and an
optional system prompt) that is actually sent to the model for one turn.
"""

from datetime import UTC, datetime
from enum import Enum
from typing import Annotated, Any, Literal, Union

from pydantic import BaseModel, ConfigDict, Field, TypeAdapter

from tinkerchat.context.budget import TokenBudget


class RecordKind(str, Enum):
    """Discriminator values for ConversationRecord."""

    USER_INPUT = "user_input"
    AGENT_RESPONSE = "agent_response"
    SYSTEM_INSTRUCTION = "system_instruction"
    KNOWLEDGE_REFERENCE = "knowledge_reference"
    TOOL_USE = "tool_use"
    TOOL_RESULT = "tool_result"


class ContextPriority(str, Enum):
    """Priority of an item inside an assembled context."""

    CRITICAL = "critical"
    HIGH = "high"
    MEDIUM = "medium"
    LOW = "low"


class RecordBase(BaseModel):
    """Fields shared by every conversation record."""

    id: str = Field(description="Unique record identifier (UUID)")
    session_id: str = Field(description="Owning session")
    timestamp: datetime = Field(description="Creation time; records are totally ordered by it")
    token_count: int = Field(ge=0, description="Token weight used for context budgeting")
    embedding: list[float] = Field(default_factory=list, description="Vector for similarity search")
    pinned: bool = Field(default=False, description="User-pinned records get high priority")

    model_config = ConfigDict(frozen=True)


class UserInput(RecordBase):
    kind: Literal[RecordKind.USER_INPUT] = RecordKind.USER_INPUT
    content: str


class AgentResponse(RecordBase):
    kind: Literal[RecordKind.AGENT_RESPONSE] = RecordKind.AGENT_RESPONSE
    content: str
    provider: str | None = Field(None, description="Provider id that generated the response")
    model: str | None = Field(None, description="Model id that generated the response")
    status: Literal["complete", "token_limit", "user_interrupted"] = "complete"


class SystemInstruction(RecordBase):
    kind: Literal[RecordKind.SYSTEM_INSTRUCTION] = RecordKind.SYSTEM_INSTRUCTION
    content: str
    priority: int | None = Field(None, description="Higher is more important")


class KnowledgeReference(RecordBase):
    kind: Literal[RecordKind.KNOWLEDGE_REFERENCE] = RecordKind.KNOWLEDGE_REFERENCE
    content: str
    knowledge_id: str | None = Field(None, description="Source Knowledge entity, if any")
    relevance_score: float | None = Field(None, description="Similarity score at injection time")


class ToolInvocationRequest(RecordBase):
    kind: Literal[RecordKind.TOOL_USE] = RecordKind.TOOL_USE
    tool_use_id: str = Field(description="Provider-assigned tool call id")
    tool_name: str
    input: Any = None


class ToolInvocationResult(RecordBase):
    kind: Literal[RecordKind.TOOL_RESULT] = RecordKind.TOOL_RESULT
    tool_use_id: str = Field(description="Must match exactly one prior ToolInvocationRequest")
    result: Any = None
    is_error: bool = False


ConversationRecord = Annotated[
    Union[
        UserInput,
        AgentResponse,
        SystemInstruction,
        KnowledgeReference,
        ToolInvocationRequest,
        ToolInvocationResult,
    ],
    Field(discriminator="kind"),
]

record_adapter: TypeAdapter[ConversationRecord] = TypeAdapter(ConversationRecord)


class Knowledge(BaseModel):
    """
    A piece of retrievable knowledge.

    Knowledge lives outside any session; the knowledge-aware assembler
    injects retrieved items ahead of the conversation.
    """

    id: str
    content: str
    embedding: list[float] = Field(default_factory=list)
    source: Literal["conversation", "user", "code", "system"] = "user"
    tags: list[str] = Field(default_factory=list)
    created_at: datetime = Field(default_factory=lambda: datetime.now(UTC))
    relevance_score: float | None = Field(
        None, ge=0.0, le=1.0, description="Similarity to the query that retrieved it"
    )


class ContextItem(BaseModel):
    """A budget-accounted, flattened projection of a record or knowledge item."""

    id: str
    type: Literal["record", "knowledge", "system"]
    content: str
    token_count: int = Field(ge=0)
    priority: ContextPriority
    source: Union[ConversationRecord, Knowledge, None] = Field(
        None, description="The record or knowledge item this was projected from"
    )


class ContextMetadata(BaseModel):
    """Bookkeeping about one assembly run."""

    included_count: int = 0
    filtered_count: int = 0
    knowledge_count: int = 0
    assembled_at: datetime = Field(default_factory=lambda: datetime.now(UTC))


class Context(BaseModel):
    """The bounded, ordered content sent to the model for one turn."""

    system_prompt: str | None = None
    items: list[ContextItem] = Field(default_factory=list)
    budget: TokenBudget
    metadata: ContextMetadata = Field(default_factory=ContextMetadata)
