"""
Context layer: token budgets, conversation records, and context assembly.

    records (chronological)  →  ContextAssembler.assemble()  →  Context
                                         ↑
                               TokenBudget (total, used, reserved)
"""

from tinkerchat.context.assembler import AssemblyOptions, ContextAssembler, render_record
from tinkerchat.context.budget import (
    TokenBudget,
    consume_tokens,
    create_token_budget,
    estimate_tokens,
)
from tinkerchat.context.models import (
    AgentResponse,
    Context,
    ContextItem,
    ContextMetadata,
    ContextPriority,
    ConversationRecord,
    Knowledge,
    KnowledgeReference,
    RecordKind,
    SystemInstruction,
    ToolInvocationRequest,
    ToolInvocationResult,
    UserInput,
    record_adapter,
)

__all__ = [
    "AgentResponse",
    "AssemblyOptions",
    "Context",
    "ContextAssembler",
    "ContextItem",
    "ContextMetadata",
    "ContextPriority",
    "ConversationRecord",
    "Knowledge",
    "KnowledgeReference",
    "RecordKind",
    "SystemInstruction",
    "TokenBudget",
    "ToolInvocationRequest",
    "ToolInvocationResult",
    "UserInput",
    "consume_tokens",
    "create_token_budget",
    "estimate_tokens",
    "record_adapter",
    "render_record",
]
