"""
Conversation layer: turn orchestration and the session registry.

    SessionRegistry → ConversationOrchestrator.process_turn() → TurnEvents
"""

from tinkerchat.conversation.events import (
    AssembledEvent,
    DeltaEvent,
    ErrorEvent,
    RecordedEvent,
    ResponseEvent,
    StreamEndedEvent,
    StreamStartedEvent,
    ToolUseEvent,
    TurnEvent,
    TurnState,
)
from tinkerchat.conversation.orchestrator import ConversationOrchestrator
from tinkerchat.conversation.registry import SessionRegistry

__all__ = [
    "AssembledEvent",
    "ConversationOrchestrator",
    "DeltaEvent",
    "ErrorEvent",
    "RecordedEvent",
    "ResponseEvent",
    "SessionRegistry",
    "StreamEndedEvent",
    "StreamStartedEvent",
    "ToolUseEvent",
    "TurnEvent",
    "TurnState",
]
