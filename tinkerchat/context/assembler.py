"""
Context assembly.

Turns an ordered session history into a bounded Context that fits the
model's window. The strategy is deliberately simple:

1. Reserve tokens for the system prompt (explicit reservation, or the
   character heuristic) and any other named reservations.
2. Project every record to a ContextItem.
3. Walk items newest to oldest, greedily keeping whatever still fits.
   Items that don't fit are skipped, not treated as a stopping point, so a
   small old record can still make it in after a large newer one was
   dropped. Nothing is ever truncated mid-record.
4. Emit the kept items in chronological order.

The knowledge-aware variant additionally reserves room for pre-retrieved
knowledge and places it ahead of the conversation at high priority.
"""

from __future__ import annotations

import json
from collections.abc import Sequence
from datetime import UTC, datetime
from typing import Any

from pydantic import BaseModel, Field

from tinkerchat.config.logging import get_logger
from tinkerchat.context.budget import TokenBudget, estimate_tokens
from tinkerchat.context.models import (
    Context,
    ContextItem,
    ContextMetadata,
    ContextPriority,
    ConversationRecord,
    Knowledge,
    ToolInvocationRequest,
    ToolInvocationResult,
)

logger = get_logger(__name__)


class AssemblyOptions(BaseModel):
    """Options for one assembly run."""

    max_tokens: int = Field(ge=0, description="Context window to fit into")
    reservations: dict[str, int] | None = Field(
        None,
        description="Named reservations, e.g. {'response': 1024}. A 'system' entry "
                    "overrides the estimated system prompt size.",
    )
    system_prompt: str | None = None


def render_record(record: ConversationRecord) -> str:
    """Flatten a record into the text that is budgeted and shown to the model."""
    if isinstance(record, ToolInvocationRequest):
        return render_tool_call(record.tool_name, record.input)
    if isinstance(record, ToolInvocationResult):
        return render_tool_result(record.result)
    return record.content


def compact_json(value: Any) -> str:
    """JSON with no spaces after separators and non-ASCII text left unescaped."""
    return json.dumps(value, separators=(",", ":"), ensure_ascii=False, default=str)


def render_tool_call(tool_name: str, tool_input: Any) -> str:
    return f"[Tool Call: {tool_name}] {compact_json(tool_input)}"


def render_tool_result(result: Any) -> str:
    return f"[Tool Result] {compact_json(result)}"


class ContextAssembler:
    """
    Budget-aware context builder.

    Stateless: the same records and options always produce the same items.
    Records must be passed in chronological order (oldest first), which is
    how the repository returns them.

    Example:
        >>> assembler = ContextAssembler()
        >>> context = assembler.assemble(records, AssemblyOptions(max_tokens=4096))
        >>> context.metadata.included_count
        12
    """

    def assemble(
        self,
        records: Sequence[ConversationRecord],
        options: AssemblyOptions,
    ) -> Context:
        """Assemble context from session records alone."""
        budget = self._initial_budget(options)
        items, budget = self._fit_records(records, budget)

        logger.debug(
            f"Assembled {len(items)}/{len(records)} records "
            f"({budget.used} tokens used, {budget.available} available)"
        )

        return Context(
            system_prompt=options.system_prompt,
            items=items,
            budget=budget,
            metadata=ContextMetadata(
                included_count=len(items),
                filtered_count=len(records) - len(items),
                knowledge_count=0,
                assembled_at=datetime.now(UTC),
            ),
        )

    def assemble_with_knowledge(
        self,
        records: Sequence[ConversationRecord],
        knowledge: Sequence[Knowledge],
        options: AssemblyOptions,
    ) -> Context:
        """
        Assemble context with pre-retrieved knowledge placed first.

        All supplied knowledge is included; its size is reserved up front
        under the ``knowledge`` slot, and conversation records compete for
        whatever remains.
        """
        knowledge_items = [self._knowledge_to_item(k) for k in knowledge]
        knowledge_tokens = sum(item.token_count for item in knowledge_items)

        budget = self._initial_budget(options, extra={"knowledge": knowledge_tokens})
        record_items, budget = self._fit_records(records, budget)

        logger.debug(
            f"Assembled {len(knowledge_items)} knowledge items ({knowledge_tokens} tokens) "
            f"and {len(record_items)}/{len(records)} records"
        )

        return Context(
            system_prompt=options.system_prompt,
            items=knowledge_items + record_items,
            budget=budget,
            metadata=ContextMetadata(
                included_count=len(record_items),
                filtered_count=len(records) - len(record_items),
                knowledge_count=len(knowledge_items),
                assembled_at=datetime.now(UTC),
            ),
        )

    def _initial_budget(
        self,
        options: AssemblyOptions,
        extra: dict[str, int] | None = None,
    ) -> TokenBudget:
        reservations = dict(options.reservations or {})
        if "system" not in reservations:
            reservations["system"] = (
                estimate_tokens(options.system_prompt) if options.system_prompt else 0
            )
        reservations.update(extra or {})
        return TokenBudget.create(total=options.max_tokens, reserved=reservations)

    def _fit_records(
        self,
        records: Sequence[ConversationRecord],
        budget: TokenBudget,
    ) -> tuple[list[ContextItem], TokenBudget]:
        """Greedy newest-first selection; returns kept items oldest-first."""
        candidates = [self._record_to_item(record) for record in records]

        kept: list[ContextItem] = []
        tokens_used = 0
        for item in reversed(candidates):
            if tokens_used + item.token_count <= budget.available:
                kept.append(item)
                tokens_used += item.token_count

        kept.reverse()
        return kept, budget.consume(tokens_used)

    def _record_to_item(self, record: ConversationRecord) -> ContextItem:
        return ContextItem(
            id=record.id,
            type="record",
            content=render_record(record),
            token_count=record.token_count,
            priority=ContextPriority.HIGH if record.pinned else ContextPriority.MEDIUM,
            source=record,
        )

    def _knowledge_to_item(self, knowledge: Knowledge) -> ContextItem:
        return ContextItem(
            id=knowledge.id,
            type="knowledge",
            content=knowledge.content,
            token_count=estimate_tokens(knowledge.content),
            priority=ContextPriority.HIGH,
            source=knowledge,
        )
