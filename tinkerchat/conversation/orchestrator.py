"""
Conversation orchestrator: runs one session's turns.

Data flow for a turn:

    user text → embed + count → UserInput record ─┐
                                                  ↓
          RecordRepository.get_records() → ContextAssembler → Context
                                                  ↓
                      Provider.complete() → StreamChunks → TurnEvents
                                                  ↓
                      AgentResponse (+ ToolInvocationRequests) persisted

The orchestrator keeps no conversation state of its own beyond the active
session: records are always read back from the repository.

Turns, regeneration and truncation on one orchestrator are serialized by
an asyncio.Lock, so a truncation can never interleave with an in-flight
turn. A consumer that stops pulling events abandons the turn; closing the
event stream closes the provider stream too, and nothing further is
persisted.
"""

from __future__ import annotations

import asyncio
import os
from collections.abc import AsyncIterator
from contextlib import aclosing
from datetime import UTC, datetime
from typing import Any

from tinkerchat.config.logging import get_logger
from tinkerchat.context.assembler import (
    AssemblyOptions,
    ContextAssembler,
    render_tool_call,
    render_tool_result,
)
from tinkerchat.context.budget import estimate_tokens
from tinkerchat.context.models import (
    AgentResponse,
    Context,
    ConversationRecord,
    RecordKind,
    ToolInvocationRequest,
    UserInput,
)
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
from tinkerchat.embeddings import Embedder
from tinkerchat.llm.base import Provider
from tinkerchat.llm.models import CompletionOptions, ProviderInfo, TokenUsage, ToolUse
from tinkerchat.storage.base import RecordRepository, Session

logger = get_logger(__name__)

DEFAULT_SYSTEM_PROMPT = "You are a helpful assistant."
DEFAULT_RESPONSE_RESERVE = 1024


class ConversationOrchestrator:
    """
    Drives turns for a single session.

    Args:
        provider: Completion provider
        repository: Record storage
        embedder: Embeds every persisted record
        project_id: Project new sessions are created under
        system_prompt: Base system prompt; time and working directory are appended
        working_directory: Directory announced to the model (default: cwd)
        max_context_tokens: Context window (default: provider capability)
        response_reserve: Tokens held back for the response
        knowledge_k: Knowledge items retrieved per turn (0 disables retrieval)
        completion_options: Options passed to every completion
        assembler: Context assembler (default: a fresh ContextAssembler)

    Example:
        >>> orchestrator = ConversationOrchestrator(provider, repository, embedder)
        >>> await orchestrator.start("Debugging")
        >>> async for event in orchestrator.process_turn("Why is CI red?"):
        ...     if event.type == "delta":
        ...         print(event.content, end="")
    """

    def __init__(
        self,
        provider: Provider,
        repository: RecordRepository,
        embedder: Embedder,
        *,
        project_id: str = "default",
        system_prompt: str = DEFAULT_SYSTEM_PROMPT,
        working_directory: str | None = None,
        max_context_tokens: int | None = None,
        response_reserve: int = DEFAULT_RESPONSE_RESERVE,
        knowledge_k: int = 0,
        completion_options: CompletionOptions | None = None,
        assembler: ContextAssembler | None = None,
    ):
        self.provider = provider
        self.repository = repository
        self.embedder = embedder
        self.project_id = project_id
        self.system_prompt = system_prompt
        self.working_directory = working_directory or os.getcwd()
        self.response_reserve = response_reserve
        self.knowledge_k = knowledge_k
        self.completion_options = completion_options
        self.assembler = assembler or ContextAssembler()

        self._max_context_tokens = max_context_tokens
        self._lock = asyncio.Lock()
        self.session: Session | None = None
        self.state = TurnState.IDLE

    @property
    def provider_info(self) -> ProviderInfo:
        return self.provider.info

    @property
    def max_context_tokens(self) -> int:
        if self._max_context_tokens is not None:
            return self._max_context_tokens
        return self.provider.info.capabilities.max_context_tokens

    def set_provider(self, provider: Provider) -> None:
        """Switch models at runtime; the context window follows unless pinned by config."""
        logger.info(f"Switching provider: {self.provider.info.id} -> {provider.info.id}")
        self.provider = provider

    def build_system_prompt(self) -> str:
        """Base prompt plus the current time and working directory."""
        now = datetime.now(UTC).isoformat()
        return (
            f"{self.system_prompt}\n\n"
            f"The current time is: {now}\n"
            f"Your current working directory is: {self.working_directory}"
        )

    # Session lifecycle

    async def start(self, title: str | None = None) -> Session:
        """Create a new session and make it active."""
        title = title or f"Chat {datetime.now():%Y-%m-%d %H:%M}"
        self.session = await self.repository.create_session(
            self.project_id,
            title,
            {
                "provider": self.provider.info.id,
                "model": self.provider.info.model,
                "project_path": self.working_directory,
            },
        )
        logger.info(f"Started session {self.session.id} ({title!r})")
        return self.session

    async def load(self, session_id: str) -> Session | None:
        """Make an existing session active. Returns None if it doesn't exist."""
        session = await self.repository.get_session(session_id)
        if session is None:
            return None
        self.session = session
        logger.info(f"Loaded session {session_id}")
        return session

    def _require_session(self) -> Session:
        if self.session is None:
            raise RuntimeError("No active session")
        return self.session

    async def records(self) -> list[ConversationRecord]:
        """The active session's records, oldest first. Always read from storage."""
        if self.session is None:
            return []
        return await self.repository.get_records(self.session.id)

    async def pin(self, record_id: str, pinned: bool = True) -> ConversationRecord:
        """
        Pin or unpin a record; pinned records get high priority in context.

        Raises:
            KeyError: If the record doesn't exist
        """
        record = await self.repository.set_pinned(record_id, pinned)
        if record is None:
            raise KeyError(f"Unknown record: {record_id}")
        return record

    # Recording

    async def count_tokens(self, text: str) -> int:
        """Count with the provider's tokenizer, falling back to the character estimate."""
        try:
            return await self.provider.count_tokens(text)
        except Exception as e:
            logger.warning(f"Token counting failed, using character estimate: {e}")
            return estimate_tokens(text)

    async def _prepare(self, text: str, fields: dict[str, Any]) -> dict[str, Any]:
        """Embed and count the model-facing ``text`` of a record about to be stored."""
        embedding = await self.embedder.embed(text)
        token_count = await self.count_tokens(text)
        return {**fields, "embedding": embedding, "token_count": token_count}

    async def _persist(self, text: str, fields: dict[str, Any]) -> ConversationRecord:
        """Embed, count and store a record whose model-facing text is ``text``."""
        session = self._require_session()
        return await self.repository.add_record(session.id, await self._prepare(text, fields))

    async def add_tool_result(
        self,
        tool_use_id: str,
        result: Any,
        is_error: bool = False,
    ) -> ConversationRecord:
        """
        Record the outcome of a tool call the model requested.

        Raises:
            ValueError: Unless exactly one prior request has this tool_use_id
        """
        async with self._lock:
            records = await self.records()
            requests = [
                r for r in records
                if isinstance(r, ToolInvocationRequest) and r.tool_use_id == tool_use_id
            ]
            if len(requests) != 1:
                raise ValueError(
                    f"Expected exactly one tool request with id {tool_use_id!r}, "
                    f"found {len(requests)}"
                )

            return await self._persist(
                render_tool_result(result),
                {
                    "kind": RecordKind.TOOL_RESULT,
                    "tool_use_id": tool_use_id,
                    "result": result,
                    "is_error": is_error,
                },
            )

    # Turns

    async def process_turn(self, text: str) -> AsyncIterator[TurnEvent]:
        """
        Record user input and stream the model's reply.

        Starts a session first if none is active. Any failure ends the stream
        with a single ErrorEvent; no AgentResponse is persisted in that case.

        When the model asks for tools, answer each request with
        add_tool_result() before the next turn. Requests left unanswered are
        kept in storage but omitted from what is sent to the model.
        """
        async with self._lock:
            async with aclosing(self._guarded(self._record_and_respond(text))) as events:
                async for event in events:
                    yield event

    async def regenerate(self) -> AsyncIterator[TurnEvent]:
        """
        Discard everything after the latest user input and answer it again.

        Raises:
            ValueError: If the session has no user input yet
        """
        async with self._lock:
            records = await self.records()
            index = next(
                (i for i in range(len(records) - 1, -1, -1) if isinstance(records[i], UserInput)),
                None,
            )
            if index is None:
                raise ValueError("Nothing to regenerate: the session has no user input")

            removed = await self._truncate(index)
            logger.info(f"Regenerating response (dropped {removed} records)")

            async with aclosing(self._guarded(self._respond(records[index].embedding))) as events:
                async for event in events:
                    yield event

    async def _guarded(self, events: AsyncIterator[TurnEvent]) -> AsyncIterator[TurnEvent]:
        """Turn any failure into exactly one ErrorEvent and track the turn state."""
        try:
            async with aclosing(events) as stream:
                async for event in stream:
                    yield event
        except Exception as e:
            self.state = TurnState.FAILED
            session_id = self.session.id if self.session else None
            logger.error(f"Turn failed (session {session_id}): {e}", exc_info=True)
            yield ErrorEvent(message=str(e) or type(e).__name__, error=e)
        finally:
            if self.state is not TurnState.FAILED:
                self.state = TurnState.IDLE

    async def _record_and_respond(self, text: str) -> AsyncIterator[TurnEvent]:
        if self.session is None:
            await self.start()

        self.state = TurnState.RECORDING
        record = await self._persist(text, {"kind": RecordKind.USER_INPUT, "content": text})
        yield RecordedEvent(record=record)

        async with aclosing(self._respond(record.embedding)) as events:
            async for event in events:
                yield event

    async def _assemble(
        self,
        records: list[ConversationRecord],
        query_embedding: list[float],
    ) -> Context:
        options = AssemblyOptions(
            max_tokens=self.max_context_tokens,
            reservations={"response": self.response_reserve},
            system_prompt=self.build_system_prompt(),
        )

        if self.knowledge_k > 0 and query_embedding:
            knowledge = await self.repository.search_knowledge(query_embedding, self.knowledge_k)
            return self.assembler.assemble_with_knowledge(records, knowledge, options)
        return self.assembler.assemble(records, options)

    async def _respond(self, query_embedding: list[float]) -> AsyncIterator[TurnEvent]:
        """Assemble, stream and persist. Shared by new turns and regeneration."""
        session = self._require_session()
        self.state = TurnState.ASSEMBLING
        records = await self.repository.get_records(session.id)
        context = await self._assemble(records, query_embedding)
        yield AssembledEvent(context=context)

        self.state = TurnState.STREAMING
        yield StreamStartedEvent()

        parts: list[str] = []
        tool_uses: list[ToolUse] = []
        usage: TokenUsage | None = None
        finish_reason: str | None = None

        async with aclosing(self.provider.complete(context, self.completion_options)) as stream:
            async for chunk in stream:
                if chunk.content:
                    parts.append(chunk.content)
                    yield DeltaEvent(content=chunk.content)
                if chunk.tool_use is not None:
                    tool_uses.append(chunk.tool_use)
                    yield ToolUseEvent(tool_use=chunk.tool_use)
                if chunk.done:
                    usage = chunk.usage or usage
                    finish_reason = chunk.finish_reason or finish_reason

        yield StreamEndedEvent(usage=usage, finish_reason=finish_reason)

        self.state = TurnState.PERSISTING
        pending: list[dict[str, Any]] = []
        content = "".join(parts)
        if content:
            pending.append(await self._prepare(
                content,
                {
                    "kind": RecordKind.AGENT_RESPONSE,
                    "content": content,
                    "provider": self.provider.info.id,
                    "model": self.provider.info.model,
                    "status": "token_limit" if finish_reason == "length" else "complete",
                },
            ))
        else:
            logger.debug("Stream produced no content; no response recorded")

        for tool_use in tool_uses:
            pending.append(await self._prepare(
                render_tool_call(tool_use.name, tool_use.input),
                {
                    "kind": RecordKind.TOOL_USE,
                    "tool_use_id": tool_use.id,
                    "tool_name": tool_use.name,
                    "input": tool_use.input,
                },
            ))

        stored = await self._store_all(session, records, pending)
        if stored and isinstance(stored[0], AgentResponse):
            yield ResponseEvent(record=stored[0])

    async def _store_all(
        self,
        session: Session,
        records: list[ConversationRecord],
        pending: list[dict[str, Any]],
    ) -> list[ConversationRecord]:
        """Write a turn's output records; on failure remove whatever was written."""
        stored: list[ConversationRecord] = []
        try:
            for fields in pending:
                stored.append(await self.repository.add_record(session.id, fields))
        except Exception:
            if stored and records:
                await self.repository.delete_records_after(session.id, records[-1].timestamp)
                logger.warning(f"Rolled back {len(stored)} records after a failed write")
            raise
        return stored

    # Truncation

    async def truncate_after(self, target: int | str) -> int:
        """
        Delete every record after the one at ``target``.

        Args:
            target: Position in the session's record list, or a record id

        Returns:
            Number of records removed (0 if target is already the last record)

        Raises:
            IndexError: If an index is out of range
            KeyError: If a record id is unknown
            RuntimeError: If no session is active
        """
        async with self._lock:
            return await self._truncate(target)

    async def _truncate(self, target: int | str) -> int:
        session = self._require_session()
        records = await self.repository.get_records(session.id)

        if isinstance(target, str):
            index = next((i for i, r in enumerate(records) if r.id == target), None)
            if index is None:
                raise KeyError(f"Unknown record: {target}")
        else:
            index = target

        if index < 0 or index >= len(records):
            raise IndexError(f"Invalid record index: {index}")

        removed = len(records) - index - 1
        if removed == 0:
            return 0

        await self.repository.delete_records_after(session.id, records[index].timestamp)
        logger.info(f"Truncated session {session.id} after record {index} ({removed} removed)")
        return removed
