"""
Persistence contract for sessions, records and knowledge.

The orchestrator never touches storage directly; it goes through a
RecordRepository. Implementations must make ``add_record`` and
``delete_records_after`` individually atomic, and must hand out strictly
increasing timestamps within a session so that records are totally ordered.
"""

from abc import ABC, abstractmethod
from datetime import UTC, datetime, timedelta
from typing import Any
from uuid import uuid4

from pydantic import BaseModel, Field

from tinkerchat.context.models import ConversationRecord, Knowledge, record_adapter


class Session(BaseModel):
    """A conversation session."""

    id: str = Field(description="Unique session identifier (UUID)")
    project_id: str = Field(description="Project the session belongs to")
    title: str
    created_at: datetime = Field(default_factory=lambda: datetime.now(UTC))
    updated_at: datetime = Field(default_factory=lambda: datetime.now(UTC))
    metadata: dict[str, str] = Field(
        default_factory=dict,
        description="Where the session came from, e.g. provider and model ids",
    )


def next_timestamp(last: datetime | None) -> datetime:
    """Current time, bumped past ``last`` so per-session order is strict."""
    now = datetime.now(UTC)
    if last is not None and now <= last:
        return last + timedelta(microseconds=1)
    return now


def build_record(
    session_id: str,
    fields: dict[str, Any],
    timestamp: datetime,
    record_id: str | None = None,
) -> ConversationRecord:
    """
    Validate a partial record into a full ConversationRecord.

    ``fields`` carries ``kind`` plus the variant's own fields; identity and
    ordering fields are assigned here and override anything passed in.
    """
    data = {
        **fields,
        "id": record_id or str(uuid4()),
        "session_id": session_id,
        "timestamp": timestamp,
    }
    return record_adapter.validate_python(data)


class RecordRepository(ABC):
    """
    Abstract base class for record storage.

    Repositories are async context managers:

        >>> async with InMemoryRecordRepository() as repo:
        ...     session = await repo.create_session("default", "Scratch")
    """

    @abstractmethod
    async def create_session(
        self,
        project_id: str,
        title: str,
        metadata: dict[str, str] | None = None,
    ) -> Session:
        """Create and persist a new session."""

    @abstractmethod
    async def get_session(self, session_id: str) -> Session | None:
        """Get a session by id, or None if it doesn't exist."""

    @abstractmethod
    async def list_sessions(self) -> list[Session]:
        """All sessions, most recently updated first."""

    @abstractmethod
    async def get_records(self, session_id: str) -> list[ConversationRecord]:
        """All records of a session, oldest first."""

    @abstractmethod
    async def add_record(self, session_id: str, fields: dict[str, Any]) -> ConversationRecord:
        """
        Persist a record.

        Args:
            session_id: Owning session
            fields: Record fields without ``id``, ``session_id`` or ``timestamp``

        Returns:
            The stored record with id and timestamp assigned

        Raises:
            KeyError: If the session doesn't exist
        """

    @abstractmethod
    async def delete_records_after(self, session_id: str, timestamp: datetime) -> int:
        """Delete records strictly newer than ``timestamp``; return how many."""

    @abstractmethod
    async def set_pinned(self, record_id: str, pinned: bool) -> ConversationRecord | None:
        """Pin or unpin a record. Returns the updated record, or None if unknown."""

    @abstractmethod
    async def search_records(
        self,
        query_embedding: list[float],
        limit: int = 5,
        session_id: str | None = None,
    ) -> list[tuple[ConversationRecord, float]]:
        """Records most similar to the query, with similarity in [0, 1], best first."""

    @abstractmethod
    async def add_knowledge(self, knowledge: Knowledge) -> Knowledge:
        """Persist a knowledge item."""

    @abstractmethod
    async def search_knowledge(
        self,
        query_embedding: list[float],
        limit: int = 5,
    ) -> list[Knowledge]:
        """Knowledge most similar to the query, ``relevance_score`` set, best first."""

    async def initialize(self) -> None:
        """Open connections. No-op by default."""

    async def shutdown(self) -> None:
        """Release connections. No-op by default."""

    async def __aenter__(self):
        await self.initialize()
        return self

    async def __aexit__(self, exc_type, exc_val, exc_tb):
        await self.shutdown()
        return False
