"""
In-memory record repository.

Everything lives in dicts for the lifetime of the process. Used by tests
and by ``STORAGE_BACKEND=memory`` for throwaway sessions.
"""

from datetime import UTC, datetime
from typing import Any
from uuid import uuid4

import numpy as np

from tinkerchat.config.logging import get_logger
from tinkerchat.context.models import ConversationRecord, Knowledge
from tinkerchat.storage.base import RecordRepository, Session, build_record, next_timestamp

logger = get_logger(__name__)


def cosine_similarity(a: list[float], b: list[float]) -> float:
    """
    Cosine similarity mapped onto [0, 1].

    Uses the same scale as the ChromaDB backend (``1 - distance / 2``), so
    scores are comparable across repositories. Empty or zero vectors score 0.
    """
    va = np.asarray(a, dtype=float)
    vb = np.asarray(b, dtype=float)
    if va.size == 0 or va.shape != vb.shape:
        return 0.0
    denom = np.linalg.norm(va) * np.linalg.norm(vb)
    if denom == 0:
        return 0.0
    cosine = float(np.dot(va, vb) / denom)
    return max(0.0, min(1.0, (1.0 + cosine) / 2.0))


class InMemoryRecordRepository(RecordRepository):
    """Dict-backed RecordRepository."""

    def __init__(self):
        self._sessions: dict[str, Session] = {}
        self._records: dict[str, list[ConversationRecord]] = {}
        self._knowledge: list[Knowledge] = []

    async def create_session(
        self,
        project_id: str,
        title: str,
        metadata: dict[str, str] | None = None,
    ) -> Session:
        session = Session(
            id=str(uuid4()),
            project_id=project_id,
            title=title,
            metadata=dict(metadata or {}),
        )
        self._sessions[session.id] = session
        self._records[session.id] = []
        logger.debug(f"Created session {session.id} ({title!r})")
        return session

    async def get_session(self, session_id: str) -> Session | None:
        return self._sessions.get(session_id)

    async def list_sessions(self) -> list[Session]:
        return sorted(self._sessions.values(), key=lambda s: s.updated_at, reverse=True)

    async def get_records(self, session_id: str) -> list[ConversationRecord]:
        return list(self._records.get(session_id, []))

    async def add_record(self, session_id: str, fields: dict[str, Any]) -> ConversationRecord:
        if session_id not in self._sessions:
            raise KeyError(f"Unknown session: {session_id}")

        records = self._records[session_id]
        last = records[-1].timestamp if records else None
        record = build_record(session_id, fields, next_timestamp(last))
        records.append(record)

        self._sessions[session_id] = self._sessions[session_id].model_copy(
            update={"updated_at": datetime.now(UTC)}
        )
        return record

    async def delete_records_after(self, session_id: str, timestamp: datetime) -> int:
        records = self._records.get(session_id, [])
        kept = [r for r in records if r.timestamp <= timestamp]
        removed = len(records) - len(kept)
        self._records[session_id] = kept
        logger.debug(f"Deleted {removed} records from session {session_id}")
        return removed

    async def set_pinned(self, record_id: str, pinned: bool) -> ConversationRecord | None:
        for records in self._records.values():
            for i, record in enumerate(records):
                if record.id == record_id:
                    records[i] = record.model_copy(update={"pinned": pinned})
                    return records[i]
        return None

    async def search_records(
        self,
        query_embedding: list[float],
        limit: int = 5,
        session_id: str | None = None,
    ) -> list[tuple[ConversationRecord, float]]:
        if session_id is not None:
            candidates = self._records.get(session_id, [])
        else:
            candidates = [r for records in self._records.values() for r in records]

        scored = [(r, cosine_similarity(query_embedding, r.embedding)) for r in candidates]
        scored.sort(key=lambda pair: pair[1], reverse=True)
        return scored[:limit]

    async def add_knowledge(self, knowledge: Knowledge) -> Knowledge:
        self._knowledge.append(knowledge)
        return knowledge

    async def search_knowledge(
        self,
        query_embedding: list[float],
        limit: int = 5,
    ) -> list[Knowledge]:
        scored = [
            k.model_copy(update={"relevance_score": cosine_similarity(query_embedding, k.embedding)})
            for k in self._knowledge
        ]
        scored.sort(key=lambda k: k.relevance_score, reverse=True)
        return scored[:limit]
