"""
Record repository backed by ChromaDB.

Three collections share one persistent client:

- ``{name}_records``:   one entry per ConversationRecord. The document is the
  rendered record text, the embedding is the record embedding, and the
  metadata carries ``session_id``, ``kind``, ``timestamp_us`` (for ordering
  and truncation filters), ``pinned`` and the full record as JSON.
- ``{name}_knowledge``: knowledge items with their embeddings.
- ``{name}_sessions``:  session rows. Sessions are looked up by id only, so
  they get a constant placeholder embedding.

Example:
    >>> async with ChromaRecordRepository(persist_directory="./data/sessions") as repo:
    ...     session = await repo.create_session("default", "Debugging")
    ...     record = await repo.add_record(session.id, {
    ...         "kind": RecordKind.USER_INPUT,
    ...         "content": "Why is the build red?",
    ...         "token_count": 6,
    ...         "embedding": [0.1, 0.2, ...],
    ...     })
"""

import json
from datetime import UTC, datetime
from pathlib import Path
from typing import Any
from uuid import uuid4

import chromadb
from chromadb.config import Settings as ChromaSettings

from tinkerchat.config.logging import get_logger
from tinkerchat.context.assembler import render_record
from tinkerchat.context.models import ConversationRecord, Knowledge, record_adapter
from tinkerchat.storage.base import RecordRepository, Session, build_record, next_timestamp

logger = get_logger(__name__)

SESSION_PLACEHOLDER_EMBEDDING = [1.0]


def to_micros(timestamp: datetime) -> int:
    """Microseconds since the epoch; exact, unlike a float timestamp."""
    delta = timestamp - datetime(1970, 1, 1, tzinfo=UTC)
    return (delta.days * 86_400 + delta.seconds) * 1_000_000 + delta.microseconds


def distance_to_similarity(distance: float) -> float:
    """Cosine distance (0 identical, 2 opposite) to a [0, 1] similarity."""
    return max(0.0, min(1.0, 1.0 - distance / 2.0))


def _first(results: dict[str, Any], key: str) -> list:
    """Unwrap Chroma's per-query nesting, tolerating missing or None fields."""
    value = results.get(key)
    if value is None or len(value) == 0:
        return []
    return list(value[0])


class ChromaRecordRepository(RecordRepository):
    """
    ChromaDB implementation of RecordRepository.

    Attributes:
        persist_directory: Path to ChromaDB storage directory
        collection_name: Prefix for the three collections
    """

    def __init__(self, persist_directory: Path | str, collection_name: str = "tinkerchat"):
        self.persist_directory = Path(persist_directory)
        self.collection_name = collection_name
        self._client: chromadb.ClientAPI | None = None
        self._records: chromadb.Collection | None = None
        self._knowledge: chromadb.Collection | None = None
        self._sessions: chromadb.Collection | None = None
        self._last_timestamp: dict[str, datetime] = {}
        self._initialized = False

    async def initialize(self) -> None:
        """
        Open the persistent client and collections.

        Raises:
            RuntimeError: If ChromaDB initialization fails
        """
        logger.info(f"Initializing ChromaDB at {self.persist_directory}")

        try:
            self.persist_directory.mkdir(parents=True, exist_ok=True)

            self._client = chromadb.PersistentClient(
                path=str(self.persist_directory),
                settings=ChromaSettings(anonymized_telemetry=False, allow_reset=True),
            )

            self._records = self._client.get_or_create_collection(
                name=f"{self.collection_name}_records",
                metadata={"hnsw:space": "cosine"},
            )
            self._knowledge = self._client.get_or_create_collection(
                name=f"{self.collection_name}_knowledge",
                metadata={"hnsw:space": "cosine"},
            )
            self._sessions = self._client.get_or_create_collection(
                name=f"{self.collection_name}_sessions",
            )

            self._initialized = True
            logger.info(
                f"ChromaDB initialized successfully "
                f"(collections: {self.collection_name}_*, path: {self.persist_directory})"
            )

        except Exception as e:
            logger.error(f"Failed to initialize ChromaDB: {e}")
            raise RuntimeError(f"Could not initialize ChromaDB: {e}") from e

    def _require_initialized(self) -> None:
        if not self._initialized:
            raise RuntimeError(
                "Record repository not initialized. "
                "Use 'async with ChromaRecordRepository(...) as repo:' or call await repo.initialize()"
            )

    # Sessions

    @staticmethod
    def _session_metadata(session: Session) -> dict[str, Any]:
        return {
            "project_id": session.project_id,
            "title": session.title,
            "created_at": session.created_at.isoformat(),
            "updated_at": session.updated_at.isoformat(),
            "metadata": json.dumps(session.metadata),
        }

    @staticmethod
    def _session_from_metadata(session_id: str, meta: dict[str, Any]) -> Session:
        return Session(
            id=session_id,
            project_id=meta["project_id"],
            title=meta["title"],
            created_at=datetime.fromisoformat(meta["created_at"]),
            updated_at=datetime.fromisoformat(meta["updated_at"]),
            metadata=json.loads(meta.get("metadata") or "{}"),
        )

    async def create_session(
        self,
        project_id: str,
        title: str,
        metadata: dict[str, str] | None = None,
    ) -> Session:
        self._require_initialized()
        session = Session(
            id=str(uuid4()),
            project_id=project_id,
            title=title,
            metadata=dict(metadata or {}),
        )
        try:
            self._sessions.add(
                ids=[session.id],
                documents=[session.title],
                metadatas=[self._session_metadata(session)],
                embeddings=[SESSION_PLACEHOLDER_EMBEDDING],
            )
        except Exception as e:
            logger.error(f"Failed to create session: {e}")
            raise RuntimeError(f"Failed to create session: {e}") from e

        logger.debug(f"Created session {session.id} ({title!r})")
        return session

    async def get_session(self, session_id: str) -> Session | None:
        self._require_initialized()
        try:
            results = self._sessions.get(ids=[session_id], include=["metadatas"])
        except Exception as e:
            logger.error(f"Failed to load session {session_id}: {e}")
            raise RuntimeError(f"Failed to load session: {e}") from e

        if not results["ids"]:
            return None
        return self._session_from_metadata(results["ids"][0], results["metadatas"][0])

    async def list_sessions(self) -> list[Session]:
        self._require_initialized()
        try:
            results = self._sessions.get(include=["metadatas"])
        except Exception as e:
            logger.error(f"Failed to list sessions: {e}")
            raise RuntimeError(f"Failed to list sessions: {e}") from e

        sessions = [
            self._session_from_metadata(session_id, meta)
            for session_id, meta in zip(results["ids"], results["metadatas"])
        ]
        return sorted(sessions, key=lambda s: s.updated_at, reverse=True)

    async def _touch_session(self, session_id: str) -> None:
        session = await self.get_session(session_id)
        if session is None:
            return
        session = session.model_copy(update={"updated_at": datetime.now(UTC)})
        self._sessions.update(ids=[session_id], metadatas=[self._session_metadata(session)])

    # Records

    @staticmethod
    def _record_metadata(record: ConversationRecord) -> dict[str, Any]:
        return {
            "session_id": record.session_id,
            "kind": record.kind.value,
            "timestamp_us": to_micros(record.timestamp),
            "pinned": record.pinned,
            "payload": record.model_dump_json(exclude={"embedding"}),
        }

    @staticmethod
    def _record_from_row(meta: dict[str, Any], embedding: Any) -> ConversationRecord:
        record = record_adapter.validate_json(meta["payload"])
        if embedding is not None:
            record = record.model_copy(update={"embedding": [float(x) for x in embedding]})
        return record

    async def get_records(self, session_id: str) -> list[ConversationRecord]:
        self._require_initialized()
        try:
            results = self._records.get(
                where={"session_id": session_id},
                include=["metadatas", "embeddings"],
            )
        except Exception as e:
            logger.error(f"Failed to load records for session {session_id}: {e}")
            raise RuntimeError(f"Failed to load records: {e}") from e

        metadatas = results.get("metadatas") or []
        embeddings = results.get("embeddings")
        if embeddings is None:
            embeddings = [None] * len(metadatas)

        records = [self._record_from_row(meta, emb) for meta, emb in zip(metadatas, embeddings)]
        records.sort(key=lambda r: r.timestamp)
        if records:
            self._last_timestamp[session_id] = records[-1].timestamp
        return records

    async def _last_record_timestamp(self, session_id: str) -> datetime | None:
        if session_id not in self._last_timestamp:
            await self.get_records(session_id)
        return self._last_timestamp.get(session_id)

    async def add_record(self, session_id: str, fields: dict[str, Any]) -> ConversationRecord:
        self._require_initialized()
        if await self.get_session(session_id) is None:
            raise KeyError(f"Unknown session: {session_id}")

        last = await self._last_record_timestamp(session_id)
        record = build_record(session_id, fields, next_timestamp(last))
        if not record.embedding:
            raise ValueError("ChromaRecordRepository requires an embedding for every record")

        try:
            self._records.add(
                ids=[record.id],
                documents=[render_record(record)],
                metadatas=[self._record_metadata(record)],
                embeddings=[record.embedding],
            )
            await self._touch_session(session_id)
        except Exception as e:
            logger.error(f"Failed to add record to session {session_id}: {e}")
            raise RuntimeError(f"Failed to add record: {e}") from e

        self._last_timestamp[session_id] = record.timestamp
        return record

    async def delete_records_after(self, session_id: str, timestamp: datetime) -> int:
        self._require_initialized()
        where = {
            "$and": [
                {"session_id": session_id},
                {"timestamp_us": {"$gt": to_micros(timestamp)}},
            ]
        }
        try:
            ids = self._records.get(where=where, include=[])["ids"]
            if ids:
                self._records.delete(ids=ids)
        except Exception as e:
            logger.error(f"Failed to delete records from session {session_id}: {e}")
            raise RuntimeError(f"Failed to delete records: {e}") from e

        self._last_timestamp.pop(session_id, None)
        logger.debug(f"Deleted {len(ids)} records from session {session_id}")
        return len(ids)

    async def set_pinned(self, record_id: str, pinned: bool) -> ConversationRecord | None:
        self._require_initialized()
        try:
            results = self._records.get(ids=[record_id], include=["metadatas", "embeddings"])
            if not results["ids"]:
                return None

            embeddings = results.get("embeddings")
            record = self._record_from_row(
                results["metadatas"][0],
                embeddings[0] if embeddings is not None else None,
            )
            record = record.model_copy(update={"pinned": pinned})
            self._records.update(ids=[record_id], metadatas=[self._record_metadata(record)])
        except Exception as e:
            logger.error(f"Failed to update record {record_id}: {e}")
            raise RuntimeError(f"Failed to update record: {e}") from e

        return record

    async def search_records(
        self,
        query_embedding: list[float],
        limit: int = 5,
        session_id: str | None = None,
    ) -> list[tuple[ConversationRecord, float]]:
        self._require_initialized()
        if limit <= 0:
            raise ValueError(f"limit must be positive, got {limit}")
        if self._records.count() == 0:
            return []

        try:
            results = self._records.query(
                query_embeddings=[query_embedding],
                n_results=limit,
                where={"session_id": session_id} if session_id else None,
                include=["metadatas", "distances"],
            )
        except Exception as e:
            logger.error(f"Record search failed: {e}")
            raise RuntimeError(f"Record search failed: {e}") from e

        return [
            (self._record_from_row(meta, None), distance_to_similarity(distance))
            for meta, distance in zip(_first(results, "metadatas"), _first(results, "distances"))
        ]

    # Knowledge

    async def add_knowledge(self, knowledge: Knowledge) -> Knowledge:
        self._require_initialized()
        if not knowledge.embedding:
            raise ValueError("ChromaRecordRepository requires an embedding for knowledge")

        try:
            self._knowledge.add(
                ids=[knowledge.id],
                documents=[knowledge.content],
                metadatas=[{
                    "source": knowledge.source,
                    "tags": json.dumps(knowledge.tags),
                    "created_at": knowledge.created_at.isoformat(),
                }],
                embeddings=[knowledge.embedding],
            )
        except Exception as e:
            logger.error(f"Failed to add knowledge: {e}")
            raise RuntimeError(f"Failed to add knowledge: {e}") from e

        return knowledge

    async def search_knowledge(
        self,
        query_embedding: list[float],
        limit: int = 5,
    ) -> list[Knowledge]:
        self._require_initialized()
        if limit <= 0:
            raise ValueError(f"limit must be positive, got {limit}")
        if self._knowledge.count() == 0:
            return []

        try:
            results = self._knowledge.query(
                query_embeddings=[query_embedding],
                n_results=limit,
                include=["documents", "metadatas", "distances"],
            )
        except Exception as e:
            logger.error(f"Knowledge search failed: {e}")
            raise RuntimeError(f"Knowledge search failed: {e}") from e

        return [
            Knowledge(
                id=knowledge_id,
                content=document,
                source=meta["source"],
                tags=json.loads(meta.get("tags") or "[]"),
                created_at=datetime.fromisoformat(meta["created_at"]),
                relevance_score=distance_to_similarity(distance),
            )
            for knowledge_id, document, meta, distance in zip(
                _first(results, "ids"),
                _first(results, "documents"),
                _first(results, "metadatas"),
                _first(results, "distances"),
            )
        ]

    async def shutdown(self) -> None:
        """Drop references; ChromaDB persists on write."""
        if self._client is not None:
            logger.debug("Shutting down ChromaDB")
            self._records = None
            self._knowledge = None
            self._sessions = None
            self._client = None

        self._last_timestamp.clear()
        self._initialized = False
        logger.debug("ChromaDB shutdown complete")
