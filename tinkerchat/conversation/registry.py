"""
Session registry: at most one live orchestrator per session.

The registry is built once at the composition root (see
``tinkerchat.components``) and passed to whoever needs sessions. Cached
orchestrators keep their own lock, so two callers that fetch the same
session share its turn serialization.
"""

from __future__ import annotations

from typing import Any

from tinkerchat.config.logging import get_logger
from tinkerchat.conversation.orchestrator import ConversationOrchestrator
from tinkerchat.embeddings import Embedder
from tinkerchat.llm.base import Provider
from tinkerchat.storage.base import RecordRepository, Session

logger = get_logger(__name__)


class SessionRegistry:
    """
    Creates, loads and caches ConversationOrchestrators by session id.

    Args:
        provider: Provider for orchestrators built from now on
        repository: Shared record storage
        embedder: Shared embedder
        **orchestrator_options: Forwarded to every ConversationOrchestrator
            (project_id, system_prompt, response_reserve, ...)
    """

    def __init__(
        self,
        provider: Provider,
        repository: RecordRepository,
        embedder: Embedder,
        **orchestrator_options: Any,
    ):
        self.provider = provider
        self.repository = repository
        self.embedder = embedder
        self._options = orchestrator_options
        self._loaded: dict[str, ConversationOrchestrator] = {}

    def set_provider(self, provider: Provider) -> None:
        """Use ``provider`` for new sessions. Cached sessions keep theirs."""
        self.provider = provider

    def _build(self) -> ConversationOrchestrator:
        return ConversationOrchestrator(
            self.provider,
            self.repository,
            self.embedder,
            **self._options,
        )

    async def create_session(self, title: str | None = None) -> ConversationOrchestrator:
        orchestrator = self._build()
        session = await orchestrator.start(title)
        self._loaded[session.id] = orchestrator
        return orchestrator

    async def get_session(self, session_id: str) -> ConversationOrchestrator | None:
        """Cached orchestrator, else load from storage. None if the session doesn't exist."""
        if session_id in self._loaded:
            return self._loaded[session_id]

        orchestrator = self._build()
        if await orchestrator.load(session_id) is None:
            return None

        self._loaded[session_id] = orchestrator
        return orchestrator

    async def get_or_create_session(
        self,
        session_id: str | None = None,
        title: str | None = None,
    ) -> ConversationOrchestrator:
        if session_id:
            existing = await self.get_session(session_id)
            if existing is not None:
                return existing
            logger.warning(f"Session {session_id} not found; creating a new one")
        return await self.create_session(title)

    async def list_sessions(self) -> list[Session]:
        """All stored sessions, most recently updated first."""
        return await self.repository.list_sessions()

    def evict_session(self, session_id: str) -> None:
        """Drop a session from the cache (storage is untouched)."""
        self._loaded.pop(session_id, None)

    def clear(self) -> None:
        self._loaded.clear()

    def __len__(self) -> int:
        return len(self._loaded)

    def __contains__(self, session_id: str) -> bool:
        return session_id in self._loaded

    async def truncate_session(self, session_id: str, target: int | str) -> int | None:
        """Truncate a session; None if it doesn't exist."""
        orchestrator = await self.get_session(session_id)
        if orchestrator is None:
            return None
        return await orchestrator.truncate_after(target)
