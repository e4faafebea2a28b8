"""Session registry for live relay connections.

Owns every Session. A short registry-wide lock guards the id map only; each
session has its own lock, so work on one session never waits on another.
"""

from __future__ import annotations

import asyncio

from typing import Any

from core.errors import UnknownSession
from models.session_models import Session, SessionContext, Turn
from utils.logger import logger


class SessionRegistry:
    """Concurrency-safe map of session id to Session."""

    def __init__(self) -> None:
        self._sessions: dict[str, Session] = {}
        self._lock = asyncio.Lock()
        self._total_opened = 0

    async def open(self, session_id: str, context: SessionContext | None = None) -> Session:
        """Register a new session with empty history.

        Raises:
            ValueError: If the id is already registered
        """
        async with self._lock:
            if session_id in self._sessions:
                raise ValueError(f"Session already registered: {session_id}")
            session = Session(session_id=session_id, context=context or SessionContext())
            self._sessions[session_id] = session
            self._total_opened += 1

        logger.info(f"Session opened: {session_id}", active_sessions=len(self._sessions))
        return session

    async def close(self, session_id: str) -> None:
        """Discard all state for a session. Closing an unknown id is a no-op."""
        async with self._lock:
            session = self._sessions.pop(session_id, None)

        if session is not None:
            logger.info(
                f"Session closed: {session_id}",
                turns=session.turn_count,
                active_sessions=len(self._sessions),
            )

    async def get(self, session_id: str) -> Session:
        async with self._lock:
            session = self._sessions.get(session_id)
        if session is None:
            raise UnknownSession(session_id)
        return session

    async def append(self, session_id: str, turn: Turn) -> None:
        """Append one turn to a session's history."""
        session = await self.get(session_id)
        async with session.lock:
            session.turns.append(turn)

    async def commit_exchange(self, session_id: str, user_text: str, assistant_text: str) -> None:
        """Append a user turn and its assistant reply as one step."""
        session = await self.get(session_id)
        async with session.lock:
            session.turns.append(Turn(role="user", content=user_text))
            session.turns.append(Turn(role="assistant", content=assistant_text))

    async def history(self, session_id: str) -> tuple[Turn, ...]:
        """Snapshot of the committed turns."""
        session = await self.get(session_id)
        async with session.lock:
            return tuple(session.turns)

    async def context(self, session_id: str) -> SessionContext:
        """Copy of the session's ward context."""
        session = await self.get(session_id)
        async with session.lock:
            return session.context.model_copy()

    async def update_context(self, session_id: str, **fields: str | None) -> SessionContext:
        """Overwrite context fields. ``None`` values leave the field unchanged."""
        session = await self.get(session_id)
        changes = {key: value for key, value in fields.items() if value is not None}
        async with session.lock:
            session.context = session.context.model_copy(update=changes)
            return session.context.model_copy()

    async def next_seq(self, session_id: str) -> int:
        """Reserve the next outbound sequence number for a session."""
        session = await self.get(session_id)
        async with session.lock:
            seq = session.next_seq
            session.next_seq += 1
            return seq

    @property
    def session_ids(self) -> list[str]:
        return list(self._sessions)

    def __len__(self) -> int:
        return len(self._sessions)

    def __contains__(self, session_id: object) -> bool:
        return session_id in self._sessions

    def get_stats(self) -> dict[str, Any]:
        """Registry statistics for the health endpoint."""
        return {
            "active_sessions": len(self._sessions),
            "total_opened": self._total_opened,
            "committed_turns": sum(s.turn_count for s in self._sessions.values()),
        }
