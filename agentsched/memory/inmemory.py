"""In-memory session store — process lifetime only."""

from __future__ import annotations

from datetime import datetime

from loguru import logger

from agentsched.agent.types import Message
from agentsched.memory.base import SessionMetadata, SessionStore


class InMemorySessionStore(SessionStore):
    """Dict of session id → message list."""

    def __init__(self) -> None:
        self._sessions: dict[str, list[Message]] = {}
        self._metadata: dict[str, SessionMetadata] = {}

    def create(self, session_id: str, metadata: SessionMetadata | None = None) -> None:
        if session_id in self._sessions:
            logger.warning(f"Session already exists: {session_id}")
            return
        self._sessions[session_id] = []
        self._metadata[session_id] = metadata or SessionMetadata(session_id=session_id)
        logger.info(f"Session created: {session_id}")

    def has(self, session_id: str) -> bool:
        return session_id in self._sessions

    def append(self, session_id: str, message: Message) -> None:
        if session_id not in self._sessions:
            self.create(session_id)
        messages = self._sessions[session_id]
        messages.append(message.model_copy(deep=True))

        meta = self._metadata[session_id]
        meta.message_count = len(messages)
        meta.updated_at = datetime.now()
        logger.debug(
            f"Message added: session={session_id}, role={message.role}, "
            f"total={len(messages)}"
        )

    def history(self, session_id: str) -> list[Message]:
        messages = self._sessions.get(session_id)
        if messages is None:
            logger.debug(f"Session not found, empty history: {session_id}")
            return []
        return [m.model_copy(deep=True) for m in messages]

    def delete(self, session_id: str) -> bool:
        existed = self._sessions.pop(session_id, None) is not None
        self._metadata.pop(session_id, None)
        if existed:
            logger.info(f"Session deleted: {session_id}")
        else:
            logger.warning(f"Attempted to delete unknown session: {session_id}")
        return existed

    def list_ids(self) -> list[str]:
        return list(self._sessions)

    def get_metadata(self, session_id: str) -> SessionMetadata | None:
        meta = self._metadata.get(session_id)
        return meta.model_copy() if meta else None

    def cleanup_empty_sessions(self) -> int:
        """Drop sessions that never received a message. Returns count."""
        empty = [sid for sid, msgs in self._sessions.items() if not msgs]
        for sid in empty:
            del self._sessions[sid]
            self._metadata.pop(sid, None)
        if empty:
            logger.info(f"Cleaned up {len(empty)} empty sessions")
        return len(empty)
