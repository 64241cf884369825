"""SessionStore contract — append-only per-session message logs."""

from __future__ import annotations

import abc
from datetime import datetime
from typing import Literal

from pydantic import BaseModel, Field

from agentsched.agent.types import Message


class SessionMetadata(BaseModel):
    """Denormalized per-session facts used for listing and filtering."""

    session_id: str
    task_id: str | None = None
    agent_id: str = ""
    model_id: str = ""
    project_directory: str | None = None
    created_at: datetime = Field(default_factory=datetime.now)
    updated_at: datetime = Field(default_factory=datetime.now)
    message_count: int = 0

    @property
    def execution_type(self) -> Literal["scheduled", "manual"]:
        return "scheduled" if self.task_id else "manual"


class SessionStats(BaseModel):
    exists: bool
    message_count: int = 0
    user_messages: int = 0
    assistant_messages: int = 0
    metadata: SessionMetadata | None = None


class AllSessionStats(BaseModel):
    total_sessions: int
    total_messages: int
    average_messages_per_session: float


class SessionStore(abc.ABC):
    """Per-conversation message log keyed by session id.

    ``history`` always returns a deep copy: mutating it never touches
    stored state.
    """

    @abc.abstractmethod
    def create(self, session_id: str, metadata: SessionMetadata | None = None) -> None:
        """Create an empty session. No-op if it already exists."""

    @abc.abstractmethod
    def has(self, session_id: str) -> bool:
        ...

    @abc.abstractmethod
    def append(self, session_id: str, message: Message) -> None:
        """Append a message, creating the session if missing."""

    @abc.abstractmethod
    def history(self, session_id: str) -> list[Message]:
        """Ordered messages (copy). Empty list for unknown sessions."""

    @abc.abstractmethod
    def delete(self, session_id: str) -> bool:
        ...

    @abc.abstractmethod
    def list_ids(self) -> list[str]:
        ...

    def stats(self, session_id: str) -> SessionStats:
        if not self.has(session_id):
            return SessionStats(exists=False)
        messages = self.history(session_id)
        return SessionStats(
            exists=True,
            message_count=len(messages),
            user_messages=sum(1 for m in messages if m.role == "user"),
            assistant_messages=sum(1 for m in messages if m.role == "assistant"),
            metadata=self.get_metadata(session_id),
        )

    def all_stats(self) -> AllSessionStats:
        ids = self.list_ids()
        total = sum(len(self.history(sid)) for sid in ids)
        avg = total / len(ids) if ids else 0.0
        return AllSessionStats(
            total_sessions=len(ids),
            total_messages=total,
            average_messages_per_session=round(avg, 2),
        )

    def get_metadata(self, session_id: str) -> SessionMetadata | None:
        return None
