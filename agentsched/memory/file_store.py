"""File-backed session store.

One JSON file per session under ``directory``. A denormalized metadata
index lives in the key/value store so listing and filtering never has to
open every session file. The index is rebuilt from the files when empty.
"""

from __future__ import annotations

import hashlib
import json
import re
from datetime import datetime, timedelta
from pathlib import Path
from typing import Any

from loguru import logger

from agentsched.agent.types import Message
from agentsched.memory.base import SessionMetadata, SessionStore
from agentsched.memory.kv import KeyValueStore

METADATA_KEY = "session_metadata"

_UNSAFE = re.compile(r"[^A-Za-z0-9._-]")


class FileSessionStore(SessionStore):
    """Sessions persisted as ``<directory>/<session_id>.json``."""

    def __init__(self, directory: str | Path, kv: KeyValueStore):
        self.directory = Path(directory)
        self.directory.mkdir(parents=True, exist_ok=True)
        self.kv = kv
        self._ensure_index()
        logger.info(f"FileSessionStore initialized: {self.directory}")

    # ── Files ───────────────────────────────────────────────

    def _path(self, session_id: str) -> Path:
        safe = _UNSAFE.sub("_", session_id)
        if safe != session_id:
            # keep ids that sanitize alike ("a/b", "a_b") in separate files
            safe = f"{safe}-{hashlib.sha1(session_id.encode()).hexdigest()[:8]}"
        return self.directory / f"{safe}.json"

    def _read(self, session_id: str) -> dict[str, Any] | None:
        path = self._path(session_id)
        if not path.exists():
            return None
        return json.loads(path.read_text(encoding="utf-8"))

    def _write(self, session_id: str, messages: list[Message]) -> None:
        payload = {
            "session_id": session_id,
            "messages": [m.model_dump(mode="json") for m in messages],
        }
        path = self._path(session_id)
        tmp = path.with_suffix(".json.tmp")
        tmp.write_text(json.dumps(payload, ensure_ascii=False), encoding="utf-8")
        tmp.replace(path)

    # ── Metadata index ──────────────────────────────────────

    def _load_index(self) -> dict[str, dict[str, Any]]:
        return self.kv.get(METADATA_KEY, {})

    def _save_index(self, index: dict[str, dict[str, Any]]) -> None:
        self.kv.set(METADATA_KEY, index)

    def _put_metadata(self, meta: SessionMetadata) -> None:
        index = self._load_index()
        index[meta.session_id] = meta.model_dump(mode="json")
        self._save_index(index)

    def _ensure_index(self) -> None:
        """Rebuild the index from session files if it is empty."""
        if self._load_index():
            return
        index: dict[str, dict[str, Any]] = {}
        for path in sorted(self.directory.glob("*.json")):
            try:
                data = json.loads(path.read_text(encoding="utf-8"))
            except (OSError, json.JSONDecodeError) as e:
                logger.warning(f"Skipping unreadable session file {path.name}: {e}")
                continue
            session_id = data.get("session_id") or path.stem
            mtime = datetime.fromtimestamp(path.stat().st_mtime)
            meta = SessionMetadata(
                session_id=session_id,
                created_at=mtime,
                updated_at=mtime,
                message_count=len(data.get("messages", [])),
            )
            index[session_id] = meta.model_dump(mode="json")
        if index:
            self._save_index(index)
            logger.info(f"Session index rebuilt from files: {len(index)} sessions")

    # ── SessionStore ────────────────────────────────────────

    def create(self, session_id: str, metadata: SessionMetadata | None = None) -> None:
        if self.has(session_id):
            logger.warning(f"Session already exists: {session_id}")
            return
        self._write(session_id, [])
        self._put_metadata(metadata or SessionMetadata(session_id=session_id))
        logger.info(f"Session created: {session_id}")

    def has(self, session_id: str) -> bool:
        return self._path(session_id).exists()

    def append(self, session_id: str, message: Message) -> None:
        if not self.has(session_id):
            self.create(session_id)
        messages = self.history(session_id)
        messages.append(message)
        self._write(session_id, messages)

        meta = self.get_metadata(session_id) or SessionMetadata(session_id=session_id)
        meta.message_count = len(messages)
        meta.updated_at = datetime.now()
        self._put_metadata(meta)
        logger.debug(
            f"Message added: session={session_id}, role={message.role}, "
            f"total={len(messages)}"
        )

    def history(self, session_id: str) -> list[Message]:
        data = self._read(session_id)
        if data is None:
            return []
        return [Message.model_validate(m) for m in data.get("messages", [])]

    def delete(self, session_id: str) -> bool:
        path = self._path(session_id)
        existed = path.exists()
        if existed:
            path.unlink()
        index = self._load_index()
        if index.pop(session_id, None) is not None:
            self._save_index(index)
        if existed:
            logger.info(f"Session deleted: {session_id}")
        return existed

    def list_ids(self) -> list[str]:
        return [sid for sid in self._load_index() if self.has(sid)]

    def get_metadata(self, session_id: str) -> SessionMetadata | None:
        raw = self._load_index().get(session_id)
        return SessionMetadata.model_validate(raw) if raw else None

    # ── Listing / maintenance ───────────────────────────────

    def list_metadata(
        self,
        agent_id: str | None = None,
        project_directory: str | None = None,
        task_id: str | None = None,
    ) -> list[SessionMetadata]:
        """Session metadata, newest first, optionally filtered."""
        result = []
        for raw in self._load_index().values():
            meta = SessionMetadata.model_validate(raw)
            if agent_id is not None and meta.agent_id != agent_id:
                continue
            if project_directory is not None and meta.project_directory != project_directory:
                continue
            if task_id is not None and meta.task_id != task_id:
                continue
            result.append(meta)
        result.sort(key=lambda m: m.updated_at, reverse=True)
        return result

    def update_execution_metadata(self, session_id: str, **fields: Any) -> bool:
        """Patch metadata fields (task_id, agent_id, model_id, ...). False if unknown."""
        meta = self.get_metadata(session_id)
        if meta is None:
            return False
        data = meta.model_dump()
        data.update({k: v for k, v in fields.items() if k in SessionMetadata.model_fields})
        data["updated_at"] = datetime.now()
        self._put_metadata(SessionMetadata.model_validate(data))
        return True

    def cleanup_old_sessions(self, max_age: timedelta = timedelta(days=30)) -> int:
        """Delete sessions not updated within ``max_age``. Returns count."""
        cutoff = datetime.now() - max_age
        removed = 0
        for meta in self.list_metadata():
            if meta.updated_at >= cutoff:
                continue
            try:
                self.delete(meta.session_id)
                removed += 1
            except OSError as e:
                logger.error(f"Failed to delete old session {meta.session_id}: {e}")
        if removed:
            logger.info(f"Cleaned up {removed} sessions older than {max_age.days} days")
        return removed
