"""Key/value persistence — JSON values, last-write-wins.

SQLiteKVStore is the durable backend (task table, execution history,
session metadata index). MemoryKVStore backs tests and ephemeral runs.
"""

from __future__ import annotations

import abc
import copy
import json
import sqlite3
from contextlib import contextmanager
from pathlib import Path
from typing import Any

from loguru import logger


class KeyValueStore(abc.ABC):
    """Synchronous get/set of JSON-serializable values."""

    @abc.abstractmethod
    def get(self, key: str, default: Any = None) -> Any:
        ...

    @abc.abstractmethod
    def set(self, key: str, value: Any) -> None:
        ...

    @abc.abstractmethod
    def delete(self, key: str) -> bool:
        ...

    @abc.abstractmethod
    def keys(self, prefix: str = "") -> list[str]:
        ...


class MemoryKVStore(KeyValueStore):
    """Dict-backed store. Values are round-tripped through JSON like the SQLite store."""

    def __init__(self) -> None:
        self._data: dict[str, str] = {}

    def get(self, key: str, default: Any = None) -> Any:
        raw = self._data.get(key)
        return json.loads(raw) if raw is not None else copy.deepcopy(default)

    def set(self, key: str, value: Any) -> None:
        self._data[key] = json.dumps(value)

    def delete(self, key: str) -> bool:
        return self._data.pop(key, None) is not None

    def keys(self, prefix: str = "") -> list[str]:
        return sorted(k for k in self._data if k.startswith(prefix))


class SQLiteKVStore(KeyValueStore):
    """SQLite-backed key/value table."""

    def __init__(self, db_path: str = "data/agentsched.db"):
        self.db_path = db_path
        Path(db_path).parent.mkdir(parents=True, exist_ok=True)
        self._init_db()
        logger.info(f"SQLiteKVStore initialized: {db_path}")

    @contextmanager
    def _get_conn(self):
        conn = sqlite3.connect(self.db_path)
        conn.row_factory = sqlite3.Row
        conn.execute("PRAGMA journal_mode=WAL")
        try:
            yield conn
        finally:
            conn.close()

    def _init_db(self) -> None:
        with self._get_conn() as conn:
            conn.executescript(_SCHEMA)
            conn.commit()

    def get(self, key: str, default: Any = None) -> Any:
        with self._get_conn() as conn:
            row = conn.execute(
                "SELECT value FROM kv_store WHERE key = ?", (key,)
            ).fetchone()
        if row is None:
            return copy.deepcopy(default)
        return json.loads(row["value"])

    def set(self, key: str, value: Any) -> None:
        payload = json.dumps(value)
        with self._get_conn() as conn:
            conn.execute(
                """INSERT INTO kv_store (key, value, updated_at)
                   VALUES (?, ?, CURRENT_TIMESTAMP)
                   ON CONFLICT(key) DO UPDATE SET
                       value = excluded.value,
                       updated_at = CURRENT_TIMESTAMP""",
                (key, payload),
            )
            conn.commit()

    def delete(self, key: str) -> bool:
        with self._get_conn() as conn:
            cursor = conn.execute("DELETE FROM kv_store WHERE key = ?", (key,))
            conn.commit()
        return cursor.rowcount > 0

    def keys(self, prefix: str = "") -> list[str]:
        with self._get_conn() as conn:
            rows = conn.execute(
                "SELECT key FROM kv_store WHERE key LIKE ? ESCAPE '\\' ORDER BY key",
                (prefix.replace("%", r"\%").replace("_", r"\_") + "%",),
            ).fetchall()
        return [r["key"] for r in rows]


_SCHEMA = """
CREATE TABLE IF NOT EXISTS kv_store (
    key TEXT PRIMARY KEY,
    value TEXT NOT NULL,
    updated_at TIMESTAMP DEFAULT CURRENT_TIMESTAMP
);
"""
