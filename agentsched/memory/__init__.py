"""Session stores and key/value persistence."""

from agentsched.memory.base import AllSessionStats, SessionMetadata, SessionStats, SessionStore
from agentsched.memory.file_store import FileSessionStore
from agentsched.memory.inmemory import InMemorySessionStore
from agentsched.memory.kv import KeyValueStore, MemoryKVStore, SQLiteKVStore

__all__ = [
    "AllSessionStats",
    "FileSessionStore",
    "InMemorySessionStore",
    "KeyValueStore",
    "MemoryKVStore",
    "SQLiteKVStore",
    "SessionMetadata",
    "SessionStats",
    "SessionStore",
]
