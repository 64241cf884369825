"""Tests for agentsched.memory session stores (in-memory + file-backed)."""

import json
from datetime import timedelta

import pytest

from agentsched.agent.types import Message, TextPart, ToolResultPart, ToolUsePart
from agentsched.memory import (
    FileSessionStore,
    InMemorySessionStore,
    MemoryKVStore,
    SessionMetadata,
)
from agentsched.memory.file_store import METADATA_KEY


@pytest.fixture(params=["memory", "file"])
def store(request, tmp_path):
    if request.param == "memory":
        return InMemorySessionStore()
    return FileSessionStore(tmp_path / "sessions", MemoryKVStore())


def _assistant(text: str) -> Message:
    return Message(role="assistant", content=[TextPart(text=text)])


# ── Contract (both implementations) ─────────────────────────


def test_append_creates_session(store):
    assert not store.has("s1")
    store.append("s1", Message.user("hello"))
    assert store.has("s1")
    assert [m.text for m in store.history("s1")] == ["hello"]


def test_history_order_and_roles(store):
    store.create("s1")
    store.append("s1", Message.user("q1"))
    store.append("s1", _assistant("a1"))
    store.append("s1", Message.user("q2"))
    history = store.history("s1")
    assert [m.role for m in history] == ["user", "assistant", "user"]
    assert [m.text for m in history] == ["q1", "a1", "q2"]


def test_history_is_a_copy(store):
    store.append("s1", Message.user("original"))
    history = store.history("s1")
    history[0].content[0].text = "mutated"
    history.append(_assistant("extra"))

    fresh = store.history("s1")
    assert len(fresh) == 1
    assert fresh[0].text == "original"


def test_unknown_session(store):
    assert store.history("nope") == []
    assert store.delete("nope") is False
    assert store.stats("nope").exists is False


def test_create_is_idempotent(store):
    store.create("s1")
    store.append("s1", Message.user("hi"))
    store.create("s1")
    assert len(store.history("s1")) == 1


def test_delete(store):
    store.append("s1", Message.user("hi"))
    assert store.delete("s1") is True
    assert not store.has("s1")
    assert "s1" not in store.list_ids()


def test_stats(store):
    store.create("s1", SessionMetadata(session_id="s1", agent_id="reporter", task_id="t1"))
    store.append("s1", Message.user("q"))
    store.append("s1", _assistant("a"))
    stats = store.stats("s1")
    assert stats.exists
    assert stats.message_count == 2
    assert stats.user_messages == 1
    assert stats.assistant_messages == 1
    assert stats.metadata.agent_id == "reporter"
    assert stats.metadata.execution_type == "scheduled"
    assert stats.metadata.message_count == 2


def test_all_stats(store):
    store.append("a", Message.user("1"))
    store.append("b", Message.user("1"))
    store.append("b", _assistant("2"))
    store.create("c")
    stats = store.all_stats()
    assert stats.total_sessions == 3
    assert stats.total_messages == 3
    assert stats.average_messages_per_session == 1.0


def test_tool_parts_round_trip(store):
    store.append("s1", Message(role="assistant", content=[
        ToolUsePart(tool_use_id="tu1", name="lookup", input={"q": "x"}),
    ]))
    store.append("s1", Message(role="user", content=[
        ToolResultPart(tool_use_id="tu1", content={"rows": [1, 2]}, status="success"),
    ]))
    history = store.history("s1")
    assert history[0].tool_uses[0].input == {"q": "x"}
    assert history[1].tool_results[0].content == {"rows": [1, 2]}


# ── In-memory specifics ─────────────────────────────────────


def test_cleanup_empty_sessions():
    store = InMemorySessionStore()
    store.create("empty1")
    store.create("empty2")
    store.append("full", Message.user("hi"))
    assert store.cleanup_empty_sessions() == 2
    assert store.list_ids() == ["full"]


def test_all_stats_average_rounding():
    store = InMemorySessionStore()
    store.append("a", Message.user("1"))
    store.append("b", Message.user("1"))
    store.append("b", _assistant("2"))
    store.append("c", Message.user("1"))
    assert store.all_stats().average_messages_per_session == 1.33


# ── File store specifics ────────────────────────────────────


@pytest.fixture
def kv():
    return MemoryKVStore()


def test_file_store_one_file_per_session(tmp_path, kv):
    store = FileSessionStore(tmp_path, kv)
    store.append("scheduled-t1-1700000000000", Message.user("hi"))
    files = list(tmp_path.glob("*.json"))
    assert [f.name for f in files] == ["scheduled-t1-1700000000000.json"]
    data = json.loads(files[0].read_text())
    assert data["session_id"] == "scheduled-t1-1700000000000"
    assert data["messages"][0]["role"] == "user"


def test_file_store_survives_restart(tmp_path, kv):
    FileSessionStore(tmp_path, kv).append("s1", Message.user("persisted"))
    reopened = FileSessionStore(tmp_path, kv)
    assert [m.text for m in reopened.history("s1")] == ["persisted"]


def test_file_store_rebuilds_empty_index(tmp_path, kv):
    FileSessionStore(tmp_path, kv).append("s1", Message.user("hi"))
    kv.delete(METADATA_KEY)

    rebuilt = FileSessionStore(tmp_path, kv)
    assert rebuilt.list_ids() == ["s1"]
    assert rebuilt.get_metadata("s1").message_count == 1


def test_list_metadata_filters(tmp_path, kv):
    store = FileSessionStore(tmp_path, kv)
    store.create("a", SessionMetadata(session_id="a", agent_id="x", project_directory="/p1"))
    store.create("b", SessionMetadata(session_id="b", agent_id="y", task_id="t1"))
    store.create("c", SessionMetadata(session_id="c", agent_id="x", task_id="t1"))

    assert {m.session_id for m in store.list_metadata(agent_id="x")} == {"a", "c"}
    assert {m.session_id for m in store.list_metadata(task_id="t1")} == {"b", "c"}
    assert [m.session_id for m in store.list_metadata(project_directory="/p1")] == ["a"]
    assert len(store.list_metadata()) == 3


def test_update_execution_metadata(tmp_path, kv):
    store = FileSessionStore(tmp_path, kv)
    store.create("s1")
    assert store.update_execution_metadata("s1", task_id="t9", model_id="m1", bogus=1)
    meta = store.get_metadata("s1")
    assert meta.task_id == "t9"
    assert meta.model_id == "m1"
    assert store.update_execution_metadata("missing", task_id="t9") is False


def test_cleanup_old_sessions(tmp_path, kv):
    store = FileSessionStore(tmp_path, kv)
    store.append("old", Message.user("stale"))
    store.append("new", Message.user("fresh"))

    # Age the "old" session by rewriting its index entry
    meta = store.get_metadata("old")
    meta.updated_at = meta.updated_at - timedelta(days=45)
    index = kv.get(METADATA_KEY)
    index["old"] = meta.model_dump(mode="json")
    kv.set(METADATA_KEY, index)

    assert store.cleanup_old_sessions(timedelta(days=30)) == 1
    assert store.list_ids() == ["new"]
    assert not (tmp_path / "old.json").exists()


def test_unsafe_session_id_is_sanitized(tmp_path, kv):
    store = FileSessionStore(tmp_path, kv)
    store.append("../escape/id", Message.user("hi"))
    assert store.has("../escape/id")
    assert all(p.parent == tmp_path for p in tmp_path.glob("*.json"))


def test_ids_that_sanitize_alike_keep_separate_files(tmp_path, kv):
    store = FileSessionStore(tmp_path, kv)
    store.append("a/b", Message.user("slash"))
    store.append("a_b", Message.user("underscore"))

    assert [m.text for m in store.history("a/b")] == ["slash"]
    assert [m.text for m in store.history("a_b")] == ["underscore"]
    assert len(list(tmp_path.glob("*.json"))) == 2

    store.delete("a/b")
    assert [m.text for m in store.history("a_b")] == ["underscore"]
