from __future__ import annotations

import pytest

from oracle_engine.store import MemoryStore, SQLiteStore, open_store


@pytest.fixture(params=["memory", "sqlite"])
def any_store(request, tmp_path):
    if request.param == "memory":
        return MemoryStore()
    return SQLiteStore(path=str(tmp_path / "oracle.sqlite"))


def test_get_missing_returns_none(any_store):
    assert any_store.get("oracle-session/nope") is None
    assert any_store.exists("oracle-session/nope") is False


def test_empty_record_exists(any_store):
    any_store.set("oracle-session/s1", {})

    assert any_store.exists("oracle-session/s1") is True
    assert any_store.get("oracle-session/s1") == {}


def test_set_then_get_roundtrip(any_store):
    any_store.set("oracle-session/s1", {"id": "s1", "message_count": 2, "topic_history": ["a"]})

    assert any_store.get("oracle-session/s1") == {"id": "s1", "message_count": 2, "topic_history": ["a"]}


def test_update_merges_and_none_deletes(any_store):
    any_store.set("oracle-session/s1", {"id": "s1", "current_topic": "x", "message_count": 1})

    any_store.update("oracle-session/s1", {"message_count": 2, "current_topic": None})

    assert any_store.get("oracle-session/s1") == {"id": "s1", "message_count": 2}


def test_update_creates_missing_record(any_store):
    any_store.update("oracle-session/s2", {"message_count": 0})

    assert any_store.get("oracle-session/s2") == {"message_count": 0}


def test_collection_get_returns_children(any_store):
    any_store.set("oracle-messages/s1/m1", {"id": "m1"})
    any_store.set("oracle-messages/s1/m2", {"id": "m2"})

    assert any_store.get("oracle-messages/s1") == {"m1": {"id": "m1"}, "m2": {"id": "m2"}}
    assert any_store.exists("oracle-messages/s1") is True


def test_remove_deletes_subtree_only(any_store):
    any_store.set("oracle-messages/s1/m1", {"id": "m1"})
    any_store.set("oracle-messages/s10/m1", {"id": "other"})

    any_store.remove("oracle-messages/s1")

    assert any_store.get("oracle-messages/s1") is None
    assert any_store.get("oracle-messages/s10/m1") == {"id": "other"}


def test_query_last_n_orders_by_field(any_store):
    for i, ts in enumerate([30, 10, 50, 20, 40]):
        any_store.set(f"oracle-messages/s1/m{i}", {"id": f"m{i}", "timestamp": ts})

    rows = any_store.query_last_n("oracle-messages/s1", "timestamp", 3)

    assert [r["timestamp"] for r in rows] == [30, 40, 50]


def test_query_last_n_on_missing_collection(any_store):
    assert any_store.query_last_n("oracle-messages/none", "timestamp", 8) == []


def test_sqlite_persists_across_instances(tmp_path):
    path = str(tmp_path / "oracle.sqlite")
    SQLiteStore(path=path).set("oracle-session/s1", {"id": "s1"})

    assert SQLiteStore(path=path).get("oracle-session/s1") == {"id": "s1"}


def test_open_store_picks_backend(tmp_path):
    assert isinstance(open_store(None), MemoryStore)
    assert isinstance(open_store(":memory:"), MemoryStore)
    assert isinstance(open_store(str(tmp_path / "x.sqlite")), SQLiteStore)


def test_query_last_n_returns_copies(any_store):
    any_store.set("oracle-messages/s1/m1", {"id": "m1", "timestamp": 1})

    rows = any_store.query_last_n("oracle-messages/s1", "timestamp", 5)
    rows[0]["timestamp"] = 99

    assert any_store.get("oracle-messages/s1/m1") == {"id": "m1", "timestamp": 1}
