"""Tests for the key-value stores."""

import sqlite3

import pytest

from clockout.store import REMOVE, MemoryStore, SqliteStore, StoreError


@pytest.fixture(params=["memory", "sqlite"])
def store(request, tmp_path):
    if request.param == "memory":
        return MemoryStore()
    return SqliteStore(tmp_path / "shift.db")


class TestBasicOperations:
    def test_missing_key_is_none(self, store):
        assert store.get("workEndTime") is None

    def test_set_and_get(self, store):
        store.set("workEndTime", 1770800400.0)
        store.set("workDate", "2026-02-11")
        assert store.get("workEndTime") == 1770800400.0
        assert store.get("workDate") == "2026-02-11"

    def test_overwrite(self, store):
        store.set("workRevision", 1)
        store.set("workRevision", 2)
        assert store.get("workRevision") == 2

    def test_remove(self, store):
        store.set("workDate", "2026-02-11")
        store.remove("workDate")
        assert store.get("workDate") is None

    def test_remove_missing_is_fine(self, store):
        store.remove("never-set")


class TestSwapIf:
    def test_applies_when_expected_matches(self, store):
        store.set("workRevision", 1)
        store.set("workDate", "2026-02-10")

        swapped = store.swap_if("workRevision", 1, {"workRevision": 2, "workDate": REMOVE, "workEndTime": 0})

        assert swapped
        assert store.get("workRevision") == 2
        assert store.get("workDate") is None
        assert store.get("workEndTime") == 0

    def test_rejected_when_changed(self, store):
        store.set("workRevision", 3)
        assert not store.swap_if("workRevision", 2, {"workRevision": 3, "workEndTime": 0})
        assert store.get("workEndTime") is None

    def test_missing_key_matches_none(self, store):
        assert store.swap_if("workRevision", None, {"workRevision": 1})
        assert store.get("workRevision") == 1


class TestMemoryStore:
    def test_initial_values_are_copied(self):
        initial = {"workDate": "2026-02-11"}
        store = MemoryStore(initial)
        store.set("workDate", "2026-02-12")
        assert initial["workDate"] == "2026-02-11"

    def test_snapshot(self):
        store = MemoryStore({"workEndTime": 0})
        assert store.snapshot() == {"workEndTime": 0}


class TestSqliteStore:
    def test_values_visible_across_instances(self, tmp_path):
        db = tmp_path / "shared.db"
        SqliteStore(db).set("workEndTime", 1770800400.0)
        assert SqliteStore(db).get("workEndTime") == 1770800400.0

    def test_namespaces_are_separate(self, tmp_path):
        db = tmp_path / "shared.db"
        SqliteStore(db, namespace="a").set("workDate", "2026-02-11")
        assert SqliteStore(db, namespace="b").get("workDate") is None

    def test_creates_parent_directory(self, tmp_path):
        db = tmp_path / "nested" / "dir" / "shift.db"
        SqliteStore(db).set("workRevision", 1)
        assert db.exists()

    def test_undecodable_value_reads_as_none(self, tmp_path):
        db = tmp_path / "shift.db"
        store = SqliteStore(db)
        conn = sqlite3.connect(db)
        conn.execute(
            "INSERT INTO kv_store (namespace, key, value) VALUES (?, ?, ?)",
            ("shift", "workEndTime", "{not json"),
        )
        conn.commit()
        conn.close()

        assert store.get("workEndTime") is None

    def test_unopenable_path_raises_store_error(self, tmp_path):
        with pytest.raises(StoreError):
            SqliteStore(tmp_path)
