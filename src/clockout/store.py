"""Shared key-value store for shift state.

The store is the only thing the app process and the widget process share.
Values are strings, numbers or None. ``SqliteStore`` lets several processes
read and write the same file (WAL mode); ``MemoryStore`` is for tests and
single-process use.
"""

from __future__ import annotations

import json
import logging
import sqlite3
import threading
from pathlib import Path
from typing import Any, Mapping, Protocol

logger = logging.getLogger("clockout.store")

# Sentinel for swap_if updates: remove the key instead of setting it.
REMOVE = object()


class StoreError(Exception):
    """A store read or write failed."""


class Store(Protocol):
    def get(self, key: str) -> Any: ...

    def set(self, key: str, value: Any) -> None: ...

    def remove(self, key: str) -> None: ...

    def swap_if(self, key: str, expected: Any, updates: Mapping[str, Any]) -> bool:
        """Apply ``updates`` atomically iff ``get(key) == expected``."""
        ...


class MemoryStore:
    """Dict-backed store. Thread-safe, not shared across processes."""

    def __init__(self, initial: Mapping[str, Any] | None = None):
        self._data: dict[str, Any] = dict(initial or {})
        self._lock = threading.Lock()

    def get(self, key: str) -> Any:
        with self._lock:
            return self._data.get(key)

    def set(self, key: str, value: Any) -> None:
        with self._lock:
            self._data[key] = value

    def remove(self, key: str) -> None:
        with self._lock:
            self._data.pop(key, None)

    def swap_if(self, key: str, expected: Any, updates: Mapping[str, Any]) -> bool:
        with self._lock:
            if self._data.get(key) != expected:
                return False
            for k, v in updates.items():
                if v is REMOVE:
                    self._data.pop(k, None)
                else:
                    self._data[k] = v
            return True

    def snapshot(self) -> dict[str, Any]:
        with self._lock:
            return dict(self._data)


class SqliteStore:
    """SQLite-backed store shared between processes.

    Every call opens a short-lived connection so readers in other processes
    never hold a stale view. Values are JSON-encoded.
    """

    def __init__(self, db_path: Path | str, namespace: str = "shift"):
        self.db_path = Path(db_path)
        self.namespace = namespace
        self._init_db()

    def _connect(self) -> sqlite3.Connection:
        conn = sqlite3.connect(self.db_path, timeout=5.0, isolation_level=None)
        conn.execute("PRAGMA busy_timeout=5000")
        return conn

    def _init_db(self) -> None:
        self.db_path.parent.mkdir(parents=True, exist_ok=True)
        try:
            conn = self._connect()
            try:
                # WAL keeps widget reads from blocking app writes
                conn.execute("PRAGMA journal_mode=WAL")
                conn.execute("""
                    CREATE TABLE IF NOT EXISTS kv_store (
                        namespace TEXT NOT NULL,
                        key TEXT NOT NULL,
                        value TEXT,
                        updated_at TIMESTAMP DEFAULT CURRENT_TIMESTAMP,
                        PRIMARY KEY (namespace, key)
                    )
                """)
            finally:
                conn.close()
        except sqlite3.Error as e:
            raise StoreError(f"Failed to initialize store at {self.db_path}: {e}") from e

    @staticmethod
    def _read(conn: sqlite3.Connection, namespace: str, key: str) -> Any:
        row = conn.execute(
            "SELECT value FROM kv_store WHERE namespace = ? AND key = ?",
            (namespace, key),
        ).fetchone()
        if row is None or row[0] is None:
            return None
        try:
            return json.loads(row[0])
        except json.JSONDecodeError:
            logger.warning(f"Store: undecodable value for '{key}', treating as absent")
            return None

    @staticmethod
    def _write(conn: sqlite3.Connection, namespace: str, key: str, value: Any) -> None:
        conn.execute(
            """INSERT INTO kv_store (namespace, key, value, updated_at)
               VALUES (?, ?, ?, CURRENT_TIMESTAMP)
               ON CONFLICT(namespace, key) DO UPDATE SET
                   value = excluded.value,
                   updated_at = excluded.updated_at""",
            (namespace, key, json.dumps(value)),
        )

    @staticmethod
    def _delete(conn: sqlite3.Connection, namespace: str, key: str) -> None:
        conn.execute(
            "DELETE FROM kv_store WHERE namespace = ? AND key = ?",
            (namespace, key),
        )

    def get(self, key: str) -> Any:
        try:
            conn = self._connect()
            try:
                return self._read(conn, self.namespace, key)
            finally:
                conn.close()
        except sqlite3.Error as e:
            raise StoreError(f"Failed to read '{key}': {e}") from e

    def set(self, key: str, value: Any) -> None:
        try:
            conn = self._connect()
            try:
                self._write(conn, self.namespace, key, value)
            finally:
                conn.close()
        except sqlite3.Error as e:
            raise StoreError(f"Failed to write '{key}': {e}") from e

    def remove(self, key: str) -> None:
        try:
            conn = self._connect()
            try:
                self._delete(conn, self.namespace, key)
            finally:
                conn.close()
        except sqlite3.Error as e:
            raise StoreError(f"Failed to remove '{key}': {e}") from e

    def swap_if(self, key: str, expected: Any, updates: Mapping[str, Any]) -> bool:
        try:
            conn = self._connect()
            try:
                # IMMEDIATE takes the write lock before the read, so no other
                # process can slip a write between the compare and the swap.
                conn.execute("BEGIN IMMEDIATE")
                try:
                    if self._read(conn, self.namespace, key) != expected:
                        conn.execute("ROLLBACK")
                        return False
                    for k, v in updates.items():
                        if v is REMOVE:
                            self._delete(conn, self.namespace, k)
                        else:
                            self._write(conn, self.namespace, k, v)
                    conn.execute("COMMIT")
                    return True
                except sqlite3.Error:
                    conn.execute("ROLLBACK")
                    raise
            finally:
                conn.close()
        except sqlite3.Error as e:
            raise StoreError(f"Failed to swap on '{key}': {e}") from e
