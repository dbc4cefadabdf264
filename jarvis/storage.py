"""Key-value persistence for the transcript and preferences.

Two backends share the same get/set/remove surface:
  - MemoryStorage: process-local dict, used in tests and as the fallback
  - SqliteStorage: single-table SQLite file, survives restarts

Callers treat persistence as best-effort and catch StorageError.
"""

import logging
import sqlite3
from typing import Dict, Optional

logger = logging.getLogger(__name__)


class StorageError(Exception):
    """A persistence operation failed."""


class MemoryStorage:
    """In-memory key-value store."""

    def __init__(self):
        self._data: Dict[str, str] = {}

    def get(self, key: str) -> Optional[str]:
        return self._data.get(key)

    def set(self, key: str, value: str):
        self._data[key] = value

    def remove(self, key: str):
        self._data.pop(key, None)


class SqliteStorage:
    """SQLite-backed key-value store."""

    def __init__(self, db_path: str = "jarvis.db"):
        self._db_path = db_path
        self._conn: Optional[sqlite3.Connection] = None

        conn = self._get_conn()
        conn.execute("""
            CREATE TABLE IF NOT EXISTS kv (
                key TEXT PRIMARY KEY,
                value TEXT NOT NULL
            )
        """)
        conn.commit()
        logger.info("SqliteStorage opened (db=%s)", self._db_path)

    def _get_conn(self) -> sqlite3.Connection:
        if self._conn is None:
            try:
                self._conn = sqlite3.connect(self._db_path)
                self._conn.execute("PRAGMA journal_mode=WAL")
            except sqlite3.Error as exc:
                raise StorageError(f"Cannot open {self._db_path}: {exc}") from exc
        return self._conn

    def get(self, key: str) -> Optional[str]:
        try:
            row = self._get_conn().execute(
                "SELECT value FROM kv WHERE key = ?", (key,)
            ).fetchone()
        except sqlite3.Error as exc:
            raise StorageError(f"get {key!r} failed: {exc}") from exc
        return row[0] if row else None

    def set(self, key: str, value: str):
        try:
            conn = self._get_conn()
            conn.execute(
                "INSERT INTO kv (key, value) VALUES (?, ?) "
                "ON CONFLICT(key) DO UPDATE SET value = excluded.value",
                (key, value),
            )
            conn.commit()
        except sqlite3.Error as exc:
            raise StorageError(f"set {key!r} failed: {exc}") from exc

    def remove(self, key: str):
        try:
            conn = self._get_conn()
            conn.execute("DELETE FROM kv WHERE key = ?", (key,))
            conn.commit()
        except sqlite3.Error as exc:
            raise StorageError(f"remove {key!r} failed: {exc}") from exc

    def close(self):
        if self._conn is not None:
            self._conn.close()
            self._conn = None
