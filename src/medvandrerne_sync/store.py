from __future__ import annotations

import json
import logging
import sqlite3
import threading
from pathlib import Path
from typing import Any

logger = logging.getLogger("medvandrerne_sync.store")


class SQLiteStore:
    """Thread-safe SQLite key-value storage with connection caching."""

    def __init__(self, db_path: Path):
        self.db_path = Path(db_path)
        self._conn: sqlite3.Connection | None = None
        self._lock = threading.Lock()

    def _connect(self) -> sqlite3.Connection:
        """Get or create a cached database connection (thread-safe)."""
        with self._lock:
            if self._conn is not None:
                return self._conn
            self.db_path.parent.mkdir(parents=True, exist_ok=True)
            conn = sqlite3.connect(self.db_path, check_same_thread=False)
            conn.row_factory = sqlite3.Row
            self._conn = conn
            return conn

    def close(self) -> None:
        """Close the cached database connection."""
        with self._lock:
            if self._conn is not None:
                try:
                    self._conn.close()
                except sqlite3.Error as exc:
                    logger.warning("Error closing store %s: %s", self.db_path, exc)
                self._conn = None

    def bootstrap(self) -> None:
        conn = self._connect()
        with self._lock:
            conn.executescript(
                """
                CREATE TABLE IF NOT EXISTS kv_state (
                    key TEXT PRIMARY KEY,
                    value TEXT NOT NULL,
                    updated_at TEXT NOT NULL DEFAULT CURRENT_TIMESTAMP
                );
                """
            )
            conn.commit()

    def set_state(self, key: str, value: str) -> None:
        self.set_many({key: value})

    def set_many(self, items: dict[str, str]) -> None:
        """Write several keys in one transaction; either all land or none do."""
        if not items:
            return
        conn = self._connect()
        with self._lock:
            with conn:
                conn.executemany(
                    """
                    INSERT INTO kv_state(key, value, updated_at)
                    VALUES(?, ?, CURRENT_TIMESTAMP)
                    ON CONFLICT(key) DO UPDATE SET
                        value=excluded.value,
                        updated_at=CURRENT_TIMESTAMP
                    """,
                    list(items.items()),
                )

    def get_state(self, key: str) -> str | None:
        conn = self._connect()
        with self._lock:
            row = conn.execute(
                "SELECT value FROM kv_state WHERE key = ?",
                (key,),
            ).fetchone()
            if row is None:
                return None
            return str(row["value"])

    def delete_state(self, key: str) -> None:
        self.delete_many([key])

    def delete_many(self, keys: list[str]) -> None:
        if not keys:
            return
        conn = self._connect()
        with self._lock:
            with conn:
                conn.executemany("DELETE FROM kv_state WHERE key = ?", [(key,) for key in keys])


def load_json(store: Any, key: str, default: Any) -> Any:
    """Read a JSON value from the store, falling back to ``default`` on absence or corruption."""
    raw = store.get_state(key)
    if raw is None:
        return default
    try:
        return json.loads(raw)
    except (json.JSONDecodeError, TypeError):
        logger.warning("Discarding unreadable state under %r", key)
        return default


def dump_json(value: Any) -> str:
    return json.dumps(value, ensure_ascii=False, default=str)
