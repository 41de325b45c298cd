"""SQLiteStore: primary storage backend using stdlib sqlite3."""

from __future__ import annotations

import json
import sqlite3
import threading
from datetime import datetime, timezone
from pathlib import Path
from typing import Any

from ..core.store import KeyValueStore
from .helpers import dt_to_str

SCHEMA_SQL = """\
CREATE TABLE IF NOT EXISTS kv (
    key TEXT PRIMARY KEY,
    value_json TEXT NOT NULL,
    updated_at TEXT NOT NULL
);
"""


class SQLiteStore(KeyValueStore):
    """Key-value rows holding JSON documents, one row per key."""

    def __init__(self, db_path: str | Path) -> None:
        self.db_path = Path(db_path)
        self.db_path.parent.mkdir(parents=True, exist_ok=True)
        self._conn: sqlite3.Connection | None = None
        self._lock = threading.Lock()
        self._ensure_schema()

    def _get_conn(self) -> sqlite3.Connection:
        if self._conn is None:
            self._conn = sqlite3.connect(str(self.db_path), check_same_thread=False)
            self._conn.row_factory = sqlite3.Row
            self._conn.execute("PRAGMA journal_mode=WAL")
        return self._conn

    def _ensure_schema(self) -> None:
        conn = self._get_conn()
        conn.executescript(SCHEMA_SQL)
        conn.commit()

    def get(self, key: str, default: Any = None) -> Any:
        with self._lock:
            row = self._get_conn().execute(
                "SELECT value_json FROM kv WHERE key = ?", (key,),
            ).fetchone()
        if not row:
            return default
        return json.loads(row["value_json"])

    def set(self, key: str, value: Any) -> None:
        payload = json.dumps(value, ensure_ascii=False)
        with self._lock:
            conn = self._get_conn()
            conn.execute(
                "INSERT OR REPLACE INTO kv (key, value_json, updated_at) VALUES (?, ?, ?)",
                (key, payload, dt_to_str(datetime.now(timezone.utc))),
            )
            conn.commit()

    def delete(self, key: str) -> bool:
        with self._lock:
            conn = self._get_conn()
            cursor = conn.execute("DELETE FROM kv WHERE key = ?", (key,))
            conn.commit()
        return cursor.rowcount > 0

    def keys(self) -> list[str]:
        with self._lock:
            rows = self._get_conn().execute("SELECT key FROM kv ORDER BY key").fetchall()
        return [r["key"] for r in rows]

    def close(self) -> None:
        if self._conn is not None:
            self._conn.close()
            self._conn = None
