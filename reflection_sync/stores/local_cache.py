"""
Local Fallback Cache - synchronous key/value persistence
=========================================================

Used only when the remote store is unreachable or a remote write fails.
Values are already-serialized strings; reads and writes do not fail.

Keys are namespaced by application instance id and user id so deployments
and users sharing one device never collide.
"""

from __future__ import annotations

import abc
import os
import sqlite3
import threading
from datetime import datetime
from typing import Optional

from reflection_sync.utils.logger import get_logger

logger = get_logger(__name__)


def preferences_key(app_id: str, user_id: str) -> str:
    return f"{app_id}-{user_id}-userPreferences"


class LocalFallbackCache(abc.ABC):
    @abc.abstractmethod
    def get(self, key: str) -> Optional[str]:
        pass

    @abc.abstractmethod
    def set(self, key: str, value: str) -> None:
        pass

    @abc.abstractmethod
    def remove(self, key: str) -> None:
        pass


class InMemoryFallbackCache(LocalFallbackCache):
    def __init__(self) -> None:
        self._values: dict[str, str] = {}

    def get(self, key: str) -> Optional[str]:
        return self._values.get(key)

    def set(self, key: str, value: str) -> None:
        self._values[key] = value

    def remove(self, key: str) -> None:
        self._values.pop(key, None)

    def keys(self) -> list[str]:
        return list(self._values)


class SqliteFallbackCache(LocalFallbackCache):
    """
    Durable device-local cache.
    One connection per thread, WAL journal. ``close()`` closes every
    thread's connection; a thread that uses the cache afterwards reconnects.
    """

    def __init__(self, db_path: str = "data/local_cache.db"):
        self._db_path = db_path
        os.makedirs(os.path.dirname(db_path) or ".", exist_ok=True)
        self._local = threading.local()
        self._lock = threading.Lock()
        self._connections: list[sqlite3.Connection] = []
        self._init_db()
        logger.info("local_cache_initialized", path=db_path)

    @property
    def open_connections(self) -> int:
        with self._lock:
            return len(self._connections)

    def _get_conn(self) -> sqlite3.Connection:
        conn = getattr(self._local, "conn", None)
        with self._lock:
            if conn is not None and conn in self._connections:
                return conn
            # owned by this thread; close() may run on another one
            conn = sqlite3.connect(self._db_path, timeout=10, check_same_thread=False)
            self._connections.append(conn)
        conn.row_factory = sqlite3.Row
        conn.execute("PRAGMA journal_mode=WAL")
        conn.execute("PRAGMA synchronous=NORMAL")
        self._local.conn = conn
        return conn

    def _init_db(self):
        conn = self._get_conn()
        conn.executescript("""
            CREATE TABLE IF NOT EXISTS kv_cache (
                key         TEXT PRIMARY KEY,
                value       TEXT NOT NULL,
                updated_at  TEXT DEFAULT ''
            );
        """)
        conn.commit()

    def get(self, key: str) -> Optional[str]:
        row = self._get_conn().execute(
            "SELECT value FROM kv_cache WHERE key = ?", (key,)
        ).fetchone()
        return row["value"] if row else None

    def set(self, key: str, value: str) -> None:
        conn = self._get_conn()
        conn.execute(
            "INSERT OR REPLACE INTO kv_cache (key, value, updated_at) VALUES (?, ?, ?)",
            (key, value, datetime.now().isoformat()),
        )
        conn.commit()

    def remove(self, key: str) -> None:
        conn = self._get_conn()
        conn.execute("DELETE FROM kv_cache WHERE key = ?", (key,))
        conn.commit()

    def close(self) -> None:
        with self._lock:
            connections, self._connections = self._connections, []
        for conn in connections:
            conn.close()
        self._local.conn = None
        logger.info("local_cache_closed", path=self._db_path, connections=len(connections))
