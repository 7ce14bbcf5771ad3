"""Storage backends for the answer cache."""

from __future__ import annotations

import sqlite3
import threading
import time
from abc import ABC, abstractmethod
from contextlib import contextmanager
from dataclasses import dataclass
from pathlib import Path
from typing import Callable, Dict, Iterator


class CacheBackend(ABC):
    """Raw key/value storage with per-entry TTL and lazy expiry.

    ``blocking`` tells the cache facade whether calls may block on I/O and
    must therefore run in a worker thread.
    """

    blocking: bool = True

    @abstractmethod
    def get(self, key: str) -> str | None:
        """Return the stored value, or None when absent or expired (evicting it)."""

    @abstractmethod
    def set(self, key: str, value: str, ttl: float) -> None:
        """Store ``value`` under ``key`` for ``ttl`` seconds."""

    @abstractmethod
    def delete(self, key: str) -> None:
        """Remove ``key`` if present."""

    @abstractmethod
    def sweep(self) -> int:
        """Evict every expired entry. Returns the number of evicted entries."""

    def close(self) -> None:
        """Release any held resources."""


@dataclass(frozen=True)
class CacheEntry:
    value: str
    created_at: float
    ttl: float

    def expired(self, now: float) -> bool:
        return now - self.created_at >= self.ttl


class InMemoryCacheBackend(CacheBackend):
    """Process-local backend guarded by a lock."""

    blocking = False

    def __init__(self, *, clock: Callable[[], float] = time.monotonic) -> None:
        self._clock = clock
        self._entries: Dict[str, CacheEntry] = {}
        self._lock = threading.Lock()

    def get(self, key: str) -> str | None:
        with self._lock:
            entry = self._entries.get(key)
            if entry is None:
                return None
            if entry.expired(self._clock()):
                del self._entries[key]
                return None
            return entry.value

    def set(self, key: str, value: str, ttl: float) -> None:
        with self._lock:
            self._entries[key] = CacheEntry(value=value, created_at=self._clock(), ttl=ttl)

    def delete(self, key: str) -> None:
        with self._lock:
            self._entries.pop(key, None)

    def sweep(self) -> int:
        now = self._clock()
        with self._lock:
            expired = [key for key, entry in self._entries.items() if entry.expired(now)]
            for key in expired:
                del self._entries[key]
        return len(expired)

    def __len__(self) -> int:
        with self._lock:
            return len(self._entries)


class SQLiteCacheBackend(CacheBackend):
    """Cache entries persisted in a SQLite file."""

    def __init__(self, db_path: Path | str, *, clock: Callable[[], float] = time.time) -> None:
        self.db_path = Path(db_path)
        self._clock = clock
        self._lock = threading.Lock()
        self._conn = sqlite3.connect(self.db_path, check_same_thread=False)
        self._conn.row_factory = sqlite3.Row
        self._conn.execute("PRAGMA journal_mode=WAL;")
        self._conn.execute("PRAGMA synchronous=NORMAL;")
        self._ensure_schema()

    def close(self) -> None:
        with self._lock:
            self._conn.close()

    @contextmanager
    def transaction(self) -> Iterator[sqlite3.Connection]:
        with self._lock:
            try:
                yield self._conn
                self._conn.commit()
            except Exception:
                self._conn.rollback()
                raise

    def _ensure_schema(self) -> None:
        with self.transaction() as conn:
            conn.execute(
                """
                CREATE TABLE IF NOT EXISTS cache_entries (
                    key TEXT PRIMARY KEY,
                    value TEXT NOT NULL,
                    created_at REAL NOT NULL,
                    ttl REAL NOT NULL
                )
                """
            )

    def get(self, key: str) -> str | None:
        with self.transaction() as conn:
            row = conn.execute(
                "SELECT value, created_at, ttl FROM cache_entries WHERE key = ?",
                (key,),
            ).fetchone()
            if row is None:
                return None
            if self._clock() - row["created_at"] >= row["ttl"]:
                conn.execute("DELETE FROM cache_entries WHERE key = ?", (key,))
                return None
            return str(row["value"])

    def set(self, key: str, value: str, ttl: float) -> None:
        with self.transaction() as conn:
            conn.execute(
                "INSERT OR REPLACE INTO cache_entries (key, value, created_at, ttl) VALUES (?, ?, ?, ?)",
                (key, value, self._clock(), ttl),
            )

    def delete(self, key: str) -> None:
        with self.transaction() as conn:
            conn.execute("DELETE FROM cache_entries WHERE key = ?", (key,))

    def sweep(self) -> int:
        with self.transaction() as conn:
            cursor = conn.execute(
                "DELETE FROM cache_entries WHERE ? - created_at >= ttl",
                (self._clock(),),
            )
            return int(cursor.rowcount)
