"""Durable cache tier backed by SQLite."""

from __future__ import annotations

import json
import logging
import sqlite3
from typing import Any, Protocol

import aiosqlite

from pydatalayer.cache.entry import CacheEntry
from pydatalayer.exceptions import DataLayerValidationError, PersistentStoreUnavailable

_logger = logging.getLogger(__name__)


class DurableStore(Protocol):
    """Structural interface of the durable tier.

    Implementations raise :class:`PersistentStoreUnavailable` when the
    underlying storage fails; the cache manager turns that into a miss or a
    ``False`` write result.
    """

    async def open(self) -> None:
        ...

    async def close(self) -> None:
        ...

    async def put(self, key: str, value: Any, timestamp: float, ttl: float) -> None:
        ...

    async def get(self, key: str) -> CacheEntry | None:
        ...

    async def delete(self, key: str) -> None:
        ...

    async def clear(self) -> None:
        ...

    async def iterate_by_timestamp_ascending(self, upper_bound: float) -> list[CacheEntry]:
        ...


_SCHEMA = (
    """
    CREATE TABLE IF NOT EXISTS cache_entries (
        key TEXT PRIMARY KEY,
        value TEXT NOT NULL,
        created_at REAL NOT NULL,
        ttl REAL NOT NULL
    )
    """,
    "CREATE INDEX IF NOT EXISTS idx_cache_entries_created_at ON cache_entries (created_at)",
)


class SqliteDurableStore:
    """SQLite implementation of :class:`DurableStore`.

    Values are stored as JSON text, so only JSON-serializable values can be
    persisted. One connection is held open between :meth:`open` and
    :meth:`close`.
    """

    def __init__(self, path: str) -> None:
        self._path = path
        self._db: aiosqlite.Connection | None = None

    @property
    def is_open(self) -> bool:
        return self._db is not None

    async def open(self) -> None:
        if self._db is not None:
            return
        try:
            db = await aiosqlite.connect(self._path)
            for statement in _SCHEMA:
                await db.execute(statement)
            await db.commit()
        except (sqlite3.Error, OSError) as exc:
            raise PersistentStoreUnavailable(f"Cannot open durable cache at {self._path}: {exc}") from exc
        self._db = db
        _logger.debug("Durable cache opened path=%s", self._path)

    async def close(self) -> None:
        db = self._db
        self._db = None
        if db is not None:
            await db.close()

    def _require_db(self) -> aiosqlite.Connection:
        if self._db is None:
            raise PersistentStoreUnavailable("Durable cache is not open")
        return self._db

    async def put(self, key: str, value: Any, timestamp: float, ttl: float) -> None:
        try:
            encoded = json.dumps(value, separators=(",", ":"))
        except (TypeError, ValueError) as exc:
            raise DataLayerValidationError(f"Value for key {key!r} is not JSON serializable: {exc}") from exc
        db = self._require_db()
        try:
            await db.execute(
                "INSERT OR REPLACE INTO cache_entries (key, value, created_at, ttl) VALUES (?, ?, ?, ?)",
                (key, encoded, timestamp, ttl),
            )
            await db.commit()
        except sqlite3.Error as exc:
            raise PersistentStoreUnavailable(f"Durable write failed for key {key!r}: {exc}") from exc

    async def get(self, key: str) -> CacheEntry | None:
        db = self._require_db()
        try:
            async with db.execute(
                "SELECT key, value, created_at, ttl FROM cache_entries WHERE key = ?",
                (key,),
            ) as cursor:
                row = await cursor.fetchone()
        except sqlite3.Error as exc:
            raise PersistentStoreUnavailable(f"Durable read failed for key {key!r}: {exc}") from exc
        if row is None:
            return None
        return _row_to_entry(row)

    async def delete(self, key: str) -> None:
        db = self._require_db()
        try:
            await db.execute("DELETE FROM cache_entries WHERE key = ?", (key,))
            await db.commit()
        except sqlite3.Error as exc:
            raise PersistentStoreUnavailable(f"Durable delete failed for key {key!r}: {exc}") from exc

    async def clear(self) -> None:
        db = self._require_db()
        try:
            await db.execute("DELETE FROM cache_entries")
            await db.commit()
        except sqlite3.Error as exc:
            raise PersistentStoreUnavailable(f"Durable clear failed: {exc}") from exc

    async def iterate_by_timestamp_ascending(self, upper_bound: float) -> list[CacheEntry]:
        """Entries with ``created_at <= upper_bound``, oldest first."""
        db = self._require_db()
        try:
            async with db.execute(
                "SELECT key, value, created_at, ttl FROM cache_entries WHERE created_at <= ? ORDER BY created_at ASC",
                (upper_bound,),
            ) as cursor:
                rows = await cursor.fetchall()
        except sqlite3.Error as exc:
            raise PersistentStoreUnavailable(f"Durable scan failed: {exc}") from exc
        entries: list[CacheEntry] = []
        for row in rows:
            try:
                entries.append(_row_to_entry(row))
            except PersistentStoreUnavailable:
                _logger.debug("Skipping unreadable durable row key=%s", row[0], exc_info=True)
        return entries


def _row_to_entry(row: Any) -> CacheEntry:
    key, encoded, created_at, ttl = row
    try:
        value = json.loads(encoded)
    except json.JSONDecodeError as exc:
        raise PersistentStoreUnavailable(f"Corrupt durable value for key {key!r}") from exc
    return CacheEntry(key=key, value=value, created_at=float(created_at), ttl=float(ttl))
