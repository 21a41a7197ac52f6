"""
Storage strategies using Strategy Pattern.
Three tiers with one contract: in-process memory, Redis and SQLite.
"""

from abc import ABC, abstractmethod
import asyncio
import logging
import os
import re
import sqlite3
from typing import Dict, List, Optional

import aiosqlite
import redis
from pydantic import ValidationError

from dashboard_app.cache.keys import match_keys
from dashboard_app.cache.models import CacheEntry
from dashboard_app.exceptions import (
    StorageQuotaExceededError,
    StorageUnavailableError,
    StorageWriteError,
)

logger = logging.getLogger(__name__)

_IDENTIFIER = re.compile(r"^[A-Za-z_][A-Za-z0-9_]*$")


class StorageStrategy(ABC):
    """
    Abstract base class for storage tiers.

    This is the Strategy Pattern interface - CacheService talks to every
    tier through these five operations and never to a medium directly.

    Contract shared by all tiers:
    - get() never raises; read failures are logged and reported as a miss
    - set() raises StorageWriteError (or a subclass) when the medium refuses
    - remove() is idempotent
    - clear() only touches entries owned by this tier
    - keys() lists keys, optionally filtered by a glob pattern
    """

    @abstractmethod
    async def get(self, key: str) -> Optional[CacheEntry]:
        """
        Get the stored envelope for a key.

        Args:
            key: Cache key

        Returns:
            CacheEntry (expired or not) or None if absent or unreadable
        """
        pass

    @abstractmethod
    async def set(self, key: str, entry: CacheEntry) -> None:
        """
        Store an envelope under a key.

        Args:
            key: Cache key
            entry: Entry to store

        Raises:
            StorageWriteError: If the medium rejects the write
        """
        pass

    @abstractmethod
    async def remove(self, key: str) -> None:
        """Delete a key; an absent key is not an error"""
        pass

    @abstractmethod
    async def clear(self) -> None:
        """Delete every entry owned by this tier"""
        pass

    @abstractmethod
    async def keys(self, pattern: Optional[str] = None) -> List[str]:
        """
        List stored keys.

        Args:
            pattern: Optional glob where "*" matches any run of characters

        Returns:
            Matching keys (all keys without a pattern)
        """
        pass


class MemoryStorage(StorageStrategy):
    """
    In-memory tier using Python dict.

    Pros:
    - Very fast (no I/O at all)
    - No size limit beyond process memory

    Cons:
    - Lost on restart
    - Not shared between processes

    Note: Async for interface consistency, but operations are instant.
    """

    def __init__(self):
        """Initialize in-memory tier"""
        self._entries: Dict[str, CacheEntry] = {}

    async def get(self, key: str) -> Optional[CacheEntry]:
        return self._entries.get(key)

    async def set(self, key: str, entry: CacheEntry) -> None:
        self._entries[key] = entry

    async def remove(self, key: str) -> None:
        self._entries.pop(key, None)

    async def clear(self) -> None:
        self._entries.clear()

    async def keys(self, pattern: Optional[str] = None) -> List[str]:
        try:
            return match_keys(list(self._entries), pattern)
        except Exception as e:
            logger.error(f"Memory keys error for pattern {pattern!r}: {e}")
            return []

    def __len__(self) -> int:
        return len(self._entries)


def _to_str(value) -> str:
    return value.decode("utf-8") if isinstance(value, bytes) else value


def _escape_redis_glob(text: str) -> str:
    return re.sub(r"([\\*?\[\]])", r"\\\1", text)


class RedisStorage(StorageStrategy):
    """
    Redis tier: a small, shared key/value store.

    - Values are JSON strings of the CacheEntry envelope
    - Keys are physically prefixed so unrelated data in the same Redis
      database is never listed or cleared
    - Total size (keys + values under the prefix) is capped by a byte
      quota; a write past the quota raises StorageQuotaExceededError

    The client is synchronous; calls are wrapped in coroutines and do not
    yield to the event loop.
    """

    def __init__(
        self,
        redis_client,
        prefix: str = "monday_ai_",
        quota_bytes: Optional[int] = 5 * 1024 * 1024
    ):
        """
        Initialize Redis tier.

        Args:
            redis_client: Redis client instance (redis.Redis)
            prefix: Prefix for every physical key
            quota_bytes: Byte limit for this tier, None for no limit
        """
        self.redis = redis_client
        self.prefix = prefix
        self.quota_bytes = quota_bytes

    def _prefixed(self, key: str) -> str:
        return f"{self.prefix}{key}"

    def _unprefixed(self, physical_key: str) -> str:
        return physical_key[len(self.prefix):]

    def _physical_keys(self) -> List[str]:
        match = f"{_escape_redis_glob(self.prefix)}*"
        return [_to_str(key) for key in self.redis.scan_iter(match=match)]

    def used_bytes(self) -> int:
        """Bytes taken by this tier's keys and values"""
        physical_keys = self._physical_keys()
        if not physical_keys:
            return 0

        # One round trip for all value sizes
        pipe = self.redis.pipeline(transaction=False)
        for physical_key in physical_keys:
            pipe.strlen(physical_key)
        sizes = pipe.execute()

        return sum(
            len(physical_key.encode("utf-8")) + int(size)
            for physical_key, size in zip(physical_keys, sizes)
        )

    def _check_quota(self, physical_key: str, serialized: str) -> None:
        if self.quota_bytes is None:
            return
        key_size = len(physical_key.encode("utf-8"))
        current = self.redis.strlen(physical_key)
        replaced = key_size + int(current) if current else 0
        needed = self.used_bytes() - replaced + key_size + len(serialized.encode("utf-8"))
        if needed > self.quota_bytes:
            raise StorageQuotaExceededError(
                f"Redis tier quota exceeded ({needed} > {self.quota_bytes} bytes). "
                "Consider using the SQLite tier for larger data."
            )

    async def get(self, key: str) -> Optional[CacheEntry]:
        try:
            raw = self.redis.get(self._prefixed(key))
            if raw is None:
                return None
            return CacheEntry.from_json(_to_str(raw))
        except (redis.RedisError, ValidationError, UnicodeDecodeError) as e:
            logger.error(f"Redis get error for {key}: {e}")
            return None

    async def set(self, key: str, entry: CacheEntry) -> None:
        physical_key = self._prefixed(key)
        try:
            serialized = entry.to_json()
        except (ValueError, TypeError) as e:
            logger.error(f"Cannot serialize Redis item {key}: {e}")
            raise StorageWriteError(f"Failed to serialize item: {key}") from e

        try:
            self._check_quota(physical_key, serialized)
            self.redis.set(physical_key, serialized)
        except redis.ResponseError as e:
            logger.error(f"Redis set error for {key}: {e}")
            if str(e).startswith("OOM"):
                raise StorageQuotaExceededError(
                    "Redis is out of memory. Consider using the SQLite tier for larger data."
                ) from e
            raise StorageWriteError(f"Failed to store item: {key}") from e
        except redis.RedisError as e:
            logger.error(f"Redis set error for {key}: {e}")
            raise StorageWriteError(f"Failed to store item: {key}") from e

    async def remove(self, key: str) -> None:
        try:
            self.redis.delete(self._prefixed(key))
        except redis.RedisError as e:
            logger.error(f"Redis remove error for {key}: {e}")
            raise StorageWriteError(f"Failed to remove item: {key}") from e

    async def clear(self) -> None:
        try:
            physical_keys = self._physical_keys()
            if physical_keys:
                self.redis.delete(*physical_keys)
        except redis.RedisError as e:
            logger.error(f"Redis clear error: {e}")
            raise StorageWriteError("Failed to clear Redis tier") from e

    async def keys(self, pattern: Optional[str] = None) -> List[str]:
        try:
            keys = [self._unprefixed(k) for k in self._physical_keys()]
            return match_keys(keys, pattern)
        except Exception as e:
            logger.error(f"Redis keys error for pattern {pattern!r}: {e}")
            return []


class SQLiteStorage(StorageStrategy):
    """
    SQLite tier: durable structured storage through aiosqlite.

    One database file holds one table (the "store") with a key column and
    the JSON envelope. The connection is opened lazily on first use,
    the schema is upgraded to the configured version via PRAGMA
    user_version, and the same connection is reused until close().

    If the database cannot be opened every operation fails with
    StorageUnavailableError (get() and keys() log it and report a miss).
    This tier never falls back to another medium on its own.
    """

    def __init__(
        self,
        db_path: str = "monday_ai_cache.db",
        store_name: str = "cache_store",
        db_version: int = 1
    ):
        """
        Initialize SQLite tier. No I/O happens until the first operation.

        Args:
            db_path: Path to the SQLite database file (":memory:" for tests)
            store_name: Table name, must be a plain identifier
            db_version: Schema version stored in PRAGMA user_version
        """
        if not _IDENTIFIER.match(store_name):
            raise ValueError(f"Invalid store name: {store_name!r}")
        self.db_path = db_path
        self.store_name = store_name
        self.db_version = db_version
        self._db: Optional[aiosqlite.Connection] = None
        self._open_lock = asyncio.Lock()

    async def _get_db(self) -> aiosqlite.Connection:
        """Open (and upgrade) the database once, then reuse the connection"""
        if self._db is not None:
            return self._db

        async with self._open_lock:
            if self._db is not None:
                return self._db

            db = None
            try:
                db = await aiosqlite.connect(self.db_path)
                async with db.execute("PRAGMA user_version") as cursor:
                    row = await cursor.fetchone()
                current_version = row[0] if row else 0

                if current_version < self.db_version:
                    await self._upgrade(db)

                self._db = db
                return db

            except (sqlite3.Error, OSError) as e:
                logger.error(f"Could not open SQLite database {self.db_path}: {e}")
                if db is not None:
                    await db.close()
                raise StorageUnavailableError(
                    f"Could not open SQLite database: {self.db_path}"
                ) from e

    async def _upgrade(self, db: aiosqlite.Connection) -> None:
        await db.execute(
            f"CREATE TABLE IF NOT EXISTS {self.store_name} ("
            "key TEXT PRIMARY KEY, "
            "value TEXT NOT NULL)"
        )
        await db.execute(f"PRAGMA user_version = {int(self.db_version)}")
        await db.commit()
        logger.info(f"SQLite store {self.store_name} ready (version {self.db_version})")

    async def get(self, key: str) -> Optional[CacheEntry]:
        try:
            db = await self._get_db()
            async with db.execute(
                f"SELECT value FROM {self.store_name} WHERE key = ?", (key,)
            ) as cursor:
                row = await cursor.fetchone()
            if row is None:
                return None
            return CacheEntry.from_json(row[0])
        except Exception as e:
            logger.error(f"Error retrieving item from SQLite: {key}: {e}")
            return None

    async def set(self, key: str, entry: CacheEntry) -> None:
        try:
            serialized = entry.to_json()
        except (ValueError, TypeError) as e:
            logger.error(f"Cannot serialize SQLite item {key}: {e}")
            raise StorageWriteError(f"Failed to serialize item: {key}") from e

        db = await self._get_db()
        try:
            await db.execute(
                f"INSERT OR REPLACE INTO {self.store_name} (key, value) VALUES (?, ?)",
                (key, serialized),
            )
            await db.commit()
        except sqlite3.Error as e:
            logger.error(f"Error storing item in SQLite: {key}: {e}")
            raise StorageWriteError(f"Failed to store item: {key}") from e

    async def remove(self, key: str) -> None:
        db = await self._get_db()
        try:
            await db.execute(f"DELETE FROM {self.store_name} WHERE key = ?", (key,))
            await db.commit()
        except sqlite3.Error as e:
            logger.error(f"Error removing item from SQLite: {key}: {e}")
            raise StorageWriteError(f"Failed to remove item: {key}") from e

    async def clear(self) -> None:
        db = await self._get_db()
        try:
            await db.execute(f"DELETE FROM {self.store_name}")
            await db.commit()
        except sqlite3.Error as e:
            logger.error(f"Error clearing SQLite store: {e}")
            raise StorageWriteError("Failed to clear SQLite store") from e

    async def keys(self, pattern: Optional[str] = None) -> List[str]:
        try:
            db = await self._get_db()
            async with db.execute(f"SELECT key FROM {self.store_name}") as cursor:
                rows = await cursor.fetchall()
            return match_keys([str(row[0]) for row in rows], pattern)
        except Exception as e:
            logger.error(f"Error getting keys from SQLite: {e}")
            return []

    async def close(self) -> None:
        """Close the memoized connection; the next operation reopens it"""
        if self._db is not None:
            await self._db.close()
            self._db = None

    async def delete_database(self) -> None:
        """
        Close the connection and delete the whole database file.

        Used for full teardown; not part of the common tier contract.
        """
        await self.close()
        if self.db_path == ":memory:":
            return
        for suffix in ("", "-journal", "-wal", "-shm"):
            try:
                os.remove(self.db_path + suffix)
            except FileNotFoundError:
                continue
            except OSError as e:
                logger.error(f"Error deleting SQLite database {self.db_path}: {e}")
                raise StorageWriteError(
                    f"Failed to delete SQLite database: {self.db_path}"
                ) from e
