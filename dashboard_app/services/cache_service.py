import asyncio
import logging
from typing import Any, Awaitable, Callable, List, Mapping, Optional, Set, Tuple, Union

from dashboard_app.cache.keys import namespaced_key, persisted_key
from dashboard_app.cache.models import CacheEntry, CacheOptions, CacheStorage, now_ms
from dashboard_app.cache.strategies import RedisStorage, SQLiteStorage, StorageStrategy
from dashboard_app.connectivity.monitor import ConnectivityMonitor
from dashboard_app.exceptions import StorageError
from dashboard_app.queue.offline_queue import OfflineQueue

logger = logging.getLogger(__name__)

DEFAULT_TTL_MS = 5 * 60 * 1000
ESTIMATED_ENTRY_BYTES = 1024


class CacheService:
    """
    One logical cache over three storage tiers.

    Tiers are searched memory -> Redis -> SQLite. A hit in a slower tier
    is copied into memory. Expired entries are removed from whichever tier
    served them and never returned.

    Tiers are injected (not created here), so tests and callers decide
    which media back the cache:
    - memory_storage: fastest, lost on restart
    - local_storage: small shared key/value tier (Redis)
    - durable_storage: durable tier, also holds persisted entries (SQLite)

    Concurrent callers are not serialized: two callers that both miss and
    both set() the same key simply write twice.
    """

    def __init__(
        self,
        memory_storage: StorageStrategy,
        local_storage: StorageStrategy,
        durable_storage: StorageStrategy,
        *,
        default_ttl: int = DEFAULT_TTL_MS,
        default_storage: CacheStorage = CacheStorage.MEMORY,
        persist_on_set: bool = False,
        connectivity: Optional[ConnectivityMonitor] = None,
        clock: Optional[Callable[[], int]] = None
    ):
        """
        Initialize cache service with its tiers.

        Args:
            memory_storage: In-process tier
            local_storage: Redis tier
            durable_storage: SQLite tier
            default_ttl: TTL in milliseconds when set() gets none
            default_storage: Extra tier set() writes to besides memory
            persist_on_set: Whether set() also writes a persisted copy
            connectivity: Online/offline source; always online when omitted
            clock: Returns current epoch milliseconds
        """
        if default_ttl <= 0:
            raise ValueError(f"default_ttl must be positive, got {default_ttl}")

        self.memory_storage = memory_storage
        self.local_storage = local_storage
        self.durable_storage = durable_storage
        self.default_options = CacheOptions(
            ttl=default_ttl,
            storage=default_storage,
            persist_on_set=persist_on_set,
        )
        self.connectivity = connectivity or ConnectivityMonitor(online=True)
        self.clock = clock or now_ms
        self.offline_queue = OfflineQueue()
        self._pending_tasks: Set[asyncio.Task] = set()

        self.connectivity.subscribe(self._on_connectivity_change)

    def _tiers(self) -> List[Tuple[CacheStorage, StorageStrategy]]:
        return [
            (CacheStorage.MEMORY, self.memory_storage),
            (CacheStorage.REDIS, self.local_storage),
            (CacheStorage.SQLITE, self.durable_storage),
        ]

    def _storage_for(self, storage: CacheStorage) -> StorageStrategy:
        return dict(self._tiers())[storage]

    async def _read_tier(
        self,
        tier: CacheStorage,
        storage: StorageStrategy,
        key: str
    ) -> Optional[CacheEntry]:
        """Read one tier; a failing tier counts as a miss"""
        try:
            return await storage.get(key)
        except Exception as e:
            logger.error(f"Read from {tier.value} tier failed for {key}: {e}")
            return None

    async def _find_live_entry(
        self,
        key: str
    ) -> Optional[Tuple[CacheStorage, CacheEntry]]:
        """First tier holding an unexpired entry for key, without side effects"""
        now = self.clock()
        for tier, storage in self._tiers():
            entry = await self._read_tier(tier, storage, key)
            if entry is not None and not entry.is_expired(now):
                return tier, entry
        return None

    async def get(self, key: str, namespace: Optional[str] = None) -> Any:
        """
        Get a cached value.

        Args:
            key: Cache key
            namespace: Optional grouping, e.g. "board"

        Returns:
            The cached value, or None when no tier holds a live entry
        """
        cache_key = namespaced_key(key, namespace)

        for tier, storage in self._tiers():
            entry = await self._read_tier(tier, storage, cache_key)
            if entry is None:
                continue

            if entry.is_expired(self.clock()):
                logger.debug(f"Evicting expired {cache_key} from {tier.value} tier")
                try:
                    await storage.remove(cache_key)
                except StorageError as e:
                    logger.error(f"Evicting {cache_key} from {tier.value} tier failed: {e}")
                continue

            if tier != CacheStorage.MEMORY:
                # Promote so the next read is served from memory
                await self.memory_storage.set(cache_key, entry)
                logger.debug(f"Promoted {cache_key} from {tier.value} tier")
            return entry.data

        return None

    async def set(
        self,
        key: str,
        value: Any,
        options: Union[CacheOptions, Mapping[str, Any], None] = None,
        namespace: Optional[str] = None
    ) -> None:
        """
        Cache a value.

        Always writes memory. options.storage adds a write to the Redis or
        SQLite tier; options.persist_on_set adds an independent
        non-expiring copy (see persist()). options may be a CacheOptions or
        a plain mapping with the same fields.

        Raises:
            ValueError: If the TTL is not positive or options are invalid
            TypeError: If options is neither CacheOptions nor a mapping
            StorageWriteError: If a tier rejects the write
        """
        cache_key = namespaced_key(key, namespace)
        merged = self._merge_options(options)

        now = self.clock()
        entry = CacheEntry(data=value, expires=now + merged.ttl, created_at=now)

        if merged.storage != CacheStorage.MEMORY:
            await self._storage_for(merged.storage).set(cache_key, entry)
        await self.memory_storage.set(cache_key, entry)

        if merged.persist_on_set:
            await self.persist(key, value, namespace)

    def _merge_options(
        self,
        options: Union[CacheOptions, Mapping[str, Any], None]
    ) -> CacheOptions:
        if isinstance(options, Mapping):
            options = CacheOptions.model_validate(options)
        elif options is not None and not isinstance(options, CacheOptions):
            raise TypeError(
                f"options must be CacheOptions or a mapping, got {type(options).__name__}"
            )

        merged = self.default_options
        if options is not None:
            merged = merged.model_copy(update=options.model_dump(exclude_none=True))
        if merged.ttl is None or merged.ttl <= 0:
            raise ValueError(f"ttl must be positive, got {merged.ttl}")
        return merged

    async def invalidate(self, key: str, namespace: Optional[str] = None) -> None:
        """Remove a key from every tier"""
        cache_key = namespaced_key(key, namespace)
        await asyncio.gather(*(storage.remove(cache_key) for _, storage in self._tiers()))

    async def invalidate_pattern(self, pattern: str, namespace: Optional[str] = None) -> None:
        """
        Remove every key matching a glob pattern from every tier.

        Keys are collected from all tiers first, so a key that lives in
        only one tier is still removed everywhere. Not atomic: a concurrent
        get() may still see a tier that has not been processed yet.
        """
        scoped_pattern = namespaced_key(pattern, namespace)

        matched: Set[str] = set()
        for tier, storage in self._tiers():
            try:
                matched.update(await storage.keys(scoped_pattern))
            except Exception as e:
                logger.error(f"Listing {tier.value} tier for {scoped_pattern!r} failed: {e}")

        await asyncio.gather(*(
            storage.remove(cache_key)
            for cache_key in matched
            for _, storage in self._tiers()
        ))
        logger.debug(f"Invalidated {len(matched)} keys matching {scoped_pattern!r}")

    async def persist(self, key: str, value: Any, namespace: Optional[str] = None) -> None:
        """Store a non-expiring copy in the durable tier, apart from the TTL cache"""
        entry = CacheEntry(data=value, expires=None, created_at=self.clock())
        await self.durable_storage.set(persisted_key(key, namespace), entry)

    async def is_persisted(self, key: str, namespace: Optional[str] = None) -> bool:
        entry = await self._read_tier(
            CacheStorage.SQLITE, self.durable_storage, persisted_key(key, namespace)
        )
        return entry is not None

    async def load_persisted(self, key: str, namespace: Optional[str] = None) -> Any:
        entry = await self._read_tier(
            CacheStorage.SQLITE, self.durable_storage, persisted_key(key, namespace)
        )
        return entry.data if entry is not None else None

    async def clear_all(self) -> None:
        """Clear every tier, persisted entries included"""
        await asyncio.gather(*(storage.clear() for _, storage in self._tiers()))
        logger.info("Cleared all cache tiers")

    async def get_ttl(self, key: str, namespace: Optional[str] = None) -> Optional[int]:
        """
        Milliseconds until the key expires.

        Returns None when no tier holds a live entry or the entry never
        expires.
        """
        found = await self._find_live_entry(namespaced_key(key, namespace))
        if found is None:
            return None
        _, entry = found
        return entry.remaining(self.clock())

    async def extend_ttl(
        self,
        key: str,
        additional_ms: int,
        namespace: Optional[str] = None
    ) -> bool:
        """
        Push back the expiry of a cached key.

        The extended entry is rewritten into every tier that currently
        holds the key. A non-expiring entry counts as extended.

        Returns:
            True if a live entry was found, False otherwise (nothing written)
        """
        cache_key = namespaced_key(key, namespace)
        found = await self._find_live_entry(cache_key)
        if found is None:
            return False

        _, entry = found
        if entry.expires is None:
            return True

        extended = entry.extended(additional_ms)
        for tier, storage in self._tiers():
            if await self._read_tier(tier, storage, cache_key) is not None:
                await storage.set(cache_key, extended)
        return True

    async def purge_expired(self) -> int:
        """Remove expired entries from every tier; returns how many were removed"""
        removed = 0
        now = self.clock()
        for tier, storage in self._tiers():
            for cache_key in await storage.keys():
                entry = await self._read_tier(tier, storage, cache_key)
                if entry is not None and entry.is_expired(now):
                    await storage.remove(cache_key)
                    removed += 1
        if removed:
            logger.info(f"Purged {removed} expired cache entries")
        return removed

    async def get_cache_size(self) -> int:
        """
        Approximate cache size in bytes.

        The Redis tier reports what it actually stores; the memory and
        SQLite tiers are estimated at 1 KiB per key.
        """
        total = 0
        for tier, storage in self._tiers():
            if isinstance(storage, RedisStorage):
                try:
                    total += storage.used_bytes()
                except Exception as e:
                    logger.error(f"Sizing {tier.value} tier failed: {e}")
            else:
                total += len(await storage.keys()) * ESTIMATED_ENTRY_BYTES
        return total

    def queue_offline_operation(
        self,
        operation: Callable[[], Awaitable[Any]],
        label: Optional[str] = None
    ) -> None:
        """
        Run operation now when online, otherwise keep it for replay.

        Online runs are fire-and-forget: scheduled on the running event
        loop, or run to completion when no loop is running. Failures are
        logged.
        """
        if not self.is_online():
            self.offline_queue.enqueue(operation, label)
            return

        try:
            loop = asyncio.get_running_loop()
        except RuntimeError:
            loop = None

        if loop is None:
            try:
                asyncio.run(operation())
            except Exception as e:
                logger.error(f"Error executing operation: {e}")
            return

        task = loop.create_task(operation())
        self._pending_tasks.add(task)
        task.add_done_callback(self._operation_done)

    def _operation_done(self, task: asyncio.Task) -> None:
        self._pending_tasks.discard(task)
        if task.cancelled():
            return
        error = task.exception()
        if error is not None:
            logger.error(f"Error executing operation: {error}")

    async def process_offline_queue(self) -> int:
        """Replay queued operations in FIFO order; returns how many succeeded"""
        return await self.offline_queue.drain()

    async def _on_connectivity_change(self, online: bool) -> None:
        if online and len(self.offline_queue):
            logger.info(f"Processing {len(self.offline_queue)} queued offline operations")
            await self.process_offline_queue()

    def get_offline_queue_length(self) -> int:
        return len(self.offline_queue)

    def is_online(self) -> bool:
        return self.connectivity.is_online()

    async def close(self) -> None:
        """Release tier connections and stop listening for connectivity changes"""
        self.connectivity.unsubscribe(self._on_connectivity_change)
        if isinstance(self.durable_storage, SQLiteStorage):
            await self.durable_storage.close()
