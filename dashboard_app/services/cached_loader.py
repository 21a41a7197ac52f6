import asyncio
import logging
from typing import Any, Awaitable, Callable, Dict, Optional

from dashboard_app.cache.keys import namespaced_key
from dashboard_app.cache.models import CacheOptions
from dashboard_app.services.cache_service import CacheService

logger = logging.getLogger(__name__)

DEFAULT_LOAD_TTL_MS = 5 * 60 * 1000
DEFAULT_PREFETCH_TTL_MS = 15 * 60 * 1000

Fetcher = Callable[[], Awaitable[Any]]
Transform = Callable[[Any], Any]


class CachedDataLoader:
    """
    Cache-Aside loader for API wrapper services.
    
    Flow for load():
    1. Return the cached value if there is one (unless force=True)
    2. Join an in-flight fetch for the same key, or start one
    3. Transform and cache the fetched value
    4. If the fetch fails and persist=True, fall back to the persisted copy
    
    Deduplication is per loader instance, so two loaders never share
    in-flight requests.
    """
    
    def __init__(self, cache: CacheService):
        self.cache = cache
        self._in_flight: Dict[str, asyncio.Task] = {}
    
    async def load(
        self,
        key: str,
        fetch_fn: Fetcher,
        *,
        namespace: Optional[str] = None,
        ttl: int = DEFAULT_LOAD_TTL_MS,
        persist: bool = False,
        transform: Optional[Transform] = None,
        force: bool = False,
        deduplicate: bool = True
    ) -> Any:
        """
        Get a value from the cache or fetch it.
        
        Raises:
            Exception: Whatever fetch_fn raised, when no persisted copy exists
        """
        if not force:
            cached = await self.cache.get(key, namespace)
            if cached is not None:
                logger.debug(f"Using cached data for {key}")
                return cached
        
        try:
            return await self._fetch(
                key, fetch_fn, namespace, ttl, persist, transform,
                deduplicate=deduplicate and not force,
                request_key=namespaced_key(key, namespace or "default"),
            )
        except Exception as e:
            logger.error(f"Error fetching data for {key}: {e}")
            if persist:
                persisted = await self.cache.load_persisted(key, namespace)
                if persisted is not None:
                    logger.info(f"Using persisted data for {key} due to fetch error")
                    return persisted
            raise
    
    async def prefetch(
        self,
        key: str,
        fetch_fn: Fetcher,
        *,
        namespace: Optional[str] = None,
        ttl: int = DEFAULT_PREFETCH_TTL_MS,
        persist: bool = False,
        transform: Optional[Transform] = None,
        deduplicate: bool = True
    ) -> None:
        """Warm the cache for a key that will probably be needed soon"""
        if await self.cache.get(key, namespace) is not None:
            logger.debug(f"Data already in cache for {key}")
            return
        
        try:
            await self._fetch(
                key, fetch_fn, namespace, ttl, persist, transform,
                deduplicate=deduplicate,
                request_key="prefetch:" + namespaced_key(key, namespace or "default"),
            )
        except Exception as e:
            logger.warning(f"Prefetch failed for {key}: {e}")
    
    async def _fetch(
        self,
        key: str,
        fetch_fn: Fetcher,
        namespace: Optional[str],
        ttl: int,
        persist: bool,
        transform: Optional[Transform],
        *,
        deduplicate: bool,
        request_key: str
    ) -> Any:
        if deduplicate and request_key in self._in_flight:
            logger.debug(f"Deduplicating request for {key}")
            return await asyncio.shield(self._in_flight[request_key])
        
        async def fetch_and_cache() -> Any:
            logger.debug(f"Fetching data for {key}")
            data = await fetch_fn()
            if transform is not None:
                data = transform(data)
            await self.cache.set(
                key, data, CacheOptions(ttl=ttl, persist_on_set=persist), namespace
            )
            return data
        
        if not deduplicate:
            return await fetch_and_cache()
        
        task = asyncio.ensure_future(fetch_and_cache())
        self._in_flight[request_key] = task
        task.add_done_callback(lambda done: self._forget(request_key, done))
        return await asyncio.shield(task)

    def _forget(self, request_key: str, task: asyncio.Task) -> None:
        if self._in_flight.get(request_key) is task:
            del self._in_flight[request_key]

    def in_flight_count(self) -> int:
        return len(self._in_flight)
