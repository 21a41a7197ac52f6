"""
Factory for creating storage tier instances.
Every call builds a fresh tier; nothing is cached at module level.
"""

import logging
from typing import Optional

import redis

from .models import CacheStorage
from .strategies import MemoryStorage, RedisStorage, SQLiteStorage, StorageStrategy
from dashboard_app.config import Settings, settings as default_settings
from dashboard_app.exceptions import StorageUnavailableError

logger = logging.getLogger(__name__)


class StorageFactory:
    """
    Simple factory for creating storage tiers.
    
    Gets configuration from a Settings object (the module settings by
    default), so tests can pass their own.
    """
    
    @classmethod
    def create(
        cls,
        backend: CacheStorage,
        settings: Optional[Settings] = None
    ) -> StorageStrategy:
        """
        Create a storage tier.
        
        Args:
            backend: Type of storage tier (from enum)
            settings: Settings to read connection details from
            
        Returns:
            New StorageStrategy instance
        """
        settings = settings or default_settings
        
        if backend == CacheStorage.MEMORY:
            logger.debug("In-memory tier initialized")
            return MemoryStorage()
        
        if backend == CacheStorage.REDIS:
            return cls._create_redis(settings)
        
        if backend == CacheStorage.SQLITE:
            # Opened lazily on first use
            logger.debug(f"SQLite tier configured at {settings.sqlite_path}")
            return SQLiteStorage(
                db_path=settings.sqlite_path,
                store_name=settings.sqlite_store_name,
                db_version=settings.sqlite_schema_version,
            )
        
        raise ValueError(f"Unknown storage backend: {backend}")
    
    @classmethod
    def _create_redis(cls, settings: Settings) -> StorageStrategy:
        try:
            redis_client = redis.from_url(
                settings.redis_url,
                decode_responses=False,
                socket_connect_timeout=2,
                socket_timeout=2,
            )
            
            # Test connection immediately
            redis_client.ping()
            
        except redis.RedisError as e:
            if not settings.redis_fallback_to_memory:
                raise StorageUnavailableError(
                    f"Redis unreachable at {settings.redis_url}"
                ) from e
            logger.warning(f"Redis connection failed: {e}. Falling back to in-memory tier")
            return MemoryStorage()
        
        logger.info("Redis tier initialized")
        return RedisStorage(
            redis_client,
            prefix=settings.redis_key_prefix,
            quota_bytes=settings.redis_quota_bytes,
        )
