"""
Explicit construction of the cache service.

Nothing here is a module-level singleton: every call builds a new
CacheService with its own tiers, so independent caches (one per test,
one per worker) never interfere.

Pattern: Dependency Injection
- Callers receive a CacheService instead of importing a global
- Tests build services from fake tiers directly
"""

import logging
from typing import Callable, Optional

from dashboard_app.cache.factory import StorageFactory
from dashboard_app.cache.models import CacheStorage
from dashboard_app.config import Settings, settings as default_settings
from dashboard_app.connectivity.monitor import ConnectivityMonitor
from dashboard_app.monitoring import setup_logging
from dashboard_app.services.cache_service import CacheService

logger = logging.getLogger(__name__)


def configure_logging(settings: Optional[Settings] = None) -> None:
    """Configure root logging from settings; call once from the entry point"""
    settings = settings or default_settings
    setup_logging(settings.log_level, log_file=settings.log_file)
    logger.info(f"Dashboard cache logging configured ({settings.environment})")


def build_cache_service(
    settings: Optional[Settings] = None,
    connectivity: Optional[ConnectivityMonitor] = None,
    clock: Optional[Callable[[], int]] = None
) -> CacheService:
    """
    Build a CacheService with all three tiers from settings.
    
    Args:
        settings: Settings to use (module settings by default)
        connectivity: Online/offline source shared with the host
        clock: Epoch-millisecond clock, for tests
        
    Returns:
        New CacheService instance
    """
    settings = settings or default_settings
    return CacheService(
        memory_storage=StorageFactory.create(CacheStorage.MEMORY, settings),
        local_storage=StorageFactory.create(CacheStorage.REDIS, settings),
        durable_storage=StorageFactory.create(CacheStorage.SQLITE, settings),
        default_ttl=settings.cache_default_ttl_ms,
        default_storage=CacheStorage(settings.cache_default_storage),
        persist_on_set=settings.cache_persist_on_set,
        connectivity=connectivity,
        clock=clock,
    )
