"""
Cache module for the dashboard.
Implements Strategy Pattern for the memory, Redis and SQLite tiers.
"""

from .models import CacheEntry, CacheOptions, CacheStorage
from .strategies import StorageStrategy, MemoryStorage, RedisStorage, SQLiteStorage
from .factory import StorageFactory

__all__ = [
    "CacheEntry",
    "CacheOptions",
    "CacheStorage",
    "StorageStrategy",
    "MemoryStorage",
    "RedisStorage",
    "SQLiteStorage",
    "StorageFactory",
]
