"""
Cache exception hierarchy.

All cache errors inherit from CacheError so callers that treat any cache
failure as "fall through to the network" can catch a single type.
"""


class CacheError(Exception):
    """Base exception for all cache errors."""


class StorageError(CacheError):
    """Raised when a storage tier fails."""


class StorageWriteError(StorageError):
    """Raised when a tier rejects a write, remove or clear."""


class StorageQuotaExceededError(StorageWriteError):
    """Raised when the Redis tier has no room left for a write."""


class StorageUnavailableError(StorageError):
    """Raised when a storage medium cannot be opened or reached."""
