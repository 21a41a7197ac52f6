"""
Data models for cache entries and cache options.
"""

import time
from enum import Enum
from typing import Any, Optional

from pydantic import BaseModel, ConfigDict, Field


def now_ms() -> int:
    """Current epoch time in milliseconds"""
    return int(time.time() * 1000)


class CacheStorage(str, Enum):
    """Available storage tiers, fastest first"""
    MEMORY = "memory"
    REDIS = "redis"
    SQLITE = "sqlite"


class CacheEntry(BaseModel):
    """
    Envelope stored in every tier.
    
    Serialized as {"data": ..., "expires": ..., "createdAt": ...}. The field
    names are the on-disk format of the Redis and SQLite tiers, so entries
    written by one release stay readable by the next.
    """
    
    data: Any = Field(..., description="Cached payload, opaque to the cache")
    expires: Optional[int] = Field(
        None, description="Absolute expiry in epoch ms, None for never"
    )
    created_at: int = Field(
        default_factory=now_ms, alias="createdAt", description="Creation time in epoch ms"
    )
    
    model_config = ConfigDict(frozen=True, populate_by_name=True)
    
    def is_expired(self, now: int) -> bool:
        return self.expires is not None and self.expires <= now
    
    def remaining(self, now: int) -> Optional[int]:
        """Milliseconds left before expiry, None for entries that never expire"""
        if self.expires is None:
            return None
        return max(0, self.expires - now)
    
    def extended(self, additional_ms: int) -> "CacheEntry":
        """Copy of this entry with the expiry pushed back"""
        if self.expires is None:
            return self
        return self.model_copy(update={"expires": self.expires + additional_ms})
    
    def to_json(self) -> str:
        return self.model_dump_json(by_alias=True)
    
    @classmethod
    def from_json(cls, raw: str) -> "CacheEntry":
        return cls.model_validate_json(raw)


class CacheOptions(BaseModel):
    """
    Per-call options for CacheService.set().
    
    Unset fields fall back to the service defaults. A plain mapping such as
    {"ttl": 60000, "persistOnSet": True} is accepted too.
    """
    
    ttl: Optional[int] = Field(None, description="Time to live in milliseconds")
    storage: Optional[CacheStorage] = Field(
        None, description="Extra tier to write besides memory"
    )
    persist_on_set: Optional[bool] = Field(
        None,
        alias="persistOnSet",
        description="Also write a non-expiring copy to the SQLite tier"
    )
    
    model_config = ConfigDict(populate_by_name=True)
