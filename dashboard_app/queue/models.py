"""
Data models for queued offline operations.
"""

from datetime import datetime, timezone
from typing import Any, Awaitable, Callable, Optional

from pydantic import BaseModel, Field


class QueuedOperation(BaseModel):
    """
    A deferred zero-argument async operation.
    
    Created when a write is attempted while offline, replayed once the
    connection comes back.
    """
    
    operation: Callable[[], Awaitable[Any]] = Field(..., description="Coroutine function to run")
    label: Optional[str] = Field(None, description="Name used in log messages")
    enqueued_at: datetime = Field(
        default_factory=lambda: datetime.now(timezone.utc),
        description="When the operation was queued"
    )
    attempts: int = Field(0, description="Replay attempts so far")
    
    @property
    def name(self) -> str:
        return self.label or getattr(self.operation, "__name__", repr(self.operation))
