"""
Offline operation queue.
Holds deferred cache writes until connectivity returns.
"""

from .models import QueuedOperation
from .offline_queue import OfflineQueue

__all__ = [
    "QueuedOperation",
    "OfflineQueue",
]
