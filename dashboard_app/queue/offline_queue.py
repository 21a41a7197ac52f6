"""
FIFO queue of operations deferred while offline.
"""

from collections import deque
import logging
from typing import Any, Awaitable, Callable, Deque, Optional

from .models import QueuedOperation

logger = logging.getLogger(__name__)


class OfflineQueue:
    """
    In-memory FIFO of QueuedOperation using Python deque.
    
    Lives as long as its owner; nothing is persisted across restarts and
    nothing coordinates draining between separate processes.
    """
    
    def __init__(self):
        """Initialize an empty queue"""
        self._queue: Deque[QueuedOperation] = deque()
        self._draining = False
    
    def enqueue(
        self,
        operation: Callable[[], Awaitable[Any]],
        label: Optional[str] = None
    ) -> QueuedOperation:
        """Append an operation to the tail of the queue"""
        item = QueuedOperation(operation=operation, label=label)
        self._queue.append(item)
        logger.debug(f"Queued offline operation {item.name} ({len(self._queue)} pending)")
        return item
    
    async def drain(self) -> int:
        """
        Run queued operations in FIFO order.
        
        A failing operation goes back to the tail of the queue and draining
        stops there, so it is retried on the next drain. Returns the number
        of operations that completed. A drain already in progress makes
        this call a no-op.
        """
        if self._draining:
            return 0
        
        self._draining = True
        processed = 0
        try:
            while self._queue:
                item = self._queue.popleft()
                item.attempts += 1
                try:
                    await item.operation()
                except Exception as e:
                    logger.error(
                        f"Error processing offline operation {item.name} "
                        f"(attempt {item.attempts}): {e}"
                    )
                    self._queue.append(item)
                    break
                processed += 1
        finally:
            self._draining = False
        
        if processed:
            logger.info(f"Replayed {processed} offline operations, {len(self._queue)} left")
        return processed
    
    def clear(self) -> None:
        self._queue.clear()
    
    def __len__(self) -> int:
        return len(self._queue)
