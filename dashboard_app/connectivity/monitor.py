"""
Online/offline state shared between the host environment and the cache.
"""

import asyncio
import logging
from typing import Awaitable, Callable, List

import requests

logger = logging.getLogger(__name__)

Listener = Callable[[bool], Awaitable[None]]


class ConnectivityMonitor:
    """
    Holds the current online flag and notifies listeners on transitions.
    
    The monitor never probes the network itself. Whoever knows about
    connectivity (ConnectivityWatcher, a test, an embedding application)
    calls set_online(); CacheService subscribes and replays its offline
    queue when the flag turns True.
    """
    
    def __init__(self, online: bool = True):
        self._online = online
        self._listeners: List[Listener] = []
    
    def is_online(self) -> bool:
        return self._online
    
    def subscribe(self, listener: Listener) -> None:
        if listener not in self._listeners:
            self._listeners.append(listener)
    
    def unsubscribe(self, listener: Listener) -> None:
        if listener in self._listeners:
            self._listeners.remove(listener)
    
    async def set_online(self, online: bool) -> None:
        """Update the flag; listeners run only when the state actually changes"""
        if online == self._online:
            return
        
        self._online = online
        if online:
            logger.info("Network connection restored")
        else:
            logger.warning("Network connection lost. Operations will be queued")
        
        for listener in list(self._listeners):
            await listener(online)


async def http_probe(url: str, timeout: float = 3.0) -> bool:
    """
    Report whether url answers at all.
    
    Any HTTP response counts as online; only transport errors count as
    offline. The blocking request runs in a worker thread.
    """
    def _check() -> bool:
        try:
            requests.head(url, timeout=timeout, allow_redirects=True)
            return True
        except requests.RequestException as e:
            logger.debug(f"Connectivity probe to {url} failed: {e}")
            return False
    
    return await asyncio.to_thread(_check)
