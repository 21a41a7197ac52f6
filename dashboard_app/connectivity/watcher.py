"""
Connectivity Watcher

Polls a probe and feeds the result into a ConnectivityMonitor, so the
cache replays its offline queue as soon as the network is back.

Architecture:
- Probe is any async callable returning True when online
- One probe per poll interval
- Transitions are forwarded to the monitor, which notifies CacheService
- Runs in-process, as a task next to the CacheService it drives
"""

import asyncio
import functools
import logging
import signal
from typing import TYPE_CHECKING, Awaitable, Callable, List, Optional

from dashboard_app.config import Settings, settings as default_settings
from dashboard_app.connectivity.monitor import ConnectivityMonitor, http_probe

if TYPE_CHECKING:
    from dashboard_app.services.cache_service import CacheService

logger = logging.getLogger(__name__)

Probe = Callable[[], Awaitable[bool]]


class ConnectivityWatcher:
    """
    Background loop that keeps a ConnectivityMonitor up to date.
    """
    
    def __init__(
        self,
        monitor: ConnectivityMonitor,
        probe: Probe,
        poll_interval: float = 10.0
    ):
        """
        Initialize watcher with dependencies.
        
        Args:
            monitor: Monitor to update
            probe: Async callable, True when the network is reachable
            poll_interval: Seconds between probes
        """
        self.monitor = monitor
        self.probe = probe
        self.poll_interval = poll_interval
        self.running = False
        self.checks = 0
        self._stop_event = asyncio.Event()
    
    async def check_once(self) -> bool:
        """Run the probe once and push the result to the monitor"""
        try:
            online = await self.probe()
        except Exception as e:
            logger.error(f"Connectivity probe raised: {e}")
            online = False
        
        self.checks += 1
        await self.monitor.set_online(online)
        return online
    
    async def start(self, install_signal_handlers: bool = True):
        """
        Probe until stop() is called.
        
        With install_signal_handlers, SIGINT and SIGTERM stop the loop
        through the running event loop, so shutdown does not wait for the
        current poll interval to run out.
        """
        self.running = True
        self._stop_event.clear()
        logger.info(f"Connectivity watcher started (interval {self.poll_interval}s)")
        
        installed = self._install_signal_handlers() if install_signal_handlers else []
        
        try:
            while self.running:
                try:
                    await self.check_once()
                except asyncio.CancelledError:
                    logger.info("Watcher task cancelled")
                    break
                except Exception as e:
                    # A failing listener must not kill the watcher
                    logger.error(f"Error while updating connectivity: {e}")
                
                if not self.running:
                    break
                try:
                    await asyncio.wait_for(self._stop_event.wait(), timeout=self.poll_interval)
                except asyncio.TimeoutError:
                    pass
        finally:
            loop = asyncio.get_running_loop()
            for signum in installed:
                loop.remove_signal_handler(signum)
        
        logger.info("Connectivity watcher stopped")
    
    def _install_signal_handlers(self) -> List[int]:
        loop = asyncio.get_running_loop()
        installed = []
        for signum in (signal.SIGINT, signal.SIGTERM):
            try:
                loop.add_signal_handler(signum, self._signal_handler, signum)
            except NotImplementedError:
                logger.warning(f"Signal handling for {signum} not supported on this platform")
                continue
            installed.append(signum)
        return installed
    
    def _signal_handler(self, signum):
        """Handle signals for graceful shutdown"""
        logger.info(f"Received signal {signum}. Shutting down gracefully...")
        self.stop()
    
    def stop(self):
        """Stop the watcher"""
        self.running = False
        self._stop_event.set()


def connectivity_watcher_for(
    service: "CacheService",
    settings: Optional[Settings] = None,
    probe: Optional[Probe] = None
) -> ConnectivityWatcher:
    """
    Watcher that drives the connectivity of an existing CacheService.
    
    The embedding application owns both: it starts the watcher as a task
    next to the service, and queued offline operations are replayed as
    soon as the probe reports the network back.
    
    Args:
        service: Service whose monitor the watcher updates
        settings: Probe URL, timeout and poll interval (module settings by default)
        probe: Probe to use instead of an HTTP check of the probe URL
    """
    settings = settings or default_settings
    if probe is None:
        probe = functools.partial(
            http_probe,
            settings.connectivity_probe_url,
            settings.connectivity_probe_timeout,
        )
    return ConnectivityWatcher(
        service.connectivity,
        probe,
        poll_interval=settings.connectivity_poll_interval,
    )
