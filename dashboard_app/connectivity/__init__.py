"""
Connectivity tracking.
Decides when the cache is online and triggers offline queue replay.
"""

from .monitor import ConnectivityMonitor, http_probe
from .watcher import ConnectivityWatcher, connectivity_watcher_for

__all__ = [
    "ConnectivityMonitor",
    "ConnectivityWatcher",
    "connectivity_watcher_for",
    "http_probe",
]
