"""
Test configuration and fixtures for the dashboard cache.
This centralizes all test setup, making individual tests clean.
"""

import asyncio

import fakeredis
import pytest

from dashboard_app.cache.strategies import MemoryStorage, RedisStorage, SQLiteStorage
from dashboard_app.connectivity.monitor import ConnectivityMonitor
from dashboard_app.services.cache_service import CacheService

START_MS = 1_700_000_000_000


class FakeClock:
    """Epoch-millisecond clock that only moves when told to"""
    
    def __init__(self, now: int = START_MS):
        self.now = now
    
    def __call__(self) -> int:
        return self.now
    
    def advance(self, ms: int) -> None:
        self.now += ms


@pytest.fixture(scope="function")
def clock():
    return FakeClock()


@pytest.fixture(scope="function")
def redis_client():
    """Fresh fakeredis server per test, no real Redis required"""
    return fakeredis.FakeRedis(server=fakeredis.FakeServer())


@pytest.fixture(scope="function")
def memory_tier():
    return MemoryStorage()


@pytest.fixture(scope="function")
def redis_tier(redis_client):
    return RedisStorage(redis_client, prefix="monday_ai_", quota_bytes=5 * 1024 * 1024)


@pytest.fixture(scope="function")
def sqlite_tier(tmp_path):
    """
    SQLite tier on a temporary file.
    The connection is closed after each test.
    """
    tier = SQLiteStorage(db_path=str(tmp_path / "cache.db"))
    yield tier
    asyncio.run(tier.close())


@pytest.fixture(scope="function")
def connectivity():
    return ConnectivityMonitor(online=True)


@pytest.fixture(scope="function")
def cache_service(memory_tier, redis_tier, sqlite_tier, connectivity, clock):
    """CacheService over the three test tiers with a fake clock"""
    return CacheService(
        memory_tier,
        redis_tier,
        sqlite_tier,
        connectivity=connectivity,
        clock=clock,
    )
