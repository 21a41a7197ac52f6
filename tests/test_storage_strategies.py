"""
Tests for the memory, Redis and SQLite storage tiers.
"""

import asyncio
import os

import pytest
import redis

from dashboard_app.cache.models import CacheEntry
from dashboard_app.cache.strategies import MemoryStorage, RedisStorage, SQLiteStorage
from dashboard_app.exceptions import (
    StorageQuotaExceededError,
    StorageUnavailableError,
    StorageWriteError,
)

TIERS = ["memory_tier", "redis_tier", "sqlite_tier"]


def make_entry(data, expires=None, created_at=1000):
    return CacheEntry(data=data, expires=expires, created_at=created_at)


@pytest.mark.parametrize("tier_name", TIERS)
class TestStorageContract:
    """Every tier honours the same five operations"""

    def test_set_and_get_round_trip(self, tier_name, request):
        tier = request.getfixturevalue(tier_name)
        entry = make_entry({"id": 42, "name": "Roadmap"}, expires=5000)

        asyncio.run(tier.set("board:42", entry))
        result = asyncio.run(tier.get("board:42"))

        assert result == entry
        assert result.data == {"id": 42, "name": "Roadmap"}
        assert result.expires == 5000
        assert result.created_at == 1000

    def test_get_missing_key(self, tier_name, request):
        tier = request.getfixturevalue(tier_name)
        assert asyncio.run(tier.get("nope")) is None

    def test_get_returns_expired_entries_untouched(self, tier_name, request):
        """Expiry is evaluated by CacheService, tiers just store envelopes"""
        tier = request.getfixturevalue(tier_name)
        asyncio.run(tier.set("old", make_entry("v", expires=1)))
        assert asyncio.run(tier.get("old")).expires == 1

    def test_remove_is_idempotent(self, tier_name, request):
        tier = request.getfixturevalue(tier_name)
        asyncio.run(tier.set("k", make_entry("v")))

        asyncio.run(tier.remove("k"))
        asyncio.run(tier.remove("k"))

        assert asyncio.run(tier.get("k")) is None

    def test_clear(self, tier_name, request):
        tier = request.getfixturevalue(tier_name)
        asyncio.run(tier.set("a", make_entry(1)))
        asyncio.run(tier.set("b", make_entry(2)))

        asyncio.run(tier.clear())

        assert asyncio.run(tier.keys()) == []

    def test_keys_with_and_without_pattern(self, tier_name, request):
        tier = request.getfixturevalue(tier_name)
        for key in ["item:item-board-1-a", "item:item-board-1-b", "item:item-board-2-x"]:
            asyncio.run(tier.set(key, make_entry(key)))

        all_keys = asyncio.run(tier.keys())
        matched = asyncio.run(tier.keys("item:item-board-1*"))

        assert sorted(all_keys) == [
            "item:item-board-1-a", "item:item-board-1-b", "item:item-board-2-x"
        ]
        assert sorted(matched) == ["item:item-board-1-a", "item:item-board-1-b"]

    def test_set_overwrites(self, tier_name, request):
        tier = request.getfixturevalue(tier_name)
        asyncio.run(tier.set("k", make_entry("old")))
        asyncio.run(tier.set("k", make_entry("new")))
        assert asyncio.run(tier.get("k")).data == "new"


class TestMemoryStorage:
    """Memory specifics"""

    def test_len(self):
        tier = MemoryStorage()
        asyncio.run(tier.set("a", make_entry(1)))
        assert len(tier) == 1


class TestRedisStorage:
    """Redis specifics: prefixing, JSON format, quota"""

    def test_keys_are_physically_prefixed(self, redis_tier, redis_client):
        asyncio.run(redis_tier.set("board:1", make_entry("v")))

        assert redis_client.exists("monday_ai_board:1") == 1
        assert redis_client.exists("board:1") == 0

    def test_value_is_json_envelope(self, redis_tier, redis_client):
        asyncio.run(redis_tier.set("k", make_entry("v", expires=5000, created_at=1000)))

        raw = redis_client.get("monday_ai_k").decode("utf-8")

        assert '"createdAt":1000' in raw
        assert '"expires":5000' in raw
        assert '"data":"v"' in raw

    def test_clear_leaves_unrelated_keys(self, redis_tier, redis_client):
        redis_client.set("other_app_setting", "keep me")
        asyncio.run(redis_tier.set("k", make_entry("v")))

        asyncio.run(redis_tier.clear())

        assert redis_client.get("other_app_setting") == b"keep me"
        assert asyncio.run(redis_tier.keys()) == []

    def test_keys_ignore_unrelated_keys(self, redis_tier, redis_client):
        redis_client.set("other_app_setting", "x")
        asyncio.run(redis_tier.set("k", make_entry("v")))
        assert asyncio.run(redis_tier.keys()) == ["k"]

    def test_malformed_value_is_a_miss(self, redis_tier, redis_client):
        redis_client.set("monday_ai_broken", "{not json")
        assert asyncio.run(redis_tier.get("broken")) is None

    def test_quota_exceeded_is_distinguishable(self, redis_client):
        tier = RedisStorage(redis_client, quota_bytes=200)

        with pytest.raises(StorageQuotaExceededError, match="SQLite tier"):
            asyncio.run(tier.set("big", make_entry("x" * 500)))

        assert asyncio.run(tier.get("big")) is None

    def test_quota_counts_replaced_value_once(self, redis_client):
        tier = RedisStorage(redis_client, quota_bytes=300)
        entry = make_entry("x" * 150)

        asyncio.run(tier.set("k", entry))
        asyncio.run(tier.set("k", entry))

        assert asyncio.run(tier.get("k")) == entry

    def test_no_quota(self, redis_client):
        tier = RedisStorage(redis_client, quota_bytes=None)
        asyncio.run(tier.set("big", make_entry("x" * 10_000)))
        assert asyncio.run(tier.get("big")).data == "x" * 10_000

    def test_used_bytes(self, redis_tier):
        assert redis_tier.used_bytes() == 0
        asyncio.run(redis_tier.set("k", make_entry("v")))
        assert redis_tier.used_bytes() > len("monday_ai_k")

    def test_read_failure_is_a_miss(self, redis_tier, monkeypatch):
        def broken_get(key):
            raise redis.ConnectionError("connection reset")

        monkeypatch.setattr(redis_tier.redis, "get", broken_get)
        assert asyncio.run(redis_tier.get("k")) is None

    def test_write_failure_propagates(self, redis_tier, monkeypatch):
        def broken_set(key, value):
            raise redis.ConnectionError("connection reset")

        monkeypatch.setattr(redis_tier.redis, "set", broken_set)
        with pytest.raises(StorageWriteError):
            asyncio.run(redis_tier.set("k", make_entry("v")))

    def test_out_of_memory_response_is_quota_error(self, redis_tier, monkeypatch):
        def oom_set(key, value):
            raise redis.ResponseError("OOM command not allowed when used memory > 'maxmemory'.")

        monkeypatch.setattr(redis_tier.redis, "set", oom_set)
        with pytest.raises(StorageQuotaExceededError):
            asyncio.run(redis_tier.set("k", make_entry("v")))


class TestSQLiteStorage:
    """SQLite specifics: lazy open, durability, teardown"""

    def test_database_opened_lazily(self, tmp_path):
        db_path = tmp_path / "lazy.db"
        tier = SQLiteStorage(db_path=str(db_path))

        assert not db_path.exists()

        asyncio.run(tier.set("k", make_entry("v")))

        assert db_path.exists()
        asyncio.run(tier.close())

    def test_connection_is_reused(self, sqlite_tier):
        async def scenario():
            await sqlite_tier.set("a", make_entry(1))
            first = sqlite_tier._db
            await sqlite_tier.get("a")
            return first is sqlite_tier._db

        assert asyncio.run(scenario()) is True

    def test_entries_survive_reopen(self, tmp_path):
        db_path = str(tmp_path / "durable.db")

        async def scenario():
            writer = SQLiteStorage(db_path=db_path)
            await writer.set("board:1", make_entry({"id": 1}, expires=None))
            await writer.close()

            reader = SQLiteStorage(db_path=db_path)
            try:
                return await reader.get("board:1")
            finally:
                await reader.close()

        assert asyncio.run(scenario()).data == {"id": 1}

    def test_delete_database(self, tmp_path):
        db_path = tmp_path / "gone.db"
        tier = SQLiteStorage(db_path=str(db_path))

        async def scenario():
            await tier.set("k", make_entry("v"))
            await tier.delete_database()

        asyncio.run(scenario())

        assert not db_path.exists()
        assert tier._db is None

    def test_unavailable_database(self, tmp_path):
        missing_dir = os.path.join(str(tmp_path), "missing", "dir", "cache.db")
        tier = SQLiteStorage(db_path=missing_dir)

        # Reads degrade to a miss, writes surface the failure
        assert asyncio.run(tier.get("k")) is None
        assert asyncio.run(tier.keys()) == []
        with pytest.raises(StorageUnavailableError):
            asyncio.run(tier.set("k", make_entry("v")))

    def test_invalid_store_name(self):
        with pytest.raises(ValueError):
            SQLiteStorage(store_name="cache; DROP TABLE x")

    def test_custom_store_and_version(self, tmp_path):
        tier = SQLiteStorage(
            db_path=str(tmp_path / "custom.db"), store_name="board_cache", db_version=3
        )

        async def scenario():
            try:
                await tier.set("k", make_entry("v"))
                async with tier._db.execute("PRAGMA user_version") as cursor:
                    row = await cursor.fetchone()
                return row[0]
            finally:
                await tier.close()

        assert asyncio.run(scenario()) == 3


class Opaque:
    """Payload with no JSON representation"""


@pytest.mark.parametrize("tier_name", ["redis_tier", "sqlite_tier"])
def test_unserializable_payload_is_a_write_error(tier_name, request):
    tier = request.getfixturevalue(tier_name)

    with pytest.raises(StorageWriteError, match="serialize"):
        asyncio.run(tier.set("k", make_entry(Opaque())))

    assert asyncio.run(tier.get("k")) is None


def test_redis_quota_check_sizes_keys_in_one_round_trip(redis_tier, monkeypatch):
    for i in range(20):
        asyncio.run(redis_tier.set(f"item:{i}", make_entry(i)))

    strlen_calls = []
    original_strlen = redis_tier.redis.strlen

    def counting_strlen(key):
        strlen_calls.append(key)
        return original_strlen(key)

    monkeypatch.setattr(redis_tier.redis, "strlen", counting_strlen)

    asyncio.run(redis_tier.set("item:new", make_entry("v")))

    # Only the key being replaced is sized directly; the rest is pipelined
    assert strlen_calls == ["monday_ai_item:new"]
    assert len(asyncio.run(redis_tier.keys())) == 21


def test_redis_used_bytes_matches_stored_sizes(redis_tier, redis_client):
    asyncio.run(redis_tier.set("a", make_entry("x" * 10)))
    asyncio.run(redis_tier.set("bb", make_entry("y" * 20)))

    expected = sum(
        len(key) + redis_client.strlen(key)
        for key in (b"monday_ai_a", b"monday_ai_bb")
    )
    assert redis_tier.used_bytes() == expected
