"""Tests for storage backends."""

import json
from unittest.mock import AsyncMock, MagicMock

import pytest

from creditpipe.storage import (
    InMemoryStorage,
    RedisStorage,
    get_storage,
    list_storage_backends,
)


class TestInMemoryStorage:
    @pytest.mark.asyncio
    async def test_save_get_is_a_copy(self, storage):
        record = {"owner": "alice", "params": {"width": 10}}
        await storage.save("jobs", "1", record)
        record["params"]["width"] = 99

        loaded = await storage.get("jobs", "1")
        assert loaded == {"owner": "alice", "params": {"width": 10}}

    @pytest.mark.asyncio
    async def test_get_missing(self, storage):
        assert await storage.get("jobs", "404") is None

    @pytest.mark.asyncio
    async def test_query_filters_and_pagination(self, storage):
        for i in range(5):
            await storage.save("jobs", str(i), {"owner": "alice" if i % 2 else "bob"})

        alice = await storage.query("jobs", filters={"owner": "alice"})
        assert sorted(row["_key"] for row in alice) == ["1", "3"]

        page = await storage.query("jobs", limit=2, offset=1)
        assert len(page) == 2

    @pytest.mark.asyncio
    async def test_atomic_add_counter(self, storage):
        assert await storage.atomic_add("sequences", "jobs", "1") == "1"
        assert await storage.atomic_add("sequences", "jobs", "1") == "2"
        assert await storage.get("sequences", "jobs") == {"value": "2"}
        # Counters are not records
        assert await storage.query("sequences") == []

    @pytest.mark.asyncio
    async def test_save_batch_applies_all(self, storage):
        await storage.save_batch(
            [
                ("ledger_accounts", "alice", {"balance": 9}),
                ("ledger_transactions", "1", {"amount": 1}),
            ]
        )
        assert (await storage.get("ledger_accounts", "alice"))["balance"] == 9
        assert (await storage.get("ledger_transactions", "1"))["amount"] == 1

    @pytest.mark.asyncio
    async def test_lock_token_ownership(self, storage):
        token = await storage.acquire_lock("lock:account:alice", ttl=30)
        assert token is not None
        assert await storage.acquire_lock("lock:account:alice") is None

        assert await storage.release_lock("lock:account:alice", "not-the-token") is False
        assert await storage.release_lock("lock:account:alice", token) is True
        assert await storage.acquire_lock("lock:account:alice") is not None

    @pytest.mark.asyncio
    async def test_expired_lock_can_be_taken(self, storage):
        await storage.acquire_lock("lock:account:bob", ttl=0)
        assert await storage.acquire_lock("lock:account:bob", ttl=30) is not None


class TestRegistry:
    def test_builtin_backends_registered(self):
        assert {"memory", "redis"} <= set(list_storage_backends())

    def test_get_storage_by_name(self):
        assert isinstance(get_storage("memory"), InMemoryStorage)
        assert isinstance(get_storage("redis", redis_url="redis://cache:6379/0"), RedisStorage)

    def test_unknown_backend(self):
        with pytest.raises(ValueError, match="Unknown storage backend"):
            get_storage("postgres")


@pytest.fixture
def redis_client():
    pipe = MagicMock()
    pipe.__aenter__.return_value = pipe
    pipe.execute = AsyncMock(return_value=[1, 1])

    client = MagicMock()
    client.pipeline.return_value = pipe
    client.get = AsyncMock(return_value=None)
    client.set = AsyncMock(return_value=True)
    client.eval = AsyncMock(return_value=1)
    client.incrbyfloat = AsyncMock(return_value=3.0)
    client.smembers = AsyncMock(return_value=set())
    client.ping = AsyncMock(return_value=True)
    client.aclose = AsyncMock()
    return client


@pytest.fixture
def redis_storage(redis_client):
    storage = RedisStorage(redis_url="redis://cache:6379/0", prefix="test")
    storage._client = redis_client
    return storage


class TestRedisStorage:
    @pytest.mark.asyncio
    async def test_save_batch_is_one_transaction(self, redis_storage, redis_client):
        await redis_storage.save_batch(
            [
                ("ledger_accounts", "alice", {"balance": 9}),
                ("ledger_transactions", "4", {"amount": 1}),
            ]
        )

        redis_client.pipeline.assert_called_once_with(transaction=True)
        pipe = redis_client.pipeline.return_value
        pipe.set.assert_any_call("test:ledger_accounts:alice", json.dumps({"balance": 9}))
        pipe.sadd.assert_any_call("test:ledger_transactions:_index", "4")
        pipe.execute.assert_awaited_once()

    @pytest.mark.asyncio
    async def test_empty_batch_skips_round_trip(self, redis_storage, redis_client):
        await redis_storage.save_batch([])
        redis_client.pipeline.assert_not_called()

    @pytest.mark.asyncio
    async def test_get_decodes_json_and_counters(self, redis_storage, redis_client):
        redis_client.get.return_value = json.dumps({"owner": "alice"})
        assert await redis_storage.get("jobs", "1") == {"owner": "alice"}

        redis_client.get.return_value = "12.0"
        assert await redis_storage.get("sequences", "jobs") == {"value": "12.0"}

        redis_client.get.return_value = "not json"
        assert await redis_storage.get("sequences", "jobs") == {"value": "not json"}

    @pytest.mark.asyncio
    async def test_atomic_add(self, redis_storage, redis_client):
        assert await redis_storage.atomic_add("sequences", "jobs", "1") == "3.0"
        redis_client.incrbyfloat.assert_awaited_once_with("test:sequences:jobs", 1.0)

    @pytest.mark.asyncio
    async def test_acquire_lock_uses_set_nx(self, redis_storage, redis_client):
        token = await redis_storage.acquire_lock("lock:account:alice", ttl=10)

        assert token is not None
        redis_client.set.assert_awaited_once_with(
            "test:locks:lock:account:alice", token, nx=True, ex=10
        )

    @pytest.mark.asyncio
    async def test_acquire_lock_contended(self, redis_storage, redis_client):
        redis_client.set.return_value = None
        assert await redis_storage.acquire_lock("lock:account:alice") is None

    @pytest.mark.asyncio
    async def test_release_lock_checks_token(self, redis_storage, redis_client):
        assert await redis_storage.release_lock("lock:account:alice", "tok") is True
        args = redis_client.eval.await_args.args
        assert args[1:] == (1, "test:locks:lock:account:alice", "tok")

    @pytest.mark.asyncio
    async def test_delete(self, redis_storage, redis_client):
        assert await redis_storage.delete("jobs", "1") is True
        redis_client.pipeline.return_value.srem.assert_called_once_with("test:jobs:_index", "1")

    @pytest.mark.asyncio
    async def test_query_filters(self, redis_storage, redis_client):
        rows = {
            "test:jobs:1": json.dumps({"owner": "alice"}),
            "test:jobs:2": json.dumps({"owner": "bob"}),
        }
        redis_client.smembers.return_value = {"1", "2"}
        redis_client.get.side_effect = lambda key: rows.get(key)

        result = await redis_storage.query("jobs", filters={"owner": "alice"})
        assert result == [{"owner": "alice", "_key": "1"}]

    @pytest.mark.asyncio
    async def test_health_and_close(self, redis_storage, redis_client):
        assert await redis_storage.health_check() is True
        redis_client.ping.side_effect = ConnectionError("down")
        assert await redis_storage.health_check() is False

        await redis_storage.close()
        redis_client.aclose.assert_awaited_once()
