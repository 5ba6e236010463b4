"""
Redis Storage Backend.

Durable storage backend using Redis. Requires redis-py.
"""

from __future__ import annotations

import json
import os
import uuid
from typing import Any

from creditpipe.storage.base import BatchWrite, StorageBackend, register_storage_backend


class RedisStorage(StorageBackend):
    """
    Redis storage backend.

    Records are JSON strings under ``<prefix>:<collection>:<key>``; each
    collection keeps a set index of its keys. Batches run inside MULTI/EXEC.
    """

    # Lua script for safe lock release: only delete if token matches
    _RELEASE_LOCK_SCRIPT = """
    if redis.call("get", KEYS[1]) == ARGV[1] then
        return redis.call("del", KEYS[1])
    else
        return 0
    end
    """

    def __init__(
        self,
        redis_url: str | None = None,
        prefix: str = "creditpipe",
    ) -> None:
        """
        Initialize Redis storage.

        Args:
            redis_url: Redis connection URL (or from CREDITPIPE_REDIS_URL env)
            prefix: Key prefix for all storage keys
        """
        self._redis_url = redis_url or os.environ.get(
            "CREDITPIPE_REDIS_URL",
            "redis://localhost:6379/0",
        )
        self._prefix = prefix
        self._client = None

    def _get_client(self):
        """Lazy-load Redis client."""
        if self._client is None:
            import redis.asyncio as redis

            self._client = redis.from_url(self._redis_url, decode_responses=True)
        return self._client

    def _make_key(self, collection: str, key: str) -> str:
        """Create Redis key from collection and key."""
        return f"{self._prefix}:{collection}:{key}"

    def _index_key(self, collection: str) -> str:
        return f"{self._prefix}:{collection}:_index"

    def _lock_key(self, key: str) -> str:
        return f"{self._prefix}:locks:{key}"

    async def save(
        self,
        collection: str,
        key: str,
        data: dict[str, Any],
    ) -> None:
        """Save data to Redis."""
        await self.save_batch([(collection, key, data)])

    async def get(
        self,
        collection: str,
        key: str,
    ) -> dict[str, Any] | None:
        """Get data from Redis."""
        client = self._get_client()
        data = await client.get(self._make_key(collection, key))

        if data is None:
            return None

        try:
            decoded = json.loads(data)
        except json.JSONDecodeError:
            decoded = None
        if not isinstance(decoded, dict):
            # Counters created via atomic_add are raw numbers
            return {"value": data}
        return decoded

    async def delete(
        self,
        collection: str,
        key: str,
    ) -> bool:
        """Delete data from Redis."""
        client = self._get_client()
        async with client.pipeline(transaction=True) as pipe:
            pipe.delete(self._make_key(collection, key))
            pipe.srem(self._index_key(collection), key)
            deleted, _ = await pipe.execute()
        return int(deleted) > 0

    async def atomic_add(
        self,
        collection: str,
        key: str,
        amount: str,
    ) -> str:
        """Atomically add amount."""
        client = self._get_client()
        new_val = await client.incrbyfloat(self._make_key(collection, key), float(amount))
        return str(new_val)

    async def save_batch(self, writes: list[BatchWrite]) -> None:
        """Write every record and index entry in one MULTI/EXEC block."""
        if not writes:
            return
        client = self._get_client()
        async with client.pipeline(transaction=True) as pipe:
            for collection, key, data in writes:
                pipe.set(self._make_key(collection, key), json.dumps(data))
                pipe.sadd(self._index_key(collection), key)
            await pipe.execute()

    async def acquire_lock(
        self,
        key: str,
        ttl: int = 30,
    ) -> str | None:
        """
        Acquire a lock with ownership token (Redis SET NX).

        Returns:
            Unique ownership token if acquired, None if already held
        """
        client = self._get_client()
        token = str(uuid.uuid4())

        result = await client.set(self._lock_key(key), token, nx=True, ex=ttl)
        if result:
            return token
        return None

    async def release_lock(
        self,
        key: str,
        token: str | None = None,
    ) -> bool:
        """
        Release a lock safely using Lua script.

        Only deletes the key if the stored value matches our token.
        """
        client = self._get_client()
        redis_key = self._lock_key(key)

        if token:
            result = await client.eval(self._RELEASE_LOCK_SCRIPT, 1, redis_key, token)
            return int(result) > 0
        result = await client.delete(redis_key)
        return result > 0

    async def query(
        self,
        collection: str,
        filters: dict[str, Any] | None = None,
        limit: int | None = None,
        offset: int = 0,
    ) -> list[dict[str, Any]]:
        """Query data with optional filters."""
        client = self._get_client()
        keys = sorted(await client.smembers(self._index_key(collection)))

        results = []
        for key in keys:
            data = await self.get(collection, key)
            if data is None:
                continue

            if filters:
                match = True
                for filter_key, filter_value in filters.items():
                    if data.get(filter_key) != filter_value:
                        match = False
                        break
                if not match:
                    continue

            data["_key"] = key
            results.append(data)

        results = results[offset:]
        if limit is not None:
            results = results[:limit]

        return results

    async def health_check(self) -> bool:
        """Check Redis connection."""
        try:
            client = self._get_client()
            await client.ping()
            return True
        except Exception:
            return False

    async def close(self) -> None:
        """Close Redis connection."""
        if self._client:
            await self._client.aclose()
            self._client = None


# Register backend
register_storage_backend("redis", RedisStorage)
