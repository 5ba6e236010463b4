import asyncio
from typing import Any

import pytest

from creditpipe.core.config import Config
from creditpipe.processing.base import BlobStore, Transformer, TransformResult
from creditpipe.processing.memory import InMemoryBlobStore
from creditpipe.storage.memory import InMemoryStorage


class FlakyStorage(InMemoryStorage):
    """
    InMemoryStorage that can be switched unreachable mid-test.

    With ``yield_on_io`` every call suspends once, so concurrent tasks
    interleave the way they would against a networked store.
    """

    def __init__(self, yield_on_io: bool = False) -> None:
        super().__init__()
        self.available = True
        self.yield_on_io = yield_on_io
        self.calls = 0
        # Seconds each save_batch spends before committing
        self.batch_delay = 0.0
        # Raise once after the next save_batch has committed
        self.drop_after_commit = False
        self.fail_release = False

    async def _io(self) -> None:
        self.calls += 1
        if self.yield_on_io:
            await asyncio.sleep(0)
        if not self.available:
            raise ConnectionError("storage unreachable")

    async def save(self, collection, key, data):
        await self._io()
        return await super().save(collection, key, data)

    async def get(self, collection, key):
        await self._io()
        return await super().get(collection, key)

    async def delete(self, collection, key):
        await self._io()
        return await super().delete(collection, key)

    async def query(self, collection, filters=None, limit=None, offset=0):
        await self._io()
        return await super().query(collection, filters, limit, offset)

    async def atomic_add(self, collection, key, amount):
        await self._io()
        return await super().atomic_add(collection, key, amount)

    async def save_batch(self, writes):
        await self._io()
        if self.batch_delay:
            await asyncio.sleep(self.batch_delay)
        await super().save_batch(writes)
        if self.drop_after_commit:
            self.drop_after_commit = False
            raise ConnectionError("connection dropped after commit")

    async def acquire_lock(self, key, ttl=30):
        await self._io()
        return await super().acquire_lock(key, ttl)

    async def release_lock(self, key, token=None):
        await self._io()
        if self.fail_release:
            raise ConnectionError("release lost")
        return await super().release_lock(key, token)

    async def health_check(self):
        return self.available


class CopyTransformer(Transformer):
    """Writes the input unchanged to the output key."""

    def __init__(self, blob_store: BlobStore) -> None:
        self.blob_store = blob_store
        self.calls: list[dict[str, Any]] = []

    async def process(self, data: bytes, params: dict[str, Any], output_key: str) -> TransformResult:
        self.calls.append({"params": params, "output_key": output_key})
        await self.blob_store.put(data, output_key)
        return TransformResult.success(output_key)


class FailingTransformer(Transformer):
    """Always reports a failure."""

    def __init__(self, error: str = "unsupported image") -> None:
        self.error = error

    async def process(self, data: bytes, params: dict[str, Any], output_key: str) -> TransformResult:
        return TransformResult.failure(self.error)


class CrashingTransformer(Transformer):
    """Raises instead of reporting."""

    async def process(self, data: bytes, params: dict[str, Any], output_key: str) -> TransformResult:
        raise RuntimeError("transformer crashed")


@pytest.fixture
def storage():
    return InMemoryStorage()


@pytest.fixture
def flaky_storage():
    return FlakyStorage()


@pytest.fixture
def blob_store():
    return InMemoryBlobStore({"uploads/cat.png": b"cat", "uploads/dog.png": b"dog"})


@pytest.fixture
def config():
    return Config(
        circuit_failure_threshold=1000,
        lock_retries=200,
        lock_retry_delay=0.001,
    )
