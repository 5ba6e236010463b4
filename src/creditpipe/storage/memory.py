"""
In-Memory Storage Backend.

Default storage backend that keeps all data in memory.
Suitable for development and testing, but not for production.
"""

from __future__ import annotations

import time
import uuid
from copy import deepcopy
from decimal import Decimal, InvalidOperation
from typing import Any

from creditpipe.storage.base import BatchWrite, StorageBackend, register_storage_backend


class InMemoryStorage(StorageBackend):
    """
    In-memory storage backend.

    Stores all data in Python dicts. Data is lost when process ends.
    No method awaits internally, so every call is atomic under asyncio.
    """

    def __init__(self) -> None:
        self._data: dict[str, dict[str, Any]] = {}
        self._locks: dict[str, tuple[str, float]] = {}

    def _ensure_collection(self, collection: str) -> dict[str, Any]:
        """Ensure collection exists and return it."""
        if collection not in self._data:
            self._data[collection] = {}
        return self._data[collection]

    async def save(
        self,
        collection: str,
        key: str,
        data: dict[str, Any],
    ) -> None:
        """Save data to memory."""
        coll = self._ensure_collection(collection)
        coll[key] = deepcopy(data)

    async def get(
        self,
        collection: str,
        key: str,
    ) -> dict[str, Any] | None:
        """Get data from memory."""
        coll = self._ensure_collection(collection)
        data = coll.get(key)
        if data is None:
            return None
        if not isinstance(data, dict):
            # Counters written by atomic_add
            return {"value": data}
        return deepcopy(data)

    async def delete(
        self,
        collection: str,
        key: str,
    ) -> bool:
        """Delete data from memory."""
        coll = self._ensure_collection(collection)
        if key in coll:
            del coll[key]
            return True
        return False

    async def query(
        self,
        collection: str,
        filters: dict[str, Any] | None = None,
        limit: int | None = None,
        offset: int = 0,
    ) -> list[dict[str, Any]]:
        """Query data with optional filters."""
        coll = self._ensure_collection(collection)

        results = []
        for key, data in coll.items():
            if not isinstance(data, dict):
                continue

            if filters:
                match = True
                for filter_key, filter_value in filters.items():
                    if data.get(filter_key) != filter_value:
                        match = False
                        break
                if not match:
                    continue

            result = deepcopy(data)
            result["_key"] = key
            results.append(result)

        results = results[offset:]
        if limit is not None:
            results = results[:limit]

        return results

    async def atomic_add(
        self,
        collection: str,
        key: str,
        amount: str,
    ) -> str:
        """Atomically add amount."""
        coll = self._ensure_collection(collection)

        current_val = coll.get(key)
        try:
            current_dec = Decimal(str(current_val)) if current_val is not None else Decimal("0")
        except InvalidOperation:
            # A dict or garbage under the key restarts the counter
            current_dec = Decimal("0")

        new_val = current_dec + Decimal(amount)

        # Stored as string to match Redis behavior
        coll[key] = str(new_val)
        return str(new_val)

    async def save_batch(self, writes: list[BatchWrite]) -> None:
        """Apply every write without yielding to the event loop."""
        staged = [(collection, key, deepcopy(data)) for collection, key, data in writes]
        for collection, key, data in staged:
            self._ensure_collection(collection)[key] = data

    async def acquire_lock(
        self,
        key: str,
        ttl: int = 30,
    ) -> str | None:
        """Acquire lock (simple in-memory implementation)."""
        now = time.time()

        held = self._locks.get(key)
        if held is not None and now < held[1]:
            return None

        token = str(uuid.uuid4())
        self._locks[key] = (token, now + ttl)
        return token

    async def release_lock(
        self,
        key: str,
        token: str | None = None,
    ) -> bool:
        """Release lock."""
        held = self._locks.get(key)
        if held is None:
            return False
        if token is not None and held[0] != token:
            return False
        del self._locks[key]
        return True

    async def health_check(self) -> bool:
        """Always healthy for in-memory."""
        return True


# Register as default backend
register_storage_backend("memory", InMemoryStorage)
