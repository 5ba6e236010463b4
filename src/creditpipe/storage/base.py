"""
Abstract Storage Backend for creditpipe.

Provides the durable persistence capability behind the ledger, the job store
and the history recorder.
"""

from __future__ import annotations

from abc import ABC, abstractmethod
from typing import Any

# (collection, key, data) triple committed by save_batch
BatchWrite = tuple[str, str, dict[str, Any]]


class StorageBackend(ABC):
    """
    Abstract base class for storage backends.

    Provides simple CRUD operations, an atomic counter, an all-or-nothing
    multi-record write and token locks. Implementations can use any
    persistence layer (memory, Redis, ...).
    """

    @abstractmethod
    async def save(
        self,
        collection: str,
        key: str,
        data: dict[str, Any],
    ) -> None:
        """
        Save data to storage.

        Args:
            collection: Collection/table name
            key: Unique key for the record
            data: Data to store (must be JSON-serializable)
        """
        ...

    @abstractmethod
    async def get(
        self,
        collection: str,
        key: str,
    ) -> dict[str, Any] | None:
        """
        Get data from storage.

        Args:
            collection: Collection/table name
            key: Record key

        Returns:
            Data dict or None if not found
        """
        ...

    @abstractmethod
    async def delete(
        self,
        collection: str,
        key: str,
    ) -> bool:
        """
        Delete data from storage.

        Returns:
            True if deleted, False if not found
        """
        ...

    @abstractmethod
    async def query(
        self,
        collection: str,
        filters: dict[str, Any] | None = None,
        limit: int | None = None,
        offset: int = 0,
    ) -> list[dict[str, Any]]:
        """
        Query data with optional filters.

        Args:
            collection: Collection/table name
            filters: Key-value pairs to filter by (exact match)
            limit: Maximum records to return
            offset: Number of records to skip

        Returns:
            List of matching records, each carrying its key under "_key"
        """
        ...

    @abstractmethod
    async def atomic_add(
        self,
        collection: str,
        key: str,
        amount: str,
    ) -> str:
        """
        Atomically add amount to a numeric value stored at key.

        Args:
            collection: Collection/table name
            key: Record key
            amount: Amount to add (as decimal string)

        Returns:
            New total value as string
        """
        ...

    @abstractmethod
    async def save_batch(self, writes: list[BatchWrite]) -> None:
        """
        Commit several records as one unit.

        Either every write becomes visible or none does. The ledger uses this
        to keep an account row and its transaction row together.

        Args:
            writes: (collection, key, data) triples
        """
        ...

    @abstractmethod
    async def acquire_lock(
        self,
        key: str,
        ttl: int = 30,
    ) -> str | None:
        """
        Acquire an exclusive lock.

        Args:
            key: Lock key (e.g. "lock:account:alice")
            ttl: Seconds before the lock expires on its own

        Returns:
            Ownership token if acquired, None if already held
        """
        ...

    @abstractmethod
    async def release_lock(
        self,
        key: str,
        token: str | None = None,
    ) -> bool:
        """
        Release a lock.

        Only the holder of ``token`` may release it.

        Returns:
            True if released
        """
        ...

    async def health_check(self) -> bool:
        """
        Check if storage is healthy and connected.

        Returns:
            True if healthy
        """
        return True

    async def close(self) -> None:
        """Release connections held by the backend."""
        return None


# Storage backend registry for dependency injection
_STORAGE_BACKENDS: dict[str, type[StorageBackend]] = {}


def register_storage_backend(name: str, backend_class: type[StorageBackend]) -> None:
    """Register a storage backend by name."""
    _STORAGE_BACKENDS[name] = backend_class


def get_storage_backend(name: str) -> type[StorageBackend] | None:
    """Get a registered storage backend by name."""
    return _STORAGE_BACKENDS.get(name)


def list_storage_backends() -> list[str]:
    """List all registered storage backend names."""
    return list(_STORAGE_BACKENDS.keys())
