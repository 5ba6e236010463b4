"""
Storage backends for creditpipe.

Provides the durable persistence capability for the ledger, the job store
and the history recorder.

Configuration via environment:
    CREDITPIPE_STORAGE_BACKEND=memory  # or 'redis'
    CREDITPIPE_REDIS_URL=redis://localhost:6379/0

Example:
    >>> from creditpipe.storage import get_storage, InMemoryStorage, RedisStorage
    >>>
    >>> storage = get_storage()
    >>> storage = RedisStorage(redis_url="redis://localhost:6379")
"""

from __future__ import annotations

import os
from typing import Any

from creditpipe.storage.base import (
    BatchWrite,
    StorageBackend,
    get_storage_backend,
    list_storage_backends,
    register_storage_backend,
)
from creditpipe.storage.memory import InMemoryStorage
from creditpipe.storage.redis import RedisStorage


def get_storage(backend_name: str | None = None, **kwargs: Any) -> StorageBackend:
    """
    Get storage backend from environment or by name.

    Args:
        backend_name: Backend name, or None to read from CREDITPIPE_STORAGE_BACKEND env
        **kwargs: Passed to the backend constructor (e.g. redis_url)

    Returns:
        StorageBackend instance

    Raises:
        ValueError: If backend name is unknown
    """
    if backend_name is None:
        backend_name = os.environ.get("CREDITPIPE_STORAGE_BACKEND", "memory")

    backend_class = get_storage_backend(backend_name)

    if backend_class is None:
        available = list_storage_backends()
        raise ValueError(
            f"Unknown storage backend: '{backend_name}'. Available: {', '.join(available)}"
        )

    return backend_class(**kwargs)


__all__ = [
    "BatchWrite",
    "StorageBackend",
    "InMemoryStorage",
    "RedisStorage",
    "get_storage",
    "get_storage_backend",
    "list_storage_backends",
    "register_storage_backend",
]
