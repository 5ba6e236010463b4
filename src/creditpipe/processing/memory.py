"""
In-Memory Blob Store.

Keeps objects in a dict. Suitable for development and testing.
"""

from __future__ import annotations

from creditpipe.processing.base import BlobStore


class InMemoryBlobStore(BlobStore):
    """Blob store whose locators are the keys themselves."""

    def __init__(self, objects: dict[str, bytes] | None = None) -> None:
        self._objects: dict[str, bytes] = dict(objects or {})

    async def get(self, key: str) -> bytes:
        if key not in self._objects:
            raise KeyError(f"No object stored under {key}")
        return self._objects[key]

    async def put(self, data: bytes, key: str) -> str:
        self._objects[key] = bytes(data)
        return key

    def __contains__(self, key: object) -> bool:
        return key in self._objects

    def __len__(self) -> int:
        return len(self._objects)
