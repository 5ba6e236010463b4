"""
Capabilities consumed by the job executor.

The transformation algorithm and the object store are external; the
executor only depends on these two interfaces.
"""

from __future__ import annotations

from abc import ABC, abstractmethod
from dataclasses import dataclass
from typing import Any

DEFAULT_EXTENSION = "jpg"


@dataclass
class TransformResult:
    """Single outcome of a transformation: an output reference or an error."""

    ok: bool
    output_key: str | None = None
    error: str | None = None

    @classmethod
    def success(cls, output_key: str) -> "TransformResult":
        return cls(ok=True, output_key=output_key)

    @classmethod
    def failure(cls, error: str) -> "TransformResult":
        return cls(ok=False, error=error)


class Transformer(ABC):
    """Resource-consuming transformation of one input."""

    @abstractmethod
    async def process(
        self,
        data: bytes,
        params: dict[str, Any],
        output_key: str,
    ) -> TransformResult:
        """
        Transform ``data`` and store the output under ``output_key``.

        Args:
            data: Input bytes
            params: Job parameters (format, quality, ...)
            output_key: Where the output is expected to land

        Returns:
            TransformResult carrying the output reference or an error message
        """
        ...


class BlobStore(ABC):
    """Binary object storage."""

    @abstractmethod
    async def get(self, key: str) -> bytes:
        """
        Read an object.

        Raises:
            KeyError: If nothing is stored under ``key``
        """
        ...

    @abstractmethod
    async def put(self, data: bytes, key: str) -> str:
        """Store an object and return its locator."""
        ...


def make_output_key(owner: str, job_id: int, timestamp_ms: int, extension: str) -> str:
    """Deterministic output location of one job execution."""
    return f"processed/{owner}/{job_id}/{timestamp_ms}.{extension.lstrip('.')}"


def output_extension(params: dict[str, Any] | None) -> str:
    fmt = (params or {}).get("format")
    return str(fmt) if fmt else DEFAULT_EXTENSION
