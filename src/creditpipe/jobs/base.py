"""
Job port.

Raw record access shared by the durable job store and its in-process
mirror. Lifecycle rules live in JobStore, not here.
"""

from __future__ import annotations

from abc import ABC, abstractmethod

from creditpipe.core.types import Job


class JobPort(ABC):
    """Abstract job record store."""

    @abstractmethod
    async def reserve_id(self) -> int:
        """Allocate a job id that no earlier call returned."""
        ...

    @abstractmethod
    async def put(self, job: Job) -> None:
        """Insert or replace the record for ``job.id``."""
        ...

    @abstractmethod
    async def get(self, job_id: int) -> Job | None:
        ...

    @abstractmethod
    async def delete(self, job_id: int) -> bool:
        ...

    @abstractmethod
    async def list_jobs(self, owner: str | None = None) -> list[Job]:
        """All jobs, or only those of ``owner``, in no particular order."""
        ...
