"""Job records persisted through a StorageBackend."""

from __future__ import annotations

from decimal import Decimal
from typing import TYPE_CHECKING

from creditpipe.core.types import Job
from creditpipe.jobs.base import JobPort

if TYPE_CHECKING:
    from creditpipe.storage.base import StorageBackend


class StorageJobStore(JobPort):
    """
    Durable job store.

    Records live in the ``jobs`` collection keyed by id; ids come from an
    atomic counter so they are unique across every process sharing the
    backend.
    """

    COLLECTION = "jobs"
    SEQUENCES = "sequences"

    def __init__(self, storage: StorageBackend) -> None:
        self._storage = storage

    async def reserve_id(self) -> int:
        value = await self._storage.atomic_add(self.SEQUENCES, self.COLLECTION, "1")
        return int(Decimal(value))

    async def put(self, job: Job) -> None:
        await self._storage.save(self.COLLECTION, str(job.id), job.to_dict())

    async def get(self, job_id: int) -> Job | None:
        data = await self._storage.get(self.COLLECTION, str(job_id))
        if data is None:
            return None
        return Job.from_dict(data)

    async def delete(self, job_id: int) -> bool:
        return await self._storage.delete(self.COLLECTION, str(job_id))

    async def list_jobs(self, owner: str | None = None) -> list[Job]:
        filters = {"owner": owner} if owner is not None else None
        rows = await self._storage.query(self.COLLECTION, filters=filters)
        return [Job.from_dict(row) for row in rows]
