"""In-process job records: mirror of the durable store and outage fallback."""

from __future__ import annotations

import threading
from copy import deepcopy

from creditpipe.core.types import Job
from creditpipe.jobs.base import JobPort


class MemoryJobStore(JobPort):
    """
    Volatile job store.

    Holds a copy of every job this process wrote. Ids continue after the
    highest id observed from the durable store.
    """

    def __init__(self) -> None:
        self._jobs: dict[int, Job] = {}
        self._last_id = 0
        self._mutex = threading.Lock()

    @property
    def last_id(self) -> int:
        return self._last_id

    def observe_id(self, job_id: int) -> None:
        with self._mutex:
            self._last_id = max(self._last_id, job_id)

    async def reserve_id(self) -> int:
        with self._mutex:
            self._last_id += 1
            return self._last_id

    async def put(self, job: Job) -> None:
        with self._mutex:
            self._jobs[job.id] = deepcopy(job)
            self._last_id = max(self._last_id, job.id)

    async def get(self, job_id: int) -> Job | None:
        with self._mutex:
            job = self._jobs.get(job_id)
            return deepcopy(job) if job is not None else None

    async def delete(self, job_id: int) -> bool:
        with self._mutex:
            return self._jobs.pop(job_id, None) is not None

    async def list_jobs(self, owner: str | None = None) -> list[Job]:
        with self._mutex:
            return [
                deepcopy(job)
                for job in self._jobs.values()
                if owner is None or job.owner == owner
            ]
