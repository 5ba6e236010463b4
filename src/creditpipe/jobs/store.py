"""
JobStore - job records with lifecycle enforcement.

Writes go to the durable store and are mirrored in memory. When the durable
store fails, the mirror alone takes the write. Reads consult both and keep
the most recently updated copy, so a job created or advanced during an
outage stays visible afterwards and is written through on its next change.
"""

from __future__ import annotations

from collections import Counter
from dataclasses import dataclass
from typing import TYPE_CHECKING, Any, Awaitable, Callable

from creditpipe.core.exceptions import StoreUnavailableError, ValidationError
from creditpipe.core.logging import get_logger
from creditpipe.core.types import Job, JobPage, JobStatus, Role, utcnow
from creditpipe.jobs.fallback import MemoryJobStore
from creditpipe.jobs.state import can_transition

if TYPE_CHECKING:
    from datetime import datetime

    from creditpipe.jobs.base import JobPort
    from creditpipe.resilience.circuit import CircuitBreaker

logger = get_logger("jobs.store")

SORTABLE_FIELDS = ("id", "created_at", "updated_at", "status", "owner")
_FIELD_ALIASES = {"createdAt": "created_at", "updatedAt": "updated_at"}


@dataclass(frozen=True)
class JobSort:
    """Listing order. Ties always break by ascending id."""

    field: str = "created_at"
    descending: bool = True

    def __post_init__(self) -> None:
        if self.field not in SORTABLE_FIELDS:
            raise ValidationError(
                f"Cannot sort jobs by '{self.field}'", {"allowed": list(SORTABLE_FIELDS)}
            )

    @property
    def direction(self) -> str:
        return "desc" if self.descending else "asc"

    @classmethod
    def parse(cls, value: str | None) -> "JobSort":
        """Parse ``[-]field`` (leading ``-`` for descending)."""
        if not value:
            return cls()
        descending = value.startswith("-")
        name = value.lstrip("-+")
        return cls(field=_FIELD_ALIASES.get(name, name), descending=descending)

    def key(self, job: Job) -> Any:
        value = getattr(job, self.field)
        if isinstance(value, JobStatus):
            return value.value
        return value


class JobStore:
    """
    Job store with a durable primary and an in-memory mirror.

    Args:
        durable: Durable job port, or None to run on the mirror only
        mirror: In-process copy (created if omitted)
        circuit: Optional breaker probing durable availability
        clock: Source of timestamps
    """

    def __init__(
        self,
        durable: JobPort | None,
        mirror: MemoryJobStore | None = None,
        circuit: CircuitBreaker | None = None,
        clock: Callable[[], datetime] = utcnow,
    ) -> None:
        self._durable = durable
        self._mirror = mirror or MemoryJobStore()
        self._circuit = circuit
        self._clock = clock

    @property
    def mirror(self) -> MemoryJobStore:
        return self._mirror

    async def _durable_call(self, operation: str, call: Callable[[JobPort], Awaitable[Any]]) -> Any:
        if self._durable is None:
            raise StoreUnavailableError(f"No durable job store for {operation}", store="jobs")
        if self._circuit is None:
            return await call(self._durable)
        async with self._circuit:
            return await call(self._durable)

    async def _try_durable(
        self, operation: str, call: Callable[[JobPort], Awaitable[Any]]
    ) -> tuple[bool, Any]:
        try:
            return True, await self._durable_call(operation, call)
        except Exception as exc:
            if self._durable is not None:
                logger.warning(f"Durable job store failed during {operation}, using mirror: {exc}")
            return False, None

    @staticmethod
    def _newer(durable_job: Job | None, mirror_job: Job | None) -> Job | None:
        if durable_job is None:
            return mirror_job
        if mirror_job is None:
            return durable_job
        return mirror_job if mirror_job.updated_at > durable_job.updated_at else durable_job

    async def _write(self, job: Job) -> None:
        await self._try_durable("write", lambda port: port.put(job))
        await self._mirror.put(job)

    async def reserve_id(self) -> int:
        """Allocate the id of a job about to be admitted."""
        while True:
            ok, job_id = await self._try_durable("reserve_id", lambda port: port.reserve_id())
            if not ok:
                return await self._mirror.reserve_id()
            # Skip ids the mirror handed out during an outage
            if job_id > self._mirror.last_id:
                self._mirror.observe_id(job_id)
                return job_id

    async def create(
        self,
        owner: str,
        role: Role,
        input_ref: str,
        params: dict[str, Any] | None = None,
        job_id: int | None = None,
        cost: int = 0,
    ) -> Job:
        """Write a new job in ``pending``."""
        if job_id is None:
            job_id = await self.reserve_id()
        now = self._clock()
        job = Job(
            id=job_id,
            owner=owner,
            role=role,
            input_ref=input_ref,
            params=dict(params or {}),
            status=JobStatus.PENDING,
            result=None,
            created_at=now,
            updated_at=now,
            cost=cost,
        )
        await self._write(job)
        logger.info(f"Created job {job.id} for {owner}")
        return job

    async def get(self, job_id: int) -> Job | None:
        _, durable_job = await self._try_durable("get", lambda port: port.get(job_id))
        return self._newer(durable_job, await self._mirror.get(job_id))

    async def transition(
        self,
        job_id: int,
        new_status: JobStatus,
        result: dict[str, Any] | None = None,
    ) -> bool:
        """
        Move a job along the lifecycle graph.

        Illegal moves, including any move out of a terminal state, are
        logged and ignored.

        Returns:
            True if the job changed
        """
        job = await self.get(job_id)
        if job is None:
            logger.warning(f"Cannot move missing job {job_id} to {new_status.value}")
            return False

        if not can_transition(job.status, new_status):
            logger.warning(
                f"Ignoring illegal transition of job {job_id}: "
                f"{job.status.value} -> {new_status.value}"
            )
            return False

        job.status = new_status
        job.updated_at = self._clock()
        if new_status.is_terminal:
            job.result = result
        await self._write(job)
        logger.debug(f"Job {job_id} is now {new_status.value}")
        return True

    async def _all(self, owner: str | None) -> list[Job]:
        _, durable_jobs = await self._try_durable("list", lambda port: port.list_jobs(owner))
        merged: dict[int, Job] = {job.id: job for job in durable_jobs or []}
        for job in await self._mirror.list_jobs(owner):
            merged[job.id] = self._newer(merged.get(job.id), job)
        return list(merged.values())

    async def list_by_owner(
        self,
        owner: str,
        role: Role,
        status: JobStatus | None = None,
        page: int = 1,
        page_size: int = 20,
        sort: JobSort | None = None,
    ) -> JobPage:
        """
        One page of jobs visible to ``owner``.

        Privileged callers see every job; standard callers only their own.
        """
        if page < 1 or page_size < 1:
            raise ValidationError("page and page_size must be positive")
        sort = sort or JobSort()

        jobs = await self._all(None if role.is_privileged else owner)
        if status is not None:
            jobs = [job for job in jobs if job.status == status]

        jobs.sort(key=lambda job: job.id)
        jobs.sort(key=sort.key, reverse=sort.descending)

        start = (page - 1) * page_size
        return JobPage(
            page=page,
            page_size=page_size,
            total=len(jobs),
            items=jobs[start : start + page_size],
        )

    async def delete(self, job_id: int) -> bool:
        _, deleted = await self._try_durable("delete", lambda port: port.delete(job_id))
        mirrored = await self._mirror.delete(job_id)
        return bool(deleted) or mirrored

    async def stats(self) -> dict[str, int]:
        """Job count in total and per status."""
        counts = Counter(job.status for job in await self._all(None))
        stats = {"total": sum(counts.values())}
        for status in JobStatus:
            stats[status.value] = counts[status]
        return stats
