"""
JobService - admission and read access for jobs.

Admission order: credit check, id reservation, committed debit, job row,
background execution. A rejected debit leaves no job behind.
"""

from __future__ import annotations

from typing import TYPE_CHECKING, Any

from creditpipe.core.exceptions import (
    ForbiddenError,
    InsufficientCreditsError,
    LockUnavailableError,
    NotFoundError,
    ValidationError,
)
from creditpipe.core.logging import get_logger
from creditpipe.core.types import BatchSubmission, Job, JobPage, JobStatus, Role

if TYPE_CHECKING:
    from creditpipe.history.recorder import HistoryRecorder
    from creditpipe.jobs.executor import JobExecutor
    from creditpipe.jobs.store import JobSort, JobStore
    from creditpipe.ledger.facade import LedgerFacade

logger = get_logger("jobs.service")


class JobService:
    """
    Service for admitting, reading and deleting jobs.

    Args:
        jobs: Job store
        ledger: Ledger facade
        executor: Background executor
        history: Outcome recorder (for cascading deletes)
        job_cost: Credits debited per job from standard accounts
    """

    def __init__(
        self,
        jobs: JobStore,
        ledger: LedgerFacade,
        executor: JobExecutor,
        history: HistoryRecorder,
        job_cost: int = 1,
    ) -> None:
        self._jobs = jobs
        self._ledger = ledger
        self._executor = executor
        self._history = history
        self._job_cost = job_cost

    async def _insufficient(self, owner: str, role: Role, required: int) -> InsufficientCreditsError:
        account = await self._ledger.get_balance(owner, role)
        return InsufficientCreditsError(
            f"Insufficient credits. You need at least {required} credit(s) to submit.",
            current_balance=account.balance,
            required_amount=required,
            username=owner,
        )

    async def _admit(
        self, owner: str, role: Role, input_ref: str, params: dict[str, Any] | None
    ) -> Job:
        cost = 0 if role.is_privileged else self._job_cost
        job_id = await self._jobs.reserve_id()

        if cost:
            await self._ledger.debit(owner, job_id, cost, role)

        try:
            job = await self._jobs.create(owner, role, input_ref, params, job_id=job_id, cost=cost)
        except Exception:
            if cost:
                logger.error(f"Job {job_id} could not be written, returning debit to {owner}")
                await self._ledger.refund(owner, job_id, cost, role)
            raise

        self._executor.submit(job.id)
        return job

    async def submit(
        self,
        owner: str,
        role: Role,
        input_ref: str,
        params: dict[str, Any] | None = None,
    ) -> Job:
        """
        Admit one job.

        Returns:
            The job, still ``pending``

        Raises:
            ValidationError: If ``input_ref`` is empty
            InsufficientCreditsError: If a standard owner cannot pay
            LockUnavailableError: If the owner's account stayed busy; safe to retry
        """
        if not input_ref:
            raise ValidationError("input_ref is required")

        if not role.is_privileged and not await self._ledger.has_sufficient_credits(
            owner, role, self._job_cost
        ):
            raise await self._insufficient(owner, role, self._job_cost)

        return await self._admit(owner, role, input_ref, params)

    async def submit_batch(
        self,
        owner: str,
        role: Role,
        input_refs: list[str],
        params: dict[str, Any] | None = None,
    ) -> BatchSubmission:
        """
        Admit one job per input.

        The whole batch must be affordable up front; individual admissions
        that still fail are reported in ``failed``.
        """
        if not input_refs:
            raise ValidationError("input_refs must not be empty")

        required = self._job_cost * len(input_refs)
        if not role.is_privileged and not await self._ledger.has_sufficient_credits(
            owner, role, required
        ):
            raise await self._insufficient(owner, role, required)

        batch = BatchSubmission()
        for input_ref in input_refs:
            if not input_ref:
                batch.failed.append({"input_ref": input_ref, "error": "input_ref is required"})
                continue
            try:
                batch.jobs.append(await self._admit(owner, role, input_ref, params))
            except (InsufficientCreditsError, LockUnavailableError, ValidationError) as exc:
                batch.failed.append({"input_ref": input_ref, "error": exc.message})

        logger.info(
            f"Batch for {owner}: {len(batch.jobs)} admitted, {len(batch.failed)} rejected"
        )
        return batch

    async def get_job(self, job_id: int, requester: str, role: Role) -> Job:
        """
        Raises:
            NotFoundError: If the job does not exist
            ForbiddenError: If a standard requester does not own it
        """
        job = await self._jobs.get(job_id)
        if job is None:
            raise NotFoundError("Job not found", resource="job", resource_id=job_id)
        if not role.is_privileged and job.owner != requester:
            raise ForbiddenError("Access denied", {"job_id": job_id})
        return job

    async def list_jobs(
        self,
        requester: str,
        role: Role,
        status: JobStatus | None = None,
        page: int = 1,
        page_size: int = 20,
        sort: JobSort | None = None,
    ) -> JobPage:
        return await self._jobs.list_by_owner(requester, role, status, page, page_size, sort)

    async def delete_job(self, job_id: int, requester: str, role: Role) -> None:
        """Delete a job and its outcome record."""
        job = await self.get_job(job_id, requester, role)
        await self._jobs.delete(job.id)
        removed = await self._history.delete_for_job(job.id)
        logger.info(f"Deleted job {job.id} ({removed} outcome record(s))")

    async def job_stats(self) -> dict[str, int]:
        return await self._jobs.stats()
