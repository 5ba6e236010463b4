"""
Job Executor - carries one admitted job to a terminal state.

Phases run strictly in order, each awaiting the previous write:
load, processing, output key, fetch + transform, completed/failed, then in a
finally block one refund attempt for failed paid jobs and one outcome record.
"""

from __future__ import annotations

import asyncio
import time
from typing import TYPE_CHECKING, Callable

from creditpipe.core.exceptions import TransformationFailedError
from creditpipe.core.logging import get_logger
from creditpipe.core.types import Job, JobStatus, ProcessingOutcome, utcnow
from creditpipe.processing.base import make_output_key, output_extension

if TYPE_CHECKING:
    from creditpipe.history.recorder import HistoryRecorder
    from creditpipe.jobs.store import JobStore
    from creditpipe.ledger.facade import LedgerFacade
    from creditpipe.processing.base import BlobStore, Transformer

logger = get_logger("jobs.executor")


def _epoch_ms() -> int:
    return int(time.time() * 1000)


class JobExecutor:
    """
    Runs jobs as background asyncio tasks.

    Args:
        jobs: Job store
        ledger: Ledger facade used for compensation
        history: Outcome recorder
        transformer: Transformation capability
        blob_store: Input/output object store
        max_concurrent: Upper bound on jobs executing at once
        clock_ms: Millisecond timestamp source for output keys
    """

    def __init__(
        self,
        jobs: JobStore,
        ledger: LedgerFacade,
        history: HistoryRecorder,
        transformer: Transformer,
        blob_store: BlobStore,
        max_concurrent: int = 8,
        clock_ms: Callable[[], int] = _epoch_ms,
    ) -> None:
        self._jobs = jobs
        self._ledger = ledger
        self._history = history
        self._transformer = transformer
        self._blob_store = blob_store
        self._semaphore = asyncio.Semaphore(max_concurrent)
        self._clock_ms = clock_ms
        self._tasks: set[asyncio.Task] = set()

    @property
    def pending_count(self) -> int:
        """Jobs submitted and not yet finished."""
        return len(self._tasks)

    def submit(self, job_id: int) -> asyncio.Task:
        """
        Schedule a job and return immediately.

        Failures of the task are logged and dropped.
        """
        task = asyncio.create_task(self._run_bounded(job_id), name=f"job-{job_id}")
        self._tasks.add(task)
        task.add_done_callback(self._on_done)
        return task

    def _on_done(self, task: asyncio.Task) -> None:
        self._tasks.discard(task)
        if task.cancelled():
            logger.warning(f"Task {task.get_name()} was cancelled")
            return
        exc = task.exception()
        if exc is not None:
            logger.error(f"Task {task.get_name()} crashed: {exc!r}")

    async def _run_bounded(self, job_id: int) -> Job | None:
        async with self._semaphore:
            return await self.run(job_id)

    async def drain(self) -> None:
        """Wait until every submitted job has finished."""
        while self._tasks:
            await asyncio.gather(*list(self._tasks), return_exceptions=True)

    async def run(self, job_id: int) -> Job | None:
        """
        Execute one job to completion.

        Returns:
            The job in its final state, or None if it no longer exists
        """
        job = await self._jobs.get(job_id)
        if job is None:
            logger.info(f"Job {job_id} no longer exists, skipping")
            return None

        if not await self._jobs.transition(job.id, JobStatus.PROCESSING):
            logger.warning(f"Job {job.id} is {job.status.value}, not starting it")
            return job

        started = time.monotonic()
        success = False
        output_ref: str | None = None
        error_message: str | None = None

        try:
            output_key = make_output_key(
                job.owner, job.id, self._clock_ms(), output_extension(job.params)
            )
            data = await self._blob_store.get(job.input_ref)
            result = await self._transformer.process(data, job.params, output_key)
            if not result.ok:
                raise TransformationFailedError(
                    result.error or "Transformation failed", job_id=job.id
                )

            output_ref = result.output_key or output_key
            await self._jobs.transition(
                job.id,
                JobStatus.COMPLETED,
                {"output_ref": output_ref, "processed_at": utcnow().isoformat()},
            )
            success = True
            logger.info(f"Job {job.id} completed ({output_ref})")
        except Exception as exc:
            error_message = str(exc) or exc.__class__.__name__
            logger.error(f"Job {job.id} failed: {error_message}")
            await self._jobs.transition(job.id, JobStatus.FAILED, {"error": error_message})
        finally:
            duration_ms = int((time.monotonic() - started) * 1000)
            if not success:
                await self._compensate(job)
            await self._record(job, success, duration_ms, output_ref, error_message)

        return await self._jobs.get(job.id)

    async def _compensate(self, job: Job) -> None:
        """Refund a failed job once. Errors are logged, never raised."""
        if job.role.is_privileged or job.cost <= 0:
            return
        try:
            applied = await self._ledger.refund(job.owner, job.id, job.cost, job.role)
        except Exception as exc:
            logger.error(f"Refund for job {job.id} failed, needs reconciliation: {exc}")
            return
        if applied:
            logger.info(f"Refunded {job.cost} credit(s) to {job.owner} for failed job {job.id}")

    async def _record(
        self,
        job: Job,
        success: bool,
        duration_ms: int,
        output_ref: str | None,
        error_message: str | None,
    ) -> None:
        outcome = ProcessingOutcome(
            job_id=job.id,
            owner=job.owner,
            input_ref=job.input_ref,
            success=success,
            duration_ms=duration_ms,
            output_ref=output_ref if success else None,
            error_message=error_message,
        )
        try:
            await self._history.record(outcome)
        except Exception as exc:
            logger.warning(f"Could not record outcome of job {job.id}: {exc}")
