"""Tests for JobService admission ordering."""

from unittest.mock import MagicMock

import pytest

from creditpipe.core.exceptions import InsufficientCreditsError
from creditpipe.core.types import Role, TransactionKind
from creditpipe.history import HistoryRecorder
from creditpipe.jobs import JobService, JobStore, StorageJobStore
from creditpipe.ledger import LedgerFacade, MemoryLedger, StorageLedger


class BrokenCreateStore(JobStore):
    async def create(self, *args, **kwargs):
        raise RuntimeError("job row could not be written")


def make_service(storage, jobs, starter_credits=10):
    ledger = LedgerFacade(StorageLedger(storage, starter_credits=starter_credits), MemoryLedger())
    executor = MagicMock()
    service = JobService(jobs, ledger, executor, HistoryRecorder(storage), job_cost=1)
    return service, ledger, executor


@pytest.mark.asyncio
async def test_submit_hands_job_to_executor(storage):
    service, ledger, executor = make_service(storage, JobStore(StorageJobStore(storage)))

    job = await service.submit("alice", Role.STANDARD, "uploads/cat.png", {"format": "png"})

    executor.submit.assert_called_once_with(job.id)
    assert job.params == {"format": "png"}
    assert (await ledger.get_balance("alice")).balance == 9


@pytest.mark.asyncio
async def test_debit_returned_when_job_row_fails(storage):
    service, ledger, executor = make_service(storage, BrokenCreateStore(StorageJobStore(storage)))

    with pytest.raises(RuntimeError):
        await service.submit("alice", Role.STANDARD, "uploads/cat.png")

    executor.submit.assert_not_called()
    assert (await ledger.get_balance("alice")).balance == 10
    kinds = [t.kind for t in await ledger.get_transactions("alice")]
    assert kinds[:2] == [TransactionKind.REFUND, TransactionKind.DEBIT]


@pytest.mark.asyncio
async def test_rejected_admission_writes_nothing(storage):
    jobs = JobStore(StorageJobStore(storage))
    service, _, executor = make_service(storage, jobs, starter_credits=0)

    with pytest.raises(InsufficientCreditsError):
        await service.submit("alice", Role.STANDARD, "uploads/cat.png")

    executor.submit.assert_not_called()
    assert (await jobs.stats())["total"] == 0
    assert await storage.get("sequences", "jobs") is None
