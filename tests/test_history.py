"""Tests for HistoryRecorder."""

import pytest

from creditpipe.core.types import ProcessingOutcome
from creditpipe.history import HistoryRecorder


def outcome(job_id, owner="alice", success=True, duration_ms=100):
    return ProcessingOutcome(
        job_id=job_id,
        owner=owner,
        input_ref=f"uploads/{job_id}.png",
        success=success,
        duration_ms=duration_ms,
        output_ref=f"processed/{owner}/{job_id}/1.jpg" if success else None,
        error_message=None if success else "boom",
    )


@pytest.fixture
def recorder(flaky_storage):
    return HistoryRecorder(flaky_storage)


class TestDurable:
    @pytest.mark.asyncio
    async def test_record_assigns_ids(self, recorder):
        assert await recorder.record(outcome(1)) == 1
        assert await recorder.record(outcome(2)) == 2

        stored = await recorder.get_for_job(2)
        assert stored.id == 2
        assert stored.output_ref == "processed/alice/2/1.jpg"

    @pytest.mark.asyncio
    async def test_aggregates_track_successes(self, recorder):
        await recorder.record(outcome(1, duration_ms=100))
        await recorder.record(outcome(2, duration_ms=300))
        await recorder.record(outcome(3, success=False, duration_ms=5000))

        aggregates = await recorder.get_aggregates()
        assert aggregates["units_processed"] == 2
        assert aggregates["average_duration_ms"] == pytest.approx(200.0)

    @pytest.mark.asyncio
    async def test_empty_aggregates(self, recorder):
        assert await recorder.get_aggregates() == {
            "units_processed": 0,
            "average_duration_ms": 0.0,
        }

    @pytest.mark.asyncio
    async def test_list_for_user(self, recorder):
        await recorder.record(outcome(1))
        await recorder.record(outcome(2, owner="bob"))
        await recorder.record(outcome(3))

        alice = await recorder.list_for_user("alice")
        assert sorted(o.job_id for o in alice) == [1, 3]
        assert len(await recorder.list_for_user("alice", limit=1)) == 1

    @pytest.mark.asyncio
    async def test_processing_stats(self, recorder):
        await recorder.record(outcome(1, duration_ms=100))
        await recorder.record(outcome(2, owner="bob", success=False, duration_ms=300))

        stats = await recorder.get_processing_stats()
        assert stats.total_processed == 2
        assert stats.successful == 1
        assert stats.success_rate == pytest.approx(50.0)
        assert stats.average_duration_ms == pytest.approx(200.0)
        assert stats.total_users == 2

    @pytest.mark.asyncio
    async def test_delete_for_job(self, recorder):
        await recorder.record(outcome(1))
        await recorder.record(outcome(2))

        assert await recorder.delete_for_job(1) == 1
        assert await recorder.get_for_job(1) is None
        assert await recorder.get_for_job(2) is not None


class TestFallback:
    @pytest.mark.asyncio
    async def test_outcome_kept_in_memory_when_unreachable(self, recorder, flaky_storage):
        flaky_storage.available = False

        outcome_id = await recorder.record(outcome(1))

        assert outcome_id == 1
        assert [o.job_id for o in recorder.fallback_outcomes()] == [1]
        assert await recorder.get_aggregates() == {}

    @pytest.mark.asyncio
    async def test_aggregates_untouched_by_fallback_outcomes(self, recorder, flaky_storage):
        await recorder.record(outcome(1, duration_ms=100))
        flaky_storage.available = False
        await recorder.record(outcome(2, duration_ms=900))
        flaky_storage.available = True

        aggregates = await recorder.get_aggregates()
        assert aggregates["units_processed"] == 1
        assert aggregates["average_duration_ms"] == pytest.approx(100.0)

        # Reads still see both outcomes
        stats = await recorder.get_processing_stats()
        assert stats.total_processed == 2

    @pytest.mark.asyncio
    async def test_committed_outcome_not_kept_twice(self, recorder, flaky_storage):
        flaky_storage.drop_after_commit = True

        assert await recorder.record(outcome(1)) == 1

        assert recorder.fallback_outcomes() == []
        assert len(await recorder.list_for_user("alice")) == 1
        assert (await recorder.get_aggregates())["units_processed"] == 1

    @pytest.mark.asyncio
    async def test_memory_only(self):
        recorder = HistoryRecorder(None)

        await recorder.record(outcome(1))
        assert (await recorder.get_for_job(1)).job_id == 1
        assert await recorder.delete_for_job(1) == 1
        assert recorder.fallback_outcomes() == []
