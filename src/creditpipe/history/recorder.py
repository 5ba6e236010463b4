"""
History Recorder - append-only log of job outcomes.

On the durable path a successful outcome and the rolling aggregates it
feeds are committed in one batch, so the aggregates never drift from the log
they summarize. When the durable store is unreachable the outcome is kept in
memory and the aggregates are left alone.
"""

from __future__ import annotations

import itertools
from dataclasses import replace
from decimal import Decimal
from typing import TYPE_CHECKING, Any

from creditpipe.core.logging import get_logger
from creditpipe.core.types import ProcessingOutcome, ProcessingStats, utcnow
from creditpipe.ledger.lock import AccountLockService
from creditpipe.resilience.circuit import CircuitOpenError

if TYPE_CHECKING:
    from creditpipe.resilience.circuit import CircuitBreaker
    from creditpipe.storage.base import StorageBackend

logger = get_logger("history")


class HistoryRecorder:
    """
    Outcome log with ``units_processed`` and ``average_duration_ms`` aggregates.

    Args:
        storage: Durable storage backend, or None for memory only
        locks: Lock service guarding the aggregate row
        circuit: Optional breaker probing durable availability
    """

    OUTCOMES = "outcomes"
    STATS = "history_stats"
    STATS_KEY = "processing"
    SEQUENCES = "sequences"

    def __init__(
        self,
        storage: StorageBackend | None,
        locks: AccountLockService | None = None,
        circuit: CircuitBreaker | None = None,
    ) -> None:
        self._storage = storage
        self._locks = locks
        if self._locks is None and storage is not None:
            self._locks = AccountLockService(storage, namespace="stats")
        self._circuit = circuit
        self._fallback: list[ProcessingOutcome] = []
        self._fallback_ids = itertools.count(1)

    async def record(self, outcome: ProcessingOutcome) -> int:
        """
        Append an outcome.

        Returns:
            Id assigned to the outcome
        """
        if self._storage is not None:
            try:
                if self._circuit is None:
                    return await self._record_durable(outcome)
                async with self._circuit:
                    return await self._record_durable(outcome)
            except Exception as exc:
                committed = None
                if not isinstance(exc, CircuitOpenError):
                    committed = await self._committed_id(outcome)
                if committed is not None:
                    logger.warning(
                        f"Outcome for job {outcome.job_id} committed before failing ({exc}), not kept twice"
                    )
                    return committed
                logger.warning(f"Durable history unavailable, keeping outcome in memory: {exc}")

        stored = replace(outcome, id=next(self._fallback_ids))
        self._fallback.append(stored)
        return stored.id

    async def _record_durable(self, outcome: ProcessingOutcome) -> int:
        async with self._locks.hold(self.STATS_KEY):
            value = await self._storage.atomic_add(self.SEQUENCES, self.OUTCOMES, "1")
            stored = replace(outcome, id=int(Decimal(value)))
            writes = [(self.OUTCOMES, str(stored.id), stored.to_dict())]

            if stored.success:
                current = await self._storage.get(self.STATS, self.STATS_KEY) or {}
                units = int(current.get("units_processed", 0)) + 1
                average = float(current.get("average_duration_ms", 0.0))
                # running mean over successful outcomes
                average += (stored.duration_ms - average) / units
                writes.append(
                    (
                        self.STATS,
                        self.STATS_KEY,
                        {
                            "units_processed": units,
                            "average_duration_ms": average,
                            "updated_at": utcnow().isoformat(),
                        },
                    )
                )

            await self._storage.save_batch(writes)

        logger.debug(f"Recorded outcome {stored.id} for job {stored.job_id}")
        return stored.id

    async def _committed_id(self, outcome: ProcessingOutcome) -> int | None:
        """Id of ``outcome`` if the durable log already holds it."""
        for stored in await self._durable_outcomes({"job_id": outcome.job_id}):
            if stored.recorded_at == outcome.recorded_at:
                return stored.id
        return None

    async def _durable_outcomes(self, filters: dict[str, Any] | None = None) -> list[ProcessingOutcome]:
        if self._storage is None:
            return []
        try:
            rows = await self._storage.query(self.OUTCOMES, filters=filters)
        except Exception as exc:
            logger.warning(f"Durable history unavailable for read: {exc}")
            return []
        return [ProcessingOutcome.from_dict(row) for row in rows]

    async def _all_outcomes(self, filters: dict[str, Any] | None = None) -> list[ProcessingOutcome]:
        outcomes = await self._durable_outcomes(filters)
        for outcome in self._fallback:
            if filters and any(getattr(outcome, k) != v for k, v in filters.items()):
                continue
            outcomes.append(outcome)
        return outcomes

    async def get_for_job(self, job_id: int) -> ProcessingOutcome | None:
        """Latest outcome recorded for a job."""
        outcomes = await self._all_outcomes({"job_id": job_id})
        if not outcomes:
            return None
        return max(outcomes, key=lambda o: o.recorded_at)

    async def list_for_user(self, username: str, limit: int = 50) -> list[ProcessingOutcome]:
        outcomes = await self._all_outcomes({"owner": username})
        outcomes.sort(key=lambda o: o.recorded_at, reverse=True)
        return outcomes[:limit]

    async def delete_for_job(self, job_id: int) -> int:
        """
        Remove the outcome records of a deleted job.

        Returns:
            Number of records removed
        """
        removed = 0
        for outcome in await self._durable_outcomes({"job_id": job_id}):
            if await self._storage.delete(self.OUTCOMES, str(outcome.id)):
                removed += 1

        kept = [o for o in self._fallback if o.job_id != job_id]
        removed += len(self._fallback) - len(kept)
        self._fallback = kept
        return removed

    async def get_aggregates(self) -> dict[str, Any]:
        """Current durable aggregates (empty when unreachable)."""
        if self._storage is None:
            return {}
        try:
            data = await self._storage.get(self.STATS, self.STATS_KEY)
        except Exception as exc:
            logger.warning(f"Durable history unavailable for aggregates: {exc}")
            return {}
        return data or {"units_processed": 0, "average_duration_ms": 0.0}

    async def get_processing_stats(self) -> ProcessingStats:
        """Totals over every outcome this recorder can see."""
        outcomes = await self._all_outcomes()
        total = len(outcomes)
        successful = sum(1 for o in outcomes if o.success)
        average = sum(o.duration_ms for o in outcomes) / total if total else 0.0
        return ProcessingStats(
            total_processed=total,
            successful=successful,
            success_rate=(successful / total) * 100 if total else 0.0,
            average_duration_ms=average,
            total_users=len({o.owner for o in outcomes}),
        )

    def fallback_outcomes(self) -> list[ProcessingOutcome]:
        return list(self._fallback)
