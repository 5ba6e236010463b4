"""CreditPipe - Main entry point."""

from __future__ import annotations

from typing import Any

from creditpipe.core.config import Config
from creditpipe.core.exceptions import ForbiddenError, LockUnavailableError
from creditpipe.core.logging import configure_logging, get_logger
from creditpipe.core.types import (
    AccountSummary,
    BatchSubmission,
    Job,
    JobPage,
    JobStatus,
    LedgerTransaction,
    ProcessingOutcome,
    ProcessingStats,
    Role,
    UserAccount,
)
from creditpipe.history.recorder import HistoryRecorder
from creditpipe.jobs.durable import StorageJobStore
from creditpipe.jobs.executor import JobExecutor
from creditpipe.jobs.service import JobService
from creditpipe.jobs.store import JobSort, JobStore
from creditpipe.ledger.durable import StorageLedger
from creditpipe.ledger.facade import NOT_OUTAGES, LedgerFacade
from creditpipe.ledger.fallback import MemoryLedger
from creditpipe.ledger.lock import AccountLockService
from creditpipe.processing.base import BlobStore, Transformer
from creditpipe.processing.memory import InMemoryBlobStore
from creditpipe.resilience.circuit import CircuitBreaker
from creditpipe.storage import InMemoryStorage, StorageBackend, get_storage


def _as_role(role: Role | str) -> Role:
    return role if isinstance(role, Role) else Role.from_string(role)


class CreditPipe:
    """
    Main client for creditpipe.

    Wires the ledger, the job store, the executor and the history recorder
    onto one durable storage backend, each with its in-process fallback.

    Example:
        >>> pipe = CreditPipe(transformer=MyTransformer(), blob_store=store)
        >>> job = await pipe.submit_job("alice", "standard", "uploads/a.png")
        >>> await pipe.wait_for_jobs()
        >>> (await pipe.get_credits("alice")).balance
        9
    """

    def __init__(
        self,
        transformer: Transformer,
        blob_store: BlobStore | None = None,
        config: Config | None = None,
        storage: StorageBackend | None = None,
        log_level: int | str | None = None,
    ) -> None:
        """
        Initialize the pipeline.

        Args:
            transformer: Transformation capability run for each job
            blob_store: Input/output object store (in-memory if omitted)
            config: Configuration (read from CREDITPIPE_* env if omitted)
            storage: Durable backend, overriding ``config.storage_backend``
            log_level: Logging level, overriding ``config.log_level``
        """
        self._config = config or Config.from_env()

        configure_logging(
            level=log_level or self._config.log_level, json_format=self._config.log_json
        )
        self._logger = get_logger("client")
        self._logger.info(
            f"Initializing creditpipe (backend: {self._config.storage_backend}, "
            f"env: {self._config.env})"
        )

        if storage is None:
            kwargs: dict[str, Any] = {}
            if self._config.storage_backend == "redis":
                kwargs["redis_url"] = self._config.redis_url
            storage = get_storage(self._config.storage_backend, **kwargs)
        self._storage = storage

        # Breaker state must survive the guarded store going down
        self._circuit_state = InMemoryStorage()
        self._ledger_circuit = self._circuit("ledger", excluded=NOT_OUTAGES)
        self._jobs_circuit = self._circuit("jobs")
        self._history_circuit = self._circuit("history", excluded=(LockUnavailableError,))

        cfg = self._config
        self._ledger = LedgerFacade(
            durable=StorageLedger(
                storage,
                locks=AccountLockService(
                    storage,
                    ttl=cfg.lock_ttl,
                    retry_count=cfg.lock_retries,
                    retry_delay=cfg.lock_retry_delay,
                ),
                starter_credits=cfg.starter_credits,
                privileged_credits=cfg.privileged_credits,
            ),
            fallback=MemoryLedger(
                starter_credits=cfg.starter_credits,
                privileged_credits=cfg.privileged_credits,
            ),
            circuit=self._ledger_circuit,
        )
        self._jobs = JobStore(StorageJobStore(storage), circuit=self._jobs_circuit)
        self._history = HistoryRecorder(
            storage,
            locks=AccountLockService(
                storage,
                ttl=cfg.lock_ttl,
                retry_count=cfg.lock_retries,
                retry_delay=cfg.lock_retry_delay,
                namespace="stats",
            ),
            circuit=self._history_circuit,
        )
        self._blob_store = blob_store or InMemoryBlobStore()
        self._executor = JobExecutor(
            self._jobs,
            self._ledger,
            self._history,
            transformer,
            self._blob_store,
            max_concurrent=cfg.max_concurrent_jobs,
        )
        self._job_service = JobService(
            self._jobs, self._ledger, self._executor, self._history, job_cost=cfg.job_cost
        )

    def _circuit(
        self, name: str, excluded: tuple[type[BaseException], ...] = ()
    ) -> CircuitBreaker:
        return CircuitBreaker(
            name,
            self._circuit_state,
            failure_threshold=self._config.circuit_failure_threshold,
            recovery_timeout=self._config.circuit_recovery_timeout,
            excluded=excluded,
        )

    @property
    def config(self) -> Config:
        return self._config

    @property
    def storage(self) -> StorageBackend:
        return self._storage

    @property
    def ledger(self) -> LedgerFacade:
        return self._ledger

    @property
    def jobs(self) -> JobStore:
        return self._jobs

    @property
    def history(self) -> HistoryRecorder:
        return self._history

    @property
    def blob_store(self) -> BlobStore:
        return self._blob_store

    # ------------------------------------------------------------------
    # Jobs
    # ------------------------------------------------------------------

    async def submit_job(
        self,
        owner: str,
        role: Role | str,
        input_ref: str,
        params: dict[str, Any] | None = None,
    ) -> Job:
        """
        Admit a job and start it in the background.

        Raises:
            ValidationError: If ``input_ref`` is empty
            InsufficientCreditsError: If a standard owner cannot pay
        """
        return await self._job_service.submit(owner, _as_role(role), input_ref, params)

    async def submit_jobs(
        self,
        owner: str,
        role: Role | str,
        input_refs: list[str],
        params: dict[str, Any] | None = None,
    ) -> BatchSubmission:
        return await self._job_service.submit_batch(owner, _as_role(role), input_refs, params)

    async def get_job(self, job_id: int, requester: str, role: Role | str) -> Job:
        return await self._job_service.get_job(job_id, requester, _as_role(role))

    async def list_jobs(
        self,
        requester: str,
        role: Role | str,
        status: JobStatus | str | None = None,
        page: int = 1,
        page_size: int = 20,
        sort: JobSort | str | None = None,
    ) -> JobPage:
        """
        Page through visible jobs.

        ``sort`` accepts a ``JobSort`` or a field name, optionally prefixed
        with ``-`` for descending order (default ``-created_at``).
        """
        if isinstance(status, str):
            status = JobStatus(status)
        if sort is None or isinstance(sort, str):
            sort = JobSort.parse(sort)
        return await self._job_service.list_jobs(
            requester, _as_role(role), status, page, page_size, sort
        )

    async def delete_job(self, job_id: int, requester: str, role: Role | str) -> None:
        await self._job_service.delete_job(job_id, requester, _as_role(role))

    async def job_stats(self) -> dict[str, int]:
        return await self._job_service.job_stats()

    async def wait_for_jobs(self) -> None:
        """Block until every submitted job has reached a terminal state."""
        await self._executor.drain()

    # ------------------------------------------------------------------
    # Credits
    # ------------------------------------------------------------------

    async def get_credits(self, username: str, role: Role | str = Role.STANDARD) -> UserAccount:
        return await self._ledger.get_balance(username, _as_role(role))

    async def grant_credits(
        self,
        username: str,
        amount: int,
        granted_by: str,
        granter_role: Role | str,
        role: Role | str = Role.STANDARD,
    ) -> UserAccount:
        return await self._ledger.grant(
            username, amount, granted_by, _as_role(granter_role), _as_role(role)
        )

    async def list_credits(self, requester_role: Role | str) -> list[AccountSummary]:
        """Every account with its balance (privileged only)."""
        if not _as_role(requester_role).is_privileged:
            raise ForbiddenError("Privileged access required to list accounts")
        return await self._ledger.list_accounts()

    async def get_transactions(
        self,
        username: str,
        requester: str,
        requester_role: Role | str,
        limit: int = 50,
    ) -> list[LedgerTransaction]:
        """Audit trail of one account, newest first (own account or privileged)."""
        if requester != username and not _as_role(requester_role).is_privileged:
            raise ForbiddenError("Access denied", {"username": username})
        return await self._ledger.get_transactions(username, limit)

    # ------------------------------------------------------------------
    # History
    # ------------------------------------------------------------------

    async def processing_history(self, username: str, limit: int = 50) -> list[ProcessingOutcome]:
        return await self._history.list_for_user(username, limit)

    async def processing_stats(self) -> ProcessingStats:
        return await self._history.get_processing_stats()

    # ------------------------------------------------------------------
    # Lifecycle
    # ------------------------------------------------------------------

    async def health(self) -> dict[str, Any]:
        """Reachability of the durable store and state of each breaker."""
        try:
            storage_ok = await self._storage.health_check()
        except Exception as exc:
            self._logger.warning(f"Storage health check failed: {exc}")
            storage_ok = False

        circuits = {}
        for circuit in (self._ledger_circuit, self._jobs_circuit, self._history_circuit):
            circuits[circuit.service] = (await circuit.get_state()).value

        return {
            "storage": "ok" if storage_ok else "unreachable",
            "circuits": circuits,
            "ledger_degraded": self._ledger.is_degraded(),
            "pending_jobs": self._executor.pending_count,
            "unreconciled_transactions": len(self._ledger.fallback_journal()),
        }

    async def close(self) -> None:
        """Finish in-flight jobs and release the storage connection."""
        await self._executor.drain()
        await self._storage.close()
        self._logger.info("creditpipe closed")

    async def __aenter__(self) -> CreditPipe:
        return self

    async def __aexit__(self, exc_type, exc_val, exc_tb) -> None:
        await self.close()
