"""
Ledger Facade - single entry point for credit operations.

Tries the durable ledger first and re-runs the same operation on the
in-process ledger when the durable store is unreachable. Business rejections
and lock contention are answers from a reachable store and go straight back
to the caller. A debit or refund the durable store already holds for the job
is never applied a second time on the fallback.
"""

from __future__ import annotations

from typing import TYPE_CHECKING, Any, Awaitable, Callable

from creditpipe.core.exceptions import (
    CompensationFailedError,
    ForbiddenError,
    InsufficientCreditsError,
    LockUnavailableError,
    ValidationError,
)
from creditpipe.core.logging import get_logger
from creditpipe.core.types import AccountSummary, LedgerTransaction, Role, UserAccount
from creditpipe.ledger.base import require_positive
from creditpipe.resilience.circuit import CircuitOpenError

if TYPE_CHECKING:
    from creditpipe.ledger.base import LedgerPort
    from creditpipe.ledger.fallback import MemoryLedger
    from creditpipe.resilience.circuit import CircuitBreaker

logger = get_logger("ledger")

# Outcomes that are answers, not outages: never trigger the fallback
BUSINESS_ERRORS: tuple[type[Exception], ...] = (
    InsufficientCreditsError,
    ValidationError,
    ForbiddenError,
)

# Errors that do not count against the durable store's circuit
NOT_OUTAGES: tuple[type[Exception], ...] = (*BUSINESS_ERRORS, LockUnavailableError)

LedgerCall = Callable[["LedgerPort"], Awaitable[Any]]


class LedgerFacade:
    """
    Credit ledger with transparent fallback.

    Args:
        durable: Durable ledger, or None to run on the fallback only
        fallback: In-process ledger
        circuit: Optional breaker probing durable availability
    """

    def __init__(
        self,
        durable: LedgerPort | None,
        fallback: MemoryLedger,
        circuit: CircuitBreaker | None = None,
    ) -> None:
        self._durable = durable
        self._fallback = fallback
        self._circuit = circuit
        self._degraded = False

    @property
    def fallback(self) -> MemoryLedger:
        return self._fallback

    def is_degraded(self) -> bool:
        """True if the last ledger call was served by the fallback."""
        return self._degraded

    async def _call_durable(self, call: LedgerCall) -> Any:
        if self._circuit is None:
            return await call(self._durable)
        async with self._circuit:
            return await call(self._durable)

    async def _already_committed(self, operation: str, on_record: LedgerCall) -> Any:
        """Result of a durable mutation that committed before its call failed, else None."""
        try:
            return await on_record(self._durable)
        except Exception as exc:
            logger.debug(f"Could not check durable record after failed {operation}: {exc}")
            return None

    async def _run(
        self,
        operation: str,
        call: LedgerCall,
        mutation: bool = False,
        on_record: LedgerCall | None = None,
    ) -> Any:
        """
        Run ``call`` on the durable ledger, else on the fallback.

        Args:
            operation: Name used in log lines
            call: The operation, applied to whichever ledger serves it
            mutation: Contention on a mutation is raised, not retried on the fallback
            on_record: Looks up the durable result of a mutation that may have
                committed before the call failed; None when nothing is on record
        """
        if self._durable is not None:
            try:
                result = await self._call_durable(call)
            except BUSINESS_ERRORS:
                raise
            except LockUnavailableError as exc:
                if mutation:
                    logger.warning(f"Account busy during {operation}, not applied: {exc}")
                    raise
                logger.warning(f"Durable ledger busy during {operation}, reading fallback: {exc}")
            except Exception as exc:
                if on_record is not None and not isinstance(exc, CircuitOpenError):
                    recorded = await self._already_committed(operation, on_record)
                    if recorded is not None:
                        logger.warning(
                            f"Durable {operation} committed before failing ({exc}), not re-applied"
                        )
                        self._degraded = False
                        return recorded
                logger.warning(f"Durable ledger failed during {operation}, using fallback: {exc}")
            else:
                self._degraded = False
                if isinstance(result, UserAccount):
                    self._fallback.observe(result)
                return result

        self._degraded = True
        return await call(self._fallback)

    async def get_balance(self, username: str, role: Role = Role.STANDARD) -> UserAccount:
        """
        Current balance of an account.

        Never raises: a broken fallback yields an empty balance.
        """
        try:
            return await self._run("get_balance", lambda port: port.get_account(username, role))
        except Exception as exc:
            logger.error(f"Could not read balance for {username}: {exc}")
            return UserAccount(username=username, role=role, balance=0)

    async def has_sufficient_credits(self, username: str, role: Role, amount: int) -> bool:
        if role.is_privileged:
            return True
        account = await self.get_balance(username, role)
        return account.is_privileged or account.balance >= amount

    async def debit(
        self,
        username: str,
        job_id: int,
        amount: int,
        role: Role = Role.STANDARD,
    ) -> UserAccount:
        """
        Atomically consume credits for a job.

        Raises:
            InsufficientCreditsError: If a standard balance is below amount
            LockUnavailableError: If the account stayed busy; nothing was debited
        """

        async def on_record(port: LedgerPort) -> UserAccount | None:
            if await port.debit_recorded(job_id):
                return await port.get_account(username, role)
            return None

        return await self._run(
            "debit",
            lambda port: port.debit(username, job_id, amount, role),
            mutation=True,
            on_record=on_record,
        )

    async def refund(
        self,
        username: str,
        job_id: int,
        amount: int,
        role: Role = Role.STANDARD,
    ) -> bool:
        """
        Compensate a debit on whichever store is reachable.

        Raises:
            CompensationFailedError: If no store could apply the refund, or the
                account stayed busy
        """

        async def on_record(port: LedgerPort) -> bool | None:
            return True if await port.refund_recorded(job_id) else None

        try:
            return await self._run(
                "refund",
                lambda port: port.refund(username, job_id, amount, role),
                mutation=True,
                on_record=on_record,
            )
        except BUSINESS_ERRORS:
            raise
        except Exception as exc:
            raise CompensationFailedError(
                "Refund could not be applied", username=username, job_id=job_id, amount=amount
            ) from exc

    async def grant(
        self,
        username: str,
        amount: int,
        granted_by: str,
        granter_role: Role,
        role: Role = Role.STANDARD,
    ) -> UserAccount:
        """
        Add credits administratively.

        Raises:
            ForbiddenError: If the granter is not privileged
            ValidationError: If amount is not positive
            LockUnavailableError: If the account stayed busy
        """
        if not granter_role.is_privileged:
            raise ForbiddenError("Privileged access required to grant credits")
        require_positive(amount)
        return await self._run(
            "grant",
            lambda port: port.grant(username, amount, granted_by, role),
            mutation=True,
        )

    async def get_transactions(self, username: str, limit: int = 50) -> list[LedgerTransaction]:
        return await self._run(
            "get_transactions", lambda port: port.get_transactions(username, limit)
        )

    async def list_accounts(self) -> list[AccountSummary]:
        return await self._run("list_accounts", lambda port: port.list_accounts())

    def fallback_journal(self) -> list[LedgerTransaction]:
        """Transactions applied on the fallback that the durable store never saw."""
        return self._fallback.journal()
