"""
In-process ledger used while the durable store is unreachable.

Nothing here awaits, so a call never suspends and runs as one critical
section under asyncio. The threading lock keeps the same guarantee if the
ledger is ever driven from several threads.
"""

from __future__ import annotations

import itertools
import threading
from collections import Counter
from typing import TYPE_CHECKING, Callable

from creditpipe.core.exceptions import InsufficientCreditsError
from creditpipe.core.logging import get_logger
from creditpipe.core.types import (
    AccountSummary,
    LedgerTransaction,
    Role,
    TransactionKind,
    UserAccount,
    utcnow,
)
from creditpipe.ledger.base import (
    DEBIT_DESCRIPTION,
    REFUND_DESCRIPTION,
    LedgerPort,
    grant_description,
    require_positive,
)

if TYPE_CHECKING:
    from datetime import datetime

logger = get_logger("ledger.fallback")


class MemoryLedger(LedgerPort):
    """
    Volatile credit ledger.

    Keeps accounts in a dict and every transaction it applies in a journal.
    The journal is not replayed into the durable store automatically; it is
    exposed through ``journal()`` for out-of-band reconciliation.
    """

    def __init__(
        self,
        starter_credits: int = 10,
        privileged_credits: int = 999999,
        clock: Callable[[], datetime] = utcnow,
    ) -> None:
        self._starter_credits = starter_credits
        self._privileged_credits = privileged_credits
        self._clock = clock
        self._accounts: dict[str, UserAccount] = {}
        self._journal: list[LedgerTransaction] = []
        self._debited_jobs: set[int] = set()
        self._refunded_jobs: set[int] = set()
        self._ids = itertools.count(1)
        self._mutex = threading.Lock()

    def _ensure(self, username: str, role: Role) -> UserAccount:
        account = self._accounts.get(username)
        if account is None:
            opening = self._privileged_credits if role.is_privileged else self._starter_credits
            account = UserAccount(
                username=username, role=role, balance=opening, last_updated=self._clock()
            )
            self._accounts[username] = account
            logger.info(f"Opening fallback account {username} ({role.value}) with {opening} credits")
        return account

    def _append(
        self, username: str, amount: int, kind: TransactionKind, job_id: int | None, description: str
    ) -> LedgerTransaction:
        txn = LedgerTransaction(
            id=next(self._ids),
            username=username,
            job_id=job_id,
            amount=amount,
            kind=kind,
            description=description,
            created_at=self._clock(),
        )
        self._journal.append(txn)
        return txn

    @staticmethod
    def _copy(account: UserAccount) -> UserAccount:
        return UserAccount(
            username=account.username,
            role=account.role,
            balance=account.balance,
            last_updated=account.last_updated,
        )

    def observe(self, account: UserAccount) -> None:
        """Adopt the last known durable state of an account."""
        with self._mutex:
            self._accounts[account.username] = self._copy(account)

    async def get_account(self, username: str, role: Role = Role.STANDARD) -> UserAccount:
        with self._mutex:
            return self._copy(self._ensure(username, role))

    async def debit(
        self,
        username: str,
        job_id: int,
        amount: int,
        role: Role = Role.STANDARD,
    ) -> UserAccount:
        require_positive(amount)
        with self._mutex:
            account = self._ensure(username, role)

            if job_id in self._debited_jobs:
                logger.warning(f"Job {job_id} already debited in fallback, ignoring")
                return self._copy(account)

            if account.is_privileged or role.is_privileged:
                return self._copy(account)

            if account.balance < amount:
                raise InsufficientCreditsError(
                    "Insufficient credits",
                    current_balance=account.balance,
                    required_amount=amount,
                    username=username,
                )

            account.balance -= amount
            account.last_updated = self._clock()
            self._append(username, amount, TransactionKind.DEBIT, job_id, DEBIT_DESCRIPTION)
            self._debited_jobs.add(job_id)
            return self._copy(account)

    async def refund(
        self,
        username: str,
        job_id: int,
        amount: int,
        role: Role = Role.STANDARD,
    ) -> bool:
        require_positive(amount)
        with self._mutex:
            if job_id in self._refunded_jobs:
                logger.warning(f"Job {job_id} already refunded in fallback, ignoring")
                return False

            account = self._ensure(username, role)
            if account.is_privileged:
                return False

            account.balance += amount
            account.last_updated = self._clock()
            self._append(username, amount, TransactionKind.REFUND, job_id, REFUND_DESCRIPTION)
            self._refunded_jobs.add(job_id)
            return True

    async def grant(
        self,
        username: str,
        amount: int,
        granted_by: str,
        role: Role = Role.STANDARD,
    ) -> UserAccount:
        require_positive(amount)
        with self._mutex:
            account = self._ensure(username, role)
            account.balance += amount
            account.last_updated = self._clock()
            self._append(username, amount, TransactionKind.GRANT, None, grant_description(granted_by))
            return self._copy(account)

    async def get_transactions(self, username: str, limit: int = 50) -> list[LedgerTransaction]:
        with self._mutex:
            txns = [t for t in self._journal if t.username == username]
        txns.sort(key=lambda t: t.id, reverse=True)
        return txns[:limit]

    async def list_accounts(self) -> list[AccountSummary]:
        with self._mutex:
            counts = Counter(t.username for t in self._journal)
            summaries = [
                AccountSummary(
                    username=a.username,
                    role=a.role,
                    balance=a.balance,
                    last_updated=a.last_updated,
                    total_transactions=counts[a.username],
                )
                for a in self._accounts.values()
            ]
        summaries.sort(key=lambda s: s.username)
        return summaries

    async def debit_recorded(self, job_id: int) -> bool:
        with self._mutex:
            return job_id in self._debited_jobs

    async def refund_recorded(self, job_id: int) -> bool:
        with self._mutex:
            return job_id in self._refunded_jobs

    def journal(self) -> list[LedgerTransaction]:
        """Transactions applied while running on the fallback, oldest first."""
        with self._mutex:
            return list(self._journal)
