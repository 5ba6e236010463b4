"""
Durable ledger backed by a StorageBackend.

Each mutation locks the account, re-reads it, checks, and commits the
account row together with its transaction row in one ``save_batch``.
Because the opening balance is itself logged, replaying the transaction
log always reproduces the stored balance.
"""

from __future__ import annotations

from collections import Counter
from decimal import Decimal
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
    OPENING_DESCRIPTION,
    REFUND_DESCRIPTION,
    LedgerPort,
    grant_description,
    require_positive,
)
from creditpipe.ledger.lock import AccountLockService

if TYPE_CHECKING:
    from datetime import datetime

    from creditpipe.storage.base import BatchWrite, StorageBackend

logger = get_logger("ledger.durable")


class StorageLedger(LedgerPort):
    """
    Credit ledger persisted through a StorageBackend.

    Collections:
        ledger_accounts: one row per username
        ledger_transactions: append-only, keyed by sequence id
        ledger_debits: one marker per debited job id
        ledger_refunds: one marker per refunded job id
    """

    ACCOUNTS = "ledger_accounts"
    TRANSACTIONS = "ledger_transactions"
    DEBITS = "ledger_debits"
    REFUNDS = "ledger_refunds"
    SEQUENCES = "sequences"

    def __init__(
        self,
        storage: StorageBackend,
        locks: AccountLockService | None = None,
        starter_credits: int = 10,
        privileged_credits: int = 999999,
        clock: Callable[[], datetime] = utcnow,
    ) -> None:
        """
        Initialize ledger with storage backend.

        Args:
            storage: The durable storage backend (InMemory, Redis, etc.)
            locks: Account lock service (defaults to locks on the same storage)
            starter_credits: Opening balance of a standard account
            privileged_credits: Opening balance of a privileged account
            clock: Source of timestamps
        """
        self._storage = storage
        self._locks = locks or AccountLockService(storage)
        self._starter_credits = starter_credits
        self._privileged_credits = privileged_credits
        self._clock = clock

    def opening_balance(self, role: Role) -> int:
        return self._privileged_credits if role.is_privileged else self._starter_credits

    async def _next_id(self) -> int:
        value = await self._storage.atomic_add(self.SEQUENCES, self.TRANSACTIONS, "1")
        return int(Decimal(value))

    async def _new_transaction(
        self,
        username: str,
        amount: int,
        kind: TransactionKind,
        job_id: int | None,
        description: str,
    ) -> LedgerTransaction:
        return LedgerTransaction(
            id=await self._next_id(),
            username=username,
            job_id=job_id,
            amount=amount,
            kind=kind,
            description=description,
            created_at=self._clock(),
        )

    def _account_write(self, account: UserAccount) -> BatchWrite:
        return (self.ACCOUNTS, account.username, account.to_dict())

    def _transaction_write(self, txn: LedgerTransaction) -> BatchWrite:
        return (self.TRANSACTIONS, str(txn.id), txn.to_dict())

    async def _load(self, username: str) -> UserAccount | None:
        data = await self._storage.get(self.ACCOUNTS, username)
        if data is None:
            return None
        return UserAccount.from_dict(data)

    async def _open(self, username: str, role: Role) -> tuple[UserAccount, list[BatchWrite]]:
        """Load the account or stage its creation. Caller holds the account lock."""
        existing = await self._load(username)
        if existing is not None:
            return existing, []

        opening = self.opening_balance(role)
        account = UserAccount(
            username=username, role=role, balance=opening, last_updated=self._clock()
        )
        opening_txn = await self._new_transaction(
            username, opening, TransactionKind.GRANT, None, OPENING_DESCRIPTION
        )
        logger.info(f"Opening account {username} ({role.value}) with {opening} credits")
        return account, [self._account_write(account), self._transaction_write(opening_txn)]

    async def get_account(self, username: str, role: Role = Role.STANDARD) -> UserAccount:
        account = await self._load(username)
        if account is not None:
            return account

        async with self._locks.hold(username):
            account, writes = await self._open(username, role)
            if writes:
                await self._storage.save_batch(writes)
        return account

    async def debit(
        self,
        username: str,
        job_id: int,
        amount: int,
        role: Role = Role.STANDARD,
    ) -> UserAccount:
        require_positive(amount)

        async with self._locks.hold(username):
            account, writes = await self._open(username, role)
            if await self.debit_recorded(job_id):
                logger.warning(f"Job {job_id} already debited, ignoring second debit")
                return account

            if account.is_privileged or role.is_privileged:
                if writes:
                    await self._storage.save_batch(writes)
                logger.debug(f"Privileged account {username} not debited for job {job_id}")
                return account

            if account.balance < amount:
                if writes:
                    await self._storage.save_batch(writes)
                raise InsufficientCreditsError(
                    "Insufficient credits",
                    current_balance=account.balance,
                    required_amount=amount,
                    username=username,
                )

            account.balance -= amount
            account.last_updated = self._clock()
            txn = await self._new_transaction(
                username, amount, TransactionKind.DEBIT, job_id, DEBIT_DESCRIPTION
            )
            marker = {"job_id": job_id, "username": username, "transaction_id": txn.id}
            await self._storage.save_batch(
                [
                    *writes,
                    self._account_write(account),
                    self._transaction_write(txn),
                    (self.DEBITS, str(job_id), marker),
                ]
            )

        logger.debug(f"Debited {amount} from {username} for job {job_id} (balance {account.balance})")
        return account

    async def refund(
        self,
        username: str,
        job_id: int,
        amount: int,
        role: Role = Role.STANDARD,
    ) -> bool:
        require_positive(amount)

        async with self._locks.hold(username):
            if await self.refund_recorded(job_id):
                logger.warning(f"Job {job_id} already refunded, ignoring second refund")
                return False

            account, writes = await self._open(username, role)
            if account.is_privileged:
                if writes:
                    await self._storage.save_batch(writes)
                return False

            account.balance += amount
            account.last_updated = self._clock()
            txn = await self._new_transaction(
                username, amount, TransactionKind.REFUND, job_id, REFUND_DESCRIPTION
            )
            marker = {"job_id": job_id, "username": username, "transaction_id": txn.id}
            await self._storage.save_batch(
                [
                    *writes,
                    self._account_write(account),
                    self._transaction_write(txn),
                    (self.REFUNDS, str(job_id), marker),
                ]
            )

        logger.info(f"Refunded {amount} to {username} for job {job_id}")
        return True

    async def grant(
        self,
        username: str,
        amount: int,
        granted_by: str,
        role: Role = Role.STANDARD,
    ) -> UserAccount:
        require_positive(amount)

        async with self._locks.hold(username):
            account, writes = await self._open(username, role)
            account.balance += amount
            account.last_updated = self._clock()
            txn = await self._new_transaction(
                username, amount, TransactionKind.GRANT, None, grant_description(granted_by)
            )
            await self._storage.save_batch(
                [*writes, self._account_write(account), self._transaction_write(txn)]
            )

        logger.info(f"{granted_by} granted {amount} credits to {username}")
        return account

    async def _all_transactions(self, username: str | None = None) -> list[LedgerTransaction]:
        filters = {"username": username} if username else None
        rows = await self._storage.query(self.TRANSACTIONS, filters=filters)
        return [LedgerTransaction.from_dict(row) for row in rows]

    async def get_transactions(self, username: str, limit: int = 50) -> list[LedgerTransaction]:
        txns = await self._all_transactions(username)
        txns.sort(key=lambda t: t.id, reverse=True)
        return txns[:limit]

    async def list_accounts(self) -> list[AccountSummary]:
        rows = await self._storage.query(self.ACCOUNTS)
        counts = Counter(t.username for t in await self._all_transactions())

        summaries = []
        for row in rows:
            account = UserAccount.from_dict(row)
            summaries.append(
                AccountSummary(
                    username=account.username,
                    role=account.role,
                    balance=account.balance,
                    last_updated=account.last_updated,
                    total_transactions=counts[account.username],
                )
            )
        summaries.sort(key=lambda s: s.username)
        return summaries

    async def derive_balance(self, username: str) -> int:
        """Replay the transaction log of one account."""
        return sum(t.signed_amount for t in await self._all_transactions(username))

    async def debit_recorded(self, job_id: int) -> bool:
        return await self._storage.get(self.DEBITS, str(job_id)) is not None

    async def refund_recorded(self, job_id: int) -> bool:
        return await self._storage.get(self.REFUNDS, str(job_id)) is not None
