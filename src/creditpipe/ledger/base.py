"""
Ledger port.

The durable and the in-process ledgers implement the same interface so the
facade can swap one for the other without callers noticing.
"""

from __future__ import annotations

from abc import ABC, abstractmethod

from creditpipe.core.exceptions import ValidationError
from creditpipe.core.types import AccountSummary, LedgerTransaction, Role, UserAccount

DEBIT_DESCRIPTION = "Job admission debit"
REFUND_DESCRIPTION = "Job failed - credit refund"
OPENING_DESCRIPTION = "Opening balance"


def grant_description(granted_by: str) -> str:
    return f"Credits granted by {granted_by}"


def require_positive(amount: int) -> None:
    """Reject zero or negative credit amounts."""
    if amount <= 0:
        raise ValidationError("Amount must be positive", {"amount": amount})


class LedgerPort(ABC):
    """
    Abstract credit ledger.

    Accounts are created on first touch with a role-dependent opening
    balance. Every balance change appends one LedgerTransaction.
    """

    @abstractmethod
    async def get_account(self, username: str, role: Role = Role.STANDARD) -> UserAccount:
        """Return the account, opening it if this is the first touch."""
        ...

    @abstractmethod
    async def debit(
        self,
        username: str,
        job_id: int,
        amount: int,
        role: Role = Role.STANDARD,
    ) -> UserAccount:
        """
        Consume credits for a job.

        Privileged accounts are left untouched. Standard accounts are
        checked and decremented as one atomic step.

        Raises:
            InsufficientCreditsError: If a standard balance is below amount
        """
        ...

    @abstractmethod
    async def refund(
        self,
        username: str,
        job_id: int,
        amount: int,
        role: Role = Role.STANDARD,
    ) -> bool:
        """
        Give back the credits debited for a job.

        Returns:
            True if applied, False if this store already refunded the job
        """
        ...

    @abstractmethod
    async def grant(
        self,
        username: str,
        amount: int,
        granted_by: str,
        role: Role = Role.STANDARD,
    ) -> UserAccount:
        """Add credits administratively, attributed to ``granted_by``."""
        ...

    @abstractmethod
    async def get_transactions(self, username: str, limit: int = 50) -> list[LedgerTransaction]:
        """Newest-first transaction history for one account."""
        ...

    @abstractmethod
    async def list_accounts(self) -> list[AccountSummary]:
        """Every known account, ordered by username."""
        ...

    @abstractmethod
    async def debit_recorded(self, job_id: int) -> bool:
        """Whether this store holds a debit for ``job_id``."""
        ...

    @abstractmethod
    async def refund_recorded(self, job_id: int) -> bool:
        """Whether this store holds a refund for ``job_id``."""
        ...
