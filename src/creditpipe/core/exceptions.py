"""
Exception hierarchy for creditpipe.

All package-specific exceptions inherit from CreditPipeError for easy catching.
"""

from __future__ import annotations

from typing import Any


class CreditPipeError(Exception):
    """
    Base exception for all creditpipe errors.

    Catch this to handle any error raised by the ledger or the job pipeline.

    Example:
        >>> try:
        ...     await pipe.submit_job("alice", Role.STANDARD, "uploads/cat.png")
        ... except CreditPipeError as e:
        ...     print(f"Submission failed: {e}")
    """

    def __init__(self, message: str, details: dict[str, Any] | None = None) -> None:
        super().__init__(message)
        self.message = message
        self.details = details or {}

    def __str__(self) -> str:
        if self.details:
            return f"{self.message} | Details: {self.details}"
        return self.message


class ConfigurationError(CreditPipeError):
    """
    Configuration is missing or invalid.

    Raised when:
    - Environment variables hold values that cannot be parsed
    - Numeric settings are out of range
    """

    pass


class ValidationError(CreditPipeError):
    """
    Input validation error.

    Raised when:
    - Required parameters are missing (e.g. an empty input reference)
    - Amounts are not positive
    - A sort field or page number is invalid
    """

    pass


class InsufficientCreditsError(CreditPipeError):
    """
    Account does not hold enough credits for the requested debit.

    Raised at admission time only. Never retried.
    """

    def __init__(
        self,
        message: str,
        current_balance: int,
        required_amount: int,
        username: str | None = None,
        details: dict[str, Any] | None = None,
    ) -> None:
        super().__init__(message, details)
        self.current_balance = current_balance
        self.required_amount = required_amount
        self.username = username
        self.shortfall = required_amount - current_balance

    def __str__(self) -> str:
        return (
            f"{self.message} | "
            f"Balance: {self.current_balance}, Required: {self.required_amount}, "
            f"Shortfall: {self.shortfall}"
        )


class StoreUnavailableError(CreditPipeError):
    """
    The durable store could not be reached.

    Triggers the in-process fallback. Never surfaced to API callers.
    """

    def __init__(
        self,
        message: str,
        store: str = "durable",
        details: dict[str, Any] | None = None,
    ) -> None:
        super().__init__(message, details)
        self.store = store

    def __str__(self) -> str:
        return f"[{self.store}] {self.message}"


class LockUnavailableError(CreditPipeError):
    """
    An account or aggregate lock is still held by someone else.

    Contention, not an outage: the store answered, so credit mutations
    never move to the fallback on this error. Safe to retry.
    """

    def __init__(
        self,
        message: str,
        lock_key: str,
        details: dict[str, Any] | None = None,
    ) -> None:
        super().__init__(message, details)
        self.lock_key = lock_key

    def __str__(self) -> str:
        return f"[lock] {self.message}"


class TransformationFailedError(CreditPipeError):
    """
    The transformer reported a failure for a job.

    Terminal for the job and triggers a refund attempt.
    """

    def __init__(
        self,
        message: str,
        job_id: int | None = None,
        details: dict[str, Any] | None = None,
    ) -> None:
        super().__init__(message, details)
        self.job_id = job_id

    def __str__(self) -> str:
        return self.message


class NotFoundError(CreditPipeError):
    """A requested resource does not exist."""

    def __init__(
        self,
        message: str,
        resource: str = "job",
        resource_id: Any = None,
        details: dict[str, Any] | None = None,
    ) -> None:
        super().__init__(message, details)
        self.resource = resource
        self.resource_id = resource_id


class ForbiddenError(CreditPipeError):
    """
    The requester is not allowed to perform the operation.

    Raised when:
    - A standard account reads another owner's job or transactions
    - A non-privileged account tries to grant credits or list all accounts
    """

    pass


class CompensationFailedError(CreditPipeError):
    """
    A refund could not be applied on any backing store.

    Logged only. Needs out-of-band reconciliation.
    """

    def __init__(
        self,
        message: str,
        username: str,
        job_id: int | None,
        amount: int,
        details: dict[str, Any] | None = None,
    ) -> None:
        super().__init__(message, details)
        self.username = username
        self.job_id = job_id
        self.amount = amount

    def __str__(self) -> str:
        return f"{self.message} (user={self.username}, job={self.job_id}, amount={self.amount})"
