"""
Type definitions for creditpipe.

This module contains the enums and data classes shared by the ledger,
the job store, the executor and the history recorder.
"""

from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum
from typing import Any


def utcnow() -> datetime:
    """Timezone-aware current time, used for every persisted timestamp."""
    return datetime.now(timezone.utc)


def _parse_ts(value: str | None) -> datetime:
    return datetime.fromisoformat(value) if value else utcnow()


class Role(str, Enum):
    """Account class. Privileged accounts are exempt from balance checks."""

    PRIVILEGED = "privileged"
    STANDARD = "standard"

    @classmethod
    def from_string(cls, value: "str | Role") -> "Role":
        if isinstance(value, Role):
            return value
        lowered = value.strip().lower()
        aliases = {"admin": cls.PRIVILEGED, "user": cls.STANDARD}
        if lowered in aliases:
            return aliases[lowered]
        for member in cls:
            if member.value == lowered:
                return member
        raise ValueError(f"Unknown role: {value}")

    @property
    def is_privileged(self) -> bool:
        return self is Role.PRIVILEGED


class TransactionKind(str, Enum):
    """Kinds of balance-mutating ledger transactions."""

    DEBIT = "debit"
    REFUND = "refund"
    GRANT = "admin_grant"


class JobStatus(str, Enum):
    """Job lifecycle states."""

    PENDING = "pending"
    PROCESSING = "processing"
    COMPLETED = "completed"
    FAILED = "failed"

    @property
    def is_terminal(self) -> bool:
        return self in (JobStatus.COMPLETED, JobStatus.FAILED)


@dataclass
class UserAccount:
    """Per-tenant credit balance."""

    username: str
    role: Role = Role.STANDARD
    balance: int = 0
    last_updated: datetime = field(default_factory=utcnow)

    @property
    def is_privileged(self) -> bool:
        return self.role.is_privileged

    def to_dict(self) -> dict[str, Any]:
        return {
            "username": self.username,
            "role": self.role.value,
            "balance": self.balance,
            "last_updated": self.last_updated.isoformat(),
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "UserAccount":
        return cls(
            username=data["username"],
            role=Role(data.get("role", Role.STANDARD.value)),
            balance=int(data.get("balance", 0)),
            last_updated=_parse_ts(data.get("last_updated")),
        )


@dataclass
class LedgerTransaction:
    """
    A single append-only ledger row.

    Attributes:
        id: Sequence number within the store that recorded it
        username: Account the transaction applies to
        job_id: Job the credits were spent on or refunded for
        amount: Credits moved (always positive; the kind gives the sign)
        kind: debit, refund or admin_grant
        description: Human-readable reason
        created_at: When the row was written
    """

    id: int
    username: str
    amount: int
    kind: TransactionKind
    job_id: int | None = None
    description: str = ""
    created_at: datetime = field(default_factory=utcnow)

    @property
    def signed_amount(self) -> int:
        """Effect of this transaction on the balance."""
        if self.kind == TransactionKind.DEBIT:
            return -self.amount
        return self.amount

    def to_dict(self) -> dict[str, Any]:
        return {
            "id": self.id,
            "username": self.username,
            "job_id": self.job_id,
            "amount": self.amount,
            "kind": self.kind.value,
            "description": self.description,
            "created_at": self.created_at.isoformat(),
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "LedgerTransaction":
        job_id = data.get("job_id")
        return cls(
            id=int(data["id"]),
            username=data["username"],
            job_id=int(job_id) if job_id is not None else None,
            amount=int(data["amount"]),
            kind=TransactionKind(data["kind"]),
            description=data.get("description", ""),
            created_at=_parse_ts(data.get("created_at")),
        )


@dataclass
class AccountSummary:
    """Account listing row for privileged callers."""

    username: str
    role: Role
    balance: int
    last_updated: datetime
    total_transactions: int = 0


@dataclass
class Job:
    """One unit of asynchronous work tied to one owner and one input."""

    id: int
    owner: str
    role: Role
    input_ref: str
    params: dict[str, Any] = field(default_factory=dict)
    status: JobStatus = JobStatus.PENDING
    result: dict[str, Any] | None = None
    created_at: datetime = field(default_factory=utcnow)
    updated_at: datetime = field(default_factory=utcnow)
    cost: int = 0

    def to_dict(self) -> dict[str, Any]:
        return {
            "id": self.id,
            "owner": self.owner,
            "role": self.role.value,
            "input_ref": self.input_ref,
            "params": self.params,
            "status": self.status.value,
            "result": self.result,
            "created_at": self.created_at.isoformat(),
            "updated_at": self.updated_at.isoformat(),
            "cost": self.cost,
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "Job":
        return cls(
            id=int(data["id"]),
            owner=data["owner"],
            role=Role(data.get("role", Role.STANDARD.value)),
            input_ref=data["input_ref"],
            params=data.get("params") or {},
            status=JobStatus(data.get("status", JobStatus.PENDING.value)),
            result=data.get("result"),
            created_at=_parse_ts(data.get("created_at")),
            updated_at=_parse_ts(data.get("updated_at")),
            cost=int(data.get("cost", 0)),
        )


@dataclass
class JobPage:
    """One page of a job listing."""

    page: int
    page_size: int
    total: int
    items: list[Job] = field(default_factory=list)


@dataclass
class BatchSubmission:
    """Result of a batch admission."""

    jobs: list[Job] = field(default_factory=list)
    failed: list[dict[str, str]] = field(default_factory=list)

    @property
    def total_requested(self) -> int:
        return len(self.jobs) + len(self.failed)


@dataclass
class ProcessingOutcome:
    """Immutable record of how one job execution ended."""

    job_id: int
    owner: str
    input_ref: str
    success: bool
    duration_ms: int = 0
    output_ref: str | None = None
    error_message: str | None = None
    recorded_at: datetime = field(default_factory=utcnow)
    id: int | None = None

    def to_dict(self) -> dict[str, Any]:
        return {
            "id": self.id,
            "job_id": self.job_id,
            "owner": self.owner,
            "input_ref": self.input_ref,
            "output_ref": self.output_ref,
            "duration_ms": self.duration_ms,
            "success": self.success,
            "error_message": self.error_message,
            "recorded_at": self.recorded_at.isoformat(),
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "ProcessingOutcome":
        outcome_id = data.get("id")
        return cls(
            id=int(outcome_id) if outcome_id is not None else None,
            job_id=int(data["job_id"]),
            owner=data["owner"],
            input_ref=data["input_ref"],
            output_ref=data.get("output_ref"),
            duration_ms=int(data.get("duration_ms", 0)),
            success=bool(data["success"]),
            error_message=data.get("error_message"),
            recorded_at=_parse_ts(data.get("recorded_at")),
        )


@dataclass
class ProcessingStats:
    """Summary over the outcome log."""

    total_processed: int
    successful: int
    success_rate: float
    average_duration_ms: float
    total_users: int
