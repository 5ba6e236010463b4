"""
creditpipe - credit-gated job pipeline.

Admits jobs against a per-tenant credit balance, runs them in the
background and refunds the credit when a job fails.

Usage:
    >>> from creditpipe import CreditPipe, Config
    >>>
    >>> pipe = CreditPipe(transformer=MyTransformer(), config=Config.from_env())
    >>> job = await pipe.submit_job("alice", "standard", "uploads/cat.png")
    >>> await pipe.wait_for_jobs()
    >>> (await pipe.get_job(job.id, "alice", "standard")).status
    <JobStatus.COMPLETED: 'completed'>
"""

from creditpipe.client import CreditPipe
from creditpipe.core.config import Config
from creditpipe.core.exceptions import (
    CompensationFailedError,
    ConfigurationError,
    CreditPipeError,
    ForbiddenError,
    InsufficientCreditsError,
    LockUnavailableError,
    NotFoundError,
    StoreUnavailableError,
    TransformationFailedError,
    ValidationError,
)
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
    TransactionKind,
    UserAccount,
)
from creditpipe.jobs.store import JobSort
from creditpipe.processing import BlobStore, InMemoryBlobStore, Transformer, TransformResult

__version__ = "0.1.0"

__all__ = [
    # Client
    "CreditPipe",
    "Config",
    # Types
    "AccountSummary",
    "BatchSubmission",
    "Job",
    "JobPage",
    "JobSort",
    "JobStatus",
    "LedgerTransaction",
    "ProcessingOutcome",
    "ProcessingStats",
    "Role",
    "TransactionKind",
    "UserAccount",
    # Capabilities
    "BlobStore",
    "InMemoryBlobStore",
    "Transformer",
    "TransformResult",
    # Exceptions
    "CompensationFailedError",
    "ConfigurationError",
    "CreditPipeError",
    "ForbiddenError",
    "InsufficientCreditsError",
    "LockUnavailableError",
    "NotFoundError",
    "StoreUnavailableError",
    "TransformationFailedError",
    "ValidationError",
]
