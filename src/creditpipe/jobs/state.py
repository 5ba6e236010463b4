"""Job lifecycle state machine."""

from __future__ import annotations

from creditpipe.core.types import JobStatus

# pending -> processing -> completed | failed
TRANSITIONS: dict[JobStatus, frozenset[JobStatus]] = {
    JobStatus.PENDING: frozenset({JobStatus.PROCESSING}),
    JobStatus.PROCESSING: frozenset({JobStatus.COMPLETED, JobStatus.FAILED}),
    JobStatus.COMPLETED: frozenset(),
    JobStatus.FAILED: frozenset(),
}


def can_transition(current: JobStatus, new: JobStatus) -> bool:
    """Whether ``current -> new`` is an edge of the lifecycle graph."""
    return new in TRANSITIONS[current]
