"""
Jobs module - records, lifecycle, admission and execution.
"""

from creditpipe.jobs.base import JobPort
from creditpipe.jobs.durable import StorageJobStore
from creditpipe.jobs.executor import JobExecutor
from creditpipe.jobs.fallback import MemoryJobStore
from creditpipe.jobs.service import JobService
from creditpipe.jobs.state import TRANSITIONS, can_transition
from creditpipe.jobs.store import JobSort, JobStore

__all__ = [
    "JobExecutor",
    "JobPort",
    "JobService",
    "JobSort",
    "JobStore",
    "MemoryJobStore",
    "StorageJobStore",
    "TRANSITIONS",
    "can_transition",
]
