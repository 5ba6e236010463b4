"""
Ledger module - credit balances and their audit trail.

A durable ledger over the storage backend, an in-process fallback, and the
facade that switches between them.
"""

from creditpipe.ledger.base import LedgerPort
from creditpipe.ledger.durable import StorageLedger
from creditpipe.ledger.facade import LedgerFacade
from creditpipe.ledger.fallback import MemoryLedger
from creditpipe.ledger.lock import AccountLockService

__all__ = [
    "AccountLockService",
    "LedgerFacade",
    "LedgerPort",
    "MemoryLedger",
    "StorageLedger",
]
