"""
Account Lock Service.

Serializes read-check-write sequences on one account so that two admissions
for the same owner cannot both pass the balance check. Plays the role of a
row-level lock on top of the storage backend's token locks.
"""

from __future__ import annotations

import logging
from contextlib import asynccontextmanager
from typing import TYPE_CHECKING, AsyncIterator

from creditpipe.core.exceptions import LockUnavailableError
from creditpipe.resilience.retry import poll_until_acquired

if TYPE_CHECKING:
    from creditpipe.storage.base import StorageBackend

logger = logging.getLogger(__name__)


class AccountLockService:
    """
    Service for managing per-account locks (mutexes).

    Implements a token lock pattern using the storage backend.
    """

    def __init__(
        self,
        storage: StorageBackend,
        ttl: int = 30,
        retry_count: int = 50,
        retry_delay: float = 0.05,
        namespace: str = "account",
    ) -> None:
        """
        Initialize lock service.

        Args:
            storage: Storage backend (Redis/Memory)
            ttl: Lock time-to-live in seconds
            retry_count: Number of retries if lock is held
            retry_delay: Delay between retries
            namespace: Lock key namespace ("account", "stats", ...)
        """
        self._storage = storage
        self._ttl = ttl
        self._retry_count = retry_count
        self._retry_delay = retry_delay
        self._namespace = namespace

    def lock_key(self, name: str) -> str:
        return f"lock:{self._namespace}:{name}"

    async def acquire(
        self,
        name: str,
        retry_count: int | None = None,
        retry_delay: float | None = None,
    ) -> str | None:
        """
        Acquire the lock for an account.

        Args:
            name: Account name (or another lockable resource name)
            retry_count: Override the configured retry count
            retry_delay: Override the configured retry delay

        Returns:
            lock_token (str) if successful, None if failed
        """
        lock_key = self.lock_key(name)
        retries = self._retry_count if retry_count is None else retry_count
        delay = self._retry_delay if retry_delay is None else retry_delay

        token = await poll_until_acquired(
            lambda: self._storage.acquire_lock(lock_key, self._ttl),
            retries=retries,
            delay=delay,
        )
        if token:
            logger.debug(f"Acquired lock for {name} (token: {token[:8]}...)")
            return token

        logger.warning(f"Failed to acquire lock for {name} after {retries} retries")
        return None

    async def release(self, name: str, lock_token: str) -> bool:
        """
        Release a previously acquired lock.

        Args:
            name: The account name the lock was acquired for
            lock_token: The ownership token returned by acquire()

        Returns:
            True if released, False if not found or token mismatch
        """
        result = await self._storage.release_lock(self.lock_key(name), lock_token)
        if result:
            logger.debug(f"Released lock for {name}")
        return result

    @asynccontextmanager
    async def hold(self, name: str) -> AsyncIterator[str]:
        """
        Hold the lock for the duration of the block.

        Raises:
            LockUnavailableError: If the lock could not be acquired
        """
        token = await self.acquire(name)
        if token is None:
            raise LockUnavailableError(
                f"Could not lock {name}", lock_key=self.lock_key(name)
            )
        try:
            yield token
        finally:
            # The block may already have committed; an unreleased lock expires with its TTL
            try:
                await self.release(name, token)
            except Exception as exc:
                logger.warning(f"Could not release lock for {name}, left to expire: {exc}")
