"""
Circuit Breaker for the durable store.

Acts as the availability probe in front of durable calls: while the circuit
is OPEN, callers go straight to the in-process fallback instead of waiting
on a store that keeps failing.
"""

from __future__ import annotations

import time
from enum import Enum
from typing import TYPE_CHECKING

from creditpipe.core.logging import get_logger

if TYPE_CHECKING:
    from creditpipe.storage.base import StorageBackend


class CircuitState(str, Enum):
    """Circuit Breaker States."""

    CLOSED = "closed"  # Normal operation
    OPEN = "open"  # Failing, block requests
    HALF_OPEN = "half_open"  # Testing recovery


class CircuitOpenError(Exception):
    """Raised when execution is attempted on an OPEN circuit."""

    def __init__(self, service: str, recovery_time: float):
        self.service = service
        self.recovery_time = recovery_time
        super().__init__(f"Circuit OPEN for {service}. Retrying after {recovery_time}")


class CircuitBreaker:
    """
    Storage-backed Circuit Breaker.

    If failures exceed threshold, it trips (OPEN) and blocks calls for
    `recovery_timeout` seconds, then enters HALF_OPEN to test connectivity.
    Exceptions listed in `excluded` are business outcomes, not outages, and
    leave the failure count alone.
    """

    COLLECTION = "resilience"

    def __init__(
        self,
        service_name: str,
        storage: StorageBackend,
        failure_threshold: int = 5,
        recovery_timeout: int = 30,
        excluded: tuple[type[BaseException], ...] = (),
    ) -> None:
        """
        Initialize Circuit Breaker.

        Args:
            service_name: Unique ID for the guarded service (e.g. "ledger")
            storage: Where breaker state lives (must not be the guarded store)
            failure_threshold: Number of failures before tripping
            recovery_timeout: Seconds to wait before attempting recovery
            excluded: Exception types that do not count as failures
        """
        self.service = service_name
        self._storage = storage
        self.threshold = failure_threshold
        self.recovery_timeout = recovery_timeout
        self.excluded = excluded
        self._logger = get_logger(f"circuit.{service_name}")

        self._key_state = f"circuit:{service_name}:state"
        self._key_failures = f"circuit:{service_name}:failures"
        self._key_recovery = f"circuit:{service_name}:recovery_ts"

    async def get_state(self) -> CircuitState:
        """Get current circuit state."""
        data = await self._storage.get(self.COLLECTION, self._key_state)
        if not data:
            return CircuitState.CLOSED
        return CircuitState(data.get("state", CircuitState.CLOSED.value))

    async def _set_state(self, state: CircuitState) -> None:
        await self._storage.save(self.COLLECTION, self._key_state, {"state": state.value})
        self._logger.info(f"Circuit state changed to: {state.value}")

    async def is_available(self) -> bool:
        """Check if service is available (CLOSED or HALF_OPEN)."""
        state = await self.get_state()

        if state == CircuitState.CLOSED:
            return True

        if state == CircuitState.OPEN:
            recovery_data = await self._storage.get(self.COLLECTION, self._key_recovery)
            if not recovery_data:
                await self._set_state(CircuitState.HALF_OPEN)
                return True

            recovery_ts = float(recovery_data.get("ts", 0))
            if time.time() > recovery_ts:
                self._logger.info("Recovery timeout passed. Entering HALF_OPEN.")
                await self._set_state(CircuitState.HALF_OPEN)
                return True

            return False

        # HALF_OPEN: traffic allowed, a failure trips immediately
        return True

    async def record_failure(self) -> None:
        """Record a failure event."""
        state = await self.get_state()

        if state == CircuitState.HALF_OPEN:
            self._logger.warning("Failure in HALF_OPEN. Tripping back to OPEN.")
            await self.trip()
            return

        val_str = await self._storage.atomic_add(self.COLLECTION, self._key_failures, "1")
        current_failures = int(float(val_str))

        self._logger.warning(f"Failure recorded. Count: {current_failures}/{self.threshold}")

        if current_failures >= self.threshold:
            await self.trip()

    async def record_success(self) -> None:
        """Record a success event."""
        state = await self.get_state()

        if state == CircuitState.HALF_OPEN:
            self._logger.info("Success in HALF_OPEN. Closing circuit.")
            await self.close()
        elif state == CircuitState.CLOSED:
            # Gradual recovery: one success forgives one failure
            data = await self._storage.get(self.COLLECTION, self._key_failures)
            if not data:
                return
            val_str = await self._storage.atomic_add(self.COLLECTION, self._key_failures, "-1")
            if int(float(val_str)) <= 0:
                await self._storage.delete(self.COLLECTION, self._key_failures)

    async def trip(self) -> None:
        """Trip the circuit to OPEN."""
        recovery_time = time.time() + self.recovery_timeout
        await self._set_state(CircuitState.OPEN)
        await self._storage.save(self.COLLECTION, self._key_recovery, {"ts": str(recovery_time)})
        self._logger.critical(f"Circuit TRIPPED. Blocking requests for {self.recovery_timeout}s.")

    async def close(self) -> None:
        """Close the circuit (Recovered)."""
        await self._set_state(CircuitState.CLOSED)
        await self._storage.delete(self.COLLECTION, self._key_failures)
        await self._storage.delete(self.COLLECTION, self._key_recovery)
        self._logger.info("Circuit CLOSED. Service restored.")

    async def __aenter__(self):
        if not await self.is_available():
            data = await self._storage.get(self.COLLECTION, self._key_recovery)
            recovery_ts = float(data.get("ts", 0)) if data else 0
            raise CircuitOpenError(self.service, recovery_ts)
        return self

    async def __aexit__(self, exc_type, exc_val, exc_tb):
        if exc_type is None or issubclass(exc_type, self.excluded):
            await self.record_success()
        else:
            await self.record_failure()
        return False  # Propagate exception
