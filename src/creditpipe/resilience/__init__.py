"""
Resilience Layer for creditpipe.

Provides the durable-store circuit breaker and lock polling.
"""

from .circuit import CircuitBreaker, CircuitOpenError, CircuitState
from .retry import poll_until_acquired

__all__ = [
    "CircuitBreaker",
    "CircuitOpenError",
    "CircuitState",
    "poll_until_acquired",
]
