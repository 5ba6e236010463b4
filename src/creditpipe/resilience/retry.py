"""
Retry Strategies using Tenacity.

Polling policy for contended locks.
"""

from __future__ import annotations

from typing import Any, Awaitable, Callable

from tenacity import (
    AsyncRetrying,
    RetryError,
    retry_if_exception_type,
    stop_after_attempt,
    wait_fixed,
)

from creditpipe.core.logging import get_logger

logger = get_logger("retry")


class _Contended(Exception):
    pass


async def poll_until_acquired(
    attempt: Callable[[], Awaitable[Any]],
    retries: int,
    delay: float,
) -> Any:
    """
    Call ``attempt`` until it returns something other than None.

    Errors raised by ``attempt`` propagate immediately.

    Args:
        attempt: Async callable returning a token, or None while contended
        retries: Extra attempts after the first one
        delay: Seconds between attempts

    Returns:
        The first non-None result, or None once attempts are exhausted
    """
    try:
        async for retry_attempt in AsyncRetrying(
            retry=retry_if_exception_type(_Contended),
            wait=wait_fixed(delay),
            stop=stop_after_attempt(retries + 1),
            before_sleep=lambda retry_state: logger.debug(
                f"Lock contended, retrying (attempt {retry_state.attempt_number})"
            ),
        ):
            with retry_attempt:
                token = await attempt()
                if token is None:
                    raise _Contended()
                return token
    except RetryError:
        return None
    return None
