"""Tests for lock polling."""

import pytest

from creditpipe.resilience.retry import poll_until_acquired


class Attempts:
    """Returns None until the given attempt, then a token."""

    def __init__(self, succeed_on: int) -> None:
        self.succeed_on = succeed_on
        self.calls = 0

    async def acquire(self):
        self.calls += 1
        return "token-abc" if self.calls >= self.succeed_on else None


@pytest.mark.asyncio
async def test_awaits_plain_callables():
    attempts = Attempts(succeed_on=1)

    token = await poll_until_acquired(lambda: attempts.acquire(), retries=3, delay=0)

    assert token == "token-abc"
    assert attempts.calls == 1


@pytest.mark.asyncio
async def test_polls_until_acquired():
    attempts = Attempts(succeed_on=3)

    assert await poll_until_acquired(attempts.acquire, retries=5, delay=0) == "token-abc"
    assert attempts.calls == 3


@pytest.mark.asyncio
async def test_gives_up_with_none():
    attempts = Attempts(succeed_on=100)

    assert await poll_until_acquired(attempts.acquire, retries=2, delay=0) is None
    assert attempts.calls == 3


@pytest.mark.asyncio
async def test_errors_are_not_retried():
    calls = []

    async def unreachable():
        calls.append(1)
        raise ConnectionError("storage unreachable")

    with pytest.raises(ConnectionError):
        await poll_until_acquired(unreachable, retries=5, delay=0)

    assert len(calls) == 1
