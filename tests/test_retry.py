"""Tests for the bounded retry guard."""

from __future__ import annotations

import pytest

from hubsetup.config import Settings
from hubsetup.errors import ConnectivityError, RemoteCommandError
from hubsetup.services.retry import RetryPolicy, guard
from tests.mock_ssh import no_sleep


class Flaky:
    """Fails the first *failures* calls, then returns "ok"."""

    def __init__(self, failures: int, exc: Exception | None = None) -> None:
        self.failures = failures
        self.exc = exc or ConnectivityError("connection reset")
        self.calls = 0

    async def __call__(self) -> str:
        self.calls += 1
        if self.calls <= self.failures:
            raise self.exc
        return "ok"


@pytest.mark.asyncio
async def test_first_attempt_succeeds():
    op = Flaky(0)
    hooks = []
    assert await guard(op, limit=5, delay=0, on_retry=lambda: hooks.append(1), sleep=no_sleep) == "ok"
    assert op.calls == 1
    assert hooks == []


@pytest.mark.asyncio
async def test_always_failing_runs_limit_times_with_hook_between():
    op = Flaky(100)
    hooks = []
    delays = []

    async def record_sleep(delay):
        delays.append(delay)

    with pytest.raises(ConnectivityError, match="connection reset"):
        await guard(op, limit=5, delay=3, on_retry=lambda: hooks.append(1), sleep=record_sleep)

    assert op.calls == 5
    assert len(hooks) == 4
    assert delays == [3, 3, 3, 3]


@pytest.mark.asyncio
async def test_recovers_after_transient_failures():
    op = Flaky(2)
    assert await guard(op, limit=3, delay=0, sleep=no_sleep) == "ok"
    assert op.calls == 3


@pytest.mark.asyncio
async def test_limit_one_surfaces_first_failure():
    op = Flaky(1)
    hooks = []
    with pytest.raises(ConnectivityError):
        await guard(op, limit=1, delay=0, on_retry=lambda: hooks.append(1), sleep=no_sleep)
    assert op.calls == 1
    assert hooks == []


@pytest.mark.asyncio
async def test_limit_below_one_rejected():
    with pytest.raises(ValueError):
        await guard(Flaky(0), limit=0, delay=0)


@pytest.mark.asyncio
async def test_non_matching_error_propagates_immediately():
    op = Flaky(3, RemoteCommandError("exit 2"))
    with pytest.raises(RemoteCommandError):
        await guard(op, limit=5, delay=0, retry_on=(ConnectivityError,), sleep=no_sleep)
    assert op.calls == 1


@pytest.mark.asyncio
async def test_async_recovery_hook_is_awaited():
    op = Flaky(2)
    recovered = []

    async def recover():
        recovered.append(op.calls)

    await guard(op, limit=5, delay=0, on_retry=recover, sleep=no_sleep)
    assert recovered == [1, 2]


@pytest.mark.asyncio
async def test_failing_recovery_hook_does_not_stop_retries():
    op = Flaky(2)

    async def recover():
        raise ConnectivityError("hub still rebooting")

    assert await guard(op, limit=3, delay=0, on_retry=recover, sleep=no_sleep) == "ok"
    assert op.calls == 3


@pytest.mark.asyncio
async def test_reporter_sees_every_failure():
    op = Flaky(100)
    seen = []
    with pytest.raises(ConnectivityError):
        await guard(
            op,
            limit=3,
            delay=0,
            reporter=lambda attempt, limit, exc: seen.append((attempt, limit)),
            sleep=no_sleep,
        )
    assert seen == [(1, 3), (2, 3), (3, 3)]


def test_policies_from_settings():
    cfg = Settings(
        hub_connect_retry_limit=3,
        hub_connect_retry_delay_seconds=2,
        hub_command_retry_limit=5,
        hub_command_retry_delay_seconds=3,
    )
    assert RetryPolicy.for_connect(cfg) == RetryPolicy(3, 2.0)
    assert RetryPolicy.for_commands(cfg) == RetryPolicy(5, 3.0)


@pytest.mark.asyncio
async def test_policy_guard_uses_its_limit():
    op = Flaky(100)
    with pytest.raises(ConnectivityError):
        await RetryPolicy(2, 0).guard(op, sleep=no_sleep)
    assert op.calls == 2
