"""Bounded retry with a fixed delay and a recovery hook between attempts."""

from __future__ import annotations

import asyncio
import inspect
from dataclasses import dataclass
from typing import Any, Awaitable, Callable, TypeVar

from hubsetup.config import Settings, settings
from hubsetup.utils.logging import get_logger

log = get_logger(__name__)

T = TypeVar("T")

Reporter = Callable[[int, int, BaseException], None]


async def guard(
    operation: Callable[[], Awaitable[T]],
    *,
    limit: int,
    delay: float,
    on_retry: Callable[[], Any] | None = None,
    retry_on: tuple[type[BaseException], ...] = (Exception,),
    reporter: Reporter | None = None,
    sleep: Callable[[float], Awaitable[Any]] = asyncio.sleep,
) -> T:
    """Await *operation* up to *limit* times.

    A failure matching *retry_on* is reported, then re-raised if it was the
    last allowed attempt. Otherwise *on_retry* runs (sync or async) and the
    next attempt starts after *delay* seconds. Anything else propagates at
    once. ``limit=1`` surfaces the first failure.
    """
    if limit < 1:
        raise ValueError(f"retry limit must be >= 1, got {limit}")

    attempt = 0
    while True:
        try:
            return await operation()
        except retry_on as exc:
            attempt += 1
            log.warning(
                "retry.attempt_failed",
                attempt=attempt,
                limit=limit,
                error=str(exc),
            )
            if reporter is not None:
                reporter(attempt, limit, exc)
            if attempt >= limit:
                log.error("retry.exhausted", attempts=attempt)
                raise
            if on_retry is not None:
                try:
                    outcome = on_retry()
                    if inspect.isawaitable(outcome):
                        await outcome
                except retry_on as hook_exc:
                    # next attempt reports the real state of the session
                    log.warning("retry.recovery_failed", error=str(hook_exc))
            await sleep(delay)


@dataclass(frozen=True)
class RetryPolicy:
    limit: int
    delay: float

    @classmethod
    def for_connect(cls, cfg: Settings | None = None) -> RetryPolicy:
        cfg = cfg or settings
        return cls(cfg.hub_connect_retry_limit, cfg.hub_connect_retry_delay_seconds)

    @classmethod
    def for_commands(cls, cfg: Settings | None = None) -> RetryPolicy:
        cfg = cfg or settings
        return cls(cfg.hub_command_retry_limit, cfg.hub_command_retry_delay_seconds)

    async def guard(self, operation: Callable[[], Awaitable[T]], **kwargs: Any) -> T:
        return await guard(operation, limit=self.limit, delay=self.delay, **kwargs)
