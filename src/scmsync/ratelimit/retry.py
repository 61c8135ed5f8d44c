"""Bounded retry combinator for platform calls."""

from __future__ import annotations

import asyncio
import logging
from collections.abc import Awaitable, Callable
from typing import TypeVar

from scmsync.errors.exceptions import TransientPlatformError

logger = logging.getLogger(__name__)

T = TypeVar("T")


def exponential_backoff(base_seconds: float, max_seconds: float) -> Callable[[Exception, int], float]:
    """Delay policy: ``base * 2**(attempt-1)`` capped at ``max_seconds``.

    A ``retry_after`` hint carried by the exception wins over the computed delay.
    """

    def _delay(exc: Exception, attempt: int) -> float:
        hinted = getattr(exc, "retry_after", None)
        if hinted is not None:
            return min(float(hinted), max_seconds)
        return min(base_seconds * (2 ** (attempt - 1)), max_seconds)

    return _delay


async def with_retry(
    call: Callable[[], Awaitable[T]],
    *,
    max_attempts: int,
    delay_for: Callable[[Exception, int], float],
    retry_on: tuple[type[Exception], ...] = (TransientPlatformError,),
    sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
    description: str = "call",
) -> T:
    """Invoke ``call`` until it succeeds or ``max_attempts`` attempts are spent.

    Only exceptions in ``retry_on`` are retried; anything else propagates
    immediately. After the final attempt the last exception is re-raised.

    Args:
        call: Zero-argument coroutine factory. Re-invoked on every attempt so
            it can re-consult the rate limit coordinator.
        max_attempts: Total attempts, including the first one.
        delay_for: ``(exception, attempt) -> seconds`` to sleep before the next attempt.
        retry_on: Exception types considered transient.
        sleep: Injected for tests.
        description: Used in log lines.
    """
    attempts = max(1, max_attempts)
    attempt = 0
    while True:
        attempt += 1
        try:
            return await call()
        except retry_on as exc:
            if attempt >= attempts:
                logger.error("%s failed after %d attempts: %s", description, attempt, exc)
                raise
            delay = delay_for(exc, attempt)
            logger.warning(
                "%s failed (attempt %d/%d): %s; retrying in %.1fs",
                description, attempt, attempts, exc, delay,
            )
            if delay > 0:
                await sleep(delay)
