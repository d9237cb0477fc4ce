"""Retry and timeout primitives shared by the publisher and deployer.

``with_retry`` re-runs a zero-arg coroutine factory on transient failures
with exponential backoff.  ``run_with_timeout`` races an awaitable against
a wall-clock ceiling and turns expiry into :class:`StageTimeoutError`, so a
timeout is never confused with a remote refusal.
"""

from __future__ import annotations

import asyncio
import logging
from typing import Awaitable, Callable, TypeVar

import httpx

from app.errors import ConflictError, RemoteError, StageTimeoutError

logger = logging.getLogger(__name__)

T = TypeVar("T")

Sleep = Callable[[float], Awaitable[None]]

MAX_BACKOFF_SECONDS = 30.0


def is_retryable(exc: BaseException) -> bool:
    """Transient remote errors and network failures retry; conflicts never do."""
    if isinstance(exc, RemoteError):
        return not isinstance(exc, ConflictError) and exc.transient
    return isinstance(exc, (httpx.TransportError, httpx.TimeoutException))


def retry_not_found(exc: BaseException) -> bool:
    """:func:`is_retryable`, plus 404s on reads of a resource that was just created."""
    if isinstance(exc, RemoteError) and exc.remote_status == 404:
        return True
    return is_retryable(exc)


def backoff_delay(base: float, attempt: int) -> float:
    """Delay before retry number *attempt* (1-based): base, 2·base, 4·base…"""
    return min(base * (2 ** (attempt - 1)), MAX_BACKOFF_SECONDS)


async def with_retry(
    coro_factory: Callable[[], Awaitable[T]],
    *,
    name: str,
    attempts: int = 3,
    delay: float = 1.0,
    sleep: Sleep = asyncio.sleep,
    retry_if: Callable[[BaseException], bool] = is_retryable,
) -> T:
    """Run ``coro_factory()`` up to *attempts* times.

    Non-retryable errors propagate immediately; the last retryable error
    propagates once the budget is spent.
    """
    for attempt in range(1, attempts + 1):
        try:
            return await coro_factory()
        except Exception as exc:
            if not retry_if(exc) or attempt >= attempts:
                if attempt > 1:
                    logger.error("%s failed after %d attempt(s): %s", name, attempt, exc)
                raise
            wait = backoff_delay(delay, attempt)
            logger.warning(
                "%s failed (attempt %d/%d), retrying in %.1fs: %s",
                name, attempt, attempts, wait, exc,
            )
            await sleep(wait)
    raise AssertionError("unreachable")  # pragma: no cover


async def run_with_timeout(aw: Awaitable[T], seconds: float, *, stage: str) -> T:
    """Await *aw* for at most *seconds*; the in-flight work is cancelled on expiry."""
    try:
        return await asyncio.wait_for(aw, timeout=seconds)
    except asyncio.TimeoutError:
        logger.error("[%s] stage exceeded %.0fs ceiling", stage.upper(), seconds)
        raise StageTimeoutError(stage, seconds) from None
