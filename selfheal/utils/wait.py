from __future__ import annotations

import asyncio
import logging
from typing import Awaitable, Callable, TypeVar

T = TypeVar("T")

log = logging.getLogger(__name__)


async def call_with_timeout(awaitable: Awaitable[T], timeout: float | None) -> T:
    """Awaits a single call, bounded by an optional timeout in seconds."""

    if timeout is None:
        return await awaitable
    return await asyncio.wait_for(awaitable, timeout)


async def retry_with_backoff(
    fn: Callable[[], Awaitable[T]],
    max_attempts: int = 3,
    initial_delay: float = 1.0,
) -> T:
    """Retries a coroutine factory, doubling the delay after each failure."""

    if max_attempts < 1:
        raise ValueError("max_attempts must be at least 1")
    last_error: Exception | None = None
    for attempt in range(max_attempts):
        try:
            return await fn()
        except Exception as exc:  # noqa: BLE001 - re-raised after the final attempt.
            last_error = exc
            if attempt < max_attempts - 1:
                delay = initial_delay * (2**attempt)
                log.debug("Attempt %d/%d failed (%s), retrying in %.2fs", attempt + 1, max_attempts, exc, delay)
                await asyncio.sleep(delay)
    raise last_error
