"""Exponential backoff around flaky collaborator calls."""

from __future__ import annotations

import asyncio
import logging
from collections.abc import Awaitable, Callable
from typing import TypeVar

from mapsync.models.config import RetryPolicy

logger = logging.getLogger("mapsync.retry")

__all__ = ["RetryPolicy", "retry_with_backoff"]


T = TypeVar("T")


async def retry_with_backoff(
    operation: Callable[[], Awaitable[T]],
    policy: RetryPolicy,
    *,
    label: str = "operation",
    give_up_on: tuple[type[Exception], ...] = (),
) -> T:
    """Await ``operation()`` until it succeeds or *policy* runs out.

    Exceptions listed in *give_up_on* are raised on the spot; retrying
    them cannot help. Otherwise the last failure is re-raised once
    ``policy.max_retries`` retries have been spent.
    """
    attempts = policy.max_retries + 1
    attempt = 0
    while True:
        attempt += 1
        try:
            return await operation()
        except give_up_on:
            raise
        except Exception as exc:
            if attempt >= attempts:
                raise
            delay = policy.delay_for(attempt)
            logger.warning(
                "%s failed (attempt %d/%d): %s; retrying in %.2fs",
                label,
                attempt,
                attempts,
                exc,
                delay,
                extra={"attempt": attempt, "delay": delay},
            )
            await asyncio.sleep(delay)
