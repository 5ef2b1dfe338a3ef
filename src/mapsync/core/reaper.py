"""Periodic sweep tearing down ghosts and idle sessions."""

from __future__ import annotations

import asyncio
import contextlib
import logging
from collections.abc import Awaitable, Callable

logger = logging.getLogger("mapsync.reaper")


class SessionReaper:
    """Runs ``sweep`` every *interval* seconds in a background task.

    The reaper is time-driven, not request-driven: idle sessions are
    released even when nobody touches them again.
    """

    def __init__(self, sweep: Callable[[], Awaitable[object]], interval: float = 30.0) -> None:
        if interval <= 0:
            raise ValueError("interval must be > 0")
        self._sweep = sweep
        self._interval = interval
        self._task: asyncio.Task[None] | None = None

    @property
    def running(self) -> bool:
        return self._task is not None and not self._task.done()

    def start(self) -> None:
        if self.running:
            return
        self._task = asyncio.create_task(self._run(), name="mapsync:reaper")

    async def stop(self) -> None:
        if self._task is not None:
            self._task.cancel()
            with contextlib.suppress(asyncio.CancelledError):
                await self._task
            self._task = None

    async def _run(self) -> None:
        while True:
            await asyncio.sleep(self._interval)
            try:
                await self._sweep()
            except Exception:
                logger.exception("Session reaper sweep failed")
