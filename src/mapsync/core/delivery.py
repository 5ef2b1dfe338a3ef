"""Bounded per-participant delivery queue."""

from __future__ import annotations

import logging
import time
from collections import deque
from collections.abc import Callable, Iterable
from dataclasses import dataclass
from typing import TYPE_CHECKING

from mapsync.core.throttle import ThrottlePolicy

if TYPE_CHECKING:
    from mapsync.models.update import MapUpdate

logger = logging.getLogger("mapsync.delivery")


@dataclass(slots=True)
class _Entry:
    update: MapUpdate
    enqueued_at: float


class DeliveryQueue:
    """Ordered buffer of updates waiting to be delivered to one participant.

    Non-coalesced updates come out of ``drain`` in enqueue order. A
    coalesced cursor frame takes over the slot of the frame it replaces,
    so a reader never sees a stale position after a fresh one.

    **Concurrency note:** every method is synchronous and contains no
    ``await``, so under the asyncio model ``enqueue`` and ``drain`` are
    atomic with respect to each other. Callers on other threads must hop
    onto the event loop first.
    """

    def __init__(
        self,
        policy: ThrottlePolicy | None = None,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        self._policy = policy or ThrottlePolicy()
        self._clock = clock
        self._entries: deque[_Entry] = deque()
        # user_id -> that user's newest entry, for O(1) coalescing
        self._last_by_user: dict[str, _Entry] = {}
        self.coalesced = 0
        self.dropped = 0

    def __len__(self) -> int:
        return len(self._entries)

    def __repr__(self) -> str:
        return f"DeliveryQueue(len={len(self._entries)}, dropped={self.dropped})"

    def enqueue(self, update: MapUpdate) -> bool:
        """Queue *update*, coalescing it into a recent cursor frame if allowed.

        Returns:
            True if the update replaced an existing entry.
        """
        now = self._clock()
        last = self._last_by_user.get(update.user_id)
        if last is not None and self._policy.should_coalesce(
            last.update, update, now - last.enqueued_at
        ):
            last.update = update
            last.enqueued_at = now
            self.coalesced += 1
            return True

        entry = _Entry(update=update, enqueued_at=now)
        self._entries.append(entry)
        self._last_by_user[update.user_id] = entry
        if self._policy.needs_trim(len(self._entries)):
            self._trim()
        return False

    def requeue(self, updates: Iterable[MapUpdate]) -> None:
        """Put undelivered updates back at the head of the queue.

        Requeued entries never serve as coalescing targets, and the
        capacity bound still applies (oldest dropped first).
        """
        restored = [_Entry(update=u, enqueued_at=float("-inf")) for u in updates]
        if not restored:
            return
        self._entries.extendleft(reversed(restored))
        for entry in restored:
            self._last_by_user.setdefault(entry.update.user_id, entry)
        if self._policy.needs_trim(len(self._entries)):
            self._trim()

    def drain(self) -> list[MapUpdate]:
        """Remove and return everything currently queued."""
        entries, self._entries = self._entries, deque()
        self._last_by_user = {}
        return [entry.update for entry in entries]

    def peek(self) -> list[MapUpdate]:
        return [entry.update for entry in self._entries]

    def clear(self) -> int:
        """Discard all queued updates. Returns how many were discarded."""
        count = len(self._entries)
        self._entries.clear()
        self._last_by_user.clear()
        return count

    def _trim(self) -> None:
        excess = len(self._entries) - self._policy.trim_to
        for _ in range(excess):
            entry = self._entries.popleft()
            if self._last_by_user.get(entry.update.user_id) is entry:
                del self._last_by_user[entry.update.user_id]
        self.dropped += excess
        logger.debug(
            "Delivery queue over capacity, dropped %d oldest updates (kept %d)",
            excess,
            len(self._entries),
        )
