"""Coalesce-or-append policy for delivery queues."""

from __future__ import annotations

from typing import TYPE_CHECKING

from mapsync.models.enums import UpdateType

if TYPE_CHECKING:
    from mapsync.models.config import EngineConfig
    from mapsync.models.update import MapUpdate


class ThrottlePolicy:
    """Decides whether a queued update is replaced or a new one appended.

    Only high-frequency presence chatter is coalesced: a ``cursor_moved``
    update replaces the same user's previous ``cursor_moved`` entry when
    that entry was enqueued less than ``coalesce_interval`` seconds ago and
    is still the user's most recent entry in the queue.

    The policy also carries the capacity bound: once a queue grows past
    ``max_size`` it is cut back to its ``trim_to`` most recent entries.
    """

    def __init__(
        self,
        coalesce_interval: float = 0.1,
        max_size: int = 100,
        trim_to: int = 50,
    ) -> None:
        if coalesce_interval < 0:
            raise ValueError("coalesce_interval must be >= 0")
        if max_size < 1:
            raise ValueError("max_size must be >= 1")
        if not 1 <= trim_to <= max_size:
            raise ValueError("trim_to must be between 1 and max_size")
        self.coalesce_interval = coalesce_interval
        self.max_size = max_size
        self.trim_to = trim_to

    @classmethod
    def from_config(cls, config: EngineConfig) -> ThrottlePolicy:
        return cls(
            coalesce_interval=config.coalesce_interval_seconds,
            max_size=config.max_queue_size,
            trim_to=config.trim_to,
        )

    def should_coalesce(
        self, previous: MapUpdate | None, update: MapUpdate, elapsed: float
    ) -> bool:
        """Return True if *update* should overwrite *previous* in place.

        Args:
            previous: The most recent queued update from the same user.
            update: The update being enqueued.
            elapsed: Seconds since *previous* was enqueued.
        """
        if previous is None:
            return False
        return (
            update.type == UpdateType.CURSOR_MOVED
            and previous.type == UpdateType.CURSOR_MOVED
            and previous.user_id == update.user_id
            and elapsed < self.coalesce_interval
        )

    def needs_trim(self, length: int) -> bool:
        return length > self.max_size
