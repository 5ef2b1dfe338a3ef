"""SessionManager: owner of all live collaboration sessions."""

from __future__ import annotations

import asyncio
import logging
import time
from collections.abc import Callable
from datetime import UTC, datetime
from typing import TYPE_CHECKING, Any

from mapsync.core._session_lifecycle import SessionLifecycleMixin
from mapsync.core._updates import UpdatesMixin
from mapsync.core.broadcaster import Broadcaster
from mapsync.core.locks import InMemorySessionLockManager, SessionLockManager
from mapsync.core.reaper import SessionReaper
from mapsync.core.throttle import ThrottlePolicy
from mapsync.core.worker import DeliveryWorker
from mapsync.models.config import EngineConfig
from mapsync.telemetry.noop import NoopTelemetryProvider

if TYPE_CHECKING:
    from mapsync.core._helpers import _LiveSession
    from mapsync.models.participant import Participant
    from mapsync.models.session import Session
    from mapsync.models.update import MapUpdate
    from mapsync.persistence.base import FeaturePersistence
    from mapsync.telemetry.base import TelemetryProvider
    from mapsync.transport.base import DeliveryTransport

__all__ = [
    "FeatureNotFoundError",
    "InvalidConfigError",
    "InvalidRequestError",
    "MalformedUpdateError",
    "MapSyncError",
    "ParticipantNotFoundError",
    "SessionFullError",
    "SessionManager",
    "SessionNotFoundError",
    "UnknownActionError",
]

logger = logging.getLogger("mapsync.manager")


class MapSyncError(Exception):
    """Base exception for all mapsync errors."""


class SessionNotFoundError(MapSyncError):
    """Session does not exist or has been reaped."""


class SessionFullError(MapSyncError):
    """Session is at its participant capacity."""


class InvalidConfigError(MapSyncError):
    """Session creation parameters are malformed."""


class InvalidRequestError(MapSyncError):
    """A control request payload is malformed."""


class MalformedUpdateError(MapSyncError):
    """Inbound update envelope is missing fields or has an unknown type."""


class ParticipantNotFoundError(MapSyncError):
    """Participant is not (or no longer) part of the session."""


class FeatureNotFoundError(MapSyncError):
    """Map feature is unknown to the session or has been deleted."""


class UnknownActionError(MapSyncError):
    """Control action name is not recognised."""


def _utcnow() -> datetime:
    return datetime.now(UTC)


class SessionManager(UpdatesMixin, SessionLifecycleMixin):
    """Owns live sessions and routes every operation through their locks."""

    def __init__(
        self,
        config: EngineConfig | None = None,
        *,
        persistence: FeaturePersistence | None = None,
        transport: DeliveryTransport | None = None,
        lock_manager: SessionLockManager | None = None,
        telemetry: TelemetryProvider | None = None,
        clock: Callable[[], datetime] | None = None,
        monotonic: Callable[[], float] = time.monotonic,
    ) -> None:
        """Initialise the session manager.

        Args:
            config: Engine tunables. Defaults to ``EngineConfig()``.
            persistence: Durable store receiving accepted feature states.
                ``None`` disables persistence.
            transport: Delivery transport. When set, a ``DeliveryWorker``
                drains queues into it once ``start()`` is called; without
                one, callers drain queues themselves with ``drain()``.
            lock_manager: Per-session serialization backend. Defaults to
                ``InMemorySessionLockManager``.
            telemetry: Span/metric provider. Defaults to
                ``NoopTelemetryProvider``.
            clock: Wall clock for participant and session timestamps.
            monotonic: Clock for queue coalescing windows and breakers.
        """
        self._config = config or EngineConfig()
        self._now = clock or _utcnow
        self._monotonic = monotonic
        self._throttle = ThrottlePolicy.from_config(self._config)
        self._sessions: dict[str, _LiveSession] = {}
        self._lock_manager = lock_manager or InMemorySessionLockManager()
        self._telemetry = telemetry or NoopTelemetryProvider()
        self._persistence = persistence
        self._persist_tasks: set[asyncio.Task[None]] = set()
        self._transport = transport
        self._worker: DeliveryWorker | None = None
        if transport is not None:
            self._worker = DeliveryWorker(
                self,
                transport,
                failure_threshold=self._config.breaker_failure_threshold,
                recovery_timeout=self._config.breaker_recovery_seconds,
                retry_interval=self._config.delivery_retry_seconds,
                telemetry=self._telemetry,
                clock=monotonic,
            )
        self._broadcaster = Broadcaster(
            self.get_session, telemetry=self._telemetry, on_enqueue=self._on_enqueue
        )
        self._reaper = SessionReaper(self.reap, interval=self._config.reap_interval_seconds)

    @property
    def config(self) -> EngineConfig:
        return self._config

    @property
    def broadcaster(self) -> Broadcaster:
        return self._broadcaster

    @property
    def session_count(self) -> int:
        return len(self._sessions)

    # -- Queries -----------------------------------------------------------

    def get_session(self, session_id: str) -> Session | None:
        """Look up a live session. Treat the result as read-only."""
        live = self._sessions.get(session_id)
        return live.session if live is not None else None

    def list_sessions(self) -> list[Session]:
        return [live.session for live in self._sessions.values()]

    def get_collaboration_info(self, session_id: str) -> dict[str, Any] | None:
        """Session info plus participant counts, or ``None`` if unknown."""
        session = self.get_session(session_id)
        return session.to_info() if session is not None else None

    # -- Delivery ----------------------------------------------------------

    def drain(self, session_id: str, participant_id: str) -> list[MapUpdate]:
        """Remove and return a participant's pending updates.

        Raises:
            SessionNotFoundError: If the session does not exist.
            ParticipantNotFoundError: If the participant is not registered.
        """
        participant = self._live(session_id).registry.get(participant_id)
        if participant is None:
            raise ParticipantNotFoundError(
                f"Participant {participant_id} not found in {session_id}"
            )
        return participant.pending_updates.drain()

    def pending_deliveries(self) -> list[tuple[str, Participant]]:
        """Active participants with queued updates, for the delivery worker.

        Ghosts are skipped: their queues wait for the participant to
        reconnect.
        """
        return [
            (session_id, participant)
            for session_id, live in list(self._sessions.items())
            for participant in live.registry.active()
            if len(participant.pending_updates)
        ]

    async def deliver_pending(self) -> int:
        """Run one delivery pass synchronously. Returns the number sent."""
        if self._worker is None:
            raise RuntimeError("No transport configured")
        return await self._worker.flush()

    def _on_enqueue(self) -> None:
        if self._worker is not None:
            self._worker.wake()

    # -- Lifecycle ---------------------------------------------------------

    def start(self) -> None:
        """Start the background delivery worker (if any) and the reaper."""
        if self._worker is not None:
            self._worker.start()
        self._reaper.start()
        logger.debug("Session manager started")

    async def flush_persistence(self) -> None:
        """Wait for in-flight persistence writes to finish."""
        while self._persist_tasks:
            await asyncio.gather(*list(self._persist_tasks), return_exceptions=True)

    async def close(self) -> None:
        """Stop background tasks, let pending writes finish, close collaborators."""
        await self._reaper.stop()
        if self._worker is not None:
            await self._worker.stop()
        await self.flush_persistence()
        if self._transport is not None:
            await self._transport.close()
        if self._persistence is not None:
            await self._persistence.close()
        self._telemetry.close()
        logger.debug("Session manager closed")
