"""HelpersMixin: shared plumbing for the session manager mixins."""

from __future__ import annotations

import asyncio
import logging
from collections.abc import AsyncIterator, Callable
from contextlib import asynccontextmanager
from dataclasses import dataclass
from datetime import datetime
from typing import TYPE_CHECKING, Any

from mapsync.core.conflicts import ConflictResolver
from mapsync.core.registry import ParticipantRegistry
from mapsync.models.conflict import SubmitResult
from mapsync.models.enums import SubmitOutcome
from mapsync.models.update import MapUpdate
from mapsync.telemetry.base import Attr, SpanKind

if TYPE_CHECKING:
    from mapsync.core.broadcaster import Broadcaster
    from mapsync.core.locks import SessionLockManager
    from mapsync.models.config import EngineConfig
    from mapsync.models.conflict import FeatureVersion
    from mapsync.models.enums import UpdateType
    from mapsync.models.participant import Participant
    from mapsync.models.session import Session
    from mapsync.persistence.base import FeaturePersistence
    from mapsync.telemetry.base import TelemetryProvider

logger = logging.getLogger("mapsync.manager")


@dataclass
class _LiveSession:
    """A session plus the runtime state that is never serialized."""

    session: Session
    registry: ParticipantRegistry
    resolver: ConflictResolver


class HelpersMixin:
    """Lookup, presence events, and persistence dispatch."""

    _sessions: dict[str, _LiveSession]
    _config: EngineConfig
    _telemetry: TelemetryProvider
    _broadcaster: Broadcaster
    _lock_manager: SessionLockManager
    _persistence: FeaturePersistence | None
    _persist_tasks: set[asyncio.Task[None]]
    _now: Callable[[], datetime]
    _on_enqueue: Callable[[], None]

    def _live(self, session_id: str) -> _LiveSession:
        live = self._sessions.get(session_id)
        if live is None:
            from mapsync.core.manager import SessionNotFoundError

            raise SessionNotFoundError(f"Session {session_id} not found")
        return live

    @asynccontextmanager
    async def _session_context(self, session_id: str) -> AsyncIterator[_LiveSession]:
        """Enter the session's exclusive execution context.

        The id is checked before locking so unknown ids never allocate a
        lock, and again inside because the reaper may have won the race.
        """
        self._live(session_id)
        async with self._lock_manager.locked(session_id):
            yield self._live(session_id)

    def _now_ms(self) -> float:
        return self._now().timestamp() * 1000.0

    def _presence_event(
        self,
        session_id: str,
        update_type: UpdateType,
        participant: Participant,
        data: dict[str, Any],
    ) -> MapUpdate:
        update = MapUpdate(
            type=update_type,
            data={"userId": participant.id, **data},
            user_id=participant.id,
            user_name=participant.display_name,
            timestamp=self._now_ms(),
            session_id=session_id,
        )
        self._broadcaster.broadcast(session_id, update, exclude_participant_id=participant.id)
        return update

    @staticmethod
    def _result(
        outcome: SubmitOutcome,
        update: MapUpdate,
        *,
        resolution: MapUpdate | None = None,
        reason: str | None = None,
    ) -> SubmitResult:
        return SubmitResult(outcome=outcome, update=update, resolution=resolution, reason=reason)

    def _reject(self, update: MapUpdate, reason: str) -> SubmitResult:
        logger.warning(
            "Rejected %s from %s in %s: %s",
            update.type.value,
            update.user_id,
            update.session_id,
            reason,
        )
        return self._result(SubmitOutcome.REJECTED, update, reason=reason)

    # -- Persistence -------------------------------------------------------

    def _dispatch_persist(self, session_id: str, version: FeatureVersion) -> None:
        """Hand an accepted feature state to the persistence collaborator.

        Runs as a background task: the caller (holding the session lock)
        never waits for storage.
        """
        if self._persistence is None:
            return
        metadata = {
            **version.metadata,
            "featureKind": version.kind,
            "lastModifiedBy": version.user_id,
            "version": version.timestamp,
            "collaborationId": session_id,
            "deleted": version.deleted,
        }
        task = asyncio.create_task(
            self._persist(session_id, version, metadata),
            name=f"persist:{version.feature_id}",
        )
        self._persist_tasks.add(task)
        task.add_done_callback(self._persist_tasks.discard)

    async def _persist(
        self, session_id: str, version: FeatureVersion, metadata: dict[str, Any]
    ) -> None:
        assert self._persistence is not None
        span_id = self._telemetry.start_span(
            SpanKind.PERSIST,
            f"persist {version.feature_id}",
            session_id=session_id,
            attributes={Attr.FEATURE_ID: version.feature_id},
        )
        try:
            await self._persistence.persist(
                version.feature_id,
                None if version.deleted else version.geometry,
                {} if version.deleted else dict(version.properties),
                metadata,
            )
        except Exception as exc:
            self._telemetry.end_span(span_id, status="error", error_message=str(exc))
            self._telemetry.record_metric(
                "mapsync.persistence.failures",
                1.0,
                attributes={Attr.SESSION_ID: session_id, Attr.FEATURE_ID: version.feature_id},
            )
            logger.exception(
                "Persisting feature %s for session %s failed", version.feature_id, session_id
            )
            return
        self._telemetry.end_span(span_id)
