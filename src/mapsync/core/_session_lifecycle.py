"""SessionLifecycleMixin: create, join, leave, and reap sessions."""

from __future__ import annotations

import logging
from collections.abc import Callable, Mapping
from datetime import datetime, timedelta
from typing import TYPE_CHECKING, Any
from uuid import uuid4

from pydantic import ValidationError

from mapsync.core._helpers import HelpersMixin, _LiveSession
from mapsync.core.conflicts import ConflictResolver
from mapsync.core.delivery import DeliveryQueue
from mapsync.core.registry import ParticipantRegistry
from mapsync.models.enums import SessionStatus, UpdateType
from mapsync.models.session import Session, SessionConfig, SessionSettings, UserInfo
from mapsync.telemetry.base import Attr, SpanKind

if TYPE_CHECKING:
    from mapsync.core.throttle import ThrottlePolicy

logger = logging.getLogger("mapsync.manager")


class SessionLifecycleMixin(HelpersMixin):
    """Session state machine: created → active ⇄ idle → reaped."""

    _throttle: ThrottlePolicy
    _monotonic: Callable[[], float]

    def _new_live_session(self, session: Session) -> _LiveSession:
        registry = ParticipantRegistry(
            session.participants,
            queue_factory=lambda: DeliveryQueue(self._throttle, clock=self._monotonic),
            now=self._now,
        )
        return _LiveSession(session=session, registry=registry, resolver=ConflictResolver())

    async def create_session(self, config: SessionConfig | Mapping[str, Any]) -> Session:
        """Create a session and register its creator as the first participant.

        Raises:
            InvalidConfigError: If the config is malformed or
                ``max_participants`` is below 1. Nothing is registered.
        """
        from mapsync.core.manager import InvalidConfigError

        if not isinstance(config, SessionConfig):
            try:
                config = SessionConfig.model_validate(config)
            except ValidationError as exc:
                raise InvalidConfigError(f"Invalid session config: {exc}") from exc

        max_participants = (
            config.max_participants
            if config.max_participants is not None
            else self._config.default_max_participants
        )
        if max_participants < 1:
            raise InvalidConfigError(f"max_participants must be >= 1, got {max_participants}")

        session = Session(
            id=f"collab_{uuid4().hex}",
            name=config.name,
            created_by=config.created_by,
            created_at=self._now(),
            settings=SessionSettings(
                allow_annotations=config.allow_annotations,
                allow_editing=config.allow_editing,
                require_approval=config.require_approval,
                max_participants=max_participants,
            ),
        )
        with self._telemetry.span(
            SpanKind.SESSION_CREATE, "create_session", session_id=session.id
        ):
            live = self._new_live_session(session)
            async with self._lock_manager.locked(session.id):
                live.registry.add(
                    config.created_by,
                    display_name=config.creator_name,
                    role=config.creator_role,
                )
                session.status = SessionStatus.ACTIVE
                self._sessions[session.id] = live

        logger.info(
            "Session %s (%r) created by %s, capacity %d",
            session.id,
            session.name,
            session.created_by,
            max_participants,
        )
        return session

    async def join_session(self, session_id: str, user: UserInfo | Mapping[str, Any]) -> Session:
        """Add *user* to a session, or reactivate them if already known.

        A returning participant (active or ghost) keeps its delivery
        queue. Reactivating a ghost still needs a free slot.

        Raises:
            SessionNotFoundError: If the session does not exist.
            SessionFullError: If the session is at capacity.
            InvalidRequestError: If *user* is malformed.
        """
        from mapsync.core.manager import InvalidRequestError, SessionFullError

        if not isinstance(user, UserInfo):
            try:
                user = UserInfo.model_validate(user)
            except ValidationError as exc:
                raise InvalidRequestError(f"Invalid user: {exc}") from exc

        async with self._session_context(session_id) as live:
            with self._telemetry.span(
                SpanKind.SESSION_JOIN,
                "join_session",
                session_id=session_id,
                attributes={Attr.PARTICIPANT_ID: user.id},
            ):
                session = live.session
                existing = live.registry.get(user.id)
                if existing is None or not existing.is_active:
                    capacity = session.settings.max_participants
                    if live.registry.active_count() >= capacity:
                        raise SessionFullError(
                            f"Session {session_id} is full ({capacity} participants)"
                        )

                if existing is None:
                    participant = live.registry.add(
                        user.id, display_name=user.name, role=user.role
                    )
                else:
                    participant = live.registry.reactivate(user.id, display_name=user.name)
                    logger.debug("Participant %s reactivated in %s", user.id, session_id)
                    if participant.pending_updates:
                        self._on_enqueue()

                session.status = SessionStatus.ACTIVE
                session.idle_since = None
                self._presence_event(
                    session_id,
                    UpdateType.PARTICIPANT_JOINED,
                    participant,
                    {"user": {"id": user.id, "name": user.name, "role": user.role.value}},
                )

        logger.info("Participant %s joined %s", user.id, session_id)
        return session

    async def leave_session(self, session_id: str, participant_id: str) -> None:
        """Mark a participant inactive (ghost) and announce the departure.

        Leaving twice, or leaving a session one never joined, is a no-op.

        Raises:
            SessionNotFoundError: If the session does not exist.
        """
        async with self._session_context(session_id) as live:
            participant = live.registry.get(participant_id)
            if participant is None or not participant.is_active:
                logger.debug("Ignoring leave of inactive %s in %s", participant_id, session_id)
                return

            with self._telemetry.span(
                SpanKind.SESSION_LEAVE,
                "leave_session",
                session_id=session_id,
                attributes={Attr.PARTICIPANT_ID: participant_id},
            ):
                participant = live.registry.mark_inactive(participant_id)
                if live.registry.active_count() == 0:
                    live.session.status = SessionStatus.IDLE
                    live.session.idle_since = participant.left_at
                self._presence_event(session_id, UpdateType.PARTICIPANT_LEFT, participant, {})

        logger.info("Participant %s left %s", participant_id, session_id)

    async def reap(self, now: datetime | None = None) -> list[str]:
        """Run one sweep over all sessions.

        Purges ghosts past the ghost timeout, and tears down sessions that
        have had no active participant for longer than the retention
        window. Returns the ids of the sessions torn down.
        """
        now = now or self._now()
        ghost_cutoff = now - timedelta(seconds=self._config.ghost_timeout_seconds)
        retention = timedelta(seconds=self._config.session_retention_seconds)
        reaped: list[str] = []
        purged_total = 0

        with self._telemetry.span(SpanKind.SESSION_REAP, "reap") as span_id:
            for session_id in list(self._sessions):
                async with self._lock_manager.locked(session_id):
                    live = self._sessions.get(session_id)
                    if live is None:
                        continue
                    purged = live.registry.purge_ghosts(ghost_cutoff)
                    purged_total += len(purged)
                    for participant in purged:
                        logger.debug("Purged ghost %s from %s", participant.id, session_id)

                    session = live.session
                    if live.registry.active_count():
                        session.status = SessionStatus.ACTIVE
                        session.idle_since = None
                        continue
                    if session.status != SessionStatus.IDLE or session.idle_since is None:
                        session.status = SessionStatus.IDLE
                        session.idle_since = now
                    if now - session.idle_since >= retention:
                        self._teardown(live)
                        self._lock_manager.release(session_id)
                        reaped.append(session_id)

            self._telemetry.set_attribute(span_id, Attr.REAP_GHOSTS, purged_total)
            self._telemetry.set_attribute(span_id, Attr.REAP_SESSIONS, len(reaped))

        if purged_total or reaped:
            logger.info(
                "Reaper purged %d ghosts, tore down %d sessions", purged_total, len(reaped)
            )
        return reaped

    def _teardown(self, live: _LiveSession) -> None:
        session = live.session
        dropped = live.registry.release_all()
        live.resolver.clear()
        session.status = SessionStatus.REAPED
        del self._sessions[session.id]
        logger.info("Session %s reaped (%d undelivered updates dropped)", session.id, dropped)
