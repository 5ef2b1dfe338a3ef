"""UpdatesMixin: the single entry point for map and presence updates."""

from __future__ import annotations

import logging
from collections.abc import Mapping
from typing import Any, TypeVar

from pydantic import ValidationError

from mapsync.core._helpers import HelpersMixin, _LiveSession
from mapsync.core.conflicts import VerdictKind
from mapsync.models.conflict import ConflictResolution, SubmitResult
from mapsync.models.enums import SubmitOutcome, UpdateType
from mapsync.models.participant import Cursor, MediaState, Participant
from mapsync.models.session import SessionSettings
from mapsync.models.update import MapUpdate
from mapsync.telemetry.base import Attr, SpanKind

logger = logging.getLogger("mapsync.manager")


class UpdatesMixin(HelpersMixin):
    """Submission, arbitration, and presence updates."""

    async def handle_envelope(
        self, raw: str | bytes | Mapping[str, Any]
    ) -> SubmitResult | None:
        """Parse and submit an inbound transport envelope.

        Malformed envelopes, and envelopes naming an unknown session, are
        dropped with a warning and return ``None``; they never raise.
        """
        from mapsync.core.manager import MalformedUpdateError, SessionNotFoundError

        try:
            update = MapUpdate.from_envelope(raw)
        except MalformedUpdateError as exc:
            logger.warning("Dropping malformed update: %s", exc)
            self._telemetry.record_metric("mapsync.updates.malformed", 1.0)
            return None

        try:
            return await self.submit_update(update)
        except SessionNotFoundError:
            logger.warning(
                "Dropping %s for unknown session %s", update.type.value, update.session_id
            )
            return None

    async def submit_update(self, update: MapUpdate) -> SubmitResult:
        """Arbitrate and broadcast one update from a participant.

        Feature mutations pass through the conflict resolver; accepted ones
        are broadcast to everyone but the sender and handed to persistence.
        A conflicting write is settled with the configured default method
        and the resolved state is broadcast to everyone.

        Raises:
            SessionNotFoundError: If the session does not exist.
        """
        async with self._session_context(update.session_id) as live:
            with self._telemetry.span(
                SpanKind.UPDATE_SUBMIT,
                f"submit {update.type.value}",
                session_id=update.session_id,
                attributes={
                    Attr.UPDATE_TYPE: update.type.value,
                    Attr.PARTICIPANT_ID: update.user_id,
                },
            ) as span_id:
                result = self._submit_locked(live, update)
                self._telemetry.set_attribute(span_id, Attr.UPDATE_OUTCOME, result.outcome.value)
        return result

    def _submit_locked(self, live: _LiveSession, update: MapUpdate) -> SubmitResult:
        session_id = live.session.id
        if not update.type.is_inbound:
            return self._reject(update, "engine-generated update type")

        participant = live.registry.get(update.user_id)
        if participant is None or not participant.is_active:
            return self._reject(update, "sender is not an active participant")

        denied = _permission_denied(live.session.settings, update)
        if denied is not None:
            return self._reject(update, denied)

        if update.type == UpdateType.CURSOR_MOVED:
            cursor = update.data.get("cursor")
            live.registry.update_cursor(
                update.user_id, Cursor.model_validate(cursor) if cursor is not None else None
            )

        if not update.type.is_mutation:
            self._broadcaster.broadcast(session_id, update, exclude_participant_id=update.user_id)
            return self._result(SubmitOutcome.ACCEPTED, update)

        verdict = live.resolver.evaluate(update)
        if verdict.kind == VerdictKind.ACCEPT:
            self._broadcaster.broadcast(session_id, update, exclude_participant_id=update.user_id)
            assert verdict.version is not None
            self._dispatch_persist(session_id, verdict.version)
            return self._result(SubmitOutcome.ACCEPTED, update)

        if verdict.kind == VerdictKind.DUPLICATE:
            logger.debug(
                "Duplicate %s for %s from %s ignored",
                update.type.value,
                verdict.feature_id,
                update.user_id,
            )
            return self._result(SubmitOutcome.DUPLICATE, update)

        if verdict.kind == VerdictKind.REJECT:
            return self._reject(update, verdict.reason or "rejected")

        resolution = ConflictResolution(
            method=self._config.default_resolution_method,
            resolved_by=self._config.system_user_id,
        )
        resolved = self._apply_resolution(live, verdict.feature_id, resolution, incoming=update)
        return self._result(SubmitOutcome.CONFLICT_RESOLVED, update, resolution=resolved)

    async def resolve_conflict(
        self,
        session_id: str,
        feature_id: str,
        resolution: ConflictResolution | Mapping[str, Any],
    ) -> MapUpdate:
        """Settle a feature's state explicitly and broadcast the result.

        Raises:
            SessionNotFoundError: If the session does not exist.
            FeatureNotFoundError: If the feature is unknown or deleted.
            InvalidRequestError: If *resolution* is malformed.
        """
        from mapsync.core.manager import FeatureNotFoundError, InvalidRequestError

        if not isinstance(resolution, ConflictResolution):
            try:
                resolution = ConflictResolution.model_validate(resolution)
            except ValidationError as exc:
                raise InvalidRequestError(f"Invalid resolution: {exc}") from exc

        async with self._session_context(session_id) as live:
            version = live.resolver.version(feature_id)
            if version is None or version.deleted:
                raise FeatureNotFoundError(f"Feature {feature_id} not found in {session_id}")
            return self._apply_resolution(live, feature_id, resolution)

    def _apply_resolution(
        self,
        live: _LiveSession,
        feature_id: str,
        resolution: ConflictResolution,
        *,
        incoming: MapUpdate | None = None,
    ) -> MapUpdate:
        session_id = live.session.id
        with self._telemetry.span(
            SpanKind.CONFLICT_RESOLVE,
            f"resolve {feature_id}",
            session_id=session_id,
            attributes={
                Attr.FEATURE_ID: feature_id,
                Attr.RESOLUTION_METHOD: resolution.method.value,
            },
        ):
            version = live.resolver.resolve_conflict(
                feature_id, resolution, incoming=incoming, now=self._now()
            )
            update = MapUpdate(
                type=UpdateType.updated_for(version.kind),
                data={
                    "featureId": feature_id,
                    "geometry": version.geometry,
                    "properties": dict(version.properties),
                    "metadata": dict(version.metadata),
                },
                user_id=resolution.resolved_by,
                timestamp=version.timestamp,
                session_id=session_id,
            )
            # Everyone, the originator included, converges on the resolved state.
            self._broadcaster.broadcast(session_id, update)
            self._dispatch_persist(session_id, version)

        logger.info(
            "Conflict on %s in %s resolved by %s (%s)",
            feature_id,
            session_id,
            resolution.resolved_by,
            resolution.method.value,
        )
        return update

    async def update_cursor(
        self,
        session_id: str,
        participant_id: str,
        cursor: Cursor | Mapping[str, Any] | None,
    ) -> MapUpdate:
        """Store a participant's cursor and broadcast it (coalesced)."""
        cursor = _validate(Cursor, cursor) if cursor is not None else None
        async with self._session_context(session_id) as live:
            participant = self._require_active(live, participant_id)
            participant = live.registry.update_cursor(participant_id, cursor)
            update = MapUpdate(
                type=UpdateType.CURSOR_MOVED,
                data={
                    "userId": participant_id,
                    "cursor": cursor.model_dump(by_alias=True) if cursor else None,
                },
                user_id=participant_id,
                user_name=participant.display_name,
                timestamp=self._now_ms(),
                session_id=session_id,
            )
            self._broadcaster.broadcast(session_id, update, exclude_participant_id=participant_id)
        return update

    async def update_media_state(
        self,
        session_id: str,
        participant_id: str,
        media_state: MediaState | Mapping[str, Any],
    ) -> MapUpdate:
        """Store a participant's audio/video state and announce it."""
        media_state = _validate(MediaState, media_state)
        async with self._session_context(session_id) as live:
            self._require_active(live, participant_id)
            participant = live.registry.update_media_state(participant_id, media_state)
            return self._presence_event(
                session_id,
                UpdateType.MEDIA_STATE_CHANGED,
                participant,
                {"mediaState": media_state.model_dump(by_alias=True)},
            )

    @staticmethod
    def _require_active(live: _LiveSession, participant_id: str) -> Participant:
        participant = live.registry.get(participant_id)
        if participant is None or not participant.is_active:
            from mapsync.core.manager import ParticipantNotFoundError

            raise ParticipantNotFoundError(
                f"Participant {participant_id} is not active in {live.session.id}"
            )
        return participant


def _permission_denied(settings: SessionSettings, update: MapUpdate) -> str | None:
    if update.type.feature_kind == "annotation" and not settings.allow_annotations:
        return "annotations are disabled in this session"
    if (update.type.is_edit or update.type.is_delete) and not settings.allow_editing:
        return "editing is disabled in this session"
    return None


M = TypeVar("M", Cursor, MediaState)


def _validate(model: type[M], value: M | Mapping[str, Any]) -> M:
    if isinstance(value, model):
        return value
    try:
        return model.model_validate(value)
    except ValidationError as exc:
        from mapsync.core.manager import InvalidRequestError

        raise InvalidRequestError(f"Invalid {model.__name__}: {exc}") from exc
