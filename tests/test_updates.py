"""Tests for update submission, arbitration, and presence updates."""

from __future__ import annotations

import json
from collections.abc import Callable, Coroutine
from typing import Any
from unittest.mock import AsyncMock

import pytest

from mapsync.core.manager import (
    FeatureNotFoundError,
    InvalidRequestError,
    ParticipantNotFoundError,
    SessionManager,
    SessionNotFoundError,
)
from mapsync.models.conflict import ConflictResolution
from mapsync.models.enums import ResolutionMethod, SubmitOutcome, UpdateType
from mapsync.models.participant import Cursor, MediaState
from mapsync.models.session import Session, UserInfo
from mapsync.persistence.base import FeaturePersistence
from mapsync.persistence.memory import InMemoryFeatureStore
from mapsync.telemetry.base import SpanKind
from mapsync.telemetry.mock import MockTelemetryProvider
from tests.conftest import FakeClock, make_update

Advance = Callable[[int], Coroutine[Any, Any, None]]


async def _room(manager: SessionManager, *members: str, **config: object) -> Session:
    session = await manager.create_session({"createdBy": "a", **config})
    for member in members:
        await manager.join_session(session.id, UserInfo(id=member))
    for pid in session.participants:
        manager.drain(session.id, pid)
    return session


class TestSubmitUpdate:
    async def test_accepted_mutation_reaches_everyone_but_sender(
        self, manager: SessionManager
    ) -> None:
        session = await _room(manager, "b", "c")
        update = make_update(session_id=session.id, user_id="b")
        result = await manager.submit_update(update)
        assert result.outcome == SubmitOutcome.ACCEPTED
        assert manager.drain(session.id, "a") == [update]
        assert manager.drain(session.id, "c") == [update]
        assert manager.drain(session.id, "b") == []

    async def test_view_change_broadcast_without_arbitration(
        self, manager: SessionManager
    ) -> None:
        session = await _room(manager, "b")
        update = make_update(
            UpdateType.VIEW_CHANGED, session_id=session.id, user_id="b", feature_id=None
        )
        result = await manager.submit_update(update)
        assert result.accepted
        assert manager.drain(session.id, "a") == [update]

    async def test_cursor_update_stored_and_broadcast(self, manager: SessionManager) -> None:
        session = await _room(manager, "b")
        update = make_update(
            UpdateType.CURSOR_MOVED,
            session_id=session.id,
            user_id="b",
            feature_id=None,
            cursor={"lat": 10.0, "lng": 20.0},
        )
        await manager.submit_update(update)
        assert session.participants["b"].cursor == Cursor(lat=10.0, lng=20.0)
        assert manager.drain(session.id, "a") == [update]

    async def test_duplicate_not_rebroadcast(self, manager: SessionManager) -> None:
        session = await _room(manager, "b")
        update = make_update(session_id=session.id, user_id="b")
        await manager.submit_update(update)
        manager.drain(session.id, "a")
        result = await manager.submit_update(update)
        assert result.outcome == SubmitOutcome.DUPLICATE
        assert manager.drain(session.id, "a") == []

    async def test_inactive_sender_rejected(self, manager: SessionManager) -> None:
        session = await _room(manager, "b")
        await manager.leave_session(session.id, "b")
        manager.drain(session.id, "a")
        result = await manager.submit_update(make_update(session_id=session.id, user_id="b"))
        assert result.outcome == SubmitOutcome.REJECTED
        assert manager.drain(session.id, "a") == []

    async def test_stranger_rejected(self, manager: SessionManager) -> None:
        session = await _room(manager)
        result = await manager.submit_update(make_update(session_id=session.id, user_id="zz"))
        assert result.outcome == SubmitOutcome.REJECTED

    async def test_engine_type_rejected(self, manager: SessionManager) -> None:
        session = await _room(manager, "b")
        update = make_update(
            UpdateType.PARTICIPANT_JOINED, session_id=session.id, user_id="b", feature_id=None
        )
        result = await manager.submit_update(update)
        assert result.outcome == SubmitOutcome.REJECTED

    async def test_annotations_disabled(self, manager: SessionManager) -> None:
        session = await _room(manager, "b", allowAnnotations=False)
        result = await manager.submit_update(make_update(session_id=session.id, user_id="b"))
        assert result.outcome == SubmitOutcome.REJECTED
        assert result.reason == "annotations are disabled in this session"
        marker = make_update(UpdateType.MARKER_ADDED, session_id=session.id, user_id="b")
        assert (await manager.submit_update(marker)).accepted

    async def test_editing_disabled(self, manager: SessionManager) -> None:
        session = await _room(manager, "b", allowEditing=False)
        created = make_update(UpdateType.GEOFENCE_CREATED, session_id=session.id, user_id="b")
        assert (await manager.submit_update(created)).accepted
        edit = make_update(
            UpdateType.GEOFENCE_UPDATED, session_id=session.id, user_id="b", timestamp=20
        )
        assert (await manager.submit_update(edit)).outcome == SubmitOutcome.REJECTED

    async def test_unknown_session(self, manager: SessionManager) -> None:
        with pytest.raises(SessionNotFoundError):
            await manager.submit_update(make_update(session_id="collab_missing"))

    async def test_span_outcome(
        self, manager: SessionManager, telemetry: MockTelemetryProvider
    ) -> None:
        session = await _room(manager, "b")
        await manager.submit_update(make_update(session_id=session.id, user_id="b"))
        span = telemetry.get_spans(SpanKind.UPDATE_SUBMIT)[-1]
        assert span.attributes["update.outcome"] == "accepted"


class TestConflicts:
    async def test_stale_write_resolved_and_sent_to_all(self, manager: SessionManager) -> None:
        session = await _room(manager, "b", "c")
        await manager.submit_update(
            make_update(session_id=session.id, user_id="a", timestamp=100, properties={"k": 1})
        )
        await manager.submit_update(
            make_update(
                UpdateType.ANNOTATION_UPDATED,
                session_id=session.id,
                user_id="b",
                timestamp=200,
                properties={"k": 2},
            )
        )
        for pid in ("a", "b", "c"):
            manager.drain(session.id, pid)

        stale = make_update(
            UpdateType.ANNOTATION_UPDATED,
            session_id=session.id,
            user_id="c",
            timestamp=150,
            properties={"k": 3, "extra": True},
        )
        result = await manager.submit_update(stale)
        assert result.outcome == SubmitOutcome.CONFLICT_RESOLVED
        resolution = result.resolution
        assert resolution is not None
        assert resolution.type == UpdateType.ANNOTATION_UPDATED
        assert resolution.user_id == "system"
        assert resolution.timestamp == 200
        assert resolution.data["properties"] == {"k": 2, "extra": True}
        assert resolution.data["metadata"]["conflictResolved"] is True

        for pid in ("a", "b", "c"):
            assert manager.drain(session.id, pid) == [resolution]
        assert stale not in manager.drain(session.id, "a")

    async def test_repeated_stale_write_is_duplicate(self, manager: SessionManager) -> None:
        session = await _room(manager, "b")
        await manager.submit_update(make_update(session_id=session.id, user_id="a", timestamp=9))
        stale = make_update(
            UpdateType.ANNOTATION_UPDATED, session_id=session.id, user_id="b", timestamp=5
        )
        assert (await manager.submit_update(stale)).outcome == SubmitOutcome.CONFLICT_RESOLVED
        assert (await manager.submit_update(stale)).outcome == SubmitOutcome.DUPLICATE

    async def test_explicit_resolution(self, manager: SessionManager) -> None:
        session = await _room(manager, "b")
        await manager.submit_update(
            make_update(session_id=session.id, user_id="b", properties={"label": "x"})
        )
        manager.drain(session.id, "a")
        update = await manager.resolve_conflict(
            session.id,
            "f1",
            {"method": "manual", "resolvedBy": "a", "properties": {"label": "final"}},
        )
        assert update.user_id == "a"
        assert update.data["properties"] == {"label": "final"}
        assert manager.drain(session.id, "a") == [update]
        assert manager.drain(session.id, "b") == [update]

    async def test_resolve_unknown_feature(self, manager: SessionManager) -> None:
        session = await _room(manager)
        with pytest.raises(FeatureNotFoundError):
            await manager.resolve_conflict(session.id, "nope", ConflictResolution(resolved_by="a"))

    async def test_resolve_deleted_feature(self, manager: SessionManager) -> None:
        session = await _room(manager)
        await manager.submit_update(make_update(session_id=session.id, user_id="a"))
        await manager.submit_update(
            make_update(
                UpdateType.ANNOTATION_DELETED, session_id=session.id, user_id="a", timestamp=11
            )
        )
        with pytest.raises(FeatureNotFoundError):
            await manager.resolve_conflict(session.id, "f1", ConflictResolution(resolved_by="a"))

    async def test_resolve_malformed(self, manager: SessionManager) -> None:
        session = await _room(manager)
        await manager.submit_update(make_update(session_id=session.id, user_id="a"))
        with pytest.raises(InvalidRequestError):
            await manager.resolve_conflict(session.id, "f1", {"method": "manual"})

    async def test_configured_default_method(
        self, clock: FakeClock, store: InMemoryFeatureStore
    ) -> None:
        from mapsync.models.config import EngineConfig

        manager = SessionManager(
            EngineConfig(default_resolution_method=ResolutionMethod.ACCEPT_INCOMING),
            persistence=store,
            clock=clock.now,
        )
        session = await _room(manager, "b")
        await manager.submit_update(
            make_update(session_id=session.id, user_id="a", timestamp=9, properties={"k": 1})
        )
        result = await manager.submit_update(
            make_update(
                UpdateType.ANNOTATION_UPDATED,
                session_id=session.id,
                user_id="b",
                timestamp=5,
                properties={"k": 2},
            )
        )
        assert result.resolution is not None
        assert result.resolution.data["properties"] == {"k": 2}


class TestHandleEnvelope:
    async def test_valid_envelope(self, manager: SessionManager) -> None:
        session = await _room(manager, "b")
        envelope = make_update(session_id=session.id, user_id="b").to_envelope()
        result = await manager.handle_envelope(json.dumps(envelope))
        assert result is not None
        assert result.accepted

    @pytest.mark.parametrize(
        "raw",
        ["{", '{"type": "annotation_created"}', '{"type": "nuke", "userId": "b"}'],
    )
    async def test_malformed_dropped(
        self, manager: SessionManager, telemetry: MockTelemetryProvider, raw: str
    ) -> None:
        session = await _room(manager, "b")
        assert await manager.handle_envelope(raw) is None
        assert manager.drain(session.id, "a") == []
        assert len(telemetry.get_metrics("mapsync.updates.malformed")) == 1

    async def test_unknown_session_dropped(self, manager: SessionManager) -> None:
        envelope = make_update(session_id="collab_gone").to_envelope()
        assert await manager.handle_envelope(envelope) is None


class TestPresenceUpdates:
    async def test_update_cursor(self, manager: SessionManager) -> None:
        session = await _room(manager, "b")
        update = await manager.update_cursor(session.id, "b", {"x": 10, "y": 20})
        assert update.type == UpdateType.CURSOR_MOVED
        assert update.data["cursor"]["x"] == 10
        assert session.participants["b"].cursor == Cursor(x=10, y=20)
        assert manager.drain(session.id, "a") == [update]

    async def test_cursor_frames_coalesce(
        self, manager: SessionManager, clock: FakeClock
    ) -> None:
        session = await _room(manager, "b")
        await manager.update_cursor(session.id, "b", Cursor(x=1, y=1))
        clock.advance(0.05)
        last = await manager.update_cursor(session.id, "b", Cursor(x=2, y=2))
        assert manager.drain(session.id, "a") == [last]

    async def test_clear_cursor(self, manager: SessionManager) -> None:
        session = await _room(manager, "b")
        await manager.update_cursor(session.id, "b", Cursor(x=1, y=1))
        await manager.update_cursor(session.id, "b", None)
        assert session.participants["b"].cursor is None

    async def test_invalid_cursor(self, manager: SessionManager) -> None:
        session = await _room(manager, "b")
        with pytest.raises(InvalidRequestError):
            await manager.update_cursor(session.id, "b", {"lat": 95})

    async def test_cursor_from_ghost(self, manager: SessionManager) -> None:
        session = await _room(manager, "b")
        await manager.leave_session(session.id, "b")
        with pytest.raises(ParticipantNotFoundError):
            await manager.update_cursor(session.id, "b", Cursor(x=1, y=1))

    async def test_media_state(self, manager: SessionManager) -> None:
        session = await _room(manager, "b")
        update = await manager.update_media_state(session.id, "b", {"audioEnabled": True})
        assert update.type == UpdateType.MEDIA_STATE_CHANGED
        assert update.data["mediaState"]["audioEnabled"] is True
        assert session.participants["b"].media_state == MediaState(audio_enabled=True)
        assert manager.drain(session.id, "a") == [update]

    async def test_media_state_unknown_participant(self, manager: SessionManager) -> None:
        session = await _room(manager)
        with pytest.raises(ParticipantNotFoundError):
            await manager.update_media_state(session.id, "zz", MediaState())


class TestPersistence:
    async def test_accepted_mutation_persisted(
        self, manager: SessionManager, store: InMemoryFeatureStore
    ) -> None:
        session = await _room(manager, "b")
        await manager.submit_update(
            make_update(
                UpdateType.GEOFENCE_CREATED,
                session_id=session.id,
                user_id="b",
                geometry={"type": "Polygon", "coordinates": []},
                properties={"name": "AO"},
            )
        )
        await manager.flush_persistence()
        record = store.get("f1")
        assert record is not None
        assert record["properties"] == {"name": "AO"}
        assert record["metadata"]["featureKind"] == "geofence"
        assert record["metadata"]["lastModifiedBy"] == "b"
        assert record["metadata"]["collaborationId"] == session.id
        assert record["isActive"]

    async def test_delete_persisted_inactive(
        self, manager: SessionManager, store: InMemoryFeatureStore
    ) -> None:
        session = await _room(manager)
        await manager.submit_update(make_update(session_id=session.id, user_id="a"))
        await manager.submit_update(
            make_update(
                UpdateType.ANNOTATION_DELETED, session_id=session.id, user_id="a", timestamp=11
            )
        )
        await manager.flush_persistence()
        record = store.get("f1")
        assert record is not None
        assert not record["isActive"]
        assert record["geometry"] is None

    async def test_presence_not_persisted(
        self, manager: SessionManager, store: InMemoryFeatureStore
    ) -> None:
        session = await _room(manager, "b")
        await manager.update_cursor(session.id, "b", Cursor(x=1, y=1))
        await manager.flush_persistence()
        assert store.writes == []

    async def test_persistence_failure_does_not_block_broadcast(
        self, clock: FakeClock, advance: Advance
    ) -> None:
        failing = AsyncMock(spec=FeaturePersistence)
        failing.persist.side_effect = RuntimeError("db down")
        telemetry = MockTelemetryProvider()
        manager = SessionManager(persistence=failing, telemetry=telemetry, clock=clock.now)
        session = await _room(manager, "b")

        update = make_update(session_id=session.id, user_id="b")
        result = await manager.submit_update(update)
        await advance()
        assert result.accepted
        assert manager.drain(session.id, "a") == [update]
        failing.persist.assert_awaited_once()
        assert len(telemetry.get_metrics("mapsync.persistence.failures")) == 1
        assert telemetry.get_spans(SpanKind.PERSIST)[0].status == "error"
