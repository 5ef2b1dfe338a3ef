"""All string enums for mapsync."""

from __future__ import annotations

from enum import StrEnum, unique


@unique
class ParticipantRole(StrEnum):
    ADMIN = "admin"
    OPERATOR = "operator"
    OBSERVER = "observer"


@unique
class SessionStatus(StrEnum):
    CREATED = "created"
    ACTIVE = "active"
    IDLE = "idle"
    REAPED = "reaped"


@unique
class UpdateType(StrEnum):
    # Markers
    MARKER_ADDED = "marker_added"
    MARKER_UPDATED = "marker_updated"
    MARKER_DELETED = "marker_deleted"
    # Annotations
    ANNOTATION_CREATED = "annotation_created"
    ANNOTATION_UPDATED = "annotation_updated"
    ANNOTATION_DELETED = "annotation_deleted"
    # Geofences
    GEOFENCE_CREATED = "geofence_created"
    GEOFENCE_UPDATED = "geofence_updated"
    GEOFENCE_DELETED = "geofence_deleted"
    # View and presence
    VIEW_CHANGED = "view_changed"
    CURSOR_MOVED = "cursor_moved"
    # Generated by the engine, never accepted inbound
    PARTICIPANT_JOINED = "participant_joined"
    PARTICIPANT_LEFT = "participant_left"
    MEDIA_STATE_CHANGED = "media_state_changed"

    @property
    def feature_kind(self) -> str | None:
        """Return ``marker``, ``annotation`` or ``geofence`` for mutations."""
        kind, _, _ = self.value.partition("_")
        if kind in ("marker", "annotation", "geofence"):
            return kind
        return None

    @property
    def is_mutation(self) -> bool:
        return self.feature_kind is not None

    @property
    def is_create(self) -> bool:
        return self in (
            UpdateType.MARKER_ADDED,
            UpdateType.ANNOTATION_CREATED,
            UpdateType.GEOFENCE_CREATED,
        )

    @property
    def is_delete(self) -> bool:
        return self.value.endswith("_deleted")

    @property
    def is_edit(self) -> bool:
        return self.value.endswith("_updated")

    @property
    def is_inbound(self) -> bool:
        return self not in _ENGINE_TYPES

    @classmethod
    def updated_for(cls, kind: str) -> UpdateType:
        """Return the ``*_updated`` type for a feature kind."""
        return cls(f"{kind}_updated")


_ENGINE_TYPES = frozenset(
    {
        UpdateType.PARTICIPANT_JOINED,
        UpdateType.PARTICIPANT_LEFT,
        UpdateType.MEDIA_STATE_CHANGED,
    }
)


@unique
class ResolutionMethod(StrEnum):
    MERGE = "merge"
    LAST_WRITER_WINS = "last_writer_wins"
    ACCEPT_INCOMING = "accept_incoming"
    MANUAL = "manual"


@unique
class SubmitOutcome(StrEnum):
    ACCEPTED = "accepted"
    DUPLICATE = "duplicate"
    CONFLICT_RESOLVED = "conflict_resolved"
    REJECTED = "rejected"
