"""Participant model."""

from __future__ import annotations

from datetime import UTC, datetime

from pydantic import ConfigDict, Field

from mapsync.core.delivery import DeliveryQueue
from mapsync.models.base import CamelModel
from mapsync.models.enums import ParticipantRole


class MediaState(CamelModel):
    """Audio/video state reported by the media transport."""

    audio_enabled: bool = False
    video_enabled: bool = False
    screen_sharing: bool = False


class Cursor(CamelModel):
    """Last known pointer position, in screen and/or map coordinates."""

    x: float | None = None
    y: float | None = None
    lat: float | None = Field(default=None, ge=-90.0, le=90.0)
    lng: float | None = Field(default=None, ge=-180.0, le=180.0)


class Participant(CamelModel):
    """One connected user within a session."""

    model_config = ConfigDict(arbitrary_types_allowed=True)

    id: str
    display_name: str | None = None
    role: ParticipantRole = ParticipantRole.OBSERVER
    is_local: bool = False
    media_state: MediaState = Field(default_factory=MediaState)
    cursor: Cursor | None = None
    is_active: bool = True
    joined_at: datetime = Field(default_factory=lambda: datetime.now(UTC))
    left_at: datetime | None = None
    last_activity_at: datetime | None = None
    pending_updates: DeliveryQueue = Field(
        default_factory=DeliveryQueue, exclude=True, repr=False
    )

    @property
    def is_ghost(self) -> bool:
        """True for a participant that left but has not been purged yet."""
        return not self.is_active and self.left_at is not None
