"""Session model and the requests that create and join sessions."""

from __future__ import annotations

from datetime import UTC, datetime
from typing import Any

from pydantic import Field

from mapsync.models.base import CamelModel
from mapsync.models.enums import ParticipantRole, SessionStatus
from mapsync.models.participant import Participant

DEFAULT_SESSION_NAME = "Tactical Collaboration"


class SessionSettings(CamelModel):
    """Per-session collaboration switches."""

    allow_annotations: bool = True
    allow_editing: bool = True
    require_approval: bool = False
    max_participants: int = Field(default=50, ge=1)


class Session(CamelModel):
    """A collaboration room around one shared map."""

    id: str
    name: str = DEFAULT_SESSION_NAME
    created_by: str
    created_at: datetime = Field(default_factory=lambda: datetime.now(UTC))
    status: SessionStatus = SessionStatus.CREATED
    idle_since: datetime | None = None
    settings: SessionSettings = Field(default_factory=SessionSettings)
    participants: dict[str, Participant] = Field(default_factory=dict)

    @property
    def active_participants(self) -> list[Participant]:
        return [p for p in self.participants.values() if p.is_active]

    def to_info(self) -> dict[str, Any]:
        """Return the JSON view served to presence queries."""
        info = self.model_dump(mode="json", by_alias=True)
        info["activeParticipants"] = len(self.active_participants)
        info["totalParticipants"] = len(self.participants)
        return info


class SessionConfig(CamelModel):
    """Parameters accepted by ``SessionManager.create_session``.

    ``max_participants`` is range-checked by the manager so that a bad
    value surfaces as ``InvalidConfigError`` rather than at construction.
    """

    name: str = DEFAULT_SESSION_NAME
    created_by: str = Field(min_length=1)
    creator_name: str | None = None
    creator_role: ParticipantRole = ParticipantRole.ADMIN
    allow_annotations: bool = True
    allow_editing: bool = True
    require_approval: bool = False
    max_participants: int | None = None


class UserInfo(CamelModel):
    """Identity of a user joining a session."""

    id: str = Field(min_length=1)
    name: str | None = None
    role: ParticipantRole = ParticipantRole.OBSERVER
