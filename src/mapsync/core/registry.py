"""Participant registry scoped to one session."""

from __future__ import annotations

from collections.abc import Callable, Iterator
from datetime import UTC, datetime
from typing import Any

from mapsync.core.delivery import DeliveryQueue
from mapsync.models.enums import ParticipantRole
from mapsync.models.participant import Cursor, MediaState, Participant


def _utcnow() -> datetime:
    return datetime.now(UTC)


class ParticipantRegistry:
    """Pure state container for the participants of one session.

    Operates on the session's own ``participants`` dict. Every mutation
    swaps in a copy of the participant with only the named fields changed,
    so a cursor update never touches media state and vice versa. The
    copy shares the original's delivery queue.
    """

    def __init__(
        self,
        participants: dict[str, Participant],
        queue_factory: Callable[[], DeliveryQueue] = DeliveryQueue,
        now: Callable[[], datetime] = _utcnow,
    ) -> None:
        self._participants = participants
        self._queue_factory = queue_factory
        self._now = now

    def __contains__(self, participant_id: object) -> bool:
        return participant_id in self._participants

    def __len__(self) -> int:
        return len(self._participants)

    def __iter__(self) -> Iterator[Participant]:
        return iter(list(self._participants.values()))

    def get(self, participant_id: str) -> Participant | None:
        return self._participants.get(participant_id)

    def active(self) -> list[Participant]:
        return [p for p in self._participants.values() if p.is_active]

    def active_count(self) -> int:
        return sum(1 for p in self._participants.values() if p.is_active)

    def ghosts(self) -> list[Participant]:
        return [p for p in self._participants.values() if p.is_ghost]

    def add(
        self,
        participant_id: str,
        *,
        display_name: str | None = None,
        role: ParticipantRole = ParticipantRole.OBSERVER,
        is_local: bool = False,
    ) -> Participant:
        """Insert a new active participant with an empty delivery queue."""
        if participant_id in self._participants:
            raise ValueError(f"Participant {participant_id} already registered")
        participant = Participant(
            id=participant_id,
            display_name=display_name,
            role=role,
            is_local=is_local,
            joined_at=self._now(),
            pending_updates=self._queue_factory(),
        )
        self._participants[participant_id] = participant
        return participant

    def reactivate(self, participant_id: str, display_name: str | None = None) -> Participant:
        """Bring a known (possibly ghost) participant back, keeping its queue."""
        fields: dict[str, Any] = {"is_active": True, "joined_at": self._now(), "left_at": None}
        if display_name is not None:
            fields["display_name"] = display_name
        return self._replace(participant_id, **fields)

    def mark_inactive(self, participant_id: str) -> Participant:
        """Turn a participant into a ghost: inactive, ``left_at`` stamped."""
        return self._replace(participant_id, is_active=False, left_at=self._now())

    def update_cursor(self, participant_id: str, cursor: Cursor | None) -> Participant:
        return self._replace(participant_id, cursor=cursor, last_activity_at=self._now())

    def update_media_state(self, participant_id: str, media_state: MediaState) -> Participant:
        return self._replace(
            participant_id, media_state=media_state, last_activity_at=self._now()
        )

    def purge_ghosts(self, cutoff: datetime) -> list[Participant]:
        """Release ghosts that left at or before *cutoff*.

        Their delivery queues are cleared so nothing keeps them alive.
        """
        purged = [
            p
            for p in self._participants.values()
            if p.is_ghost and p.left_at is not None and p.left_at <= cutoff
        ]
        for participant in purged:
            participant.pending_updates.clear()
            del self._participants[participant.id]
        return purged

    def release_all(self) -> int:
        """Drop every participant and queued update. Returns queued count dropped."""
        dropped = sum(p.pending_updates.clear() for p in self._participants.values())
        self._participants.clear()
        return dropped

    def _replace(self, participant_id: str, **fields: Any) -> Participant:
        current = self._participants.get(participant_id)
        if current is None:
            from mapsync.core.manager import ParticipantNotFoundError

            raise ParticipantNotFoundError(f"Participant {participant_id} not found")
        updated = current.model_copy(update=fields)
        self._participants[participant_id] = updated
        return updated
