"""Abstract base class and types for delivery transports."""

from __future__ import annotations

from abc import ABC, abstractmethod
from dataclasses import dataclass
from typing import Any

from mapsync.models.update import MapUpdate


class TransportError(Exception):
    """A transport could not deliver an update."""


@dataclass(frozen=True, slots=True)
class OutboundDelivery:
    """One drained update addressed to one participant."""

    session_id: str
    participant_id: str
    update: MapUpdate

    def to_dict(self) -> dict[str, Any]:
        """The wire envelope tagged with its destination."""
        return {**self.update.to_envelope(), "participantId": self.participant_id}


class DeliveryTransport(ABC):
    """Carries drained updates to participants (e.g. a WebRTC data channel).

    Implementations report a failed delivery by raising. The delivery
    worker logs the failure, keeps the update queued and backs off from
    that participant; the failure never reaches the session.
    """

    @abstractmethod
    async def send(self, delivery: OutboundDelivery) -> None:
        """Deliver one update to its participant."""
        ...

    async def close(self) -> None:
        """Clean up resources.

        Override this method in subclasses that need cleanup.
        The default implementation does nothing.
        """
        return None
