"""In-memory transport recording deliveries."""

from __future__ import annotations

from mapsync.transport.base import DeliveryTransport, OutboundDelivery, TransportError


class InMemoryTransport(DeliveryTransport):
    """Records every delivery in order; can be told to fail per participant.

    Suitable for tests and single-process demos. Real deployments plug in
    a transport backed by their media/data channel.
    """

    def __init__(self) -> None:
        self.sent: list[OutboundDelivery] = []
        self.failing: set[str] = set()
        self.closed = False

    async def send(self, delivery: OutboundDelivery) -> None:
        if self.closed:
            raise TransportError("Transport is closed")
        if delivery.participant_id in self.failing:
            raise TransportError(f"Participant {delivery.participant_id} unreachable")
        self.sent.append(delivery)

    def for_participant(self, participant_id: str) -> list[OutboundDelivery]:
        return [d for d in self.sent if d.participant_id == participant_id]

    async def close(self) -> None:
        self.closed = True
