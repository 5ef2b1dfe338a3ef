"""Tests for the in-memory delivery transport."""

from __future__ import annotations

import pytest

from mapsync.transport.base import OutboundDelivery, TransportError
from mapsync.transport.memory import InMemoryTransport
from tests.conftest import make_update


class TestInMemoryTransport:
    async def test_records_deliveries(self) -> None:
        transport = InMemoryTransport()
        delivery = OutboundDelivery(session_id="s1", participant_id="b", update=make_update())
        await transport.send(delivery)
        assert transport.for_participant("b") == [delivery]

    async def test_failing_participant(self) -> None:
        transport = InMemoryTransport()
        transport.failing.add("b")
        with pytest.raises(TransportError):
            await transport.send(
                OutboundDelivery(session_id="s1", participant_id="b", update=make_update())
            )
        assert transport.sent == []

    async def test_closed_transport_rejects(self) -> None:
        transport = InMemoryTransport()
        await transport.close()
        with pytest.raises(TransportError):
            await transport.send(
                OutboundDelivery(session_id="s1", participant_id="b", update=make_update())
            )

    def test_delivery_envelope(self) -> None:
        delivery = OutboundDelivery(session_id="s1", participant_id="b", update=make_update())
        envelope = delivery.to_dict()
        assert envelope["participantId"] == "b"
        assert envelope["sessionId"] == "s1"
        assert envelope["data"]["featureId"] == "f1"
