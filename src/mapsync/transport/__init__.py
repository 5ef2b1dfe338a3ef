"""Outbound delivery transports."""

from mapsync.transport.base import DeliveryTransport, OutboundDelivery, TransportError
from mapsync.transport.memory import InMemoryTransport

__all__ = [
    "DeliveryTransport",
    "InMemoryTransport",
    "OutboundDelivery",
    "TransportError",
]
