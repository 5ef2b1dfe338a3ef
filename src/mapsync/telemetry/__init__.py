"""Telemetry provider system for mapsync."""

from mapsync.telemetry.base import Attr, Span, SpanKind, TelemetryProvider
from mapsync.telemetry.mock import MockTelemetryProvider
from mapsync.telemetry.noop import NoopTelemetryProvider

__all__ = [
    "Attr",
    "MockTelemetryProvider",
    "NoopTelemetryProvider",
    "Span",
    "SpanKind",
    "TelemetryProvider",
]
