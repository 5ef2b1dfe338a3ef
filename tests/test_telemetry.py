"""Tests for telemetry providers."""

from __future__ import annotations

import pytest

from mapsync.telemetry.base import Span, SpanKind
from mapsync.telemetry.mock import MockTelemetryProvider
from mapsync.telemetry.noop import NoopTelemetryProvider


class TestNoopProvider:
    def test_everything_is_a_noop(self) -> None:
        provider = NoopTelemetryProvider()
        assert provider.name == "noop"
        span_id = provider.start_span(SpanKind.BROADCAST, "x")
        provider.set_attribute(span_id, "k", 1)
        provider.end_span(span_id)
        provider.record_metric("m", 1.0)
        provider.close()


class TestMockProvider:
    def test_records_spans(self) -> None:
        provider = MockTelemetryProvider()
        span_id = provider.start_span(
            SpanKind.SESSION_JOIN, "join", session_id="s1", attributes={"a": 1}
        )
        provider.set_attribute(span_id, "b", 2)
        provider.end_span(span_id, attributes={"c": 3})
        [span] = provider.get_spans(SpanKind.SESSION_JOIN)
        assert span.session_id == "s1"
        assert span.attributes == {"a": 1, "b": 2, "c": 3}
        assert span.duration_ms is not None

    def test_span_context_manager_records_error(self) -> None:
        provider = MockTelemetryProvider()
        with pytest.raises(RuntimeError), provider.span(SpanKind.PERSIST, "persist"):
            raise RuntimeError("disk full")
        [span] = provider.spans
        assert span.status == "error"
        assert span.error_message == "disk full"

    def test_metrics_and_reset(self) -> None:
        provider = MockTelemetryProvider()
        provider.record_metric("mapsync.delivery.failures", 1.0, attributes={"p": "b"})
        assert provider.get_metrics("mapsync.delivery.failures")[0]["attributes"] == {"p": "b"}
        provider.reset()
        assert provider.metrics == []

    def test_end_unknown_span_ignored(self) -> None:
        provider = MockTelemetryProvider()
        provider.end_span("missing")
        assert provider.spans == []


class TestSpan:
    def test_open_span_has_no_duration(self) -> None:
        assert Span().duration_ms is None
