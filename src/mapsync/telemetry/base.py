"""Telemetry provider ABC, Span dataclass, SpanKind enum, and Attr constants."""

from __future__ import annotations

import uuid
from abc import ABC, abstractmethod
from collections.abc import Generator
from contextlib import contextmanager
from dataclasses import dataclass, field
from datetime import UTC, datetime
from enum import StrEnum
from typing import Any


class SpanKind(StrEnum):
    """Span classifications for telemetry."""

    SESSION_CREATE = "session.create"
    SESSION_JOIN = "session.join"
    SESSION_LEAVE = "session.leave"
    SESSION_REAP = "session.reap"
    UPDATE_SUBMIT = "update.submit"
    BROADCAST = "engine.broadcast"
    CONFLICT_RESOLVE = "engine.conflict_resolve"
    DELIVERY = "engine.delivery"
    PERSIST = "engine.persist"
    CUSTOM = "custom"


class Attr:
    """Well-known attribute key constants for telemetry spans and metrics."""

    # Common
    SESSION_ID = "session_id"
    PARTICIPANT_ID = "participant_id"
    FEATURE_ID = "feature_id"

    # Updates
    UPDATE_TYPE = "update.type"
    UPDATE_OUTCOME = "update.outcome"

    # Broadcast / delivery
    BROADCAST_RECIPIENTS = "broadcast.recipients"
    BROADCAST_COALESCED = "broadcast.coalesced"
    DELIVERY_COUNT = "delivery.count"
    DELIVERY_ERROR = "delivery.error"

    # Conflicts
    RESOLUTION_METHOD = "conflict.method"

    # Reaper
    REAP_GHOSTS = "reap.ghosts"
    REAP_SESSIONS = "reap.sessions"


@dataclass
class Span:
    """Represents a telemetry span."""

    id: str = field(default_factory=lambda: uuid.uuid4().hex[:16])
    kind: SpanKind = SpanKind.CUSTOM
    name: str = ""
    parent_id: str | None = None
    attributes: dict[str, Any] = field(default_factory=dict)
    start_time: datetime = field(default_factory=lambda: datetime.now(UTC))
    end_time: datetime | None = None
    status: str = "ok"
    error_message: str | None = None
    session_id: str | None = None

    @property
    def duration_ms(self) -> float | None:
        """Duration in milliseconds, or None if not yet ended."""
        if self.end_time is None:
            return None
        delta = self.end_time - self.start_time
        return delta.total_seconds() * 1000


class TelemetryProvider(ABC):
    """Abstract base class for telemetry providers.

    Providers collect span and metric data from engine operations.
    The default ``NoopTelemetryProvider`` has zero overhead.
    """

    @property
    @abstractmethod
    def name(self) -> str:
        """Provider name for identification."""
        ...

    @abstractmethod
    def start_span(
        self,
        kind: SpanKind,
        name: str,
        *,
        parent_id: str | None = None,
        attributes: dict[str, Any] | None = None,
        session_id: str | None = None,
    ) -> str:
        """Start a new telemetry span.

        Returns:
            A unique span ID string.
        """
        ...

    @abstractmethod
    def end_span(
        self,
        span_id: str,
        *,
        status: str = "ok",
        error_message: str | None = None,
        attributes: dict[str, Any] | None = None,
    ) -> None:
        """End a previously started span."""
        ...

    @abstractmethod
    def set_attribute(self, span_id: str, key: str, value: Any) -> None:
        """Set an attribute on an active span."""
        ...

    @abstractmethod
    def record_metric(
        self,
        name: str,
        value: float,
        *,
        unit: str = "",
        attributes: dict[str, Any] | None = None,
    ) -> None:
        """Record a metric value."""
        ...

    def close(self) -> None:  # noqa: B027
        """Close the provider and flush any pending data."""

    @contextmanager
    def span(
        self,
        kind: SpanKind,
        name: str,
        **kwargs: Any,
    ) -> Generator[str, None, None]:
        """Context manager for span lifecycle.

        Yields the span ID. Automatically ends the span on exit,
        recording error status if an exception occurs.
        """
        span_id = self.start_span(kind, name, **kwargs)
        try:
            yield span_id
            self.end_span(span_id)
        except Exception as exc:
            self.end_span(span_id, status="error", error_message=str(exc))
            raise
