"""Shared test fixtures and helpers."""

from __future__ import annotations

import asyncio
from collections.abc import Callable, Coroutine
from datetime import UTC, datetime, timedelta
from typing import Any

import pytest

from mapsync.core.manager import SessionManager
from mapsync.models.config import EngineConfig
from mapsync.models.enums import UpdateType
from mapsync.models.update import MapUpdate
from mapsync.persistence.memory import InMemoryFeatureStore
from mapsync.telemetry.mock import MockTelemetryProvider
from mapsync.transport.memory import InMemoryTransport


class FakeClock:
    """Manually advanced wall and monotonic clock."""

    def __init__(self, start: datetime | None = None) -> None:
        self._wall = start or datetime(2024, 5, 1, 12, 0, tzinfo=UTC)
        self._mono = 1000.0

    def now(self) -> datetime:
        return self._wall

    def monotonic(self) -> float:
        return self._mono

    def advance(self, seconds: float) -> None:
        self._wall += timedelta(seconds=seconds)
        self._mono += seconds


@pytest.fixture
def advance() -> Callable[[int], Coroutine[Any, Any, None]]:
    """Yield control to let pending tasks run without real delay::

    await advance()       # 5 yields (default)
    await advance(10)     # 10 yields for heavier workloads
    """

    async def _advance(n: int = 5) -> None:
        for _ in range(n):
            await asyncio.sleep(0)

    return _advance


@pytest.fixture
def clock() -> FakeClock:
    return FakeClock()


@pytest.fixture
def store() -> InMemoryFeatureStore:
    return InMemoryFeatureStore()


@pytest.fixture
def transport() -> InMemoryTransport:
    return InMemoryTransport()


@pytest.fixture
def telemetry() -> MockTelemetryProvider:
    return MockTelemetryProvider()


@pytest.fixture
def manager(
    clock: FakeClock, store: InMemoryFeatureStore, telemetry: MockTelemetryProvider
) -> SessionManager:
    return SessionManager(
        EngineConfig(),
        persistence=store,
        telemetry=telemetry,
        clock=clock.now,
        monotonic=clock.monotonic,
    )


def make_update(
    update_type: UpdateType = UpdateType.ANNOTATION_CREATED,
    *,
    session_id: str = "s1",
    user_id: str = "u1",
    timestamp: float = 10.0,
    feature_id: str | None = "f1",
    **data: Any,
) -> MapUpdate:
    payload: dict[str, Any] = dict(data)
    if update_type.is_mutation and feature_id is not None:
        payload.setdefault("featureId", feature_id)
    return MapUpdate(
        type=update_type,
        data=payload,
        user_id=user_id,
        timestamp=timestamp,
        session_id=session_id,
    )


def make_cursor(
    user_id: str = "u1", *, x: float = 0.0, y: float = 0.0, session_id: str = "s1"
) -> MapUpdate:
    return MapUpdate(
        type=UpdateType.CURSOR_MOVED,
        data={"userId": user_id, "cursor": {"x": x, "y": y}},
        user_id=user_id,
        timestamp=0.0,
        session_id=session_id,
    )
