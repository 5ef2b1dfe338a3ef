"""Shared tactical map session.

Demonstrates a two-operator map session end to end. Shows:
- Starting a session and joining through the control actions
- Broadcasting an annotation and delivering it over a transport
- Cursor frames coalescing inside the delivery queue
- A stale edit being settled by the conflict resolver
- Ghost participants and idle sessions released by the reaper

Run with:
    uv run python examples/tactical_map_session.py
"""

from __future__ import annotations

import asyncio
import logging
import time

from mapsync import (
    CollaborationController,
    EngineConfig,
    InMemoryFeatureStore,
    InMemoryTransport,
    MapUpdate,
    SessionManager,
    UpdateType,
)

logging.basicConfig(level=logging.INFO, format="%(name)s: %(message)s")


def _update(session_id: str, user_id: str, update_type: UpdateType, **data: object) -> MapUpdate:
    return MapUpdate(
        type=update_type,
        data=dict(data),
        user_id=user_id,
        timestamp=time.time() * 1000,
        session_id=session_id,
    )


async def main() -> None:
    transport = InMemoryTransport()
    store = InMemoryFeatureStore()
    manager = SessionManager(
        EngineConfig(ghost_timeout_seconds=0.2, session_retention_seconds=0.2),
        persistence=store,
        transport=transport,
    )
    controller = CollaborationController(manager)

    # =====================================================
    # Part 1: Start and join
    # =====================================================
    started = await controller.handle_action(
        "start_collaboration",
        {"name": "Operation Lighthouse", "createdBy": "alpha", "creatorName": "Alpha"},
    )
    session_id = started["sessionId"]
    await controller.handle_action(
        "join_collaboration",
        {"sessionId": session_id, "user": {"id": "bravo", "name": "Bravo", "role": "operator"}},
    )
    print(f"Session {session_id}: {controller.get_info(session_id)['activeParticipants']} active")

    # =====================================================
    # Part 2: Annotations and cursors
    # =====================================================
    await manager.submit_update(
        _update(
            session_id,
            "bravo",
            UpdateType.ANNOTATION_CREATED,
            featureId="rally-1",
            geometry={"type": "Point", "coordinates": [-73.57, 45.50]},
            properties={"label": "Rally point"},
        )
    )
    for x in range(5):
        await manager.update_cursor(session_id, "bravo", {"x": x * 10, "y": 40})

    sent = await manager.deliver_pending()
    print(f"\nDelivered {sent} updates:")
    for delivery in transport.sent:
        print(f"  -> {delivery.participant_id}: {delivery.update.type.value}")

    # =====================================================
    # Part 3: Conflict
    # =====================================================
    stale = _update(
        session_id,
        "alpha",
        UpdateType.ANNOTATION_UPDATED,
        featureId="rally-1",
        properties={"label": "Rally point (moved)", "priority": "high"},
    )
    await asyncio.sleep(0.01)
    await manager.submit_update(
        _update(
            session_id,
            "bravo",
            UpdateType.ANNOTATION_UPDATED,
            featureId="rally-1",
            properties={"label": "Rally point B"},
        )
    )
    result = await manager.submit_update(stale)
    print(f"\nStale edit outcome: {result.outcome.value}")
    if result.resolution is not None:
        print(f"  Resolved properties: {result.resolution.data['properties']}")

    # =====================================================
    # Part 4: Leave and reap
    # =====================================================
    await controller.handle_action(
        "leave_collaboration", {"sessionId": session_id, "userId": "bravo"}
    )
    await controller.handle_action(
        "leave_collaboration", {"sessionId": session_id, "userId": "alpha"}
    )
    await asyncio.sleep(0.25)
    reaped = await manager.reap()
    print(f"\nReaped sessions: {reaped}")

    await manager.close()
    print(f"Persisted features: {sorted(store.features)}")


if __name__ == "__main__":
    asyncio.run(main())
