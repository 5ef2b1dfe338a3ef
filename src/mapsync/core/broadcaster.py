"""Fan-out of accepted updates into participants' delivery queues."""

from __future__ import annotations

import logging
from collections.abc import Callable
from typing import TYPE_CHECKING

from mapsync.telemetry.base import Attr, SpanKind
from mapsync.telemetry.noop import NoopTelemetryProvider

if TYPE_CHECKING:
    from mapsync.models.session import Session
    from mapsync.models.update import MapUpdate
    from mapsync.telemetry.base import TelemetryProvider

logger = logging.getLogger("mapsync.broadcast")


class Broadcaster:
    """Enqueues an update for every participant of a session but one.

    Ghost participants are included so that a participant reconnecting
    within the ghost window finds everything it missed. Enqueueing never
    waits on a consumer: queues are bounded and trimmed in place, so one
    stalled participant cannot hold back the others or the originator.
    """

    def __init__(
        self,
        lookup: Callable[[str], Session | None],
        *,
        telemetry: TelemetryProvider | None = None,
        on_enqueue: Callable[[], None] | None = None,
    ) -> None:
        """Initialise the broadcaster.

        Args:
            lookup: Returns the live session for an id, or ``None``.
            telemetry: Span/metric sink. Defaults to the no-op provider.
            on_enqueue: Called after any queue received updates, used to
                wake the delivery worker.
        """
        self._lookup = lookup
        self._telemetry = telemetry or NoopTelemetryProvider()
        self._on_enqueue = on_enqueue

    def broadcast(
        self,
        session_id: str,
        update: MapUpdate,
        exclude_participant_id: str | None = None,
    ) -> int:
        """Enqueue *update* for everyone in the session except the excluded id.

        Returns:
            The number of queues the update was placed in.
        """
        session = self._lookup(session_id)
        if session is None:
            from mapsync.core.manager import SessionNotFoundError

            raise SessionNotFoundError(f"Session {session_id} not found")

        with self._telemetry.span(
            SpanKind.BROADCAST,
            f"broadcast {update.type.value}",
            session_id=session_id,
            attributes={Attr.UPDATE_TYPE: update.type.value},
        ) as span_id:
            recipients = 0
            coalesced = 0
            for participant in list(session.participants.values()):
                if participant.id == exclude_participant_id:
                    continue
                if participant.pending_updates.enqueue(update):
                    coalesced += 1
                recipients += 1
            self._telemetry.set_attribute(span_id, Attr.BROADCAST_RECIPIENTS, recipients)
            self._telemetry.set_attribute(span_id, Attr.BROADCAST_COALESCED, coalesced)

        if coalesced:
            self._telemetry.record_metric(
                "mapsync.updates.coalesced",
                float(coalesced),
                attributes={Attr.SESSION_ID: session_id},
            )
        logger.debug(
            "Broadcast %s from %s to %d participants in %s",
            update.type.value,
            update.user_id,
            recipients,
            session_id,
        )
        if recipients and self._on_enqueue is not None:
            self._on_enqueue()
        return recipients
