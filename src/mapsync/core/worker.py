"""Transport-agnostic delivery loop draining participant queues."""

from __future__ import annotations

import asyncio
import contextlib
import logging
import time
from collections.abc import Callable
from typing import TYPE_CHECKING, Protocol

from mapsync.core.circuit_breaker import CircuitBreaker
from mapsync.telemetry.base import Attr, SpanKind
from mapsync.telemetry.noop import NoopTelemetryProvider
from mapsync.transport.base import OutboundDelivery

if TYPE_CHECKING:
    from mapsync.models.participant import Participant
    from mapsync.telemetry.base import TelemetryProvider
    from mapsync.transport.base import DeliveryTransport

logger = logging.getLogger("mapsync.delivery")


class DeliverySource(Protocol):
    def pending_deliveries(self) -> list[tuple[str, Participant]]: ...


class DeliveryWorker:
    """Background task that hands queued updates to the transport.

    The worker sleeps until woken by a broadcast or a reconnect, then
    drains the queue of every active participant with pending updates. A
    failed send puts the undelivered remainder back at the head of that
    participant's queue and counts against a per-participant circuit
    breaker; while the breaker is open that participant is skipped and the
    others are unaffected. While anything is left queued the worker also
    wakes every *retry_interval* seconds without being woken.
    """

    def __init__(
        self,
        source: DeliverySource,
        transport: DeliveryTransport,
        *,
        failure_threshold: int = 5,
        recovery_timeout: float = 30.0,
        retry_interval: float = 1.0,
        telemetry: TelemetryProvider | None = None,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        self._source = source
        self._transport = transport
        self._failure_threshold = failure_threshold
        self._recovery_timeout = recovery_timeout
        self._retry_interval = retry_interval
        self._telemetry = telemetry or NoopTelemetryProvider()
        self._clock = clock
        self._breakers: dict[tuple[str, str], CircuitBreaker] = {}
        self._event = asyncio.Event()
        self._task: asyncio.Task[None] | None = None
        self._stopped = False
        self._backlog = False

    @property
    def running(self) -> bool:
        return self._task is not None and not self._task.done()

    def wake(self) -> None:
        self._event.set()

    def breaker(self, session_id: str, participant_id: str) -> CircuitBreaker:
        key = (session_id, participant_id)
        breaker = self._breakers.get(key)
        if breaker is None:
            breaker = CircuitBreaker(
                failure_threshold=self._failure_threshold,
                recovery_timeout=self._recovery_timeout,
                clock=self._clock,
            )
            self._breakers[key] = breaker
        return breaker

    def start(self) -> None:
        """Start the background delivery task."""
        if self.running:
            return
        self._stopped = False
        self._task = asyncio.create_task(self._run(), name="mapsync:delivery")

    async def stop(self) -> None:
        """Stop the background delivery task."""
        self._stopped = True
        self._event.set()
        if self._task is not None:
            self._task.cancel()
            with contextlib.suppress(asyncio.CancelledError):
                await self._task
            self._task = None

    async def flush(self) -> int:
        """Deliver everything currently pending. Returns the number sent."""
        pending = self._source.pending_deliveries()
        live_keys = {(session_id, p.id) for session_id, p in pending}
        for key in [k for k, b in self._breakers.items() if k not in live_keys and b.is_closed]:
            del self._breakers[key]

        sent = 0
        for session_id, participant in pending:
            sent += await self._deliver(session_id, participant)
        return sent

    async def _deliver(self, session_id: str, participant: Participant) -> int:
        breaker = self.breaker(session_id, participant.id)
        if not breaker.allow_request():
            return 0

        queue = participant.pending_updates
        updates = queue.drain()
        sent = 0
        with self._telemetry.span(
            SpanKind.DELIVERY,
            f"deliver {participant.id}",
            session_id=session_id,
            attributes={Attr.PARTICIPANT_ID: participant.id},
        ) as span_id:
            for index, update in enumerate(updates):
                try:
                    await self._transport.send(
                        OutboundDelivery(
                            session_id=session_id,
                            participant_id=participant.id,
                            update=update,
                        )
                    )
                except Exception as exc:
                    breaker.record_failure()
                    queue.requeue(updates[index:])
                    self._telemetry.set_attribute(span_id, Attr.DELIVERY_ERROR, str(exc))
                    self._telemetry.record_metric(
                        "mapsync.delivery.failures",
                        1.0,
                        attributes={
                            Attr.SESSION_ID: session_id,
                            Attr.PARTICIPANT_ID: participant.id,
                        },
                    )
                    logger.warning(
                        "Delivery to %s in %s failed, %d updates kept queued: %s",
                        participant.id,
                        session_id,
                        len(updates) - index,
                        exc,
                    )
                    break
                sent += 1
            else:
                if updates:
                    breaker.record_success()
            self._telemetry.set_attribute(span_id, Attr.DELIVERY_COUNT, sent)
        return sent

    async def _run(self) -> None:
        while not self._stopped:
            if self._backlog:
                with contextlib.suppress(TimeoutError):
                    await asyncio.wait_for(self._event.wait(), self._retry_interval)
            else:
                await self._event.wait()
            self._event.clear()
            if self._stopped:
                break
            try:
                await self.flush()
            except Exception:
                logger.exception("Delivery sweep failed")
            self._backlog = bool(self._source.pending_deliveries())
