"""Batches telemetry events and ships them to the telemetry service."""

from __future__ import annotations

from typing import List, Optional

from loguru import logger

from clients.services import TelemetryService
from config.settings import settings
from models.events import TelemetryEvent
from workflow.scheduler import Scheduler, Ticker

DROPPED_EVENT_TYPE = "telemetry_events_dropped"


class TelemetryBuffer:
    """
    In-memory ordered queue of TelemetryEvent.

    * ``log_event`` appends and flushes once ``batch_size`` events are queued.
    * A ticker flushes every ``flush_interval`` seconds regardless of size.
    * A failed flush puts its batch back at the front of the live queue, in
      original order, for the next cycle.
    * The queue holds at most ``max_buffer`` events.  Overflow drops the
      oldest events; the number dropped is reported with the next batch that
      gets through.

    Send failures never reach callers.
    """

    def __init__(
        self,
        service: TelemetryService,
        scheduler: Optional[Scheduler] = None,
        batch_size: Optional[int] = None,
        flush_interval: Optional[float] = None,
        max_buffer: Optional[int] = None,
    ) -> None:
        self._service = service
        self.batch_size = settings.telemetry_batch_size if batch_size is None else batch_size
        self.max_buffer = settings.telemetry_max_buffer if max_buffer is None else max_buffer
        if flush_interval is None:
            flush_interval = settings.telemetry_flush_interval_seconds
        if self.batch_size < 1 or self.max_buffer < 1 or flush_interval <= 0:
            raise ValueError(
                f"Invalid telemetry buffer limits: batch_size={self.batch_size} "
                f"max_buffer={self.max_buffer} flush_interval={flush_interval}"
            )
        self._buffer: List[TelemetryEvent] = []
        self.dropped_events = 0
        self._ticker: Optional[Ticker] = None
        if scheduler is not None:
            self._ticker = scheduler.every("telemetry-flush", flush_interval, self.flush)

    def __len__(self) -> int:
        return len(self._buffer)

    @property
    def pending(self) -> List[TelemetryEvent]:
        return list(self._buffer)

    def _enforce_capacity(self) -> None:
        overflow = len(self._buffer) - self.max_buffer
        if overflow > 0:
            del self._buffer[:overflow]
            self.dropped_events += overflow
            logger.warning(
                f"Telemetry buffer full ({self.max_buffer}); dropped {overflow} oldest events "
                f"({self.dropped_events} unreported)"
            )

    async def log_event(self, event: TelemetryEvent) -> None:
        self._buffer.append(event)
        self._enforce_capacity()
        logger.debug(f"Telemetry event {event.event_type} payment={event.payment_id} portal={event.portal_id}")
        if len(self._buffer) >= self.batch_size:
            await self.flush()

    async def flush(self) -> None:
        if not self._buffer:
            return

        events, self._buffer = self._buffer, []
        batch = list(events)
        reported_drops = self.dropped_events
        if reported_drops:
            batch.append(
                TelemetryEvent(event_type=DROPPED_EVENT_TYPE, metadata={"droppedEvents": reported_drops})
            )

        try:
            await self._service.send_events(batch)
        except Exception as exc:
            logger.error(f"Failed to flush {len(events)} telemetry events: {exc}")
            self._buffer = events + self._buffer
            self._enforce_capacity()
            return

        self.dropped_events -= reported_drops
        logger.debug(f"Flushed {len(batch)} telemetry events")

    async def destroy(self) -> None:
        """Stop the periodic flush and make one last best-effort flush."""
        if self._ticker is not None:
            await self._ticker.stop()
        await self.flush()
