"""
Bounded telemetry event channel.

Events are queued on an asyncio.Queue of fixed capacity and drained by a
single background flusher task. A batch is handed to the sink when it
reaches the configured size or when the flush interval elapses, whichever
comes first. Producers never block: when the channel is full the event is
dropped and counted.
"""

import asyncio
import logging
import time
from datetime import datetime, timezone
from typing import Any, Awaitable, Callable, Dict, List, Optional

from intake_gateway.lib.config import EventChannelConfig
from intake_gateway.lib.metrics import MetricsCollector, get_metrics_collector


logger = logging.getLogger(__name__)

EventSink = Callable[[List[Dict[str, Any]]], Awaitable[None]]

_STOP = object()


async def logging_sink(batch: List[Dict[str, Any]]) -> None:
    """Default sink: write the batch to the gateway log."""
    logger.info(
        f"Flushed {len(batch)} telemetry events",
        extra={"event_count": len(batch), "event_types": sorted({e["event_type"] for e in batch})}
    )


class EventChannel:
    """Single-consumer bounded channel for telemetry events."""

    def __init__(
        self,
        config: Optional[EventChannelConfig] = None,
        sink: Optional[EventSink] = None,
        metrics_collector: Optional[MetricsCollector] = None
    ):
        self.config = config or EventChannelConfig()
        self.sink = sink or logging_sink
        self.metrics = metrics_collector or get_metrics_collector()

        self._queue: Optional[asyncio.Queue] = None
        self._flusher: Optional[asyncio.Task] = None
        self.dropped = 0
        self.flushed = 0

    @property
    def running(self) -> bool:
        return self._flusher is not None and not self._flusher.done()

    def pending(self) -> int:
        return self._queue.qsize() if self._queue is not None else 0

    def _get_queue(self) -> asyncio.Queue:
        # Created on first use so the queue belongs to the loop that uses it
        if self._queue is None:
            self._queue = asyncio.Queue(maxsize=self.config.capacity)
        return self._queue

    async def start(self) -> None:
        """Start the background flusher task."""
        if self.running:
            return
        self._flusher = asyncio.create_task(self._run(), name="event-channel-flusher")

    def emit(self, event_type: str, payload: Optional[Dict[str, Any]] = None) -> bool:
        """Queue an event without blocking. Returns False if it was dropped."""
        event = {
            "event_type": event_type,
            "timestamp": datetime.now(timezone.utc).isoformat(),
            "payload": payload or {}
        }
        try:
            self._get_queue().put_nowait(event)
            return True
        except asyncio.QueueFull:
            self.dropped += 1
            self.metrics.record_events_dropped()
            logger.debug(f"Event channel full, dropped {event_type}")
            return False

    async def stop(self) -> None:
        """Drain queued events, flush them and stop the flusher."""
        if not self.running:
            return
        await self._get_queue().put(_STOP)
        await self._flusher
        self._flusher = None

    async def _run(self) -> None:
        queue = self._get_queue()
        batch: List[Dict[str, Any]] = []
        deadline = time.monotonic() + self.config.flush_interval_seconds

        while True:
            remaining = deadline - time.monotonic()
            try:
                item = await asyncio.wait_for(queue.get(), timeout=max(remaining, 0))
            except asyncio.TimeoutError:
                if batch:
                    await self._flush(batch)
                    batch = []
                deadline = time.monotonic() + self.config.flush_interval_seconds
                continue

            if item is _STOP:
                if batch:
                    await self._flush(batch)
                return

            batch.append(item)
            if len(batch) >= self.config.batch_size:
                await self._flush(batch)
                batch = []
                deadline = time.monotonic() + self.config.flush_interval_seconds

    async def _flush(self, batch: List[Dict[str, Any]]) -> None:
        try:
            await self.sink(list(batch))
            self.flushed += len(batch)
        except Exception as e:
            logger.error(f"Event sink failed for batch of {len(batch)}: {e}", exc_info=True)
