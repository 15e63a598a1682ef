"""
Batch queue consumer.

Messages are handled concurrently, highest priority first. Each one is
acked on success, returned with retry() while deliveries remain, and
dead-lettered (acked with an error recorded) once they are exhausted.
Batch and aggregate metrics are written after every batch whatever the
individual outcomes were.
"""

import asyncio
import logging
from datetime import datetime, timezone
from typing import Awaitable, Callable, List, Optional

from opentelemetry import trace

from intake_gateway.lib.config import BatchConfig
from intake_gateway.lib.errors import CorruptInput, DeliveryFailure, IntakeError
from intake_gateway.lib.logging_config import AuditLogger, get_audit_logger
from intake_gateway.lib.metrics import MetricsCollector, get_metrics_collector
from intake_gateway.lib.observability import get_tracer
from intake_gateway.models.batch import AggregateMetrics, BatchMetrics, ItemError, ItemResult, QueueItem
from intake_gateway.models.classification import priority_rank
from intake_gateway.models.message import Message
from intake_gateway.services.interfaces.queue import IQueueMessage
from intake_gateway.services.interfaces.storage import IStorageAdapter


logger = logging.getLogger(__name__)

ItemHandler = Callable[[QueueItem], Awaitable[ItemResult]]

AGGREGATE_KEY = "batch-metrics:aggregate"


def batch_key(batch_id: str) -> str:
    return f"batch-metrics:{batch_id}"


def processing_order(messages: List[IQueueMessage]) -> List[IQueueMessage]:
    """Highest priority first, oldest first within a priority."""
    return sorted(messages, key=lambda m: (-priority_rank(m.body.priority), m.body.timestamp))


class BatchConsumer:
    """Processes queue batches through an item handler."""

    def __init__(
        self,
        handler: ItemHandler,
        storage: IStorageAdapter,
        config: Optional[BatchConfig] = None,
        metrics_collector: Optional[MetricsCollector] = None,
        audit_logger: Optional[AuditLogger] = None
    ):
        self.handler = handler
        self.storage = storage
        self.config = config or BatchConfig()
        self.metrics = metrics_collector or get_metrics_collector()
        self.audit = audit_logger or get_audit_logger()
        self.tracer = get_tracer()
        self._aggregate_lock = asyncio.Lock()

    async def consume(self, messages: List[IQueueMessage]) -> BatchMetrics:
        """Process one batch and return its metrics."""
        batch = BatchMetrics(size=len(messages))
        semaphore = asyncio.Semaphore(self.config.concurrency)

        with self.tracer.start_as_current_span("batch.consume") as span:
            span.set_attribute("batch.id", batch.batch_id)
            span.set_attribute("batch.size", len(messages))

            async def run(message: IQueueMessage) -> None:
                async with semaphore:
                    await self._handle(message, batch)

            try:
                await asyncio.gather(*(run(m) for m in processing_order(messages)))
            finally:
                batch.finished_at = datetime.now(timezone.utc)
                await self._store_metrics(batch)

            span.set_attribute("batch.processed", batch.processed)
            span.set_attribute("batch.failed", batch.failed)
            if batch.failed:
                span.set_status(trace.Status(trace.StatusCode.ERROR, f"{batch.failed} message(s) failed"))

        self.audit.log_batch_event(
            batch_size=batch.size,
            processed=batch.processed,
            failed=batch.failed,
            dead_lettered=batch.dead_lettered,
            total_cost=batch.total_cost
        )
        return batch

    async def _handle(self, message: IQueueMessage, batch: BatchMetrics) -> None:
        item = message.body
        try:
            result = await self.handler(item)
        except asyncio.CancelledError:
            raise
        except Exception as e:
            await self._fail(message, batch, e)
            return

        await self._settle(message.ack(), message)
        batch.processed += 1
        batch.total_cost += result.cost
        self.metrics.record_batch_message("processed")

    async def _fail(self, message: IQueueMessage, batch: BatchMetrics, error: Exception) -> None:
        text = error.message if isinstance(error, IntakeError) else f"{type(error).__name__}: {error}"
        retryable = not isinstance(error, CorruptInput)
        batch.failed += 1

        if retryable and message.attempts < self.config.max_attempts:
            await self._settle(message.retry(), message)
            batch.retried += 1
            self.metrics.record_batch_message("retried")
            logger.warning(f"Message {message.id} failed on attempt {message.attempts}, retrying: {text}")
            dead = False
        else:
            await self._settle(message.ack(), message)
            batch.dead_lettered += 1
            self.metrics.record_batch_message("dead_lettered")
            logger.error(
                f"Message {message.id} dead-lettered after {message.attempts} attempt(s): {text}",
                extra={"message_id": message.id, "entity_id": message.body.entity_id}
            )
            dead = True

        batch.errors.append(ItemError(
            message_id=message.id,
            entity_id=message.body.entity_id,
            attempts=message.attempts,
            error=text,
            dead_lettered=dead
        ))

    async def _settle(self, action: Awaitable[None], message: IQueueMessage) -> None:
        try:
            await action
        except Exception as e:
            logger.error(f"Could not settle queue message {message.id}: {e}")

    async def _store_metrics(self, batch: BatchMetrics) -> None:
        ttl = self.config.metrics_ttl_seconds
        try:
            await self.storage.put(batch_key(batch.batch_id), batch.model_dump_json().encode("utf-8"), ttl_seconds=ttl)
        except IntakeError as e:
            logger.error(f"Could not store metrics for batch {batch.batch_id}: {e.message}")

        async with self._aggregate_lock:
            try:
                aggregate = await self.load_aggregate()
                aggregate.absorb(batch)
                await self.storage.put(AGGREGATE_KEY, aggregate.model_dump_json().encode("utf-8"))
            except IntakeError as e:
                logger.error(f"Could not update aggregate batch metrics: {e.message}")

    async def load_aggregate(self) -> AggregateMetrics:
        raw = await self.storage.get(AGGREGATE_KEY)
        if raw is None:
            return AggregateMetrics()
        try:
            return AggregateMetrics.model_validate_json(raw)
        except ValueError:
            logger.warning("Stored aggregate batch metrics unreadable; starting new totals")
            return AggregateMetrics()


def pipeline_handler(pipeline) -> ItemHandler:
    """Adapt an IntakePipeline to the batch item handler signature.

    The item's metadata must carry the message under "message". The
    entity identifier becomes the message identifier so redeliveries are
    deduplicated.
    """

    async def handle(item: QueueItem) -> ItemResult:
        payload = item.metadata.get("message")
        if not isinstance(payload, dict):
            raise CorruptInput("Queue item carries no message payload", {"entity_id": item.entity_id})
        try:
            message = Message.model_validate({**payload, "message_id": payload.get("message_id") or item.entity_id})
        except ValueError as e:
            raise CorruptInput(f"Queue item message is invalid: {e}", {"entity_id": item.entity_id})

        result = await pipeline.process(message)
        if result.delivery is not None and not result.delivery.delivered:
            raise DeliveryFailure(f"Message {result.message_id} was not delivered", {"errors": result.errors})

        return ItemResult(
            entity_id=item.entity_id,
            cost=float(item.metadata.get("cost", 0.0)),
            detail={
                "message_id": result.message_id,
                "destination": result.decision.primary_destination,
                "category": result.decision.category,
                "duplicate": result.duplicate
            }
        )

    return handle


class LocalQueueMessage(IQueueMessage):
    """Queue message held by a LocalQueue."""

    def __init__(self, queue: "LocalQueue", message_id: str, body: QueueItem, attempts: int = 1):
        self._queue = queue
        self._id = message_id
        self._body = body
        self._attempts = attempts

    @property
    def id(self) -> str:
        return self._id

    @property
    def body(self) -> QueueItem:
        return self._body

    @property
    def attempts(self) -> int:
        return self._attempts

    async def ack(self) -> None:
        self._queue.acked.append(self)

    async def retry(self) -> None:
        self._queue.pending.append(LocalQueueMessage(self._queue, self._id, self._body, self._attempts + 1))


class LocalQueue:
    """In-process queue with redelivery, for the CLI and local runs."""

    def __init__(self, items: Optional[List[QueueItem]] = None):
        self.pending: List[LocalQueueMessage] = []
        self.acked: List[LocalQueueMessage] = []
        for item in items or []:
            self.put(item)

    def put(self, item: QueueItem) -> None:
        self.pending.append(LocalQueueMessage(self, f"q-{item.entity_id}", item))

    def next_batch(self, size: int) -> List[LocalQueueMessage]:
        batch, self.pending = self.pending[:size], self.pending[size:]
        return batch

    async def drain(self, consumer: BatchConsumer, batch_size: int = 10) -> List[BatchMetrics]:
        """Deliver batches until every message has been acked."""
        results = []
        while self.pending:
            results.append(await consumer.consume(self.next_batch(batch_size)))
        return results
