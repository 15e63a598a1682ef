"""Batch queue item and batch metrics models."""

from datetime import datetime, timezone
from typing import List, Optional, Dict, Any
from uuid import uuid4

from pydantic import BaseModel, Field

from .classification import Priority


class QueueItem(BaseModel):
    """Body of one queued message."""

    entity_id: str = Field(..., min_length=1, description="Identifier of the entity to process")
    priority: Priority = Field(default=Priority.NORMAL)
    timestamp: datetime = Field(default_factory=lambda: datetime.now(timezone.utc))
    score: float = Field(default=0.0, ge=0.0, le=1.0, description="Auxiliary score supplied by the producer")
    metadata: Dict[str, Any] = Field(default_factory=dict)

    class Config:
        """Pydantic configuration."""
        use_enum_values = True
        frozen = True


class ItemResult(BaseModel):
    """What a handler reports for one successfully processed item."""

    entity_id: str
    cost: float = Field(default=0.0, ge=0.0)
    detail: Dict[str, Any] = Field(default_factory=dict)


class ItemError(BaseModel):
    message_id: str
    entity_id: str
    attempts: int
    error: str
    dead_lettered: bool = False
    timestamp: datetime = Field(default_factory=lambda: datetime.now(timezone.utc))


class BatchMetrics(BaseModel):
    """Outcome counts of a single batch."""

    batch_id: str = Field(default_factory=lambda: str(uuid4()))
    size: int = Field(default=0, ge=0)
    processed: int = Field(default=0, ge=0)
    failed: int = Field(default=0, ge=0)
    retried: int = Field(default=0, ge=0)
    dead_lettered: int = Field(default=0, ge=0)
    total_cost: float = Field(default=0.0, ge=0.0)
    errors: List[ItemError] = Field(default_factory=list)
    started_at: datetime = Field(default_factory=lambda: datetime.now(timezone.utc))
    finished_at: Optional[datetime] = None


class AggregateMetrics(BaseModel):
    """Running totals across all batches."""

    batches: int = Field(default=0, ge=0)
    processed: int = Field(default=0, ge=0)
    failed: int = Field(default=0, ge=0)
    dead_lettered: int = Field(default=0, ge=0)
    total_cost: float = Field(default=0.0, ge=0.0)
    last_batch_id: Optional[str] = None
    updated_at: datetime = Field(default_factory=lambda: datetime.now(timezone.utc))

    def absorb(self, batch: BatchMetrics) -> None:
        self.batches += 1
        self.processed += batch.processed
        self.failed += batch.failed
        self.dead_lettered += batch.dead_lettered
        self.total_cost += batch.total_cost
        self.last_batch_id = batch.batch_id
        self.updated_at = datetime.now(timezone.utc)
