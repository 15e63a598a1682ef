"""VectorClock causal-ordering primitive."""

from enum import Enum
from typing import Dict, Optional

from pydantic import BaseModel, Field, field_validator, model_validator


class ClockOrdering(str, Enum):
    """Causal relationship of one clock to another."""

    BEFORE = "before"
    AFTER = "after"
    CONCURRENT = "concurrent"
    EQUAL = "equal"


class VectorClock(BaseModel):
    """Per-node logical clock.

    The owning node's counter is always present and only this clock's own
    tick() advances it. Entries are never removed and never decrease.
    The clock detects conflicts; resolving them is up to the caller.
    """

    node_id: str = Field(..., min_length=1, description="Node that owns this clock")
    counters: Dict[str, int] = Field(default_factory=dict, description="Node id to counter")

    @field_validator('counters')
    @classmethod
    def validate_counters(cls, v):
        for node, counter in v.items():
            if counter < 0:
                raise ValueError(f"Counter for {node} cannot be negative")
        return v

    @model_validator(mode='after')
    def ensure_own_entry(self):
        self.counters.setdefault(self.node_id, 0)
        return self

    def tick(self) -> "VectorClock":
        """Record a local event."""
        self.counters[self.node_id] = self.counters.get(self.node_id, 0) + 1
        return self

    def update(self, other: "VectorClock") -> "VectorClock":
        """Receive a peer clock: tick, then take the elementwise maximum."""
        self.tick()
        self._absorb(other)
        return self

    def merge(self, other: "VectorClock") -> "VectorClock":
        """Causal join without a local event. Returns a new clock owned by this node."""
        joined = self.copy_clock()
        joined._absorb(other)
        return joined

    def _absorb(self, other: "VectorClock") -> None:
        for node, counter in other.counters.items():
            if counter > self.counters.get(node, 0):
                self.counters[node] = counter

    def compare(self, other: "VectorClock") -> ClockOrdering:
        """Order this clock against another over the union of their nodes."""
        greater = False
        less = False
        for node in set(self.counters) | set(other.counters):
            mine = self.counters.get(node, 0)
            theirs = other.counters.get(node, 0)
            if mine > theirs:
                greater = True
            elif mine < theirs:
                less = True

        if greater and less:
            return ClockOrdering.CONCURRENT
        if greater:
            return ClockOrdering.AFTER
        if less:
            return ClockOrdering.BEFORE
        return ClockOrdering.EQUAL

    def copy_clock(self, node_id: Optional[str] = None) -> "VectorClock":
        """Independent copy, optionally re-owned by another node."""
        return VectorClock(node_id=node_id or self.node_id, counters=dict(self.counters))

    def __repr__(self) -> str:
        entries = ", ".join(f"{node}={count}" for node, count in sorted(self.counters.items()))
        return f"VectorClock({self.node_id}: {entries})"
