"""SessionState model guarded by a VectorClock."""

from datetime import datetime, timezone
from typing import List, Optional, Dict, Any

from pydantic import BaseModel, Field

from .vector_clock import VectorClock


class ConflictRecord(BaseModel):
    """Keys on which two concurrently updated states disagreed."""

    detected_at: datetime = Field(default_factory=lambda: datetime.now(timezone.utc))
    local_node: str
    remote_node: str
    policy: str = Field(..., description="Conflict policy that handled the conflict")
    keys: List[str] = Field(default_factory=list, description="Keys present on both sides with different values")
    local_values: Dict[str, Any] = Field(default_factory=dict)
    remote_values: Dict[str, Any] = Field(default_factory=dict)
    local_clock: Dict[str, int] = Field(default_factory=dict)
    remote_clock: Dict[str, int] = Field(default_factory=dict)
    resolved: bool = Field(default=False, description="Set once someone reconciles the conflict manually")


class SessionState(BaseModel):
    """Per-session state shared by concurrently running gateway instances."""

    session_id: str = Field(..., min_length=1)
    clock: VectorClock
    data: Dict[str, Any] = Field(default_factory=dict)
    history: List[Dict[str, Any]] = Field(default_factory=list, description="Recent routing entries, oldest first")
    conflicts: List[ConflictRecord] = Field(default_factory=list)
    created_at: datetime = Field(default_factory=lambda: datetime.now(timezone.utc))
    updated_at: datetime = Field(default_factory=lambda: datetime.now(timezone.utc))

    @classmethod
    def new(cls, session_id: str, node_id: str) -> "SessionState":
        return cls(session_id=session_id, clock=VectorClock(node_id=node_id))

    def to_bytes(self) -> bytes:
        return self.model_dump_json().encode("utf-8")

    @classmethod
    def from_bytes(cls, raw: bytes) -> "SessionState":
        return cls.model_validate_json(raw)

    def owned_by(self, node_id: str) -> "SessionState":
        """Deep copy whose clock is owned by the given node."""
        copy = self.model_copy(deep=True)
        copy.clock = self.clock.copy_clock(node_id=node_id)
        return copy

    def append_history(self, entry: Dict[str, Any], limit: int) -> None:
        self.history.append(entry)
        if len(self.history) > limit:
            del self.history[:len(self.history) - limit]

    def touch(self) -> None:
        self.updated_at = datetime.now(timezone.utc)

    @property
    def unresolved_conflicts(self) -> List[ConflictRecord]:
        return [c for c in self.conflicts if not c.resolved]

    def summary(self) -> Dict[str, Any]:
        return {
            "session_id": self.session_id,
            "clock": dict(self.clock.counters),
            "keys": sorted(self.data),
            "history_entries": len(self.history),
            "unresolved_conflicts": len(self.unresolved_conflicts),
            "updated_at": self.updated_at.isoformat()
        }

    def get(self, key: str, default: Optional[Any] = None) -> Any:
        return self.data.get(key, default)
