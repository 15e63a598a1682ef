"""
Vector-clock guarded session state store.

Writes are optimistic: read state and clock, build the new state, re-read,
and put only if the new clock is still after the stored one. A lost race is
retried by folding the stored clock in with update(), never by overwriting.
Peer states are merged by clock comparison: replace when the local state is
before the peer, keep it when after or equal, and apply the configured
conflict policy when the two are concurrent.
"""

import json
import logging
from typing import Callable, Dict, Any, List, Optional, Tuple

from intake_gateway.lib.config import SessionConfig
from intake_gateway.lib.errors import StorageFailure
from intake_gateway.lib.logging_config import AuditLogger, get_audit_logger
from intake_gateway.lib.metrics import MetricsCollector, get_metrics_collector
from intake_gateway.models.session_state import ConflictRecord, SessionState
from intake_gateway.models.vector_clock import ClockOrdering, VectorClock
from intake_gateway.services.interfaces.storage import IStorageAdapter


logger = logging.getLogger(__name__)

FIELD_MERGE = "field_merge"
FLAG_ONLY = "flag_only"

SessionMutation = Callable[[SessionState], None]


def _fingerprint(entry: Dict[str, Any]) -> str:
    return json.dumps(entry, sort_keys=True, default=str)


def merge_histories(local: List[Dict[str, Any]], remote: List[Dict[str, Any]], limit: int) -> List[Dict[str, Any]]:
    """Union of two histories ordered by timestamp, newest kept."""
    seen = set()
    merged: List[Dict[str, Any]] = []
    for entry in local + remote:
        key = _fingerprint(entry)
        if key not in seen:
            seen.add(key)
            merged.append(entry)
    merged.sort(key=lambda e: str(e.get("timestamp", "")))
    return merged[-limit:]


def resolve_conflict(
    local: SessionState,
    remote: SessionState,
    policy: str,
    history_limit: int
) -> SessionState:
    """Merge two concurrent states under the given policy.

    field_merge keeps keys present on only one side and, for keys both sides
    changed differently, keeps the local value and records both values; a
    merge with no differing keys records nothing. flag_only keeps local data
    untouched and always records the whole remote payload. The returned
    state still carries the local clock.
    """
    differing = sorted(
        key for key in set(local.data) & set(remote.data)
        if local.data[key] != remote.data[key]
    )
    merged = local.model_copy(deep=True)
    record: Optional[ConflictRecord] = None

    if policy == FLAG_ONLY:
        record = ConflictRecord(
            local_node=local.clock.node_id,
            remote_node=remote.clock.node_id,
            policy=policy,
            keys=sorted(set(differing) | (set(remote.data) - set(local.data))),
            local_values=dict(local.data),
            remote_values=dict(remote.data),
            local_clock=dict(local.clock.counters),
            remote_clock=dict(remote.clock.counters)
        )
    else:
        for key, value in remote.data.items():
            if key not in merged.data:
                merged.data[key] = value
        merged.history = merge_histories(local.history, remote.history, history_limit)
        if differing:
            record = ConflictRecord(
                local_node=local.clock.node_id,
                remote_node=remote.clock.node_id,
                policy=FIELD_MERGE,
                keys=differing,
                local_values={key: local.data[key] for key in differing},
                remote_values={key: remote.data[key] for key in differing},
                local_clock=dict(local.clock.counters),
                remote_clock=dict(remote.clock.counters)
            )

    known = {_fingerprint(c.model_dump(mode="json")) for c in merged.conflicts}
    for conflict in remote.conflicts:
        if _fingerprint(conflict.model_dump(mode="json")) not in known:
            merged.conflicts.append(conflict)
    if record is not None:
        merged.conflicts.append(record)
    merged.touch()
    return merged


class SessionStateStore:
    """Optimistic, clock-checked read-modify-write over a plain key/value store."""

    def __init__(
        self,
        storage: IStorageAdapter,
        config: Optional[SessionConfig] = None,
        metrics_collector: Optional[MetricsCollector] = None,
        audit_logger: Optional[AuditLogger] = None
    ):
        self.storage = storage
        self.config = config or SessionConfig()
        self.metrics = metrics_collector or get_metrics_collector()
        self.audit = audit_logger or get_audit_logger()

    @property
    def node_id(self) -> str:
        return self.config.node_id

    @staticmethod
    def key_for(session_id: str) -> str:
        return f"session:{session_id}"

    async def load(self, session_id: str) -> Optional[SessionState]:
        """Read a session; None when absent.

        Raises:
            StorageFailure: read failed or stored bytes are unreadable
        """
        raw = await self.storage.get(self.key_for(session_id))
        if raw is None:
            return None
        try:
            return SessionState.from_bytes(raw)
        except ValueError as e:
            raise StorageFailure(f"Stored state for {session_id} is unreadable: {e}", {"session_id": session_id})

    def _still_after(self, candidate: SessionState, current: Optional[SessionState]) -> bool:
        return current is None or candidate.clock.compare(current.clock) == ClockOrdering.AFTER

    async def _put(self, state: SessionState) -> None:
        await self.storage.put(
            self.key_for(state.session_id),
            state.to_bytes(),
            ttl_seconds=self.config.state_ttl_seconds
        )

    async def update(self, session_id: str, mutate: SessionMutation) -> SessionState:
        """Apply a local mutation with compare-and-swap on the vector clock.

        Raises:
            StorageFailure: storage failed or every attempt lost the race
        """
        clock: Optional[VectorClock] = None

        for attempt in range(1, self.config.max_write_attempts + 1):
            base = await self.load(session_id)

            if clock is None:
                clock = base.clock.copy_clock(self.node_id) if base else VectorClock(node_id=self.node_id)
                clock.tick()
            elif base is not None:
                clock.update(base.clock)
            else:
                clock.tick()

            candidate = base.owned_by(self.node_id) if base else SessionState.new(session_id, self.node_id)
            candidate.clock = clock.copy_clock()
            mutate(candidate)
            candidate.touch()

            current = await self.load(session_id)
            if self._still_after(candidate, current):
                await self._put(candidate)
                self.audit.log_state_event(
                    event_type="write",
                    session_id=session_id,
                    node_id=self.node_id,
                    ordering=ClockOrdering.AFTER.value,
                    metadata={"attempt": attempt, "clock": dict(candidate.clock.counters)}
                )
                return candidate

            ordering = candidate.clock.compare(current.clock)
            self.metrics.record_state_conflict("cas_retry")
            logger.warning(
                f"Lost write race for session {session_id} on attempt {attempt} ({ordering.value})",
                extra={"session_id": session_id, "attempt": attempt}
            )

        raise StorageFailure(
            f"Could not write session {session_id} after {self.config.max_write_attempts} attempts",
            {"session_id": session_id, "node_id": self.node_id}
        )

    async def merge_remote(self, session_id: str, remote: SessionState) -> Tuple[SessionState, ClockOrdering]:
        """Reconcile a peer's copy of a session with the local one.

        Returns the state now held and the ordering of the local state
        relative to the peer's.
        """
        for attempt in range(1, self.config.max_write_attempts + 1):
            local = await self.load(session_id)
            if local is None:
                ordering = ClockOrdering.BEFORE
                candidate = remote.owned_by(self.node_id)
            else:
                ordering = local.clock.compare(remote.clock)
                if ordering in (ClockOrdering.AFTER, ClockOrdering.EQUAL):
                    self.audit.log_state_event("merge_kept_local", session_id, self.node_id, ordering.value)
                    return local, ordering

                if ordering == ClockOrdering.BEFORE:
                    candidate = remote.owned_by(self.node_id)
                else:
                    candidate = resolve_conflict(
                        local.owned_by(self.node_id),
                        remote,
                        self.config.conflict_policy,
                        self.config.history_limit
                    )
                    candidate.clock.update(remote.clock)
                    self.metrics.record_state_conflict(self.config.conflict_policy)

            current = await self.load(session_id)
            unchanged = (
                (local is None and current is None)
                or (local is not None and current is not None
                    and current.clock.compare(local.clock) == ClockOrdering.EQUAL)
            )
            if unchanged:
                await self._put(candidate)
                self.audit.log_state_event(
                    event_type="merge_replaced" if ordering != ClockOrdering.CONCURRENT else "merge_conflict",
                    session_id=session_id,
                    node_id=self.node_id,
                    ordering=ordering.value,
                    conflicts=len(candidate.unresolved_conflicts),
                    metadata={"attempt": attempt, "remote_node": remote.clock.node_id}
                )
                return candidate, ordering

            logger.warning(f"Session {session_id} changed during merge, retrying (attempt {attempt})")

        raise StorageFailure(
            f"Could not merge session {session_id} after {self.config.max_write_attempts} attempts",
            {"session_id": session_id, "node_id": self.node_id}
        )
