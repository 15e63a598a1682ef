"""
Metrics collection for routing, workflow execution and state merging.

Wraps an OpenTelemetry meter with the instruments the gateway records:
routing decisions, inference failures, workflow tasks and steps, session
state conflicts, delivery failures and batch consumption.
"""

import time
from dataclasses import dataclass
from typing import Optional

from opentelemetry import metrics

from intake_gateway.lib.observability import get_meter


@dataclass
class StepMetrics:
    """Metrics for a single workflow step."""
    task_type: str
    capability: str
    status: str
    duration_ms: float
    critical: bool


class MetricsCollector:
    """Collects and manages intake gateway metrics."""

    def __init__(self, meter: metrics.Meter):
        self.meter = meter
        self._setup_instruments()

    def _setup_instruments(self) -> None:
        """Setup OpenTelemetry metric instruments."""
        # Routing metrics
        self.routing_decisions = self.meter.create_counter(
            name="intake_routing_decisions_total",
            description="Routing decisions by decision source and fallback flag",
            unit="1"
        )

        self.routing_duration = self.meter.create_histogram(
            name="intake_routing_duration_ms",
            description="Wall-clock time spent producing a routing decision",
            unit="ms"
        )

        self.inference_failures = self.meter.create_counter(
            name="intake_inference_failures_total",
            description="Inference failures by failure mode",
            unit="1"
        )

        # Workflow metrics
        self.workflow_tasks = self.meter.create_counter(
            name="intake_workflow_tasks_total",
            description="Workflow tasks by final state",
            unit="1"
        )

        self.workflow_steps = self.meter.create_counter(
            name="intake_workflow_steps_total",
            description="Workflow steps by capability and status",
            unit="1"
        )

        self.step_duration = self.meter.create_histogram(
            name="intake_workflow_step_duration_ms",
            description="Workflow step duration",
            unit="ms"
        )

        self.active_tasks = self.meter.create_up_down_counter(
            name="intake_workflow_active_tasks",
            description="Number of workflow tasks currently running",
            unit="1"
        )

        # State, delivery and batch metrics
        self.state_conflicts = self.meter.create_counter(
            name="intake_state_conflicts_total",
            description="Concurrent session-state updates detected",
            unit="1"
        )

        self.delivery_failures = self.meter.create_counter(
            name="intake_delivery_failures_total",
            description="Delivery adapter failures by action",
            unit="1"
        )

        self.batch_messages = self.meter.create_counter(
            name="intake_batch_messages_total",
            description="Batch messages by result",
            unit="1"
        )

        self.events_dropped = self.meter.create_counter(
            name="intake_events_dropped_total",
            description="Telemetry events dropped because the channel was full",
            unit="1"
        )

    def record_routing_decision(
        self,
        source: str,
        is_fallback: bool,
        category: str,
        duration_ms: float
    ) -> None:
        """Record a produced routing decision."""
        attributes = {
            "source": source,
            "is_fallback": str(is_fallback),
            "category": category
        }

        self.routing_decisions.add(1, attributes)
        self.routing_duration.record(duration_ms, attributes)

    def record_inference_failure(self, failure_mode: str) -> None:
        self.inference_failures.add(1, {"failure_mode": failure_mode})

    def record_task_started(self, task_type: str) -> None:
        self.active_tasks.add(1, {"task_type": task_type})

    def record_task_finished(self, task_type: str, state: str) -> None:
        """Record workflow task completion."""
        self.active_tasks.add(-1, {"task_type": task_type})
        self.workflow_tasks.add(1, {"task_type": task_type, "state": state})

    def record_step(self, step: StepMetrics) -> None:
        """Record workflow step outcome."""
        attributes = {
            "task_type": step.task_type,
            "capability": step.capability,
            "status": step.status,
            "critical": str(step.critical)
        }

        self.workflow_steps.add(1, attributes)
        self.step_duration.record(step.duration_ms, attributes)

    def record_state_conflict(self, policy: str) -> None:
        self.state_conflicts.add(1, {"policy": policy})

    def record_delivery_failure(self, action: str) -> None:
        self.delivery_failures.add(1, {"action": action})

    def record_batch_message(self, result: str) -> None:
        self.batch_messages.add(1, {"result": result})

    def record_events_dropped(self, count: int = 1) -> None:
        self.events_dropped.add(count)


class StepTimer:
    """Context manager measuring a workflow step and recording its outcome."""

    def __init__(
        self,
        metrics_collector: MetricsCollector,
        task_type: str,
        capability: str,
        critical: bool
    ):
        self.metrics_collector = metrics_collector
        self.task_type = task_type
        self.capability = capability
        self.critical = critical
        self.status = "succeeded"
        self.start_time: Optional[float] = None

    def __enter__(self) -> "StepTimer":
        self.start_time = time.monotonic()
        return self

    def __exit__(self, exc_type, exc_val, exc_tb) -> None:
        if self.start_time is None:
            return

        if exc_type is not None and self.status == "succeeded":
            self.status = "failed"

        self.metrics_collector.record_step(StepMetrics(
            task_type=self.task_type,
            capability=self.capability,
            status=self.status,
            duration_ms=(time.monotonic() - self.start_time) * 1000,
            critical=self.critical
        ))

    def set_status(self, status: str) -> None:
        self.status = status


# Global metrics collector instance
_metrics_collector: Optional[MetricsCollector] = None


def initialize_metrics(meter: Optional[metrics.Meter] = None) -> MetricsCollector:
    """Initialize global metrics collector."""
    global _metrics_collector
    _metrics_collector = MetricsCollector(meter or get_meter())
    return _metrics_collector


def get_metrics_collector() -> MetricsCollector:
    """Get the global metrics collector, bound to the no-op meter if not initialized."""
    if _metrics_collector is None:
        return initialize_metrics()
    return _metrics_collector
