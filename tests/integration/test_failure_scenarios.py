"""
End-to-end failure scenarios.

Each scenario forces one collaborator into a failure mode and checks that
the gateway still produces a usable, explainable result.
"""

import asyncio
from unittest.mock import Mock

import pytest

from intake_gateway.lib.config import OrchestratorConfig
from intake_gateway.lib.errors import InferenceMalformed, InferenceUnavailable
from intake_gateway.lib.logging_config import AuditLogger
from intake_gateway.lib.metrics import MetricsCollector
from intake_gateway.models.classification import priority_rank
from intake_gateway.models.message import Message
from intake_gateway.models.vector_clock import ClockOrdering, VectorClock
from intake_gateway.models.workflow import AgentStep, AgentTask, ExecutionMode
from intake_gateway.services.agent_handlers import BaseCapabilityHandler
from intake_gateway.services.capability_registry import CapabilityRegistry
from intake_gateway.services.routing_engine import RoutingEngine
from intake_gateway.services.workflow_orchestrator import WorkflowOrchestrator

from tests.conftest import ScriptedInference


@pytest.fixture
def metrics():
    return Mock(spec=MetricsCollector)


@pytest.fixture
def audit():
    return Mock(spec=AuditLogger)


@pytest.fixture
def engine_with(routing_config, inference_config, metrics, audit):
    def factory(inference):
        return RoutingEngine(routing_config, inference_config, inference, metrics_collector=metrics,
                             audit_logger=audit)
    return factory


class TestInferenceAlwaysFailing:
    """Every message still gets a destination."""

    @pytest.mark.asyncio
    async def test_hundred_messages_all_routed(self, engine_with):
        engine = engine_with(ScriptedInference(InferenceUnavailable("service down")))
        messages = [
            Message(
                sender=f"client{i}@example.org",
                recipient="intake@firm.com",
                subject=f"Message {i}",
                body="Please advise on the attached contract." if i % 2 else "Invoice question"
            )
            for i in range(100)
        ]

        decisions = await asyncio.gather(*(engine.route(m) for m in messages))

        assert len(decisions) == 100
        assert all(d.primary_destination for d in decisions)
        assert all(d.is_fallback for d in decisions)
        assert len({d.message_id for d in decisions}) == 100

    @pytest.mark.asyncio
    async def test_garbage_responses(self, engine_with, billing_message):
        engine = engine_with(ScriptedInference("\x00\x01 ??? <html>500</html>"))
        decision = await engine.route(billing_message)

        assert decision.primary_destination == "intake@example.com"
        assert decision.is_fallback is True

    @pytest.mark.asyncio
    async def test_urgent_motion_with_inference_down(self, engine_with, urgent_motion_message):
        engine = engine_with(ScriptedInference(InferenceUnavailable("connection refused")))

        decision = await engine.route(urgent_motion_message)

        assert priority_rank(decision.priority) >= priority_rank("HIGH")
        assert decision.priority == "CRITICAL"
        assert decision.is_fallback is True
        assert decision.message_id
        assert decision.primary_destination == "emergency@example.com"
        assert decision.reasoning[0].startswith("inference unavailable")


class AlwaysFails(BaseCapabilityHandler):
    async def execute(self, ctx):
        raise InferenceMalformed("specialist returned nothing usable")


class Succeeds(BaseCapabilityHandler):
    async def execute(self, ctx):
        return {"done": ctx.step.name}


class TestCriticalWorkflowFailure:
    """A failed critical step fails the task but keeps completed work."""

    @pytest.fixture
    def orchestrator(self, metrics, audit):
        registry = CapabilityRegistry()
        registry.register("ok", Succeeds)
        registry.register("broken", AlwaysFails)
        return WorkflowOrchestrator(registry, OrchestratorConfig(), metrics, audit)

    @pytest.mark.parametrize("mode", [ExecutionMode.SEQUENTIAL, ExecutionMode.PARALLEL])
    @pytest.mark.asyncio
    async def test_five_steps_third_critical(self, orchestrator, mode):
        task = AgentTask(
            task_type="five_step",
            execution_mode=mode,
            steps=[
                AgentStep(name="one", capability="ok"),
                AgentStep(name="two", capability="ok"),
                AgentStep(name="three", capability="broken", critical=True),
                AgentStep(name="four", capability="ok"),
                AgentStep(name="five", capability="ok"),
            ]
        )

        result = await orchestrator.execute_task(task)

        assert result.state == "failed"
        assert 2 <= result.completed_steps <= 5
        assert result.total_steps == 5
        assert result.recommendations
        assert result.results["one"] == {"done": "one"}
        assert result.step_outcomes["three"].error["failure_mode"] == "malformed"


class TestIndependentClocks:
    """Updates with no causal link are detected as concurrent."""

    def test_concurrent_updates(self):
        base = VectorClock(node_id="node-a").tick()
        on_b = base.copy_clock("node-b").tick()
        on_a = base.copy_clock().tick()

        assert on_a.compare(on_b) == ClockOrdering.CONCURRENT
        assert on_b.compare(on_a) == ClockOrdering.CONCURRENT

    def test_merge_resolves_order(self):
        a = VectorClock(node_id="node-a").tick()
        b = VectorClock(node_id="node-b").tick()

        joined = a.merge(b)

        assert joined.compare(a) == ClockOrdering.AFTER
        assert joined.compare(b) == ClockOrdering.AFTER
        assert a.merge(b).compare(b.merge(a)) == ClockOrdering.EQUAL
