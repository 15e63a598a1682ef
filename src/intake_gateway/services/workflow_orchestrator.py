"""Multi-agent workflow orchestrator with critical/non-critical step semantics."""

import asyncio
import logging
import time
from collections import OrderedDict
from typing import Dict, Any, List, Optional, Set

from intake_gateway.lib.config import OrchestratorConfig
from intake_gateway.lib.errors import CapabilityResolutionFailure, CriticalStepFailure, IntakeError
from intake_gateway.lib.logging_config import AuditLogger, get_audit_logger
from intake_gateway.lib.metrics import MetricsCollector, StepMetrics, StepTimer, get_metrics_collector
from intake_gateway.lib.observability import get_tracer
from intake_gateway.models.workflow import (
    AgentStep,
    AgentTask,
    ExecutionMode,
    StepOutcome,
    StepStatus,
    TaskState,
    WorkflowExecution,
    WorkflowResult,
)
from intake_gateway.services.agent_handlers import BaseCapabilityHandler, StepContext
from intake_gateway.services.capability_registry import CapabilityRegistry


logger = logging.getLogger(__name__)

RESULT_HISTORY_LIMIT = 1000


class WorkflowOrchestrator:
    """Executes AgentTasks step by step and reports partial success.

    Handlers are resolved from the registry once, here. A step whose
    capability has no handler fails with CapabilityResolutionFailure; any
    error or timeout is recorded as that step's outcome. After a critical
    step fails no further steps are started and the task ends FAILED.
    """

    def __init__(
        self,
        registry: CapabilityRegistry,
        config: Optional[OrchestratorConfig] = None,
        metrics_collector: Optional[MetricsCollector] = None,
        audit_logger: Optional[AuditLogger] = None
    ):
        self.config = config or OrchestratorConfig()
        self.metrics = metrics_collector or get_metrics_collector()
        self.audit = audit_logger or get_audit_logger()
        self._tracer = get_tracer()

        self._handlers: Dict[str, BaseCapabilityHandler]
        self._unavailable: Dict[str, str]
        self._handlers, self._unavailable = registry.resolve_all(self.config.disabled_capabilities)

        self._executions: Dict[str, WorkflowExecution] = {}
        self._inflight: Dict[str, Set[asyncio.Task]] = {}
        self._cancel_requested: Set[str] = set()
        self._results: "OrderedDict[str, WorkflowResult]" = OrderedDict()

        logger.info(
            f"Workflow orchestrator ready with {len(self._handlers)} capabilities",
            extra={"available": sorted(self._handlers), "unavailable": self._unavailable}
        )

    @property
    def available_capabilities(self) -> List[str]:
        return sorted(self._handlers)

    @property
    def unavailable_capabilities(self) -> Dict[str, str]:
        return dict(self._unavailable)

    async def execute_task(self, task: AgentTask) -> WorkflowResult:
        """Run every step of the task and return the finalized result.

        Failures are returned as data. Cancelling the caller cancels the
        in-flight steps, stores the partial result and re-raises. A task
        whose id is already running is executed under a suffixed id.
        """
        if task.task_id in self._executions:
            requested = task.task_id
            suffix = 2
            while f"{requested}-{suffix}" in self._executions:
                suffix += 1
            task = task.model_copy(update={"task_id": f"{requested}-{suffix}"})
            logger.warning(f"Task id {requested} is already running; executing as {task.task_id}")

        execution = WorkflowExecution(task=task)
        self._executions[task.task_id] = execution
        self._inflight[task.task_id] = set()
        execution.transition_to(TaskState.RUNNING, reason="execution started")
        self.metrics.record_task_started(task.task_type)

        logger.info(
            f"Executing task {task.task_id} ({task.task_type}) with {len(task.steps)} steps",
            extra={"task_id": task.task_id, "execution_mode": task.execution_mode}
        )

        with self._tracer.start_as_current_span("workflow.execute_task") as span:
            span.set_attribute("intake.task_id", task.task_id)
            span.set_attribute("intake.task_type", task.task_type)
            try:
                if task.execution_mode == ExecutionMode.PARALLEL:
                    await self._run_parallel(execution)
                else:
                    await self._run_sequential(execution)
            except asyncio.CancelledError:
                await self._cancel_inflight(task.task_id)
                self._finish(execution, cancelled=True)
                raise

            result = self._finish(execution, cancelled=task.task_id in self._cancel_requested)
            span.set_attribute("intake.task_state", result.state)
            span.set_attribute("intake.success_rate", result.success_rate)

        return result

    async def cancel_task(self, task_id: str) -> bool:
        """Cancel a running task; it returns its partial result to its caller."""
        if task_id not in self._executions:
            return False
        self._cancel_requested.add(task_id)
        for step_task in list(self._inflight.get(task_id, ())):
            step_task.cancel()
        logger.info(f"Cancellation requested for task {task_id}")
        return True

    def get_result(self, task_id: str) -> Optional[WorkflowResult]:
        return self._results.get(task_id)

    def running_tasks(self) -> List[str]:
        return list(self._executions)

    def _dependency_failure(self, execution: WorkflowExecution, step: AgentStep) -> Optional[str]:
        for dependency in step.depends_on:
            outcome = execution.outcomes.get(dependency)
            if outcome is None or not outcome.succeeded:
                return dependency
        return None

    def _skip(self, execution: WorkflowExecution, step: AgentStep, status: StepStatus, reason: str) -> StepOutcome:
        outcome = StepOutcome(
            step_name=step.name,
            capability=step.capability,
            status=status,
            critical=step.critical,
            error={"error_type": "StepNotRun", "message": reason}
        )
        execution.record(outcome)
        self.metrics.record_step(StepMetrics(
            task_type=execution.task.task_type,
            capability=step.capability,
            status=outcome.status,
            duration_ms=0.0,
            critical=step.critical
        ))
        return outcome

    async def _run_sequential(self, execution: WorkflowExecution) -> None:
        task_id = execution.task.task_id
        for step in execution.task.steps:
            if task_id in self._cancel_requested or execution.critical_failures:
                return

            failed_dependency = self._dependency_failure(execution, step)
            if failed_dependency is not None:
                self._skip(execution, step, StepStatus.SKIPPED, f"dependency {failed_dependency} did not succeed")
                continue

            step_task = self._spawn(execution, step)
            # wait() rather than await so a cancelled step does not cancel this loop
            await asyncio.wait({step_task})

    async def _run_parallel(self, execution: WorkflowExecution) -> None:
        task_id = execution.task.task_id
        semaphore = asyncio.Semaphore(self.config.max_concurrency)
        pending: List[AgentStep] = list(execution.task.steps)
        running: Set[asyncio.Task] = set()

        while True:
            stopping = task_id in self._cancel_requested or bool(execution.critical_failures)

            if not stopping:
                progressed = True
                while progressed and not execution.critical_failures:
                    progressed = False
                    for step in list(pending):
                        if execution.critical_failures:
                            break
                        if any(d not in execution.outcomes for d in step.depends_on):
                            continue
                        pending.remove(step)
                        progressed = True
                        failed_dependency = self._dependency_failure(execution, step)
                        if failed_dependency is not None:
                            self._skip(
                                execution, step, StepStatus.SKIPPED,
                                f"dependency {failed_dependency} did not succeed"
                            )
                        else:
                            running.add(self._spawn(execution, step, semaphore))

            if not running:
                return

            _, running = await asyncio.wait(running, return_when=asyncio.FIRST_COMPLETED)

    def _spawn(
        self,
        execution: WorkflowExecution,
        step: AgentStep,
        semaphore: Optional[asyncio.Semaphore] = None
    ) -> asyncio.Task:
        task_id = execution.task.task_id
        step_task = asyncio.create_task(
            self._run_step(execution, step, semaphore),
            name=f"{task_id}:{step.name}"
        )
        inflight = self._inflight.setdefault(task_id, set())
        inflight.add(step_task)
        step_task.add_done_callback(inflight.discard)
        return step_task

    async def _run_step(
        self,
        execution: WorkflowExecution,
        step: AgentStep,
        semaphore: Optional[asyncio.Semaphore]
    ) -> StepOutcome:
        if semaphore is None:
            return await self._execute_step(execution, step)
        async with semaphore:
            if execution.critical_failures or execution.task.task_id in self._cancel_requested:
                return self._skip(execution, step, StepStatus.SKIPPED, "task stopped before step started")
            return await self._execute_step(execution, step)

    async def _execute_step(self, execution: WorkflowExecution, step: AgentStep) -> StepOutcome:
        task = execution.task
        handler = self._handlers.get(step.capability)
        timeout = step.timeout_seconds or self.config.default_step_timeout_seconds
        started = time.monotonic()

        status = StepStatus.SUCCEEDED
        output: Optional[Dict[str, Any]] = None
        error: Optional[Dict[str, Any]] = None

        with self._tracer.start_as_current_span("workflow.step") as span, \
                StepTimer(self.metrics, task.task_type, step.capability, step.critical) as timer:
            span.set_attribute("intake.step", step.name)
            span.set_attribute("intake.capability", step.capability)

            try:
                if handler is None:
                    reason = self._unavailable.get(step.capability, "no handler registered")
                    raise CapabilityResolutionFailure(
                        f"Capability {step.capability} unavailable: {reason}",
                        {"step": step.name, "capability": step.capability}
                    )
                ctx = StepContext(
                    task_id=task.task_id,
                    task_type=task.task_type,
                    step=step,
                    context=task.context,
                    previous_results=dict(execution.results)
                )
                result = await asyncio.wait_for(handler.execute(ctx), timeout=timeout)
                output = result if isinstance(result, dict) else {"result": result}
            except asyncio.TimeoutError:
                status = StepStatus.TIMEOUT
                error = {
                    "error_type": "StepTimeout",
                    "failure_mode": "timeout",
                    "message": f"Step {step.name} exceeded {timeout:.2f}s"
                }
            except asyncio.CancelledError:
                timer.set_status(StepStatus.CANCELLED.value)
                execution.record(StepOutcome(
                    step_name=step.name,
                    capability=step.capability,
                    status=StepStatus.CANCELLED,
                    critical=step.critical,
                    error={"error_type": "CancelledError", "message": "Step cancelled"},
                    duration_ms=(time.monotonic() - started) * 1000
                ))
                raise
            except CapabilityResolutionFailure as e:
                status = StepStatus.UNAVAILABLE
                error = e.to_dict()
            except IntakeError as e:
                status = StepStatus.FAILED
                error = e.to_dict()
            except Exception as e:
                status = StepStatus.FAILED
                error = {"error_type": type(e).__name__, "message": str(e)}

            timer.set_status(status.value)
            span.set_attribute("intake.step_status", status.value)

        outcome = StepOutcome(
            step_name=step.name,
            capability=step.capability,
            status=status,
            critical=step.critical,
            output=output,
            error=error,
            duration_ms=(time.monotonic() - started) * 1000
        )
        execution.record(outcome)

        if outcome.succeeded:
            logger.debug(f"Step {step.name} of task {task.task_id} succeeded")
        else:
            logger.warning(
                f"Step {step.name} of task {task.task_id} {status.value}: {error.get('message')}",
                extra={"task_id": task.task_id, "step": step.name, "critical": step.critical}
            )
        return outcome

    async def _cancel_inflight(self, task_id: str) -> None:
        inflight = list(self._inflight.get(task_id, ()))
        for step_task in inflight:
            step_task.cancel()
        if inflight:
            await asyncio.gather(*inflight, return_exceptions=True)

    def _recommendations(self, execution: WorkflowExecution, state: TaskState) -> List[str]:
        recommendations: List[str] = []
        if state == TaskState.FAILED:
            recommendations.append(
                "Review and retry: critical step(s) failed: " + ", ".join(execution.critical_failures)
            )

        for step in execution.task.steps:
            outcome = execution.outcomes.get(step.name)
            if outcome is None or outcome.succeeded:
                continue
            if outcome.status == StepStatus.UNAVAILABLE:
                recommendations.append(f"Enable capability {step.capability} and retry step: {step.name}")
            else:
                recommendations.append(f"Review and retry step: {step.name}")

        if not recommendations:
            recommendations.append("All workflow steps completed successfully")
        return recommendations

    @staticmethod
    def _critical_failure(execution: WorkflowExecution) -> Dict[str, Any]:
        steps = list(execution.critical_failures)
        return CriticalStepFailure(
            f"Task {execution.task.task_id} failed: critical step(s) {', '.join(steps)} did not succeed",
            {
                "task_id": execution.task.task_id,
                "task_type": execution.task.task_type,
                "steps": {
                    name: {
                        "status": execution.outcomes[name].status,
                        "error": execution.outcomes[name].error
                    }
                    for name in steps if name in execution.outcomes
                }
            }
        ).to_dict()

    def _finish(self, execution: WorkflowExecution, cancelled: bool = False) -> WorkflowResult:
        task = execution.task
        for step in task.steps:
            if step.name not in execution.outcomes:
                if cancelled:
                    self._skip(execution, step, StepStatus.CANCELLED, "task cancelled before step ran")
                else:
                    self._skip(execution, step, StepStatus.SKIPPED, "task stopped after critical step failure")

        state = execution.resolve_state()
        execution.transition_to(state, reason="cancelled" if cancelled else "all steps resolved")
        failure = self._critical_failure(execution) if state == TaskState.FAILED else None
        result = execution.to_result(self._recommendations(execution, state), failure)

        self._results[task.task_id] = result
        while len(self._results) > RESULT_HISTORY_LIMIT:
            self._results.popitem(last=False)
        self._executions.pop(task.task_id, None)
        self._inflight.pop(task.task_id, None)
        self._cancel_requested.discard(task.task_id)

        self.metrics.record_task_finished(task.task_type, result.state)
        self.audit.log_workflow_event(
            task_id=task.task_id,
            task_type=task.task_type,
            state=result.state,
            success_rate=result.success_rate,
            failed_steps=result.failed_steps,
            metadata={"cancelled": cancelled, "completed_steps": result.completed_steps}
        )
        return result
