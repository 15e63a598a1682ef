"""AgentTask, step outcome and WorkflowResult models with task state transitions."""

from datetime import datetime, timezone
from enum import Enum
from typing import List, Optional, Dict, Any
from uuid import uuid4

from pydantic import BaseModel, Field, field_validator, model_validator


class ExecutionMode(str, Enum):
    """How the steps of a task are scheduled."""

    SEQUENTIAL = "sequential"
    PARALLEL = "parallel"


class TaskState(str, Enum):
    """Lifecycle of a workflow task."""

    PENDING = "pending"
    RUNNING = "running"
    PARTIAL = "partial"
    COMPLETE = "complete"
    FAILED = "failed"


class StepStatus(str, Enum):
    """Outcome of a single step."""

    SUCCEEDED = "succeeded"
    FAILED = "failed"
    TIMEOUT = "timeout"
    SKIPPED = "skipped"
    CANCELLED = "cancelled"
    UNAVAILABLE = "unavailable"


class AgentStep(BaseModel):
    """One typed step of a workflow."""

    name: str = Field(..., min_length=1, description="Unique step name within the task")
    capability: str = Field(..., min_length=1, description="Capability required, e.g. document_analysis")
    critical: bool = Field(default=False, description="Failure of this step fails the task")
    timeout_seconds: Optional[float] = Field(default=None, gt=0, description="Per-step timeout override")
    depends_on: List[str] = Field(default_factory=list, description="Earlier steps whose output this step consumes")
    description: str = Field(default="")

    class Config:
        """Pydantic configuration."""
        frozen = True


class AgentTask(BaseModel):
    """A named, ordered set of steps plus the context they operate on."""

    task_id: str = Field(default_factory=lambda: str(uuid4()))
    task_type: str = Field(..., min_length=1)
    context: Dict[str, Any] = Field(default_factory=dict)
    steps: List[AgentStep] = Field(..., min_length=1)
    execution_mode: ExecutionMode = Field(default=ExecutionMode.SEQUENTIAL)

    class Config:
        """Pydantic configuration."""
        use_enum_values = True

    @field_validator('steps')
    @classmethod
    def validate_steps(cls, v):
        """Step names must be unique and dependencies must point backwards."""
        seen = set()
        for step in v:
            if step.name in seen:
                raise ValueError(f"Duplicate step name: {step.name}")
            for dependency in step.depends_on:
                if dependency not in seen:
                    raise ValueError(
                        f"Step {step.name} depends on {dependency}, which is not an earlier step"
                    )
            seen.add(step.name)
        return v


class StepOutcome(BaseModel):
    """Recorded result of one step."""

    step_name: str
    capability: str
    status: StepStatus
    critical: bool = False
    output: Optional[Dict[str, Any]] = None
    error: Optional[Dict[str, Any]] = None
    duration_ms: float = Field(default=0.0, ge=0.0)
    finished_at: datetime = Field(default_factory=lambda: datetime.now(timezone.utc))

    class Config:
        """Pydantic configuration."""
        use_enum_values = True
        frozen = True

    @property
    def succeeded(self) -> bool:
        return self.status == StepStatus.SUCCEEDED


class WorkflowResult(BaseModel):
    """Final, immutable report of a task execution."""

    task_id: str
    task_type: str
    state: TaskState
    step_outcomes: Dict[str, StepOutcome] = Field(default_factory=dict)
    completed_steps: int = Field(default=0, ge=0)
    total_steps: int = Field(..., ge=1)
    success_rate: float = Field(default=0.0, ge=0.0, le=1.0)
    recommendations: List[str] = Field(default_factory=list)
    results: Dict[str, Any] = Field(default_factory=dict, description="Merged outputs of succeeded steps")
    failure: Optional[Dict[str, Any]] = Field(default=None, description="CriticalStepFailure diagnostic when FAILED")
    started_at: Optional[datetime] = None
    finished_at: Optional[datetime] = None

    class Config:
        """Pydantic configuration."""
        use_enum_values = True
        frozen = True

    @model_validator(mode='after')
    def validate_success_rate(self):
        """success_rate is always completed over declared steps."""
        if self.completed_steps > self.total_steps:
            raise ValueError("completed_steps cannot exceed total_steps")
        expected = self.completed_steps / self.total_steps
        if abs(self.success_rate - expected) > 1e-9:
            raise ValueError(f"success_rate {self.success_rate} does not equal {expected}")
        return self

    @property
    def failed_steps(self) -> List[str]:
        return [name for name, outcome in self.step_outcomes.items() if not outcome.succeeded]


class WorkflowExecution(BaseModel):
    """Mutable record of a task while it runs."""

    task: AgentTask
    state: TaskState = Field(default=TaskState.PENDING)
    outcomes: Dict[str, StepOutcome] = Field(default_factory=dict)
    results: Dict[str, Any] = Field(default_factory=dict)
    critical_failures: List[str] = Field(default_factory=list)
    started_at: Optional[datetime] = None
    finished_at: Optional[datetime] = None
    metadata: Dict[str, Any] = Field(default_factory=dict)

    class Config:
        """Pydantic configuration."""
        use_enum_values = True
        validate_assignment = True

    def transition_to(self, new_state: TaskState, reason: Optional[str] = None) -> bool:
        """Move to a new state if the transition is allowed."""
        valid_transitions = {
            TaskState.PENDING: [TaskState.RUNNING],
            TaskState.RUNNING: [TaskState.PARTIAL, TaskState.COMPLETE, TaskState.FAILED],
            TaskState.PARTIAL: [],
            TaskState.COMPLETE: [],
            TaskState.FAILED: []
        }

        current = TaskState(self.state)
        new_state = TaskState(new_state)
        if new_state not in valid_transitions[current]:
            return False

        now = datetime.now(timezone.utc)
        self.state = new_state
        if new_state == TaskState.RUNNING:
            self.started_at = now
        else:
            self.finished_at = now

        self.metadata.setdefault('state_transitions', []).append({
            'from': current.value,
            'to': new_state.value,
            'reason': reason,
            'timestamp': now.isoformat()
        })
        return True

    def record(self, outcome: StepOutcome) -> None:
        """Store a step outcome; successful output joins the shared results map."""
        self.outcomes[outcome.step_name] = outcome
        if outcome.succeeded and outcome.output is not None:
            self.results[outcome.step_name] = outcome.output
        if outcome.critical and not outcome.succeeded:
            if outcome.step_name not in self.critical_failures:
                self.critical_failures.append(outcome.step_name)

    @property
    def completed_steps(self) -> int:
        return sum(1 for outcome in self.outcomes.values() if outcome.succeeded)

    def resolve_state(self) -> TaskState:
        """Final state implied by the recorded outcomes."""
        if self.critical_failures:
            return TaskState.FAILED
        if self.completed_steps == len(self.task.steps):
            return TaskState.COMPLETE
        return TaskState.PARTIAL

    def to_result(
        self,
        recommendations: List[str],
        failure: Optional[Dict[str, Any]] = None
    ) -> WorkflowResult:
        """Freeze the execution into a WorkflowResult."""
        total = len(self.task.steps)
        completed = self.completed_steps
        return WorkflowResult(
            task_id=self.task.task_id,
            task_type=self.task.task_type,
            state=self.state,
            step_outcomes=dict(self.outcomes),
            completed_steps=completed,
            total_steps=total,
            success_rate=completed / total,
            recommendations=list(recommendations),
            results=dict(self.results),
            failure=failure,
            started_at=self.started_at,
            finished_at=self.finished_at
        )
