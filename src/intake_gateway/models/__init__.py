"""Intake gateway data models.

Messages, classification and routing decisions, workflow tasks and results,
vector clocks, session state and batch queue items.
"""

from .message import Message, Attachment
from .classification import (
    Category,
    Priority,
    DecisionSource,
    ClassificationResult,
    AIDecision,
    RuleDecision,
    Decision,
    RoutingDecision,
    priority_rank,
    higher_priority,
)
from .workflow import (
    ExecutionMode,
    TaskState,
    StepStatus,
    AgentStep,
    AgentTask,
    StepOutcome,
    WorkflowResult,
    WorkflowExecution,
)
from .vector_clock import VectorClock, ClockOrdering
from .session_state import SessionState, ConflictRecord
from .batch import QueueItem, ItemResult, ItemError, BatchMetrics, AggregateMetrics

__all__ = [
    "Message",
    "Attachment",
    "Category",
    "Priority",
    "DecisionSource",
    "ClassificationResult",
    "AIDecision",
    "RuleDecision",
    "Decision",
    "RoutingDecision",
    "priority_rank",
    "higher_priority",
    "ExecutionMode",
    "TaskState",
    "StepStatus",
    "AgentStep",
    "AgentTask",
    "StepOutcome",
    "WorkflowResult",
    "WorkflowExecution",
    "VectorClock",
    "ClockOrdering",
    "SessionState",
    "ConflictRecord",
    "QueueItem",
    "ItemResult",
    "ItemError",
    "BatchMetrics",
    "AggregateMetrics",
]
