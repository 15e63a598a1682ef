"""Classification, decision-source and routing decision models."""

from datetime import datetime, timezone
from enum import Enum
from typing import List, Optional, Union, Annotated, Literal

from pydantic import BaseModel, Field


class Category(str, Enum):
    """Fixed set of message categories."""

    LAWSUIT = "lawsuit"
    DOCUMENT_SUBMISSION = "document_submission"
    EMERGENCY = "emergency"
    COURT_NOTICE = "court_notice"
    INQUIRY = "inquiry"
    APPOINTMENT = "appointment"
    BILLING = "billing"
    CLIENT_COMMUNICATION = "client_communication"


class Priority(str, Enum):
    """Handling priority, highest first."""

    CRITICAL = "CRITICAL"
    HIGH = "HIGH"
    NORMAL = "NORMAL"
    LOW = "LOW"


_PRIORITY_RANK = {
    Priority.LOW.value: 0,
    Priority.NORMAL.value: 1,
    Priority.HIGH.value: 2,
    Priority.CRITICAL.value: 3,
}


def priority_rank(priority: str) -> int:
    """Numeric rank of a priority; unknown values rank as NORMAL."""
    return _PRIORITY_RANK.get(str(getattr(priority, "value", priority)), 1)


def higher_priority(a: str, b: str) -> str:
    """Return whichever of two priorities is more urgent."""
    return a if priority_rank(a) >= priority_rank(b) else b


class DecisionSource(str, Enum):
    """Where a routing decision came from."""

    AI = "ai"
    RULE = "rule"
    DEFAULT = "default"


class ClassificationResult(BaseModel):
    """Category, priority and confidence assigned to one message."""

    category: Category = Field(..., description="Message category")
    priority: Priority = Field(default=Priority.NORMAL, description="Handling priority")
    confidence: float = Field(default=0.5, ge=0.0, le=1.0, description="Confidence in [0, 1]")
    reasoning: str = Field(default="", description="Free-text explanation")
    is_fallback: bool = Field(default=False, description="True when not produced by a clean AI decode")

    class Config:
        """Pydantic configuration."""
        use_enum_values = True
        frozen = True


class AIDecision(BaseModel):
    """Classification obtained from the inference capability."""

    source: Literal["ai"] = "ai"
    classification: ClassificationResult
    model: Optional[str] = Field(default=None, description="Model that answered")
    heuristic: bool = Field(
        default=False,
        description="True when fields were recovered from free text rather than decoded"
    )
    trail: List[str] = Field(default_factory=list, description="Steps taken to obtain the decision")

    class Config:
        """Pydantic configuration."""
        frozen = True


class RuleDecision(BaseModel):
    """Deterministic keyword and address-pattern decision."""

    source: Literal["rule"] = "rule"
    classification: ClassificationResult
    destination: str = Field(..., min_length=1, description="Destination chosen by the rules")
    case_id: Optional[str] = Field(default=None, description="Two-party case identifier, if detected")
    trail: List[str] = Field(default_factory=list, description="Rules that fired")

    class Config:
        """Pydantic configuration."""
        frozen = True


Decision = Annotated[Union[AIDecision, RuleDecision], Field(discriminator="source")]


class RoutingDecision(BaseModel):
    """Where a message goes and why.

    Handed to the delivery adapter; never modified after the engine returns it.
    """

    message_id: str = Field(..., min_length=1, description="Correlation key for downstream systems")
    primary_destination: str = Field(..., min_length=1, description="Destination tried first")
    fallback_destinations: List[str] = Field(default_factory=list, description="Ordered alternates")
    confidence: float = Field(default=0.0, ge=0.0, le=1.0)
    is_fallback: bool = Field(default=False)
    reasoning: List[str] = Field(default_factory=list, description="Ordered decision trail")
    category: Category = Field(default=Category.INQUIRY)
    priority: Priority = Field(default=Priority.NORMAL)
    source: DecisionSource = Field(default=DecisionSource.RULE)
    case_id: Optional[str] = Field(default=None)
    decided_at: datetime = Field(default_factory=lambda: datetime.now(timezone.utc))

    class Config:
        """Pydantic configuration."""
        use_enum_values = True
        frozen = True
