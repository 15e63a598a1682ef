"""Named workflow templates and task construction."""

from typing import Dict, Any, List, Optional, Tuple

from intake_gateway.models.workflow import AgentStep, AgentTask, ExecutionMode


GENERAL_ANALYSIS = "general_analysis"

WORKFLOW_TEMPLATES: Dict[str, Tuple[ExecutionMode, List[AgentStep]]] = {
    "case_analysis": (ExecutionMode.PARALLEL, [
        AgentStep(
            name="verify_recipient",
            capability="recipient_verification",
            description="Confirm sender and recipient identity",
            critical=True
        ),
        AgentStep(
            name="analyze_case",
            capability="legal_analysis",
            description="Analyze case details and legal implications",
            critical=True
        ),
        AgentStep(
            name="inventory_attachments",
            capability="attachment_inventory",
            description="List attached documents"
        ),
        AgentStep(
            name="process_documents",
            capability="document_processing",
            description="Process and categorize case documents",
            depends_on=["inventory_attachments"]
        ),
        AgentStep(
            name="build_timeline",
            capability="timeline_building",
            description="Create chronological case timeline",
            depends_on=["analyze_case"]
        ),
    ]),
    "document_review": (ExecutionMode.PARALLEL, [
        AgentStep(
            name="inventory_attachments",
            capability="attachment_inventory",
            description="List attached documents"
        ),
        AgentStep(
            name="analyze_document",
            capability="document_analysis",
            description="Analyze document content and structure",
            critical=True,
            depends_on=["inventory_attachments"]
        ),
        AgentStep(
            name="check_compliance",
            capability="compliance_check",
            description="Verify regulatory compliance",
            critical=True,
            depends_on=["analyze_document"]
        ),
        AgentStep(
            name="assess_risk",
            capability="risk_assessment",
            description="Assess potential legal risks",
            depends_on=["analyze_document"]
        ),
    ]),
    "client_communication": (ExecutionMode.SEQUENTIAL, [
        AgentStep(
            name="verify_recipient",
            capability="recipient_verification",
            description="Confirm sender and recipient identity",
            critical=True
        ),
        AgentStep(
            name="analyze_request",
            capability="triage",
            description="Analyze client communication request",
            critical=True
        ),
        AgentStep(
            name="compose_response",
            capability="message_composition",
            description="Compose appropriate response",
            critical=True,
            depends_on=["analyze_request"]
        ),
    ]),
    "evidence_processing": (ExecutionMode.SEQUENTIAL, [
        AgentStep(
            name="inventory_attachments",
            capability="attachment_inventory",
            description="List attached evidence"
        ),
        AgentStep(
            name="analyze_evidence",
            capability="evidence_analysis",
            description="Evaluate evidence quality and admissibility",
            critical=True,
            depends_on=["inventory_attachments"]
        ),
        AgentStep(
            name="build_timeline",
            capability="timeline_building",
            description="Place evidence on the case timeline",
            depends_on=["analyze_evidence"]
        ),
    ]),
    "intake_processing": (ExecutionMode.SEQUENTIAL, [
        AgentStep(
            name="triage_request",
            capability="triage",
            description="Assess priority and categorize the matter",
            critical=True
        ),
        AgentStep(
            name="verify_recipient",
            capability="recipient_verification",
            description="Confirm sender and recipient identity",
            critical=True
        ),
    ]),
    GENERAL_ANALYSIS: (ExecutionMode.SEQUENTIAL, [
        AgentStep(
            name="general_analysis",
            capability="legal_analysis",
            description="General legal analysis",
            critical=True
        ),
    ]),
}


def template_names() -> List[str]:
    return sorted(WORKFLOW_TEMPLATES)


def build_task(
    task_type: str,
    context: Optional[Dict[str, Any]] = None,
    execution_mode: Optional[ExecutionMode] = None,
    task_id: Optional[str] = None
) -> AgentTask:
    """Build an AgentTask from a template; unknown types get general analysis."""
    default_mode, steps = WORKFLOW_TEMPLATES.get(task_type, WORKFLOW_TEMPLATES[GENERAL_ANALYSIS])
    fields: Dict[str, Any] = {
        "task_type": task_type,
        "context": dict(context or {}),
        "steps": list(steps),
        "execution_mode": execution_mode or default_mode,
    }
    if task_id:
        fields["task_id"] = task_id
    return AgentTask(**fields)
