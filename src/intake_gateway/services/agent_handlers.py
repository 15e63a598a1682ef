"""Capability handlers executed by the workflow orchestrator.

Most capabilities are AI-backed specialists that differ only in their
profile (role, expertise and prompt prefix). Recipient verification and
attachment inventory are deterministic and need no inference.
"""

import json
import logging
import re
from abc import ABC, abstractmethod
from typing import Dict, Any, List, Optional

from pydantic import BaseModel, Field

from intake_gateway.lib.errors import CorruptInput, InferenceMalformed
from intake_gateway.models.workflow import AgentStep
from intake_gateway.services.interfaces.inference import IInferenceCapability, InferenceRequest
from intake_gateway.services.rule_classifier import detect_case_id


logger = logging.getLogger(__name__)

_ADDRESS_RE = re.compile(r"^[^@\s]+@[^@\s]+\.[^@\s]+$")


class StepContext(BaseModel):
    """Everything a handler sees when it runs."""

    task_id: str
    task_type: str
    step: AgentStep
    context: Dict[str, Any] = Field(default_factory=dict)
    previous_results: Dict[str, Any] = Field(default_factory=dict)


class SpecialistProfile(BaseModel):
    """Role description used to prime an AI-backed specialist."""

    role: str
    expertise: str
    prompt_prefix: str


SPECIALIST_PROFILES: Dict[str, SpecialistProfile] = {
    "legal_analysis": SpecialistProfile(
        role="Legal Analysis Specialist",
        expertise="Case law, precedents, legal strategy",
        prompt_prefix="You are a legal analysis expert. Analyze legal documents and cases with precision."
    ),
    "document_processing": SpecialistProfile(
        role="Document Processing Specialist",
        expertise="Document classification, extraction, organization",
        prompt_prefix="You are a document processing expert. Classify and extract key information from legal documents."
    ),
    "document_analysis": SpecialistProfile(
        role="Document Analysis Specialist",
        expertise="Document content, structure and obligations",
        prompt_prefix="You are a document analysis expert. Analyze the content and structure of legal documents."
    ),
    "timeline_building": SpecialistProfile(
        role="Legal Timeline Specialist",
        expertise="Chronological analysis, deadline tracking",
        prompt_prefix="You are a timeline specialist. Build chronological sequences and track important dates."
    ),
    "compliance_check": SpecialistProfile(
        role="Compliance Verification Specialist",
        expertise="Regulatory compliance, legal requirements",
        prompt_prefix="You are a compliance expert. Verify legal and regulatory compliance."
    ),
    "risk_assessment": SpecialistProfile(
        role="Legal Risk Specialist",
        expertise="Exposure, liability and litigation risk",
        prompt_prefix="You are a legal risk expert. Assess potential legal risks and their severity."
    ),
    "message_composition": SpecialistProfile(
        role="Legal Communication Specialist",
        expertise="Professional legal communication, client relations",
        prompt_prefix="You are a legal communication expert. Compose professional, clear legal communications."
    ),
    "triage": SpecialistProfile(
        role="Legal Triage Specialist",
        expertise="Priority assessment, case categorization",
        prompt_prefix="You are a legal triage expert. Assess priority and categorize legal matters."
    ),
    "evidence_analysis": SpecialistProfile(
        role="Evidence Analysis Specialist",
        expertise="Evidence evaluation, chain of custody, admissibility",
        prompt_prefix="You are an evidence analysis expert. Evaluate evidence quality and admissibility."
    ),
}


class BaseCapabilityHandler(ABC):
    """Base class for all capability handlers."""

    capability: str = ""

    @abstractmethod
    async def execute(self, ctx: StepContext) -> Dict[str, Any]:
        """Run the step and return its output.

        Raises on failure; the orchestrator records the error as the step outcome.
        """
        pass


class InferenceSpecialistHandler(BaseCapabilityHandler):
    """AI-backed specialist driven by a SpecialistProfile."""

    def __init__(
        self,
        capability: str,
        profile: SpecialistProfile,
        inference: IInferenceCapability,
        model: str,
        max_output_tokens: int = 512
    ):
        self.capability = capability
        self.profile = profile
        self.inference = inference
        self.model = model
        self.max_output_tokens = max_output_tokens

    def build_prompt(self, ctx: StepContext) -> str:
        prompt = self.profile.prompt_prefix + "\n\n"
        prompt += f"TASK: {ctx.step.description or ctx.step.name}\n\n"
        prompt += f"TASK DATA:\n{json.dumps(ctx.context, indent=2, default=str)}\n\n"

        if ctx.previous_results:
            prompt += f"PREVIOUS RESULTS:\n{json.dumps(ctx.previous_results, indent=2, default=str)}\n\n"

        prompt += (
            "Please provide a detailed analysis and recommendations based on your "
            f"expertise as a {self.profile.role}."
        )
        return prompt

    async def execute(self, ctx: StepContext) -> Dict[str, Any]:
        response = await self.inference.infer(InferenceRequest(
            messages=[{"role": "user", "content": self.build_prompt(ctx)}],
            model=self.model,
            max_output_tokens=self.max_output_tokens
        ))

        text = (response.text or "").strip()
        if not text:
            raise InferenceMalformed(f"{self.capability} returned an empty response")

        return {
            "analysis": text,
            "role": self.profile.role,
            "model": response.model or self.model
        }


class RecipientVerificationHandler(BaseCapabilityHandler):
    """Confirms the message has well-formed sender and recipient addresses."""

    capability = "recipient_verification"

    async def execute(self, ctx: StepContext) -> Dict[str, Any]:
        recipient = str(ctx.context.get("recipient") or "").strip()
        sender = str(ctx.context.get("sender") or "").strip()

        problems: List[str] = []
        if not _ADDRESS_RE.match(recipient):
            problems.append(f"invalid recipient address {recipient!r}")
        if not _ADDRESS_RE.match(sender):
            problems.append(f"invalid sender address {sender!r}")
        if problems:
            raise CorruptInput("Recipient identity could not be confirmed: " + "; ".join(problems))

        return {
            "verified": True,
            "recipient": recipient.lower(),
            "sender": sender.lower(),
            "case_id": detect_case_id(recipient)
        }


class AttachmentInventoryHandler(BaseCapabilityHandler):
    """Summarizes attachment descriptors."""

    capability = "attachment_inventory"

    async def execute(self, ctx: StepContext) -> Dict[str, Any]:
        attachments = ctx.context.get("attachments") or []
        media_types: Dict[str, int] = {}
        total_size = 0
        names: List[str] = []

        for attachment in attachments:
            if not isinstance(attachment, dict):
                continue
            names.append(str(attachment.get("name", "unnamed")))
            size = attachment.get("size") or 0
            total_size += size if isinstance(size, int) and size > 0 else 0
            media_type = str(attachment.get("media_type", "application/octet-stream"))
            media_types[media_type] = media_types.get(media_type, 0) + 1

        return {
            "count": len(names),
            "names": names,
            "total_size": total_size,
            "media_types": media_types
        }


def specialist_capabilities() -> List[str]:
    return sorted(SPECIALIST_PROFILES)


def get_profile(capability: str) -> Optional[SpecialistProfile]:
    return SPECIALIST_PROFILES.get(capability)
