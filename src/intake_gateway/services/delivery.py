"""Delivery of routing decisions through a delivery adapter."""

import logging
from typing import Dict, Any, List, Optional

from pydantic import BaseModel, Field

from intake_gateway.lib.errors import DeliveryFailure
from intake_gateway.lib.logging_config import AuditLogger, get_audit_logger
from intake_gateway.lib.metrics import MetricsCollector, get_metrics_collector
from intake_gateway.models.classification import RoutingDecision
from intake_gateway.models.message import Message
from intake_gateway.services.interfaces.delivery import IDeliveryAdapter, ReplySpec


logger = logging.getLogger(__name__)


class DeliveryAttempt(BaseModel):
    destination: str
    ok: bool
    error: Optional[str] = None


class DeliveryReport(BaseModel):
    """What happened when the decision was handed to the delivery adapter."""

    delivered_to: Optional[str] = None
    attempts: List[DeliveryAttempt] = Field(default_factory=list)
    acknowledged: bool = False
    acknowledgement_error: Optional[str] = None

    @property
    def delivered(self) -> bool:
        return self.delivered_to is not None


class LoggingDeliveryAdapter(IDeliveryAdapter):
    """Delivery adapter that records and logs instead of transporting."""

    def __init__(self):
        self.forwarded: List[Dict[str, Any]] = []
        self.replies: List[ReplySpec] = []

    async def forward(self, message: Message, destination: str, decision: RoutingDecision) -> None:
        self.forwarded.append({
            "message_id": decision.message_id,
            "destination": destination,
            "priority": decision.priority
        })
        logger.info(f"Forwarded {decision.message_id} to {destination}")

    async def reply(self, response: ReplySpec) -> None:
        self.replies.append(response)
        logger.info(f"Replied to {response.to}: {response.subject}")


def acknowledgement_for(message: Message, decision: RoutingDecision) -> Optional[ReplySpec]:
    """Acknowledgement reply carrying the reference identifier."""
    if not message.sender:
        return None
    subject = message.subject or "your message"
    return ReplySpec(
        to=message.sender,
        subject=f"Re: {subject}",
        body=(
            "Your message has been received and routed for handling.\n\n"
            f"Reference: {decision.message_id}\n"
            f"Priority: {decision.priority}\n"
        ),
        in_reply_to=decision.message_id,
        headers={"X-Intake-Reference": decision.message_id}
    )


class DeliveryService:
    """Forwards to the primary destination, then each fallback once."""

    def __init__(
        self,
        adapter: IDeliveryAdapter,
        metrics_collector: Optional[MetricsCollector] = None,
        audit_logger: Optional[AuditLogger] = None
    ):
        self.adapter = adapter
        self.metrics = metrics_collector or get_metrics_collector()
        self.audit = audit_logger or get_audit_logger()

    async def deliver(
        self,
        message: Message,
        decision: RoutingDecision,
        acknowledge: bool = True
    ) -> DeliveryReport:
        """Never raises; failures are reported in the DeliveryReport."""
        report = DeliveryReport()

        for destination in [decision.primary_destination, *decision.fallback_destinations]:
            try:
                await self.adapter.forward(message, destination, decision)
            except Exception as e:
                error = e.message if isinstance(e, DeliveryFailure) else f"{type(e).__name__}: {e}"
                report.attempts.append(DeliveryAttempt(destination=destination, ok=False, error=error))
                self.metrics.record_delivery_failure("forward")
                self.audit.log_delivery_event(decision.message_id, "forward", destination, "error", error)
                continue

            report.attempts.append(DeliveryAttempt(destination=destination, ok=True))
            report.delivered_to = destination
            self.audit.log_delivery_event(decision.message_id, "forward", destination, "ok")
            break

        if not report.delivered:
            logger.warning(
                f"Message {decision.message_id} could not be forwarded to any destination",
                extra={"message_id": decision.message_id, "attempts": len(report.attempts)}
            )

        if acknowledge:
            reply = acknowledgement_for(message, decision)
            if reply is not None:
                try:
                    await self.adapter.reply(reply)
                    report.acknowledged = True
                    self.audit.log_delivery_event(decision.message_id, "reply", reply.to, "ok")
                except Exception as e:
                    report.acknowledgement_error = str(e)
                    self.metrics.record_delivery_failure("reply")
                    self.audit.log_delivery_event(decision.message_id, "reply", reply.to, "error", str(e))

        return report
