"""Unit tests for forwarding and acknowledgement delivery."""

from unittest.mock import Mock

import pytest

from intake_gateway.lib.logging_config import AuditLogger
from intake_gateway.lib.metrics import MetricsCollector
from intake_gateway.models.classification import RoutingDecision
from intake_gateway.models.message import Message
from intake_gateway.services.delivery import DeliveryService, LoggingDeliveryAdapter, acknowledgement_for

from tests.conftest import RecordingDeliveryAdapter


@pytest.fixture
def decision():
    return RoutingDecision(
        message_id="msg-1",
        primary_destination="billing@example.com",
        fallback_destinations=["intake@example.com", "partners@example.com"],
        category="billing",
        priority="LOW"
    )


@pytest.fixture
def metrics():
    return Mock(spec=MetricsCollector)


@pytest.fixture
def make_service(metrics):
    def factory(adapter):
        return DeliveryService(adapter, metrics, Mock(spec=AuditLogger))
    return factory


class TestDeliveryService:
    """Primary first, then each fallback once."""

    @pytest.mark.asyncio
    async def test_primary_accepts(self, make_service, billing_message, decision):
        adapter = RecordingDeliveryAdapter()
        report = await make_service(adapter).deliver(billing_message, decision)

        assert report.delivered_to == "billing@example.com"
        assert adapter.attempted == ["billing@example.com"]
        assert report.acknowledged is True
        assert adapter.replies[0].to == "client@acme.com"

    @pytest.mark.asyncio
    async def test_falls_through_to_next_destination(self, make_service, billing_message, decision, metrics):
        adapter = RecordingDeliveryAdapter(refuse={"billing@example.com"})
        report = await make_service(adapter).deliver(billing_message, decision)

        assert report.delivered_to == "intake@example.com"
        assert [a.ok for a in report.attempts] == [False, True]
        assert report.attempts[0].error == "billing@example.com refused the message"
        metrics.record_delivery_failure.assert_called_once_with("forward")

    @pytest.mark.asyncio
    async def test_every_destination_refuses(self, make_service, billing_message, decision):
        adapter = RecordingDeliveryAdapter(
            refuse={"billing@example.com", "intake@example.com", "partners@example.com"}
        )
        report = await make_service(adapter).deliver(billing_message, decision)

        assert report.delivered is False
        assert len(report.attempts) == 3
        assert adapter.attempted == ["billing@example.com", "intake@example.com", "partners@example.com"]

    @pytest.mark.asyncio
    async def test_reply_failure_is_reported(self, make_service, billing_message, decision, metrics):
        adapter = RecordingDeliveryAdapter(refuse_replies=True)
        report = await make_service(adapter).deliver(billing_message, decision)

        assert report.delivered is True
        assert report.acknowledged is False
        assert report.acknowledgement_error == "reply channel down"
        metrics.record_delivery_failure.assert_called_once_with("reply")

    @pytest.mark.asyncio
    async def test_no_acknowledgement_requested(self, make_service, billing_message, decision):
        adapter = RecordingDeliveryAdapter()
        report = await make_service(adapter).deliver(billing_message, decision, acknowledge=False)

        assert report.acknowledged is False
        assert adapter.replies == []


class TestAcknowledgement:
    """Reply content."""

    def test_carries_reference(self, billing_message, decision):
        reply = acknowledgement_for(billing_message, decision)

        assert reply.subject == "Re: Question about my invoice"
        assert "Reference: msg-1" in reply.body
        assert reply.headers["X-Intake-Reference"] == "msg-1"
        assert reply.in_reply_to == "msg-1"

    def test_no_sender_no_reply(self, decision):
        assert acknowledgement_for(Message(subject="x"), decision) is None


class TestLoggingDeliveryAdapter:
    """Default adapter records what it would have sent."""

    @pytest.mark.asyncio
    async def test_records(self, billing_message, decision):
        adapter = LoggingDeliveryAdapter()
        await DeliveryService(adapter, Mock(spec=MetricsCollector), Mock(spec=AuditLogger)).deliver(
            billing_message, decision
        )

        assert adapter.forwarded == [{"message_id": "msg-1", "destination": "billing@example.com", "priority": "LOW"}]
        assert len(adapter.replies) == 1
