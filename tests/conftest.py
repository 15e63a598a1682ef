"""Shared fakes and fixtures for the intake gateway test suite."""

import asyncio
import json
from typing import Callable, List, Optional, Set, Union

import pytest

from intake_gateway.lib.config import InferenceConfig, RoutingConfig, SessionConfig
from intake_gateway.lib.errors import DeliveryFailure, InferenceUnavailable
from intake_gateway.models.classification import RoutingDecision
from intake_gateway.models.message import Attachment, Message
from intake_gateway.services.interfaces.delivery import IDeliveryAdapter, ReplySpec
from intake_gateway.services.interfaces.inference import (
    IInferenceCapability,
    InferenceRequest,
    InferenceResponse,
)
from intake_gateway.services.storage import InMemoryStorageAdapter


ScriptedAnswer = Union[str, Exception, Callable[[InferenceRequest], str]]


class ScriptedInference(IInferenceCapability):
    """Inference fake answering from a script; the last entry repeats."""

    def __init__(self, *answers: ScriptedAnswer, delay: float = 0.0):
        self.answers: List[ScriptedAnswer] = list(answers) or [""]
        self.delay = delay
        self.requests: List[InferenceRequest] = []

    @property
    def calls(self) -> int:
        return len(self.requests)

    async def infer(self, request: InferenceRequest) -> InferenceResponse:
        self.requests.append(request)
        answer = self.answers[min(len(self.requests), len(self.answers)) - 1]
        if self.delay:
            await asyncio.sleep(self.delay)
        if isinstance(answer, Exception):
            raise answer
        if callable(answer):
            answer = answer(request)
        return InferenceResponse(text=answer, model=request.model)


class RecordingDeliveryAdapter(IDeliveryAdapter):
    """Delivery fake that refuses a configurable set of destinations."""

    def __init__(self, refuse: Optional[Set[str]] = None, refuse_replies: bool = False):
        self.refuse = set(refuse or ())
        self.refuse_replies = refuse_replies
        self.forwarded: List[str] = []
        self.attempted: List[str] = []
        self.replies: List[ReplySpec] = []

    async def forward(self, message: Message, destination: str, decision: RoutingDecision) -> None:
        self.attempted.append(destination)
        if destination in self.refuse:
            raise DeliveryFailure(f"{destination} refused the message")
        self.forwarded.append(destination)

    async def reply(self, response: ReplySpec) -> None:
        if self.refuse_replies:
            raise DeliveryFailure("reply channel down")
        self.replies.append(response)


def classification_json(category: str, priority: str = "NORMAL", confidence: float = 0.9,
                        reasoning: str = "test") -> str:
    return json.dumps({
        "category": category,
        "priority": priority,
        "confidence": confidence,
        "reasoning": reasoning
    })


@pytest.fixture
def routing_config():
    return RoutingConfig(budget_seconds=2.0)


@pytest.fixture
def inference_config():
    return InferenceConfig(model="primary-model", fallback_model="backup-model", timeout_seconds=0.5)


@pytest.fixture
def session_config():
    return SessionConfig(node_id="node-a", history_limit=5)


@pytest.fixture
def storage():
    return InMemoryStorageAdapter()


@pytest.fixture
def unavailable_inference():
    return ScriptedInference(InferenceUnavailable("connection refused"))


@pytest.fixture
def billing_message():
    return Message(
        sender="client@acme.com",
        recipient="billing@firm.com",
        subject="Question about my invoice",
        body="Hello, I have a question about the latest invoice and payment terms."
    )


@pytest.fixture
def case_message():
    return Message(
        sender="opposing.counsel@lawfirm.com",
        recipient="smith-v-jones@firm.com",
        subject="Discovery schedule",
        body="Please find our proposed discovery plan for the case.",
        attachments=[Attachment(name="plan.pdf", size=2048, media_type="application/pdf")]
    )


@pytest.fixture
def urgent_motion_message():
    return Message(
        sender="clerk@court.gov",
        recipient="intake@firm.com",
        subject="URGENT: Motion for Summary Judgment filed",
        body="A motion for summary judgment has been filed. Response deadline is in 10 days."
    )
