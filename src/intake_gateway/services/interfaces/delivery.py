"""Abstract interface for delivery/transport adapters."""

from abc import ABC, abstractmethod
from typing import Dict, Any, Optional

from pydantic import BaseModel, Field

from intake_gateway.models.classification import RoutingDecision
from intake_gateway.models.message import Message


class ReplySpec(BaseModel):
    """Acknowledgement reply sent back to the sender."""

    to: str = Field(..., min_length=1)
    subject: str
    body: str
    in_reply_to: Optional[str] = None
    headers: Dict[str, Any] = Field(default_factory=dict)


class IDeliveryAdapter(ABC):
    """Abstract interface for forwarding messages and replying to senders."""

    @abstractmethod
    async def forward(self, message: Message, destination: str, decision: RoutingDecision) -> None:
        """Forward the message to one destination.

        Raises:
            DeliveryFailure: the destination did not accept the message
        """
        pass

    @abstractmethod
    async def reply(self, response: ReplySpec) -> None:
        """Send a reply.

        Raises:
            DeliveryFailure: the reply could not be sent
        """
        pass
