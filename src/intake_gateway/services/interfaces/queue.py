"""Abstract interface for messages delivered by the batch queue."""

from abc import ABC, abstractmethod

from intake_gateway.models.batch import QueueItem


class IQueueMessage(ABC):
    """One message in a queue batch.

    attempts counts deliveries including the current one. Every message is
    settled exactly once per delivery with either ack() or retry().
    """

    @property
    @abstractmethod
    def id(self) -> str:
        pass

    @property
    @abstractmethod
    def body(self) -> QueueItem:
        pass

    @property
    @abstractmethod
    def attempts(self) -> int:
        pass

    @abstractmethod
    async def ack(self) -> None:
        """Remove the message from the queue."""
        pass

    @abstractmethod
    async def retry(self) -> None:
        """Return the message to the queue for another delivery."""
        pass
