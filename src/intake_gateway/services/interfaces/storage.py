"""Abstract interface for the key/value storage adapter."""

from abc import ABC, abstractmethod
from typing import Optional


class IStorageAdapter(ABC):
    """Abstract interface for session state, dedupe markers and batch metrics storage."""

    @abstractmethod
    async def get(self, key: str) -> Optional[bytes]:
        """Return the stored bytes, or None when absent or expired.

        Raises:
            StorageFailure: the backend could not be read
        """
        pass

    @abstractmethod
    async def put(self, key: str, value: bytes, ttl_seconds: Optional[int] = None) -> None:
        """Store bytes under key, optionally expiring after ttl_seconds.

        Raises:
            StorageFailure: the backend could not be written
        """
        pass
