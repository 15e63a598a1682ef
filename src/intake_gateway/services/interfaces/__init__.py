"""Abstract interfaces for the external collaborators."""

from .inference import IInferenceCapability, InferenceRequest, InferenceResponse
from .storage import IStorageAdapter
from .delivery import IDeliveryAdapter, ReplySpec
from .identity import IIdentityAuthority
from .queue import IQueueMessage

__all__ = [
    "IInferenceCapability",
    "InferenceRequest",
    "InferenceResponse",
    "IStorageAdapter",
    "IDeliveryAdapter",
    "ReplySpec",
    "IIdentityAuthority",
    "IQueueMessage",
]
