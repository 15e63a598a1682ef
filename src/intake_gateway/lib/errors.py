"""
Error taxonomy for the intake gateway.

Every failure the gateway knows how to recover from has a dedicated exception
type. Callers convert these into degraded-but-valid results; only
CriticalStepFailure and CorruptInput change the shape of what is returned.
"""

from typing import Dict, Any, Optional


class IntakeError(Exception):
    """Base class for all intake gateway errors."""

    code: str = "INTAKE_ERROR"
    failure_mode: str = "error"

    def __init__(self, message: str, context: Optional[Dict[str, Any]] = None):
        super().__init__(message)
        self.message = message
        self.context = context or {}

    def to_dict(self) -> Dict[str, Any]:
        """Serialize the error for logs and step outcomes."""
        return {
            "error_type": type(self).__name__,
            "code": self.code,
            "failure_mode": self.failure_mode,
            "message": self.message,
            "context": self.context,
        }


class InferenceUnavailable(IntakeError):
    """Inference capability refused the connection or returned an explicit error."""

    code = "INFERENCE_UNAVAILABLE"
    failure_mode = "unavailable"


class InferenceTimeout(IntakeError):
    """Inference capability did not answer within the configured bound."""

    code = "INFERENCE_TIMEOUT"
    failure_mode = "timeout"


class InferenceMalformed(IntakeError):
    """Inference response could not be decoded into a classification."""

    code = "INFERENCE_MALFORMED"
    failure_mode = "malformed"


class StorageFailure(IntakeError):
    """Storage adapter read or write failed."""

    code = "STORAGE_FAILURE"
    failure_mode = "storage"


class DeliveryFailure(IntakeError):
    """Delivery adapter could not forward or reply."""

    code = "DELIVERY_FAILURE"
    failure_mode = "delivery"


class IdentityMintFailure(IntakeError):
    """Identity-minting authority failed to produce an identifier."""

    code = "IDENTITY_MINT_FAILURE"
    failure_mode = "identity"


class CapabilityResolutionFailure(IntakeError):
    """No usable handler exists for a workflow step's capability."""

    code = "CAPABILITY_UNAVAILABLE"
    failure_mode = "capability_unavailable"


class CriticalStepFailure(IntakeError):
    """A workflow step marked critical did not succeed."""

    code = "CRITICAL_STEP_FAILURE"
    failure_mode = "critical_step"


class CorruptInput(IntakeError):
    """Inbound message is missing or unreadable."""

    code = "CORRUPT_INPUT"
    failure_mode = "corrupt_input"
