"""Abstract interface for the inference capability.

Responses are free-form text expected to contain a structured payload and
must be parsed defensively by callers.
"""

from abc import ABC, abstractmethod
from typing import Dict, List, Optional

from pydantic import BaseModel, Field


class InferenceRequest(BaseModel):
    """Prompt messages plus model selection."""

    messages: List[Dict[str, str]] = Field(..., min_length=1, description="Chat messages (role, content)")
    model: str = Field(..., min_length=1)
    max_output_tokens: int = Field(default=512, ge=1)


class InferenceResponse(BaseModel):
    text: str = ""
    model: Optional[str] = None


class IInferenceCapability(ABC):
    """Abstract interface for a hosted language-model call."""

    @abstractmethod
    async def infer(self, request: InferenceRequest) -> InferenceResponse:
        """Run one inference.

        Raises:
            InferenceUnavailable: connection refused or explicit error
        """
        pass
