"""HTTP inference client for OpenAI-compatible chat-completions endpoints."""

import logging
import os
from typing import Any, Dict, Optional

import httpx

from intake_gateway.lib.config import InferenceConfig
from intake_gateway.lib.errors import InferenceUnavailable
from intake_gateway.services.interfaces.inference import (
    IInferenceCapability,
    InferenceRequest,
    InferenceResponse,
)


logger = logging.getLogger(__name__)


class HttpInferenceClient(IInferenceCapability):
    """Calls {endpoint}/chat/completions.

    Transport errors and non-2xx statuses raise InferenceUnavailable. The
    body is returned as text without interpretation; timeouts are enforced
    by the caller.
    """

    def __init__(
        self,
        config: InferenceConfig,
        transport: Optional[httpx.AsyncBaseTransport] = None
    ):
        if not config.endpoint:
            raise ValueError("Inference endpoint is not configured")
        self.config = config
        self.url = config.endpoint.rstrip("/") + "/chat/completions"
        self._transport = transport
        self._client: Optional[httpx.AsyncClient] = None

    def _headers(self) -> Dict[str, str]:
        headers = {"Content-Type": "application/json"}
        api_key = os.getenv(self.config.api_key_env)
        if api_key:
            headers["Authorization"] = f"Bearer {api_key}"
        return headers

    def _get_client(self) -> httpx.AsyncClient:
        if self._client is None:
            # Generous transport timeout; the routing engine applies the real bound
            self._client = httpx.AsyncClient(
                timeout=self.config.timeout_seconds * 2,
                headers=self._headers(),
                transport=self._transport
            )
        return self._client

    async def infer(self, request: InferenceRequest) -> InferenceResponse:
        payload: Dict[str, Any] = {
            "model": request.model,
            "messages": request.messages,
            "max_tokens": request.max_output_tokens,
            "temperature": 0
        }

        try:
            response = await self._get_client().post(self.url, json=payload)
            response.raise_for_status()
        except httpx.HTTPStatusError as e:
            raise InferenceUnavailable(
                f"Inference endpoint returned HTTP {e.response.status_code}",
                {"status_code": e.response.status_code, "model": request.model}
            )
        except httpx.RequestError as e:
            raise InferenceUnavailable(
                f"Inference request failed: {type(e).__name__}: {e}",
                {"model": request.model}
            )

        try:
            data = response.json()
        except ValueError:
            # Not JSON at all: hand the raw body to the parser
            return InferenceResponse(text=response.text, model=request.model)

        model = data.get("model") if isinstance(data, dict) else None
        return InferenceResponse(
            text=completion_text(data) or response.text,
            model=model if isinstance(model, str) and model else request.model
        )

    async def aclose(self) -> None:
        if self._client is not None:
            await self._client.aclose()
            self._client = None


def _content_text(content: Any) -> str:
    if isinstance(content, str):
        return content
    if isinstance(content, list):
        # Content-part arrays: [{"type": "text", "text": "..."}, ...]
        parts = [
            part["text"] if isinstance(part, dict) and isinstance(part.get("text"), str) else part
            for part in content
        ]
        return "".join(p for p in parts if isinstance(p, str))
    return ""


def completion_text(data: Any) -> str:
    """Assistant text from a completion body, or "" when the shape is not recognized."""
    if not isinstance(data, dict):
        return ""

    choices = data.get("choices")
    if isinstance(choices, list) and choices and isinstance(choices[0], dict):
        choice = choices[0]
        message = choice.get("message")
        if isinstance(message, dict):
            text = _content_text(message.get("content"))
        else:
            text = _content_text(message)
        return text or _content_text(choice.get("text"))

    if "response" in data:
        return _content_text(data["response"]) or str(data["response"])
    return ""
