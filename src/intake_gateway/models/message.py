"""Inbound Message model."""

from datetime import datetime, timezone
from typing import List, Optional

from pydantic import BaseModel, Field, field_validator


class Attachment(BaseModel):
    """Descriptor of a file attached to a message. Content is never carried."""

    name: str = Field(..., min_length=1, description="File name as sent")
    size: int = Field(default=0, ge=0, description="Size in bytes")
    media_type: str = Field(default="application/octet-stream", description="MIME type")

    class Config:
        """Pydantic configuration."""
        frozen = True


class Message(BaseModel):
    """An email-like communication received at ingress.

    Messages are immutable; the pipeline attaches an identifier by copying,
    never by mutation.
    """

    sender: str = Field(default="", description="Sender address")
    recipient: str = Field(default="", description="Recipient address")
    subject: str = Field(default="", description="Subject line")
    body: str = Field(default="", description="Plain-text body")
    attachments: List[Attachment] = Field(default_factory=list, description="Attachment descriptors")
    received_at: datetime = Field(
        default_factory=lambda: datetime.now(timezone.utc),
        description="Arrival timestamp"
    )
    message_id: Optional[str] = Field(
        default=None,
        description="Caller-supplied unique identifier, assigned by the pipeline when absent"
    )

    class Config:
        """Pydantic configuration."""
        frozen = True

    @field_validator('message_id')
    @classmethod
    def validate_message_id(cls, v):
        """Blank identifiers are treated as absent."""
        if v is not None and not v.strip():
            return None
        return v

    def is_empty(self) -> bool:
        """True when there is nothing to classify."""
        return not self.subject.strip() and not self.body.strip() and not self.attachments

    def with_id(self, message_id: str) -> "Message":
        """Return a copy carrying the given identifier."""
        return self.model_copy(update={"message_id": message_id})

    def body_excerpt(self, limit: int) -> str:
        """Leading portion of the body, cut at a word boundary when possible."""
        body = self.body.strip()
        if len(body) <= limit:
            return body
        cut = body[:limit]
        space = cut.rfind(" ")
        if space > limit // 2:
            cut = cut[:space]
        return cut + "..."
