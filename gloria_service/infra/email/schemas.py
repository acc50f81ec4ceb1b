"""Email message models handed to providers."""

from __future__ import annotations

from enum import StrEnum
from typing import Any

from pydantic import BaseModel, EmailStr, Field


class EmailPriority(StrEnum):
    """Email priority levels."""

    LOW = "low"
    NORMAL = "normal"
    HIGH = "high"


class EmailAttachment(BaseModel):
    """Email attachment model.

    Example:
        attachment = EmailAttachment(
            filename="payslip.pdf",
            content=pdf_bytes,
            content_type="application/pdf",
        )
    """

    filename: str = Field(min_length=1, max_length=255, description="Attachment filename")
    content: bytes = Field(description="Attachment content as bytes")
    content_type: str = Field(default="application/octet-stream", description="MIME content type")
    content_id: str | None = Field(
        default=None,
        description="Content-ID for inline attachments (e.g., images in HTML)",
    )


class EmailMessage(BaseModel):
    """Email message ready for a provider.

    Addresses are expected to be sanitized already; the email sender drops
    invalid ones before building a message.

    Example:
        message = EmailMessage(
            to=["staff@ypkgloria.org"],
            subject="Approval required",
            body_text="A leave request is waiting for your approval.",
            body_html="<p>A leave request is waiting for your approval.</p>",
        )
    """

    to: list[EmailStr] = Field(min_length=1, description="Primary recipients")
    cc: list[EmailStr] = Field(default_factory=list, description="CC recipients")
    bcc: list[EmailStr] = Field(default_factory=list, description="BCC recipients")
    reply_to: EmailStr | None = Field(default=None, description="Reply-to address")

    from_email: EmailStr | None = Field(default=None, description="Sender email address")
    from_name: str | None = Field(default=None, max_length=100, description="Sender display name")

    subject: str = Field(min_length=1, max_length=500, description="Email subject line")
    body_text: str | None = Field(default=None, description="Plain text body")
    body_html: str | None = Field(default=None, description="HTML body")

    attachments: list[EmailAttachment] = Field(default_factory=list, description="File attachments")

    priority: EmailPriority = Field(default=EmailPriority.NORMAL, description="Email priority")
    headers: dict[str, str] = Field(default_factory=dict, description="Additional email headers")
    tags: list[str] = Field(default_factory=list, description="Tags for tracking/filtering")
    metadata: dict[str, Any] = Field(default_factory=dict, description="Custom metadata for tracking")

    def model_post_init(self, __context: Any) -> None:
        """Validate that at least one body type is provided."""
        if self.body_text is None and self.body_html is None:
            msg = "Either body_text or body_html must be provided"
            raise ValueError(msg)

    @property
    def all_recipients(self) -> list[str]:
        """Get all recipients (to, cc, bcc)."""
        return list(self.to) + list(self.cc) + list(self.bcc)
