"""Console email provider for development.

Logs emails instead of sending them. Always succeeds.
"""

from __future__ import annotations

import logging
from typing import TYPE_CHECKING
import uuid

from .base import BaseEmailProvider, EmailDeliveryResult, ProviderCapabilities

if TYPE_CHECKING:
    from gloria_service.infra.email.schemas import EmailMessage

logger = logging.getLogger(__name__)

_PREVIEW_CHARS = 500


class ConsoleProvider(BaseEmailProvider):
    """Console email provider for development."""

    @property
    def provider_name(self) -> str:
        return "console"

    def _default_capabilities(self) -> ProviderCapabilities:
        return ProviderCapabilities(max_recipients=0, max_attachment_size_mb=100.0)

    async def _do_send(self, message: EmailMessage) -> EmailDeliveryResult:
        message_id = f"console-{uuid.uuid4()}"
        from_email, from_name = self._sender(message)

        separator = "=" * 60
        output_lines = [
            "",
            separator,
            "EMAIL (Console Backend - Development Mode)",
            separator,
            f"Message-ID: {message_id}",
            f"From: {from_name} <{from_email}>" if from_name else f"From: {from_email}",
            f"To: {', '.join(message.to)}",
        ]

        if message.cc:
            output_lines.append(f"Cc: {', '.join(message.cc)}")
        if message.bcc:
            output_lines.append(f"Bcc: {', '.join(message.bcc)}")

        output_lines.extend([
            f"Subject: {message.subject}",
            f"Priority: {message.priority.value}",
        ])

        if message.attachments:
            output_lines.append(f"Attachments: {', '.join(a.filename for a in message.attachments)}")

        output_lines.append(separator)

        for label, body in (("TEXT BODY:", message.body_text), ("HTML BODY:", message.body_html)):
            if not body:
                continue
            output_lines.append(label)
            output_lines.append(body[:_PREVIEW_CHARS])
            if len(body) > _PREVIEW_CHARS:
                output_lines.append(f"... ({len(body) - _PREVIEW_CHARS} more characters)")

        output_lines.extend([separator, ""])
        logger.info("\n".join(output_lines))

        return EmailDeliveryResult.success_result(
            message_id=message_id,
            provider=self.provider_name,
            recipients=message.all_recipients,
            metadata={"mode": "development"},
        )

    async def _do_health_check(self) -> bool:
        return True


__all__ = ["ConsoleProvider"]
