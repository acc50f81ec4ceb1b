"""Postmark email provider.

Postmark answers ``{"ErrorCode": 0, "MessageID": ...}`` on success. A
non-zero ErrorCode is a failure even when the status is 2xx.
"""

from __future__ import annotations

import base64
from typing import TYPE_CHECKING, Any

from .base import EmailDeliveryResult, ProviderCapabilities
from .http import HttpEmailProvider

if TYPE_CHECKING:
    import httpx

    from gloria_service.infra.email.config import EmailProviderConfig
    from gloria_service.infra.email.schemas import EmailMessage


class PostmarkProvider(HttpEmailProvider):
    """Postmark transactional stream, authenticated with a server token.

    Example:
        provider = PostmarkProvider(EmailProviderConfig(
            provider="postmark", api_key="server-token", from_email="noreply@ypkgloria.org",
        ))
    """

    API_BASE_URL = "https://api.postmarkapp.com"
    SEND_PATH = "/email"
    HEALTH_PATH = "/server"
    MESSAGE_STREAM = "outbound"

    def __init__(self, config: EmailProviderConfig) -> None:
        if not config.api_key:
            msg = "Postmark provider requires api_key (server token)"
            raise ValueError(msg)
        super().__init__(config)

    @property
    def provider_name(self) -> str:
        return "postmark"

    def _default_capabilities(self) -> ProviderCapabilities:
        return ProviderCapabilities(max_recipients=50, max_attachment_size_mb=10.0)

    def _auth_headers(self) -> dict[str, str]:
        return {"X-Postmark-Server-Token": self._api_key}

    def _build_payload(self, message: EmailMessage) -> dict[str, Any]:
        from_email, from_name = self._sender(message)
        payload: dict[str, Any] = {
            "From": f"{from_name} <{from_email}>" if from_name else from_email,
            "To": ",".join(message.to),
            "Subject": message.subject,
            "MessageStream": self.MESSAGE_STREAM,
            "HtmlBody": message.body_html,
            "TextBody": message.body_text,
            "Cc": ",".join(message.cc) or None,
            "Bcc": ",".join(message.bcc) or None,
            "ReplyTo": message.reply_to or self._config.reply_to,
            # Postmark takes a single tag
            "Tag": message.tags[0] if message.tags else None,
        }
        if headers := self._extra_headers(message):
            payload["Headers"] = [{"Name": name, "Value": value} for name, value in headers.items()]
        if message.metadata:
            payload["Metadata"] = {key: str(value) for key, value in message.metadata.items()}
        if message.attachments:
            payload["Attachments"] = [
                {
                    "Name": item.filename,
                    "Content": base64.b64encode(item.content).decode("ascii"),
                    "ContentType": item.content_type,
                    "ContentID": f"cid:{item.content_id}" if item.content_id else None,
                }
                for item in message.attachments
            ]
        return {key: value for key, value in payload.items() if value is not None}

    def _parse_response(self, response: httpx.Response, message: EmailMessage) -> EmailDeliveryResult:
        try:
            body = response.json()
        except ValueError:
            body = None
        if not isinstance(body, dict):
            body = {}

        error_code = body.get("ErrorCode", 0 if response.is_success else None)
        if response.is_success and error_code == 0:
            return EmailDeliveryResult.success_result(
                message_id=str(body.get("MessageID", "")),
                provider=self.provider_name,
                recipients=message.all_recipients,
                metadata={"submitted_at": body.get("SubmittedAt")},
            )
        detail = f"code {error_code}: {body.get('Message') or response.text}"
        return self._api_failure(response, message, detail, postmark_error_code=error_code)


__all__ = ["PostmarkProvider"]
