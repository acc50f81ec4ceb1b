"""SendGrid email provider (Mail Send API v3)."""

from __future__ import annotations

import base64
from typing import TYPE_CHECKING, Any

from .base import EmailDeliveryResult, ProviderCapabilities
from .http import HttpEmailProvider

if TYPE_CHECKING:
    import httpx

    from gloria_service.infra.email.schemas import EmailMessage

# SendGrid rejects more than ten categories per message
_MAX_CATEGORIES = 10


def _addresses(emails: list[str]) -> list[dict[str, str]]:
    return [{"email": email} for email in emails]


class SendGridProvider(HttpEmailProvider):
    """SendGrid API v3, bearer-authenticated with an ``SG.`` key."""

    API_BASE_URL = "https://api.sendgrid.com/v3"
    SEND_PATH = "/mail/send"
    HEALTH_PATH = "/user/profile"

    @property
    def provider_name(self) -> str:
        return "sendgrid"

    def _default_capabilities(self) -> ProviderCapabilities:
        return ProviderCapabilities(max_recipients=1000, max_attachment_size_mb=30.0)

    def _configuration_errors(self) -> list[str]:
        errors = super()._configuration_errors()
        if not self._api_key.startswith("SG."):
            errors.append("SendGrid API keys start with 'SG.'")
        return errors

    def _auth_headers(self) -> dict[str, str]:
        return {"Authorization": f"Bearer {self._api_key}"}

    def _build_payload(self, message: EmailMessage) -> dict[str, Any]:
        from_email, from_name = self._sender(message)
        recipients: dict[str, Any] = {"to": _addresses(message.to)}
        if message.cc:
            recipients["cc"] = _addresses(message.cc)
        if message.bcc:
            recipients["bcc"] = _addresses(message.bcc)

        sender = {"email": from_email} | ({"name": from_name} if from_name else {})
        payload: dict[str, Any] = {
            "personalizations": [recipients],
            "from": sender,
            "subject": message.subject,
            # text/plain must precede text/html
            "content": [
                {"type": mime_type, "value": body}
                for mime_type, body in (("text/plain", message.body_text), ("text/html", message.body_html))
                if body
            ],
        }
        if reply_to := message.reply_to or self._config.reply_to:
            payload["reply_to"] = {"email": reply_to}
        if message.tags:
            payload["categories"] = message.tags[:_MAX_CATEGORIES]
        if message.metadata:
            payload["custom_args"] = {key: str(value) for key, value in message.metadata.items()}
        if headers := self._extra_headers(message):
            payload["headers"] = headers
        if message.attachments:
            payload["attachments"] = [
                {
                    "content": base64.b64encode(item.content).decode("ascii"),
                    "filename": item.filename,
                    "type": item.content_type,
                    "disposition": "inline" if item.content_id else "attachment",
                    **({"content_id": item.content_id} if item.content_id else {}),
                }
                for item in message.attachments
            ]
        return payload

    def _parse_response(self, response: httpx.Response, message: EmailMessage) -> EmailDeliveryResult:
        request_id = response.headers.get("X-Request-Id")
        if response.status_code == 202:
            return EmailDeliveryResult.success_result(
                message_id=response.headers.get("X-Message-Id") or f"sg-{request_id or 'unknown'}",
                provider=self.provider_name,
                recipients=message.all_recipients,
                metadata={"request_id": request_id},
            )

        detail = response.text
        try:
            body = response.json()
        except ValueError:
            body = None
        if isinstance(body, dict) and body.get("errors"):
            detail = "; ".join(item.get("message", str(item)) for item in body["errors"])
        return self._api_failure(response, message, detail)


__all__ = ["SendGridProvider"]
