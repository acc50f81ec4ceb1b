"""Email channel sender.

The configured provider (``EMAIL_PROVIDER``) is tried first; a directly
configured SMTP transport is the fallback. Every send runs through the
"email-service" circuit and failures go to the retry queue.
"""

from __future__ import annotations

import base64
from dataclasses import dataclass, field
from typing import TYPE_CHECKING, Any, ClassVar

from gloria_service.core.settings import get_email_settings
from gloria_service.features.notifications.channels.base import ChannelSender
from gloria_service.features.notifications.enums import FallbackType
from gloria_service.features.notifications.metrics import notifications_failed_total
from gloria_service.features.notifications.sanitization import (
    sanitize_email,
    sanitize_email_html,
    sanitize_text,
)
from gloria_service.infra.email import (
    EmailAttachment,
    EmailDeliveryError,
    EmailMessage,
    EmailNotConfiguredError,
    EmailProviderConfig,
    get_provider_factory,
)
from gloria_service.infra.resilience import EMAIL_CIRCUIT

if TYPE_CHECKING:
    from collections.abc import Sequence

    from gloria_service.core.settings import EmailSettings
    from gloria_service.infra.email import EmailDeliveryResult, EmailProvider, EmailProviderFactory


@dataclass
class EmailOptions:
    """One email to send.

    ``attachments`` hold raw bytes; they are base64 encoded when the options
    are serialized for the retry queue.
    """

    to: list[str]
    subject: str
    text: str | None = None
    html: str | None = None
    cc: list[str] = field(default_factory=list)
    bcc: list[str] = field(default_factory=list)
    attachments: list[EmailAttachment] = field(default_factory=list)

    def to_payload(self) -> dict[str, Any]:
        return {
            "to": self.to,
            "cc": self.cc,
            "bcc": self.bcc,
            "subject": self.subject,
            "text": self.text,
            "html": self.html,
            "attachments": [
                {
                    "filename": a.filename,
                    "content": base64.b64encode(a.content).decode("ascii"),
                    "content_type": a.content_type,
                }
                for a in self.attachments
            ],
        }

    @classmethod
    def from_payload(cls, payload: dict[str, Any]) -> EmailOptions:
        return cls(
            to=list(payload["to"]),
            cc=list(payload.get("cc") or []),
            bcc=list(payload.get("bcc") or []),
            subject=payload["subject"],
            text=payload.get("text"),
            html=payload.get("html"),
            attachments=[
                EmailAttachment(
                    filename=a["filename"],
                    content=base64.b64decode(a["content"]),
                    content_type=a.get("content_type", "application/octet-stream"),
                )
                for a in payload.get("attachments") or []
            ],
        )


def _clean_addresses(addresses: Sequence[str]) -> list[str]:
    cleaned = (sanitize_email(address) for address in addresses)
    return [address for address in cleaned if address]


class EmailSender(ChannelSender):
    """Deliver email through the configured provider with SMTP fallback.

    Example:
        sender = get_email_sender()
        ok = await sender.send(EmailOptions(to=["staff@ypkgloria.org"], subject="Hi", text="Hello"))
    """

    channel: ClassVar[FallbackType] = FallbackType.EMAIL
    circuit_name: ClassVar[str] = EMAIL_CIRCUIT
    not_configured_reason: ClassVar[str] = "Email service not configured"

    def __init__(
        self,
        *,
        email_settings: EmailSettings | None = None,
        provider_factory: EmailProviderFactory | None = None,
        **kwargs: Any,
    ) -> None:
        super().__init__(**kwargs)
        self._email_settings = email_settings or get_email_settings()
        self._factory = provider_factory or get_provider_factory()
        self._primary: EmailProvider | None = None
        self._fallback: EmailProvider | None = None
        self._configure(self._email_settings.provider)

    def _configure(self, provider_name: str | None) -> None:
        base_config = EmailProviderConfig.from_settings(self._email_settings)
        self._primary = None
        self._fallback = None

        if provider_name:
            try:
                provider = self._factory.get_provider(base_config.for_provider(provider_name))
            except ValueError as e:
                self.logger.error("Email provider unavailable", extra={"provider": provider_name, "error": str(e)})
            else:
                if provider.validate_configuration():
                    self._primary = provider
                else:
                    self.logger.error("Email provider misconfigured", extra={"provider": provider_name})

        primary_name = self._primary.provider_name if self._primary else None
        if primary_name != "smtp" and self._email_settings.smtp_configured:
            smtp = self._factory.get_provider(base_config.for_provider("smtp"))
            if smtp.validate_configuration():
                self._fallback = smtp

        if not self._transports():
            self.logger.warning("Email service not configured: no usable transport")
        else:
            self.logger.info(
                "Email sender configured",
                extra={
                    "provider": primary_name,
                    "smtp_fallback": self._fallback is not None,
                },
            )

    def _transports(self) -> list[EmailProvider]:
        return [p for p in (self._primary, self._fallback) if p is not None]

    @property
    def transport_ready(self) -> bool:
        return bool(self._transports())

    # ------------------------------------------------------------------
    # Raw delivery (retry queue handler)
    # ------------------------------------------------------------------

    async def deliver(self, message: EmailMessage) -> EmailDeliveryResult:
        """Try each transport in order.

        Raises:
            EmailNotConfiguredError: If no transport is configured.
            EmailDeliveryError: If every transport failed.
        """
        transports = self._transports()
        if not transports:
            raise EmailNotConfiguredError

        failures: list[EmailDeliveryResult] = []
        for provider in transports:
            result = await provider.send(message)
            if result.success:
                self._lazy.debug(lambda: f"email delivered via {result.provider}: {result.message_id}")
                return result
            failures.append(result)
            self.logger.warning(
                "Email transport failed",
                extra={"provider": result.provider, "error": result.error, "error_code": result.error_code},
            )

        last = failures[-1]
        raise EmailDeliveryError(
            last.error or "Email delivery failed",
            provider=last.provider,
            error_code=last.error_code,
        )

    async def deliver_payload(self, payload: dict[str, Any]) -> None:
        options = EmailOptions.from_payload(payload)
        await self.deliver(self._build_message(options))

    def _build_message(self, options: EmailOptions) -> EmailMessage:
        return EmailMessage(
            to=options.to,
            cc=options.cc,
            bcc=options.bcc,
            subject=options.subject,
            body_text=options.text,
            body_html=options.html,
            attachments=options.attachments,
            from_email=self._email_settings.from_email,
            from_name=self._email_settings.from_name,
        )

    async def probe_transport(self) -> bool:
        for provider in self._transports():
            if await provider.health_check():
                return True
        return False

    # ------------------------------------------------------------------
    # Public API
    # ------------------------------------------------------------------

    async def send(self, options: EmailOptions) -> bool:
        """Send one email; failures are queued for retry.

        Returns:
            True if delivered now. False if queued, or if no valid recipient
            remained after sanitization (not queued).
        """
        to = _clean_addresses(options.to)
        if not to:
            notifications_failed_total.labels(channel=self.channel.value, reason="invalid_recipient").inc()
            self.logger.warning("Email dropped: no valid recipient", extra={"recipients": len(options.to)})
            return False

        clean = EmailOptions(
            to=to,
            cc=_clean_addresses(options.cc),
            bcc=_clean_addresses(options.bcc),
            subject=sanitize_text(options.subject) or "(no subject)",
            text=sanitize_text(options.text) if options.text else None,
            html=sanitize_email_html(options.html) if options.html else None,
            attachments=options.attachments,
        )
        if clean.text is None and clean.html is None:
            clean.text = ""

        return await self._send_guarded(
            clean.to_payload(),
            recipient=", ".join(clean.to),
            metadata={"subject": clean.subject, "hasAttachments": bool(clean.attachments)},
        )

    async def send_bulk(self, emails: Sequence[EmailOptions]) -> dict[str, int]:
        return await self._send_in_batches(emails, self.send)

    async def send_test_email(self, to: str) -> bool:
        return await self.send(
            EmailOptions(
                to=[to],
                subject="Test email from YPK Gloria notifications",
                text="This is a test email. If you received it, email delivery is working.",
                html="<p>This is a test email. If you received it, email delivery is working.</p>",
            )
        )

    def get_provider_status(self) -> dict[str, Any]:
        return {
            "provider": self._primary.provider_name if self._primary else None,
            "smtp_fallback": self._fallback is not None,
            "configured": self.is_configured,
            "circuit_state": self._circuit.state.value,
            "available_providers": self._factory.list_providers(),
        }

    def switch_provider(self, provider_name: str) -> bool:
        """Use another registered provider as primary.

        Returns:
            False if the provider is unknown or rejects the configuration; the
            current transports are kept in that case.
        """
        if not self._factory.is_available(provider_name):
            self.logger.warning("Unknown email provider", extra={"provider": provider_name})
            return False
        config = EmailProviderConfig.from_settings(self._email_settings, provider=provider_name)
        candidate = self._factory.get_provider(config)
        if not candidate.validate_configuration():
            self.logger.warning("Email provider rejected configuration", extra={"provider": provider_name})
            return False
        self._configure(provider_name)
        self.logger.info("Switched email provider", extra={"provider": provider_name})
        return True


_email_sender: EmailSender | None = None


def get_email_sender() -> EmailSender:
    global _email_sender
    if _email_sender is None:
        _email_sender = EmailSender()
    return _email_sender


def set_email_sender(sender: EmailSender | None) -> None:
    global _email_sender
    _email_sender = sender
