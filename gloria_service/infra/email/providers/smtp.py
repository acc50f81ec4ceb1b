"""SMTP transport (aiosmtplib).

Serves two roles: a selectable primary provider, and the direct SMTP
fallback the email sender tries when the primary provider fails. Port 465
means implicit TLS, anything else upgrades with STARTTLS when ``use_tls``.
"""

from __future__ import annotations

from email.message import EmailMessage as MimeMessage
from email.utils import formataddr, formatdate, make_msgid
import logging
import ssl
from typing import TYPE_CHECKING

import aiosmtplib

from .base import BaseEmailProvider, EmailDeliveryResult, ProviderCapabilities

if TYPE_CHECKING:
    from gloria_service.infra.email.config import EmailProviderConfig
    from gloria_service.infra.email.schemas import EmailMessage

logger = logging.getLogger(__name__)

# Most specific first: SMTPAuthenticationError and SMTPConnectError both derive from SMTPException.
_SMTP_ERROR_CODES: tuple[tuple[type[aiosmtplib.SMTPException], str, str], ...] = (
    (aiosmtplib.SMTPAuthenticationError, "AUTH_FAILED", "SMTP authentication failed"),
    (aiosmtplib.SMTPRecipientsRefused, "RECIPIENTS_REFUSED", "All recipients refused"),
    (aiosmtplib.SMTPSenderRefused, "SENDER_REFUSED", "Sender address refused"),
    (aiosmtplib.SMTPConnectError, "CONNECTION_ERROR", "SMTP connection failed"),
    (aiosmtplib.SMTPTimeoutError, "TIMEOUT", "SMTP timeout"),
    (aiosmtplib.SMTPException, "SMTP_ERROR", "SMTP error"),
)

_PRIORITY_HEADERS = {"high": "1 (Highest)", "low": "5 (Lowest)"}


class SMTPProvider(BaseEmailProvider):
    """Deliver mail over SMTP with optional authentication.

    Example:
        provider = SMTPProvider(EmailProviderConfig(
            provider="smtp",
            from_email="noreply@ypkgloria.org",
            smtp_host="mail.ypkgloria.org",
            smtp_username="notifications",
            smtp_password="...",
        ))
    """

    def __init__(self, config: EmailProviderConfig) -> None:
        super().__init__(config)
        if not config.smtp_host:
            msg = "SMTP provider requires smtp_host"
            raise ValueError(msg)
        self._host = config.smtp_host
        self._port = config.smtp_port
        self._implicit_tls = config.smtp_use_ssl or config.smtp_port == 465

    @property
    def provider_name(self) -> str:
        return "smtp"

    def _default_capabilities(self) -> ProviderCapabilities:
        return ProviderCapabilities(max_recipients=100, max_attachment_size_mb=25.0)

    def _configuration_errors(self) -> list[str]:
        errors = super()._configuration_errors()
        if bool(self._config.smtp_username) != bool(self._config.smtp_password):
            errors.append("SMTP username and password must be set together")
        return errors

    @property
    def _credentials(self) -> tuple[str, str] | None:
        if self._config.smtp_username and self._config.smtp_password:
            return self._config.smtp_username, self._config.smtp_password
        return None

    def _tls_context(self) -> ssl.SSLContext:
        context = ssl.create_default_context()
        if not self._config.validate_certs:
            context.check_hostname = False
            context.verify_mode = ssl.CERT_NONE
        return context

    def _connection(self, timeout: float) -> aiosmtplib.SMTP:
        use_tls = self._implicit_tls
        start_tls = self._config.smtp_use_tls and not use_tls
        return aiosmtplib.SMTP(
            hostname=self._host,
            port=self._port,
            use_tls=use_tls,
            start_tls=start_tls,
            tls_context=self._tls_context() if (use_tls or start_tls) else None,
            timeout=timeout,
        )

    async def _do_send(self, message: EmailMessage) -> EmailDeliveryResult:
        mime = self.build_mime(message)
        recipients = message.all_recipients

        try:
            async with self._connection(self._config.timeout) as smtp:
                if self._credentials:
                    await smtp.login(*self._credentials)
                refused, _reply = await smtp.send_message(mime, recipients=recipients)
        except aiosmtplib.SMTPException as e:
            code, label = next((c, lbl) for exc, c, lbl in _SMTP_ERROR_CODES if isinstance(e, exc))
            return EmailDeliveryResult.failure_result(
                provider=self.provider_name,
                error=f"{label}: {e}",
                error_code=code,
                recipients_rejected=recipients if code in ("AUTH_FAILED", "RECIPIENTS_REFUSED") else None,
            )

        accepted = [r for r in recipients if r not in refused]
        if refused:
            logger.warning(
                "SMTP server refused some recipients",
                extra={"refused": {addr: str(reason) for addr, reason in refused.items()}},
            )
        if not accepted:
            return EmailDeliveryResult.failure_result(
                provider=self.provider_name,
                error="All recipients refused",
                error_code="RECIPIENTS_REFUSED",
                recipients_rejected=list(refused),
            )
        return EmailDeliveryResult(
            success=True,
            message_id=mime["Message-ID"],
            provider=self.provider_name,
            recipients_accepted=accepted,
            recipients_rejected=list(refused),
            metadata={"host": self._host, "port": self._port},
        )

    async def _do_health_check(self) -> bool:
        """Open a connection and say QUIT. No mail is sent."""
        smtp = self._connection(5.0)
        try:
            await smtp.connect()
            await smtp.quit()
        except (aiosmtplib.SMTPException, OSError) as e:
            logger.debug("SMTP health check failed", extra={"host": self._host, "error": str(e)})
            return False
        return True

    def build_mime(self, message: EmailMessage) -> MimeMessage:
        """Render a message as MIME. Bcc recipients never appear in headers."""
        from_email, from_name = self._sender(message)
        mime = MimeMessage()
        mime["From"] = formataddr((from_name or "", from_email))
        mime["To"] = ", ".join(message.to)
        if message.cc:
            mime["Cc"] = ", ".join(message.cc)
        mime["Subject"] = message.subject
        mime["Date"] = formatdate(usegmt=True)
        mime["Message-ID"] = make_msgid(domain=from_email.rpartition("@")[2] or None)

        reply_to = message.reply_to or self._config.reply_to
        if reply_to:
            mime["Reply-To"] = reply_to
        if message.priority.value in _PRIORITY_HEADERS:
            mime["X-Priority"] = _PRIORITY_HEADERS[message.priority.value]
        for name, value in message.headers.items():
            mime[name] = value

        if message.body_text:
            mime.set_content(message.body_text)
            if message.body_html:
                mime.add_alternative(message.body_html, subtype="html")
        else:
            mime.set_content(message.body_html or "", subtype="html")

        for attachment in message.attachments:
            maintype, _, subtype = attachment.content_type.partition("/")
            mime.add_attachment(
                attachment.content,
                maintype=maintype or "application",
                subtype=subtype or "octet-stream",
                filename=attachment.filename,
                cid=f"<{attachment.content_id}>" if attachment.content_id else None,
            )
        return mime


__all__ = ["SMTPProvider"]
