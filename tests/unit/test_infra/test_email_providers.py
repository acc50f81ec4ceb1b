"""Tests for email providers and the provider factory."""

from __future__ import annotations

from unittest.mock import AsyncMock, MagicMock, patch

import httpx
import pytest

from gloria_service.infra.email import EmailAttachment, EmailMessage, EmailProviderConfig, EmailProviderFactory
from gloria_service.infra.email.providers.postmark import PostmarkProvider
from gloria_service.infra.email.providers.smtp import SMTPProvider

MESSAGE = EmailMessage(
    to=["staff@ypkgloria.org"],
    subject="Approval required",
    body_text="A leave request is waiting for your approval.",
)


def config(provider: str, **overrides: object) -> EmailProviderConfig:
    values: dict[str, object] = {"provider": provider, "from_email": "noreply@ypkgloria.org"}
    values.update(overrides)
    return EmailProviderConfig(**values)  # type: ignore[arg-type]


class TestEmailProviderFactory:
    def test_unknown_provider(self) -> None:
        factory = EmailProviderFactory()

        with pytest.raises(ValueError, match="Unknown provider type: mailgun"):
            factory.get_provider(config("mailgun"))

    def test_providers_are_cached_per_config(self) -> None:
        factory = EmailProviderFactory()

        first = factory.get_provider(config("console"))
        second = factory.get_provider(config("console"))
        other = factory.get_provider(config("console", from_email="hr@ypkgloria.org"))

        assert first is second
        assert other is not first
        assert factory.get_cache_stats()["by_type"] == {"console": 2}
        assert factory.invalidate_cache("console") == 2

    def test_lists_builtin_providers(self) -> None:
        factory = EmailProviderFactory()

        assert set(factory.list_providers()) == {"smtp", "console", "postmark", "sendgrid"}
        assert factory.unregister("sendgrid") is True
        assert factory.is_available("sendgrid") is False

    async def test_console_provider_always_succeeds(self) -> None:
        provider = EmailProviderFactory().get_provider(config("console"))

        result = await provider.send(MESSAGE)

        assert result.success is True
        assert result.message_id is not None
        assert result.message_id.startswith("console-")
        assert result.recipients_accepted == ["staff@ypkgloria.org"]


class TestPostmarkProvider:
    def test_requires_server_token(self) -> None:
        with pytest.raises(ValueError, match="server token"):
            PostmarkProvider(config("postmark"))

    async def test_success(self) -> None:
        provider = PostmarkProvider(config("postmark", api_key="token"))
        response = httpx.Response(200, json={"ErrorCode": 0, "MessageID": "pm-1", "SubmittedAt": "now"})

        with patch.object(httpx.AsyncClient, "post", new=AsyncMock(return_value=response)) as post:
            result = await provider.send(MESSAGE)

        assert result.success is True
        assert result.message_id == "pm-1"
        payload = post.call_args.kwargs["json"]
        assert payload["To"] == "staff@ypkgloria.org"
        assert payload["MessageStream"] == "outbound"
        assert post.call_args.kwargs["headers"]["X-Postmark-Server-Token"] == "token"

    async def test_error_code_is_failure(self) -> None:
        provider = PostmarkProvider(config("postmark", api_key="token"))
        response = httpx.Response(422, json={"ErrorCode": 300, "Message": "Invalid email request"})

        with patch.object(httpx.AsyncClient, "post", new=AsyncMock(return_value=response)):
            result = await provider.send(MESSAGE)

        assert result.success is False
        assert result.error_code == "INVALID_REQUEST"
        assert result.metadata["postmark_error_code"] == 300
        assert "Invalid email request" in (result.error or "")

    async def test_timeout(self) -> None:
        provider = PostmarkProvider(config("postmark", api_key="token"))

        with patch.object(httpx.AsyncClient, "post", new=AsyncMock(side_effect=httpx.ReadTimeout("slow"))):
            result = await provider.send(MESSAGE)

        assert result.success is False
        assert result.error_code == "TIMEOUT"

    async def test_recipient_limit_rejects_before_calling_api(self) -> None:
        provider = PostmarkProvider(config("postmark", api_key="token"))
        message = MESSAGE.model_copy(update={"bcc": [f"staff{i}@ypkgloria.org" for i in range(50)]})

        with patch.object(httpx.AsyncClient, "post", new=AsyncMock()) as post:
            result = await provider.send(message)

        post.assert_not_called()
        assert result.success is False
        assert result.error_code == "LIMIT_EXCEEDED"
        assert result.error == "51 recipients exceed the limit of 50"


class TestSMTPProvider:
    @pytest.fixture
    def provider(self) -> SMTPProvider:
        return SMTPProvider(
            config("smtp", smtp_host="mail.ypkgloria.org", smtp_username="notify", smtp_password="secret")
        )

    def test_mime_hides_bcc_and_keeps_alternatives(self, provider: SMTPProvider) -> None:
        message = MESSAGE.model_copy(
            update={"bcc": ["audit@ypkgloria.org"], "body_html": "<p>A leave request is waiting.</p>"}
        )

        mime = provider.build_mime(message)

        assert mime["To"] == "staff@ypkgloria.org"
        assert mime["Bcc"] is None
        assert mime.get_content_type() == "multipart/alternative"
        assert mime["Message-ID"].endswith("@ypkgloria.org>")

    def test_credentials_must_be_paired(self) -> None:
        provider = SMTPProvider(config("smtp", smtp_host="mail.ypkgloria.org", smtp_username="notify"))

        assert provider.validate_configuration() is False

    async def test_send_passes_every_recipient(self, provider: SMTPProvider) -> None:
        smtp = MagicMock()
        smtp.__aenter__ = AsyncMock(return_value=smtp)
        smtp.__aexit__ = AsyncMock(return_value=False)
        smtp.login = AsyncMock()
        smtp.send_message = AsyncMock(return_value=({"audit@ypkgloria.org": (550, "no such user")}, "OK"))
        message = MESSAGE.model_copy(update={"bcc": ["audit@ypkgloria.org"]})

        with patch("gloria_service.infra.email.providers.smtp.aiosmtplib.SMTP", return_value=smtp):
            result = await provider.send(message)

        smtp.login.assert_awaited_once_with("notify", "secret")
        assert smtp.send_message.call_args.kwargs["recipients"] == ["staff@ypkgloria.org", "audit@ypkgloria.org"]
        assert result.success is True
        assert result.recipients_accepted == ["staff@ypkgloria.org"]
        assert result.recipients_rejected == ["audit@ypkgloria.org"]

    async def test_oversized_attachment_is_rejected(self, provider: SMTPProvider) -> None:
        attachment = EmailAttachment(filename="scan.pdf", content=b"\0" * (26 * 1024 * 1024))
        message = MESSAGE.model_copy(update={"attachments": [attachment]})

        with patch("gloria_service.infra.email.providers.smtp.aiosmtplib.SMTP") as smtp:
            result = await provider.send(message)

        smtp.assert_not_called()
        assert result.error_code == "LIMIT_EXCEEDED"
        assert "exceed the limit of 25 MB" in (result.error or "")
