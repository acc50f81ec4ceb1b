"""Tests for the VAPID web push client."""

from __future__ import annotations

from unittest.mock import MagicMock, patch

import pytest
from pywebpush import WebPushException

from gloria_service.infra.push import PushDeliveryError, PushNotConfiguredError, PushSubscriptionGoneError
from gloria_service.infra.push.client import PushTarget, WebPushClient, generate_vapid_keys

TARGET = PushTarget(endpoint="https://push.example.net/send/abc", p256dh="p256dh-key", auth="auth-secret")


@pytest.fixture
def client() -> WebPushClient:
    keys = generate_vapid_keys()
    return WebPushClient(
        vapid_public_key=keys.public_key,
        vapid_private_key=keys.private_key,
        vapid_subject="mailto:admin@ypkgloria.org",
        ttl=600,
    )


class TestWebPushClient:
    async def test_send_passes_subscription_and_claims(self, client: WebPushClient) -> None:
        with patch("gloria_service.infra.push.client.webpush") as webpush:
            await client.send(TARGET, {"notification": {"title": "Hi"}})

        kwargs = webpush.call_args.kwargs
        assert kwargs["subscription_info"] == {
            "endpoint": TARGET.endpoint,
            "keys": {"p256dh": "p256dh-key", "auth": "auth-secret"},
        }
        assert kwargs["data"] == '{"notification": {"title": "Hi"}}'
        assert kwargs["vapid_claims"] == {"sub": "mailto:admin@ypkgloria.org"}
        assert kwargs["ttl"] == 600

    @pytest.mark.parametrize("status_code", [404, 410])
    async def test_gone_subscription(self, client: WebPushClient, status_code: int) -> None:
        error = WebPushException("gone", response=MagicMock(status_code=status_code))

        with (
            patch("gloria_service.infra.push.client.webpush", side_effect=error),
            pytest.raises(PushSubscriptionGoneError) as exc_info,
        ):
            await client.send(TARGET, "ping")

        assert exc_info.value.status_code == status_code
        assert exc_info.value.permanent is True

    async def test_server_error_is_transient(self, client: WebPushClient) -> None:
        error = WebPushException("boom", response=MagicMock(status_code=500))

        with (
            patch("gloria_service.infra.push.client.webpush", side_effect=error),
            pytest.raises(PushDeliveryError) as exc_info,
        ):
            await client.send(TARGET, "ping")

        assert not isinstance(exc_info.value, PushSubscriptionGoneError)
        assert exc_info.value.status_code == 500

    async def test_network_error_is_wrapped(self, client: WebPushClient) -> None:
        with (
            patch("gloria_service.infra.push.client.webpush", side_effect=ConnectionError("reset")),
            pytest.raises(PushDeliveryError, match="reset"),
        ):
            await client.send(TARGET, "ping")

    async def test_not_configured(self) -> None:
        client = WebPushClient(vapid_public_key=None, vapid_private_key=None, vapid_subject="mailto:a@b.org")

        assert client.is_configured is False
        with pytest.raises(PushNotConfiguredError):
            await client.send(TARGET, "ping")
        assert await client.health_check() is False

    async def test_health_check_loads_key(self, client: WebPushClient) -> None:
        assert await client.health_check() is True
