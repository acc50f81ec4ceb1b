"""End-to-end tests for the HTTP API over an in-memory database."""

from __future__ import annotations

from typing import TYPE_CHECKING, Any

import pytest
from pydantic import SecretStr

from gloria_service.core.settings import PushSettings
from gloria_service.features.notifications.channels import PushSender, get_push_sender
from gloria_service.features.notifications.fallback import get_fallback_queue
from gloria_service.features.notifications.preferences import PreferenceService, get_preference_service
from gloria_service.features.notifications.service import NotificationService, get_notification_service
from gloria_service.infra.resilience import get_circuit_registry

if TYPE_CHECKING:
    from fastapi import FastAPI
    from httpx import AsyncClient

    from conftest import FakeClock, SessionFactory

    from gloria_service.core.settings import NotificationSettings
    from gloria_service.features.notifications.fallback import FallbackQueue
    from gloria_service.infra.push import PushTarget
    from gloria_service.infra.resilience import CircuitBreakerRegistry

pytestmark = pytest.mark.integration

API = "/api/v1"
USER = {"X-User-Profile-Id": "up-100"}


class StubPushClient:
    is_configured = True
    vapid_public_key = "BPublicVapidKey"

    def __init__(self) -> None:
        self.sent: list[tuple[PushTarget, dict[str, Any]]] = []

    async def send(self, target: PushTarget, payload: dict[str, Any], *, ttl: int | None = None) -> None:
        self.sent.append((target, payload))

    async def health_check(self) -> bool:
        return True


class StubEmailSender:
    def __init__(self) -> None:
        self.sent: list[Any] = []

    async def send(self, options: Any) -> bool:
        self.sent.append(options)
        return True


@pytest.fixture
def push_client() -> StubPushClient:
    return StubPushClient()


@pytest.fixture
def email_sender() -> StubEmailSender:
    return StubEmailSender()


@pytest.fixture
def pipeline(
    app: FastAPI,
    clock: FakeClock,
    circuit_registry: CircuitBreakerRegistry,
    fallback_queue: FallbackQueue,
    notification_settings: NotificationSettings,
    session_factory: SessionFactory,
    push_client: StubPushClient,
    email_sender: StubEmailSender,
) -> FastAPI:
    """Route the app's pipeline dependencies to test instances."""
    preferences = PreferenceService(clock=clock)
    push_sender = PushSender(
        push_settings=PushSettings(vapid_public_key="BPublicVapidKey", vapid_private_key=SecretStr("private")),
        client=push_client,
        session_factory=session_factory,
        circuit_registry=circuit_registry,
        fallback_queue=fallback_queue,
        settings=notification_settings,
    )
    notifications = NotificationService(
        preference_service=preferences,
        email_sender=email_sender,
        push_sender=push_sender,
    )

    app.dependency_overrides[get_preference_service] = lambda: preferences
    app.dependency_overrides[get_notification_service] = lambda: notifications
    app.dependency_overrides[get_push_sender] = lambda: push_sender
    app.dependency_overrides[get_fallback_queue] = lambda: fallback_queue
    app.dependency_overrides[get_circuit_registry] = lambda: circuit_registry
    return app


@pytest.mark.usefixtures("pipeline")
class TestPreferencesApi:
    async def test_get_creates_defaults(self, client: AsyncClient) -> None:
        response = await client.get(f"{API}/notification-preferences", headers=USER)

        assert response.status_code == 200
        body = response.json()
        assert body["user_profile_id"] == "up-100"
        assert body["enabled"] is True
        assert body["default_channels"] == ["IN_APP"]
        assert body["timezone"] == "Asia/Jakarta"

    async def test_missing_user_header_is_rejected(self, client: AsyncClient) -> None:
        response = await client.get(f"{API}/notification-preferences")

        assert response.status_code == 422
        assert response.headers["content-type"] == "application/problem+json"
        assert response.json()["type"] == "validation-error"

    async def test_update_and_check(self, client: AsyncClient) -> None:
        response = await client.put(
            f"{API}/notification-preferences",
            headers=USER,
            json={
                "default_channels": ["EMAIL", "PUSH"],
                "channel_preferences": [
                    {"notification_type": "ANNOUNCEMENT", "enabled": False},
                ],
            },
        )
        assert response.status_code == 200
        assert response.json()["default_channels"] == ["EMAIL", "PUSH"]

        allowed = await client.get(
            f"{API}/notification-preferences/check",
            headers=USER,
            params={"notification_type": "GENERAL", "priority": "HIGH"},
        )
        assert allowed.json() == {"should_send": True, "channels": ["EMAIL", "PUSH"], "blocked_reason": None}

        blocked = await client.get(
            f"{API}/notification-preferences/check",
            headers=USER,
            params={"notification_type": "ANNOUNCEMENT"},
        )
        assert blocked.json()["blocked_reason"] == "This notification type is disabled"

    async def test_incomplete_quiet_hours_is_bad_request(self, client: AsyncClient) -> None:
        response = await client.put(
            f"{API}/notification-preferences",
            headers=USER,
            json={"quiet_hours_enabled": True, "quiet_hours_start": "22:00"},
        )

        assert response.status_code == 400
        assert response.headers["content-type"] == "application/problem+json"
        problem = response.json()
        assert problem["type"] == "quiet-hours-incomplete"
        assert problem["status"] == 400
        assert problem["instance"] == f"{API}/notification-preferences"

    @pytest.mark.parametrize(
        "payload",
        [
            {"quiet_hours_start": "25:00"},
            {"timezone": "Mars/Olympus_Mons"},
            {"max_daily_notifications": 0},
            {"enabled": None},
            {"quiet_hours_enabled": None},
            {"timezone": None},
            {"default_channels": None},
        ],
    )
    async def test_invalid_fields_are_rejected(self, client: AsyncClient, payload: dict[str, Any]) -> None:
        response = await client.put(f"{API}/notification-preferences", headers=USER, json=payload)

        assert response.status_code == 422

    async def test_null_clears_limits(self, client: AsyncClient) -> None:
        await client.put(
            f"{API}/notification-preferences",
            headers=USER,
            json={"max_daily_notifications": 5, "quiet_hours_start": "22:00"},
        )

        response = await client.put(
            f"{API}/notification-preferences",
            headers=USER,
            json={"max_daily_notifications": None, "quiet_hours_start": None},
        )

        assert response.status_code == 200
        body = response.json()
        assert body["max_daily_notifications"] is None
        assert body["quiet_hours_start"] is None
        assert body["enabled"] is True

    async def test_unsubscribe_and_resubscribe(self, client: AsyncClient) -> None:
        created = await client.post(
            f"{API}/notification-preferences/unsubscribe",
            headers=USER,
            json={"notification_type": "REMINDER", "reason": "Too frequent"},
        )
        assert created.status_code == 201
        token = created.json()["unsubscribe_token"]

        duplicate = await client.post(
            f"{API}/notification-preferences/unsubscribe",
            headers=USER,
            json={"notification_type": "REMINDER"},
        )
        assert duplicate.status_code == 400
        assert duplicate.json()["type"] == "already-unsubscribed"

        preferences = await client.get(f"{API}/notification-preferences", headers=USER)
        assert [u["notification_type"] for u in preferences.json()["unsubscribes"]] == ["REMINDER"]

        restored = await client.post(f"{API}/notification-preferences/resubscribe", json={"token": token})
        assert restored.status_code == 200
        assert restored.json()["resubscribed_at"] is not None

        again = await client.post(f"{API}/notification-preferences/resubscribe", json={"token": token})
        assert again.status_code == 400

    async def test_resubscribe_unknown_token(self, client: AsyncClient) -> None:
        response = await client.post(f"{API}/notification-preferences/resubscribe", json={"token": "nope"})

        assert response.status_code == 404
        assert response.json()["type"] == "unsubscribe-token-not-found"

    async def test_admin_update(self, client: AsyncClient) -> None:
        response = await client.put(
            f"{API}/notification-preferences/admin/up-200",
            json={"max_hourly_notifications": 5},
        )

        assert response.status_code == 200
        assert response.json()["user_profile_id"] == "up-200"
        assert response.json()["max_hourly_notifications"] == 5

    async def test_cleanup(self, client: AsyncClient) -> None:
        response = await client.post(f"{API}/notification-preferences/cleanup", params={"days_to_keep": 3})

        assert response.status_code == 200
        assert response.json() == {"deleted": 0, "days_to_keep": 3}


@pytest.mark.usefixtures("pipeline")
class TestDeliveryApi:
    async def test_send_notification(
        self, client: AsyncClient, push_client: StubPushClient, email_sender: StubEmailSender
    ) -> None:
        await client.put(
            f"{API}/notification-preferences",
            headers=USER,
            json={"default_channels": ["EMAIL", "PUSH", "IN_APP"]},
        )
        await client.post(
            f"{API}/notifications/push/subscriptions",
            headers=USER,
            json={"endpoint": "https://push.example/sub-1", "keys": {"p256dh": "BKey", "auth": "secret"}},
        )

        response = await client.post(
            f"{API}/notifications/send",
            json={
                "user_profile_id": "up-100",
                "notification_type": "APPROVAL_REQUEST",
                "priority": "HIGH",
                "title": "Leave request",
                "message": "Please review the pending leave request",
                "email": ["manager@ypkgloria.org"],
            },
        )

        assert response.status_code == 200
        assert response.json() == {
            "should_send": True,
            "blocked_reason": None,
            "deliveries": {"EMAIL": True, "PUSH": True},
            "skipped_channels": ["IN_APP"],
            "tracked": True,
        }
        assert len(email_sender.sent) == 1
        assert len(push_client.sent) == 1

    async def test_push_subscription_lifecycle(self, client: AsyncClient) -> None:
        subscription = {"endpoint": "https://push.example/sub-2", "keys": {"p256dh": "BKey", "auth": "secret"}}

        created = await client.post(f"{API}/notifications/push/subscriptions", headers=USER, json=subscription)
        assert created.status_code == 201
        assert created.json()["endpoint"] == "https://push.example/sub-2"

        listed = await client.get(f"{API}/notifications/push/subscriptions", headers=USER)
        assert [s["endpoint"] for s in listed.json()] == ["https://push.example/sub-2"]

        removed = await client.request(
            "DELETE",
            f"{API}/notifications/push/subscriptions",
            headers=USER,
            json={"endpoint": "https://push.example/sub-2"},
        )
        assert removed.status_code == 204

        missing = await client.request(
            "DELETE",
            f"{API}/notifications/push/subscriptions",
            headers=USER,
            json={"endpoint": "https://push.example/sub-2"},
        )
        assert missing.status_code == 404

    async def test_vapid_public_key(self, client: AsyncClient) -> None:
        response = await client.get(f"{API}/notifications/push/vapid-public-key")

        assert response.json() == {"public_key": "BPublicVapidKey", "configured": True}


@pytest.mark.usefixtures("pipeline")
class TestOperationsApi:
    async def test_queue_listing_and_statistics(self, client: AsyncClient, fallback_queue: FallbackQueue) -> None:
        entry = await fallback_queue.store_failed_email(
            {"to": ["staff@ypkgloria.org"], "subject": "Hi", "text": "Hello"},
            "SMTP timeout",
            recipient="staff@ypkgloria.org",
        )

        listed = await client.get(f"{API}/notifications/queue")
        assert [e["id"] for e in listed.json()] == [entry.id]
        assert listed.json()[0]["error"] == "SMTP timeout"

        stats = await client.get(f"{API}/notifications/queue/statistics")
        assert stats.json()["total"] == 1
        assert stats.json()["by_type"]["EMAIL"] == 1
        assert stats.json()["durable_queue"] is False

    async def test_retry_unknown_entry(self, client: AsyncClient) -> None:
        response = await client.post(f"{API}/notifications/queue/missing/retry")

        assert response.status_code == 404
        assert response.json()["type"] == "fallback-entry-not-found"

    async def test_retry_and_clear(self, client: AsyncClient, fallback_queue: FallbackQueue) -> None:
        entry = await fallback_queue.store_failed_push(
            {
                "subscription": {"endpoint": "https://push.example/x", "keys": {"p256dh": "BKey", "auth": "a"}},
                "title": "Hi",
                "body": "There",
            },
            "503",
            recipient="https://push.example/x",
        )
        retried = await client.post(f"{API}/notifications/queue/{entry.id}/retry")
        assert retried.json() == {"id": entry.id, "delivered": True}

        await fallback_queue.store_failed_email(
            {"to": ["staff@ypkgloria.org"], "subject": "Hi", "text": "Hello"},
            "down",
            recipient="staff@ypkgloria.org",
        )
        cleared = await client.delete(f"{API}/notifications/queue")
        assert cleared.json() == {"cleared": 1}

    async def test_circuits(self, client: AsyncClient, circuit_registry: CircuitBreakerRegistry) -> None:
        await circuit_registry.get_circuit("email-service").force_open()

        listed = await client.get(f"{API}/notifications/circuits")
        circuits = listed.json()["circuits"]
        assert circuits["email-service"]["state"] == "open"
        assert circuits["push-service"]["state"] == "closed"

        reset = await client.post(f"{API}/notifications/circuits/email-service/reset")
        assert reset.json()["circuits"]["email-service"]["state"] == "closed"

        unknown = await client.post(f"{API}/notifications/circuits/sms-service/reset")
        assert unknown.status_code == 404
        assert unknown.json()["type"] == "circuit-not-found"

    async def test_health_reports_open_circuit_as_degraded(
        self, client: AsyncClient, circuit_registry: CircuitBreakerRegistry
    ) -> None:
        healthy = await client.get("/health")
        assert healthy.status_code == 200
        assert healthy.json()["status"] == "healthy"
        assert healthy.json()["checks"]["database"] == "ok"

        await circuit_registry.get_circuit("push-service").force_open()

        degraded = await client.get("/health")
        assert degraded.status_code == 200
        assert degraded.json()["status"] == "degraded"

    async def test_metrics_endpoint(self, client: AsyncClient) -> None:
        await client.get("/health")

        response = await client.get("/metrics")

        assert response.status_code == 200
        assert "http_requests_total" in response.text

    async def test_request_id_is_echoed(self, client: AsyncClient) -> None:
        response = await client.get("/health", headers={"X-Request-ID": "req-123"})

        assert response.headers["X-Request-ID"] == "req-123"
        assert "X-Process-Time" in response.headers
