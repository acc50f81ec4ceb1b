"""Web push channel sender (VAPID via pywebpush).

A 410/404 from the push service means the browser dropped the
subscription: it is deleted, the circuit records the failure and the message
is not queued for retry.
"""

from __future__ import annotations

from dataclasses import dataclass, field, replace
from datetime import UTC, datetime
from typing import TYPE_CHECKING, Any, ClassVar

from gloria_service.core.settings import get_push_settings
from gloria_service.features.notifications.channels.base import ChannelSender
from gloria_service.features.notifications.enums import FallbackType
from gloria_service.features.notifications.models import PushSubscription
from gloria_service.features.notifications.repository import (
    PushSubscriptionRepository,
    get_push_subscription_repository,
)
from gloria_service.features.notifications.sanitization import sanitize_json, sanitize_text, sanitize_url
from gloria_service.infra.database import get_async_session
from gloria_service.infra.push import PushSubscriptionGoneError, PushTarget, WebPushClient
from gloria_service.infra.resilience import PUSH_CIRCUIT

if TYPE_CHECKING:
    from collections.abc import Callable, Sequence
    from contextlib import AbstractAsyncContextManager

    from sqlalchemy.ext.asyncio import AsyncSession

    from gloria_service.core.settings import PushSettings
    from gloria_service.features.notifications.schemas import PushSubscriptionCreate


@dataclass
class PushOptions:
    """One browser notification. ``subscription`` is required for ``send``."""

    title: str
    body: str
    subscription: PushTarget | None = None
    icon: str | None = None
    badge: str | None = None
    data: dict[str, Any] = field(default_factory=dict)
    actions: list[dict[str, Any]] = field(default_factory=list)

    def to_payload(self) -> dict[str, Any]:
        if self.subscription is None:
            msg = "PushOptions.subscription is required"
            raise ValueError(msg)
        return {
            "subscription": self.subscription.to_subscription_info(),
            "title": self.title,
            "body": self.body,
            "icon": self.icon,
            "badge": self.badge,
            "data": self.data,
            "actions": self.actions,
        }

    @classmethod
    def from_payload(cls, payload: dict[str, Any]) -> PushOptions:
        info = payload["subscription"]
        return cls(
            title=payload["title"],
            body=payload["body"],
            subscription=PushTarget(
                endpoint=info["endpoint"],
                p256dh=info["keys"]["p256dh"],
                auth=info["keys"]["auth"],
            ),
            icon=payload.get("icon"),
            badge=payload.get("badge"),
            data=payload.get("data") or {},
            actions=payload.get("actions") or [],
        )


def _clean_icon(value: str | None) -> str | None:
    """Keep site-relative paths; absolute URLs must be http(s)."""
    if not value or value.startswith("/"):
        return value
    return sanitize_url(value) or None


def build_push_message(options: PushOptions, settings: PushSettings, now: datetime) -> dict[str, Any]:
    """Shape the JSON a service worker receives in its ``push`` event."""
    return {
        "notification": {
            "title": options.title,
            "body": options.body,
            "icon": options.icon or settings.default_icon,
            "badge": options.badge or settings.default_badge,
            "data": options.data,
            "actions": options.actions,
            "timestamp": int(now.timestamp() * 1000),
            "requireInteraction": True,
        }
    }


class PushSender(ChannelSender):
    """Deliver web push notifications and manage stored subscriptions."""

    channel: ClassVar[FallbackType] = FallbackType.PUSH
    circuit_name: ClassVar[str] = PUSH_CIRCUIT
    not_configured_reason: ClassVar[str] = "Push service not configured"

    def __init__(
        self,
        *,
        push_settings: PushSettings | None = None,
        client: WebPushClient | None = None,
        subscription_repository: PushSubscriptionRepository | None = None,
        session_factory: Callable[[], AbstractAsyncContextManager[AsyncSession]] | None = None,
        **kwargs: Any,
    ) -> None:
        super().__init__(**kwargs)
        self._push_settings = push_settings or get_push_settings()
        self._client = client or WebPushClient.from_settings(self._push_settings)
        self._subscriptions = subscription_repository or get_push_subscription_repository()
        self._session_factory = session_factory or get_async_session

        if not self._client.is_configured:
            self.logger.warning("Push service not configured: VAPID keys missing")

    @property
    def transport_ready(self) -> bool:
        return self._client.is_configured

    # ------------------------------------------------------------------
    # Raw delivery (retry queue handler)
    # ------------------------------------------------------------------

    async def deliver_payload(self, payload: dict[str, Any]) -> None:
        """Deliver one serialized message.

        Raises:
            PushSubscriptionGoneError: After deleting the dead subscription.
            PushDeliveryError: For any other delivery failure.
        """
        options = PushOptions.from_payload(payload)
        target = options.subscription
        if target is None:
            msg = "Push payload has no subscription"
            raise ValueError(msg)
        message = build_push_message(options, self._push_settings, datetime.now(UTC))
        try:
            await self._client.send(target, message, ttl=self._push_settings.ttl_seconds)
        except PushSubscriptionGoneError as e:
            await self._remove_gone_subscription(e.endpoint)
            raise

    async def _remove_gone_subscription(self, endpoint: str) -> None:
        async with self._session_factory() as session:
            removed = await self._subscriptions.delete_by_endpoint(session, endpoint)
            await session.commit()
        self.logger.info(
            "Removed expired push subscription",
            extra={"endpoint": endpoint[:60], "removed": removed},
        )

    async def probe_transport(self) -> bool:
        return await self._client.health_check()

    # ------------------------------------------------------------------
    # Public API
    # ------------------------------------------------------------------

    async def send(self, options: PushOptions) -> bool:
        """Send one notification to one subscription; failures are queued.

        Returns:
            True if delivered now. False if queued, or if the subscription is
            gone (removed, not queued).
        """
        if options.subscription is None:
            msg = "PushOptions.subscription is required"
            raise ValueError(msg)

        clean = replace(
            options,
            title=sanitize_text(options.title),
            body=sanitize_text(options.body),
            icon=_clean_icon(options.icon),
            badge=_clean_icon(options.badge),
            data=sanitize_json(options.data),
            actions=sanitize_json(options.actions),
        )
        return await self._send_guarded(
            clean.to_payload(),
            recipient=options.subscription.endpoint,
            metadata={"title": clean.title, "body": clean.body},
            permanent_errors=(PushSubscriptionGoneError,),
        )

    async def send_to_user(self, session: AsyncSession, user_profile_id: str, options: PushOptions) -> dict[str, int]:
        """Send to every stored subscription of the user."""
        subscriptions = await self._subscriptions.list_for_user(session, user_profile_id)
        if not subscriptions:
            self._lazy.debug(lambda: f"no push subscriptions for {user_profile_id}")
            return {"sent": 0, "failed": 0}

        targets = [
            PushTarget(endpoint=s.endpoint, p256dh=s.p256dh, auth=s.auth) for s in subscriptions
        ]
        sent = failed = 0
        now = datetime.now(UTC)
        for target in targets:
            if await self.send(replace(options, subscription=target)):
                sent += 1
                await self._subscriptions.touch(session, target.endpoint, now)
            else:
                failed += 1
        return {"sent": sent, "failed": failed}

    async def send_bulk(self, notifications: Sequence[PushOptions]) -> dict[str, int]:
        return await self._send_in_batches(notifications, self.send)

    async def save_subscription(
        self,
        session: AsyncSession,
        user_profile_id: str,
        subscription: PushSubscriptionCreate,
    ) -> PushSubscription:
        """Store a browser subscription; an existing endpoint is re-assigned and refreshed."""
        existing = await self._subscriptions.get_by_endpoint(session, subscription.endpoint)
        if existing is not None:
            existing.user_profile_id = user_profile_id
            existing.p256dh = subscription.keys.p256dh
            existing.auth = subscription.keys.auth
            existing.user_agent = subscription.user_agent
            await session.flush()
            return existing

        record = PushSubscription(
            user_profile_id=user_profile_id,
            endpoint=subscription.endpoint,
            p256dh=subscription.keys.p256dh,
            auth=subscription.keys.auth,
            user_agent=subscription.user_agent,
        )
        record = await self._subscriptions.create(session, record)
        self.logger.info(
            "Saved push subscription",
            extra={"user_profile_id": user_profile_id, "subscription_id": str(record.id)},
        )
        return record

    async def get_user_subscriptions(self, session: AsyncSession, user_profile_id: str) -> Sequence[PushSubscription]:
        return await self._subscriptions.list_for_user(session, user_profile_id)

    async def remove_subscription(self, session: AsyncSession, endpoint: str) -> bool:
        return await self._subscriptions.delete_by_endpoint(session, endpoint)

    def get_vapid_public_key(self) -> str | None:
        return self._client.vapid_public_key


_push_sender: PushSender | None = None


def get_push_sender() -> PushSender:
    global _push_sender
    if _push_sender is None:
        _push_sender = PushSender()
    return _push_sender


def set_push_sender(sender: PushSender | None) -> None:
    global _push_sender
    _push_sender = sender
