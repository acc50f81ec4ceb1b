"""Orchestrated notification send: preference check, delivery, tracking."""

from __future__ import annotations

from typing import TYPE_CHECKING

from gloria_service.core.services import BaseService
from gloria_service.features.notifications.channels import (
    EmailOptions,
    EmailSender,
    PushOptions,
    PushSender,
    get_email_sender,
    get_push_sender,
)
from gloria_service.features.notifications.enums import NotificationChannel
from gloria_service.features.notifications.metrics import notifications_sent_total
from gloria_service.features.notifications.preferences import PreferenceService, get_preference_service
from gloria_service.features.notifications.schemas import SendNotificationResponse

if TYPE_CHECKING:
    from sqlalchemy.ext.asyncio import AsyncSession

    from gloria_service.features.notifications.schemas import SendNotificationRequest


class NotificationService(BaseService):
    """Send a notification to one user on every channel their preferences allow.

    Order per call: check preferences, deliver per channel (failures go to
    the retry queue inside the senders), then count the notification in the
    user's frequency windows. A queued delivery still counts as sent.

    IN_APP and SMS are delivered by other services; they are reported as
    skipped channels.
    """

    def __init__(
        self,
        preference_service: PreferenceService | None = None,
        email_sender: EmailSender | None = None,
        push_sender: PushSender | None = None,
    ) -> None:
        super().__init__()
        self._preferences = preference_service or get_preference_service()
        self._email_sender = email_sender
        self._push_sender = push_sender

    @property
    def email_sender(self) -> EmailSender:
        if self._email_sender is None:
            self._email_sender = get_email_sender()
        return self._email_sender

    @property
    def push_sender(self) -> PushSender:
        if self._push_sender is None:
            self._push_sender = get_push_sender()
        return self._push_sender

    async def send_notification(
        self,
        session: AsyncSession,
        request: SendNotificationRequest,
    ) -> SendNotificationResponse:
        check = await self._preferences.check_preferences(
            session,
            request.user_profile_id,
            request.notification_type,
            request.priority,
        )
        if not check.should_send:
            self.logger.info(
                "Notification blocked by preferences",
                extra={
                    "user_profile_id": request.user_profile_id,
                    "notification_type": request.notification_type.value,
                    "reason": check.blocked_reason,
                },
            )
            return SendNotificationResponse(should_send=False, blocked_reason=check.blocked_reason)

        deliveries: dict[str, bool] = {}
        skipped: list[str] = []
        for channel in check.channels:
            if channel is NotificationChannel.EMAIL:
                delivered = await self._send_email(request)
            elif channel is NotificationChannel.PUSH:
                delivered = await self._send_push(session, request)
            else:
                skipped.append(channel.value)
                continue

            deliveries[channel.value] = delivered
            if delivered:
                notifications_sent_total.labels(
                    notification_type=request.notification_type.value,
                    priority=request.priority.value,
                    channel=channel.value,
                ).inc()

        tracked = await self._preferences.track_notification_sent(
            session,
            request.user_profile_id,
            request.notification_type,
        )
        self.logger.info(
            "Notification dispatched",
            extra={
                "user_profile_id": request.user_profile_id,
                "notification_type": request.notification_type.value,
                "deliveries": deliveries,
                "skipped": skipped,
            },
        )
        return SendNotificationResponse(
            should_send=True,
            deliveries=deliveries,
            skipped_channels=skipped,
            tracked=tracked,
        )

    async def _send_email(self, request: SendNotificationRequest) -> bool:
        if not request.email:
            self.logger.warning(
                "EMAIL channel allowed but no address given",
                extra={"user_profile_id": request.user_profile_id},
            )
            return False
        return await self.email_sender.send(
            EmailOptions(
                to=list(request.email),
                subject=request.title,
                text=request.message,
                html=request.html,
            )
        )

    async def _send_push(self, session: AsyncSession, request: SendNotificationRequest) -> bool:
        result = await self.push_sender.send_to_user(
            session,
            request.user_profile_id,
            PushOptions(
                title=request.title,
                body=request.message,
                data={**request.data, "type": request.notification_type.value},
                actions=list(request.actions),
            ),
        )
        return result["sent"] > 0


_notification_service: NotificationService | None = None


def get_notification_service() -> NotificationService:
    global _notification_service
    if _notification_service is None:
        _notification_service = NotificationService()
    return _notification_service
