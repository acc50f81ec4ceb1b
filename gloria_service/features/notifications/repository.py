"""Repositories for notification preferences, frequency tracking and push subscriptions."""

from __future__ import annotations

from datetime import UTC, datetime
from typing import TYPE_CHECKING

from sqlalchemy import delete, func, select
from sqlalchemy.dialects.postgresql import insert as pg_insert
from sqlalchemy.dialects.sqlite import insert as sqlite_insert

from gloria_service.core.database import generate_uuid7
from gloria_service.core.database.repository import BaseRepository
from gloria_service.features.notifications.models import (
    NotificationFrequencyTracking,
    NotificationPreference,
    NotificationUnsubscribe,
    PushSubscription,
)

if TYPE_CHECKING:
    from collections.abc import Sequence
    from uuid import UUID

    from sqlalchemy.ext.asyncio import AsyncSession

    from gloria_service.features.notifications.enums import WindowType


class NotificationPreferenceRepository(BaseRepository[NotificationPreference]):
    """Preferences with their channel overrides and unsubscribe records."""

    def __init__(self) -> None:
        super().__init__(NotificationPreference)

    async def get_by_user(self, session: AsyncSession, user_profile_id: str) -> NotificationPreference | None:
        return await self.get_by(session, NotificationPreference.user_profile_id, user_profile_id)

    async def find_active_unsubscribe(
        self,
        session: AsyncSession,
        preference_id: UUID,
        notification_type: str | None,
        channel: str | None,
    ) -> NotificationUnsubscribe | None:
        """Active record with exactly this (type, channel) scope."""
        stmt = select(NotificationUnsubscribe).where(
            NotificationUnsubscribe.preference_id == preference_id,
            NotificationUnsubscribe.resubscribed_at.is_(None),
            NotificationUnsubscribe.notification_type.is_(None)
            if notification_type is None
            else NotificationUnsubscribe.notification_type == notification_type,
            NotificationUnsubscribe.channel.is_(None)
            if channel is None
            else NotificationUnsubscribe.channel == channel,
        )
        result = await session.execute(stmt)
        return result.scalars().first()

    async def get_unsubscribe_by_token(self, session: AsyncSession, token: str) -> NotificationUnsubscribe | None:
        stmt = select(NotificationUnsubscribe).where(NotificationUnsubscribe.unsubscribe_token == token)
        result = await session.execute(stmt)
        return result.scalar_one_or_none()


class FrequencyTrackingRepository(BaseRepository[NotificationFrequencyTracking]):
    """Windowed send counters.

    Increments are single ``INSERT ... ON CONFLICT DO UPDATE`` statements so
    concurrent senders never lose a count.
    """

    def __init__(self) -> None:
        super().__init__(NotificationFrequencyTracking)

    async def increment(
        self,
        session: AsyncSession,
        *,
        preference_id: UUID,
        notification_type: str,
        window_type: WindowType,
        window_start: datetime,
    ) -> None:
        now = datetime.now(UTC)
        dialect = session.get_bind().dialect.name
        insert = pg_insert if dialect == "postgresql" else sqlite_insert
        table = NotificationFrequencyTracking.__table__

        stmt = insert(table).values(
            id=generate_uuid7(),
            preference_id=preference_id,
            notification_type=notification_type,
            window_type=window_type.value,
            window_start=window_start,
            count=1,
            created_at=now,
            updated_at=now,
        )
        stmt = stmt.on_conflict_do_update(
            index_elements=["preference_id", "notification_type", "window_type", "window_start"],
            set_={"count": table.c["count"] + 1, "updated_at": now},
        )
        await session.execute(stmt)

        self._lazy.debug(
            lambda: f"db.increment({notification_type=}, window={window_type.value}, {window_start=})"
        )

    async def total(
        self,
        session: AsyncSession,
        *,
        preference_id: UUID,
        window_type: WindowType,
        window_start: datetime,
        notification_type: str | None = None,
    ) -> int:
        """Sum of counts in one window, across all types unless one is given."""
        stmt = select(func.coalesce(func.sum(NotificationFrequencyTracking.count), 0)).where(
            NotificationFrequencyTracking.preference_id == preference_id,
            NotificationFrequencyTracking.window_type == window_type.value,
            NotificationFrequencyTracking.window_start == window_start,
        )
        if notification_type is not None:
            stmt = stmt.where(NotificationFrequencyTracking.notification_type == notification_type)
        result = await session.execute(stmt)
        return int(result.scalar_one())

    async def delete_before(self, session: AsyncSession, cutoff: datetime) -> int:
        """Delete windows that started before ``cutoff``. Returns the row count."""
        stmt = delete(NotificationFrequencyTracking).where(NotificationFrequencyTracking.window_start < cutoff)
        result = await session.execute(stmt)
        deleted = result.rowcount or 0
        self._logger.info(
            "Purged frequency tracking windows",
            extra={"cutoff": cutoff.isoformat(), "deleted": deleted, "operation": "db.delete_before"},
        )
        return deleted


class PushSubscriptionRepository(BaseRepository[PushSubscription]):
    def __init__(self) -> None:
        super().__init__(PushSubscription)

    async def get_by_endpoint(self, session: AsyncSession, endpoint: str) -> PushSubscription | None:
        return await self.get_by(session, PushSubscription.endpoint, endpoint)

    async def list_for_user(self, session: AsyncSession, user_profile_id: str) -> Sequence[PushSubscription]:
        stmt = (
            select(PushSubscription)
            .where(PushSubscription.user_profile_id == user_profile_id)
            .order_by(PushSubscription.created_at)
        )
        result = await session.execute(stmt)
        return result.scalars().all()

    async def delete_by_endpoint(self, session: AsyncSession, endpoint: str) -> bool:
        result = await session.execute(delete(PushSubscription).where(PushSubscription.endpoint == endpoint))
        return bool(result.rowcount)

    async def touch(self, session: AsyncSession, endpoint: str, when: datetime) -> None:
        subscription = await self.get_by_endpoint(session, endpoint)
        if subscription is not None:
            subscription.last_used_at = when
            await session.flush()


_preference_repository: NotificationPreferenceRepository | None = None
_tracking_repository: FrequencyTrackingRepository | None = None
_push_subscription_repository: PushSubscriptionRepository | None = None


def get_notification_preference_repository() -> NotificationPreferenceRepository:
    global _preference_repository
    if _preference_repository is None:
        _preference_repository = NotificationPreferenceRepository()
    return _preference_repository


def get_frequency_tracking_repository() -> FrequencyTrackingRepository:
    global _tracking_repository
    if _tracking_repository is None:
        _tracking_repository = FrequencyTrackingRepository()
    return _tracking_repository


def get_push_subscription_repository() -> PushSubscriptionRepository:
    global _push_subscription_repository
    if _push_subscription_repository is None:
        _push_subscription_repository = PushSubscriptionRepository()
    return _push_subscription_repository
