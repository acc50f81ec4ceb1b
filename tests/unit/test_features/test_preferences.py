"""Tests for preference evaluation, frequency tracking and management."""

from __future__ import annotations

from datetime import UTC, datetime
from typing import TYPE_CHECKING

import pytest
from pydantic import ValidationError

from gloria_service.core.exceptions import BadRequestException, NotFoundException
from gloria_service.features.notifications.enums import NotificationChannel, NotificationType, Priority
from gloria_service.features.notifications.models import NotificationPreference
from gloria_service.features.notifications.preferences import (
    PreferenceService,
    day_window,
    hour_window,
    is_in_quiet_hours,
)
from gloria_service.features.notifications.repository import (
    FrequencyTrackingRepository,
    NotificationPreferenceRepository,
)
from gloria_service.features.notifications.schemas import (
    ChannelPreferenceUpdate,
    NotificationPreferenceUpdate,
)

if TYPE_CHECKING:
    from sqlalchemy.ext.asyncio import AsyncSession

    from conftest import FakeClock

USER = "up-42"


@pytest.fixture
def service(clock: FakeClock) -> PreferenceService:
    return PreferenceService(
        NotificationPreferenceRepository(),
        FrequencyTrackingRepository(),
        clock=clock,
    )


async def configure(service: PreferenceService, session: AsyncSession, **fields: object) -> NotificationPreference:
    return await service.update_preferences(session, USER, NotificationPreferenceUpdate(**fields))


def quiet_preference(start: str, end: str, timezone: str = "UTC") -> NotificationPreference:
    return NotificationPreference(
        user_profile_id=USER,
        enabled=True,
        quiet_hours_enabled=True,
        quiet_hours_start=start,
        quiet_hours_end=end,
        timezone=timezone,
        default_channels=["IN_APP"],
    )


class TestWindows:
    def test_hour_window_truncates_in_utc(self) -> None:
        now = datetime(2026, 10, 18, 14, 37, 12, 5000, tzinfo=UTC)
        assert hour_window(now) == datetime(2026, 10, 18, 14, 0, tzinfo=UTC)

    def test_day_window_is_utc_midnight(self) -> None:
        now = datetime(2026, 10, 18, 23, 59, tzinfo=UTC)
        assert day_window(now) == datetime(2026, 10, 18, tzinfo=UTC)


class TestQuietHours:
    @pytest.mark.parametrize(
        ("hour", "minute", "expected"),
        [
            (23, 0, True),
            (22, 0, True),
            (0, 30, True),
            (7, 0, True),
            (7, 59, True),
            (8, 0, False),
            (12, 0, False),
            (21, 59, False),
        ],
    )
    def test_window_spanning_midnight(self, hour: int, minute: int, expected: bool) -> None:
        preference = quiet_preference("22:00", "08:00")
        now = datetime(2026, 10, 18, hour, minute, tzinfo=UTC)

        assert is_in_quiet_hours(preference, now) is expected

    def test_same_day_window(self) -> None:
        preference = quiet_preference("12:00", "13:00")

        assert is_in_quiet_hours(preference, datetime(2026, 10, 18, 12, 30, tzinfo=UTC))
        assert not is_in_quiet_hours(preference, datetime(2026, 10, 18, 13, 0, tzinfo=UTC))

    def test_evaluated_in_user_timezone(self) -> None:
        preference = quiet_preference("22:00", "06:00", timezone="Asia/Jakarta")

        # 15:30 UTC is 22:30 in Jakarta
        assert is_in_quiet_hours(preference, datetime(2026, 10, 18, 15, 30, tzinfo=UTC))
        assert not is_in_quiet_hours(preference, datetime(2026, 10, 18, 5, 0, tzinfo=UTC))

    def test_disabled_or_incomplete_window_never_applies(self) -> None:
        preference = quiet_preference("22:00", "08:00")
        preference.quiet_hours_enabled = False
        assert not is_in_quiet_hours(preference, datetime(2026, 10, 18, 23, 0, tzinfo=UTC))

        preference = quiet_preference("22:00", "08:00")
        preference.quiet_hours_end = None
        assert not is_in_quiet_hours(preference, datetime(2026, 10, 18, 23, 0, tzinfo=UTC))


class TestCheckPreferences:
    async def test_without_preferences_allows_in_app(self, service: PreferenceService, db_session: AsyncSession) -> None:
        result = await service.check_preferences(db_session, USER, NotificationType.GENERAL)

        assert result.should_send is True
        assert result.channels == [NotificationChannel.IN_APP]
        assert result.blocked_reason is None

    async def test_uses_default_channels(self, service: PreferenceService, db_session: AsyncSession) -> None:
        await configure(service, db_session, default_channels=["EMAIL", "PUSH"])

        result = await service.check_preferences(db_session, USER, NotificationType.GENERAL)

        assert result.channels == [NotificationChannel.EMAIL, NotificationChannel.PUSH]

    async def test_disabled_user_is_blocked(self, service: PreferenceService, db_session: AsyncSession) -> None:
        await configure(service, db_session, enabled=False)

        result = await service.check_preferences(db_session, USER, NotificationType.ALERT, Priority.CRITICAL)

        assert result.should_send is False
        assert result.channels == []
        assert result.blocked_reason == "Notifications are disabled"

    async def test_quiet_hours_block_and_release(
        self, service: PreferenceService, db_session: AsyncSession, clock: FakeClock
    ) -> None:
        await configure(
            service,
            db_session,
            quiet_hours_enabled=True,
            quiet_hours_start="22:00",
            quiet_hours_end="08:00",
            timezone="UTC",
        )

        for blocked_at in (datetime(2026, 10, 18, 23, 0, tzinfo=UTC), datetime(2026, 10, 19, 7, 0, tzinfo=UTC)):
            clock.set(blocked_at)
            result = await service.check_preferences(db_session, USER, NotificationType.GENERAL)
            assert result.blocked_reason == "Currently in quiet hours"

        clock.set(datetime(2026, 10, 19, 12, 0, tzinfo=UTC))
        result = await service.check_preferences(db_session, USER, NotificationType.GENERAL)
        assert result.should_send is True

    async def test_hourly_limit_counts_across_types(
        self, service: PreferenceService, db_session: AsyncSession, clock: FakeClock
    ) -> None:
        await configure(service, db_session, max_hourly_notifications=3)

        for notification_type in (NotificationType.GENERAL, NotificationType.ALERT, NotificationType.REMINDER):
            assert (await service.check_preferences(db_session, USER, notification_type)).should_send
            await service.track_notification_sent(db_session, USER, notification_type)

        result = await service.check_preferences(db_session, USER, NotificationType.DELEGATION)
        assert result.should_send is False
        assert result.blocked_reason == "Hourly notification limit (3) reached"

        clock.advance(hours=1)
        result = await service.check_preferences(db_session, USER, NotificationType.DELEGATION)
        assert result.should_send is True

    async def test_daily_limit(self, service: PreferenceService, db_session: AsyncSession, clock: FakeClock) -> None:
        await configure(service, db_session, max_daily_notifications=2)
        await service.track_notification_sent(db_session, USER, NotificationType.GENERAL)
        clock.advance(hours=3)
        await service.track_notification_sent(db_session, USER, NotificationType.GENERAL)

        result = await service.check_preferences(db_session, USER, NotificationType.GENERAL)
        assert result.blocked_reason == "Daily notification limit (2) reached"

        clock.set(datetime(2026, 10, 19, 0, 5, tzinfo=UTC))
        assert (await service.check_preferences(db_session, USER, NotificationType.GENERAL)).should_send

    async def test_type_override_disabled(self, service: PreferenceService, db_session: AsyncSession) -> None:
        await configure(
            service,
            db_session,
            channel_preferences=[ChannelPreferenceUpdate(notification_type=NotificationType.REMINDER, enabled=False)],
        )

        result = await service.check_preferences(db_session, USER, NotificationType.REMINDER)
        assert result.blocked_reason == "This notification type is disabled"

        other = await service.check_preferences(db_session, USER, NotificationType.GENERAL)
        assert other.should_send is True

    async def test_type_override_priority_threshold(self, service: PreferenceService, db_session: AsyncSession) -> None:
        await configure(
            service,
            db_session,
            channel_preferences=[
                ChannelPreferenceUpdate(
                    notification_type=NotificationType.APPROVAL_REQUEST,
                    channels=[NotificationChannel.EMAIL, NotificationChannel.IN_APP],
                    priority_threshold=Priority.HIGH,
                )
            ],
        )

        low = await service.check_preferences(db_session, USER, NotificationType.APPROVAL_REQUEST, Priority.MEDIUM)
        assert low.blocked_reason == "Priority MEDIUM is below threshold HIGH"

        high = await service.check_preferences(db_session, USER, NotificationType.APPROVAL_REQUEST, Priority.URGENT)
        assert high.should_send is True
        assert high.channels == [NotificationChannel.EMAIL, NotificationChannel.IN_APP]

    async def test_type_daily_limit(self, service: PreferenceService, db_session: AsyncSession) -> None:
        await configure(
            service,
            db_session,
            channel_preferences=[
                ChannelPreferenceUpdate(notification_type=NotificationType.KPI_REMINDER, max_daily_limit=1)
            ],
        )
        await service.track_notification_sent(db_session, USER, NotificationType.KPI_REMINDER)

        result = await service.check_preferences(db_session, USER, NotificationType.KPI_REMINDER)
        assert result.blocked_reason == "Daily limit for KPI_REMINDER (1) reached"

        assert (await service.check_preferences(db_session, USER, NotificationType.GENERAL)).should_send

    async def test_rule_order_disabled_before_quiet_hours(self, service: PreferenceService, db_session: AsyncSession) -> None:
        await configure(
            service,
            db_session,
            enabled=False,
            quiet_hours_enabled=True,
            quiet_hours_start="00:00",
            quiet_hours_end="23:59",
            timezone="UTC",
        )

        result = await service.check_preferences(db_session, USER, NotificationType.GENERAL)
        assert result.blocked_reason == "Notifications are disabled"


class TestUnsubscribe:
    async def test_unsubscribe_from_one_type(self, service: PreferenceService, db_session: AsyncSession) -> None:
        record = await service.unsubscribe(db_session, USER, notification_type=NotificationType.ANNOUNCEMENT)

        assert record.is_active
        assert record.unsubscribe_token

        blocked = await service.check_preferences(db_session, USER, NotificationType.ANNOUNCEMENT)
        assert blocked.blocked_reason == "User has unsubscribed from this notification type"
        assert (await service.check_preferences(db_session, USER, NotificationType.GENERAL)).should_send

    async def test_unsubscribe_from_everything(self, service: PreferenceService, db_session: AsyncSession) -> None:
        await service.unsubscribe(db_session, USER, reason="Too many emails")

        for notification_type in (NotificationType.GENERAL, NotificationType.ALERT):
            result = await service.check_preferences(db_session, USER, notification_type)
            assert result.should_send is False

    async def test_duplicate_scope_is_rejected(self, service: PreferenceService, db_session: AsyncSession) -> None:
        await service.unsubscribe(db_session, USER, notification_type=NotificationType.GENERAL)

        with pytest.raises(BadRequestException):
            await service.unsubscribe(db_session, USER, notification_type=NotificationType.GENERAL)

        # A different channel is a different scope
        await service.unsubscribe(
            db_session,
            USER,
            notification_type=NotificationType.GENERAL,
            channel=NotificationChannel.EMAIL,
        )

    async def test_resubscribe_restores_delivery(self, service: PreferenceService, db_session: AsyncSession) -> None:
        record = await service.unsubscribe(db_session, USER, notification_type=NotificationType.GENERAL)

        restored = await service.resubscribe(db_session, record.unsubscribe_token)

        assert restored.resubscribed_at is not None
        assert (await service.check_preferences(db_session, USER, NotificationType.GENERAL)).should_send

    async def test_resubscribe_twice_is_rejected(self, service: PreferenceService, db_session: AsyncSession) -> None:
        record = await service.unsubscribe(db_session, USER)
        await service.resubscribe(db_session, record.unsubscribe_token)

        with pytest.raises(BadRequestException):
            await service.resubscribe(db_session, record.unsubscribe_token)

    async def test_unknown_token(self, service: PreferenceService, db_session: AsyncSession) -> None:
        with pytest.raises(NotFoundException):
            await service.resubscribe(db_session, "no-such-token")

    async def test_can_unsubscribe_again_after_resubscribing(
        self, service: PreferenceService, db_session: AsyncSession
    ) -> None:
        first = await service.unsubscribe(db_session, USER, notification_type=NotificationType.GENERAL)
        await service.resubscribe(db_session, first.unsubscribe_token)

        second = await service.unsubscribe(db_session, USER, notification_type=NotificationType.GENERAL)

        assert second.unsubscribe_token != first.unsubscribe_token


class TestManagement:
    async def test_get_or_create_is_idempotent(self, service: PreferenceService, db_session: AsyncSession) -> None:
        first = await service.get_or_create_preferences(db_session, USER)
        second = await service.get_or_create_preferences(db_session, USER)

        assert first.id == second.id
        assert first.enabled is True
        assert first.default_channels == ["IN_APP"]
        assert first.timezone == "Asia/Jakarta"

    async def test_quiet_hours_need_both_bounds(self, service: PreferenceService, db_session: AsyncSession) -> None:
        with pytest.raises(BadRequestException):
            await configure(service, db_session, quiet_hours_enabled=True, quiet_hours_start="22:00")

    @pytest.mark.parametrize("field", ["enabled", "quiet_hours_enabled", "timezone", "default_channels"])
    def test_required_fields_reject_null(self, field: str) -> None:
        with pytest.raises(ValidationError, match="cannot be null"):
            NotificationPreferenceUpdate(**{field: None})

    async def test_null_clears_optional_limits(self, service: PreferenceService, db_session: AsyncSession) -> None:
        await configure(service, db_session, max_hourly_notifications=3, quiet_hours_end="07:00")

        preference = await configure(service, db_session, max_hourly_notifications=None, quiet_hours_end=None)

        assert preference.max_hourly_notifications is None
        assert preference.quiet_hours_end is None
        assert preference.enabled is True

    async def test_partial_update_keeps_other_fields(
        self, service: PreferenceService, db_session: AsyncSession
    ) -> None:
        await configure(service, db_session, max_daily_notifications=10, default_channels=["EMAIL"])

        preference = await configure(service, db_session, max_hourly_notifications=2)

        assert preference.max_daily_notifications == 10
        assert preference.max_hourly_notifications == 2
        assert preference.default_channels == ["EMAIL"]

    async def test_channel_preferences_are_upserted(
        self, service: PreferenceService, db_session: AsyncSession
    ) -> None:
        await service.update_channel_preferences(
            db_session,
            USER,
            [ChannelPreferenceUpdate(notification_type=NotificationType.ALERT, channels=[NotificationChannel.PUSH])],
        )
        preference = await service.update_channel_preferences(
            db_session,
            USER,
            [ChannelPreferenceUpdate(notification_type=NotificationType.ALERT, channels=[NotificationChannel.EMAIL])],
        )

        assert len(preference.channel_preferences) == 1
        assert preference.channel_preferences[0].channels == ["EMAIL"]

    async def test_track_without_preferences_creates_defaults(
        self, service: PreferenceService, db_session: AsyncSession
    ) -> None:
        assert await service.track_notification_sent(db_session, USER, NotificationType.GENERAL) is True

        preference = await service.get_preferences(db_session, USER)
        assert preference is not None
        assert preference.default_channels == ["IN_APP"]

        await configure(service, db_session, max_hourly_notifications=1)
        result = await service.check_preferences(db_session, USER, NotificationType.GENERAL, Priority.MEDIUM)
        assert result.blocked_reason == "Hourly notification limit (1) reached"

    async def test_cleanup_removes_old_windows(
        self, service: PreferenceService, db_session: AsyncSession, clock: FakeClock
    ) -> None:
        await service.get_or_create_preferences(db_session, USER)
        await service.track_notification_sent(db_session, USER, NotificationType.GENERAL)

        clock.advance(days=8)
        await service.track_notification_sent(db_session, USER, NotificationType.GENERAL)

        deleted = await service.cleanup_old_frequency_tracking(db_session, days_to_keep=7)

        assert deleted == 2
        assert await service.cleanup_old_frequency_tracking(db_session, days_to_keep=7) == 0
