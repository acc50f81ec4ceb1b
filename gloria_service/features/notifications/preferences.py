"""User notification preferences: evaluation, frequency tracking and management.

``check_preferences`` decides whether a notification may be delivered and on
which channels. Rules are evaluated in order and the first blocking rule wins:

1. no preference record: allowed on IN_APP
2. notifications disabled
3. active unsubscribe covering the type (or all types)
4. quiet hours, evaluated in the user's timezone
5. hourly then daily aggregate limits across every type
6. type-specific override: disabled, priority threshold, per-type daily cap
7. default channels

Frequency windows (top of hour, midnight) are truncated in UTC.
"""

from __future__ import annotations

from datetime import UTC, datetime, time, timedelta
from typing import TYPE_CHECKING
import uuid
from zoneinfo import ZoneInfo, ZoneInfoNotFoundError

from sqlalchemy.exc import IntegrityError

from gloria_service.core.exceptions import BadRequestException, NotFoundException
from gloria_service.core.services import BaseService
from gloria_service.core.settings import get_notification_settings
from gloria_service.features.notifications.enums import (
    NotificationChannel,
    NotificationType,
    Priority,
    WindowType,
)
from gloria_service.features.notifications.metrics import notifications_blocked_total
from gloria_service.features.notifications.models import (
    NotificationChannelPreference,
    NotificationPreference,
    NotificationUnsubscribe,
)
from gloria_service.features.notifications.repository import (
    FrequencyTrackingRepository,
    NotificationPreferenceRepository,
    get_frequency_tracking_repository,
    get_notification_preference_repository,
)
from gloria_service.features.notifications.schemas import PreferenceCheckResult

if TYPE_CHECKING:
    from collections.abc import Callable, Sequence

    from sqlalchemy.ext.asyncio import AsyncSession

    from gloria_service.features.notifications.schemas import (
        ChannelPreferenceUpdate,
        NotificationPreferenceUpdate,
    )


def _utc_now() -> datetime:
    return datetime.now(UTC)


def hour_window(now: datetime) -> datetime:
    """Start of the UTC hour containing ``now``."""
    return now.astimezone(UTC).replace(minute=0, second=0, microsecond=0)


def day_window(now: datetime) -> datetime:
    """UTC midnight of the day containing ``now``."""
    return now.astimezone(UTC).replace(hour=0, minute=0, second=0, microsecond=0)


def _parse_hhmm(value: str) -> time:
    hours, minutes = value.split(":", 1)
    return time(int(hours), int(minutes))


def is_in_quiet_hours(preference: NotificationPreference, now: datetime) -> bool:
    """Whether ``now`` falls inside the user's quiet hours.

    Quiet hours apply only when enabled and both bounds are set. A window whose
    end is before its start spans midnight (e.g. 22:00-08:00).
    """
    if not preference.quiet_hours_enabled:
        return False
    if not preference.quiet_hours_start or not preference.quiet_hours_end:
        return False

    try:
        zone = ZoneInfo(preference.timezone)
    except (ZoneInfoNotFoundError, ValueError):
        zone = ZoneInfo(get_notification_settings().default_timezone)

    local = now.astimezone(zone).time().replace(second=0, microsecond=0)
    start = _parse_hhmm(preference.quiet_hours_start)
    end = _parse_hhmm(preference.quiet_hours_end)

    if end < start:
        return local >= start or local < end
    return start <= local < end


def _blocked(notification_type: str, reason_code: str, reason: str) -> PreferenceCheckResult:
    notifications_blocked_total.labels(notification_type=notification_type, reason=reason_code).inc()
    return PreferenceCheckResult(should_send=False, channels=[], blocked_reason=reason)


def _as_channels(values: Sequence[str]) -> list[NotificationChannel]:
    return [NotificationChannel(v) for v in values]


class PreferenceService(BaseService):
    """Evaluate and maintain per-user notification preferences.

    Every method takes an explicit session; the caller owns the transaction.
    ``clock`` is injectable so quiet hours and frequency windows can be tested
    at fixed instants.
    """

    def __init__(
        self,
        repository: NotificationPreferenceRepository | None = None,
        tracking_repository: FrequencyTrackingRepository | None = None,
        *,
        clock: Callable[[], datetime] | None = None,
    ) -> None:
        super().__init__()
        self._repository = repository or get_notification_preference_repository()
        self._tracking = tracking_repository or get_frequency_tracking_repository()
        self._clock = clock or _utc_now

    # ------------------------------------------------------------------
    # Evaluation
    # ------------------------------------------------------------------

    async def check_preferences(
        self,
        session: AsyncSession,
        user_profile_id: str,
        notification_type: NotificationType | str,
        priority: Priority | str = Priority.MEDIUM,
    ) -> PreferenceCheckResult:
        """Decide whether a notification may be sent and on which channels.

        Args:
            session: Database session
            user_profile_id: Recipient profile
            notification_type: Requested notification type
            priority: Notification priority

        Returns:
            PreferenceCheckResult with the allowed channels, or the reason the
            notification is blocked.
        """
        notification_type = NotificationType(notification_type)
        priority = Priority(priority)
        preference = await self._repository.get_by_user(session, user_profile_id)

        if preference is None:
            return PreferenceCheckResult(should_send=True, channels=[NotificationChannel.IN_APP])

        if not preference.enabled:
            return _blocked(notification_type, "disabled", "Notifications are disabled")

        for unsubscribe in preference.active_unsubscribes():
            if unsubscribe.notification_type in (None, notification_type.value):
                return _blocked(
                    notification_type,
                    "unsubscribed",
                    "User has unsubscribed from this notification type",
                )

        now = self._clock()
        if is_in_quiet_hours(preference, now):
            return _blocked(notification_type, "quiet_hours", "Currently in quiet hours")

        if preference.max_hourly_notifications is not None:
            hourly = await self._tracking.total(
                session,
                preference_id=preference.id,
                window_type=WindowType.HOURLY,
                window_start=hour_window(now),
            )
            if hourly >= preference.max_hourly_notifications:
                return _blocked(
                    notification_type,
                    "hourly_limit",
                    f"Hourly notification limit ({preference.max_hourly_notifications}) reached",
                )

        if preference.max_daily_notifications is not None:
            daily = await self._tracking.total(
                session,
                preference_id=preference.id,
                window_type=WindowType.DAILY,
                window_start=day_window(now),
            )
            if daily >= preference.max_daily_notifications:
                return _blocked(
                    notification_type,
                    "daily_limit",
                    f"Daily notification limit ({preference.max_daily_notifications}) reached",
                )

        channel_pref = preference.channel_preference_for(notification_type.value)
        if channel_pref is not None:
            if not channel_pref.enabled:
                return _blocked(notification_type, "type_disabled", "This notification type is disabled")

            if channel_pref.priority_threshold:
                threshold = Priority(channel_pref.priority_threshold)
                if priority.is_below(threshold):
                    return _blocked(
                        notification_type,
                        "priority_threshold",
                        f"Priority {priority.value} is below threshold {threshold.value}",
                    )

            if channel_pref.max_daily_limit is not None:
                type_daily = await self._tracking.total(
                    session,
                    preference_id=preference.id,
                    window_type=WindowType.DAILY,
                    window_start=day_window(now),
                    notification_type=notification_type.value,
                )
                if type_daily >= channel_pref.max_daily_limit:
                    return _blocked(
                        notification_type,
                        "type_daily_limit",
                        f"Daily limit for {notification_type.value} ({channel_pref.max_daily_limit}) reached",
                    )

            return PreferenceCheckResult(should_send=True, channels=_as_channels(channel_pref.channels))

        return PreferenceCheckResult(should_send=True, channels=_as_channels(preference.default_channels))

    async def track_notification_sent(
        self,
        session: AsyncSession,
        user_profile_id: str,
        notification_type: NotificationType | str,
    ) -> bool:
        """Count a sent notification in the current hourly and daily windows.

        Users without a preference record get the defaults first, so every
        send counts toward later limits.

        Returns:
            True once both windows are incremented.
        """
        notification_type = NotificationType(notification_type)
        preference = await self.get_or_create_preferences(session, user_profile_id)

        now = self._clock()
        for window_type, window_start in (
            (WindowType.HOURLY, hour_window(now)),
            (WindowType.DAILY, day_window(now)),
        ):
            await self._tracking.increment(
                session,
                preference_id=preference.id,
                notification_type=notification_type.value,
                window_type=window_type,
                window_start=window_start,
            )
        return True

    # ------------------------------------------------------------------
    # Management
    # ------------------------------------------------------------------

    async def get_preferences(self, session: AsyncSession, user_profile_id: str) -> NotificationPreference | None:
        return await self._repository.get_by_user(session, user_profile_id)

    async def get_or_create_preferences(self, session: AsyncSession, user_profile_id: str) -> NotificationPreference:
        """Return the user's preferences, creating defaults on first access."""
        preference = await self._repository.get_by_user(session, user_profile_id)
        if preference is not None:
            return preference

        preference = NotificationPreference(
            user_profile_id=user_profile_id,
            enabled=True,
            quiet_hours_enabled=False,
            timezone=get_notification_settings().default_timezone,
            default_channels=[NotificationChannel.IN_APP.value],
            channel_preferences=[],
            unsubscribes=[],
        )
        try:
            async with session.begin_nested():
                session.add(preference)
        except IntegrityError:
            # Created concurrently by another request
            existing = await self._repository.get_by_user(session, user_profile_id)
            if existing is None:
                raise
            return existing

        await session.refresh(preference)
        self.logger.info(
            "Created default notification preferences",
            extra={"user_profile_id": user_profile_id, "preference_id": str(preference.id)},
        )
        return preference

    async def update_preferences(
        self,
        session: AsyncSession,
        user_profile_id: str,
        update: NotificationPreferenceUpdate,
    ) -> NotificationPreference:
        """Apply a partial update, creating the record if needed.

        Raises:
            BadRequestException: If quiet hours would be enabled without both bounds.
        """
        preference = await self.get_or_create_preferences(session, user_profile_id)
        changes = update.model_dump(exclude_unset=True, exclude={"channel_preferences"})

        quiet_enabled = changes.get("quiet_hours_enabled", preference.quiet_hours_enabled)
        quiet_start = changes.get("quiet_hours_start", preference.quiet_hours_start)
        quiet_end = changes.get("quiet_hours_end", preference.quiet_hours_end)
        if quiet_enabled and (not quiet_start or not quiet_end):
            raise BadRequestException(
                detail="Quiet hours start and end times are required when quiet hours are enabled",
                type="quiet-hours-incomplete",
            )

        for field, value in changes.items():
            if field == "default_channels" and value is not None:
                value = [str(channel) for channel in value]
            setattr(preference, field, value)

        if update.channel_preferences:
            self._apply_channel_preferences(preference, update.channel_preferences)

        await session.flush()
        await session.refresh(preference)
        self.logger.info(
            "Updated notification preferences",
            extra={"user_profile_id": user_profile_id, "fields": sorted(changes)},
        )
        return preference

    async def update_channel_preferences(
        self,
        session: AsyncSession,
        user_profile_id: str,
        channel_preferences: Sequence[ChannelPreferenceUpdate],
    ) -> NotificationPreference:
        """Upsert type-specific overrides keyed by notification type."""
        preference = await self.get_or_create_preferences(session, user_profile_id)
        self._apply_channel_preferences(preference, channel_preferences)
        await session.flush()
        await session.refresh(preference)
        return preference

    def _apply_channel_preferences(
        self,
        preference: NotificationPreference,
        updates: Sequence[ChannelPreferenceUpdate],
    ) -> None:
        for item in updates:
            values = {
                "enabled": item.enabled,
                "channels": [str(channel) for channel in item.channels],
                "priority_threshold": item.priority_threshold.value if item.priority_threshold else None,
                "max_daily_limit": item.max_daily_limit,
            }
            existing = preference.channel_preference_for(item.notification_type.value)
            if existing is None:
                preference.channel_preferences.append(
                    NotificationChannelPreference(notification_type=item.notification_type.value, **values)
                )
            else:
                for field, value in values.items():
                    setattr(existing, field, value)

    async def unsubscribe(
        self,
        session: AsyncSession,
        user_profile_id: str,
        notification_type: NotificationType | None = None,
        channel: NotificationChannel | None = None,
        reason: str | None = None,
    ) -> NotificationUnsubscribe:
        """Create an active unsubscribe record with a fresh token.

        Raises:
            BadRequestException: If an active record with the same scope exists.
        """
        preference = await self.get_or_create_preferences(session, user_profile_id)
        type_value = notification_type.value if notification_type else None
        channel_value = channel.value if channel else None

        existing = await self._repository.find_active_unsubscribe(session, preference.id, type_value, channel_value)
        if existing is not None:
            raise BadRequestException(
                detail="Already unsubscribed",
                type="already-unsubscribed",
                extra={"notification_type": type_value, "channel": channel_value},
            )

        record = NotificationUnsubscribe(
            notification_type=type_value,
            channel=channel_value,
            unsubscribe_token=str(uuid.uuid4()),
            unsubscribed_at=self._clock(),
            reason=reason,
        )
        preference.unsubscribes.append(record)
        await session.flush()

        self.logger.info(
            "User unsubscribed",
            extra={
                "user_profile_id": user_profile_id,
                "notification_type": type_value,
                "channel": channel_value,
            },
        )
        return record

    async def resubscribe(self, session: AsyncSession, token: str) -> NotificationUnsubscribe:
        """Deactivate the unsubscribe record identified by ``token``.

        Raises:
            NotFoundException: If the token is unknown.
            BadRequestException: If the record was already deactivated.
        """
        record = await self._repository.get_unsubscribe_by_token(session, token)
        if record is None:
            raise NotFoundException(
                detail="Unsubscribe token not found",
                type="unsubscribe-token-not-found",
            )
        if not record.is_active:
            raise BadRequestException(detail="Already resubscribed", type="already-resubscribed")

        record.resubscribed_at = self._clock()
        await session.flush()
        self.logger.info(
            "User resubscribed",
            extra={"unsubscribe_id": str(record.id), "notification_type": record.notification_type},
        )
        return record

    async def cleanup_old_frequency_tracking(self, session: AsyncSession, days_to_keep: int | None = None) -> int:
        """Delete tracking windows older than ``days_to_keep`` days."""
        if days_to_keep is None:
            days_to_keep = get_notification_settings().tracking_retention_days
        cutoff = self._clock() - timedelta(days=days_to_keep)
        return await self._tracking.delete_before(session, cutoff)


_preference_service: PreferenceService | None = None


def get_preference_service() -> PreferenceService:
    global _preference_service
    if _preference_service is None:
        _preference_service = PreferenceService()
    return _preference_service
