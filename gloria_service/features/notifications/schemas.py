"""Pydantic schemas for the notification API."""

from __future__ import annotations

from datetime import datetime
from typing import Any
from uuid import UUID
from zoneinfo import ZoneInfo, ZoneInfoNotFoundError

from pydantic import BaseModel, ConfigDict, Field, field_validator, model_validator

from gloria_service.features.notifications.enums import (
    FallbackType,
    NotificationChannel,
    NotificationType,
    Priority,
)

HHMM_PATTERN = r"^([01]\d|2[0-3]):[0-5]\d$"

# Columns that cannot be cleared; ``null`` is only accepted for limits and quiet-hour bounds
REQUIRED_PREFERENCE_FIELDS = ("enabled", "quiet_hours_enabled", "timezone", "default_channels")


# ============================================================================
# Preferences
# ============================================================================


class ChannelPreferenceUpdate(BaseModel):
    """Per-type override, upserted by notification type."""

    notification_type: NotificationType
    enabled: bool = True
    channels: list[NotificationChannel] = Field(default_factory=lambda: [NotificationChannel.IN_APP])
    priority_threshold: Priority | None = None
    max_daily_limit: int | None = Field(default=None, ge=1)


class NotificationPreferenceUpdate(BaseModel):
    """Partial update; omitted fields keep their value."""

    enabled: bool | None = None
    quiet_hours_enabled: bool | None = None
    quiet_hours_start: str | None = Field(default=None, pattern=HHMM_PATTERN, examples=["22:00"])
    quiet_hours_end: str | None = Field(default=None, pattern=HHMM_PATTERN, examples=["07:00"])
    timezone: str | None = Field(default=None, examples=["Asia/Jakarta"])
    default_channels: list[NotificationChannel] | None = None
    max_daily_notifications: int | None = Field(default=None, ge=1)
    max_hourly_notifications: int | None = Field(default=None, ge=1)
    channel_preferences: list[ChannelPreferenceUpdate] | None = None

    @field_validator("timezone")
    @classmethod
    def validate_timezone(cls, value: str | None) -> str | None:
        if value is None:
            return value
        try:
            ZoneInfo(value)
        except (ZoneInfoNotFoundError, ValueError) as e:
            msg = f"Unknown timezone: {value}"
            raise ValueError(msg) from e
        return value

    @model_validator(mode="after")
    def _reject_null_required_fields(self) -> NotificationPreferenceUpdate:
        cleared = [
            name for name in REQUIRED_PREFERENCE_FIELDS if name in self.model_fields_set and getattr(self, name) is None
        ]
        if cleared:
            msg = f"Fields cannot be null: {', '.join(cleared)}"
            raise ValueError(msg)
        return self


class ChannelPreferenceResponse(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: UUID
    notification_type: str
    enabled: bool
    channels: list[str]
    priority_threshold: str | None
    max_daily_limit: int | None


class UnsubscribeResponse(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: UUID
    notification_type: str | None
    channel: str | None
    unsubscribe_token: str
    unsubscribed_at: datetime
    resubscribed_at: datetime | None
    reason: str | None


class NotificationPreferenceResponse(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: UUID
    user_profile_id: str
    enabled: bool
    quiet_hours_enabled: bool
    quiet_hours_start: str | None
    quiet_hours_end: str | None
    timezone: str
    default_channels: list[str]
    max_daily_notifications: int | None
    max_hourly_notifications: int | None
    channel_preferences: list[ChannelPreferenceResponse] = Field(default_factory=list)
    unsubscribes: list[UnsubscribeResponse] = Field(
        default_factory=list,
        description="Active unsubscribe records",
    )
    created_at: datetime
    updated_at: datetime


class UnsubscribeRequest(BaseModel):
    notification_type: NotificationType | None = Field(default=None, description="Null unsubscribes from all types")
    channel: NotificationChannel | None = Field(default=None, description="Null unsubscribes from all channels")
    reason: str | None = Field(default=None, max_length=500)


class ResubscribeRequest(BaseModel):
    token: str = Field(min_length=1, max_length=64)


class PreferenceCheckResult(BaseModel):
    """Outcome of evaluating a user's preferences for one notification."""

    model_config = ConfigDict(frozen=True)

    should_send: bool
    channels: list[NotificationChannel] = Field(default_factory=list)
    blocked_reason: str | None = None


class CleanupResponse(BaseModel):
    deleted: int
    days_to_keep: int


# ============================================================================
# Delivery
# ============================================================================


class PushSubscriptionKeys(BaseModel):
    p256dh: str = Field(min_length=1)
    auth: str = Field(min_length=1)


class PushSubscriptionCreate(BaseModel):
    """Subscription object as produced by ``PushManager.subscribe()``."""

    endpoint: str = Field(min_length=1, max_length=2048)
    keys: PushSubscriptionKeys
    user_agent: str | None = Field(default=None, max_length=500)


class PushSubscriptionResponse(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: UUID
    endpoint: str
    user_agent: str | None
    last_used_at: datetime | None
    created_at: datetime


class PushSubscriptionDelete(BaseModel):
    endpoint: str = Field(min_length=1, max_length=2048)


class VapidPublicKeyResponse(BaseModel):
    public_key: str | None
    configured: bool


class SendNotificationRequest(BaseModel):
    """Orchestrated send: preference check, delivery per channel, tracking."""

    user_profile_id: str = Field(min_length=1, max_length=64)
    notification_type: NotificationType
    priority: Priority = Priority.MEDIUM
    title: str = Field(min_length=1, max_length=500)
    message: str = Field(min_length=1)
    html: str | None = None
    email: list[str] = Field(default_factory=list, description="Recipient addresses for the EMAIL channel")
    data: dict[str, Any] = Field(default_factory=dict)
    actions: list[dict[str, Any]] = Field(default_factory=list)


class SendNotificationResponse(BaseModel):
    should_send: bool
    blocked_reason: str | None = None
    deliveries: dict[str, bool] = Field(
        default_factory=dict,
        description="EMAIL/PUSH delivery outcome; false means queued for retry or failed",
    )
    skipped_channels: list[str] = Field(
        default_factory=list,
        description="Allowed channels this service does not deliver (IN_APP, SMS)",
    )
    tracked: bool = False


# ============================================================================
# Retry queue and circuits
# ============================================================================


class QueueStatistics(BaseModel):
    total: int
    by_type: dict[str, int]
    due: int
    exhausted: int
    oldest_entry: datetime | None
    dead_letters: int
    durable_queue: bool


class FallbackEntryResponse(BaseModel):
    id: str
    type: FallbackType
    recipient: str
    retry_count: int
    max_retries: int
    last_attempt: datetime | None
    next_attempt: datetime
    error: str | None
    created_at: datetime
    metadata: dict[str, Any]


class ProcessNowResponse(BaseModel):
    id: str
    delivered: bool


class ClearQueueResponse(BaseModel):
    cleared: int


class CircuitMetricsResponse(BaseModel):
    circuits: dict[str, dict[str, Any]]
