"""SQLAlchemy models for notification preferences, tracking and push subscriptions."""

from __future__ import annotations

from datetime import datetime
import json
from typing import TYPE_CHECKING, Any
from uuid import UUID

from sqlalchemy import (
    Boolean,
    DateTime,
    ForeignKey,
    Index,
    Integer,
    String,
    Text,
    TypeDecorator,
    UniqueConstraint,
    text,
)
from sqlalchemy.dialects.postgresql import ARRAY
from sqlalchemy.orm import Mapped, mapped_column, relationship

from gloria_service.core.database import Base, TimestampMixin, UUIDv7PKMixin
from gloria_service.features.notifications.enums import NotificationChannel

if TYPE_CHECKING:
    from sqlalchemy.engine import Dialect
    from sqlalchemy.sql.type_api import TypeEngine


class StringArray(TypeDecorator):
    """Cross-database type for string arrays.

    Uses native ARRAY in PostgreSQL, JSON text in SQLite.
    """

    impl = Text
    cache_ok = True

    def load_dialect_impl(self, dialect: Dialect) -> TypeEngine[Any]:
        if dialect.name == "postgresql":
            return dialect.type_descriptor(ARRAY(String(20)))
        return dialect.type_descriptor(Text())

    def process_bind_param(self, value: list[str] | None, dialect: Dialect) -> Any:
        if value is None:
            return value
        values = [str(v) for v in value]
        if dialect.name == "postgresql":
            return values
        return json.dumps(values)

    def process_result_value(self, value: Any, dialect: Dialect) -> list[str]:
        if value is None:
            return []
        if dialect.name == "postgresql":
            return list(value)
        return json.loads(value) if value else []


def _default_channels() -> list[str]:
    return [NotificationChannel.IN_APP.value]


class NotificationPreference(Base, UUIDv7PKMixin, TimestampMixin):
    """Per-user delivery preferences.

    One row per user profile, created lazily. Quiet hours are ``HH:MM``
    strings interpreted in ``timezone``.
    """

    __tablename__ = "notification_preferences"

    user_profile_id: Mapped[str] = mapped_column(
        String(64),
        nullable=False,
        unique=True,
        comment="User profile that owns these preferences",
    )
    enabled: Mapped[bool] = mapped_column(Boolean(), default=True, nullable=False)
    quiet_hours_enabled: Mapped[bool] = mapped_column(Boolean(), default=False, nullable=False)
    quiet_hours_start: Mapped[str | None] = mapped_column(String(5), nullable=True, comment="HH:MM")
    quiet_hours_end: Mapped[str | None] = mapped_column(String(5), nullable=True, comment="HH:MM")
    timezone: Mapped[str] = mapped_column(
        String(64),
        default="Asia/Jakarta",
        nullable=False,
        comment="IANA timezone for quiet hours",
    )
    default_channels: Mapped[list[str]] = mapped_column(
        StringArray(),
        default=_default_channels,
        nullable=False,
        comment="Channels used when no type-specific preference exists",
    )
    max_daily_notifications: Mapped[int | None] = mapped_column(Integer(), nullable=True)
    max_hourly_notifications: Mapped[int | None] = mapped_column(Integer(), nullable=True)

    channel_preferences: Mapped[list[NotificationChannelPreference]] = relationship(
        back_populates="preference",
        cascade="all, delete-orphan",
        lazy="selectin",
    )
    unsubscribes: Mapped[list[NotificationUnsubscribe]] = relationship(
        back_populates="preference",
        cascade="all, delete-orphan",
        lazy="selectin",
    )

    def active_unsubscribes(self) -> list[NotificationUnsubscribe]:
        return [u for u in self.unsubscribes if u.resubscribed_at is None]

    def channel_preference_for(self, notification_type: str) -> NotificationChannelPreference | None:
        for channel_pref in self.channel_preferences:
            if channel_pref.notification_type == notification_type:
                return channel_pref
        return None


class NotificationChannelPreference(Base, UUIDv7PKMixin, TimestampMixin):
    """Per notification type overrides."""

    __tablename__ = "notification_channel_preferences"

    preference_id: Mapped[UUID] = mapped_column(
        ForeignKey("notification_preferences.id", ondelete="CASCADE"),
        nullable=False,
        index=True,
    )
    notification_type: Mapped[str] = mapped_column(String(50), nullable=False)
    enabled: Mapped[bool] = mapped_column(Boolean(), default=True, nullable=False)
    channels: Mapped[list[str]] = mapped_column(
        StringArray(),
        default=_default_channels,
        nullable=False,
    )
    priority_threshold: Mapped[str | None] = mapped_column(
        String(20),
        nullable=True,
        comment="Minimum priority delivered for this type",
    )
    max_daily_limit: Mapped[int | None] = mapped_column(
        Integer(),
        nullable=True,
        comment="Daily cap for this type",
    )

    preference: Mapped[NotificationPreference] = relationship(back_populates="channel_preferences")

    __table_args__ = (
        UniqueConstraint("preference_id", "notification_type", name="uq_channel_pref_type"),
    )


class NotificationUnsubscribe(Base, UUIDv7PKMixin, TimestampMixin):
    """Unsubscribe record; active while ``resubscribed_at`` is null.

    A null ``notification_type`` covers every type, a null ``channel`` every channel.
    """

    __tablename__ = "notification_unsubscribes"

    preference_id: Mapped[UUID] = mapped_column(
        ForeignKey("notification_preferences.id", ondelete="CASCADE"),
        nullable=False,
        index=True,
    )
    notification_type: Mapped[str | None] = mapped_column(String(50), nullable=True)
    channel: Mapped[str | None] = mapped_column(String(20), nullable=True)
    unsubscribe_token: Mapped[str] = mapped_column(String(64), nullable=False, unique=True)
    unsubscribed_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False)
    resubscribed_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
    reason: Mapped[str | None] = mapped_column(Text(), nullable=True)

    preference: Mapped[NotificationPreference] = relationship(back_populates="unsubscribes")

    @property
    def is_active(self) -> bool:
        return self.resubscribed_at is None

    __table_args__ = (
        Index(
            "uq_active_unsubscribe",
            "preference_id",
            "notification_type",
            "channel",
            unique=True,
            postgresql_where=text("resubscribed_at IS NULL"),
            sqlite_where=text("resubscribed_at IS NULL"),
        ),
    )


class NotificationFrequencyTracking(Base, UUIDv7PKMixin, TimestampMixin):
    """Sent-notification counter per (preference, type, window)."""

    __tablename__ = "notification_frequency_tracking"

    preference_id: Mapped[UUID] = mapped_column(
        ForeignKey("notification_preferences.id", ondelete="CASCADE"),
        nullable=False,
    )
    notification_type: Mapped[str] = mapped_column(String(50), nullable=False)
    window_type: Mapped[str] = mapped_column(String(10), nullable=False)
    window_start: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        nullable=False,
        index=True,
        comment="UTC start of the hour or day",
    )
    count: Mapped[int] = mapped_column(Integer(), default=0, nullable=False)

    __table_args__ = (
        UniqueConstraint(
            "preference_id",
            "notification_type",
            "window_type",
            "window_start",
            name="uq_frequency_window",
        ),
    )


class PushSubscription(Base, UUIDv7PKMixin, TimestampMixin):
    """Browser push subscription supplied by the Push API."""

    __tablename__ = "push_subscriptions"

    user_profile_id: Mapped[str] = mapped_column(String(64), nullable=False, index=True)
    endpoint: Mapped[str] = mapped_column(String(2048), nullable=False, unique=True)
    p256dh: Mapped[str] = mapped_column(String(255), nullable=False)
    auth: Mapped[str] = mapped_column(String(255), nullable=False)
    user_agent: Mapped[str | None] = mapped_column(String(500), nullable=True)
    last_used_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
