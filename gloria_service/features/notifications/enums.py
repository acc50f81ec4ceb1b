"""Enumerations shared by the notification pipeline."""

from __future__ import annotations

from enum import StrEnum


class NotificationType(StrEnum):
    APPROVAL_REQUEST = "APPROVAL_REQUEST"
    APPROVAL_RESULT = "APPROVAL_RESULT"
    DELEGATION = "DELEGATION"
    GENERAL = "GENERAL"
    ALERT = "ALERT"
    ANNOUNCEMENT = "ANNOUNCEMENT"
    DATA_CHANGE = "DATA_CHANGE"
    KPI_REMINDER = "KPI_REMINDER"
    REMINDER = "REMINDER"
    SYSTEM_ALERT = "SYSTEM_ALERT"
    SYSTEM_UPDATE = "SYSTEM_UPDATE"
    TRAINING_INVITATION = "TRAINING_INVITATION"
    USER_ACTION = "USER_ACTION"
    WORK_ORDER_UPDATE = "WORK_ORDER_UPDATE"


class NotificationChannel(StrEnum):
    IN_APP = "IN_APP"
    EMAIL = "EMAIL"
    PUSH = "PUSH"
    SMS = "SMS"


class Priority(StrEnum):
    """Notification priority, ordered LOW < MEDIUM < HIGH < URGENT < CRITICAL."""

    LOW = "LOW"
    MEDIUM = "MEDIUM"
    HIGH = "HIGH"
    URGENT = "URGENT"
    CRITICAL = "CRITICAL"

    @property
    def rank(self) -> int:
        return _PRIORITY_ORDER.index(self)

    def is_below(self, threshold: Priority) -> bool:
        return self.rank < threshold.rank


_PRIORITY_ORDER = list(Priority)


class WindowType(StrEnum):
    HOURLY = "HOURLY"
    DAILY = "DAILY"


class FallbackType(StrEnum):
    """Channel of a queued retry unit."""

    EMAIL = "EMAIL"
    PUSH = "PUSH"
    SMS = "SMS"
