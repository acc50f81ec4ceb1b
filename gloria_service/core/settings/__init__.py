"""Modular Pydantic Settings v2 configuration.

One frozen settings model per concern, each read from environment variables
with its own prefix and exposed through an LRU-cached loader:

    from gloria_service.core.settings import get_notification_settings

    settings = get_notification_settings()
    settings.email_circuit.failure_threshold
"""

from __future__ import annotations

from .app import AppSettings
from .email import EmailSettings
from .loader import (
    clear_all_caches,
    get_app_settings,
    get_db_settings,
    get_email_settings,
    get_logging_settings,
    get_notification_settings,
    get_push_settings,
    get_rabbit_settings,
)
from .logs import LoggingSettings
from .notifications import CircuitSettings, NotificationSettings
from .postgres import PostgresSettings
from .push import PushSettings
from .rabbit import RabbitSettings

__all__ = [
    "AppSettings",
    "CircuitSettings",
    "EmailSettings",
    "LoggingSettings",
    "NotificationSettings",
    "PostgresSettings",
    "PushSettings",
    "RabbitSettings",
    "clear_all_caches",
    "get_app_settings",
    "get_db_settings",
    "get_email_settings",
    "get_logging_settings",
    "get_notification_settings",
    "get_push_settings",
    "get_rabbit_settings",
]
