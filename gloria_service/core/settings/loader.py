"""LRU-cached settings loaders.

Settings are loaded and validated once, then cached for the lifetime of the
process. In tests, clear the cache to force a reload:

    get_notification_settings.cache_clear()
"""

from __future__ import annotations

from functools import lru_cache

from .app import AppSettings
from .email import EmailSettings
from .logs import LoggingSettings
from .notifications import NotificationSettings
from .postgres import PostgresSettings
from .push import PushSettings
from .rabbit import RabbitSettings


@lru_cache(maxsize=1)
def get_app_settings() -> AppSettings:
    return AppSettings()


@lru_cache(maxsize=1)
def get_db_settings() -> PostgresSettings:
    return PostgresSettings()


@lru_cache(maxsize=1)
def get_rabbit_settings() -> RabbitSettings:
    return RabbitSettings()


@lru_cache(maxsize=1)
def get_logging_settings() -> LoggingSettings:
    return LoggingSettings()


@lru_cache(maxsize=1)
def get_email_settings() -> EmailSettings:
    return EmailSettings()


@lru_cache(maxsize=1)
def get_push_settings() -> PushSettings:
    return PushSettings()


@lru_cache(maxsize=1)
def get_notification_settings() -> NotificationSettings:
    """Get cached notification pipeline settings.

    Returns:
        Validated and frozen NotificationSettings instance.
    """
    return NotificationSettings()


def clear_all_caches() -> None:
    """Reset every cached loader (tests and CLI reloads)."""
    for loader in (
        get_app_settings,
        get_db_settings,
        get_rabbit_settings,
        get_logging_settings,
        get_email_settings,
        get_push_settings,
        get_notification_settings,
    ):
        loader.cache_clear()
