"""Application lifespan management.

Startup Order:
1. Logging
2. Database (PostgreSQL) - conditional on configuration
3. Taskiq broker (durable retry queue) - conditional on RabbitMQ
4. Channel senders (register their retry handlers, own their circuits)
5. APScheduler: retry queue processor, circuit health checks,
   frequency tracking cleanup - unless disabled

Shutdown Order: Reverse of startup
"""

from __future__ import annotations

from contextlib import asynccontextmanager
import logging
from typing import TYPE_CHECKING

from gloria_service.core.settings import (
    get_app_settings,
    get_db_settings,
    get_logging_settings,
    get_notification_settings,
    get_rabbit_settings,
)
from gloria_service.infra.logging.config import setup_logging
from gloria_service.infra.logging.config import shutdown as shutdown_logging

if TYPE_CHECKING:
    from collections.abc import AsyncIterator

    from fastapi import FastAPI

logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncIterator[None]:
    """Start and stop the database, broker, senders and scheduled jobs."""
    app_settings = get_app_settings()
    db_settings = get_db_settings()
    rabbit_settings = get_rabbit_settings()
    notification_settings = get_notification_settings()

    # =========================================================================
    # STARTUP
    # =========================================================================

    setup_logging(get_logging_settings())
    logger.info(
        "Starting application",
        extra={
            "service": app_settings.service_name,
            "version": app_settings.version,
            "environment": app_settings.environment,
        },
    )

    if db_settings.is_configured:
        from gloria_service.infra.database import init_database

        await init_database()
    else:
        logger.warning("Database not configured, using the local SQLite file")

    if rabbit_settings.is_configured:
        from gloria_service.infra.tasks import start_taskiq

        try:
            await start_taskiq()
        except Exception as e:
            # Failed sends fall back to the in-memory queue
            logger.warning("Taskiq broker unavailable", extra={"error": str(e)})

    from gloria_service.features.notifications.channels import get_email_sender, get_push_sender
    from gloria_service.features.notifications.fallback import get_fallback_queue

    email_sender = get_email_sender()
    push_sender = get_push_sender()
    fallback_queue = get_fallback_queue()

    if notification_settings.background_tasks_enabled:
        from gloria_service.infra.tasks.scheduler import start_scheduler

        await start_scheduler()

    logger.info(
        "Application startup complete",
        extra={
            "api_prefix": app_settings.api_prefix,
            "database_enabled": db_settings.is_configured,
            "durable_queue": fallback_queue.durable_enabled,
            "email_configured": email_sender.is_configured,
            "push_configured": push_sender.is_configured,
            "background_tasks": notification_settings.background_tasks_enabled,
        },
    )

    # =========================================================================
    # APPLICATION RUNTIME
    # =========================================================================

    yield

    # =========================================================================
    # SHUTDOWN
    # =========================================================================

    logger.info("Shutting down application")

    if notification_settings.background_tasks_enabled:
        from gloria_service.infra.tasks.scheduler import stop_scheduler

        await stop_scheduler()
    await push_sender.close()
    await email_sender.close()

    if rabbit_settings.is_configured:
        from gloria_service.infra.tasks import stop_taskiq

        await stop_taskiq()

    if db_settings.is_configured:
        from gloria_service.infra.database import close_database

        await close_database()

    logger.info("Application shutdown complete")
    shutdown_logging()
