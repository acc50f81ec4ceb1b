"""Taskiq broker configuration for durable notification retries.

Failed notifications are retried by a separate worker process consuming
RabbitMQ through taskiq-aio-pika:

    taskiq worker gloria_service.infra.tasks.broker:broker

Delayed retries use the ``delay`` label, which taskiq-aio-pika routes through
its delay queue before the message reaches the worker.

When taskiq-aio-pika is not installed or RabbitMQ is disabled, ``broker`` is
None and failed notifications stay in the in-process memory queue.

Task Discovery
==============

Task modules are imported at the bottom of this file so the worker, which
imports this module, registers every task.
"""

from __future__ import annotations

from collections.abc import AsyncIterator
import logging
from typing import TYPE_CHECKING, Any

from gloria_service.core.settings import get_rabbit_settings

if TYPE_CHECKING:
    from taskiq_aio_pika import AioPikaBroker as AioPikaBrokerType
else:
    AioPikaBrokerType = Any

try:
    from taskiq_aio_pika import AioPikaBroker
except ImportError:
    AioPikaBroker = None  # type: ignore[misc,assignment]

logger = logging.getLogger(__name__)

rabbit_settings = get_rabbit_settings()

QUEUE_NAME = "notification-retries"

broker: AioPikaBrokerType | None = None


def _can_create_broker() -> bool:
    """Check if broker can be created based on configuration."""
    if AioPikaBroker is None:
        logger.warning("taskiq-aio-pika not installed - durable retry queue disabled")
        return False

    if not rabbit_settings.is_configured:
        logger.info("RabbitMQ not configured - failed notifications use the in-memory queue")
        return False

    return True


if _can_create_broker():
    broker = AioPikaBroker(
        url=rabbit_settings.url,
        queue_name=rabbit_settings.get_prefixed_queue(QUEUE_NAME),
        declare_exchange=True,
        declare_queues=True,
    )
    logger.info(
        "Taskiq retry broker configured",
        extra={"queue": rabbit_settings.get_prefixed_queue(QUEUE_NAME), "host": rabbit_settings.host},
    )


async def get_broker() -> AsyncIterator[AioPikaBrokerType | None]:
    """FastAPI dependency yielding the broker (None when disabled)."""
    yield broker


async def start_taskiq() -> None:
    """Start the broker for enqueuing from the API process.

    Raises:
        ConnectionError: If unable to connect to RabbitMQ.
    """
    if broker is None:
        logger.debug("Taskiq broker not configured, skipping startup")
        return

    logger.info("Starting Taskiq broker")
    try:
        await broker.startup()
        logger.info("Taskiq broker started successfully")
    except Exception as e:
        logger.exception("Failed to start Taskiq broker", extra={"error": str(e)})
        raise


async def stop_taskiq() -> None:
    if broker is None:
        return

    logger.info("Stopping Taskiq broker")
    try:
        await broker.shutdown()
        logger.info("Taskiq broker stopped successfully")
    except Exception as e:
        logger.exception("Error stopping Taskiq broker", extra={"error": str(e)})


# =============================================================================
# Task Module Imports
# =============================================================================

if broker is not None:
    import gloria_service.workers.notifications.tasks  # noqa: F401

    logger.debug("Notification task module registered with broker")
