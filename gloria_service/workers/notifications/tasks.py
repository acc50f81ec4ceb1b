"""Durable retry tasks for failed notifications.

Flow for one failed delivery:

    fallback-notification (delay 60s)
        -> retry-notification (delay 60s * 2**attempt) ... until max_retries
        -> dead-letter

Each task receives the serialized ``FallbackNotification`` and delivers it
through the channel's circuit-guarded delivery handler, which never enqueues
again. While the circuit is open the attempt is deferred without counting.
"""

from __future__ import annotations

from datetime import UTC, datetime
import logging
from typing import TYPE_CHECKING, Any

from gloria_service.core.settings import get_notification_settings
from gloria_service.features.notifications.channels import get_email_sender, get_push_sender
from gloria_service.features.notifications.enums import FallbackType
from gloria_service.features.notifications.fallback import (
    FallbackNotification,
    get_fallback_queue,
    record_dead_letter,
)
from gloria_service.features.notifications.metrics import fallback_retries_total
from gloria_service.infra.resilience import CircuitOpenError
from gloria_service.infra.tasks.broker import broker

if TYPE_CHECKING:
    from collections.abc import Awaitable, Callable

logger = logging.getLogger(__name__)

type Reschedule = Callable[[dict[str, Any], int, float], Awaitable[Any]]
type DeadLetter = Callable[[dict[str, Any]], Awaitable[Any]]


def _handler_for(notification_type: FallbackType) -> Any:
    # Building a sender registers its delivery handler on the queue
    if notification_type is FallbackType.EMAIL:
        get_email_sender()
    elif notification_type is FallbackType.PUSH:
        get_push_sender()
    return get_fallback_queue().get_handler(notification_type)


async def attempt_delivery(
    data: dict[str, Any],
    attempt: int,
    *,
    reschedule: Reschedule,
    dead_letter: DeadLetter,
) -> dict[str, Any]:
    """Deliver one serialized fallback entry; reschedule or dead-letter on failure.

    ``attempt`` is the number of attempts already made. A permanent failure
    (an error with ``permanent = True``) goes straight to the dead letter. An
    open circuit reschedules the same attempt number.
    """
    entry = FallbackNotification.from_dict(data)
    handler = _handler_for(entry.type)

    try:
        if handler is None:
            msg = f"No delivery handler registered for {entry.type.value}"
            raise RuntimeError(msg)
        await handler(entry.payload)
    except CircuitOpenError:
        delay = get_notification_settings().durable_backoff_base * (2**attempt)
        fallback_retries_total.labels(type=entry.type.value, outcome="deferred").inc()
        logger.info(
            "Circuit open, durable retry deferred",
            extra={"fallback_id": entry.id, "type": entry.type.value, "attempt": attempt, "delay_seconds": delay},
        )
        await reschedule(entry.to_dict(), attempt, delay)
        return {"id": entry.id, "status": "deferred", "attempt": attempt}
    except Exception as e:
        entry.retry_count = attempt + 1
        entry.last_attempt = datetime.now(UTC)
        entry.error = str(e) or type(e).__name__
        if getattr(e, "permanent", False):
            entry.retry_count = max(entry.retry_count, entry.max_retries)
        fallback_retries_total.labels(type=entry.type.value, outcome="failed").inc()

        if entry.exhausted:
            await dead_letter(entry.to_dict())
            return {"id": entry.id, "status": "dead_letter", "attempt": entry.retry_count}

        delay = get_notification_settings().durable_backoff_base * (2**entry.retry_count)
        logger.warning(
            "Durable retry failed, rescheduling",
            extra={
                "fallback_id": entry.id,
                "type": entry.type.value,
                "attempt": entry.retry_count,
                "delay_seconds": delay,
                "error": entry.error,
            },
        )
        await reschedule(entry.to_dict(), entry.retry_count, delay)
        return {"id": entry.id, "status": "rescheduled", "attempt": entry.retry_count}

    fallback_retries_total.labels(type=entry.type.value, outcome="delivered").inc()
    logger.info(
        "Durable retry delivered notification",
        extra={"fallback_id": entry.id, "type": entry.type.value, "attempt": attempt},
    )
    return {"id": entry.id, "status": "delivered", "attempt": attempt}


if broker is not None:

    async def _reschedule(data: dict[str, Any], attempt: int, delay: float) -> None:
        await retry_notification.kicker().with_labels(delay=int(delay)).kiq(data, attempt)

    async def _dead_letter(data: dict[str, Any]) -> None:
        await dead_letter.kiq(data)

    @broker.task(task_name="fallback-notification")
    async def fallback_notification(data: dict[str, Any]) -> dict[str, Any]:
        """First durable attempt for a failed notification."""
        return await attempt_delivery(data, 0, reschedule=_reschedule, dead_letter=_dead_letter)

    @broker.task(task_name="retry-notification")
    async def retry_notification(data: dict[str, Any], attempt: int) -> dict[str, Any]:
        """Follow-up attempt, scheduled with exponential delay."""
        return await attempt_delivery(data, attempt, reschedule=_reschedule, dead_letter=_dead_letter)

    @broker.task(task_name="dead-letter")
    async def dead_letter(data: dict[str, Any]) -> dict[str, Any]:
        """Persist an exhausted notification in the audit log."""
        entry = FallbackNotification.from_dict(data)
        await record_dead_letter(entry)
        return {"id": entry.id, "status": "recorded"}
