"""APScheduler jobs for the in-process notification maintenance work.

Three interval jobs run inside the API process:

- ``fallback_queue``: retry every due entry of the in-memory queue;
- ``circuit_health``: move expired OPEN circuits to HALF_OPEN and check them;
- ``tracking_cleanup``: purge old frequency tracking windows.

The durable queue is not polled here; its retries are delayed taskiq
messages handled by the worker process.
"""

from __future__ import annotations

import logging
from typing import TYPE_CHECKING

from apscheduler.schedulers.asyncio import (
    AsyncIOScheduler,  # type: ignore[import-untyped]
)
from apscheduler.triggers.interval import (
    IntervalTrigger,  # type: ignore[import-untyped]
)

from gloria_service.core.settings import get_notification_settings

if TYPE_CHECKING:
    from gloria_service.core.settings import NotificationSettings

logger = logging.getLogger(__name__)

FALLBACK_QUEUE_JOB = "fallback_queue"
CIRCUIT_HEALTH_JOB = "circuit_health"
TRACKING_CLEANUP_JOB = "tracking_cleanup"

_scheduler: AsyncIOScheduler | None = None


def create_scheduler() -> AsyncIOScheduler:
    return AsyncIOScheduler(
        timezone="UTC",
        job_defaults={
            "coalesce": True,
            "max_instances": 1,
            "misfire_grace_time": 60,
        },
    )


def get_scheduler() -> AsyncIOScheduler:
    """Process-wide scheduler, created on first use."""
    global _scheduler
    if _scheduler is None:
        _scheduler = create_scheduler()
    return _scheduler


# =============================================================================
# Job functions
# =============================================================================


async def process_fallback_queue() -> dict[str, int]:
    from gloria_service.features.notifications.fallback import get_fallback_queue

    summary = await get_fallback_queue().process_queue()
    if summary["attempted"]:
        logger.info("Retry queue pass finished", extra=summary)
    return summary


async def check_circuit_health() -> None:
    from gloria_service.infra.resilience import get_circuit_registry

    await get_circuit_registry().check_all()


async def cleanup_frequency_tracking() -> int:
    """Purge frequency tracking windows past the retention period."""
    from gloria_service.features.notifications.preferences import get_preference_service
    from gloria_service.infra.database import get_async_session

    async with get_async_session() as session:
        deleted = await get_preference_service().cleanup_old_frequency_tracking(session)
        await session.commit()
    logger.info("Frequency tracking cleanup finished", extra={"deleted": deleted})
    return deleted


def setup_scheduled_jobs(
    scheduler: AsyncIOScheduler | None = None,
    settings: NotificationSettings | None = None,
) -> AsyncIOScheduler:
    """Register the maintenance jobs. Safe to call again; jobs are replaced."""
    from gloria_service.infra.resilience import get_circuit_registry

    scheduler = scheduler or get_scheduler()
    settings = settings or get_notification_settings()

    scheduler.add_job(
        func=process_fallback_queue,
        trigger=IntervalTrigger(seconds=settings.queue_process_interval),
        id=FALLBACK_QUEUE_JOB,
        name="Retry failed notifications",
        replace_existing=True,
    )
    scheduler.add_job(
        func=check_circuit_health,
        trigger=IntervalTrigger(seconds=get_circuit_registry().health_check_interval),
        id=CIRCUIT_HEALTH_JOB,
        name="Circuit breaker health checks",
        replace_existing=True,
    )
    scheduler.add_job(
        func=cleanup_frequency_tracking,
        trigger=IntervalTrigger(seconds=settings.tracking_cleanup_interval),
        id=TRACKING_CLEANUP_JOB,
        name="Purge old frequency tracking",
        replace_existing=True,
    )
    return scheduler


async def start_scheduler() -> None:
    """Register the jobs and start the scheduler on the running loop."""
    scheduler = setup_scheduled_jobs()
    if scheduler.running:
        logger.warning("APScheduler is already running")
        return
    scheduler.start()
    logger.info("APScheduler started", extra={"jobs": len(scheduler.get_jobs())})


async def stop_scheduler() -> None:
    global _scheduler
    if _scheduler is None or not _scheduler.running:
        logger.debug("APScheduler is not running")
        _scheduler = None
        return
    _scheduler.shutdown(wait=False)
    _scheduler = None
    logger.info("APScheduler stopped")

