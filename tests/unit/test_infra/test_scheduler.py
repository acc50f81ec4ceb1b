"""Tests for the APScheduler maintenance jobs."""

from __future__ import annotations

from datetime import timedelta
from typing import TYPE_CHECKING
from unittest.mock import AsyncMock, patch

from gloria_service.core.settings import CircuitSettings, NotificationSettings
from gloria_service.features.notifications.enums import FallbackType
from gloria_service.infra.resilience import CircuitBreakerRegistry, set_circuit_registry
from gloria_service.infra.tasks import scheduler as scheduler_module
from gloria_service.infra.tasks.scheduler import (
    CIRCUIT_HEALTH_JOB,
    FALLBACK_QUEUE_JOB,
    TRACKING_CLEANUP_JOB,
    create_scheduler,
    process_fallback_queue,
    setup_scheduled_jobs,
    start_scheduler,
    stop_scheduler,
)

if TYPE_CHECKING:
    from conftest import FakeClock

    from gloria_service.features.notifications.fallback import FallbackQueue


class TestSetupScheduledJobs:
    """Job registration and intervals."""

    def test_registers_three_interval_jobs(self, circuit_registry: CircuitBreakerRegistry) -> None:
        settings = NotificationSettings(queue_process_interval=120, tracking_cleanup_interval=3600)
        scheduler = setup_scheduled_jobs(create_scheduler(), settings)

        jobs = {job.id: job for job in scheduler.get_jobs()}
        assert set(jobs) == {FALLBACK_QUEUE_JOB, CIRCUIT_HEALTH_JOB, TRACKING_CLEANUP_JOB}
        assert jobs[FALLBACK_QUEUE_JOB].trigger.interval == timedelta(seconds=120)
        assert jobs[TRACKING_CLEANUP_JOB].trigger.interval == timedelta(seconds=3600)

    def test_health_job_uses_shortest_circuit_interval(self, clock: FakeClock) -> None:
        registry = CircuitBreakerRegistry(
            {
                "email-service": CircuitSettings(health_check_interval=45),
                "push-service": CircuitSettings(health_check_interval=15),
            },
            clock=clock,
        )
        set_circuit_registry(registry)
        try:
            scheduler = setup_scheduled_jobs(create_scheduler(), NotificationSettings())
        finally:
            set_circuit_registry(None)

        assert scheduler.get_job(CIRCUIT_HEALTH_JOB).trigger.interval == timedelta(seconds=15)

    def test_job_defaults_prevent_overlap(self) -> None:
        scheduler = create_scheduler()

        assert scheduler._job_defaults["max_instances"] == 1
        assert scheduler._job_defaults["coalesce"] is True


class TestJobFunctions:
    """The job bodies delegate to the pipeline singletons."""

    async def test_fallback_job_processes_due_entries(
        self,
        fallback_queue: FallbackQueue,
        clock: FakeClock,
    ) -> None:
        handler = AsyncMock()
        fallback_queue.register_handler(FallbackType.EMAIL, handler)
        await fallback_queue.store_failed_email(
            {"to": ["staff@ypkgloria.org"]}, "SMTP timeout", recipient="staff@ypkgloria.org"
        )
        clock.advance(minutes=6)

        summary = await process_fallback_queue()

        assert summary["delivered"] == 1
        handler.assert_awaited_once()
        assert fallback_queue.get_entries() == []

    async def test_circuit_health_job_calls_check_all(self, circuit_registry: CircuitBreakerRegistry) -> None:
        with patch.object(circuit_registry, "check_all", new=AsyncMock()) as check_all:
            await scheduler_module.check_circuit_health()

        check_all.assert_awaited_once()


class TestSchedulerLifecycle:
    """Start and stop from the lifespan."""

    async def test_start_and_stop(self, circuit_registry: CircuitBreakerRegistry) -> None:
        await start_scheduler()
        scheduler = scheduler_module.get_scheduler()
        try:
            assert scheduler.running
            assert len(scheduler.get_jobs()) == 3
        finally:
            await stop_scheduler()

        assert scheduler_module._scheduler is None

    async def test_stop_without_start_is_noop(self) -> None:
        await stop_scheduler()

        assert scheduler_module._scheduler is None
