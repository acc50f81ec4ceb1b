"""Tests for the notification retry queue and dead letters."""

from __future__ import annotations

import asyncio
from datetime import timedelta
from typing import TYPE_CHECKING, Any

import pytest

from gloria_service.core.exceptions import ConflictException, NotFoundException
from gloria_service.core.settings import NotificationSettings
from gloria_service.features.audit.repository import AuditRepository
from gloria_service.features.notifications.enums import FallbackType
from gloria_service.features.notifications.fallback import (
    FallbackNotification,
    FallbackQueue,
    record_dead_letter,
    retry_delay,
)
from gloria_service.infra.push import PushSubscriptionGoneError
from gloria_service.infra.resilience import CircuitOpenError

if TYPE_CHECKING:
    from conftest import FakeClock, SessionFactory


class Handler:
    """Delivery handler that records payloads and fails on demand."""

    def __init__(self, error: Exception | None = None) -> None:
        self.error = error
        self.payloads: list[dict[str, Any]] = []

    async def __call__(self, payload: dict[str, Any]) -> None:
        self.payloads.append(payload)
        if self.error is not None:
            raise self.error


class FakeDurable:
    def __init__(self, *, accept: bool) -> None:
        self.accept = accept
        self.enqueued: list[FallbackNotification] = []

    @property
    def available(self) -> bool:
        return True

    async def enqueue(self, entry: FallbackNotification) -> bool:
        if self.accept:
            self.enqueued.append(entry)
        return self.accept


EMAIL_PAYLOAD = {"to": ["staff@ypkgloria.org"], "subject": "Approval needed", "text": "Please review"}
PUSH_PAYLOAD = {"subscription": {"endpoint": "https://push.example/abc"}, "message": {"notification": {}}}


async def count_audit_rows(session_factory: SessionFactory) -> int:
    async with session_factory() as session:
        rows = await AuditRepository().list_for_module(session, "notification", entity_type="notification")
    return len(rows)


class TestRetryDelay:
    @pytest.mark.parametrize(
        ("retry_count", "seconds"),
        [(0, 300), (1, 600), (2, 1200), (5, 9600), (9, 86400), (20, 86400)],
    )
    def test_exponential_with_cap(self, retry_count: int, seconds: int) -> None:
        assert retry_delay(retry_count, base=300, maximum=86400) == timedelta(seconds=seconds)


class TestStoring:
    async def test_first_attempt_after_base_delay(self, fallback_queue: FallbackQueue, clock: FakeClock) -> None:
        entry = await fallback_queue.store_failed_email(EMAIL_PAYLOAD, "SMTP timeout", recipient="staff@ypkgloria.org")

        assert entry.retry_count == 0
        assert entry.max_retries == 5
        assert entry.error == "SMTP timeout"
        assert entry.next_attempt == clock() + timedelta(seconds=300)
        assert fallback_queue.get_entry(entry.id) is entry

    async def test_push_uses_push_retry_limit(self, fallback_queue: FallbackQueue) -> None:
        entry = await fallback_queue.store_failed_push(PUSH_PAYLOAD, "503", recipient="https://push.example/abc")

        assert entry.type is FallbackType.PUSH
        assert entry.max_retries == 3

    async def test_durable_store_takes_the_entry(
        self, notification_settings: NotificationSettings, session_factory: SessionFactory, clock: FakeClock
    ) -> None:
        durable = FakeDurable(accept=True)
        queue = FallbackQueue(settings=notification_settings, durable=durable, session_factory=session_factory, clock=clock)

        entry = await queue.store_failed_email(EMAIL_PAYLOAD, "down", recipient="staff@ypkgloria.org")

        assert durable.enqueued == [entry]
        assert queue.get_entries() == []
        assert queue.durable_enabled is True

    async def test_rejected_durable_enqueue_falls_back_to_memory(
        self, notification_settings: NotificationSettings, session_factory: SessionFactory, clock: FakeClock
    ) -> None:
        durable = FakeDurable(accept=False)
        queue = FallbackQueue(settings=notification_settings, durable=durable, session_factory=session_factory, clock=clock)

        entry = await queue.store_failed_email(EMAIL_PAYLOAD, "down", recipient="staff@ypkgloria.org")

        assert queue.get_entries() == [entry]

    async def test_full_queue_evicts_oldest(self, session_factory: SessionFactory, clock: FakeClock) -> None:
        settings = NotificationSettings(
            background_tasks_enabled=False,
            memory_queue_max_size=3,
            memory_queue_evict_count=2,
        )
        queue = FallbackQueue(settings=settings, session_factory=session_factory, clock=clock)

        stored = []
        for index in range(4):
            stored.append(await queue.store_failed_email(EMAIL_PAYLOAD, f"fail {index}", recipient="a@ypkgloria.org"))
            clock.advance(seconds=1)

        assert [e.id for e in queue.get_entries()] == [stored[2].id, stored[3].id]

    async def test_entry_dict_round_trip_keeps_schedule(self, fallback_queue: FallbackQueue) -> None:
        entry = await fallback_queue.store_failed_email(EMAIL_PAYLOAD, "down", recipient="staff@ypkgloria.org")

        restored = FallbackNotification.from_dict(entry.to_dict())

        assert restored.id == entry.id
        assert restored.type is FallbackType.EMAIL
        assert restored.next_attempt == entry.next_attempt
        assert restored.payload == EMAIL_PAYLOAD


class TestProcessing:
    async def test_entry_not_due_is_skipped(self, fallback_queue: FallbackQueue, clock: FakeClock) -> None:
        handler = Handler()
        fallback_queue.register_handler(FallbackType.EMAIL, handler)
        await fallback_queue.store_failed_email(EMAIL_PAYLOAD, "down", recipient="staff@ypkgloria.org")

        clock.advance(seconds=299)
        summary = await fallback_queue.process_queue()

        assert summary["attempted"] == 0
        assert handler.payloads == []

    async def test_successful_retry_removes_entry(self, fallback_queue: FallbackQueue, clock: FakeClock) -> None:
        handler = Handler()
        fallback_queue.register_handler(FallbackType.EMAIL, handler)
        await fallback_queue.store_failed_email(EMAIL_PAYLOAD, "down", recipient="staff@ypkgloria.org")

        clock.advance(seconds=300)
        summary = await fallback_queue.process_queue()

        assert summary == {"attempted": 1, "delivered": 1, "rescheduled": 0, "dead_lettered": 0}
        assert handler.payloads == [EMAIL_PAYLOAD]
        assert fallback_queue.get_entries() == []

    async def test_failed_retry_backs_off(self, fallback_queue: FallbackQueue, clock: FakeClock) -> None:
        fallback_queue.register_handler(FallbackType.EMAIL, Handler(ConnectionError("refused")))
        entry = await fallback_queue.store_failed_email(EMAIL_PAYLOAD, "down", recipient="staff@ypkgloria.org")

        clock.advance(seconds=300)
        await fallback_queue.process_queue()
        assert entry.retry_count == 1
        assert entry.error == "refused"
        assert entry.last_attempt == clock()
        assert entry.next_attempt == clock() + timedelta(seconds=600)

        clock.set(entry.next_attempt)
        await fallback_queue.process_queue()
        assert entry.retry_count == 2
        assert entry.next_attempt == clock() + timedelta(seconds=1200)

    async def test_open_circuit_defers_without_using_a_retry(
        self, fallback_queue: FallbackQueue, clock: FakeClock
    ) -> None:
        handler = Handler(CircuitOpenError("Circuit breaker 'email-service' is open", circuit_name="email-service"))
        fallback_queue.register_handler(FallbackType.EMAIL, handler)
        entry = await fallback_queue.store_failed_email(EMAIL_PAYLOAD, "down", recipient="staff@ypkgloria.org")

        clock.advance(seconds=300)
        summary = await fallback_queue.process_queue()

        assert summary == {"attempted": 1, "delivered": 0, "rescheduled": 1, "dead_lettered": 0}
        assert entry.retry_count == 0
        assert entry.last_attempt is None
        assert entry.error == "down"
        assert entry.next_attempt == clock() + timedelta(seconds=300)
        assert fallback_queue.get_entry(entry.id) is entry

    async def test_exhausted_entry_is_dead_lettered_once(
        self, fallback_queue: FallbackQueue, clock: FakeClock, session_factory: SessionFactory
    ) -> None:
        handler = Handler(ConnectionError("gateway timeout"))
        fallback_queue.register_handler(FallbackType.PUSH, handler)
        entry = await fallback_queue.store_failed_push(PUSH_PAYLOAD, "503", recipient="https://push.example/abc")

        outcomes = []
        for _ in range(3):
            clock.set(entry.next_attempt)
            outcomes.append(await fallback_queue.process_queue())

        assert outcomes[-1]["dead_lettered"] == 1
        assert entry.dead_lettered is True
        assert fallback_queue.get_entries() == []
        assert fallback_queue.get_dead_letter_entries() == [entry]
        assert await count_audit_rows(session_factory) == 1

        clock.advance(days=2)
        assert (await fallback_queue.process_queue())["attempted"] == 0
        assert len(handler.payloads) == 3
        assert await count_audit_rows(session_factory) == 1

    async def test_dead_letter_audit_details(
        self, fallback_queue: FallbackQueue, clock: FakeClock, session_factory: SessionFactory
    ) -> None:
        fallback_queue.register_handler(FallbackType.PUSH, Handler(PushSubscriptionGoneError("https://push.example/abc")))
        entry = await fallback_queue.store_failed_push(PUSH_PAYLOAD, "503", recipient="https://push.example/abc")

        clock.advance(seconds=300)
        summary = await fallback_queue.process_queue()

        assert summary["dead_lettered"] == 1
        async with session_factory() as session:
            (row,) = await AuditRepository().list_for_module(session, "notification")
        assert row.actor_id == "system"
        assert row.entity_id == entry.id
        assert row.details["failureType"] == "NOTIFICATION_FAILED"
        assert row.details["type"] == "PUSH"
        assert row.details["recipient"] == "https://push.example/abc"

    async def test_record_dead_letter_is_idempotent(
        self, fallback_queue: FallbackQueue, session_factory: SessionFactory
    ) -> None:
        entry = await fallback_queue.store_failed_email(EMAIL_PAYLOAD, "down", recipient="staff@ypkgloria.org")
        repository = AuditRepository()

        assert await record_dead_letter(entry, session_factory=session_factory, audit_repository=repository) is True
        assert await record_dead_letter(entry, session_factory=session_factory, audit_repository=repository) is False
        assert await count_audit_rows(session_factory) == 1

    async def test_missing_handler_counts_as_failure(self, fallback_queue: FallbackQueue, clock: FakeClock) -> None:
        entry = await fallback_queue.store_failed_email(EMAIL_PAYLOAD, "down", recipient="staff@ypkgloria.org")

        clock.advance(seconds=300)
        summary = await fallback_queue.process_queue()

        assert summary["rescheduled"] == 1
        assert entry.error == "No delivery handler registered for EMAIL"


class TestProcessNow:
    async def test_unknown_entry(self, fallback_queue: FallbackQueue) -> None:
        with pytest.raises(NotFoundException):
            await fallback_queue.process_notification_now("missing")

    async def test_ignores_schedule(self, fallback_queue: FallbackQueue) -> None:
        handler = Handler()
        fallback_queue.register_handler(FallbackType.EMAIL, handler)
        entry = await fallback_queue.store_failed_email(EMAIL_PAYLOAD, "down", recipient="staff@ypkgloria.org")

        assert await fallback_queue.process_notification_now(entry.id) is True
        assert fallback_queue.get_entry(entry.id) is None

    async def test_rejects_entry_in_flight(self, fallback_queue: FallbackQueue) -> None:
        started = asyncio.Event()
        release = asyncio.Event()

        async def slow_handler(payload: dict[str, Any]) -> None:
            started.set()
            await release.wait()

        fallback_queue.register_handler(FallbackType.EMAIL, slow_handler)
        entry = await fallback_queue.store_failed_email(EMAIL_PAYLOAD, "down", recipient="staff@ypkgloria.org")

        first = asyncio.create_task(fallback_queue.process_notification_now(entry.id))
        await started.wait()

        with pytest.raises(ConflictException):
            await fallback_queue.process_notification_now(entry.id)

        release.set()
        assert await first is True


class TestInspection:
    async def test_statistics(self, fallback_queue: FallbackQueue, clock: FakeClock) -> None:
        first = await fallback_queue.store_failed_email(EMAIL_PAYLOAD, "down", recipient="staff@ypkgloria.org")
        clock.advance(seconds=120)
        await fallback_queue.store_failed_push(PUSH_PAYLOAD, "503", recipient="https://push.example/abc")
        clock.advance(seconds=200)

        stats = fallback_queue.get_queue_statistics()

        assert stats["total"] == 2
        assert stats["by_type"] == {"EMAIL": 1, "PUSH": 1, "SMS": 0}
        assert stats["due"] == 1
        assert stats["exhausted"] == 0
        assert stats["oldest_entry"] == first.created_at
        assert stats["dead_letters"] == 0
        assert stats["durable_queue"] is False

    async def test_clear_keeps_dead_letters(self, fallback_queue: FallbackQueue, clock: FakeClock) -> None:
        fallback_queue.register_handler(FallbackType.PUSH, Handler(PushSubscriptionGoneError("https://push.example/x")))
        await fallback_queue.store_failed_push(PUSH_PAYLOAD, "gone", recipient="https://push.example/x")
        await fallback_queue.store_failed_email(EMAIL_PAYLOAD, "down", recipient="staff@ypkgloria.org")
        clock.advance(seconds=300)
        fallback_queue.register_handler(FallbackType.EMAIL, Handler(ConnectionError("down")))
        await fallback_queue.process_queue()

        assert fallback_queue.clear() == 1
        assert fallback_queue.get_entries() == []
        assert len(fallback_queue.get_dead_letter_entries()) == 1
