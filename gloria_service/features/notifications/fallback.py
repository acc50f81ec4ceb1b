"""Retry queue for notifications whose delivery failed.

A failed EMAIL/PUSH/SMS delivery becomes a ``FallbackNotification`` and goes
to exactly one store:

- the durable queue (taskiq over RabbitMQ) when a broker is configured and the
  enqueue succeeds; the worker retries with ``base * 2**attempt`` delays;
- otherwise the in-memory queue, which the ``fallback_queue`` scheduler job
  processes every ``queue_process_interval`` seconds with
  ``min(base * 2**retry, max)`` backoff.

Entries that exhaust their retries become dead letters: kept in a bounded
in-memory list for inspection and persisted once as an audit log row.
Retries call the channel's circuit-guarded delivery handler, which never
enqueues again. While a circuit is open the entry is deferred, not retried.
"""

from __future__ import annotations

from collections import deque
from dataclasses import dataclass, field
from datetime import UTC, datetime, timedelta
import logging
from typing import TYPE_CHECKING, Any
import uuid

from gloria_service.core.exceptions import ConflictException, NotFoundException
from gloria_service.core.settings import get_notification_settings, get_rabbit_settings
from gloria_service.features.audit.models import AuditAction
from gloria_service.features.audit.repository import AuditRepository, get_audit_repository
from gloria_service.features.notifications.enums import FallbackType
from gloria_service.features.notifications.metrics import (
    dead_letters_total,
    fallback_enqueued_total,
    fallback_evicted_total,
    fallback_queue_size,
    fallback_retries_total,
)
from gloria_service.infra.database import get_async_session
from gloria_service.infra.resilience import CircuitOpenError

if TYPE_CHECKING:
    from collections.abc import Awaitable, Callable
    from contextlib import AbstractAsyncContextManager

    from sqlalchemy.ext.asyncio import AsyncSession

    from gloria_service.core.settings import NotificationSettings

    type DeliveryHandler = Callable[[dict[str, Any]], Awaitable[None]]
    type SessionFactory = Callable[[], AbstractAsyncContextManager[AsyncSession]]

logger = logging.getLogger(__name__)

AUDIT_ACTOR = "system"
AUDIT_MODULE = "notification"
AUDIT_ENTITY_TYPE = "notification"
FAILURE_TYPE = "NOTIFICATION_FAILED"


def _utc_now() -> datetime:
    return datetime.now(UTC)


def _iso(value: datetime | None) -> str | None:
    return value.isoformat() if value else None


@dataclass
class FallbackNotification:
    """One failed delivery awaiting retry.

    ``payload`` is JSON-serializable so the entry can travel through the
    durable queue unchanged.
    """

    type: FallbackType
    payload: dict[str, Any]
    recipient: str
    max_retries: int
    next_attempt: datetime
    created_at: datetime
    id: str = field(default_factory=lambda: str(uuid.uuid4()))
    retry_count: int = 0
    last_attempt: datetime | None = None
    error: str | None = None
    metadata: dict[str, Any] = field(default_factory=dict)
    dead_lettered: bool = False

    @property
    def exhausted(self) -> bool:
        return self.retry_count >= self.max_retries

    def is_due(self, now: datetime) -> bool:
        return self.next_attempt <= now and not self.exhausted

    def to_dict(self) -> dict[str, Any]:
        return {
            "id": self.id,
            "type": self.type.value,
            "payload": self.payload,
            "recipient": self.recipient,
            "retry_count": self.retry_count,
            "max_retries": self.max_retries,
            "last_attempt": _iso(self.last_attempt),
            "next_attempt": _iso(self.next_attempt),
            "error": self.error,
            "created_at": _iso(self.created_at),
            "metadata": self.metadata,
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> FallbackNotification:
        last_attempt = data.get("last_attempt")
        return cls(
            id=data["id"],
            type=FallbackType(data["type"]),
            payload=data["payload"],
            recipient=data["recipient"],
            retry_count=int(data.get("retry_count", 0)),
            max_retries=int(data["max_retries"]),
            last_attempt=datetime.fromisoformat(last_attempt) if last_attempt else None,
            next_attempt=datetime.fromisoformat(data["next_attempt"]),
            error=data.get("error"),
            created_at=datetime.fromisoformat(data["created_at"]),
            metadata=data.get("metadata") or {},
        )


def retry_delay(retry_count: int, *, base: float, maximum: float) -> timedelta:
    """In-memory backoff: ``min(base * 2**retry_count, maximum)`` seconds."""
    return timedelta(seconds=min(base * (2**retry_count), maximum))


def max_retries_for(notification_type: FallbackType, settings: NotificationSettings | None = None) -> int:
    settings = settings or get_notification_settings()
    limits = {
        FallbackType.EMAIL: settings.email_max_retries,
        FallbackType.PUSH: settings.push_max_retries,
        FallbackType.SMS: settings.sms_max_retries,
    }
    return limits[notification_type]


async def record_dead_letter(
    entry: FallbackNotification,
    *,
    session_factory: SessionFactory | None = None,
    audit_repository: AuditRepository | None = None,
) -> bool:
    """Persist an exhausted entry as an audit log row and count it.

    Used by the in-memory processor and by the durable worker.

    Returns:
        False if the entry was already recorded.
    """
    session_factory = session_factory or get_async_session
    audit_repository = audit_repository or get_audit_repository()

    details = {
        "failureType": FAILURE_TYPE,
        "type": entry.type.value,
        "recipient": entry.recipient,
        "retryCount": entry.retry_count,
        "error": entry.error,
        "payload": entry.payload,
        "createdAt": _iso(entry.created_at),
        "lastAttempt": _iso(entry.last_attempt),
    }
    async with session_factory() as session:
        # Redelivered dead-letter messages must not duplicate the record
        if await audit_repository.exists_for_entity(
            session,
            module=AUDIT_MODULE,
            entity_type=AUDIT_ENTITY_TYPE,
            entity_id=entry.id,
        ):
            logger.info("Dead letter already recorded", extra={"fallback_id": entry.id})
            return False
        await audit_repository.record(
            session,
            actor_id=AUDIT_ACTOR,
            action=AuditAction.UPDATE,
            module=AUDIT_MODULE,
            entity_type=AUDIT_ENTITY_TYPE,
            entity_id=entry.id,
            entity_display=f"{entry.type.value} to {entry.recipient}",
            details=details,
        )
        await session.commit()

    dead_letters_total.labels(type=entry.type.value).inc()
    logger.error(
        "Notification moved to dead letter",
        extra={
            "fallback_id": entry.id,
            "type": entry.type.value,
            "recipient": entry.recipient,
            "retry_count": entry.retry_count,
            "error": entry.error,
        },
    )
    return True


class DurableQueue:
    """Hands failed notifications to the taskiq worker.

    ``enqueue`` returns False when no broker is configured or the broker
    rejects the message, so the caller can fall back to memory.
    """

    def __init__(self, *, initial_delay: float | None = None) -> None:
        settings = get_notification_settings()
        self._initial_delay = settings.durable_initial_delay if initial_delay is None else initial_delay

    @property
    def available(self) -> bool:
        from gloria_service.infra.tasks.broker import broker

        return broker is not None

    async def enqueue(self, entry: FallbackNotification) -> bool:
        if not self.available:
            return False

        from gloria_service.workers.notifications.tasks import fallback_notification

        try:
            await fallback_notification.kicker().with_labels(delay=int(self._initial_delay)).kiq(entry.to_dict())
        except Exception as e:
            logger.warning(
                "Durable queue enqueue failed, using in-memory queue",
                extra={"fallback_id": entry.id, "type": entry.type.value, "error": str(e)},
            )
            return False
        return True


class FallbackQueue:
    """Retry store for failed notification deliveries.

    Example:
        queue = get_fallback_queue()
        queue.register_handler(FallbackType.EMAIL, email_sender.deliver_guarded)
        await queue.store_failed_email(payload, "SMTP timeout", recipient="a@b.org")
    """

    def __init__(
        self,
        *,
        settings: NotificationSettings | None = None,
        durable: DurableQueue | None = None,
        session_factory: SessionFactory | None = None,
        audit_repository: AuditRepository | None = None,
        clock: Callable[[], datetime] | None = None,
    ) -> None:
        self._settings = settings or get_notification_settings()
        self._durable = durable
        self._session_factory = session_factory or get_async_session
        self._audit_repository = audit_repository or get_audit_repository()
        self._clock = clock or _utc_now

        self._entries: dict[str, FallbackNotification] = {}
        self._dead_letters: deque[FallbackNotification] = deque(maxlen=self._settings.dead_letter_max_size)
        self._dead_letter_count = 0
        self._handlers: dict[FallbackType, DeliveryHandler] = {}
        self._in_flight: set[str] = set()

    # ------------------------------------------------------------------
    # Registration
    # ------------------------------------------------------------------

    def register_handler(self, notification_type: FallbackType, handler: DeliveryHandler) -> None:
        """Register the delivery function used for retries.

        The handler raises on failure and must not enqueue again. A
        ``CircuitOpenError`` defers the entry without using up a retry.
        """
        self._handlers[notification_type] = handler

    def get_handler(self, notification_type: FallbackType) -> DeliveryHandler | None:
        return self._handlers.get(notification_type)

    # ------------------------------------------------------------------
    # Storing
    # ------------------------------------------------------------------

    async def store_failed_email(
        self,
        payload: dict[str, Any],
        reason: str,
        *,
        recipient: str,
        metadata: dict[str, Any] | None = None,
    ) -> FallbackNotification:
        return await self.store_failed(FallbackType.EMAIL, payload, reason, recipient=recipient, metadata=metadata)

    async def store_failed_push(
        self,
        payload: dict[str, Any],
        reason: str,
        *,
        recipient: str,
        metadata: dict[str, Any] | None = None,
    ) -> FallbackNotification:
        return await self.store_failed(FallbackType.PUSH, payload, reason, recipient=recipient, metadata=metadata)

    async def store_failed(
        self,
        notification_type: FallbackType,
        payload: dict[str, Any],
        reason: str,
        *,
        recipient: str,
        metadata: dict[str, Any] | None = None,
    ) -> FallbackNotification:
        """Queue a failed delivery in exactly one store.

        Returns:
            The created entry; first retry is due ``retry_base_delay`` from now.
        """
        now = self._clock()
        entry = FallbackNotification(
            type=notification_type,
            payload=payload,
            recipient=recipient,
            max_retries=max_retries_for(notification_type, self._settings),
            next_attempt=now + timedelta(seconds=self._settings.retry_base_delay),
            created_at=now,
            error=reason,
            metadata=metadata or {},
        )

        if self._durable is not None and await self._durable.enqueue(entry):
            fallback_enqueued_total.labels(type=notification_type.value, storage="durable").inc()
            logger.info(
                "Failed notification queued for durable retry",
                extra={"fallback_id": entry.id, "type": notification_type.value, "reason": reason},
            )
            return entry

        self._store_in_memory(entry)
        fallback_enqueued_total.labels(type=notification_type.value, storage="memory").inc()
        logger.warning(
            "Failed notification queued in memory",
            extra={
                "fallback_id": entry.id,
                "type": notification_type.value,
                "reason": reason,
                "queue_size": len(self._entries),
            },
        )
        return entry

    def _store_in_memory(self, entry: FallbackNotification) -> None:
        if len(self._entries) >= self._settings.memory_queue_max_size:
            oldest = sorted(self._entries.values(), key=lambda e: e.created_at)
            for evicted in oldest[: self._settings.memory_queue_evict_count]:
                del self._entries[evicted.id]
                fallback_evicted_total.labels(type=evicted.type.value).inc()
            logger.warning(
                "In-memory retry queue full, evicted oldest entries",
                extra={"evicted": min(len(oldest), self._settings.memory_queue_evict_count)},
            )
        self._entries[entry.id] = entry
        self._update_size_gauge()

    # ------------------------------------------------------------------
    # Processing
    # ------------------------------------------------------------------

    async def process_queue(self) -> dict[str, int]:
        """Retry every due entry once.

        Returns:
            Counts of attempted, delivered, rescheduled and dead-lettered entries.
        """
        now = self._clock()
        due = [e for e in self._entries.values() if e.is_due(now) and e.id not in self._in_flight]
        summary = {"attempted": 0, "delivered": 0, "rescheduled": 0, "dead_lettered": 0}
        if not due:
            return summary

        logger.info("Processing retry queue", extra={"due": len(due), "queue_size": len(self._entries)})
        for entry in due:
            delivered = await self._attempt(entry)
            summary["attempted"] += 1
            if delivered:
                summary["delivered"] += 1
            elif entry.dead_lettered:
                summary["dead_lettered"] += 1
            else:
                summary["rescheduled"] += 1
        return summary

    async def process_notification_now(self, entry_id: str) -> bool:
        """Retry one queued entry immediately, regardless of its schedule.

        Raises:
            NotFoundException: If no entry has this id.
            ConflictException: If the entry is being retried right now.
        """
        entry = self._entries.get(entry_id)
        if entry is None:
            raise NotFoundException(
                detail=f"Queued notification {entry_id} not found",
                type="fallback-entry-not-found",
            )
        if entry_id in self._in_flight:
            raise ConflictException(
                detail="Notification is already being retried",
                type="fallback-entry-in-flight",
            )
        return await self._attempt(entry)

    async def _attempt(self, entry: FallbackNotification) -> bool:
        self._in_flight.add(entry.id)
        try:
            handler = self._handlers.get(entry.type)
            now = self._clock()
            try:
                if handler is None:
                    msg = f"No delivery handler registered for {entry.type.value}"
                    raise RuntimeError(msg)
                await handler(entry.payload)
            except CircuitOpenError as e:
                entry.next_attempt = now + retry_delay(
                    entry.retry_count,
                    base=self._settings.retry_base_delay,
                    maximum=self._settings.retry_max_delay,
                )
                fallback_retries_total.labels(type=entry.type.value, outcome="deferred").inc()
                logger.info(
                    "Circuit open, retry deferred",
                    extra={
                        "fallback_id": entry.id,
                        "type": entry.type.value,
                        "next_attempt": entry.next_attempt.isoformat(),
                        "circuit": e.circuit_name,
                    },
                )
                return False
            except Exception as e:
                entry.retry_count += 1
                entry.last_attempt = now
                entry.error = str(e) or type(e).__name__
                if getattr(e, "permanent", False):
                    entry.retry_count = max(entry.retry_count, entry.max_retries)
                fallback_retries_total.labels(type=entry.type.value, outcome="failed").inc()

                if entry.exhausted:
                    await self._dead_letter(entry)
                else:
                    entry.next_attempt = now + retry_delay(
                        entry.retry_count,
                        base=self._settings.retry_base_delay,
                        maximum=self._settings.retry_max_delay,
                    )
                    logger.warning(
                        "Notification retry failed",
                        extra={
                            "fallback_id": entry.id,
                            "type": entry.type.value,
                            "retry_count": entry.retry_count,
                            "next_attempt": entry.next_attempt.isoformat(),
                            "error": entry.error,
                        },
                    )
                return False

            self._entries.pop(entry.id, None)
            self._update_size_gauge()
            fallback_retries_total.labels(type=entry.type.value, outcome="delivered").inc()
            logger.info(
                "Queued notification delivered",
                extra={"fallback_id": entry.id, "type": entry.type.value, "retry_count": entry.retry_count},
            )
            return True
        finally:
            self._in_flight.discard(entry.id)

    async def _dead_letter(self, entry: FallbackNotification) -> None:
        if entry.dead_lettered:
            return
        entry.dead_lettered = True
        self._entries.pop(entry.id, None)
        self._update_size_gauge()
        self._dead_letters.append(entry)
        self._dead_letter_count += 1
        try:
            await record_dead_letter(
                entry,
                session_factory=self._session_factory,
                audit_repository=self._audit_repository,
            )
        except Exception:
            logger.exception("Failed to persist dead letter", extra={"fallback_id": entry.id})

    # ------------------------------------------------------------------
    # Inspection
    # ------------------------------------------------------------------

    def get_entries(self) -> list[FallbackNotification]:
        return sorted(self._entries.values(), key=lambda e: e.created_at)

    def get_entry(self, entry_id: str) -> FallbackNotification | None:
        return self._entries.get(entry_id)

    def get_dead_letter_entries(self) -> list[FallbackNotification]:
        return list(self._dead_letters)

    def get_queue_statistics(self) -> dict[str, Any]:
        now = self._clock()
        entries = list(self._entries.values())
        by_type = {t.value: 0 for t in FallbackType}
        for entry in entries:
            by_type[entry.type.value] += 1
        return {
            "total": len(entries),
            "by_type": by_type,
            "due": sum(1 for e in entries if e.is_due(now)),
            "exhausted": sum(1 for e in entries if e.exhausted),
            "oldest_entry": min((e.created_at for e in entries), default=None),
            "dead_letters": self._dead_letter_count,
            "durable_queue": self.durable_enabled,
        }

    @property
    def durable_enabled(self) -> bool:
        return self._durable is not None and self._durable.available

    def clear(self) -> int:
        """Drop every in-memory entry. Dead letters are kept."""
        cleared = len(self._entries)
        self._entries.clear()
        self._update_size_gauge()
        logger.warning("Retry queue cleared", extra={"cleared": cleared})
        return cleared

    def _update_size_gauge(self) -> None:
        counts = {t.value: 0 for t in FallbackType}
        for entry in self._entries.values():
            counts[entry.type.value] += 1
        for type_value, count in counts.items():
            fallback_queue_size.labels(type=type_value).set(count)



_fallback_queue: FallbackQueue | None = None


def get_fallback_queue() -> FallbackQueue:
    """Process-wide retry queue, durable when RabbitMQ is enabled."""
    global _fallback_queue
    if _fallback_queue is None:
        durable = DurableQueue() if get_rabbit_settings().is_configured else None
        _fallback_queue = FallbackQueue(durable=durable)
    return _fallback_queue


def set_fallback_queue(queue: FallbackQueue | None) -> None:
    global _fallback_queue
    _fallback_queue = queue
