"""Shared plumbing for circuit-guarded channel senders."""

from __future__ import annotations

from abc import ABC, abstractmethod
import asyncio
import logging
import time
from typing import TYPE_CHECKING, Any, ClassVar

from gloria_service.core.settings import get_notification_settings
from gloria_service.features.notifications.fallback import get_fallback_queue
from gloria_service.features.notifications.metrics import (
    notification_send_duration_seconds,
    notifications_failed_total,
)
from gloria_service.infra.logging import get_lazy_logger
from gloria_service.infra.resilience import CircuitOpenError, CircuitState, get_circuit_registry

if TYPE_CHECKING:
    from collections.abc import Awaitable, Callable, Sequence

    from gloria_service.core.settings import NotificationSettings
    from gloria_service.features.notifications.enums import FallbackType
    from gloria_service.features.notifications.fallback import FallbackQueue
    from gloria_service.infra.resilience import CircuitBreakerRegistry, CircuitStateChange


class ChannelSender(ABC):
    """Base class for EMAIL and PUSH senders.

    Subclasses provide the raw delivery path (``deliver_payload``), which
    raises on failure and never enqueues. ``deliver_guarded`` runs it through
    the channel's circuit breaker and is the retry handler; ``_send_guarded``
    additionally hands failures to the retry queue.

    The sender owns no "configured" flag of its own: ``is_configured`` is the
    transport's presence combined with the circuit state. When the circuit
    opens, a transport probe is scheduled after ``health_probe_delay`` and a
    healthy transport closes the circuit.
    """

    channel: ClassVar[FallbackType]
    circuit_name: ClassVar[str]
    not_configured_reason: ClassVar[str]

    def __init__(
        self,
        *,
        circuit_registry: CircuitBreakerRegistry | None = None,
        fallback_queue: FallbackQueue | None = None,
        settings: NotificationSettings | None = None,
    ) -> None:
        class_name = self.__class__.__name__
        self.logger = logging.getLogger(class_name)
        self._lazy = get_lazy_logger(class_name)

        self._settings = settings or get_notification_settings()
        self._registry = circuit_registry or get_circuit_registry()
        self._circuit = self._registry.get_circuit(self.circuit_name)
        self._queue = fallback_queue or get_fallback_queue()
        self._queue.register_handler(self.channel, self.deliver_guarded)
        self._unsubscribe = self._circuit.subscribe(self._on_circuit_change)
        self._probe_task: asyncio.Task[None] | None = None

    # ------------------------------------------------------------------
    # Transport contract
    # ------------------------------------------------------------------

    @property
    @abstractmethod
    def transport_ready(self) -> bool:
        """Whether a transport was set up at initialization."""

    @abstractmethod
    async def deliver_payload(self, payload: dict[str, Any]) -> None:
        """Deliver a serialized message. Raises on failure; never enqueues."""

    @abstractmethod
    async def probe_transport(self) -> bool:
        """Lightweight transport health check."""

    @property
    def is_configured(self) -> bool:
        return self.transport_ready and self._circuit.state is not CircuitState.OPEN

    # ------------------------------------------------------------------
    # Guarded delivery
    # ------------------------------------------------------------------

    async def _timed_delivery(self, payload: dict[str, Any]) -> None:
        start = time.perf_counter()
        try:
            await self.deliver_payload(payload)
        finally:
            notification_send_duration_seconds.labels(channel=self.channel.value).observe(
                time.perf_counter() - start
            )

    async def deliver_guarded(self, payload: dict[str, Any]) -> None:
        """Retry handler: raw delivery through the circuit.

        Raises ``CircuitOpenError`` without touching the transport while the
        circuit is open.
        """
        await self._circuit.call(self._timed_delivery, payload)

    async def _send_guarded(
        self,
        payload: dict[str, Any],
        *,
        recipient: str,
        metadata: dict[str, Any],
        permanent_errors: tuple[type[Exception], ...] = (),
    ) -> bool:
        """Deliver through the circuit; queue the payload on failure.

        Errors listed in ``permanent_errors`` still count against the circuit
        but are not queued for retry.
        """
        if not self.transport_ready:
            notifications_failed_total.labels(channel=self.channel.value, reason="not_configured").inc()
            await self._queue.store_failed(
                self.channel, payload, self.not_configured_reason, recipient=recipient, metadata=metadata
            )
            return False

        try:
            await self.deliver_guarded(payload)
        except CircuitOpenError as e:
            notifications_failed_total.labels(channel=self.channel.value, reason="circuit_open").inc()
            reason = f"Circuit breaker: {e}"
        except permanent_errors as e:
            notifications_failed_total.labels(channel=self.channel.value, reason="permanent").inc()
            self.logger.warning(
                "Permanent delivery failure, not queued",
                extra={"channel": self.channel.value, "recipient": recipient, "error": str(e)},
            )
            return False
        except Exception as e:
            notifications_failed_total.labels(channel=self.channel.value, reason="transport_error").inc()
            reason = str(e) or type(e).__name__
        else:
            return True

        self.logger.warning(
            "Delivery failed, queued for retry",
            extra={"channel": self.channel.value, "recipient": recipient, "reason": reason},
        )
        await self._queue.store_failed(self.channel, payload, reason, recipient=recipient, metadata=metadata)
        return False

    async def _send_in_batches[T](
        self,
        items: Sequence[T],
        send: Callable[[T], Awaitable[bool]],
    ) -> dict[str, int]:
        """Send ``items`` in concurrent batches with a pause between batches."""
        sent = failed = 0
        size = self._settings.bulk_batch_size
        for offset in range(0, len(items), size):
            if offset:
                await asyncio.sleep(self._settings.bulk_batch_pause)
            results = await asyncio.gather(*(send(item) for item in items[offset : offset + size]))
            sent += sum(1 for ok in results if ok)
            failed += sum(1 for ok in results if not ok)
        self.logger.info(
            "Bulk send finished",
            extra={"channel": self.channel.value, "sent": sent, "failed": failed},
        )
        return {"sent": sent, "failed": failed}

    # ------------------------------------------------------------------
    # Circuit ownership
    # ------------------------------------------------------------------

    def _on_circuit_change(self, change: CircuitStateChange) -> None:
        if change.to_state is not CircuitState.OPEN:
            return
        if self._probe_task is not None and not self._probe_task.done():
            return
        try:
            loop = asyncio.get_running_loop()
        except RuntimeError:
            return
        self._probe_task = loop.create_task(self._probe_after_delay(), name=f"{self.circuit_name}-probe")

    async def _probe_after_delay(self) -> None:
        await asyncio.sleep(self._settings.health_probe_delay)
        if self._circuit.state is not CircuitState.OPEN:
            return
        try:
            healthy = await self.probe_transport()
        except Exception:
            self.logger.exception("Transport health probe failed", extra={"circuit": self.circuit_name})
            return
        if healthy:
            await self._circuit.force_close()
            self.logger.info("Transport healthy, circuit closed", extra={"circuit": self.circuit_name})
        else:
            self.logger.warning("Transport still unhealthy", extra={"circuit": self.circuit_name})

    def get_circuit_metrics(self) -> dict[str, Any]:
        return self._circuit.get_metrics()

    async def reset_circuit(self) -> None:
        await self._circuit.reset()

    async def close(self) -> None:
        """Stop listening to the circuit and cancel a pending probe."""
        self._unsubscribe()
        if self._probe_task is not None:
            self._probe_task.cancel()
            try:
                await self._probe_task
            except asyncio.CancelledError:
                pass
            self._probe_task = None
