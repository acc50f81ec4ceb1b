"""Named circuit breakers shared by the delivery channels.

Each delivery service owns one circuit ("email-service", "push-service").
The registry creates circuits on first use from per-service settings, fans
state changes out to registry-wide subscribers, and runs one health check
across every circuit on demand (see ``infra.tasks.scheduler``).
"""

from __future__ import annotations

import logging
from typing import TYPE_CHECKING, Any, ParamSpec, TypeVar

from gloria_service.core.settings import CircuitSettings, get_notification_settings
from gloria_service.infra.resilience.circuit_breaker import CircuitBreaker

if TYPE_CHECKING:
    from collections.abc import Awaitable, Callable, Mapping
    from datetime import datetime

    from gloria_service.infra.resilience.circuit_breaker import CircuitListener, CircuitStateChange

logger = logging.getLogger(__name__)

P = ParamSpec("P")
T = TypeVar("T")

EMAIL_CIRCUIT = "email-service"
PUSH_CIRCUIT = "push-service"


class CircuitBreakerRegistry:
    """Registry of circuit breakers keyed by service name."""

    def __init__(
        self,
        defaults: Mapping[str, CircuitSettings] | None = None,
        *,
        clock: Callable[[], datetime] | None = None,
    ) -> None:
        self._defaults: dict[str, CircuitSettings] = dict(defaults or {})
        self._clock = clock
        self._circuits: dict[str, CircuitBreaker] = {}
        self._listeners: list[CircuitListener] = []
        self._unsubscribers: dict[str, Callable[[], None]] = {}

    def get_circuit(self, name: str, config: CircuitSettings | None = None) -> CircuitBreaker:
        """Return the circuit for ``name``, creating it on first use.

        Args:
            name: Service name, e.g. "email-service".
            config: Thresholds for a new circuit. Ignored if the circuit exists.
                Falls back to the registry default for the name, then to
                CircuitSettings defaults.
        """
        circuit = self._circuits.get(name)
        if circuit is not None:
            return circuit

        cfg = config or self._defaults.get(name) or CircuitSettings()
        circuit = CircuitBreaker(
            name=name,
            failure_threshold=cfg.failure_threshold,
            success_threshold=cfg.success_threshold,
            recovery_timeout=cfg.timeout,
            error_threshold_percentage=cfg.error_threshold_percentage,
            volume_threshold=cfg.volume_threshold,
            window=cfg.window,
            health_check_interval=cfg.health_check_interval,
            clock=self._clock,
        )
        self._unsubscribers[name] = circuit.subscribe(self._fan_out)
        self._circuits[name] = circuit
        return circuit

    def get(self, name: str) -> CircuitBreaker | None:
        return self._circuits.get(name)

    async def execute(
        self,
        name: str,
        func: Callable[P, Awaitable[T]],
        *args: P.args,
        **kwargs: P.kwargs,
    ) -> T:
        """Run ``func`` through the named circuit."""
        return await self.get_circuit(name).call(func, *args, **kwargs)

    def subscribe(self, listener: CircuitListener) -> Callable[[], None]:
        """Listen to state changes of every circuit, present and future."""
        self._listeners.append(listener)

        def unsubscribe() -> None:
            if listener in self._listeners:
                self._listeners.remove(listener)

        return unsubscribe

    def _fan_out(self, change: CircuitStateChange) -> None:
        for listener in list(self._listeners):
            try:
                listener(change)
            except Exception:
                logger.exception(
                    "Circuit registry listener failed",
                    extra={"circuit_breaker": change.name},
                )

    def get_all_metrics(self) -> dict[str, dict[str, Any]]:
        return {name: circuit.get_metrics() for name, circuit in self._circuits.items()}

    def _require(self, name: str) -> CircuitBreaker:
        circuit = self._circuits.get(name)
        if circuit is None:
            msg = f"Unknown circuit breaker: {name}"
            raise KeyError(msg)
        return circuit

    async def reset_circuit(self, name: str) -> None:
        """Reset one circuit.

        Raises:
            KeyError: If no circuit with that name exists.
        """
        await self._require(name).reset()

    async def force_close(self, name: str) -> None:
        await self._require(name).force_close()

    async def force_open(self, name: str) -> None:
        await self._require(name).force_open()

    async def check_all(self) -> None:
        """Run one health check on every circuit."""
        for circuit in list(self._circuits.values()):
            await circuit.check_health()

    @property
    def health_check_interval(self) -> float:
        """Shortest health check interval among known and configured circuits."""
        intervals = [c.health_check_interval for c in self._circuits.values()]
        intervals.extend(cfg.health_check_interval for cfg in self._defaults.values())
        return min(intervals) if intervals else CircuitSettings().health_check_interval

    def clear(self) -> None:
        """Drop every circuit (tests)."""
        for unsubscribe in self._unsubscribers.values():
            unsubscribe()
        self._unsubscribers.clear()
        self._circuits.clear()


_registry: CircuitBreakerRegistry | None = None


def get_circuit_registry() -> CircuitBreakerRegistry:
    """Get the process-wide registry, creating it from settings on first use."""
    global _registry
    if _registry is None:
        settings = get_notification_settings()
        _registry = CircuitBreakerRegistry(
            {EMAIL_CIRCUIT: settings.email_circuit, PUSH_CIRCUIT: settings.push_circuit}
        )
    return _registry


def set_circuit_registry(registry: CircuitBreakerRegistry | None) -> None:
    """Replace the process-wide registry (tests)."""
    global _registry
    _registry = registry
