"""Circuit breaker guarding calls to external delivery services.

The circuit breaker stops calling a failing transport, lets it recover, and
publishes every state transition to explicit subscribers.

States:
    - CLOSED: Normal operation, requests pass through
    - OPEN: Failure threshold exceeded, requests fail immediately
    - HALF_OPEN: Testing recovery, requests pass through until a verdict

Transitions:
    CLOSED -> OPEN: Consecutive failures reach the failure threshold, or the
        rolling window holds enough calls and its error rate reaches the
        error threshold percentage
    OPEN -> HALF_OPEN: After recovery timeout (on the next call or health check)
    HALF_OPEN -> CLOSED: When success threshold met
    HALF_OPEN -> OPEN: On any failure

Example:
    >>> from gloria_service.infra.resilience import CircuitBreaker, CircuitOpenError
    >>>
    >>> breaker = CircuitBreaker(name="email-service", error_threshold_percentage=30)
    >>> unsubscribe = breaker.subscribe(lambda change: print(change.to_state))
    >>>
    >>> try:
    ...     await breaker.call(provider.send, message)
    ... except CircuitOpenError as e:
    ...     logger.warning(f"Circuit breaker open: {e}")
    >>>
    >>> metrics = breaker.get_metrics()
    >>> print(f"State: {metrics['state']}, Error rate: {metrics['error_rate']}")

"""

from __future__ import annotations

import asyncio
import logging
import time
from collections import deque
from dataclasses import dataclass
from datetime import UTC, datetime, timedelta
from enum import StrEnum
from typing import TYPE_CHECKING, Any, ParamSpec, TypeVar

from gloria_service.infra.metrics.tracking import (
    track_circuit_breaker_failure,
    track_circuit_breaker_rejected,
    track_circuit_breaker_state_change,
    track_circuit_breaker_success,
    update_circuit_breaker_state,
)

if TYPE_CHECKING:
    from collections.abc import Awaitable, Callable

logger = logging.getLogger(__name__)

P = ParamSpec("P")
T = TypeVar("T")


class CircuitState(StrEnum):
    """Circuit breaker states."""

    CLOSED = "closed"  # Normal operation
    OPEN = "open"  # Failing fast
    HALF_OPEN = "half_open"  # Testing recovery


@dataclass(frozen=True, slots=True)
class CircuitStateChange:
    """Event published to subscribers on every state transition."""

    name: str
    from_state: CircuitState
    to_state: CircuitState
    timestamp: datetime


type CircuitListener = Callable[[CircuitStateChange], None]


class CircuitOpenError(Exception):
    """Raised when a call is rejected because the circuit is open.

    Carries no HTTP semantics; callers decide whether to queue, retry or fail.

    Example:
        >>> try:
        ...     await breaker.call(risky_operation)
        ... except CircuitOpenError as e:
        ...     await queue.store_failed_email(payload, f"Circuit breaker: {e}")

    """

    def __init__(self, message: str = "Circuit breaker is open", *, circuit_name: str | None = None) -> None:
        super().__init__(message)
        self.circuit_name = circuit_name


def _utcnow() -> datetime:
    return datetime.now(UTC)


class CircuitBreaker:
    """Circuit breaker with a rolling error-rate window.

    Attributes:
        name: Identifier for this circuit breaker instance.
        failure_threshold: Consecutive failures before opening the circuit.
        success_threshold: Consecutive HALF_OPEN successes needed to close it.
        recovery_timeout: Seconds to stay OPEN before attempting recovery.
        error_threshold_percentage: Windowed error rate that opens the circuit.
        volume_threshold: Minimum calls in the window before the rate applies.
        window: Length of the rolling window in seconds.
        health_check_interval: Seconds between background health checks.
        total_failures: Failures recorded since creation or last reset.
        total_successes: Successes recorded since creation or last reset.
        total_rejections: Calls rejected while open.

    Example:
        >>> breaker = CircuitBreaker(name="push-service", error_threshold_percentage=40)
        >>> result = await breaker.call(send_push, subscription, payload)

    """

    def __init__(
        self,
        *,
        name: str,
        failure_threshold: int = 5,
        success_threshold: int = 2,
        recovery_timeout: float = 60.0,
        error_threshold_percentage: float = 50.0,
        volume_threshold: int = 10,
        window: float = 60.0,
        health_check_interval: float = 30.0,
        clock: Callable[[], datetime] | None = None,
    ) -> None:
        """Initialize circuit breaker.

        Args:
            name: Unique identifier for this circuit breaker instance.
            failure_threshold: Consecutive failures before opening. Must be > 0.
            success_threshold: Successes in HALF_OPEN before closing. Must be > 0.
            recovery_timeout: Seconds in OPEN before HALF_OPEN. Must be > 0.
            error_threshold_percentage: Error rate (0-100] that opens the circuit
                once the window holds at least ``volume_threshold`` calls.
            volume_threshold: Minimum windowed calls for the error rate rule.
            window: Rolling window length in seconds.
            health_check_interval: Seconds between registry health checks.
            clock: Returns the current aware datetime. Defaults to UTC now.

        Raises:
            ValueError: If any threshold or timeout value is invalid.

        """
        if failure_threshold <= 0:
            msg = "failure_threshold must be greater than 0"
            raise ValueError(msg)
        if success_threshold <= 0:
            msg = "success_threshold must be greater than 0"
            raise ValueError(msg)
        if recovery_timeout <= 0:
            msg = "recovery_timeout must be greater than 0"
            raise ValueError(msg)
        if not 0 < error_threshold_percentage <= 100:
            msg = "error_threshold_percentage must be in (0, 100]"
            raise ValueError(msg)
        if volume_threshold <= 0:
            msg = "volume_threshold must be greater than 0"
            raise ValueError(msg)
        if window <= 0:
            msg = "window must be greater than 0"
            raise ValueError(msg)

        self.name = name
        self.failure_threshold = failure_threshold
        self.success_threshold = success_threshold
        self.recovery_timeout = recovery_timeout
        self.error_threshold_percentage = error_threshold_percentage
        self.volume_threshold = volume_threshold
        self.window = window
        self.health_check_interval = health_check_interval
        self._clock = clock or _utcnow

        # State tracking (protected with lock)
        self._state = CircuitState.CLOSED
        self._failure_count = 0
        self._success_count = 0
        self._opened_at: datetime | None = None
        self._last_failure_time: datetime | None = None
        self._last_state_change = self._clock()
        self._calls: deque[tuple[datetime, bool]] = deque()
        self._lock = asyncio.Lock()
        self._listeners: list[CircuitListener] = []

        # Lifetime statistics
        self.total_failures = 0
        self.total_successes = 0
        self.total_rejections = 0
        self._total_response_time = 0.0

        update_circuit_breaker_state(self.name, self._state.value)

        logger.info(
            f"Circuit breaker '{name}' initialized",
            extra={
                "circuit_breaker": name,
                "failure_threshold": failure_threshold,
                "recovery_timeout": recovery_timeout,
                "success_threshold": success_threshold,
                "error_threshold_percentage": error_threshold_percentage,
                "volume_threshold": volume_threshold,
            },
        )

    @property
    def state(self) -> CircuitState:
        return self._state

    @property
    def is_open(self) -> bool:
        return self._state == CircuitState.OPEN

    @property
    def is_closed(self) -> bool:
        return self._state == CircuitState.CLOSED

    @property
    def is_half_open(self) -> bool:
        return self._state == CircuitState.HALF_OPEN

    @property
    def next_attempt(self) -> datetime | None:
        """Earliest time an OPEN circuit lets a trial call through."""
        if self._opened_at is None or not self.is_open:
            return None
        return self._opened_at + timedelta(seconds=self.recovery_timeout)

    # ------------------------------------------------------------------
    # Subscriptions
    # ------------------------------------------------------------------

    def subscribe(self, listener: CircuitListener) -> Callable[[], None]:
        """Register a listener for state changes.

        Args:
            listener: Called synchronously with a CircuitStateChange.

        Returns:
            Callable that removes the listener. Calling it twice is a no-op.
        """
        self._listeners.append(listener)

        def unsubscribe() -> None:
            if listener in self._listeners:
                self._listeners.remove(listener)

        return unsubscribe

    def _publish(self, change: CircuitStateChange) -> None:
        for listener in list(self._listeners):
            try:
                listener(change)
            except Exception:
                logger.exception(
                    f"Circuit breaker '{self.name}' listener failed",
                    extra={
                        "circuit_breaker": self.name,
                        "from_state": change.from_state.value,
                        "to_state": change.to_state.value,
                    },
                )

    # ------------------------------------------------------------------
    # Protected calls
    # ------------------------------------------------------------------

    async def call(self, func: Callable[P, Awaitable[T]], *args: P.args, **kwargs: P.kwargs) -> T:
        """Execute function with circuit breaker protection.

        Args:
            func: Async function to execute.
            *args: Positional arguments to pass to the function.
            **kwargs: Keyword arguments to pass to the function.

        Returns:
            Result returned by the function.

        Raises:
            CircuitOpenError: If the circuit is open and the recovery timeout
                has not elapsed. ``func`` is not invoked.
            Exception: Any exception raised by the function (after recording failure).

        """
        async with self._lock:
            self._check_state()

            if self.is_open:
                self.total_rejections += 1
                track_circuit_breaker_rejected(self.name)
                next_attempt = self.next_attempt
                msg = (
                    f"Circuit breaker '{self.name}' is open. "
                    f"Next attempt at {next_attempt.isoformat() if next_attempt else 'unknown'}"
                )
                logger.warning(
                    msg,
                    extra={
                        "circuit_breaker": self.name,
                        "state": "open",
                        "total_rejections": self.total_rejections,
                    },
                )
                raise CircuitOpenError(msg, circuit_name=self.name)

        started = time.perf_counter()
        try:
            result = await func(*args, **kwargs)
        except Exception as e:
            await self._on_failure(e, time.perf_counter() - started)
            raise
        await self._on_success(time.perf_counter() - started)
        return result

    async def check_health(self) -> CircuitState:
        """Periodic maintenance: prune the window and promote OPEN to HALF_OPEN.

        Returns:
            The state after the check.
        """
        async with self._lock:
            self._prune_window(self._clock())
            self._check_state()
            return self._state

    # ------------------------------------------------------------------
    # Bookkeeping (called while holding the lock)
    # ------------------------------------------------------------------

    def _check_state(self) -> None:
        next_attempt = self.next_attempt
        if next_attempt is not None and self._clock() >= next_attempt:
            self._transition(CircuitState.HALF_OPEN)

    def _prune_window(self, now: datetime) -> None:
        cutoff = now - timedelta(seconds=self.window)
        while self._calls and self._calls[0][0] < cutoff:
            self._calls.popleft()

    def _window_stats(self) -> tuple[int, float]:
        total = len(self._calls)
        if total == 0:
            return 0, 0.0
        failures = sum(1 for _, ok in self._calls if not ok)
        return total, failures / total * 100

    async def _on_success(self, elapsed: float) -> None:
        async with self._lock:
            now = self._clock()
            self.total_successes += 1
            self._total_response_time += elapsed
            self._calls.append((now, True))
            self._prune_window(now)
            self._failure_count = 0
            track_circuit_breaker_success(self.name)

            if self.is_half_open:
                self._success_count += 1
                logger.info(
                    f"Circuit breaker '{self.name}' success in HALF_OPEN",
                    extra={
                        "circuit_breaker": self.name,
                        "state": "half_open",
                        "success_count": self._success_count,
                        "success_threshold": self.success_threshold,
                    },
                )
                if self._success_count >= self.success_threshold:
                    self._transition(CircuitState.CLOSED)

    async def _on_failure(self, exception: Exception, elapsed: float) -> None:
        async with self._lock:
            now = self._clock()
            self.total_failures += 1
            self._total_response_time += elapsed
            self._failure_count += 1
            self._success_count = 0
            self._last_failure_time = now
            self._calls.append((now, False))
            self._prune_window(now)
            track_circuit_breaker_failure(self.name)

            window_calls, error_rate = self._window_stats()
            logger.warning(
                f"Circuit breaker '{self.name}' recorded failure",
                extra={
                    "circuit_breaker": self.name,
                    "failure_count": self._failure_count,
                    "failure_threshold": self.failure_threshold,
                    "error_rate": round(error_rate, 2),
                    "exception_type": type(exception).__name__,
                    "exception_message": str(exception),
                },
            )

            if self.is_half_open:
                # Any failure in HALF_OPEN immediately reopens the circuit
                self._transition(CircuitState.OPEN)
            elif self.is_closed and (
                self._failure_count >= self.failure_threshold
                or (
                    window_calls >= self.volume_threshold
                    and error_rate >= self.error_threshold_percentage
                )
            ):
                self._transition(CircuitState.OPEN)

    def _transition(self, new_state: CircuitState) -> None:
        old_state = self._state
        if old_state == new_state:
            return

        now = self._clock()
        self._state = new_state
        self._success_count = 0
        self._last_state_change = now
        if new_state == CircuitState.OPEN:
            self._opened_at = now
        elif new_state == CircuitState.HALF_OPEN:
            self._failure_count = 0
        else:
            self._failure_count = 0
            self._opened_at = None

        track_circuit_breaker_state_change(self.name, old_state.value, new_state.value)
        update_circuit_breaker_state(self.name, new_state.value)

        log = logger.error if new_state == CircuitState.OPEN else logger.info
        log(
            f"Circuit breaker '{self.name}' transitioned {old_state.value} -> {new_state.value}",
            extra={
                "circuit_breaker": self.name,
                "old_state": old_state.value,
                "new_state": new_state.value,
                "recovery_timeout": self.recovery_timeout,
            },
        )

        self._publish(CircuitStateChange(self.name, old_state, new_state, now))

    # ------------------------------------------------------------------
    # Administrative controls
    # ------------------------------------------------------------------

    async def force_open(self) -> None:
        """Open the circuit immediately, starting a fresh recovery timeout."""
        async with self._lock:
            self._transition(CircuitState.OPEN)
            self._opened_at = self._clock()
            logger.warning(
                f"Circuit breaker '{self.name}' forced open",
                extra={"circuit_breaker": self.name},
            )

    async def force_close(self) -> None:
        """Close the circuit immediately, clearing consecutive counters and the window."""
        async with self._lock:
            self._transition(CircuitState.CLOSED)
            self._reset_counters()
            logger.info(
                f"Circuit breaker '{self.name}' forced closed",
                extra={"circuit_breaker": self.name},
            )

    async def reset(self) -> None:
        """Return to CLOSED and clear every counter, including lifetime totals."""
        async with self._lock:
            self._transition(CircuitState.CLOSED)
            self._reset_counters()
            self.total_failures = 0
            self.total_successes = 0
            self.total_rejections = 0
            self._total_response_time = 0.0
            logger.info(
                f"Circuit breaker '{self.name}' manually reset",
                extra={"circuit_breaker": self.name},
            )

    def _reset_counters(self) -> None:
        self._failure_count = 0
        self._success_count = 0
        self._opened_at = None
        self._last_failure_time = None
        self._calls.clear()

    def get_metrics(self) -> dict[str, Any]:
        """Get circuit breaker metrics.

        Returns:
            Dictionary with the following keys:
                - name, state
                - total_requests, total_successes, total_failures, total_rejections
                - consecutive_failures, consecutive_successes
                - average_response_time: Mean call duration in milliseconds
                - error_rate: Windowed error rate in percent
                - window_requests: Calls inside the rolling window
                - last_failure_time, last_state_change, next_attempt: ISO 8601 or None

        """
        self._prune_window(self._clock())
        window_calls, error_rate = self._window_stats()
        total_calls = self.total_failures + self.total_successes
        average = self._total_response_time / total_calls * 1000 if total_calls else 0.0
        next_attempt = self.next_attempt

        return {
            "name": self.name,
            "state": self._state.value,
            "total_requests": total_calls,
            "total_successes": self.total_successes,
            "total_failures": self.total_failures,
            "total_rejections": self.total_rejections,
            "consecutive_failures": self._failure_count,
            "consecutive_successes": self._success_count,
            "average_response_time": round(average, 3),
            "error_rate": round(error_rate, 2),
            "window_requests": window_calls,
            "last_failure_time": (
                self._last_failure_time.isoformat() if self._last_failure_time else None
            ),
            "last_state_change": self._last_state_change.isoformat(),
            "next_attempt": next_attempt.isoformat() if next_attempt else None,
        }
