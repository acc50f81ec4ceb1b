"""Tests for the circuit breaker and its registry."""

from __future__ import annotations

from datetime import timedelta
import re
from typing import TYPE_CHECKING

import pytest

from gloria_service.core.settings import CircuitSettings
from gloria_service.infra.resilience import (
    CircuitBreaker,
    CircuitBreakerRegistry,
    CircuitOpenError,
    CircuitState,
    CircuitStateChange,
)

if TYPE_CHECKING:
    from conftest import FakeClock


class ServiceError(Exception):
    """Failure raised by the fake transport."""


class Transport:
    """Async callable that succeeds or fails on demand and counts calls."""

    def __init__(self) -> None:
        self.calls = 0
        self.fail = False
        self.seen_states: list[CircuitState] = []
        self.breaker: CircuitBreaker | None = None

    async def __call__(self) -> str:
        self.calls += 1
        if self.breaker is not None:
            self.seen_states.append(self.breaker.state)
        if self.fail:
            msg = "transport down"
            raise ServiceError(msg)
        return "ok"


@pytest.fixture
def transport() -> Transport:
    return Transport()


@pytest.fixture
def breaker(clock: FakeClock, transport: Transport) -> CircuitBreaker:
    circuit = CircuitBreaker(
        name="email-service",
        failure_threshold=5,
        success_threshold=2,
        recovery_timeout=60,
        volume_threshold=10,
        error_threshold_percentage=50,
        clock=clock,
    )
    transport.breaker = circuit
    return circuit


async def fail_times(breaker: CircuitBreaker, transport: Transport, count: int) -> None:
    transport.fail = True
    for _ in range(count):
        with pytest.raises(ServiceError):
            await breaker.call(transport)


class TestConfiguration:
    @pytest.mark.parametrize(
        ("kwargs", "message"),
        [
            ({"failure_threshold": 0}, "failure_threshold must be greater than 0"),
            ({"success_threshold": 0}, "success_threshold must be greater than 0"),
            ({"recovery_timeout": 0}, "recovery_timeout must be greater than 0"),
            ({"error_threshold_percentage": 0}, "error_threshold_percentage must be in (0, 100]"),
            ({"error_threshold_percentage": 101}, "error_threshold_percentage must be in (0, 100]"),
            ({"volume_threshold": 0}, "volume_threshold must be greater than 0"),
            ({"window": 0}, "window must be greater than 0"),
        ],
    )
    def test_rejects_invalid_values(self, kwargs: dict[str, float], message: str) -> None:
        with pytest.raises(ValueError, match=re.escape(message)):
            CircuitBreaker(name="bad", **kwargs)

    def test_starts_closed(self, breaker: CircuitBreaker) -> None:
        assert breaker.state is CircuitState.CLOSED
        assert breaker.next_attempt is None


class TestClosedState:
    async def test_success_returns_result(self, breaker: CircuitBreaker, transport: Transport) -> None:
        assert await breaker.call(transport) == "ok"
        assert breaker.total_successes == 1

    async def test_opens_after_consecutive_failures(self, breaker: CircuitBreaker, transport: Transport) -> None:
        await fail_times(breaker, transport, 4)
        assert breaker.state is CircuitState.CLOSED

        await fail_times(breaker, transport, 1)
        assert breaker.state is CircuitState.OPEN

    async def test_success_resets_consecutive_failures(self, breaker: CircuitBreaker, transport: Transport) -> None:
        await fail_times(breaker, transport, 4)
        transport.fail = False
        await breaker.call(transport)
        await fail_times(breaker, transport, 4)

        assert breaker.state is CircuitState.CLOSED
        assert breaker.get_metrics()["consecutive_failures"] == 4

    async def test_error_rate_opens_once_volume_reached(self, clock: FakeClock, transport: Transport) -> None:
        breaker = CircuitBreaker(
            name="push-service",
            failure_threshold=100,
            volume_threshold=10,
            error_threshold_percentage=30,
            clock=clock,
        )
        for _ in range(7):
            await breaker.call(transport)

        await fail_times(breaker, transport, 2)
        assert breaker.state is CircuitState.CLOSED

        await fail_times(breaker, transport, 1)
        assert breaker.state is CircuitState.OPEN
        assert breaker.get_metrics()["error_rate"] == 30.0

    async def test_calls_outside_window_are_forgotten(self, clock: FakeClock, transport: Transport) -> None:
        breaker = CircuitBreaker(
            name="push-service",
            failure_threshold=100,
            volume_threshold=5,
            error_threshold_percentage=50,
            window=60,
            clock=clock,
        )
        await fail_times(breaker, transport, 4)
        clock.advance(seconds=61)
        await fail_times(breaker, transport, 1)

        assert breaker.state is CircuitState.CLOSED
        assert breaker.get_metrics()["window_requests"] == 1

    async def test_unexpected_exception_is_not_counted(self, clock: FakeClock) -> None:
        breaker = CircuitBreaker(name="email-service", expected_exception=ServiceError, clock=clock)

        async def broken() -> None:
            msg = "programming error"
            raise KeyError(msg)

        with pytest.raises(KeyError):
            await breaker.call(broken)
        assert breaker.total_failures == 0


class TestOpenState:
    async def test_rejects_without_invoking(self, breaker: CircuitBreaker, transport: Transport) -> None:
        await fail_times(breaker, transport, 5)
        calls_before = transport.calls

        with pytest.raises(CircuitOpenError) as exc_info:
            await breaker.call(transport)

        assert transport.calls == calls_before
        assert exc_info.value.circuit_name == "email-service"
        assert breaker.total_rejections == 1

    async def test_next_attempt_is_open_time_plus_timeout(
        self, breaker: CircuitBreaker, transport: Transport, clock: FakeClock
    ) -> None:
        opened_at = clock()
        await fail_times(breaker, transport, 5)

        assert breaker.next_attempt == opened_at + timedelta(seconds=60)

    async def test_still_rejects_just_before_timeout(
        self, breaker: CircuitBreaker, transport: Transport, clock: FakeClock
    ) -> None:
        await fail_times(breaker, transport, 5)
        clock.advance(seconds=59)

        with pytest.raises(CircuitOpenError):
            await breaker.call(transport)

    async def test_first_call_after_timeout_runs_half_open(
        self, breaker: CircuitBreaker, transport: Transport, clock: FakeClock
    ) -> None:
        await fail_times(breaker, transport, 5)
        clock.advance(seconds=60)
        transport.fail = False
        transport.seen_states.clear()

        assert await breaker.call(transport) == "ok"
        assert transport.seen_states == [CircuitState.HALF_OPEN]
        assert breaker.state is CircuitState.HALF_OPEN

    async def test_health_check_promotes_to_half_open(
        self, breaker: CircuitBreaker, transport: Transport, clock: FakeClock
    ) -> None:
        await fail_times(breaker, transport, 5)
        assert await breaker.check_health() is CircuitState.OPEN

        clock.advance(seconds=60)
        assert await breaker.check_health() is CircuitState.HALF_OPEN


class TestHalfOpenState:
    @pytest.fixture
    async def half_open(self, breaker: CircuitBreaker, transport: Transport, clock: FakeClock) -> CircuitBreaker:
        await fail_times(breaker, transport, 5)
        clock.advance(seconds=60)
        await breaker.check_health()
        transport.fail = False
        return breaker

    async def test_closes_after_success_threshold(self, half_open: CircuitBreaker, transport: Transport) -> None:
        await half_open.call(transport)
        assert half_open.state is CircuitState.HALF_OPEN

        await half_open.call(transport)
        assert half_open.state is CircuitState.CLOSED

    async def test_failure_reopens_with_fresh_timeout(
        self, half_open: CircuitBreaker, transport: Transport, clock: FakeClock
    ) -> None:
        clock.advance(seconds=5)
        await fail_times(half_open, transport, 1)

        assert half_open.state is CircuitState.OPEN
        assert half_open.next_attempt == clock() + timedelta(seconds=60)


class TestSubscriptions:
    async def test_listener_receives_transitions(
        self, breaker: CircuitBreaker, transport: Transport, clock: FakeClock
    ) -> None:
        changes: list[CircuitStateChange] = []
        breaker.subscribe(changes.append)

        await fail_times(breaker, transport, 5)

        assert len(changes) == 1
        change = changes[0]
        assert change.name == "email-service"
        assert change.from_state is CircuitState.CLOSED
        assert change.to_state is CircuitState.OPEN
        assert change.timestamp == clock()

    async def test_unsubscribe_stops_delivery(self, breaker: CircuitBreaker, transport: Transport) -> None:
        changes: list[CircuitStateChange] = []
        unsubscribe = breaker.subscribe(changes.append)
        unsubscribe()
        unsubscribe()

        await fail_times(breaker, transport, 5)

        assert changes == []

    async def test_failing_listener_does_not_break_circuit(
        self, breaker: CircuitBreaker, transport: Transport
    ) -> None:
        changes: list[CircuitStateChange] = []

        def broken(change: CircuitStateChange) -> None:
            msg = "listener bug"
            raise RuntimeError(msg)

        breaker.subscribe(broken)
        breaker.subscribe(changes.append)

        await fail_times(breaker, transport, 5)

        assert breaker.state is CircuitState.OPEN
        assert len(changes) == 1


class TestAdministration:
    async def test_force_open_and_close(self, breaker: CircuitBreaker, transport: Transport) -> None:
        await breaker.force_open()
        with pytest.raises(CircuitOpenError):
            await breaker.call(transport)

        await breaker.force_close()
        assert await breaker.call(transport) == "ok"

    async def test_reset_clears_totals(self, breaker: CircuitBreaker, transport: Transport) -> None:
        await fail_times(breaker, transport, 5)

        await breaker.reset()

        metrics = breaker.get_metrics()
        assert metrics["state"] == "closed"
        assert metrics["total_failures"] == 0
        assert metrics["total_requests"] == 0
        assert metrics["next_attempt"] is None

    async def test_metrics_shape(self, breaker: CircuitBreaker, transport: Transport) -> None:
        await breaker.call(transport)
        await fail_times(breaker, transport, 1)

        metrics = breaker.get_metrics()
        assert metrics["name"] == "email-service"
        assert metrics["total_requests"] == 2
        assert metrics["total_successes"] == 1
        assert metrics["total_failures"] == 1
        assert metrics["error_rate"] == 50.0
        assert metrics["last_failure_time"] is not None


class TestRegistry:
    def test_get_circuit_is_cached(self) -> None:
        registry = CircuitBreakerRegistry()

        assert registry.get_circuit("email-service") is registry.get_circuit("email-service")
        assert registry.get("push-service") is None

    def test_uses_per_service_defaults(self) -> None:
        registry = CircuitBreakerRegistry(
            {"email-service": CircuitSettings(failure_threshold=3, error_threshold_percentage=30)}
        )

        email = registry.get_circuit("email-service")
        push = registry.get_circuit("push-service")

        assert email.failure_threshold == 3
        assert email.error_threshold_percentage == 30
        assert push.failure_threshold == 5

    async def test_execute_runs_through_named_circuit(self, transport: Transport) -> None:
        registry = CircuitBreakerRegistry()

        assert await registry.execute("push-service", transport) == "ok"
        assert registry.get_all_metrics()["push-service"]["total_successes"] == 1

    async def test_registry_subscribers_see_every_circuit(self) -> None:
        registry = CircuitBreakerRegistry()
        changes: list[CircuitStateChange] = []
        registry.subscribe(changes.append)

        await registry.get_circuit("email-service").force_open()
        await registry.get_circuit("push-service").force_open()

        assert [c.name for c in changes] == ["email-service", "push-service"]

    async def test_unknown_circuit_raises_key_error(self) -> None:
        registry = CircuitBreakerRegistry()

        with pytest.raises(KeyError):
            await registry.reset_circuit("sms-service")
        with pytest.raises(KeyError):
            await registry.force_close("sms-service")

    async def test_check_all_promotes_expired_circuits(self, clock: FakeClock) -> None:
        registry = CircuitBreakerRegistry({"email-service": CircuitSettings(timeout=30)}, clock=clock)
        circuit = registry.get_circuit("email-service")
        await circuit.force_open()

        clock.advance(seconds=30)
        await registry.check_all()

        assert circuit.state is CircuitState.HALF_OPEN
