"""Error and circuit breaker metrics with the helpers that update them.

Circuit metrics are labelled per circuit (``email-service``,
``push-service``); state is exported as 0=closed, 1=half_open, 2=open.
"""

from __future__ import annotations

import logging
from typing import Any

from prometheus_client import Counter, Gauge

from gloria_service.infra.metrics.prometheus import REGISTRY

logger = logging.getLogger(__name__)

_STATE_VALUES = {"closed": 0, "half_open": 1, "open": 2}

errors_total = Counter(
    "errors_total",
    "Errors answered by the API, by problem type",
    ["error_type", "endpoint", "status_code"],
    registry=REGISTRY,
)

circuit_breaker_state = Gauge(
    "circuit_breaker_state",
    "Circuit breaker state (0=closed, 1=half_open, 2=open)",
    ["circuit_name"],
    registry=REGISTRY,
)

circuit_breaker_calls_total = Counter(
    "circuit_breaker_calls_total",
    "Calls through a circuit breaker by outcome (success, failure, rejected)",
    ["circuit_name", "outcome"],
    registry=REGISTRY,
)

circuit_breaker_state_changes_total = Counter(
    "circuit_breaker_state_changes_total",
    "Circuit breaker state transitions",
    ["circuit_name", "from_state", "to_state"],
    registry=REGISTRY,
)


def track_error(error_type: str, endpoint: str, status_code: int, extra: dict[str, Any] | None = None) -> None:
    """Count an error response.

    Example:
        track_error("already-unsubscribed", "/api/v1/notification-preferences/unsubscribe", 400)
    """
    errors_total.labels(error_type=error_type, endpoint=endpoint, status_code=str(status_code)).inc()
    logger.debug(
        f"Tracked error: {error_type}",
        extra={"endpoint": endpoint, "status_code": status_code, **(extra or {})},
    )


def update_circuit_breaker_state(circuit_name: str, state: str) -> None:
    circuit_breaker_state.labels(circuit_name=circuit_name).set(_STATE_VALUES.get(state, 0))


def track_circuit_breaker_success(circuit_name: str) -> None:
    circuit_breaker_calls_total.labels(circuit_name=circuit_name, outcome="success").inc()


def track_circuit_breaker_failure(circuit_name: str) -> None:
    circuit_breaker_calls_total.labels(circuit_name=circuit_name, outcome="failure").inc()


def track_circuit_breaker_rejected(circuit_name: str) -> None:
    circuit_breaker_calls_total.labels(circuit_name=circuit_name, outcome="rejected").inc()


def track_circuit_breaker_state_change(circuit_name: str, from_state: str, to_state: str) -> None:
    circuit_breaker_state_changes_total.labels(
        circuit_name=circuit_name, from_state=from_state, to_state=to_state
    ).inc()
