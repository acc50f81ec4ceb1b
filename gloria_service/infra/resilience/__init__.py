"""Resilience patterns for delivery transports.

- Circuit Breaker: fails fast while a delivery service is down and lets it recover
- Registry: one named circuit per delivery service with health checks

Example:
    >>> from gloria_service.infra.resilience import CircuitOpenError, get_circuit_registry
    >>>
    >>> registry = get_circuit_registry()
    >>> try:
    ...     await registry.execute("email-service", provider.send, message)
    ... except CircuitOpenError:
    ...     logger.warning("Email service unavailable, queuing for retry")

"""

from __future__ import annotations

from gloria_service.infra.resilience.circuit_breaker import (
    CircuitBreaker,
    CircuitOpenError,
    CircuitState,
    CircuitStateChange,
)
from gloria_service.infra.resilience.registry import (
    EMAIL_CIRCUIT,
    PUSH_CIRCUIT,
    CircuitBreakerRegistry,
    get_circuit_registry,
    set_circuit_registry,
)

__all__ = [
    "EMAIL_CIRCUIT",
    "PUSH_CIRCUIT",
    "CircuitBreaker",
    "CircuitBreakerRegistry",
    "CircuitOpenError",
    "CircuitState",
    "CircuitStateChange",
    "get_circuit_registry",
    "set_circuit_registry",
]
