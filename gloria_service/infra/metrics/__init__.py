"""Metrics infrastructure for Prometheus monitoring."""

from __future__ import annotations

from prometheus_client import CONTENT_TYPE_LATEST, generate_latest

from gloria_service.infra.metrics import tracking
from gloria_service.infra.metrics.prometheus import REGISTRY

__all__ = [
    "CONTENT_TYPE_LATEST",
    "REGISTRY",
    "generate_latest",
    "tracking",
]
