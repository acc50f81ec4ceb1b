"""Prometheus metrics for the notification delivery pipeline.

This module provides metrics for:
- Preference decisions (sent vs blocked, by reason)
- Delivery success/failure by channel
- Delivery duration histograms
- Retry queue size, enqueues, retries and dead letters

Circuit breaker state, call outcomes and transitions are exported per
circuit by ``gloria_service.infra.metrics.tracking``.

Usage:
    from gloria_service.features.notifications.metrics import (
        notifications_sent_total,
        notifications_blocked_total,
    )

    notifications_blocked_total.labels(
        notification_type="APPROVAL_REQUEST",
        reason="quiet_hours",
    ).inc()
"""

from __future__ import annotations

from prometheus_client import Counter, Gauge, Histogram

from gloria_service.infra.metrics.prometheus import DELIVERY_LATENCY_BUCKETS, REGISTRY

# =============================================================================
# Preference Metrics
# =============================================================================

notifications_sent_total = Counter(
    "notifications_sent_total",
    "Total number of notifications delivered by type, priority and channel",
    labelnames=["notification_type", "priority", "channel"],
    registry=REGISTRY,
)

notifications_failed_total = Counter(
    "notifications_failed_total",
    "Total number of failed delivery attempts by channel and reason",
    labelnames=["channel", "reason"],
    registry=REGISTRY,
)
"""
Counter for failed deliveries.

Labels:
    channel: EMAIL or PUSH
    reason: not_configured, circuit_open, transport_error, subscription_gone,
        invalid_recipient
"""

notifications_blocked_total = Counter(
    "notifications_blocked_total",
    "Total number of notifications suppressed by user preferences",
    labelnames=["notification_type", "reason"],
    registry=REGISTRY,
)
"""
Counter for preference blocks.

Labels:
    notification_type: Requested notification type
    reason: disabled, unsubscribed, quiet_hours, hourly_limit, daily_limit,
        type_disabled, priority_threshold, type_daily_limit
"""

# =============================================================================
# Delivery Performance Metrics
# =============================================================================

notification_send_duration_seconds = Histogram(
    "notification_send_duration_seconds",
    "Notification transport call duration in seconds",
    labelnames=["channel"],
    buckets=DELIVERY_LATENCY_BUCKETS,
    registry=REGISTRY,
)

# =============================================================================
# Retry Queue Metrics
# =============================================================================

fallback_queue_size = Gauge(
    "notification_fallback_queue_size",
    "Entries waiting in the in-memory retry queue",
    labelnames=["type"],
    registry=REGISTRY,
)

fallback_enqueued_total = Counter(
    "notification_fallback_enqueued_total",
    "Failed notifications handed to a retry store",
    labelnames=["type", "storage"],
    registry=REGISTRY,
)
"""
Counter for retry enqueues.

Labels:
    type: EMAIL, PUSH or SMS
    storage: durable (taskiq broker) or memory
"""

fallback_evicted_total = Counter(
    "notification_fallback_evicted_total",
    "Entries dropped from a full in-memory retry queue",
    labelnames=["type"],
    registry=REGISTRY,
)

fallback_retries_total = Counter(
    "notification_fallback_retries_total",
    "Retry attempts by type and outcome",
    labelnames=["type", "outcome"],
    registry=REGISTRY,
)

dead_letters_total = Counter(
    "notification_dead_letters_total",
    "Notifications that exhausted their retries",
    labelnames=["type"],
    registry=REGISTRY,
)
