"""Notification pipeline settings: circuits, retry queue and tracking.

Environment variables use NOTIFICATION_ prefix. Nested circuit settings use a
double underscore delimiter.
Example: NOTIFICATION_EMAIL_CIRCUIT__ERROR_THRESHOLD_PERCENTAGE=30
"""

from __future__ import annotations

from pydantic import BaseModel, Field
from pydantic_settings import BaseSettings, SettingsConfigDict


class CircuitSettings(BaseModel):
    """Circuit breaker thresholds for one delivery service."""

    failure_threshold: int = Field(default=5, ge=1, description="Consecutive failures that open the circuit")
    success_threshold: int = Field(default=2, ge=1, description="Half-open successes that close the circuit")
    timeout: float = Field(default=60.0, gt=0, description="Seconds the circuit stays open before probing")
    error_threshold_percentage: float = Field(
        default=50.0,
        gt=0,
        le=100,
        description="Windowed error rate (percent) that opens the circuit",
    )
    volume_threshold: int = Field(
        default=10,
        ge=1,
        description="Minimum calls in the window before the error rate applies",
    )
    window: float = Field(default=60.0, gt=0, description="Rolling window for error rate, seconds")
    health_check_interval: float = Field(
        default=30.0,
        gt=0,
        description="Seconds between background circuit health checks",
    )


class NotificationSettings(BaseSettings):
    """Delivery pipeline tuning."""

    email_circuit: CircuitSettings = Field(
        default_factory=lambda: CircuitSettings(error_threshold_percentage=30.0),
        description="Circuit breaker for email-service",
    )
    push_circuit: CircuitSettings = Field(
        default_factory=lambda: CircuitSettings(error_threshold_percentage=40.0),
        description="Circuit breaker for push-service",
    )
    health_probe_delay: float = Field(
        default=30.0,
        ge=0,
        description="Seconds after a circuit opens before the transport is probed",
    )

    email_max_retries: int = Field(default=5, ge=1, description="Retry limit for failed emails")
    push_max_retries: int = Field(default=3, ge=1, description="Retry limit for failed push messages")
    sms_max_retries: int = Field(default=3, ge=1, description="Retry limit for failed SMS")
    retry_base_delay: float = Field(
        default=300.0,
        gt=0,
        description="In-memory retry base delay in seconds (first attempt and backoff unit)",
    )
    retry_max_delay: float = Field(
        default=24 * 60 * 60,
        gt=0,
        description="Upper bound of the in-memory backoff in seconds",
    )
    queue_process_interval: float = Field(
        default=300.0,
        gt=0,
        description="Seconds between in-memory retry passes",
    )
    memory_queue_max_size: int = Field(default=1000, ge=1, description="In-memory queue capacity")
    memory_queue_evict_count: int = Field(
        default=10,
        ge=1,
        description="Oldest entries dropped when the in-memory queue is full",
    )
    dead_letter_max_size: int = Field(
        default=1000,
        ge=1,
        description="Dead letters kept in memory for inspection (all are persisted)",
    )
    durable_initial_delay: float = Field(
        default=60.0,
        ge=0,
        description="Delay before the first durable queue retry, seconds",
    )
    durable_backoff_base: float = Field(
        default=60.0,
        gt=0,
        description="Durable queue backoff unit: delay = base * 2**attempt",
    )

    tracking_retention_days: int = Field(
        default=7,
        ge=1,
        description="Frequency tracking windows older than this are purged",
    )
    tracking_cleanup_interval: float = Field(
        default=24 * 60 * 60,
        gt=0,
        description="Seconds between frequency tracking purges",
    )
    default_timezone: str = Field(
        default="Asia/Jakarta",
        description="Timezone assigned to lazily created preferences",
    )

    bulk_batch_size: int = Field(default=10, ge=1, description="Concurrent sends per bulk batch")
    bulk_batch_pause: float = Field(default=1.0, ge=0, description="Pause between bulk batches, seconds")

    background_tasks_enabled: bool = Field(
        default=True,
        description="Run the retry processor, circuit health checks and tracking cleanup in-process",
    )

    model_config = SettingsConfigDict(
        env_prefix="NOTIFICATION_",
        env_nested_delimiter="__",
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
        frozen=True,
        extra="ignore",
        env_ignore_empty=True,
    )
