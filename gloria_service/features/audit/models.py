"""Audit trail model.

The notification pipeline writes one row per dead-lettered notification;
other writers may add their own actions.
"""

from __future__ import annotations

from datetime import UTC, datetime
from enum import StrEnum
from typing import Any

from sqlalchemy import JSON, DateTime, String, func
from sqlalchemy.dialects.postgresql import JSONB
from sqlalchemy.orm import Mapped, mapped_column

from gloria_service.core.database.base import Base, UUIDv7PKMixin


class AuditAction(StrEnum):
    """Audit action types."""

    CREATE = "CREATE"
    UPDATE = "UPDATE"
    DELETE = "DELETE"
    READ = "READ"


class AuditLog(Base, UUIDv7PKMixin):
    """Audit log entry.

    Attributes:
        id: Time-sortable UUID (UUIDv7)
        created_at: When the action was recorded
        actor_id: Who performed the action ("system" for background work)
        action: AuditAction value
        module: Subsystem that wrote the entry (e.g. "notification")
        entity_type: Type of entity affected
        entity_id: ID of the affected entity
        entity_display: Human-readable label for the entity
        details: JSON context, stored in the ``metadata`` column

    Example:
        audit = AuditLog(
            actor_id="system",
            action=AuditAction.UPDATE,
            module="notification",
            entity_type="notification",
            entity_id=str(entry.id),
            details={"failureType": "NOTIFICATION_FAILED"},
        )
    """

    __tablename__ = "audit_logs"

    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        default=lambda: datetime.now(UTC),
        server_default=func.now(),
        nullable=False,
        index=True,
        comment="When the action was recorded",
    )
    actor_id: Mapped[str] = mapped_column(
        String(255),
        nullable=False,
        index=True,
        comment="Actor that performed the action",
    )
    action: Mapped[str] = mapped_column(String(20), nullable=False, comment="Action performed")
    module: Mapped[str] = mapped_column(String(100), nullable=False, index=True, comment="Writing subsystem")
    entity_type: Mapped[str] = mapped_column(
        String(100),
        nullable=False,
        index=True,
        comment="Type of entity affected",
    )
    entity_id: Mapped[str | None] = mapped_column(
        String(255),
        nullable=True,
        index=True,
        comment="ID of the affected entity",
    )
    entity_display: Mapped[str | None] = mapped_column(
        String(500),
        nullable=True,
        comment="Human-readable entity label",
    )
    # "metadata" is reserved on declarative classes
    details: Mapped[dict[str, Any] | None] = mapped_column(
        "metadata",
        JSONB().with_variant(JSON(), "sqlite"),
        nullable=True,
        comment="Additional context",
    )
