"""Audit trail storage."""

from __future__ import annotations

from gloria_service.features.audit.models import AuditAction, AuditLog
from gloria_service.features.audit.repository import AuditRepository, get_audit_repository

__all__ = ["AuditAction", "AuditLog", "AuditRepository", "get_audit_repository"]
