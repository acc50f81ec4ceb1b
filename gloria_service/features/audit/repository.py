"""Repository for audit log entries."""

from __future__ import annotations

from typing import TYPE_CHECKING, Any

from sqlalchemy import select

from gloria_service.core.database.repository import BaseRepository
from gloria_service.features.audit.models import AuditAction, AuditLog

if TYPE_CHECKING:
    from collections.abc import Sequence

    from sqlalchemy.ext.asyncio import AsyncSession


class AuditRepository(BaseRepository[AuditLog]):
    """Write and query audit entries."""

    def __init__(self) -> None:
        super().__init__(AuditLog)

    async def record(
        self,
        session: AsyncSession,
        *,
        actor_id: str,
        action: AuditAction,
        module: str,
        entity_type: str,
        entity_id: str | None = None,
        entity_display: str | None = None,
        details: dict[str, Any] | None = None,
    ) -> AuditLog:
        """Add an audit entry. The caller commits."""
        entry = AuditLog(
            actor_id=actor_id,
            action=action.value,
            module=module,
            entity_type=entity_type,
            entity_id=entity_id,
            entity_display=entity_display,
            details=details,
        )
        return await self.create(session, entry)

    async def exists_for_entity(
        self,
        session: AsyncSession,
        *,
        module: str,
        entity_type: str,
        entity_id: str,
    ) -> bool:
        stmt = (
            select(AuditLog.id)
            .where(
                AuditLog.module == module,
                AuditLog.entity_type == entity_type,
                AuditLog.entity_id == entity_id,
            )
            .limit(1)
        )
        result = await session.execute(stmt)
        return result.scalar_one_or_none() is not None

    async def list_for_module(
        self,
        session: AsyncSession,
        module: str,
        *,
        entity_type: str | None = None,
        limit: int = 100,
    ) -> Sequence[AuditLog]:
        stmt = select(AuditLog).where(AuditLog.module == module)
        if entity_type is not None:
            stmt = stmt.where(AuditLog.entity_type == entity_type)
        stmt = stmt.order_by(AuditLog.created_at.desc()).limit(limit)
        result = await session.execute(stmt)
        items = result.scalars().all()
        self._lazy.debug(lambda: f"db.list_for_module({module=}, {entity_type=}) -> {len(items)} entries")
        return items


_audit_repository: AuditRepository | None = None


def get_audit_repository() -> AuditRepository:
    global _audit_repository
    if _audit_repository is None:
        _audit_repository = AuditRepository()
    return _audit_repository
