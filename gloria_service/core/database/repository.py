"""Generic repository base with explicit session passing.

Repositories hold no session of their own: every call takes the
``AsyncSession`` of the caller, so transaction boundaries stay with the
service or request that owns them. Queries beyond single-row lookups live
on the concrete repository.

Example:
    class PushSubscriptionRepository(BaseRepository[PushSubscription]):
        async def list_for_user(self, session, user_profile_id):
            stmt = select(PushSubscription).where(PushSubscription.user_profile_id == user_profile_id)
            return (await session.execute(stmt)).scalars().all()
"""

from __future__ import annotations

import logging
from typing import TYPE_CHECKING, Any

from sqlalchemy import select

from gloria_service.infra.logging import get_lazy_logger

if TYPE_CHECKING:
    from sqlalchemy.ext.asyncio import AsyncSession
    from sqlalchemy.orm import InstrumentedAttribute


class BaseRepository[T]:
    """Single-entity lookups and inserts for one mapped class."""

    __slots__ = ("_lazy", "_logger", "model")

    def __init__(self, model: type[T]) -> None:
        self.model = model
        self._logger = logging.getLogger(f"repository.{model.__name__}")
        self._lazy = get_lazy_logger(f"repository.{model.__name__}")

    async def get(self, session: AsyncSession, pk: Any) -> T | None:
        """Load by primary key, from the identity map when possible."""
        instance = await session.get(self.model, pk)
        self._lazy.debug(lambda: f"db.get: {self.model.__name__}({pk}) -> {instance is not None}")
        return instance

    async def get_by(self, session: AsyncSession, attr: InstrumentedAttribute[Any], value: Any) -> T | None:
        """First row whose ``attr`` equals ``value``."""
        result = await session.execute(select(self.model).where(attr == value).limit(1))
        instance = result.scalars().first()
        self._lazy.debug(lambda: f"db.get_by: {self.model.__name__}.{attr.key}={value!r} -> {instance is not None}")
        return instance

    async def create(self, session: AsyncSession, instance: T) -> T:
        """Add, flush and refresh so generated columns are populated. Does not commit."""
        session.add(instance)
        await session.flush()
        await session.refresh(instance)
        self._lazy.debug(lambda: f"db.create: {self.model.__name__}(id={getattr(instance, 'id', None)})")
        return instance
