"""Database dependencies for FastAPI route handlers.

Two session getters exist for different use cases:

1. ``get_db_session()`` (this module): FastAPI dependency, lifecycle tied to
   the HTTP request. Tests override it through ``app.dependency_overrides``.
2. ``get_async_session()`` (infra.database): context manager for CLI commands,
   background loops and queue workers.

Both use the same session factory.
"""

from __future__ import annotations

from collections.abc import AsyncGenerator

from sqlalchemy.ext.asyncio import AsyncSession

from gloria_service.infra.database import get_async_session


async def get_db_session() -> AsyncGenerator[AsyncSession]:
    """FastAPI dependency for database session.

    Yields:
        Database session that is automatically closed after request.
    """
    async with get_async_session() as session:
        yield session
