"""Async engine and session factory.

PostgreSQL through psycopg 3 when ``DB_*`` settings are present, SQLite
through aiosqlite otherwise (local runs and tests). Every statement is timed
into ``database_query_duration_seconds`` with the current trace id as
exemplar.
"""

from __future__ import annotations

from contextlib import asynccontextmanager
import logging
import time
from typing import TYPE_CHECKING, Any

from opentelemetry import trace
from sqlalchemy import event, text
from sqlalchemy.ext.asyncio import AsyncEngine, AsyncSession, async_sessionmaker, create_async_engine

from gloria_service.core.settings import get_app_settings, get_db_settings
from gloria_service.infra.metrics.prometheus import (
    database_connections_active,
    database_query_duration_seconds,
)

if TYPE_CHECKING:
    from collections.abc import AsyncGenerator

logger = logging.getLogger(__name__)

SLOW_QUERY_SECONDS = 1.0
_KNOWN_OPERATIONS = frozenset({"SELECT", "INSERT", "UPDATE", "DELETE", "BEGIN", "COMMIT", "ROLLBACK"})

db_settings = get_db_settings()


def _statement_operation(statement: str | None) -> str:
    verb = (statement or "").lstrip()[:8].split(None, 1)
    return verb[0].upper() if verb and verb[0].upper() in _KNOWN_OPERATIONS else "UNKNOWN"


def _observe_query(operation: str, duration: float) -> None:
    histogram = database_query_duration_seconds.labels(operation=operation)
    span_context = trace.get_current_span().get_span_context()
    if span_context.is_valid:
        histogram.observe(duration, exemplar={"trace_id": format(span_context.trace_id, "032x")})
    else:
        histogram.observe(duration)
    if duration > SLOW_QUERY_SECONDS:
        logger.warning("Slow database query", extra={"operation": operation, "duration_ms": round(duration * 1000, 2)})


def instrument_engine(async_engine: AsyncEngine) -> None:
    """Attach pool gauges and per-statement timing to an engine."""
    sync_engine = async_engine.sync_engine

    @event.listens_for(sync_engine.pool, "connect")
    def _on_connect(*_: Any) -> None:
        database_connections_active.inc()

    @event.listens_for(sync_engine.pool, "close")
    def _on_close(*_: Any) -> None:
        database_connections_active.dec()

    @event.listens_for(sync_engine, "before_cursor_execute")
    def _before(conn: Any, cursor: Any, statement: str, parameters: Any, context: Any, executemany: bool) -> None:
        context._gloria_started = time.perf_counter()

    @event.listens_for(sync_engine, "after_cursor_execute")
    def _after(conn: Any, cursor: Any, statement: str, parameters: Any, context: Any, executemany: bool) -> None:
        started = getattr(context, "_gloria_started", None)
        if started is not None:
            _observe_query(_statement_operation(statement), time.perf_counter() - started)


def _create_engine() -> AsyncEngine:
    kwargs = db_settings.sqlalchemy_engine_kwargs()
    kwargs["echo"] = kwargs["echo"] or get_app_settings().debug
    created = create_async_engine(db_settings.get_sqlalchemy_url(), **kwargs)
    instrument_engine(created)
    return created


engine = _create_engine()

AsyncSessionLocal = async_sessionmaker(engine, class_=AsyncSession, expire_on_commit=False, autoflush=False)


@asynccontextmanager
async def get_async_session() -> AsyncGenerator[AsyncSession]:
    """Session for code running outside a request (CLI, worker, queue handlers).

    Example:
        async with get_async_session() as session:
            preference = await repository.get_by_user(session, user_profile_id)
    """
    async with AsyncSessionLocal() as session:
        yield session


async def init_database() -> None:
    """Fail startup early when the database is unreachable."""
    target = db_settings.host if db_settings.is_configured else "sqlite"
    try:
        async with engine.connect() as conn:
            await conn.execute(text("SELECT 1"))
    except Exception as e:
        logger.error("Failed to connect to database", extra={"target": target, "error": str(e)})
        raise
    logger.info("Database connection established", extra={"target": target})


async def close_database() -> None:
    try:
        await engine.dispose()
    except Exception as e:
        logger.exception("Error closing database connection", extra={"error": str(e)})
        return
    logger.info("Database connection closed")
