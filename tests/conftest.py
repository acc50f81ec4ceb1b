"""Pytest configuration and shared fixtures.

Organization:
    - Database Fixtures: in-memory SQLite engine, sessions and a session factory
    - Clock Fixtures: a controllable clock for windows, backoff and circuits
    - Pipeline Fixtures: circuit registry, retry queue and notification settings
    - Application Fixtures: FastAPI app with the database dependency overridden

Fixtures that replace process-wide singletons restore them after each test.
"""

from __future__ import annotations

from collections.abc import AsyncGenerator, AsyncIterator, Callable, Generator
from contextlib import AbstractAsyncContextManager, asynccontextmanager
from datetime import UTC, datetime, timedelta
import os
from typing import TYPE_CHECKING

from httpx import ASGITransport, AsyncClient
import pytest
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker, create_async_engine
from sqlalchemy.pool import StaticPool

if TYPE_CHECKING:
    from fastapi import FastAPI
    from sqlalchemy.ext.asyncio import AsyncEngine

    from gloria_service.core.settings import NotificationSettings
    from gloria_service.features.notifications.fallback import FallbackQueue
    from gloria_service.infra.resilience import CircuitBreakerRegistry

# Ensure tests run without external infrastructure
os.environ.setdefault("DB_ENABLED", "false")
os.environ.setdefault("RABBIT_ENABLED", "false")
os.environ.setdefault("NOTIFICATION_BACKGROUND_TASKS_ENABLED", "false")
os.environ.setdefault("APP_SERVICE_NAME", "test-service")

type SessionFactory = Callable[[], AbstractAsyncContextManager[AsyncSession]]


# ============================================================================
# Database Fixtures
# ============================================================================


@pytest.fixture
async def db_engine() -> AsyncGenerator[AsyncEngine]:
    """In-memory SQLite engine with every table created.

    StaticPool keeps a single connection so all sessions see the same
    in-memory database.
    """
    from gloria_service.core.database.base import Base
    from gloria_service.features.audit import models as audit_models
    from gloria_service.features.notifications import models as notification_models

    _ = (audit_models, notification_models)

    engine = create_async_engine(
        "sqlite+aiosqlite:///:memory:",
        echo=False,
        poolclass=StaticPool,
        connect_args={"check_same_thread": False},
    )
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)

    try:
        yield engine
    finally:
        async with engine.begin() as conn:
            await conn.run_sync(Base.metadata.drop_all)
        await engine.dispose()


@pytest.fixture
def session_maker(db_engine: AsyncEngine) -> async_sessionmaker[AsyncSession]:
    return async_sessionmaker(db_engine, class_=AsyncSession, expire_on_commit=False)


@pytest.fixture
async def db_session(session_maker: async_sessionmaker[AsyncSession]) -> AsyncGenerator[AsyncSession]:
    """Session for one test; uncommitted work is rolled back afterwards."""
    async with session_maker() as session:
        try:
            yield session
        finally:
            await session.rollback()


@pytest.fixture
def session_factory(session_maker: async_sessionmaker[AsyncSession]) -> SessionFactory:
    """Stand-in for ``get_async_session`` used by the queue and push sender."""

    @asynccontextmanager
    async def factory() -> AsyncIterator[AsyncSession]:
        async with session_maker() as session:
            yield session

    return factory


# ============================================================================
# Clock Fixtures
# ============================================================================


class FakeClock:
    """Callable clock that only moves when told to."""

    def __init__(self, now: datetime) -> None:
        self.now = now

    def __call__(self) -> datetime:
        return self.now

    def advance(self, **kwargs: float) -> datetime:
        self.now += timedelta(**kwargs)
        return self.now

    def set(self, value: datetime) -> None:
        self.now = value


@pytest.fixture
def clock() -> FakeClock:
    """Clock fixed at 2026-10-18 12:00 UTC."""
    return FakeClock(datetime(2026, 10, 18, 12, 0, tzinfo=UTC))


# ============================================================================
# Pipeline Fixtures
# ============================================================================


@pytest.fixture
def notification_settings() -> NotificationSettings:
    from gloria_service.core.settings import NotificationSettings

    return NotificationSettings(background_tasks_enabled=False, health_probe_delay=0)


@pytest.fixture
def circuit_registry(clock: FakeClock) -> Generator[CircuitBreakerRegistry]:
    from gloria_service.infra.resilience import CircuitBreakerRegistry, set_circuit_registry

    registry = CircuitBreakerRegistry(clock=clock)
    set_circuit_registry(registry)
    yield registry
    registry.clear()
    set_circuit_registry(None)


@pytest.fixture
def fallback_queue(
    notification_settings: NotificationSettings,
    session_factory: SessionFactory,
    clock: FakeClock,
) -> Generator[FallbackQueue]:
    from gloria_service.features.audit.repository import AuditRepository
    from gloria_service.features.notifications.fallback import FallbackQueue, set_fallback_queue

    queue = FallbackQueue(
        settings=notification_settings,
        durable=None,
        session_factory=session_factory,
        audit_repository=AuditRepository(),
        clock=clock,
    )
    set_fallback_queue(queue)
    yield queue
    set_fallback_queue(None)


@pytest.fixture(autouse=True)
def _reset_pipeline_singletons() -> Generator[None]:
    """Drop sender and service singletons created during a test."""
    yield
    from gloria_service.features.notifications.channels import set_email_sender, set_push_sender

    set_email_sender(None)
    set_push_sender(None)


# ============================================================================
# Application Fixtures
# ============================================================================


@pytest.fixture
async def app(db_session: AsyncSession) -> FastAPI:
    """FastAPI application whose requests share the test session.

    The lifespan is not run; routes resolve the pipeline through the
    dependency overrides set up by individual tests.
    """
    from gloria_service.app.main import create_app
    from gloria_service.core.dependencies.database import get_db_session

    application = create_app()

    async def override_session() -> AsyncGenerator[AsyncSession]:
        yield db_session

    application.dependency_overrides[get_db_session] = override_session
    return application


@pytest.fixture
async def client(app: FastAPI) -> AsyncGenerator[AsyncClient]:
    async with AsyncClient(transport=ASGITransport(app=app), base_url="http://test") as ac:
        yield ac
