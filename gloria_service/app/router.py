"""Router registry and operational endpoints (health, metrics)."""

from __future__ import annotations

from datetime import UTC, datetime
import logging
from typing import TYPE_CHECKING, Any

from fastapi import APIRouter, Response, status
from fastapi.responses import JSONResponse
from sqlalchemy import text

from gloria_service.core.settings import get_app_settings
from gloria_service.features.notifications.dependencies import (
    CircuitRegistryDep,
    FallbackQueueDep,
    SessionDep,
)
from gloria_service.features.notifications.router import preferences_router
from gloria_service.features.notifications.router import router as notifications_router
from gloria_service.infra.metrics import CONTENT_TYPE_LATEST, REGISTRY, generate_latest
from gloria_service.infra.resilience import CircuitState
from gloria_service.utils.runtime_dependencies import require_runtime_dependency

require_runtime_dependency(CircuitRegistryDep, FallbackQueueDep, SessionDep)

if TYPE_CHECKING:
    from fastapi import FastAPI

    from gloria_service.core.settings import AppSettings

logger = logging.getLogger(__name__)

operations_router = APIRouter(tags=["observability"])


@operations_router.get(
    "/metrics",
    summary="Prometheus metrics",
    response_class=Response,
    include_in_schema=False,
)
async def metrics() -> Response:
    return Response(content=generate_latest(REGISTRY), media_type=CONTENT_TYPE_LATEST)


@operations_router.get(
    "/health",
    summary="Service health",
    description="""
`healthy` when the database answers and no delivery circuit is open,
`degraded` when a circuit is open (failed sends are being queued),
`unhealthy` (503) when the database is unreachable.
""",
)
async def health(
    session: SessionDep,
    registry: CircuitRegistryDep,
    queue: FallbackQueueDep,
) -> JSONResponse:
    checks: dict[str, Any] = {}

    try:
        await session.execute(text("SELECT 1"))
        checks["database"] = "ok"
    except Exception as e:
        logger.warning("Health check: database unreachable", extra={"error": str(e)})
        checks["database"] = "unavailable"

    circuits = {name: m["state"] for name, m in registry.get_all_metrics().items()}
    checks["circuits"] = circuits
    stats = queue.get_queue_statistics()
    checks["fallback_queue"] = {"total": stats["total"], "durable": stats["durable_queue"]}

    if checks["database"] != "ok":
        overall = "unhealthy"
    elif any(state == CircuitState.OPEN.value for state in circuits.values()):
        overall = "degraded"
    else:
        overall = "healthy"

    app_settings = get_app_settings()
    return JSONResponse(
        status_code=status.HTTP_503_SERVICE_UNAVAILABLE if overall == "unhealthy" else status.HTTP_200_OK,
        content={
            "status": overall,
            "service": app_settings.service_name,
            "version": app_settings.version,
            "timestamp": datetime.now(UTC).isoformat(),
            "checks": checks,
        },
    )


def setup_routers(app: FastAPI, app_settings: AppSettings | None = None) -> None:
    """Register all routers with the application.

    Feature routers are mounted under ``api_prefix``; ``/health`` and
    ``/metrics`` stay at the root for probes and scrapers.
    """
    app_settings = app_settings or get_app_settings()
    api_prefix = app_settings.api_prefix

    app.include_router(operations_router)
    app.include_router(preferences_router, prefix=api_prefix)
    app.include_router(notifications_router, prefix=api_prefix)

    logger.info("Routers registered", extra={"api_prefix": api_prefix})
