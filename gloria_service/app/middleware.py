"""Middleware configuration for FastAPI application."""

from __future__ import annotations

import logging
import time
from typing import TYPE_CHECKING
import uuid

from opentelemetry import trace
from starlette.middleware.base import BaseHTTPMiddleware

from gloria_service.infra.logging import clear_log_context, set_log_context
from gloria_service.infra.metrics.prometheus import (
    http_request_duration_seconds,
    http_requests_in_progress,
    http_requests_total,
)

if TYPE_CHECKING:
    from collections.abc import Awaitable, Callable

    from fastapi import FastAPI, Request, Response

logger = logging.getLogger(__name__)

REQUEST_ID_HEADER = "X-Request-ID"
USER_PROFILE_HEADER = "X-User-Profile-Id"


class RequestIDMiddleware(BaseHTTPMiddleware):
    """Attach a request id to the request state, the log context and the response."""

    async def dispatch(self, request: Request, call_next: Callable[[Request], Awaitable[Response]]) -> Response:
        request_id = request.headers.get(REQUEST_ID_HEADER) or str(uuid.uuid4())
        request.state.request_id = request_id

        context = {"request_id": request_id}
        user_profile_id = request.headers.get(USER_PROFILE_HEADER)
        if user_profile_id:
            context["user_profile_id"] = user_profile_id
        set_log_context(**context)

        try:
            response = await call_next(request)
        finally:
            clear_log_context()
        response.headers[REQUEST_ID_HEADER] = request_id
        return response


class MetricsMiddleware(BaseHTTPMiddleware):
    """Record HTTP request counts and durations.

    The route template is used as the endpoint label
    (``/api/v1/notifications/queue/{entry_id}/retry``) to keep label
    cardinality low. When a span is active its trace id is attached as an
    exemplar.
    """

    async def dispatch(self, request: Request, call_next: Callable[[Request], Awaitable[Response]]) -> Response:
        endpoint = request.url.path
        route = request.scope.get("route")
        if route is not None and hasattr(route, "path"):
            endpoint = route.path
        method = request.method

        http_requests_in_progress.labels(method=method, endpoint=endpoint).inc()
        start_time = time.perf_counter()
        status_code = 500

        try:
            response = await call_next(request)
            status_code = response.status_code
            response.headers["X-Process-Time"] = f"{time.perf_counter() - start_time:.6f}"
            return response
        finally:
            duration = time.perf_counter() - start_time

            span_context = trace.get_current_span().get_span_context()
            exemplar = {"trace_id": format(span_context.trace_id, "032x")} if span_context.is_valid else None

            http_request_duration_seconds.labels(method=method, endpoint=endpoint).observe(
                duration, exemplar=exemplar
            )
            http_requests_total.labels(method=method, endpoint=endpoint, status=str(status_code)).inc(
                exemplar=exemplar
            )
            http_requests_in_progress.labels(method=method, endpoint=endpoint).dec()


def configure_middleware(app: FastAPI) -> None:
    """Register middleware. The last one added runs first."""
    app.add_middleware(MetricsMiddleware)
    app.add_middleware(RequestIDMiddleware)
    logger.debug("Middleware configured", extra={"middleware": ["RequestIDMiddleware", "MetricsMiddleware"]})
