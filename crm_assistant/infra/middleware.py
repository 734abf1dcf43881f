"""Request middleware: request ids, access logging, HTTP metrics and CORS."""

import logging
import re
import time
import uuid
from typing import Callable
from fastapi import Request, Response
from fastapi.middleware.cors import CORSMiddleware
from starlette.middleware.base import BaseHTTPMiddleware

from crm_assistant.infra.config import config
from crm_assistant.infra.metrics import http_request_duration, http_requests_total

logger = logging.getLogger("crm_assistant.request")

REQUEST_ID_PATTERN = re.compile(r"^[A-Za-z0-9._-]{1,64}$")

# Probes and scrapes are counted but not logged
QUIET_PATHS = frozenset({"/health/live", "/metrics"})

EXPOSED_HEADERS = ["X-Request-ID", "X-Response-Time-Ms", "X-Agent-Name", "X-Chat-Id"]


def _request_id(request: Request) -> str:
    incoming = request.headers.get("X-Request-ID")
    if incoming and REQUEST_ID_PATTERN.match(incoming):
        return incoming
    return str(uuid.uuid4())


def _route_label(request: Request) -> str:
    # Route template, never the raw path
    route = request.scope.get("route")
    return getattr(route, "path", None) or "unmatched"


class RequestContextMiddleware(BaseHTTPMiddleware):
    """Assign a request id, log the request and record HTTP metrics."""

    async def dispatch(self, request: Request, call_next: Callable) -> Response:
        request_id = _request_id(request)
        request.state.request_id = request_id
        path = request.url.path
        quiet = path in QUIET_PATHS
        log_fields = {"request_id": request_id, "method": request.method, "path": path}

        start_time = time.perf_counter()
        if not quiet:
            logger.info("Request started", extra=log_fields)

        try:
            response = await call_next(request)
        except Exception as e:
            elapsed = time.perf_counter() - start_time
            http_requests_total.labels(method=request.method, route=_route_label(request), status="500").inc()
            logger.error(
                "Request failed",
                extra={**log_fields, "error": str(e), "duration_ms": int(elapsed * 1000)},
                exc_info=True,
            )
            raise

        elapsed = time.perf_counter() - start_time
        route = _route_label(request)
        http_requests_total.labels(method=request.method, route=route, status=str(response.status_code)).inc()
        http_request_duration.labels(method=request.method, route=route).observe(elapsed)
        if not quiet:
            logger.info(
                "Request completed",
                extra={**log_fields, "status_code": response.status_code, "duration_ms": int(elapsed * 1000)},
            )

        response.headers["X-Request-ID"] = request_id
        response.headers["X-Response-Time-Ms"] = str(int(elapsed * 1000))
        return response


def setup_cors(app):
    """Allow configured origins; a wildcard only in development."""
    origins = [origin.strip() for origin in config.CORS_ORIGINS.split(",") if origin.strip()]
    if config.APP_ENV == "development":
        origins = origins or ["*"]
    else:
        origins = [origin for origin in origins if origin != "*"]

    if config.APP_ENV == "production":
        methods = ["GET", "POST", "PUT", "OPTIONS"]
        headers = ["Content-Type", "Authorization", "X-API-Key", "X-Request-ID"]
    else:
        methods = ["*"]
        headers = ["*"]

    app.add_middleware(
        CORSMiddleware,
        allow_origins=origins,
        allow_credentials=True,
        allow_methods=methods,
        allow_headers=headers,
        expose_headers=EXPOSED_HEADERS,
    )
