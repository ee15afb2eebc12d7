"""
Request middleware: request ID propagation, access logging, latency metrics.

An incoming X-Request-ID is reused when it looks sane (short, printable), so
a caller's correlation id follows the booking through the logs; otherwise a
fresh one is generated. The id is echoed back on the response.
"""

import re
import time
import uuid

from starlette.middleware.base import BaseHTTPMiddleware, RequestResponseEndpoint
from starlette.requests import Request
from starlette.responses import Response

from resource_booking.core.logging import bind_request_context, get_logger
from resource_booking.core.metrics import http_request_latency

logger = get_logger(__name__)

REQUEST_ID_HEADER = "X-Request-ID"
_VALID_REQUEST_ID = re.compile(r"^[A-Za-z0-9._:-]{1,64}$")
UNMATCHED_ROUTE = "unmatched"


def resolve_request_id(request: Request) -> str:
    candidate = request.headers.get(REQUEST_ID_HEADER, "")
    if _VALID_REQUEST_ID.match(candidate):
        return candidate
    return uuid.uuid4().hex[:12]


def _route_label(request: Request) -> str:
    # Templated path ("/api/v1/bookings/{series_id}") keeps metric cardinality bounded
    route = request.scope.get("route")
    return getattr(route, "path", UNMATCHED_ROUTE)


class RequestLoggingMiddleware(BaseHTTPMiddleware):
    async def dispatch(self, request: Request, call_next: RequestResponseEndpoint) -> Response:
        request_id = resolve_request_id(request)
        bind_request_context(request_id=request_id, method=request.method, path=request.url.path)
        started = time.perf_counter()

        try:
            response = await call_next(request)
        except Exception as e:
            elapsed = time.perf_counter() - started
            route = _route_label(request)
            http_request_latency.labels(method=request.method, route=route, status_code="500").observe(elapsed)
            logger.error(
                "request_failed",
                route=route,
                error=str(e),
                error_type=type(e).__name__,
                duration_ms=round(elapsed * 1000, 2),
            )
            raise

        elapsed = time.perf_counter() - started
        route = _route_label(request)
        http_request_latency.labels(
            method=request.method, route=route, status_code=str(response.status_code)
        ).observe(elapsed)

        log = logger.warning if response.status_code >= 500 else logger.info
        log(
            "request_completed",
            route=route,
            status_code=response.status_code,
            duration_ms=round(elapsed * 1000, 2),
        )

        response.headers[REQUEST_ID_HEADER] = request_id
        response.headers["X-Response-Time"] = f"{elapsed * 1000:.2f}ms"
        return response
