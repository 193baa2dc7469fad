"""
Request logging middleware.

Every response carries X-Request-Id. Platform routes are logged with their
path; published-site requests are logged with the serving host, since the
same path exists under every project subdomain.
NEVER logs: request bodies (webhook payloads, repository URLs), query strings, headers.
"""
import logging
import time
import uuid

from starlette.middleware.base import BaseHTTPMiddleware
from starlette.requests import Request
from starlette.responses import PlainTextResponse, Response

from app.core.metrics import metrics
from app.core.request_context import set_request_id

logger = logging.getLogger("platform.request")

# Not logged; polled by load balancers and scrapers
QUIET_PATHS = frozenset({"/health", "/metrics"})

PLATFORM_PREFIXES = ("/api/", "/all", "/health", "/metrics", "/docs", "/openapi.json")


def _client_ip(request: Request) -> str:
    forwarded = request.headers.get("x-forwarded-for")
    if forwarded:
        return forwarded.split(",")[0].strip()
    return request.client.host if request.client else "unknown"


def _count_status(status_code: int) -> None:
    metrics.inc("requests_total")
    bucket = {2: "requests_2xx", 4: "requests_4xx", 5: "requests_5xx"}.get(status_code // 100)
    if bucket:
        metrics.inc(bucket)


class RequestLoggingMiddleware(BaseHTTPMiddleware):
    """Request id, timing log and request counters."""

    async def dispatch(self, request: Request, call_next) -> Response:
        request_id = set_request_id(str(uuid.uuid4()))
        path = request.url.path
        start_time = time.perf_counter()

        try:
            response = await call_next(request)
        except Exception:
            logger.exception(f"request_unhandled_error method={request.method} path={path}")
            response = PlainTextResponse("Internal Server Error", status_code=500)

        duration_ms = int((time.perf_counter() - start_time) * 1000)
        response.headers["X-Request-Id"] = request_id
        _count_status(response.status_code)

        if path in QUIET_PATHS:
            return response

        route = "platform" if path.startswith(PLATFORM_PREFIXES) else "publish"
        logger.info(
            f"request route={route}",
            extra={
                "request_id": request_id,
                "method": request.method,
                "path": path,
                "host": request.headers.get("host", ""),
                "status_code": response.status_code,
                "duration_ms": duration_ms,
                "client_ip": _client_ip(request),
            },
        )
        return response
