"""Request logging middleware.

One log line and one metrics sample per request, tagged with the route
kind rather than the raw path (proxy paths embed arbitrary keys).
"""

import logging
import time
from collections.abc import Collection

from starlette.middleware.base import BaseHTTPMiddleware, RequestResponseEndpoint
from starlette.requests import Request
from starlette.responses import Response
from starlette.types import ASGIApp

from urlassist.app.logging import clear_trace_context, set_trace_id
from urlassist.app.metrics.collector import HTTP_REQUEST_DURATION, HTTP_REQUESTS_TOTAL
from urlassist.core.logging_schema import LogEvent, RouteKind

logger = logging.getLogger(__name__)

TRACE_HEADER = "X-Trace-ID"

_FIXED_ROUTES = {
    "/exit": RouteKind.EXIT,
    "/config": RouteKind.CONFIG,
    "/health": RouteKind.INTERNAL,
    "/metrics": RouteKind.INTERNAL,
}


def classify_path(path: str, redirects: Collection[str] = ()) -> RouteKind:
    """Map a request path to the dispatcher branch that serves it."""
    if path.startswith("/proxy/"):
        return RouteKind.PROXY
    if path in redirects:
        return RouteKind.REDIRECT
    return _FIXED_ROUTES.get(path, RouteKind.PUBLIC)


class LoggingMiddleware(BaseHTTPMiddleware):
    """Canonical request line, metrics and trace id propagation.

    /health and /metrics are counted but not logged. Duration is measured
    until the response headers are ready; proxied bodies stream afterwards.
    """

    def __init__(
        self,
        app: ASGIApp,
        redirects: Collection[str] = (),
        slow_threshold_ms: float = 1000.0,
    ) -> None:
        super().__init__(app)
        self._redirects = frozenset(redirects)
        self._slow_threshold_ms = slow_threshold_ms

    async def dispatch(
        self, request: Request, call_next: RequestResponseEndpoint
    ) -> Response:
        trace_id = set_trace_id(request.headers.get(TRACE_HEADER))
        route = classify_path(request.url.path, self._redirects)
        fields = {
            "method": request.method,
            "path": request.url.path,
            "route": route.value,
            "trace_id": trace_id,
        }

        start = time.monotonic()
        try:
            response = await call_next(request)
        except Exception:
            logger.error(
                "Request failed",
                extra={
                    "event": LogEvent.REQUEST_FAILED,
                    "duration_ms": (time.monotonic() - start) * 1000,
                    **fields,
                },
            )
            raise
        finally:
            clear_trace_context()
        elapsed = time.monotonic() - start

        self._observe(request.method, route, response.status_code, elapsed)
        if route is not RouteKind.INTERNAL:
            self._log(fields, response.status_code, elapsed * 1000)

        response.headers[TRACE_HEADER] = trace_id
        return response

    @staticmethod
    def _observe(method: str, route: RouteKind, status: int, elapsed: float) -> None:
        HTTP_REQUESTS_TOTAL.labels(method=method, route=route.value, status=str(status)).inc()
        HTTP_REQUEST_DURATION.labels(method=method, route=route.value).observe(elapsed)

    def _log(self, fields: dict[str, str], status: int, duration_ms: float) -> None:
        logger.info(
            "Request completed",
            extra={
                "event": LogEvent.REQUEST_COMPLETE,
                "status": status,
                "duration_ms": duration_ms,
                **fields,
            },
        )
        if duration_ms > self._slow_threshold_ms:
            logger.warning(
                "Slow request detected",
                extra={
                    "event": LogEvent.REQUEST_SLOW,
                    "status": status,
                    "duration_ms": duration_ms,
                    "threshold_ms": self._slow_threshold_ms,
                    **fields,
                },
            )
