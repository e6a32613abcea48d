"""FastAPI application entry point.

Routing, most specific first:
- /proxy/*          -> ProxyEngine (any method)
- redirect aliases  -> 302
- /exit             -> 204, then process exit
- /config           -> route table as JSON
- /health, /metrics -> service status
- anything else     -> static assets from STATIC_PUBLIC_DIR (404 if absent)
"""

import asyncio
import logging
import os
import sys
from contextlib import asynccontextmanager
from pathlib import Path
from typing import AsyncIterator, Callable

import uvicorn
from fastapi import FastAPI, Request
from fastapi.responses import JSONResponse
from fastapi.staticfiles import StaticFiles

from urlassist import __version__
from urlassist.app.config import Settings, get_settings
from urlassist.app.front import build_front_router
from urlassist.app.logging import setup_logging
from urlassist.app.metrics import get_metrics_response
from urlassist.app.middleware import LoggingMiddleware, classify_path
from urlassist.app.proxy import ProxyEngine
from urlassist.app.proxy import router as proxy_router
from urlassist.app.proxy.client import ClientFactory, warn_if_insecure
from urlassist.core.errors import (
    ConfigInvalidError,
    ErrorCode,
    ErrorDetail,
    ErrorResponse,
    UrlAssistError,
)
from urlassist.core.logging_schema import LogEvent
from urlassist.core.routes import RouteTable, load_route_table

logger = logging.getLogger(__name__)

# Lets the 204 from /exit reach the socket before the process dies
EXIT_GRACE_SECONDS = 0.1


def _hard_exit() -> None:
    logging.shutdown()
    os._exit(0)


async def terminate_process() -> None:
    """Abrupt exit: in-flight exchanges are not drained."""
    asyncio.get_running_loop().call_later(EXIT_GRACE_SECONDS, _hard_exit)


def create_app(
    settings: Settings,
    routes: RouteTable,
    *,
    make_client: ClientFactory | None = None,
    terminate: Callable[[], object] | None = None,
) -> FastAPI:
    """Build the application around an already-loaded route table."""

    @asynccontextmanager
    async def lifespan(_app: FastAPI) -> AsyncIterator[None]:
        logger.info(
            "Starting URL Assistant",
            extra={"event": LogEvent.APP_STARTED, "version": __version__, "routes": len(routes)},
        )
        yield
        logger.info("Shutting down URL Assistant", extra={"event": LogEvent.APP_STOPPED})

    app = FastAPI(title="URL Assistant", version=__version__, lifespan=lifespan)
    app.state.settings = settings
    app.state.routes = routes
    app.state.engine = ProxyEngine(routes, settings.proxy, make_client)
    app.state.terminate = terminate or terminate_process

    app.add_middleware(
        LoggingMiddleware,
        redirects=list(settings.static.redirects),
        slow_threshold_ms=settings.logging.slow_threshold_ms,
    )

    @app.exception_handler(UrlAssistError)
    async def urlassist_error_handler(request: Request, exc: UrlAssistError) -> JSONResponse:
        return JSONResponse(
            status_code=exc.status_code or 500,
            content=exc.to_response().model_dump(),
        )

    @app.exception_handler(Exception)
    async def unhandled_exception_handler(request: Request, exc: Exception) -> JSONResponse:
        """Last resort: log with traceback, answer 500 with the error envelope."""
        logger.exception(
            "Unhandled exception",
            extra={
                "event": LogEvent.UNHANDLED_EXCEPTION,
                "route": classify_path(request.url.path, settings.static.redirects).value,
                "method": request.method,
            },
        )
        body = ErrorResponse(
            error=ErrorDetail(code=ErrorCode.INTERNAL_ERROR.value, message="Internal server error")
        )
        return JSONResponse(status_code=500, content=body.model_dump())

    app.include_router(proxy_router)
    app.include_router(build_front_router(settings.static.redirects))

    @app.get("/health")
    async def health() -> dict[str, object]:
        return {"status": "ok", "version": __version__, "routes": len(routes)}

    if settings.metrics.enabled:

        @app.get("/metrics", include_in_schema=False)
        async def metrics():
            """Prometheus metrics endpoint."""
            return get_metrics_response()

    public_dir = Path(settings.static.public_dir)
    if public_dir.is_dir():
        app.mount("/", StaticFiles(directory=public_dir), name="public")
    else:
        logger.warning(
            "Public asset directory not found, static paths will return 404",
            extra={"public_dir": str(public_dir)},
        )

    return app


def main() -> None:
    """Run the server: load routes once, then serve on a single event loop."""
    settings = get_settings()
    setup_logging(settings.logging)

    try:
        routes = load_route_table(settings.routes.file)
    except ConfigInvalidError as exc:
        logger.error(
            "Cannot start: route table is invalid",
            extra={"event": LogEvent.CONFIG_INVALID, "path": settings.routes.file, "error": exc.message},
        )
        sys.exit(1)

    warn_if_insecure(settings.proxy)
    app = create_app(settings, routes)
    uvicorn.run(
        app,
        host=settings.server.host,
        port=settings.server.port,
        log_config=None,
        access_log=False,
    )


if __name__ == "__main__":
    main()
