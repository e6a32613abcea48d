"""Front routes: redirect aliases, /exit and /config.

Redirect aliases are registered first so a configured alias wins over the
fixed endpoints. Everything not matched here or by the proxy route falls
through to the static asset mount (see main.create_app).
"""

import logging

from fastapi import APIRouter, Request
from fastapi.responses import JSONResponse, RedirectResponse, Response
from starlette.background import BackgroundTask

from urlassist.core.logging_schema import LogEvent

logger = logging.getLogger(__name__)


def build_front_router(redirects: dict[str, str]) -> APIRouter:
    router = APIRouter(tags=["front"])

    for source, target in redirects.items():
        router.add_api_route(
            source,
            _redirect_endpoint(source, target),
            methods=["GET", "HEAD"],
            include_in_schema=False,
            name=f"redirect:{source}",
        )

    router.add_api_route("/exit", exit_process, methods=["GET"], status_code=204)
    router.add_api_route("/config", route_config, methods=["GET"])
    return router


def _redirect_endpoint(source: str, target: str):
    async def redirect() -> RedirectResponse:
        logger.debug(
            "Redirect alias",
            extra={"event": LogEvent.REDIRECT, "source": source, "target": target},
        )
        return RedirectResponse(url=target, status_code=302)

    return redirect


async def exit_process(request: Request) -> Response:
    """204, then the process exits without draining in-flight exchanges."""
    logger.warning(
        "Shutdown requested",
        extra={"event": LogEvent.SHUTDOWN_REQUESTED, "client": _client_host(request)},
    )
    return Response(
        status_code=204,
        background=BackgroundTask(request.app.state.terminate),
    )


async def route_config(request: Request) -> JSONResponse:
    """Route document as loaded, unredacted. Not meant to be exposed publicly."""
    return JSONResponse(request.app.state.routes.to_document())


def _client_host(request: Request) -> str | None:
    return request.client.host if request.client else None
