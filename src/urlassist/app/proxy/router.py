"""Proxy route.

Any method on /proxy/* is forwarded and passed to the backend verbatim,
WebDAV and other extension verbs included. Starlette pins function
endpoints to a method list (GET/HEAD when none is given), so the route
endpoint is a plain ASGI callable, which Starlette dispatches for every
method.
"""

from fastapi import APIRouter, Request
from fastapi.responses import Response
from starlette.types import Receive, Scope, Send

from .engine import ProxyEngine

router = APIRouter(tags=["proxy"])


def get_engine(request: Request) -> ProxyEngine:
    return request.app.state.engine


async def proxy_http(request: Request) -> Response:
    """Forward one request; exactly one finalize() per request."""
    engine = get_engine(request)
    outcome = await engine.forward(request)
    return engine.finalize(outcome)


class ProxyEndpoint:
    """ASGI adapter around proxy_http()."""

    async def __call__(self, scope: Scope, receive: Receive, send: Send) -> None:
        request = Request(scope, receive, send)
        response = await proxy_http(request)
        await response(scope, receive, send)


router.add_route("/proxy/{tail:path}", ProxyEndpoint(), include_in_schema=False)
