"""Proxy engine: /proxy/{key1}/{key2}[/{rest}] -> backend.

One inbound request is one exchange:

    Received -> Parsed -> Resolved -> HeadersDecoded -> BackendDialed
             -> BackendReplied -> Finalized

with early exits to Finalized from Received (malformed path), Parsed
(unknown key pair) and BackendDialed (backend unreachable). Nothing is
retried.

forward() never raises for exchange-level failures; it returns exactly one
ProxyOutcome, and finalize() is the only place that turns an outcome into
the client response. The backend's status and headers are not exposed as
the outer response's own status/headers (browsers hide most of them from
scripts); they travel in x-proxy-status / x-proxy-headers instead, and the
body is the backend body, byte for byte.
"""

import base64
import logging
import re
import time
from collections.abc import AsyncIterator
from dataclasses import dataclass, field
from enum import StrEnum
from urllib.parse import unquote

import httpx
from fastapi import Request
from fastapi.responses import JSONResponse, Response, StreamingResponse
from starlette.background import BackgroundTask

from urlassist.app.config import ProxyConfig
from urlassist.app.logging import get_trace_id
from urlassist.app.metrics.collector import (
    PROXY_BACKEND_DURATION,
    PROXY_EXCHANGES_TOTAL,
    PROXY_STREAM_ABORTS_TOTAL,
)
from urlassist.core import headers as header_codec
from urlassist.core.errors import (
    BackendUnreachableError,
    BodyTooLargeError,
    MalformedRouteError,
    UnknownHostError,
    UrlAssistError,
)
from urlassist.core.headers import PROXY_HEADERS, PROXY_STATUS, ProxyHeaders
from urlassist.core.logging_schema import LogEvent
from urlassist.core.routes import RouteTable

from .client import ClientFactory, client_factory

logger = logging.getLogger(__name__)

_ROUTE_PATTERN = re.compile(r"^/proxy/(?P<key1>[^/]+)/(?P<key2>[^/]+)(?P<rest>/.*)?$")


class ExchangeState(StrEnum):
    RECEIVED = "received"
    PARSED = "parsed"
    RESOLVED = "resolved"
    HEADERS_DECODED = "headers_decoded"
    BACKEND_DIALED = "backend_dialed"
    BACKEND_REPLIED = "backend_replied"
    FINALIZED = "finalized"


@dataclass(frozen=True)
class ProxyRoute:
    """Parsed /proxy path. rest keeps its percent-encoding."""

    key1: str
    key2: str
    rest: str = "/"


@dataclass
class InFlightExchange:
    """Request-scoped state, owned by a single forward() call."""

    method: str
    path: str
    state: ExchangeState = ExchangeState.RECEIVED
    route: ProxyRoute | None = None
    target_url: httpx.URL | None = None
    request_headers: ProxyHeaders = field(default_factory=dict)
    status_code: int | None = None
    reason: str = ""
    response_headers: ProxyHeaders = field(default_factory=dict)
    started: float = field(default_factory=time.perf_counter)
    # Captured at creation: the response body streams after the request
    # middleware has already cleared the trace context.
    trace_id: str | None = None

    def log_fields(self) -> dict[str, object]:
        fields: dict[str, object] = {
            "method": self.method,
            "path": self.path,
            "state": self.state.value,
        }
        if self.trace_id is not None:
            fields["trace_id"] = self.trace_id
        if self.route is not None:
            fields["key1"] = self.route.key1
            fields["key2"] = self.route.key2
        if self.target_url is not None:
            fields["target_url"] = str(self.target_url)
        return fields


@dataclass
class Relayed:
    """Backend replied; body still to be streamed."""

    exchange: InFlightExchange
    response: httpx.Response
    client: httpx.AsyncClient


@dataclass
class Rejected:
    """Exchange ended without a backend reply."""

    exchange: InFlightExchange
    error: UrlAssistError


ProxyOutcome = Relayed | Rejected


def parse_route(path: str) -> ProxyRoute:
    """Split /proxy/{key1}/{key2}[/{rest}].

    Raises:
        MalformedRouteError: path does not carry both keys.
    """
    match = _ROUTE_PATTERN.match(path)
    if match is None:
        raise MalformedRouteError(f"Expected /proxy/{{key1}}/{{key2}}[/path], got {path}")
    return ProxyRoute(
        key1=unquote(match["key1"]),
        key2=unquote(match["key2"]),
        rest=match["rest"] or "/",
    )


def join_backend_path(base_path: str, rest: str) -> str:
    """Append rest to the backend base path with exactly one slash between."""
    return base_path.rstrip("/") + "/" + rest.lstrip("/")


def basic_auth_header(username: str, password: str) -> str:
    token = base64.b64encode(f"{username}:{password}".encode("utf-8")).decode("ascii")
    return f"Basic {token}"


def build_backend_url(base_url: str, rest: str, query: str = "") -> httpx.URL:
    """Backend target: base origin and path + rest + inbound query.

    Embedded credentials are dropped from the URL (see build_backend_headers).
    """
    base = httpx.URL(base_url)
    base_path = base.raw_path.decode("ascii").split("?", 1)[0]
    path = join_backend_path(base_path, rest)
    target = f"{base.scheme}://{base.netloc.decode('ascii')}{path}"
    if query:
        target = f"{target}?{query}"
    return httpx.URL(target)


def build_backend_headers(
    decoded: ProxyHeaders,
    base_url: str,
    content_length: str | None = None,
) -> list[tuple[str, str]]:
    """Header pairs for the backend request.

    Host is always the backend's host[:port]. URL credentials become Basic
    auth unless the caller sent its own Authorization header.
    """
    base = httpx.URL(base_url)
    pairs = [
        (name, value)
        for name, value in header_codec.to_pairs(decoded)
        if name.lower() != "host"
    ]
    names = {name.lower() for name, _ in pairs}
    pairs.append(("Host", base.netloc.decode("ascii")))
    if base.username and "authorization" not in names:
        pairs.append(("Authorization", basic_auth_header(base.username, base.password)))
    if content_length is not None and "content-length" not in names:
        pairs.append(("Content-Length", content_length))
    return pairs


def _inbound_path(request: Request) -> str:
    raw_path = request.scope.get("raw_path")
    if raw_path:
        return raw_path.decode("utf-8", errors="replace").split("?", 1)[0]
    return request.url.path


def _has_body(request: Request) -> bool:
    if "transfer-encoding" in request.headers:
        return True
    length = request.headers.get("content-length", "0")
    return length.isdigit() and int(length) > 0


class ProxyEngine:
    """Forwards /proxy requests using an injected, read-only route table."""

    def __init__(
        self,
        routes: RouteTable,
        config: ProxyConfig,
        make_client: ClientFactory | None = None,
    ) -> None:
        self._routes = routes
        self._config = config
        self._make_client = make_client or client_factory(config)

    async def forward(self, request: Request) -> ProxyOutcome:
        """Run one exchange up to the backend reply (or an early exit)."""
        exchange = InFlightExchange(
            method=request.method,
            path=_inbound_path(request),
            trace_id=get_trace_id(),
        )
        try:
            route = exchange.route = parse_route(exchange.path)
            exchange.state = ExchangeState.PARSED

            base_url = self._routes.resolve(route.key1, route.key2)
            if base_url is None:
                raise UnknownHostError(f"No backend configured for {route.key1}/{route.key2}")
            exchange.state = ExchangeState.RESOLVED

            exchange.request_headers = header_codec.decode_lenient(
                request.headers.get(PROXY_HEADERS)
            )
            exchange.state = ExchangeState.HEADERS_DECODED

            return await self._dial(request, exchange, route, base_url)
        except UrlAssistError as exc:
            return Rejected(exchange, exc)

    async def _dial(
        self,
        request: Request,
        exchange: InFlightExchange,
        route: ProxyRoute,
        base_url: str,
    ) -> Relayed:
        declared = request.headers.get("content-length")
        if declared and declared.isdigit() and int(declared) > self._config.max_body_bytes:
            raise BodyTooLargeError(self._config.max_body_bytes)

        try:
            exchange.target_url = build_backend_url(base_url, route.rest, request.url.query)
            backend_headers = build_backend_headers(
                exchange.request_headers,
                base_url,
                content_length=declared if _has_body(request) else None,
            )
        except (httpx.InvalidURL, UnicodeError) as exc:
            raise MalformedRouteError(f"Cannot build backend request: {exc}") from exc

        client = self._make_client()
        try:
            backend_request = client.build_request(
                method=request.method,
                url=exchange.target_url,
                headers=backend_headers,
                content=self._request_body(request) if _has_body(request) else None,
            )
        except (httpx.InvalidURL, UnicodeError) as exc:
            await client.aclose()
            raise MalformedRouteError(f"Cannot build backend request: {exc}") from exc

        exchange.state = ExchangeState.BACKEND_DIALED
        dialed = time.perf_counter()
        try:
            response = await client.send(backend_request, stream=True)
        except httpx.TransportError as exc:
            await client.aclose()
            logger.warning(
                "Backend unreachable",
                extra={
                    "event": LogEvent.BACKEND_UNREACHABLE,
                    "error_type": type(exc).__name__,
                    "error": str(exc),
                    **exchange.log_fields(),
                },
            )
            raise BackendUnreachableError(f"Backend unreachable: {type(exc).__name__}") from exc
        except BaseException:
            await client.aclose()
            raise
        PROXY_BACKEND_DURATION.observe(time.perf_counter() - dialed)

        exchange.state = ExchangeState.BACKEND_REPLIED
        exchange.status_code = response.status_code
        exchange.reason = response.reason_phrase
        exchange.response_headers = header_codec.from_pairs(
            (name.decode("latin-1"), value.decode("latin-1"))
            for name, value in response.headers.raw
        )
        return Relayed(exchange, response, client)

    async def _request_body(self, request: Request) -> AsyncIterator[bytes]:
        """Relay inbound chunks in receipt order, enforcing the size cap."""
        received = 0
        limit = self._config.max_body_bytes
        async for chunk in request.stream():
            if not chunk:
                continue
            received += len(chunk)
            if received > limit:
                raise BodyTooLargeError(limit)
            yield chunk

    def finalize(self, outcome: ProxyOutcome) -> Response:
        """Produce the single client response for an exchange."""
        exchange = outcome.exchange
        duration_ms = (time.perf_counter() - exchange.started) * 1000

        if isinstance(outcome, Rejected):
            error = outcome.error
            exit_state = exchange.state
            exchange.state = ExchangeState.FINALIZED
            PROXY_EXCHANGES_TOTAL.labels(outcome=error.code.value).inc()
            logger.info(
                "Proxy exchange rejected",
                extra={
                    "event": LogEvent.EXCHANGE_REJECTED,
                    "error_code": error.code.value,
                    "error_message": error.message,
                    "status": error.status_code,
                    "duration_ms": duration_ms,
                    **exchange.log_fields(),
                    "state": exit_state.value,
                },
            )
            if isinstance(error, BackendUnreachableError):
                return Response(status_code=error.status_code)
            return JSONResponse(
                status_code=error.status_code,
                content=error.to_response().model_dump(),
            )

        PROXY_EXCHANGES_TOTAL.labels(outcome="relayed").inc()
        logger.info(
            "Proxy exchange relayed",
            extra={
                "event": LogEvent.EXCHANGE_RELAYED,
                "backend_status": exchange.status_code,
                "duration_ms": duration_ms,
                **exchange.log_fields(),
            },
        )
        exchange.state = ExchangeState.FINALIZED
        return StreamingResponse(
            self._relay_response(outcome),
            status_code=200,
            headers={
                PROXY_STATUS: f"{exchange.status_code} {exchange.reason}",
                PROXY_HEADERS: header_codec.encode(exchange.response_headers),
            },
            background=BackgroundTask(_close_backend, outcome),
        )

    async def _relay_response(self, outcome: Relayed) -> AsyncIterator[bytes]:
        # aiter_raw keeps Content-Encoding'd bytes as the backend sent them
        try:
            async for chunk in outcome.response.aiter_raw():
                yield chunk
        except httpx.HTTPError as exc:
            PROXY_STREAM_ABORTS_TOTAL.inc()
            logger.warning(
                "Backend response stream aborted",
                extra={
                    "event": LogEvent.BACKEND_STREAM_ABORTED,
                    "error_type": type(exc).__name__,
                    "error": str(exc),
                    **outcome.exchange.log_fields(),
                },
            )
            raise
        finally:
            await _close_backend(outcome)


async def _close_backend(outcome: Relayed) -> None:
    await outcome.response.aclose()
    await outcome.client.aclose()
