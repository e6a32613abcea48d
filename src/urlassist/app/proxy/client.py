"""Backend HTTP client construction.

Every exchange gets its own httpx AsyncClient holding at most one backend
connection; it is closed when the exchange is finalized. TLS vs plaintext
follows the backend URL scheme.
"""

import logging
from collections.abc import Callable

import httpx

from urlassist.app.config import ProxyConfig
from urlassist.core.logging_schema import LogEvent

logger = logging.getLogger(__name__)

ClientFactory = Callable[[], httpx.AsyncClient]


def build_timeout(config: ProxyConfig) -> httpx.Timeout:
    """Per-exchange timeouts. Expiry surfaces as httpx.TimeoutException."""
    return httpx.Timeout(
        connect=config.timeout_connect,
        read=config.timeout_read,
        write=config.timeout_write,
        pool=config.timeout_connect,
    )


def create_backend_client(
    config: ProxyConfig,
    transport: httpx.AsyncBaseTransport | None = None,
) -> httpx.AsyncClient:
    """Create a single-connection client for one exchange.

    With verify_backend_tls off, certificate and hostname validation are
    skipped for every https backend.
    """
    client = httpx.AsyncClient(
        verify=config.verify_backend_tls,
        timeout=build_timeout(config),
        limits=httpx.Limits(max_connections=1, max_keepalive_connections=0),
        follow_redirects=False,
        trust_env=False,
        transport=transport,
    )
    # Only headers chosen by the caller go upstream (no default User-Agent,
    # Accept-Encoding, ...)
    client.headers.clear()
    return client


def client_factory(
    config: ProxyConfig,
    transport: httpx.AsyncBaseTransport | None = None,
) -> ClientFactory:
    """Bind create_backend_client() to a config (and optional transport)."""

    def factory() -> httpx.AsyncClient:
        return create_backend_client(config, transport)

    return factory


def warn_if_insecure(config: ProxyConfig) -> None:
    """Log once at startup when backend certificates are not verified."""
    if not config.verify_backend_tls:
        logger.warning(
            "Backend TLS certificate verification is disabled",
            extra={
                "event": LogEvent.INSECURE_TRANSPORT,
                "setting": "PROXY_VERIFY_BACKEND_TLS",
            },
        )
