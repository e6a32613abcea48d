"""Prometheus metrics definitions."""

from prometheus_client import Counter, Histogram

# =============================================================================
# Histogram Buckets
# =============================================================================
# MEDIUM: backend calls and proxied requests (5ms ~ 60s)
# Log scale: ratio ≈ 2.04
_BUCKETS_MEDIUM = (
    0.005, 0.01, 0.02, 0.04, 0.09,
    0.18, 0.36, 0.73, 1.5, 3,
    6.2, 12.7, 26, 53,
)  # 14 buckets

# =============================================================================
# HTTP Metrics
# =============================================================================
# route label is the dispatcher branch (RouteKind), never the raw path

HTTP_REQUESTS_TOTAL = Counter(
    "urlassist_http_requests_total",
    "Total HTTP requests",
    ["method", "route", "status"],
)

HTTP_REQUEST_DURATION = Histogram(
    "urlassist_http_request_duration_seconds",
    "HTTP request duration until response headers",
    ["method", "route"],
    buckets=_BUCKETS_MEDIUM,
)

# =============================================================================
# Proxy Exchange Metrics
# =============================================================================

PROXY_EXCHANGES_TOTAL = Counter(
    "urlassist_proxy_exchanges_total",
    "Proxy exchanges by outcome",
    ["outcome"],  # relayed, MALFORMED_ROUTE, UNKNOWN_HOST, ...
)

PROXY_BACKEND_DURATION = Histogram(
    "urlassist_proxy_backend_duration_seconds",
    "Time from backend dial to backend response headers",
    buckets=_BUCKETS_MEDIUM,
)

PROXY_STREAM_ABORTS_TOTAL = Counter(
    "urlassist_proxy_stream_aborts_total",
    "Backend response streams aborted after headers were relayed",
)
