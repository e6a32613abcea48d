"""Logging field schema - v1.0

Standard fields (added to all logs):
- schema_version: Log schema version
- service: Service name (urlassist)
- event: Event type (exchange_relayed, backend_unreachable, etc.)
- trace_id: Request trace ID (X-Trace-ID header or generated)
- duration_ms: Duration in milliseconds

High cardinality fields (OK in logs, NOT in metric labels):
- key1 / key2: Route keys
- target_url: Backend URL (credentials stripped)
"""

from enum import StrEnum


class LogEvent(StrEnum):
    """Standard log event types.

    Use these event types in the 'event' extra field for consistent
    log filtering and analysis.
    """

    # Lifecycle events
    APP_STARTED = "app_started"
    APP_STOPPED = "app_stopped"
    SHUTDOWN_REQUESTED = "shutdown_requested"
    CONFIG_LOADED = "config_loaded"
    CONFIG_INVALID = "config_invalid"
    INSECURE_TRANSPORT = "insecure_transport"

    # API events
    REQUEST_COMPLETE = "request_complete"
    REQUEST_FAILED = "request_failed"
    REQUEST_SLOW = "request_slow"
    REDIRECT = "redirect"
    UNHANDLED_EXCEPTION = "unhandled_exception"

    # Proxy exchange events
    EXCHANGE_RELAYED = "exchange_relayed"
    EXCHANGE_REJECTED = "exchange_rejected"
    HEADER_DECODE_FAILED = "header_decode_failed"
    BACKEND_UNREACHABLE = "backend_unreachable"
    BACKEND_STREAM_ABORTED = "backend_stream_aborted"


class RouteKind(StrEnum):
    """Front dispatcher branch, used in logs and as a metric label."""

    PROXY = "proxy"
    REDIRECT = "redirect"
    CONFIG = "config"
    EXIT = "exit"
    PUBLIC = "public"
    INTERNAL = "internal"  # /health, /metrics
