"""Logging setup: text or JSON output, trace ids, repeat suppression.

Every request gets a trace id (X-Trace-ID or a fresh UUID) held in a
ContextVar, so log calls made anywhere during an exchange carry it without
passing it around.
"""

import logging
import sys
import time
from collections import Counter, defaultdict, deque
from contextvars import ContextVar
from typing import Any
from uuid import uuid4

from pythonjsonlogger import json as jsonlogger

from urlassist.app.config import LoggingConfig

trace_id_ctx: ContextVar[str | None] = ContextVar("trace_id", default=None)

TEXT_FORMAT = "%(asctime)s - %(name)s - %(levelname)s - %(message)s"

# Attributes taken from each LogRecord; renamed below for the JSON output
JSON_FORMAT = "%(levelname)s %(name)s %(process)d %(filename)s %(lineno)d %(message)s"
_JSON_RENAMES = {"levelname": "level", "name": "logger", "process": "pid"}

# Libraries that log every backend dial/read at INFO
_QUIET_LOGGERS = ("httpx", "httpcore")


def get_trace_id() -> str | None:
    return trace_id_ctx.get()


def set_trace_id(trace_id: str | None = None) -> str:
    """Bind a trace id to the current context, generating one if missing."""
    tid = trace_id or str(uuid4())
    trace_id_ctx.set(tid)
    return tid


def clear_trace_context() -> None:
    trace_id_ctx.set(None)


class RateLimitFilter(logging.Filter):
    """Drop repeats of the same log call beyond rate_per_minute.

    An unreachable backend makes every exchange to it log the same
    warning. Repeats from one call site (logger name + line) are dropped
    once the limit is reached within a sliding 60s window. The number of
    dropped records is attached as `suppressed` to the next record from
    that call site that gets through. ERROR and above are never dropped.
    """

    window_seconds = 60.0

    def __init__(self, rate_per_minute: int = 100) -> None:
        super().__init__()
        self.rate_per_minute = rate_per_minute
        self._emitted: defaultdict[tuple[str, int], deque[float]] = defaultdict(deque)
        self._dropped: Counter[tuple[str, int]] = Counter()

    def filter(self, record: logging.LogRecord) -> bool:
        if record.levelno >= logging.ERROR:
            return True

        site = (record.name, record.lineno)
        now = time.monotonic()
        emitted = self._emitted[site]
        while emitted and now - emitted[0] >= self.window_seconds:
            emitted.popleft()

        if len(emitted) >= self.rate_per_minute:
            self._dropped[site] += 1
            return False

        emitted.append(now)
        if dropped := self._dropped.pop(site, 0):
            record.suppressed = dropped
        return True


class TraceTextFormatter(logging.Formatter):
    """Text formatter that appends the trace id when one is set.

    An explicit trace_id extra wins over the context one.
    """

    def format(self, record: logging.LogRecord) -> str:
        line = super().format(record)
        if trace_id := getattr(record, "trace_id", None) or get_trace_id():
            line = f"{line} [trace_id={trace_id}]"
        return line


class CustomJsonFormatter(jsonlogger.JsonFormatter):
    """One JSON object per record.

    Fields: timestamp, level, logger, pid, filename, lineno, message, the
    service name and log schema version, any `extra` fields (event, key1,
    status, ...) and trace_id. An explicit trace_id extra wins over the
    context one.
    """

    def __init__(self, config: LoggingConfig, **kwargs: Any) -> None:
        super().__init__(
            JSON_FORMAT,
            rename_fields=_JSON_RENAMES,
            static_fields={
                "service": config.service_name,
                "schema_version": config.schema_version,
            },
            timestamp=True,
            **kwargs,
        )

    def add_fields(
        self,
        log_record: dict[str, Any],
        record: logging.LogRecord,
        message_dict: dict[str, Any],
    ) -> None:
        super().add_fields(log_record, record, message_dict)
        if "trace_id" not in log_record and (trace_id := get_trace_id()):
            log_record["trace_id"] = trace_id
        # uvicorn duplicates the message with ANSI colours
        log_record.pop("color_message", None)


def build_handler(config: LoggingConfig) -> logging.Handler:
    """stdout handler with the configured formatter and repeat suppression."""
    if config.format == "json":
        formatter: logging.Formatter = CustomJsonFormatter(config)
    else:
        formatter = TraceTextFormatter(TEXT_FORMAT)

    handler = logging.StreamHandler(sys.stdout)
    handler.setFormatter(formatter)
    handler.addFilter(RateLimitFilter(config.rate_limit_per_minute))
    return handler


def setup_logging(config: LoggingConfig) -> None:
    """Route all application and uvicorn logging through one handler.

    Unknown level names fall back to INFO.
    """
    handler = build_handler(config)

    root_logger = logging.getLogger()
    root_logger.handlers.clear()
    root_logger.addHandler(handler)
    root_logger.setLevel(getattr(logging, config.level.upper(), logging.INFO))

    for name in ("uvicorn", "uvicorn.error"):
        uv_logger = logging.getLogger(name)
        uv_logger.handlers.clear()
        uv_logger.addHandler(handler)
        uv_logger.propagate = False

    # LoggingMiddleware writes the request line instead
    logging.getLogger("uvicorn.access").disabled = True

    for name in _QUIET_LOGGERS:
        logging.getLogger(name).setLevel(logging.WARNING)
