"""Error handling module for urlassist.

This module defines error codes, exception classes, and response models.

Error Response Format:
{
    "error": {
        "code": "UNKNOWN_HOST",
        "message": "No backend configured for this route"
    }
}

Usage:
    from urlassist.core.errors import UnknownHostError

    # Raise with default message
    raise UnknownHostError()

    # Raise with custom message
    raise UnknownHostError("No backend for alice/api")

Exchange-scoped errors (400/413/502) are turned into a single proxy outcome
by the engine. HeaderDecodeError never reaches a caller (tokens are decoded
leniently) and ConfigInvalidError is startup-fatal.
"""

from enum import Enum

from pydantic import BaseModel


class ErrorCode(str, Enum):
    """Error codes."""

    MALFORMED_ROUTE = "MALFORMED_ROUTE"
    UNKNOWN_HOST = "UNKNOWN_HOST"
    BODY_TOO_LARGE = "BODY_TOO_LARGE"
    BACKEND_UNREACHABLE = "BACKEND_UNREACHABLE"
    HEADER_DECODE_ERROR = "HEADER_DECODE_ERROR"
    CONFIG_INVALID = "CONFIG_INVALID"
    INTERNAL_ERROR = "INTERNAL_ERROR"


class ErrorDetail(BaseModel):
    """Error detail containing code and message."""

    code: str
    message: str


class ErrorResponse(BaseModel):
    """Error response format."""

    error: ErrorDetail


class UrlAssistError(Exception):
    """Base exception for urlassist.

    Attributes:
        code: The error code from ErrorCode enum
        message: Human-readable error message
        status_code: HTTP status code to return (0 for errors that are
            never surfaced as an HTTP response)
    """

    def __init__(self, code: ErrorCode, message: str, status_code: int) -> None:
        self.code = code
        self.message = message
        self.status_code = status_code
        super().__init__(message)

    def to_response(self) -> ErrorResponse:
        """Convert exception to ErrorResponse model."""
        return ErrorResponse(
            error=ErrorDetail(code=self.code.value, message=self.message)
        )


class MalformedRouteError(UrlAssistError):
    """400 Bad Request - Path is not /proxy/{key1}/{key2}[/{rest}]."""

    def __init__(self, message: str = "Malformed proxy route") -> None:
        super().__init__(ErrorCode.MALFORMED_ROUTE, message, 400)


class UnknownHostError(UrlAssistError):
    """400 Bad Request - No route table entry for the key pair."""

    def __init__(self, message: str = "No backend configured for this route") -> None:
        super().__init__(ErrorCode.UNKNOWN_HOST, message, 400)


class BodyTooLargeError(UrlAssistError):
    """413 Content Too Large - Request body exceeds the configured cap."""

    def __init__(self, limit: int, message: str | None = None) -> None:
        self.limit = limit
        super().__init__(
            ErrorCode.BODY_TOO_LARGE,
            message or f"Request body exceeds {limit} bytes",
            413,
        )


class BackendUnreachableError(UrlAssistError):
    """502 Bad Gateway - Connection-level failure contacting the backend."""

    def __init__(self, message: str = "Backend unreachable") -> None:
        super().__init__(ErrorCode.BACKEND_UNREACHABLE, message, 502)


class HeaderDecodeError(UrlAssistError):
    """Side-channel header token could not be decoded."""

    def __init__(self, message: str = "Invalid proxy headers token") -> None:
        super().__init__(ErrorCode.HEADER_DECODE_ERROR, message, 0)


class ConfigInvalidError(UrlAssistError):
    """Route table configuration is missing or malformed."""

    def __init__(self, message: str = "Invalid configuration") -> None:
        super().__init__(ErrorCode.CONFIG_INVALID, message, 0)
