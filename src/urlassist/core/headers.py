"""Side-channel header codec.

Browsers only let a script set and read a restricted set of headers, so the
full header multimap travels inside one custom header value:

    token = base64(json({"Name": ["value", ...], ...}))

Decoding is strict (HeaderDecodeError); request handling goes through
decode_lenient(), which degrades to "no headers supplied".
"""

import base64
import binascii
import json
import logging
from collections.abc import Iterable

from urlassist.core.errors import HeaderDecodeError
from urlassist.core.logging_schema import LogEvent

logger = logging.getLogger(__name__)

# Header name -> ordered values (multi-valued headers such as Set-Cookie)
ProxyHeaders = dict[str, list[str]]

PROXY_HEADERS = "x-proxy-headers"
PROXY_STATUS = "x-proxy-status"


def encode(headers: ProxyHeaders) -> str:
    """Encode a header multimap into a single base64 token."""
    payload = json.dumps(headers, separators=(",", ":"), ensure_ascii=False)
    return base64.b64encode(payload.encode("utf-8")).decode("ascii")


def decode(token: str) -> ProxyHeaders:
    """Decode a token produced by encode().

    Plain string values are accepted as single-element lists.

    Raises:
        HeaderDecodeError: token is not base64 encoded JSON of the
            expected shape.
    """
    try:
        raw = base64.b64decode(token.strip(), validate=True)
        document = json.loads(raw.decode("utf-8"))
    except (binascii.Error, UnicodeDecodeError, ValueError) as exc:
        raise HeaderDecodeError(f"Invalid proxy headers token: {exc}") from exc

    if not isinstance(document, dict):
        raise HeaderDecodeError("Proxy headers token must encode a JSON object")

    headers: ProxyHeaders = {}
    for name, value in document.items():
        if isinstance(value, str):
            headers[name] = [value]
        elif isinstance(value, list) and all(isinstance(v, str) for v in value):
            headers[name] = list(value)
        else:
            raise HeaderDecodeError(
                f"Header {name!r} must be a string or a list of strings"
            )
    return headers


def decode_lenient(token: str | None) -> ProxyHeaders:
    """Decode a caller-supplied token, treating bad input as no headers."""
    if not token:
        return {}
    try:
        return decode(token)
    except HeaderDecodeError as exc:
        logger.warning(
            "Ignoring undecodable proxy headers",
            extra={"event": LogEvent.HEADER_DECODE_FAILED, "error": exc.message},
        )
        return {}


def from_pairs(pairs: Iterable[tuple[str, str]]) -> ProxyHeaders:
    """Group raw (name, value) pairs into a multimap.

    Names are compared case-insensitively; the first spelling seen is kept.
    """
    headers: ProxyHeaders = {}
    spelling: dict[str, str] = {}
    for name, value in pairs:
        key = spelling.setdefault(name.lower(), name)
        headers.setdefault(key, []).append(value)
    return headers


def to_pairs(headers: ProxyHeaders) -> list[tuple[str, str]]:
    """Flatten a multimap into (name, value) pairs, preserving order."""
    return [(name, value) for name, values in headers.items() for value in values]
