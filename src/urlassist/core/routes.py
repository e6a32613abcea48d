"""Route table: (key1, key2) -> backend base URL.

The table is parsed and validated once at startup and never mutated
afterwards. Configuration document:

    {
        "hosts": [
            {"key1": "alice", "key2": "api", "baseUrl": "https://api.lab:8443/v1"},
            ...
        ],
        "app": {...},     # optional, passed through to /config
        "links": [...]    # optional, passed through to /config
    }

Host entries written by the config generator use "student"/"origin"
instead of "key1"/"key2"; both spellings are accepted.
"""

import copy
import json
import logging
from collections.abc import Iterator, Mapping
from pathlib import Path
from typing import Any

import httpx
from pydantic import AliasChoices, BaseModel, ConfigDict, Field, ValidationError, field_validator

from urlassist.core.errors import ConfigInvalidError
from urlassist.core.logging_schema import LogEvent

logger = logging.getLogger(__name__)

_BACKEND_SCHEMES = frozenset({"http", "https"})


class HostEntry(BaseModel):
    """One backend route. Unknown fields (e.g. UI hints) are preserved."""

    model_config = ConfigDict(frozen=True, extra="allow")

    key1: str = Field(validation_alias=AliasChoices("key1", "student"))
    key2: str = Field(validation_alias=AliasChoices("key2", "origin"))
    base_url: str = Field(
        validation_alias=AliasChoices("baseUrl", "base_url"),
        serialization_alias="baseUrl",
    )
    name: str | None = None

    @field_validator("base_url")
    @classmethod
    def _check_base_url(cls, value: str) -> str:
        try:
            url = httpx.URL(value)
        except httpx.InvalidURL as exc:
            raise ValueError(f"invalid URL: {exc}") from exc
        if url.scheme not in _BACKEND_SCHEMES:
            raise ValueError("baseUrl must use http or https")
        if not url.host:
            raise ValueError("baseUrl must include a host")
        return value


class RouteDocument(BaseModel):
    """Top-level configuration document."""

    model_config = ConfigDict(frozen=True, extra="allow")

    hosts: tuple[HostEntry, ...]


class RouteTable:
    """Immutable, ordered lookup table of HostEntry records."""

    def __init__(self, document: RouteDocument, source: Mapping[str, Any]) -> None:
        self._document = document
        self._source = copy.deepcopy(dict(source))

    @classmethod
    def load(cls, source: Mapping[str, Any]) -> "RouteTable":
        """Build a table from a parsed configuration document.

        Raises:
            ConfigInvalidError: document is malformed or an entry lacks
                key1, key2 or baseUrl.
        """
        try:
            document = RouteDocument.model_validate(source)
        except ValidationError as exc:
            problems = "; ".join(
                f"{'.'.join(str(p) for p in err['loc']) or '<root>'}: {err['msg']}"
                for err in exc.errors()
            )
            raise ConfigInvalidError(f"Invalid route table: {problems}") from exc
        return cls(document, source)

    @property
    def entries(self) -> tuple[HostEntry, ...]:
        return self._document.hosts

    def __len__(self) -> int:
        return len(self._document.hosts)

    def __iter__(self) -> Iterator[HostEntry]:
        return iter(self._document.hosts)

    def resolve(self, key1: str, key2: str) -> str | None:
        """Return the base URL of the first entry matching both keys."""
        for entry in self._document.hosts:
            if entry.key1 == key1 and entry.key2 == key2:
                return entry.base_url
        return None

    def to_document(self) -> dict[str, Any]:
        """The configuration document exactly as loaded.

        Host entries keep the key spelling they were written with
        (student/origin or key1/key2) and every extra field, null ones too.
        """
        return copy.deepcopy(self._source)


def load_route_table(path: str | Path) -> RouteTable:
    """Read and validate the route table file.

    Raises:
        ConfigInvalidError: file is missing, unreadable, not JSON, or not
            a valid route table.
    """
    path = Path(path)
    try:
        source = json.loads(path.read_text(encoding="utf-8"))
    except OSError as exc:
        raise ConfigInvalidError(f"Cannot read {path}: {exc}") from exc
    except ValueError as exc:
        raise ConfigInvalidError(f"{path} is not valid JSON: {exc}") from exc

    table = RouteTable.load(source)
    logger.info(
        "Route table loaded",
        extra={"event": LogEvent.CONFIG_LOADED, "path": str(path), "routes": len(table)},
    )
    return table
