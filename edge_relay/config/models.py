from __future__ import annotations

import posixpath
from typing import Annotated, Literal, Union
from urllib.parse import urlsplit

from pydantic import AfterValidator, BaseModel, ConfigDict, Field, field_validator

CATCH_ALL_PREFIX = "/"


def _validate_prefix(value: str) -> str:
    if not value.startswith("/"):
        raise ValueError(f"route prefix must start with '/': {value!r}")
    if "\x00" in value or "\\" in value:
        raise ValueError(f"route prefix contains forbidden characters: {value!r}")
    return value


RoutePrefix = Annotated[str, AfterValidator(_validate_prefix)]


class ProxyRule(BaseModel):
    """Forward everything under ``prefix`` to ``upstream``."""

    model_config = ConfigDict(frozen=True)

    mode: Literal["proxy"] = "proxy"
    prefix: RoutePrefix
    upstream: str

    @field_validator("upstream")
    @classmethod
    def _check_upstream(cls, value: str) -> str:
        parts = urlsplit(value)
        if parts.scheme not in ("http", "https"):
            raise ValueError(f"upstream must be an http(s) URL: {value!r}")
        if not parts.hostname:
            raise ValueError(f"upstream is missing a host: {value!r}")
        if parts.query or parts.fragment:
            raise ValueError(f"upstream must not carry a query or fragment: {value!r}")
        return value.rstrip("/")

    @property
    def upstream_origin(self) -> str:
        parts = urlsplit(self.upstream)
        return f"{parts.scheme}://{parts.netloc}"

    @property
    def upstream_base_path(self) -> str:
        return urlsplit(self.upstream).path.rstrip("/")

    def matches(self, path: str) -> bool:
        return path.startswith(self.prefix)


class StaticFallbackRule(BaseModel):
    """Serve files from ``root``; unknown paths get ``default_document``."""

    model_config = ConfigDict(frozen=True)

    mode: Literal["static_fallback"] = "static_fallback"
    prefix: RoutePrefix = CATCH_ALL_PREFIX
    root: str
    default_document: str = "index.html"

    @field_validator("default_document")
    @classmethod
    def _check_default_document(cls, value: str) -> str:
        normalized = posixpath.normpath(value.lstrip("/"))
        if not value or normalized.startswith("..") or normalized == ".":
            raise ValueError(f"default document must stay inside the root: {value!r}")
        return normalized

    def matches(self, path: str) -> bool:
        return path.startswith(self.prefix)


RouteRule = Annotated[Union[ProxyRule, StaticFallbackRule], Field(discriminator="mode")]


class Timeouts(BaseModel):
    model_config = ConfigDict(frozen=True)

    connect: float = Field(default=5.0, gt=0)
    # Maximum silence between two upstream reads
    read: float = Field(default=300.0, gt=0)
    write: float = Field(default=60.0, gt=0)
    pool: float = Field(default=10.0, gt=0)


class RelayConfig(BaseModel):
    """
    Immutable configuration snapshot.

    ``routes`` is normalized to most-specific-first order, so evaluation
    order never depends on the order rules were declared in. The table must
    contain a catch-all rule, which guarantees exactly one rule matches any
    absolute path.
    """

    model_config = ConfigDict(frozen=True)

    routes: tuple[RouteRule, ...]
    timeouts: Timeouts = Field(default_factory=Timeouts)
    version: int = 0
    source: str = "environment"

    @field_validator("routes")
    @classmethod
    def _normalize_routes(cls, routes):
        if not routes:
            raise ValueError("route table is empty")
        prefixes = [rule.prefix for rule in routes]
        duplicates = sorted({p for p in prefixes if prefixes.count(p) > 1})
        if duplicates:
            raise ValueError(f"duplicate route prefixes: {duplicates}")
        if CATCH_ALL_PREFIX not in prefixes:
            raise ValueError("route table needs a catch-all rule with prefix '/'")
        return tuple(sorted(routes, key=lambda rule: len(rule.prefix), reverse=True))

    def match(self, path: str) -> Union[ProxyRule, StaticFallbackRule]:
        for rule in self.routes:
            if rule.matches(path):
                return rule
        # Unreachable for absolute paths thanks to the catch-all rule
        raise LookupError(f"no route matches {path!r}")
