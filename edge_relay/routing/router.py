"""
Request classification.

``route`` maps a request path onto exactly one of three decisions:

    Proxy          forward to the upstream API, prefix preserved
    ServeStatic    an existing file under the static root
    ServeFallback  the root's default document (client-side router paths)

Fallback is decided purely by file existence: ``/favicon.ico`` with no file
on disk falls back exactly like ``/chat`` does.
"""

import os
from dataclasses import dataclass
from typing import Optional, Union
from urllib.parse import quote

from edge_relay.config.models import ProxyRule, RelayConfig, StaticFallbackRule
from edge_relay.errors import InvalidRequestPath, StaticRootUnavailable

# RFC 3986 pchar plus "/", everything else gets percent-encoded
_PATH_SAFE = "/:@!$&'()*+,;=~"


@dataclass(frozen=True)
class Proxy:
    rule: ProxyRule
    upstream: str
    rewritten_path: str

    @property
    def url(self) -> str:
        return f"{self.upstream}{self.rewritten_path}"


@dataclass(frozen=True)
class ServeStatic:
    rule: StaticFallbackRule
    resolved_file_path: str


@dataclass(frozen=True)
class ServeFallback:
    rule: StaticFallbackRule
    default_document: str


RouteDecision = Union[Proxy, ServeStatic, ServeFallback]


def normalize_path(path: str) -> str:
    """
    Collapse ``.`` and ``..`` segments.

    Raises:
        InvalidRequestPath: for relative paths, NUL bytes, backslashes, or
            ``..`` segments that would climb above ``/``.
    """
    if not path.startswith("/") or "\x00" in path or "\\" in path:
        raise InvalidRequestPath(f"Malformed request path: {path!r}")

    segments = []
    for segment in path.split("/")[1:]:
        if segment == "..":
            if not segments:
                raise InvalidRequestPath(f"Path escapes the root: {path!r}")
            segments.pop()
        elif segment != ".":
            segments.append(segment)
    if path.endswith(("/.", "/..")):
        segments.append("")
    return "/" + "/".join(segments)


def upstream_path(
    rule: ProxyRule,
    path: str,
    raw_path: Optional[str] = None,
    query: str = "",
) -> str:
    """
    Build the path (and query) sent upstream.

    Without a base path on the upstream URL the request path goes through
    untouched, in the encoding the client used. With a base path the matched
    prefix is replaced by it, e.g. ``/api/x`` -> ``/v2/x`` for
    ``upstream="http://backend:8080/v2"``.
    """
    if raw_path and raw_path.startswith(rule.prefix):
        forwarded = raw_path
    else:
        forwarded = quote(path, safe=_PATH_SAFE)

    base = rule.upstream_base_path
    if base:
        rest = forwarded[len(rule.prefix):]
        separator = "/" if rule.prefix.endswith("/") else ""
        forwarded = f"{base}{separator}{rest}"

    if query:
        forwarded = f"{forwarded}?{query}"
    return forwarded


def _within(root: str, candidate: str) -> bool:
    return os.path.commonpath([root, candidate]) == root


def resolve_static(rule: StaticFallbackRule, path: str) -> RouteDecision:
    root = rule.root
    if not os.path.isdir(root) or not os.access(root, os.R_OK | os.X_OK):
        raise StaticRootUnavailable(
            f"Static root {root} is not a readable directory", target=root
        )

    real_root = os.path.realpath(root)
    relative = path[len(rule.prefix):] if path.startswith(rule.prefix) else path
    candidate = os.path.realpath(os.path.join(real_root, relative.lstrip("/")))

    # Symlinks pointing outside the bundle are treated as missing
    if _within(real_root, candidate):
        if os.path.isdir(candidate):
            candidate = os.path.join(candidate, rule.default_document)
        if os.path.isfile(candidate):
            if not os.access(candidate, os.R_OK):
                raise StaticRootUnavailable(
                    f"Static file {candidate} is not readable", target=candidate
                )
            return ServeStatic(rule=rule, resolved_file_path=candidate)

    default_document = os.path.join(real_root, rule.default_document)
    if not os.path.isfile(default_document) or not os.access(default_document, os.R_OK):
        raise StaticRootUnavailable(
            f"Default document {default_document} is missing or unreadable",
            target=default_document,
        )
    return ServeFallback(rule=rule, default_document=default_document)


def route(
    config: RelayConfig,
    path: str,
    raw_path: Optional[str] = None,
    query: str = "",
) -> RouteDecision:
    """Classify a request path against the route table of ``config``."""
    normalized = normalize_path(path)
    rule = config.match(normalized)

    if isinstance(rule, ProxyRule):
        # Only trust the client's encoding when normalization changed nothing
        trusted_raw = raw_path if normalized == path else None
        return Proxy(
            rule=rule,
            upstream=rule.upstream_origin,
            rewritten_path=upstream_path(rule, normalized, trusted_raw, query),
        )
    return resolve_static(rule, normalized)
