from typing import Iterable, List, Tuple

import httpx
from fastapi import Request

# Hop-by-hop headers that should NOT be forwarded (RFC 7230 section 6.1)
HOP_BY_HOP_HEADERS = {
    "connection",
    "keep-alive",
    "proxy-authenticate",
    "proxy-authorization",
    "proxy-connection",
    "te",
    "trailer",
    "trailers",
    "transfer-encoding",
    "upgrade",
}

# Recomputed for the upstream hop from the upstream URL
RECOMPUTED_HEADERS = {"host"}

# Set by the relay itself; client-sent values only feed the X-Forwarded-For chain
FORWARDING_HEADERS = {
    "x-forwarded-for",
    "x-forwarded-host",
    "x-forwarded-prefix",
    "x-forwarded-proto",
    "x-real-ip",
}

EVENT_STREAM = "text/event-stream"


def _connection_tokens(value: str) -> set:
    return {token.strip().lower() for token in value.split(",") if token.strip()}


def client_address(request: Request) -> str:
    return request.client.host if request.client and request.client.host else "unknown"


def prepare_headers(request: Request, prefix: str = "") -> httpx.Headers:
    """
    Prepare headers for forwarding to the upstream.

    Hop-by-hop headers are dropped, including any named by the client's
    Connection header. ``Upgrade`` is never passed on and the upstream
    connection is asked to stay open, so the upstream neither switches
    protocols nor closes after each response.

    Returns a multi-valued ``httpx.Headers``: a header the client sent on
    several lines reaches the upstream on several lines, byte for byte.
    """
    dropped = HOP_BY_HOP_HEADERS | RECOMPUTED_HEADERS | FORWARDING_HEADERS
    dropped |= _connection_tokens(",".join(request.headers.getlist("connection")))

    headers = httpx.Headers(
        [
            (name, value)
            for name, value in request.headers.raw
            if name.decode("latin-1").lower() not in dropped
        ]
    )

    client_ip = client_address(request)
    # Append to, never replace, an existing chain, whatever lines it came on
    existing_xff = ", ".join(request.headers.getlist("x-forwarded-for"))
    headers["x-forwarded-for"] = f"{existing_xff}, {client_ip}".strip(", ")
    headers["x-real-ip"] = client_ip
    headers["x-forwarded-host"] = request.headers.get("host", "")
    headers["x-forwarded-proto"] = request.url.scheme
    if prefix:
        headers["x-forwarded-prefix"] = prefix.rstrip("/") or "/"

    headers["connection"] = "keep-alive"
    return headers


def is_event_stream(content_type: str) -> bool:
    return content_type.split(";", 1)[0].strip().lower() == EVENT_STREAM


def prepare_response_headers(
    headers: Iterable[Tuple[str, str]], content_type: str = ""
) -> List[Tuple[str, str]]:
    """
    Filter upstream response headers for the client.

    Takes ``(name, value)`` pairs so repeated headers such as Set-Cookie
    survive. Event streams get proxy-buffering and caching switched off.
    """
    pairs = list(headers)
    dropped = set(HOP_BY_HOP_HEADERS)
    for name, value in pairs:
        if name.lower() == "connection":
            dropped |= _connection_tokens(value)

    result = [(name, value) for name, value in pairs if name.lower() not in dropped]

    if is_event_stream(content_type):
        present = {name.lower() for name, _ in result}
        if "x-accel-buffering" not in present:
            result.append(("x-accel-buffering", "no"))
        if "cache-control" not in present:
            result.append(("cache-control", "no-cache"))
    return result
