"""
Upstream forwarding and body relay.

The relay never holds more than one upstream chunk per connection: a chunk
is read from the upstream only after the previous one has been handed to
the server, and uvicorn's ``send`` waits for the client socket to drain.
A slow client therefore stops upstream reads instead of growing memory, and
an SSE stream reaches the client event by event.
"""

import logging
from typing import AsyncIterator, List, Optional, Tuple

import anyio
import httpx
from fastapi import Request
from fastapi.responses import StreamingResponse
from opentelemetry import trace

from edge_relay.config.models import RelayConfig, Timeouts
from edge_relay.errors import (
    RelayError,
    UpstreamProtocolError,
    UpstreamTimeout,
    UpstreamUnreachable,
)
from edge_relay.proxy.headers import is_event_stream, prepare_headers, prepare_response_headers
from edge_relay.routing import Proxy
from edge_relay.vars import RELAY_KEEPALIVE_EXPIRY, RELAY_MAX_CONNECTIONS

tracer = trace.get_tracer(__name__)
logger = logging.getLogger("uvicorn.error")

# httpx defaults that must not leak into forwarded requests: the client's own
# Accept-Encoding decides whether the upstream may compress.
_CLIENT_DEFAULT_HEADERS = ("accept", "accept-encoding", "user-agent")


def build_timeout(timeouts: Timeouts) -> httpx.Timeout:
    return httpx.Timeout(
        connect=timeouts.connect,
        read=timeouts.read,
        write=timeouts.write,
        pool=timeouts.pool,
    )


def create_upstream_client(
    transport: Optional[httpx.AsyncBaseTransport] = None,
    keepalive_expiry: float = RELAY_KEEPALIVE_EXPIRY,
    max_connections: int = RELAY_MAX_CONNECTIONS,
) -> httpx.AsyncClient:
    """
    Shared HTTP/1.1 client for all upstream traffic.

    Connections are kept alive between requests; an idle connection expires
    after ``keepalive_expiry`` seconds, and every new connection resolves the
    upstream host again, so a redeployed upstream is picked up without
    restarting the relay.
    """
    client = httpx.AsyncClient(
        limits=httpx.Limits(
            max_connections=max_connections,
            max_keepalive_connections=max_connections,
            keepalive_expiry=keepalive_expiry,
        ),
        follow_redirects=False,
        trust_env=False,
        transport=transport,
    )
    for name in _CLIENT_DEFAULT_HEADERS:
        client.headers.pop(name, None)
    return client


def _raw_header_pairs(response: httpx.Response) -> List[Tuple[str, str]]:
    return [
        (name.decode("latin-1"), value.decode("latin-1"))
        for name, value in response.headers.raw
    ]


async def relay_body(response: httpx.Response, target_url: str) -> AsyncIterator[bytes]:
    """
    Yield upstream body chunks exactly as they arrive.

    ``aiter_raw`` neither decompresses nor regroups, so every chunk is
    forwarded the moment it is read. An upstream that goes idle past the
    read timeout, or drops the connection, ends the stream.
    """
    chunks = 0
    size = 0
    try:
        async for chunk in response.aiter_raw():
            chunks += 1
            size += len(chunk)
            yield chunk
    except httpx.ReadTimeout:
        logger.warning(
            f"[Relay] Upstream {target_url} idle past read timeout after "
            f"{chunks} chunks, closing stream"
        )
    except httpx.TransportError as e:
        logger.warning(
            f"[Relay] Upstream {target_url} broke off after {chunks} chunks: {e!r}"
        )
    finally:
        with anyio.CancelScope(shield=True):
            await response.aclose()
        logger.debug(f"[Relay] Stream from {target_url} closed ({chunks} chunks, {size} bytes)")


class RelayStreamingResponse(StreamingResponse):
    """
    StreamingResponse bound to an open upstream response.

    The upstream response is closed when sending finishes for any reason,
    including the client disconnecting while a chunk is in flight.
    """

    def __init__(self, upstream: httpx.Response, target_url: str):
        super().__init__(
            relay_body(upstream, target_url), status_code=upstream.status_code
        )
        self.upstream = upstream
        content_type = upstream.headers.get("content-type", "")
        self.raw_headers = [
            (name.lower().encode("latin-1"), value.encode("latin-1"))
            for name, value in prepare_response_headers(
                _raw_header_pairs(upstream), content_type
            )
        ]

    async def __call__(self, scope, receive, send) -> None:
        try:
            await super().__call__(scope, receive, send)
        finally:
            with anyio.CancelScope(shield=True):
                await self.upstream.aclose()


def request_body(request: Request) -> Optional[AsyncIterator[bytes]]:
    """
    The client body as a stream, or None when the request declares none.

    Uploads are forwarded chunk by chunk as they arrive. A forwarded
    Content-Length keeps httpx from switching to chunked encoding; without
    one the upstream gets a chunked body.
    """
    if "content-length" in request.headers or "transfer-encoding" in request.headers:
        return request.stream()
    return None


def _translate_error(error: httpx.HTTPError, target_url: str) -> RelayError:
    if isinstance(error, (httpx.ConnectError, httpx.ConnectTimeout)):
        return UpstreamUnreachable(f"Cannot connect to {target_url}: {error!r}", target=target_url)
    if isinstance(error, httpx.TimeoutException):
        return UpstreamTimeout(f"No response from {target_url}: {error!r}", target=target_url)
    if isinstance(error, (httpx.ProtocolError, httpx.DecodingError)):
        return UpstreamProtocolError(
            f"Malformed response from {target_url}: {error!r}", target=target_url
        )
    return UpstreamUnreachable(f"Transport failure for {target_url}: {error!r}", target=target_url)


async def proxy_request(
    request: Request,
    decision: Proxy,
    config: RelayConfig,
    client: httpx.AsyncClient,
) -> RelayStreamingResponse:
    """
    Forward ``request`` upstream and return as soon as response headers arrive.

    No retries: an unreachable or misbehaving upstream is reported to the
    client as a gateway error right away.

    Raises:
        UpstreamUnreachable: connection refused, DNS failure, connect timeout.
        UpstreamTimeout: no response headers within the read timeout.
        UpstreamProtocolError: the upstream sent a malformed response.
    """
    target_url = decision.url
    with tracer.start_as_current_span("relay_request") as span:
        span.set_attribute("relay.target_url", target_url)
        span.set_attribute("relay.method", request.method)
        span.set_attribute("relay.config_version", config.version)

        logger.debug(f"[Relay] Proxying {request.method} {request.url.path} -> {target_url}")

        headers = prepare_headers(request, decision.rule.prefix)
        upstream_request = client.build_request(
            request.method,
            target_url,
            headers=headers,
            content=request_body(request),
            timeout=build_timeout(config.timeouts),
        )

        try:
            response = await client.send(upstream_request, stream=True)
        except httpx.HTTPError as e:
            error = _translate_error(e, target_url)
            span.set_attribute("relay.error", type(error).__name__)
            logger.error(f"[Relay] {error.message}")
            raise error from e

        span.set_attribute("relay.status_code", response.status_code)
        content_type = response.headers.get("content-type", "")
        if is_event_stream(content_type):
            span.set_attribute("relay.event_stream", True)
            logger.info(f"[Relay] Relaying event stream from {target_url}")

        return RelayStreamingResponse(response, target_url)
