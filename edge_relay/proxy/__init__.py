from .headers import prepare_headers, prepare_response_headers
from .relay import (
    RelayStreamingResponse,
    create_upstream_client,
    proxy_request,
    relay_body,
)

__all__ = [
    "prepare_headers",
    "prepare_response_headers",
    "RelayStreamingResponse",
    "create_upstream_client",
    "proxy_request",
    "relay_body",
]
