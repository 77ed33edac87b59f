import asyncio
import os
import sys
from typing import Iterable, List, Optional, Tuple, Union

import httpx
import pytest
from starlette.requests import Request

SERVICE_ROOT = os.path.dirname(__file__)
if SERVICE_ROOT not in sys.path:
    sys.path.insert(0, SERVICE_ROOT)

from edge_relay.config import ProxyRule, RelayConfig, StaticFallbackRule, Timeouts  # noqa: E402

TEST_UPSTREAM_URL = "http://backend:8080"
INDEX_HTML = b"<!doctype html><html><body><div id=root></div></body></html>"
LOGO_PNG = b"\x89PNG\r\n\x1a\n\x00\x00\x00\rIHDR\x00\x00\x00\x01"


@pytest.fixture
def static_root(tmp_path):
    """A small SPA bundle: index.html, a binary asset and a nested index."""
    root = tmp_path / "dist"
    (root / "assets").mkdir(parents=True)
    (root / "docs").mkdir()
    (root / "index.html").write_bytes(INDEX_HTML)
    (root / "assets" / "logo.png").write_bytes(LOGO_PNG)
    (root / "assets" / "app.js").write_text("console.log('app');\n")
    (root / "docs" / "index.html").write_text("<html>docs</html>")
    return root


@pytest.fixture
def relay_config(static_root):
    return RelayConfig(
        routes=(
            StaticFallbackRule(root=str(static_root)),
            ProxyRule(prefix="/api/", upstream=TEST_UPSTREAM_URL),
        ),
        timeouts=Timeouts(connect=1.0, read=2.0, write=2.0, pool=1.0),
        version=1,
        source="test",
    )


def build_request(
    method: str = "GET",
    path: str = "/",
    query: str = "",
    headers: Optional[Union[dict, Iterable[Tuple[str, str]]]] = None,
    body: Union[bytes, List[bytes]] = b"",
    client: Optional[Tuple[str, int]] = ("203.0.113.7", 51000),
    scheme: str = "http",
    raw_path: Optional[str] = None,
) -> Request:
    """Build a real Starlette request from an ASGI scope."""
    if isinstance(headers, dict):
        headers = list(headers.items())
    scope = {
        "type": "http",
        "http_version": "1.1",
        "method": method,
        "scheme": scheme,
        "path": path,
        "raw_path": (raw_path if raw_path is not None else path).encode("utf-8"),
        "query_string": query.encode("latin-1"),
        "root_path": "",
        "headers": [
            (name.lower().encode("latin-1"), value.encode("latin-1"))
            for name, value in (headers or [])
        ],
        "client": client,
        "server": ("relay.example.com", 80),
    }
    # A list of chunks arrives as separate http.request messages
    pending = list(body) if isinstance(body, list) else [body]

    async def receive():
        if not pending:
            return {"type": "http.disconnect"}
        chunk = pending.pop(0)
        return {"type": "http.request", "body": chunk, "more_body": bool(pending)}

    return Request(scope, receive)


@pytest.fixture
def make_request():
    return build_request


class ChunkStream(httpx.AsyncByteStream):
    """Upstream body that emits chunks with optional delays and records progress."""

    def __init__(self, chunks, delay=0.0, fail_after=None):
        self.chunks = chunks
        self.delay = delay
        self.fail_after = fail_after
        self.produced = 0
        self.produced_at = []
        self.closed = False

    async def __aiter__(self):
        loop = asyncio.get_running_loop()
        for index, chunk in enumerate(self.chunks):
            if self.fail_after is not None and index >= self.fail_after:
                raise httpx.ReadTimeout("upstream idle")
            if self.delay:
                await asyncio.sleep(self.delay)
            self.produced += 1
            self.produced_at.append(loop.time())
            yield chunk

    async def aclose(self):
        self.closed = True


def streamed_response(status_code=200, headers=None, body=b"") -> httpx.Response:
    """
    Upstream response with an unread body, like a real transport returns.

    ``httpx.Response(content=...)`` is read eagerly and cannot be relayed
    with ``aiter_raw``.
    """
    chunks = [body] if body else []
    return httpx.Response(status_code, headers=headers, stream=ChunkStream(chunks))
