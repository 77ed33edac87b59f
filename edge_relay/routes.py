import logging

from fastapi import APIRouter, Request, Response

from edge_relay.config import ConfigStore
from edge_relay.errors import InvalidRequestPath, StaticRootUnavailable
from edge_relay.proxy import proxy_request
from edge_relay.routing import Proxy, ServeStatic, route
from edge_relay.statics import serve_fallback, serve_static
from edge_relay.vars import RELAY_ADMIN_PREFIX

logger = logging.getLogger("uvicorn.error")

admin_router = APIRouter(prefix=RELAY_ADMIN_PREFIX)
router = APIRouter()

RELAY_METHODS = ["GET", "POST", "PUT", "DELETE", "PATCH", "HEAD", "OPTIONS"]


@admin_router.get("/health")
async def health(request: Request):
    config = request.app.state.config_store.current
    return {
        "status": "ok",
        "config_version": config.version,
        "config_source": config.source,
        "routes": [
            {"mode": rule.mode, "prefix": rule.prefix} for rule in config.routes
        ],
    }


async def relay(request: Request) -> Response:
    """Route one request and hand it to the proxy or the static server."""
    store: ConfigStore = request.app.state.config_store
    # Captured once: a reload mid-request must not change the rules under us
    config = store.current

    raw_path = request.scope.get("raw_path")
    try:
        decision = route(
            config,
            request.url.path,
            raw_path=raw_path.decode("latin-1") if raw_path else None,
            query=request.url.query,
        )
    except InvalidRequestPath as e:
        logger.warning(f"[Relay] Rejected {request.method} {request.url.path}: {e.message}")
        raise
    except StaticRootUnavailable as e:
        logger.error(f"[Static] {e.message}")
        raise

    if isinstance(decision, Proxy):
        return await proxy_request(
            request, decision, config, request.app.state.http_client
        )
    if isinstance(decision, ServeStatic):
        return serve_static(decision, request.method)
    return serve_fallback(decision, request.method)


# Registered last: everything not claimed by a more specific route lands here
@router.api_route("/{path:path}", methods=RELAY_METHODS, include_in_schema=False)
async def relay_all(request: Request, path: str):
    return await relay(request)
