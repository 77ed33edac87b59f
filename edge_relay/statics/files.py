import logging

from fastapi import HTTPException
from fastapi.responses import FileResponse

from edge_relay.routing import ServeFallback, ServeStatic

logger = logging.getLogger("uvicorn.error")

STATIC_METHODS = ("GET", "HEAD")


def _check_method(method: str) -> None:
    if method.upper() not in STATIC_METHODS:
        raise HTTPException(
            status_code=405,
            detail="Method not allowed",
            headers={"Allow": ", ".join(STATIC_METHODS)},
        )


def serve_static(decision: ServeStatic, method: str) -> FileResponse:
    """Serve an existing bundle file byte-for-byte."""
    _check_method(method)
    return FileResponse(decision.resolved_file_path)


def serve_fallback(decision: ServeFallback, method: str) -> FileResponse:
    """
    Serve the default document with 200 for paths that exist only in the
    client-side router. The document is marked no-cache so a new bundle
    becomes visible on the next navigation.
    """
    _check_method(method)
    logger.debug(f"[Static] Falling back to {decision.default_document}")
    return FileResponse(
        decision.default_document,
        status_code=200,
        headers={"Cache-Control": "no-cache"},
    )
