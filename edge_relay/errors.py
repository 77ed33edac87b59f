"""
Error taxonomy of the relay.

Client-facing errors are ``HTTPException`` subclasses, so FastAPI renders
them as ``{"detail": ...}`` with their status code. Missing static assets
are not errors (they resolve through the default document) and neither is
a client hanging up mid-stream.
"""

from typing import Optional

from fastapi import HTTPException


class RelayError(HTTPException):
    status_code = 500
    default_detail = "Internal relay error"

    def __init__(self, message: Optional[str] = None, *, target: Optional[str] = None):
        # ``message`` is for the logs; clients only ever see ``default_detail``
        self.message = message or self.default_detail
        self.target = target
        super().__init__(status_code=type(self).status_code, detail=self.default_detail)

    def __str__(self) -> str:
        return f"{self.status_code}: {self.message}"


class UpstreamUnreachable(RelayError):
    status_code = 502
    default_detail = "Bad gateway - cannot connect to upstream"


class UpstreamProtocolError(RelayError):
    status_code = 502
    default_detail = "Bad gateway - malformed upstream response"


class UpstreamTimeout(RelayError):
    status_code = 504
    default_detail = "Gateway timeout"


class StaticRootUnavailable(RelayError):
    status_code = 500
    default_detail = "Static content is unavailable"


class InvalidRequestPath(RelayError):
    status_code = 400
    default_detail = "Malformed request path"


class ConfigReloadError(Exception):
    """Raised while loading a configuration; never surfaced to clients."""

    def __init__(self, message: str, source: Optional[str] = None):
        super().__init__(message)
        self.source = source
