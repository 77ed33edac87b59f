from .router import (
    Proxy,
    RouteDecision,
    ServeFallback,
    ServeStatic,
    normalize_path,
    route,
)

__all__ = [
    "Proxy",
    "RouteDecision",
    "ServeFallback",
    "ServeStatic",
    "normalize_path",
    "route",
]
