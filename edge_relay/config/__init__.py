from .models import (
    ProxyRule,
    RelayConfig,
    RouteRule,
    StaticFallbackRule,
    Timeouts,
)
from .store import ConfigStore, environment_config, load_config_file

__all__ = [
    "ProxyRule",
    "RelayConfig",
    "RouteRule",
    "StaticFallbackRule",
    "Timeouts",
    "ConfigStore",
    "environment_config",
    "load_config_file",
]
