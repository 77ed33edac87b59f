"""
Holds the active relay configuration and swaps it on reload.

The active ``RelayConfig`` is immutable and replaced by reference, so a
request that captured ``store.current`` keeps a consistent view for its
whole lifetime while later requests see the new table. A reload that fails
validation leaves the previous snapshot in place and is reported through
the log and the ``edge_relay_config_reloads_total`` counter.
"""

import asyncio
import json
import logging
import os
import signal
from typing import Optional

from prometheus_client import Counter
from pydantic import ValidationError

from edge_relay.config.models import (
    ProxyRule,
    RelayConfig,
    StaticFallbackRule,
    Timeouts,
)
from edge_relay.errors import ConfigReloadError
from edge_relay.vars import (
    RELAY_API_PREFIX,
    RELAY_CONNECT_TIMEOUT,
    RELAY_DEFAULT_DOCUMENT,
    RELAY_POOL_TIMEOUT,
    RELAY_READ_TIMEOUT,
    RELAY_STATIC_ROOT,
    RELAY_UPSTREAM_URL,
    RELAY_WRITE_TIMEOUT,
)

logger = logging.getLogger("uvicorn.error")

CONFIG_RELOADS = Counter(
    "edge_relay_config_reloads_total",
    "Configuration reload attempts by outcome",
    ["outcome"],
)


def environment_config(version: int = 1) -> RelayConfig:
    """Build the default two-rule table (API proxy + SPA fallback) from env vars."""
    try:
        return RelayConfig(
            routes=(
                ProxyRule(prefix=RELAY_API_PREFIX, upstream=RELAY_UPSTREAM_URL),
                StaticFallbackRule(
                    root=RELAY_STATIC_ROOT, default_document=RELAY_DEFAULT_DOCUMENT
                ),
            ),
            timeouts=Timeouts(
                connect=RELAY_CONNECT_TIMEOUT,
                read=RELAY_READ_TIMEOUT,
                write=RELAY_WRITE_TIMEOUT,
                pool=RELAY_POOL_TIMEOUT,
            ),
            version=version,
            source="environment",
        )
    except ValidationError as e:
        raise ConfigReloadError(f"Invalid environment configuration: {e}", "environment")


def load_config_file(path: str, version: int = 1) -> RelayConfig:
    """
    Load a JSON route table.

    Relative static roots are resolved against the directory of the file,
    so a bundle shipped next to its config can be referenced as ``"dist"``.

    Raises:
        ConfigReloadError: when the file cannot be read or fails validation.
    """
    try:
        with open(path, "r", encoding="utf-8") as f:
            raw = json.load(f)
    except (OSError, json.JSONDecodeError) as e:
        raise ConfigReloadError(f"Cannot read config file: {e}", path)

    if not isinstance(raw, dict):
        raise ConfigReloadError("Config file must contain a JSON object", path)

    base_dir = os.path.dirname(os.path.abspath(path))
    routes = raw.get("routes")
    if isinstance(routes, list):
        for rule in routes:
            if (
                isinstance(rule, dict)
                and rule.get("mode") == "static_fallback"
                and isinstance(rule.get("root"), str)
                and not os.path.isabs(rule["root"])
            ):
                rule["root"] = os.path.join(base_dir, rule["root"])

    raw["version"] = version
    raw["source"] = path
    try:
        return RelayConfig.model_validate(raw)
    except ValidationError as e:
        raise ConfigReloadError(f"Invalid config file: {e}", path)


class ConfigStore:
    def __init__(self, config_file: Optional[str] = None):
        self.config_file = config_file or None
        self._mtime = self._file_mtime()
        # No previous snapshot to fall back to: a bad initial config is fatal
        self._current = self._load(version=1)

    @property
    def current(self) -> RelayConfig:
        return self._current

    def _load(self, version: int) -> RelayConfig:
        if self.config_file:
            return load_config_file(self.config_file, version)
        return environment_config(version)

    def _file_mtime(self) -> Optional[float]:
        if not self.config_file:
            return None
        try:
            return os.stat(self.config_file).st_mtime
        except OSError:
            return None

    def reload(self) -> bool:
        """Re-read the configuration source; keep the old snapshot on failure."""
        previous = self._current
        try:
            config = self._load(version=previous.version + 1)
        except ConfigReloadError as e:
            CONFIG_RELOADS.labels(outcome="failure").inc()
            logger.error(
                f"[Config] Reload from {e.source} failed, "
                f"keeping version {previous.version}: {e}"
            )
            return False

        self._current = config
        CONFIG_RELOADS.labels(outcome="success").inc()
        logger.info(
            f"[Config] Activated version {config.version} from {config.source} "
            f"({len(config.routes)} routes)"
        )
        return True

    def changed_on_disk(self) -> bool:
        mtime = self._file_mtime()
        if mtime == self._mtime:
            return False
        self._mtime = mtime
        return True

    async def watch(self, interval: float) -> None:
        """Poll the config file and reload whenever its modification time changes."""
        if not self.config_file or interval <= 0:
            return
        logger.info(f"[Config] Watching {self.config_file} every {interval}s")
        while True:
            await asyncio.sleep(interval)
            if self.changed_on_disk():
                self.reload()

    def register_reload_signal(self, loop: asyncio.AbstractEventLoop) -> bool:
        """Reload on SIGHUP where the platform supports it."""
        if not hasattr(signal, "SIGHUP"):
            return False
        try:
            loop.add_signal_handler(signal.SIGHUP, self.reload)
        except (NotImplementedError, RuntimeError) as e:
            logger.warning(f"[Config] SIGHUP reload unavailable: {e}")
            return False
        return True
