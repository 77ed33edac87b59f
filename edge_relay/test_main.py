import asyncio
from contextlib import asynccontextmanager
from types import SimpleNamespace
from unittest.mock import MagicMock

import pytest

from edge_relay import main as main_module


@pytest.fixture
def tls_files(tmp_path):
    cert = tmp_path / "fullchain.pem"
    key = tmp_path / "privkey.pem"
    cert.write_text("cert")
    key.write_text("key")
    return str(cert), str(key)


def test_plain_listener_only_without_tls(monkeypatch):
    monkeypatch.setattr(main_module, "RELAY_TLS_CERTFILE", "")
    monkeypatch.setattr(main_module, "RELAY_TLS_KEYFILE", "")

    configs = main_module.build_server_configs()

    assert len(configs) == 1
    assert configs[0].port == main_module.RELAY_PORT
    assert configs[0].lifespan == "off"
    assert configs[0].proxy_headers is False


def test_tls_listener_added_when_material_present(monkeypatch, tls_files):
    cert, key = tls_files
    monkeypatch.setattr(main_module, "RELAY_TLS_CERTFILE", cert)
    monkeypatch.setattr(main_module, "RELAY_TLS_KEYFILE", key)

    configs = main_module.build_server_configs()

    assert len(configs) == 2
    plain, tls = configs
    assert plain.lifespan == tls.lifespan == "off"
    assert tls.port == main_module.RELAY_TLS_PORT
    assert tls.ssl_certfile == cert
    assert tls.ssl_keyfile == key
    assert tls.app == plain.app == "edge_relay.server:app"


def test_missing_tls_material_falls_back_to_plain(monkeypatch, tmp_path):
    monkeypatch.setattr(main_module, "RELAY_TLS_CERTFILE", str(tmp_path / "missing.pem"))
    monkeypatch.setattr(main_module, "RELAY_TLS_KEYFILE", str(tmp_path / "missing.key"))
    logger = MagicMock()
    monkeypatch.setattr(main_module, "logger", logger)

    configs = main_module.build_server_configs()

    assert len(configs) == 1
    assert main_module.tls_material_available() is False
    assert "not present yet" in logger.warning.call_args[0][0]


class FakeServer:
    """Stands in for uvicorn.Server; the plain listener stops on its own."""

    def __init__(self, config, events, state):
        self.config = config
        self.events = events
        self.state = state
        self.should_exit = False

    async def serve(self):
        self.events.append(("serving", self.config.port, "http_client" in self.state))
        if self.config.port == 80:
            await asyncio.sleep(0.05)
            self.should_exit = True
        while not self.should_exit:
            await asyncio.sleep(0.01)
        # Draining connections takes a moment after the exit signal
        await asyncio.sleep(0.05)
        self.events.append(("stopped", self.config.port))


@pytest.mark.asyncio
async def test_listeners_share_one_lifespan(monkeypatch):
    events = []
    state = {}

    @asynccontextmanager
    async def lifespan(app):
        state["http_client"] = object()
        events.append("startup")
        yield
        state.clear()
        events.append("shutdown")

    application = SimpleNamespace(router=SimpleNamespace(lifespan_context=lifespan))
    monkeypatch.setattr(
        main_module.uvicorn,
        "Server",
        lambda config: FakeServer(config, events, state),
    )
    configs = [SimpleNamespace(port=80), SimpleNamespace(port=443)]

    await asyncio.wait_for(main_module.serve(configs, application), timeout=2)

    assert events[0] == "startup"
    # Both listeners see the shared client from their first connection on
    assert ("serving", 80, True) in events
    assert ("serving", 443, True) in events
    # The client outlives every listener
    assert events.index("shutdown") > events.index(("stopped", 443))
    assert events.index("shutdown") > events.index(("stopped", 80))
    assert events[-1] == "shutdown"
