"""
Process entrypoint.

Runs the plain HTTP listener and, once certificate material has been
provisioned next to the relay, a TLS listener serving the same application
in the same event loop.
"""

import asyncio
import logging
import os
from typing import List

import uvicorn
from fastapi import FastAPI

from edge_relay.vars import (
    LOG_LEVEL,
    RELAY_HOST,
    RELAY_PORT,
    RELAY_TLS_CERTFILE,
    RELAY_TLS_KEYFILE,
    RELAY_TLS_PORT,
)

logger = logging.getLogger("uvicorn.error")

APP = "edge_relay.server:app"


def tls_material_available() -> bool:
    return bool(
        RELAY_TLS_CERTFILE
        and RELAY_TLS_KEYFILE
        and os.path.isfile(RELAY_TLS_CERTFILE)
        and os.path.isfile(RELAY_TLS_KEYFILE)
    )


def build_server_configs() -> List[uvicorn.Config]:
    # The relay is the edge: client addresses come from the socket, never
    # from headers a client could forge. Lifespan is run by serve().
    common = dict(
        log_level=LOG_LEVEL, proxy_headers=False, host=RELAY_HOST, lifespan="off"
    )
    configs = [uvicorn.Config(APP, port=RELAY_PORT, **common)]
    if tls_material_available():
        configs.append(
            uvicorn.Config(
                APP,
                port=RELAY_TLS_PORT,
                ssl_certfile=RELAY_TLS_CERTFILE,
                ssl_keyfile=RELAY_TLS_KEYFILE,
                **common,
            )
        )
    elif RELAY_TLS_CERTFILE or RELAY_TLS_KEYFILE:
        logger.warning(
            "[Relay] TLS files configured but not present yet, serving plain HTTP only"
        )
    return configs


async def serve(configs: List[uvicorn.Config], application: FastAPI) -> None:
    """
    Run every listener inside a single application lifespan.

    The config store and upstream client exist before any listener accepts
    a connection, and the client is closed only after the last listener has
    finished draining its connections.
    """
    servers = [uvicorn.Server(config) for config in configs]
    async with application.router.lifespan_context(application):
        tasks = [asyncio.create_task(server.serve()) for server in servers]
        # Whichever listener catches the shutdown signal takes the others down
        await asyncio.wait(tasks, return_when=asyncio.FIRST_COMPLETED)
        for server in servers:
            server.should_exit = True
        await asyncio.gather(*tasks)


def main() -> None:
    from edge_relay.server import app

    asyncio.run(serve(build_server_configs(), app))


if __name__ == "__main__":
    main()
