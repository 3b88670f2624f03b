import socket
from typing import Callable, List, Optional

import uvicorn
from fastapi import FastAPI

from devserver.announce import DevAnnouncer
from devserver.app import create_app
from devserver.config import ServerConfig
from devserver.log import configure_logging, server_log
from devserver.tunnel import build_tunnel_provider


def build_uvicorn_config(config: ServerConfig, app: FastAPI) -> uvicorn.Config:
    """
    Translate a ServerConfig into uvicorn settings.

    TLS files are handed to uvicorn only when the config carries TLS
    material; uvicorn then wraps every connection in TLS (HTTPS), otherwise
    it serves plain HTTP.
    """
    options = dict(
        host=config.host,
        port=config.port,
        # Request logging is done by the app's middleware in development
        access_log=False,
        log_level="debug" if config.debug else "info",
    )
    if config.tls is not None:
        options["ssl_keyfile"] = str(config.tls.key_path)
        options["ssl_certfile"] = str(config.tls.cert_path)

    return uvicorn.Config(app, **options)


class DevServer(uvicorn.Server):
    """uvicorn server that calls ``on_listen`` once its socket is bound."""

    def __init__(self, config: uvicorn.Config, on_listen: Optional[Callable[[], None]] = None):
        super().__init__(config)
        self.on_listen = on_listen

    async def startup(self, sockets: Optional[List[socket.socket]] = None) -> None:
        # A failed bind makes uvicorn log the error and exit the process here
        await super().startup(sockets=sockets)
        if self.started and self.on_listen is not None:
            self.on_listen()


def start_server(config: ServerConfig, announcer: DevAnnouncer = None):
    """
    Run the server until it is stopped.

    Exactly one listener is started, HTTPS if ``config.tls`` is set and
    plain HTTP otherwise. There is no retry or fallback port.
    """
    configure_logging(config.debug)

    app = create_app(config)
    if announcer is None:
        announcer = DevAnnouncer(config, build_tunnel_provider(config))

    def on_listen():
        server_log.debug("%s server is running on port %s", config.scheme.upper(), config.port)
        announcer.announce()

    server = DevServer(build_uvicorn_config(config, app), on_listen=on_listen)
    try:
        server.run()
    finally:
        announcer.close()
    return server
