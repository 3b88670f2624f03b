"""
Public tunnel providers.

A provider turns a local port into a public URL. The server picks one at
startup with ``build_tunnel_provider``; the announcer only ever sees the
``PublicTunnelProvider`` interface.
"""

import socket
import threading
from typing import List, Optional, Protocol
from urllib.parse import urlparse

import requests

from devserver.config import ServerConfig
from devserver.log import error_log, server_log

REGISTER_TIMEOUT = 10    # seconds to wait for the tunnel server to hand out a URL
BUFFER_SIZE = 64 * 1024


class TunnelError(Exception):
    """The tunnel service could not be reached or refused the request."""


class Tunnel:
    """A live public endpoint. ``close()`` stops relaying."""

    def __init__(self, url: str, relay: "Optional[TunnelRelay]" = None):
        self.url = url
        self.relay = relay

    def close(self):
        if self.relay is not None:
            self.relay.close()


class PublicTunnelProvider(Protocol):
    available: bool

    def open(self, port: int) -> Tunnel:
        ...


class NoTunnelProvider:
    """Used when tunnelling is switched off; there is nothing to open."""

    available = False

    def open(self, port: int) -> Tunnel:
        raise TunnelError("No public tunnel provider is configured")


class LocalTunnelProvider:
    """
    Client for a localtunnel server (https://localtunnel.me by default).

    Registration is one HTTP call: ``GET {host}/?new`` answers with the
    public URL plus a TCP port on the tunnel server. Public traffic arrives
    on connections we dial to that port; each one gets paired with a fresh
    connection to the local server.
    """

    available = True

    def __init__(self, host: str, local_host: str = "localhost", timeout: float = REGISTER_TIMEOUT):
        self.host = host.rstrip("/")
        self.local_host = local_host
        self.timeout = timeout

    def register(self) -> dict:
        try:
            response = requests.get(f"{self.host}/", params={"new": ""}, timeout=self.timeout)
            response.raise_for_status()
            info = response.json()
        except requests.RequestException as e:
            raise TunnelError(f"localtunnel server {self.host} unavailable: {e}") from e
        except ValueError as e:
            raise TunnelError(f"localtunnel server {self.host} sent an invalid reply") from e

        if not isinstance(info, dict):
            raise TunnelError(f"localtunnel server {self.host} sent an invalid reply")

        # The server reports refusals in a "message" field
        if "message" in info and "url" not in info:
            raise TunnelError(info["message"])
        if "url" not in info or "port" not in info:
            raise TunnelError(f"localtunnel server {self.host} sent an incomplete reply")
        return info

    def open(self, port: int) -> Tunnel:
        info = self.register()

        remote_host = info.get("ip") or urlparse(self.host).hostname
        try:
            remote_port = int(info["port"])
            slots = int(info.get("max_conn_count") or 1)
        except (TypeError, ValueError) as e:
            raise TunnelError(f"localtunnel server {self.host} sent an invalid port: {e}") from e

        relay = TunnelRelay(
            remote=(remote_host, remote_port),
            local=(self.local_host, port),
            slots=slots,
        )
        relay.start()

        server_log.debug("Tunnel %s relaying %s:%s", info["url"], remote_host, info["port"])
        return Tunnel(info["url"], relay)


class TunnelRelay:
    """Keeps ``slots`` connections open to the tunnel server and pipes them to the local port."""

    def __init__(self, remote, local, slots: int = 1):
        self.remote = remote
        self.local = local
        self.slots = slots
        self._closed = threading.Event()
        self._threads: List[threading.Thread] = []

    def start(self):
        for index in range(self.slots):
            thread = threading.Thread(
                target=self._run_slot, name=f"tunnel-slot-{index}", daemon=True
            )
            thread.start()
            self._threads.append(thread)

    def close(self):
        self._closed.set()

    @property
    def closed(self) -> bool:
        return self._closed.is_set()

    def _run_slot(self):
        while not self._closed.is_set():
            try:
                remote = socket.create_connection(self.remote, timeout=REGISTER_TIMEOUT)
            except OSError as e:
                error_log.error("Tunnel server %s:%s unreachable: %s", self.remote[0], self.remote[1], e)
                return
            remote.settimeout(None)

            try:
                local = socket.create_connection(self.local, timeout=REGISTER_TIMEOUT)
            except OSError as e:
                remote.close()
                error_log.error("Local server %s:%s unreachable: %s", self.local[0], self.local[1], e)
                return
            local.settimeout(None)

            # One direction on a helper thread, the other here; the slot is
            # redialled once the relayed connection is finished.
            upstream = threading.Thread(target=_pipe, args=(local, remote), daemon=True)
            upstream.start()
            _pipe(remote, local)
            upstream.join()


def _pipe(source: socket.socket, target: socket.socket):
    try:
        while True:
            chunk = source.recv(BUFFER_SIZE)
            if not chunk:
                break
            target.sendall(chunk)
    except OSError as e:
        # Either side hanging up mid-stream ends this relayed connection
        server_log.debug("Tunnel connection closed: %s", e)
    finally:
        for sock in (source, target):
            try:
                sock.shutdown(socket.SHUT_RDWR)
            except OSError:
                pass
            sock.close()


def build_tunnel_provider(config: ServerConfig) -> PublicTunnelProvider:
    """Only plain-HTTP development servers with a tunnel host get a real provider."""
    if config.is_production or config.tls is not None or not config.tunnel_host:
        return NoTunnelProvider()
    return LocalTunnelProvider(config.tunnel_host)
