import sys
import threading
from typing import Callable, Optional, TextIO

import qrcode

from devserver.certs import OPENSSL_COMMAND
from devserver.config import ServerConfig
from devserver.log import error_log, server_log
from devserver.network import build_access_url, select_lan_address
from devserver.tunnel import NoTunnelProvider, PublicTunnelProvider, TunnelError


def print_qr_code(data: str, out: TextIO = None):
    """Render ``data`` as a compact QR code made of half-block characters."""
    qr = qrcode.QRCode(
        version=1,
        error_correction=qrcode.constants.ERROR_CORRECT_L,
        border=1,
    )
    qr.add_data(data)
    qr.make(fit=True)
    qr.print_ascii(out=out or sys.stdout, invert=True)


class DevAnnouncer:
    """
    Prints how to reach the server once it is listening.

    Development only: local and network URLs, a QR code for phones on the
    same Wi-Fi, and (plain HTTP) a public tunnel URL fetched in the
    background so it never delays the server.
    """

    def __init__(
        self,
        config: ServerConfig,
        tunnel_provider: PublicTunnelProvider = None,
        address_picker: Callable[[], str] = select_lan_address,
        out: TextIO = None,
    ):
        self.config = config
        self.tunnel_provider = tunnel_provider or NoTunnelProvider()
        self.address_picker = address_picker
        self.out = out or sys.stdout
        self.tunnel = None
        self._tunnel_thread: Optional[threading.Thread] = None

    def _print(self, *lines):
        for line in lines:
            print(line, file=self.out)

    def announce(self):
        config = self.config

        if config.is_production:
            server_log.debug("Server is in PRODUCTION mode.")
            return

        scheme = config.scheme
        network_url = build_access_url(scheme, self.address_picker(), config.port, config.page)

        server_log.debug("Server is in DEVELOPMENT mode.")
        server_log.debug("Serving files from: %s", config.static_root)
        self._print(
            f"Local:     {build_access_url(scheme, 'localhost', config.port, config.page)}",
            f"Network:   {network_url}",
        )

        if config.tls is not None:
            self._print(
                "\nRunning in HTTPS mode. You may need to accept the self-signed certificate in your browser.",
            )
        else:
            self._print(
                "\nRunning in HTTP mode. For HTTPS, generate a self-signed certificate with:",
                "python generate_cert.py",
                f"or: {OPENSSL_COMMAND}",
            )

        self._print("\nScan the QR code to view on your phone (must be on the same Wi-Fi):")
        print_qr_code(network_url, self.out)

        if config.tls is not None:
            self._print(
                "\nNote: Global sharing is disabled in HTTPS mode.",
                "To share over the internet, remove key.pem and cert.pem to switch to HTTP.",
            )
            return

        if not self.tunnel_provider.available:
            self._print_tunnel_instructions()
            return

        self._tunnel_thread = threading.Thread(
            target=self.expose, name="public-tunnel", daemon=True
        )
        self._tunnel_thread.start()

    def expose(self):
        """Ask the provider for a public URL; failures only ever reach the console."""
        try:
            self.tunnel = self.tunnel_provider.open(self.config.port)
        except TunnelError as e:
            error_log.error("Error starting public tunnel: %s", e)
            self._print_tunnel_instructions()
            return

        public_url = f"{self.tunnel.url.rstrip('/')}{self.config.page_path}"
        self._print(
            "\n--- GLOBAL ACCESS (Any Network) ---",
            f"Public URL: {public_url}",
            "Scan this QR code to view from mobile data or remote networks:",
        )
        print_qr_code(public_url, self.out)

    def _print_tunnel_instructions(self):
        self._print(
            "\nTo access from ANY network (Internet), set TUNNEL_HOST to a localtunnel server",
            "(for example https://localtunnel.me) and restart, or run:",
            f"npx localtunnel --port {self.config.port}",
        )

    def close(self):
        if self.tunnel is not None:
            self.tunnel.close()
