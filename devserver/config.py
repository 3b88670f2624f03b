import os
from pathlib import Path
from typing import Mapping, Optional

from pydantic import BaseModel, ConfigDict, model_validator

from devserver.certs import CERT_FILENAME, KEY_FILENAME, TLSMaterial, probe_certificates

# ── Defaults ───────────────────────────────────────────────────────────────────
BASE_DIR = Path(__file__).resolve().parent.parent   # → repository root (served directory)
DEFAULT_PORT = 3000
DEFAULT_HOST = "0.0.0.0"
DEFAULT_PAGE = "lavanya.html"
DEFAULT_TUNNEL_HOST = "https://localtunnel.me"
PRODUCTION = "production"


class ServerConfig(BaseModel):
    """
    Everything the server needs, resolved once at process start.

    ``tls`` is only ever set in development mode, and its presence is what
    makes the listener use HTTPS.
    """
    model_config = ConfigDict(frozen=True)

    port: int = DEFAULT_PORT
    host: str = DEFAULT_HOST
    is_production: bool = False
    tls: Optional[TLSMaterial] = None
    static_root: Path = BASE_DIR
    page: str = DEFAULT_PAGE
    debug: bool = False
    tunnel_host: Optional[str] = DEFAULT_TUNNEL_HOST

    @model_validator(mode="after")
    def _no_tls_in_production(self):
        if self.is_production and self.tls is not None:
            raise ValueError("production servers never use the development certificates")
        return self

    @property
    def scheme(self) -> str:
        return "https" if self.tls is not None else "http"

    @property
    def page_path(self) -> str:
        return "/" + self.page


def is_production(value: Optional[str]) -> bool:
    """Exact, case-sensitive match: only ``production`` means production."""
    return value == PRODUCTION


def parse_port(value: Optional[str]) -> int:
    if value is None or value == "":
        return DEFAULT_PORT
    try:
        port = int(value)
    except ValueError:
        raise ValueError(f"PORT must be an integer, got {value!r}")
    if not 0 <= port <= 65535:
        raise ValueError(f"PORT out of range: {port}")
    return port


def load_config(environ: Mapping[str, str] = None, base_dir: Path = None) -> ServerConfig:
    """
    Build the ServerConfig from environment variables and the certificate
    files next to the server.

    Environment variables:
      PORT         listen port (default 3000)
      HOST         bind address (default 0.0.0.0)
      NODE_ENV     "production" selects production mode
      STATIC_ROOT  directory to serve (default: the server directory)
      DEBUG        any non-empty value enables debug logging
      TUNNEL_HOST  localtunnel server; set it empty to disable the tunnel

    In production the certificate files are not even looked at.
    """
    if environ is None:
        environ = os.environ
    base_dir = Path(base_dir) if base_dir is not None else BASE_DIR

    production = is_production(environ.get("NODE_ENV"))

    tls = None
    if not production:
        tls = probe_certificates(base_dir / KEY_FILENAME, base_dir / CERT_FILENAME)

    static_root = environ.get("STATIC_ROOT")

    return ServerConfig(
        port=parse_port(environ.get("PORT")),
        host=environ.get("HOST") or DEFAULT_HOST,
        is_production=production,
        tls=tls,
        static_root=Path(static_root) if static_root else base_dir,
        debug=bool(environ.get("DEBUG")),
        tunnel_host=environ.get("TUNNEL_HOST", DEFAULT_TUNNEL_HOST) or None,
    )
