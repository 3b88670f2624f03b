"""
Public tunnel providers: localtunnel registration, the TCP relay and the
startup-time choice of provider.
"""

import logging
import socket
from unittest.mock import MagicMock, patch

import pytest
import requests

from devserver.config import ServerConfig
from devserver.certs import TLSMaterial
from devserver.tunnel import (
    LocalTunnelProvider,
    NoTunnelProvider,
    TunnelError,
    TunnelRelay,
    build_tunnel_provider,
)


pytestmark = pytest.mark.tunnel


def _response(payload=None, status=200, json_error=False):
    response = MagicMock()
    response.status_code = status
    if status >= 400:
        response.raise_for_status.side_effect = requests.HTTPError(f"{status} error")
    if json_error:
        response.json.side_effect = ValueError("not json")
    else:
        response.json.return_value = payload
    return response


REGISTRATION = {
    "id": "quiet-owl-42",
    "url": "https://quiet-owl-42.loca.lt",
    "port": 40123,
    "max_conn_count": 10,
    "ip": "193.34.76.44",
}


class TestLocalTunnelRegistration:

    def test_register_requests_new_tunnel(self):
        provider = LocalTunnelProvider("https://localtunnel.me/")

        with patch("devserver.tunnel.requests.get", return_value=_response(REGISTRATION)) as get:
            info = provider.register()

        assert info["url"] == "https://quiet-owl-42.loca.lt"
        args, kwargs = get.call_args
        assert args[0] == "https://localtunnel.me/"
        assert kwargs["params"] == {"new": ""}
        assert kwargs["timeout"] == provider.timeout

    def test_open_starts_relay_and_returns_url(self):
        provider = LocalTunnelProvider("https://localtunnel.me")

        with patch("devserver.tunnel.requests.get", return_value=_response(REGISTRATION)), \
                patch.object(TunnelRelay, "start") as start:
            tunnel = provider.open(3000)

        start.assert_called_once()
        assert tunnel.url == "https://quiet-owl-42.loca.lt"
        assert tunnel.relay.remote == ("193.34.76.44", 40123)
        assert tunnel.relay.local == ("localhost", 3000)
        assert tunnel.relay.slots == 10

        tunnel.close()
        assert tunnel.relay.closed

    def test_remote_host_defaults_to_server_hostname(self):
        payload = dict(REGISTRATION)
        del payload["ip"]
        del payload["max_conn_count"]
        provider = LocalTunnelProvider("https://tunnel.example.org")

        with patch("devserver.tunnel.requests.get", return_value=_response(payload)), \
                patch.object(TunnelRelay, "start"):
            tunnel = provider.open(3000)

        assert tunnel.relay.remote == ("tunnel.example.org", 40123)
        assert tunnel.relay.slots == 1

    def test_service_unavailable(self):
        provider = LocalTunnelProvider("https://localtunnel.me")

        with patch("devserver.tunnel.requests.get", side_effect=requests.ConnectionError("refused")):
            with pytest.raises(TunnelError, match="unavailable"):
                provider.open(3000)

    def test_http_error_status(self):
        provider = LocalTunnelProvider("https://localtunnel.me")

        with patch("devserver.tunnel.requests.get", return_value=_response(status=503)):
            with pytest.raises(TunnelError):
                provider.open(3000)

    def test_refusal_message(self):
        provider = LocalTunnelProvider("https://localtunnel.me")
        refusal = {"message": "Invalid subdomain"}

        with patch("devserver.tunnel.requests.get", return_value=_response(refusal)):
            with pytest.raises(TunnelError, match="Invalid subdomain"):
                provider.open(3000)

    def test_invalid_reply(self):
        provider = LocalTunnelProvider("https://localtunnel.me")

        with patch("devserver.tunnel.requests.get", return_value=_response(json_error=True)):
            with pytest.raises(TunnelError, match="invalid reply"):
                provider.open(3000)

    def test_incomplete_reply(self):
        provider = LocalTunnelProvider("https://localtunnel.me")

        with patch("devserver.tunnel.requests.get", return_value=_response({"id": "x"})):
            with pytest.raises(TunnelError, match="incomplete"):
                provider.open(3000)

    @pytest.mark.parametrize("field, value", [
        ("port", None),
        ("port", "not-a-port"),
        ("max_conn_count", "many"),
        ("max_conn_count", [10]),
    ])
    def test_unusable_port_fields(self, field, value):
        provider = LocalTunnelProvider("https://localtunnel.me")
        payload = dict(REGISTRATION, **{field: value})

        with patch("devserver.tunnel.requests.get", return_value=_response(payload)), \
                patch.object(TunnelRelay, "start") as start:
            with pytest.raises(TunnelError, match="invalid port"):
                provider.open(3000)

        start.assert_not_called()

    @pytest.mark.parametrize("body", ["tunnel", 42, None, ["https://x.loca.lt"]])
    def test_non_object_reply(self, body):
        provider = LocalTunnelProvider("https://localtunnel.me")

        with patch("devserver.tunnel.requests.get", return_value=_response(body)):
            with pytest.raises(TunnelError, match="invalid reply"):
                provider.open(3000)


def _listener():
    sock = socket.socket(socket.AF_INET, socket.SOCK_STREAM)
    sock.bind(("127.0.0.1", 0))
    sock.listen(4)
    sock.settimeout(5)
    return sock


def _recv_exactly(sock, size):
    data = b""
    while len(data) < size:
        chunk = sock.recv(size - len(data))
        if not chunk:
            break
        data += chunk
    return data


class TestTunnelRelay:

    def test_relays_bytes_both_ways(self):
        tunnel_server = _listener()
        local_server = _listener()
        relay = TunnelRelay(tunnel_server.getsockname(), local_server.getsockname(), slots=1)
        relay.start()
        public_side = local_side = None

        try:
            public_side, _ = tunnel_server.accept()
            local_side, _ = local_server.accept()
            public_side.settimeout(5)
            local_side.settimeout(5)

            request = b"GET /lavanya.html HTTP/1.1\r\nHost: quiet-owl-42.loca.lt\r\n\r\n"
            public_side.sendall(request)
            assert _recv_exactly(local_side, len(request)) == request

            reply = b"HTTP/1.1 200 OK\r\nContent-Length: 0\r\n\r\n"
            local_side.sendall(reply)
            assert _recv_exactly(public_side, len(reply)) == reply
        finally:
            relay.close()
            for sock in (public_side, local_side, tunnel_server, local_server):
                if sock is not None:
                    sock.close()

    def test_unreachable_tunnel_server_is_logged(self, caplog):
        probe = socket.socket(socket.AF_INET, socket.SOCK_STREAM)
        probe.bind(("127.0.0.1", 0))
        closed_address = probe.getsockname()
        probe.close()

        relay = TunnelRelay(closed_address, ("127.0.0.1", 1), slots=1)
        with caplog.at_level(logging.ERROR, logger="devserver.error"):
            relay._run_slot()

        assert any("unreachable" in message for message in caplog.messages)


class TestBuildTunnelProvider:

    def test_plain_development_gets_localtunnel(self):
        provider = build_tunnel_provider(ServerConfig(tunnel_host="https://localtunnel.me"))

        assert isinstance(provider, LocalTunnelProvider)
        assert provider.available
        assert provider.host == "https://localtunnel.me"

    def test_disabled_tunnel_host(self):
        provider = build_tunnel_provider(ServerConfig(tunnel_host=None))
        assert isinstance(provider, NoTunnelProvider)
        assert not provider.available

    def test_https_gets_no_tunnel(self, cert_files):
        tls = TLSMaterial(
            key_path=cert_files["key"], cert_path=cert_files["cert"], key=b"k", cert=b"c"
        )
        assert isinstance(build_tunnel_provider(ServerConfig(tls=tls)), NoTunnelProvider)

    def test_production_gets_no_tunnel(self):
        assert isinstance(build_tunnel_provider(ServerConfig(is_production=True)), NoTunnelProvider)

    def test_no_tunnel_provider_refuses(self):
        with pytest.raises(TunnelError):
            NoTunnelProvider().open(3000)
