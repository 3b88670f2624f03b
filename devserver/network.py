import ipaddress
import socket
from typing import Iterable, Mapping, Optional, Sequence

import psutil

FALLBACK_HOST = "localhost"

# Name fragments of virtual adapters (Hyper-V, WSL, Docker bridges) whose
# addresses are not reachable from a phone on the same Wi-Fi.
VIRTUAL_ADAPTER_MARKERS = ("vethernet", "wsl", "docker")


def is_virtual_adapter(name: str, markers: Iterable[str] = VIRTUAL_ADAPTER_MARKERS) -> bool:
    lowered = name.lower()
    return any(marker in lowered for marker in markers)


def select_lan_address(
    interfaces: Mapping[str, Sequence] = None,
    markers: Iterable[str] = VIRTUAL_ADAPTER_MARKERS,
) -> str:
    """
    Pick the address other devices on the local network should use.

    ``interfaces`` has the shape of ``psutil.net_if_addrs()``: interface name
    mapped to a list of entries with ``family`` and ``address``. The first
    IPv4, non-loopback address on a non-virtual interface wins; if there is
    none, "localhost" is returned.

    The virtual-adapter filter is a name heuristic and can be extended via
    ``markers``.
    """
    if interfaces is None:
        interfaces = psutil.net_if_addrs()

    markers = tuple(markers)
    for name, addresses in interfaces.items():
        if is_virtual_adapter(name, markers):
            continue
        for entry in addresses:
            address = _ipv4_address(entry)
            if address is not None:
                return address

    return FALLBACK_HOST


def _ipv4_address(entry) -> Optional[str]:
    if entry.family != socket.AF_INET:
        return None
    try:
        ip = ipaddress.IPv4Address(entry.address)
    except ValueError:
        return None
    if ip.is_loopback:
        return None
    return str(ip)


def build_access_url(scheme: str, host: str, port: int, page: str) -> str:
    return f"{scheme}://{host}:{port}/{page.lstrip('/')}"
