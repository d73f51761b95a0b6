"""
netinfo.py — figure out which address to tell other people to connect to.

The server binds to every interface, but "0.0.0.0" is useless to a peer, so we
look for the first non-loopback IPv4 address this machine has and fall back to
"localhost" when there is none (e.g. an offline laptop).
"""

import ipaddress
import logging
import socket
from typing import List

log = logging.getLogger(__name__)

FALLBACK_HOSTNAME = "localhost"
# Any routable address works; connecting a UDP socket sends no packets, it just
# makes the kernel pick the outbound interface.
_PROBE_ADDRESS = ("8.8.8.8", 80)


def _usable(address: str) -> bool:
    try:
        ip = ipaddress.ip_address(address)
    except ValueError:
        return False
    return ip.version == 4 and not ip.is_loopback and not ip.is_unspecified


def local_ipv4_addresses() -> List[str]:
    """Candidate IPv4 addresses for this host, in discovery order, deduplicated."""
    found: List[str] = []

    try:
        infos = socket.getaddrinfo(socket.gethostname(), None, socket.AF_INET)
    except OSError as exc:
        log.debug("getaddrinfo on local hostname failed: %s", exc)
        infos = []
    for *_, sockaddr in infos:
        found.append(sockaddr[0])

    try:
        with socket.socket(socket.AF_INET, socket.SOCK_DGRAM) as probe:
            probe.connect(_PROBE_ADDRESS)
            found.append(probe.getsockname()[0])
    except OSError as exc:
        log.debug("Outbound interface probe failed: %s", exc)

    unique: List[str] = []
    for address in found:
        if address not in unique:
            unique.append(address)
    return unique


def advertised_hostname() -> str:
    """First non-loopback IPv4 address, or "localhost"."""
    for address in local_ipv4_addresses():
        if _usable(address):
            return address
    return FALLBACK_HOSTNAME
