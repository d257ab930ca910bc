"""Network addresses in "host:port" form."""

from __future__ import annotations

import ipaddress
import re
import socket
from dataclasses import dataclass

IPAddress = ipaddress.IPv4Address | ipaddress.IPv6Address

_DIGITS = re.compile(r"[0-9]+")

# Used when the system services database does not know a name.
_BUILTIN_SERVICES = {
    "udp": {"domain": 53},
    "tcp": {
        "ftp": 21,
        "ftps": 990,
        "gopher": 70,
        "http": 80,
        "https": 443,
        "imap2": 143,
        "imap3": 220,
        "imaps": 993,
        "pop3": 110,
        "pop3s": 995,
        "smtp": 25,
        "submissions": 465,
        "ssh": 22,
        "telnet": 23,
    },
}


def _parse_ip(host: str) -> IPAddress | None:
    """Parse an IP literal, unwrapping IPv4-mapped IPv6 addresses."""
    try:
        ip = ipaddress.ip_address(host)
    except ValueError:
        return None
    if isinstance(ip, ipaddress.IPv6Address) and ip.ipv4_mapped is not None:
        return ip.ipv4_mapped
    return ip


@dataclass(frozen=True)
class NetAddr:
    """An endpoint address of a given network ("tcp" or "udp").

    IP hosts are stored in canonical form; anything else is a domain name.
    """

    network: str
    host: str
    port: int

    def __post_init__(self) -> None:
        ip = _parse_ip(self.host)
        if ip is not None:
            object.__setattr__(self, "host", str(ip))

    @property
    def ip(self) -> IPAddress | None:
        """The host as an IP address, or None for a domain name."""
        return _parse_ip(self.host)

    def __str__(self) -> str:
        return join_host_port(self.host, self.port)


def split_host_port(address: str) -> tuple[str, str]:
    """Split "host:port", "[host]:port" or "[ipv6%zone]:port" into host and port."""

    def fail(reason: str) -> ValueError:
        return ValueError(f"address {address}: {reason}")

    colon = address.rfind(":")
    if colon < 0:
        raise fail("missing port in address")
    if address.startswith("["):
        end = address.find("]")
        if end < 0:
            raise fail("missing ']' in address")
        if end + 1 == len(address):
            raise fail("missing port in address")
        if end + 1 != colon:
            if address[end + 1] == ":":
                raise fail("too many colons in address")
            raise fail("missing port in address")
        host = address[1:end]
        host_start, port_start = 1, end + 1
    else:
        host = address[:colon]
        if ":" in host:
            raise fail("too many colons in address")
        host_start, port_start = 0, 0
    if "[" in address[host_start:]:
        raise fail("unexpected '[' in address")
    if "]" in address[port_start:]:
        raise fail("unexpected ']' in address")
    return host, address[colon + 1:]


def join_host_port(host: str, port: int | str) -> str:
    """Combine host and port, bracketing hosts that contain a colon."""
    if ":" in host:
        return f"[{host}]:{port}"
    return f"{host}:{port}"


def _lookup_port(network: str, service: str) -> int:
    if service == "":
        return 0
    if _DIGITS.fullmatch(service):
        port = int(service)
        if port > 0xFFFF:
            raise ValueError(f"address {service}: invalid port")
        return port
    proto = network.rstrip("46") if network else "ip"
    if proto not in ("tcp", "udp", "ip") or network in ("ip4", "ip6"):
        raise ValueError(f"unknown network {network}")
    name = service.lower()
    try:
        return socket.getservbyname(name, proto)
    except OSError:
        pass
    port = _BUILTIN_SERVICES.get(proto, {}).get(name)
    if port is None:
        raise ValueError(f"unknown port {network}/{service}")
    return port


def make_net_addr(network: str, address: str) -> NetAddr:
    """Build a NetAddr from a "host:port" address.

    The port may be a number or a service name. A host that is an IP address is
    only accepted for the "tcp" and "udp" networks.
    """
    host, port_text = split_host_port(address)
    port = _lookup_port(network, port_text)
    if "%" not in host and _parse_ip(host) is not None:
        if network not in ("tcp", "udp"):
            raise ValueError(f"unknown network {network}")
    return NetAddr(network, host, port)