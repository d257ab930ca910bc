"""Packet connections (like UDP), dialers and listeners."""

from __future__ import annotations

import errno
import ipaddress
import socket
from abc import ABC, abstractmethod
from dataclasses import dataclass
from typing import Any

from .address import NetAddr, make_net_addr, split_host_port


class PacketConn(ABC):
    """An unbound connection that exchanges packets with many destinations."""

    @abstractmethod
    def read_from(self, size: int) -> tuple[bytes, NetAddr]:
        """Read one packet of at most `size` bytes and its source address."""

    @abstractmethod
    def write_to(self, data: bytes, addr: NetAddr) -> int:
        """Send one packet to `addr`, returning the number of bytes sent."""

    @abstractmethod
    def close(self) -> None:
        """Close the connection."""

    @abstractmethod
    def local_addr(self) -> NetAddr:
        """The local address."""

    @abstractmethod
    def set_timeout(self, timeout: float | None) -> None:
        """Set the timeout in seconds for blocking operations (None blocks)."""

    def __enter__(self) -> PacketConn:
        return self

    def __exit__(self, *exc_info: Any) -> None:
        self.close()


class UDPPacketConn(PacketConn):
    """A PacketConn over an unconnected UDP socket."""

    def __init__(self, sock: socket.socket) -> None:
        self._sock = sock

    def read_from(self, size: int) -> tuple[bytes, NetAddr]:
        data, source = self._sock.recvfrom(size)
        return data, NetAddr("udp", source[0], source[1])

    def write_to(self, data: bytes, addr: NetAddr) -> int:
        ip = addr.ip
        if ip is None or not addr.network.startswith("udp"):
            raise OSError(errno.EINVAL, f"invalid argument: {addr} is not a UDP IP address")
        host = str(ip)
        if self._sock.family == socket.AF_INET6 and ip.version == 4:
            host = f"::ffff:{ip}"
        return self._sock.sendto(data, (host, addr.port))

    def close(self) -> None:
        self._sock.close()

    def local_addr(self) -> NetAddr:
        host, port = self._sock.getsockname()[:2]
        return NetAddr("udp", host, port)

    def set_timeout(self, timeout: float | None) -> None:
        self._sock.settimeout(timeout)


class UDPConn:
    """A UDP socket connected to a single destination."""

    def __init__(self, sock: socket.socket) -> None:
        self._sock = sock

    def read(self, size: int) -> bytes:
        return self._sock.recv(size)

    def write(self, data: bytes) -> int:
        return self._sock.send(data)

    def close(self) -> None:
        self._sock.close()

    def remote_addr(self) -> NetAddr:
        host, port = self._sock.getpeername()[:2]
        return NetAddr("udp", host, port)

    def local_addr(self) -> NetAddr:
        host, port = self._sock.getsockname()[:2]
        return NetAddr("udp", host, port)

    def set_timeout(self, timeout: float | None) -> None:
        self._sock.settimeout(timeout)

    def __enter__(self) -> UDPConn:
        return self

    def __exit__(self, *exc_info: Any) -> None:
        self.close()


def _dial_udp(address: str) -> UDPConn:
    host, port = split_host_port(address)
    error: OSError | None = None
    for family, kind, proto, _, sockaddr in socket.getaddrinfo(host, port, type=socket.SOCK_DGRAM):
        sock = socket.socket(family, kind, proto)
        try:
            sock.connect(sockaddr)
        except OSError as exc:
            sock.close()
            error = exc
            continue
        return UDPConn(sock)
    raise error or OSError(f"no addresses found for {address}")


class PacketEndpoint(ABC):
    """Something that establishes packet connections to a fixed destination."""

    @abstractmethod
    def connect(self) -> Any:
        """Create a connection bound to the endpoint."""


@dataclass
class UDPEndpoint(PacketEndpoint):
    """Connects to `address` ("host:port") over UDP."""

    address: str

    def connect(self) -> UDPConn:
        return _dial_udp(self.address)


class PacketDialer(ABC):
    """Something that dials a "host:port" destination for datagrams."""

    @abstractmethod
    def dial(self, address: str) -> Any:
        """Connect to `address`."""


@dataclass
class PacketDialerEndpoint(PacketEndpoint):
    """Connects to `address` through `dialer`."""

    dialer: PacketDialer
    address: str

    def connect(self) -> Any:
        return self.dialer.dial(self.address)


class UDPPacketDialer(PacketDialer):
    """Dials destinations directly over UDP."""

    def dial(self, address: str) -> UDPConn:
        return _dial_udp(address)


class PacketListener(ABC):
    """Something that creates unbound packet connections."""

    @abstractmethod
    def listen_packet(self) -> PacketConn:
        """Create a PacketConn that can send to many destinations."""


class BoundPacketConn(PacketConn):
    """A PacketConn tied to one remote address, usable as a connection.

    Reads drop packets that come from any other source.
    """

    def __init__(self, packet_conn: PacketConn, remote_addr: NetAddr) -> None:
        self._conn = packet_conn
        self._remote = remote_addr

    def read(self, size: int) -> bytes:
        while True:
            data, source = self._conn.read_from(size)
            if str(source) == str(self._remote):
                return data

    def write(self, data: bytes) -> int:
        return self._conn.write_to(data, self._remote)

    def read_from(self, size: int) -> tuple[bytes, NetAddr]:
        return self._conn.read_from(size)

    def write_to(self, data: bytes, addr: NetAddr) -> int:
        return self._conn.write_to(data, addr)

    def remote_addr(self) -> NetAddr:
        return self._remote

    def local_addr(self) -> NetAddr:
        return self._conn.local_addr()

    def close(self) -> None:
        self._conn.close()

    def set_timeout(self, timeout: float | None) -> None:
        self._conn.set_timeout(timeout)


@dataclass
class PacketListenerDialer(PacketDialer):
    """Dials by binding a connection from `listener` to the destination."""

    listener: PacketListener

    def dial(self, address: str) -> BoundPacketConn:
        packet_conn = self.listener.listen_packet()
        try:
            remote = make_net_addr("udp", address)
        except ValueError:
            packet_conn.close()
            raise
        return BoundPacketConn(packet_conn, remote)


def _bind_wildcard(port: str | int) -> socket.socket:
    try:
        sock = socket.socket(socket.AF_INET6, socket.SOCK_DGRAM)
    except OSError:
        sock = None
    if sock is not None:
        try:
            sock.setsockopt(socket.IPPROTO_IPV6, socket.IPV6_V6ONLY, 0)
            sockaddr = socket.getaddrinfo(
                None, port, socket.AF_INET6, socket.SOCK_DGRAM, 0, socket.AI_PASSIVE
            )[0][4]
            sock.bind(sockaddr)
            return sock
        except OSError:
            sock.close()
    sock = socket.socket(socket.AF_INET, socket.SOCK_DGRAM)
    try:
        sockaddr = socket.getaddrinfo(
            None, port, socket.AF_INET, socket.SOCK_DGRAM, 0, socket.AI_PASSIVE
        )[0][4]
        sock.bind(sockaddr)
    except OSError:
        sock.close()
        raise
    return sock


@dataclass
class UDPPacketListener(PacketListener):
    """Listens on a local UDP address; an empty host means all interfaces."""

    address: str = ""

    def listen_packet(self) -> UDPPacketConn:
        host, port = split_host_port(self.address) if self.address else ("", "0")
        port = port or "0"
        if not host:
            return UDPPacketConn(_bind_wildcard(port))
        infos = socket.getaddrinfo(host, port, type=socket.SOCK_DGRAM, flags=socket.AI_PASSIVE)
        family, kind, proto, _, sockaddr = next(
            (info for info in infos if info[0] == socket.AF_INET), infos[0]
        )
        if ipaddress.ip_address(sockaddr[0].split("%")[0]).is_unspecified:
            return UDPPacketConn(_bind_wildcard(sockaddr[1]))
        sock = socket.socket(family, kind, proto)
        try:
            sock.bind(sockaddr)
        except OSError:
            sock.close()
            raise
        return UDPPacketConn(sock)