"""SOCKS5 address encoding and a stream dialer that connects through a SOCKS5 proxy."""

from __future__ import annotations

import enum
import ipaddress
import re

from .address import join_host_port, split_host_port
from .stream import StreamConn, StreamDialer, StreamEndpoint

_ADDR_TYPE_IPV4 = 0x01
_ADDR_TYPE_DOMAIN_NAME = 0x03
_ADDR_TYPE_IPV6 = 0x04

_PORT = re.compile(r"[+-]?[0-9]+")


class ReplyCode(enum.IntEnum):
    """SOCKS reply codes from the REP field of a server response (RFC 1928, section 6)."""

    GENERAL_SERVER_FAILURE = 0x01
    CONNECTION_NOT_ALLOWED_BY_RULESET = 0x02
    NETWORK_UNREACHABLE = 0x03
    HOST_UNREACHABLE = 0x04
    CONNECTION_REFUSED = 0x05
    TTL_EXPIRED = 0x06
    COMMAND_NOT_SUPPORTED = 0x07
    ADDRESS_TYPE_NOT_SUPPORTED = 0x08

    @property
    def description(self) -> str:
        """A human-readable description, worded as in the RFC."""
        return _DESCRIPTIONS[self]


_DESCRIPTIONS = {
    ReplyCode.GENERAL_SERVER_FAILURE: "general SOCKS server failure",
    ReplyCode.CONNECTION_NOT_ALLOWED_BY_RULESET: "connection not allowed by ruleset",
    ReplyCode.NETWORK_UNREACHABLE: "network unreachable",
    ReplyCode.HOST_UNREACHABLE: "host unreachable",
    ReplyCode.CONNECTION_REFUSED: "connection refused",
    ReplyCode.TTL_EXPIRED: "TTL expired",
    ReplyCode.COMMAND_NOT_SUPPORTED: "command not supported",
    ReplyCode.ADDRESS_TYPE_NOT_SUPPORTED: "address type not supported",
}


class ReplyCodeError(ConnectionError):
    """The SOCKS server replied with a non-zero reply code.

    `code` is a ReplyCode when the value is known, otherwise the plain integer.
    """

    def __init__(self, code: int) -> None:
        try:
            known = ReplyCode(code)
        except ValueError:
            self.code: int = int(code)
            message = f"reply code {int(code)}"
        else:
            self.code = known
            message = known.description
        super().__init__(message)


def _parse_ip(host: str) -> ipaddress.IPv4Address | ipaddress.IPv6Address | None:
    if "%" in host:
        return None
    try:
        ip = ipaddress.ip_address(host)
    except ValueError:
        return None
    if isinstance(ip, ipaddress.IPv6Address) and ip.ipv4_mapped is not None:
        return ip.ipv4_mapped
    return ip


def encode_socks5_address(address: str) -> bytes:
    """Encode "host:port" as a SOCKS5 address (ATYP, DST.ADDR, DST.PORT)."""
    host, port_text = split_host_port(address)
    if not _PORT.fullmatch(port_text):
        raise ValueError(f"invalid port {port_text!r}")
    port = int(port_text)
    ip = _parse_ip(host)
    if ip is not None:
        kind = _ADDR_TYPE_IPV4 if ip.version == 4 else _ADDR_TYPE_IPV6
        encoded = bytes([kind]) + ip.packed
    else:
        name = host.encode()
        if len(name) > 255:
            raise ValueError(f"domain name length = {len(name)} is over 255")
        encoded = bytes([_ADDR_TYPE_DOMAIN_NAME, len(name)]) + name
    return encoded + bytes([(port >> 8) & 0xFF, port & 0xFF])


def decode_socks5_address(data: bytes) -> tuple[str, int]:
    """Decode a SOCKS5 address at the start of `data`.

    Returns the address as "host:port" and the number of bytes it occupies.
    Raises ValueError if `data` does not start with a complete address.
    """
    if not data:
        raise ValueError("short SOCKS5 address")
    kind = data[0]
    if kind == _ADDR_TYPE_IPV4:
        end = 1 + 4
        if len(data) < end + 2:
            raise ValueError("short SOCKS5 address")
        host = str(ipaddress.IPv4Address(bytes(data[1:end])))
    elif kind == _ADDR_TYPE_IPV6:
        end = 1 + 16
        if len(data) < end + 2:
            raise ValueError("short SOCKS5 address")
        ip6 = ipaddress.IPv6Address(bytes(data[1:end]))
        host = str(ip6.ipv4_mapped if ip6.ipv4_mapped is not None else ip6)
    elif kind == _ADDR_TYPE_DOMAIN_NAME:
        if len(data) < 2:
            raise ValueError("short SOCKS5 address")
        end = 2 + data[1]
        if len(data) < end + 2:
            raise ValueError("short SOCKS5 address")
        host = bytes(data[2:end]).decode("utf-8", errors="replace")
    else:
        raise ValueError(f"unknown SOCKS5 address type {kind}")
    port = (data[end] << 8) | data[end + 1]
    return join_host_port(host, port), end + 2


def _read_exact(conn: StreamConn, size: int, what: str) -> bytes:
    data = b""
    while len(data) < size:
        chunk = conn.read(size - len(data))
        if not chunk:
            raise ConnectionError(f"failed to read {what}: unexpected end of stream")
        data += chunk
    return data


class SOCKS5StreamDialer(StreamDialer):
    """Dials destinations through a SOCKS5 proxy at `endpoint`, without authentication.

    The method and connect requests are sent together to save a round trip.
    """

    def __init__(self, endpoint: StreamEndpoint) -> None:
        if endpoint is None:
            raise ValueError("argument endpoint must not be None")
        self._endpoint = endpoint

    def dial(self, address: str) -> StreamConn:
        """Connect to `address` through the proxy.

        Raises ReplyCodeError when the server reports a SOCKS error.
        """
        try:
            conn = self._endpoint.connect()
        except OSError as exc:
            raise ConnectionError(f"could not connect to SOCKS5 proxy: {exc}") from exc
        try:
            self._handshake(conn, address)
        except BaseException:
            conn.close()
            raise
        return conn

    @staticmethod
    def _handshake(conn: StreamConn, address: str) -> None:
        try:
            destination = encode_socks5_address(address)
        except ValueError as exc:
            raise ValueError(f"failed to create SOCKS5 address: {exc}") from exc

        # Method request (no auth) followed by the connect request.
        conn.write(bytes([5, 1, 0, 5, 1, 0]) + destination)

        version, method = _read_exact(conn, 2, "method server response")
        if version != 5:
            raise ConnectionError(f"invalid protocol version {version}. Expected 5")
        if method != 0:
            raise ConnectionError(
                f"unsupported SOCKS authentication method {method}. Expected 0 (no auth)"
            )

        version, reply, _, kind = _read_exact(conn, 4, "connect server response")
        if version != 5:
            raise ConnectionError(f"invalid protocol version {version}. Expected 5")
        if reply != 0:
            raise ReplyCodeError(reply)

        if kind == _ADDR_TYPE_IPV4:
            to_read = 4
        elif kind == _ADDR_TYPE_IPV6:
            to_read = 16
        elif kind == _ADDR_TYPE_DOMAIN_NAME:
            to_read = _read_exact(conn, 1, "address length in connect response")[0]
        else:
            to_read = 0
        # The bound address and port are read and ignored.
        _read_exact(conn, to_read, "address in connect response")
        _read_exact(conn, 2, "port number in connect response")