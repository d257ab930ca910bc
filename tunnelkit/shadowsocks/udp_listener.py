"""A packet listener that relays UDP packets through a Shadowsocks proxy."""

from __future__ import annotations

from typing import Any

from ..address import NetAddr, make_net_addr
from ..packet import PacketConn, PacketEndpoint, PacketListener
from ..socks5 import decode_socks5_address, encode_socks5_address
from .cipher import EncryptionKey
from .udp import pack, unpack

# The largest encrypted UDP packet this client sends or receives.
CLIENT_UDP_BUFFER_SIZE = 16 * 1024


class ShadowsocksPacketConn(PacketConn):
    """A PacketConn whose packets travel encrypted through a Shadowsocks proxy.

    `conn` is a connection to the proxy with read(size) and write(data).
    """

    def __init__(self, conn: Any, key: EncryptionKey) -> None:
        self._conn = conn
        self._key = key

    def write_to(self, data: bytes, addr: NetAddr) -> int:
        """Encrypt `data` for destination `addr` and send it to the proxy."""
        try:
            target = encode_socks5_address(str(addr))
        except ValueError as exc:
            raise ValueError("failed to parse target address") from exc
        plaintext = target + bytes(data)
        limit = CLIENT_UDP_BUFFER_SIZE - self._key.salt_size - self._key.tag_size
        if len(plaintext) > limit:
            raise ValueError(
                f"packet of {len(plaintext)} bytes does not fit in {limit} bytes: short buffer"
            )
        self._conn.write(pack(plaintext, self._key))
        return len(data)

    def read_from(self, size: int) -> tuple[bytes, NetAddr]:
        """Read and decrypt one packet from the proxy.

        Returns at most `size` bytes of payload (the rest is discarded) and
        the address of the server that sent it.
        """
        packet = self._conn.read(CLIENT_UDP_BUFFER_SIZE)
        payload = unpack(packet, self._key)
        try:
            source, consumed = decode_socks5_address(payload)
        except ValueError as exc:
            raise ValueError("failed to read source address") from exc
        try:
            source_addr = make_net_addr("udp", source)
        except ValueError as exc:
            raise ValueError(f"failed to convert incoming address: {exc}") from exc
        return bytes(payload[consumed:consumed + size]), source_addr

    def close(self) -> None:
        self._conn.close()

    def local_addr(self) -> NetAddr:
        return self._conn.local_addr()

    def set_timeout(self, timeout: float | None) -> None:
        self._conn.set_timeout(timeout)


class ShadowsocksPacketListener(PacketListener):
    """Creates packet connections through the Shadowsocks proxy at `endpoint`."""

    def __init__(self, endpoint: PacketEndpoint, key: EncryptionKey) -> None:
        if endpoint is None:
            raise ValueError("argument endpoint must not be None")
        if key is None:
            raise ValueError("argument key must not be None")
        self._endpoint = endpoint
        self._key = key

    def listen_packet(self) -> ShadowsocksPacketConn:
        try:
            conn = self._endpoint.connect()
        except OSError as exc:
            raise ConnectionError(f"could not connect to endpoint: {exc}") from exc
        return ShadowsocksPacketConn(conn, self._key)