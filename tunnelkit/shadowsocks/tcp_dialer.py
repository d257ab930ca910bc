"""A stream dialer that connects through a Shadowsocks proxy."""

from __future__ import annotations

import threading
from contextlib import suppress

from ..socks5 import encode_socks5_address
from ..stream import StreamConn, StreamDialer, StreamEndpoint, wrap_conn
from .cipher import EncryptionKey
from .salt import SaltGenerator
from .tcp import Reader, Writer

_DEFAULT_CLIENT_DATA_WAIT = 0.01


class ShadowsocksStreamDialer(StreamDialer):
    """Dials destinations through the Shadowsocks proxy at `endpoint`.

    `salt_generator` (None means random salts) produces connection salts.
    `client_data_wait` is how many seconds to wait for initial client data
    before sending the target address alone; when data arrives in time it
    goes out in the same packet as the salt and address.
    """

    def __init__(self, endpoint: StreamEndpoint, key: EncryptionKey) -> None:
        if endpoint is None:
            raise ValueError("argument endpoint must not be None")
        if key is None:
            raise ValueError("argument key must not be None")
        self._endpoint = endpoint
        self._key = key
        self.salt_generator: SaltGenerator | None = None
        self.client_data_wait: float = _DEFAULT_CLIENT_DATA_WAIT

    def dial(self, address: str) -> StreamConn:
        """Connect to `address` through the proxy.

        The connection is returned once the proxy is reached; whether the
        proxy can reach the target is not known at that point.
        """
        try:
            target = encode_socks5_address(address)
        except ValueError as exc:
            raise ValueError("failed to parse target address") from exc
        proxy_conn = self._endpoint.connect()
        writer = Writer(proxy_conn, self._key, self.salt_generator)
        try:
            writer.lazy_write(target)
        except Exception as exc:
            proxy_conn.close()
            raise ConnectionError("failed to write target address") from exc

        def flush() -> None:
            with suppress(Exception):
                writer.flush()

        timer = threading.Timer(self.client_data_wait, flush)
        timer.daemon = True
        timer.start()
        reader = Reader(proxy_conn, self._key)
        return wrap_conn(proxy_conn, reader, writer)