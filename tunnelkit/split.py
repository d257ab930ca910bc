"""Writers and dialers that split the outgoing stream at a fixed offset."""

from __future__ import annotations

from typing import Any

from .stream import StreamConn, StreamDialer, wrap_conn

_COPY_CHUNK = 32 * 1024


def _write(writer: Any, data: bytes) -> int:
    n = writer.write(data)
    return len(data) if n is None else n


class SplitWriter:
    """Ensures a write ends right after byte `prefix_bytes - 1`.

    For example, writing b"0123456789" with prefix_bytes=3 produces the
    writes b"012" and b"3456789" on the inner writer.
    """

    def __init__(self, writer: Any, prefix_bytes: int) -> None:
        self._writer = writer
        self._prefix_bytes = prefix_bytes

    def write(self, data: bytes) -> int:
        written = 0
        if 0 < self._prefix_bytes < len(data):
            written = _write(self._writer, data[: self._prefix_bytes])
            self._prefix_bytes -= written
            data = data[written:]
        n = _write(self._writer, data)
        self._prefix_bytes -= n
        return written + n

    def read_from(self, source: Any) -> int:
        """Copy everything from `source` (anything with read(size)) until EOF."""
        written = 0
        if self._prefix_bytes > 0:
            while self._prefix_bytes > 0:
                chunk = source.read(min(self._prefix_bytes, _COPY_CHUNK))
                if not chunk:
                    return written
                n = _write(self._writer, chunk)
                written += n
                self._prefix_bytes -= n
                if n < len(chunk):
                    raise OSError("short write")
        while True:
            chunk = source.read(_COPY_CHUNK)
            if not chunk:
                return written
            n = _write(self._writer, chunk)
            written += n
            if n < len(chunk):
                raise OSError("short write")


class SplitStreamDialer(StreamDialer):
    """Dials with `dialer` and splits each outgoing stream after `prefix_bytes`."""

    def __init__(self, dialer: StreamDialer, prefix_bytes: int) -> None:
        if dialer is None:
            raise ValueError("argument dialer must not be None")
        self._dialer = dialer
        self._prefix_bytes = prefix_bytes

    def dial(self, address: str) -> StreamConn:
        inner = self._dialer.dial(address)
        return wrap_conn(inner, inner, SplitWriter(inner, self._prefix_bytes))