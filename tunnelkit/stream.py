"""Stream connections (like TCP) that support half-closing."""

from __future__ import annotations

import socket
from abc import ABC, abstractmethod
from dataclasses import dataclass
from typing import Any

from .address import NetAddr, split_host_port


class StreamConn(ABC):
    """A connection whose read and write ends can be closed separately."""

    @abstractmethod
    def read(self, size: int) -> bytes:
        """Read up to `size` bytes; an empty result means end of stream."""

    @abstractmethod
    def write(self, data: bytes) -> int:
        """Write `data` and return the number of bytes written."""

    @abstractmethod
    def close_read(self) -> None:
        """Close the read end; no more reads should happen."""

    @abstractmethod
    def close_write(self) -> None:
        """Close the write end, signalling end of stream to the peer."""

    @abstractmethod
    def close(self) -> None:
        """Close the connection."""

    @abstractmethod
    def remote_addr(self) -> NetAddr:
        """The address of the peer."""

    @abstractmethod
    def local_addr(self) -> NetAddr:
        """The local address."""

    @abstractmethod
    def set_timeout(self, timeout: float | None) -> None:
        """Set the timeout in seconds for blocking operations (None blocks)."""

    def __enter__(self) -> StreamConn:
        return self

    def __exit__(self, *exc_info: Any) -> None:
        self.close()


class TCPStreamConn(StreamConn):
    """A StreamConn over a connected TCP socket."""

    def __init__(self, sock: socket.socket) -> None:
        self._sock = sock

    def read(self, size: int) -> bytes:
        return self._sock.recv(size)

    def write(self, data: bytes) -> int:
        self._sock.sendall(data)
        return len(data)

    def close_read(self) -> None:
        self._sock.shutdown(socket.SHUT_RD)

    def close_write(self) -> None:
        self._sock.shutdown(socket.SHUT_WR)

    def close(self) -> None:
        self._sock.close()

    def remote_addr(self) -> NetAddr:
        host, port = self._sock.getpeername()[:2]
        return NetAddr("tcp", host, port)

    def local_addr(self) -> NetAddr:
        host, port = self._sock.getsockname()[:2]
        return NetAddr("tcp", host, port)

    def set_timeout(self, timeout: float | None) -> None:
        self._sock.settimeout(timeout)


@dataclass(eq=False)
class WrappedConn(StreamConn):
    """A StreamConn that reads and writes through replacement streams.

    Half-closing, closing and addresses still go to the wrapped connection.
    """

    conn: StreamConn
    reader: Any
    writer: Any

    def read(self, size: int) -> bytes:
        return self.reader.read(size)

    def write(self, data: bytes) -> int:
        return self.writer.write(data)

    def close_read(self) -> None:
        self.conn.close_read()

    def close_write(self) -> None:
        self.conn.close_write()

    def close(self) -> None:
        self.conn.close()

    def remote_addr(self) -> NetAddr:
        return self.conn.remote_addr()

    def local_addr(self) -> NetAddr:
        return self.conn.local_addr()

    def set_timeout(self, timeout: float | None) -> None:
        self.conn.set_timeout(timeout)


def wrap_conn(conn: StreamConn, reader: Any, writer: Any) -> WrappedConn:
    """Wrap `conn` with a new reader and writer, keeping its close methods."""
    if isinstance(conn, WrappedConn):
        conn = conn.conn
    return WrappedConn(conn, reader, writer)


def _dial_tcp(address: str, timeout: float | None) -> TCPStreamConn:
    host, port = split_host_port(address)
    if timeout is None:
        sock = socket.create_connection((host, port))
    else:
        sock = socket.create_connection((host, port), timeout=timeout)
    sock.settimeout(None)
    return TCPStreamConn(sock)


class StreamEndpoint(ABC):
    """Something that establishes stream connections to a fixed destination."""

    @abstractmethod
    def connect(self) -> StreamConn:
        """Establish a connection with the endpoint."""


@dataclass
class TCPEndpoint(StreamEndpoint):
    """Connects to `address` ("host:port") over TCP."""

    address: str
    timeout: float | None = None

    def connect(self) -> StreamConn:
        return _dial_tcp(self.address, self.timeout)


class StreamDialer(ABC):
    """Something that dials a "host:port" destination and returns a stream."""

    @abstractmethod
    def dial(self, address: str) -> StreamConn:
        """Connect to `address`."""


@dataclass
class StreamDialerEndpoint(StreamEndpoint):
    """Connects to `address` through `dialer`."""

    dialer: StreamDialer
    address: str

    def connect(self) -> StreamConn:
        return self.dialer.dial(self.address)


@dataclass
class TCPStreamDialer(StreamDialer):
    """Dials destinations directly over TCP."""

    timeout: float | None = None

    def dial(self, address: str) -> StreamConn:
        return _dial_tcp(address, self.timeout)