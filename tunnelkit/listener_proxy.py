"""A PacketProxy that relays UDP sessions through a PacketListener."""

from __future__ import annotations

import threading
from contextlib import suppress

from .address import NetAddr
from .errors import ClosedError
from .network import PacketProxy, PacketRequestSender, PacketResponseReceiver
from .packet import PacketConn, PacketListener

_PACKET_MAX_SIZE = 2048
_DEFAULT_WRITE_IDLE_TIMEOUT = 30.0
# How often the relay thread wakes up to notice that its session was closed.
_READ_POLL_INTERVAL = 0.2


class PacketListenerRequestSender(PacketRequestSender):
    """Sends one session's requests through a PacketConn.

    The session closes itself when no request has been written for
    `write_idle_timeout` seconds.
    """

    def __init__(self, conn: PacketConn, write_idle_timeout: float) -> None:
        self._lock = threading.Lock()
        self._closed = False
        self._conn = conn
        self._write_idle_timeout = write_idle_timeout
        self._timer = self._start_timer()

    def _start_timer(self) -> threading.Timer:
        timer = threading.Timer(self._write_idle_timeout, self._expire)
        timer.daemon = True
        timer.start()
        return timer

    def _expire(self) -> None:
        with suppress(ClosedError, OSError):
            self.close()

    @property
    def closed(self) -> bool:
        """Whether the session has been closed."""
        with self._lock:
            return self._closed

    def _reset_write_idle_timer(self) -> None:
        with self._lock:
            if self._closed:
                raise ClosedError()
            self._timer.cancel()
            self._timer = self._start_timer()

    def write_to(self, data: bytes, destination: NetAddr) -> int:
        self._reset_write_idle_timer()
        target = NetAddr("udp", destination.host, destination.port)
        return self._conn.write_to(data, target)

    def close(self) -> None:
        with self._lock:
            if self._closed:
                raise ClosedError()
            self._closed = True
            self._timer.cancel()
            self._conn.close()


def _relay_responses(
    conn: PacketConn,
    receiver: PacketResponseReceiver,
    sender: PacketListenerRequestSender,
) -> None:
    try:
        while True:
            try:
                data, source = conn.read_from(_PACKET_MAX_SIZE)
            except TimeoutError:
                if sender.closed:
                    return
                continue
            except Exception:
                return
            try:
                receiver.write_from(data, source)
            except Exception:
                return
    finally:
        with suppress(Exception):
            receiver.close()


class PacketListenerProxy(PacketProxy):
    """Creates a UDP session per `new_session` call using `listener`."""

    def __init__(
        self,
        listener: PacketListener,
        write_idle_timeout: float = _DEFAULT_WRITE_IDLE_TIMEOUT,
    ) -> None:
        if listener is None:
            raise ValueError("listener must not be None")
        self._listener = listener
        self._write_idle_timeout = write_idle_timeout

    def new_session(self, receiver: PacketResponseReceiver) -> PacketListenerRequestSender:
        """Open a PacketConn and relay its incoming packets to `receiver`.

        The receiver is closed when the session ends.
        """
        if receiver is None:
            raise ValueError("receiver must not be None")
        conn = self._listener.listen_packet()
        conn.set_timeout(_READ_POLL_INTERVAL)
        sender = PacketListenerRequestSender(conn, self._write_idle_timeout)
        relay = threading.Thread(
            target=_relay_responses, args=(conn, receiver, sender), daemon=True
        )
        relay.start()
        return sender