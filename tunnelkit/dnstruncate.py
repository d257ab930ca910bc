"""A UDP packet proxy that answers DNS queries with the truncated bit set.

Clients that receive such an answer retry the query over TCP, so no UDP
traffic ever reaches a remote server. Packets that are not DNS requests on
port 53 are rejected.
"""

from __future__ import annotations

import threading

from .address import NetAddr
from .errors import ClosedError, PortUnreachableError
from .network import PacketProxy, PacketRequestSender, PacketResponseReceiver

STANDARD_DNS_PORT = 53
DNS_MIN_MESSAGE_LEN = 12  # The header alone.
DNS_MAX_MESSAGE_LEN = 512

_ANSWER_BYTE = 2  # Holds the QR and TC bits.
_RESPONSE_BIT = 0x80
_TRUNCATED_BIT = 0x02
_RCODE_BYTE = 3
_RCODE_MASK = 0x0F
_QDCOUNT = slice(4, 6)
_ANCOUNT = slice(6, 8)


class DNSTruncateRequestHandler(PacketRequestSender):
    """Answers each DNS request of a session locally with a truncated response."""

    def __init__(self, receiver: PacketResponseReceiver) -> None:
        self._lock = threading.Lock()
        self._closed = False
        self._receiver = receiver

    def write_to(self, data: bytes, destination: NetAddr) -> int:
        """Send a truncated answer for the DNS request `data` to the receiver.

        Raises ClosedError after close, PortUnreachableError for any port but
        53 and ValueError for a message shorter than a DNS header. Requests
        longer than 512 bytes are cut to 512 bytes.
        """
        with self._lock:
            if self._closed:
                raise ClosedError()
        if destination.port != STANDARD_DNS_PORT:
            raise PortUnreachableError(
                f"UDP traffic to non-DNS port {destination.port} is not supported: "
                "port is not reachable"
            )
        if len(data) < DNS_MIN_MESSAGE_LEN:
            raise ValueError(
                f"invalid DNS message of length {len(data)}, "
                f"it must be at least {DNS_MIN_MESSAGE_LEN} bytes"
            )

        response = bytearray(data[:DNS_MAX_MESSAGE_LEN])
        # Response, truncated, no error.
        response[_ANSWER_BYTE] |= _RESPONSE_BIT | _TRUNCATED_BIT
        response[_RCODE_BYTE] &= ~_RCODE_MASK & 0xFF
        # Some clients only retry over TCP when ANCOUNT is non-zero.
        response[_ANCOUNT] = response[_QDCOUNT]

        source = NetAddr("udp", destination.host, destination.port)
        return self._receiver.write_from(bytes(response), source)

    def close(self) -> None:
        """Close the session and its receiver; raises ClosedError if already closed."""
        with self._lock:
            if self._closed:
                raise ClosedError()
            self._closed = True
        self._receiver.close()


class DNSTruncateProxy(PacketProxy):
    """A PacketProxy for servers without UDP support: DNS goes back to TCP."""

    def new_session(self, receiver: PacketResponseReceiver) -> DNSTruncateRequestHandler:
        if receiver is None:
            raise ValueError("receiver is required")
        return DNSTruncateRequestHandler(receiver)