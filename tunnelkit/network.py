"""Interfaces for network-layer devices and UDP packet proxies."""

from __future__ import annotations

from abc import ABC, abstractmethod
from typing import Any

from .address import NetAddr


class PacketResponseReceiver(ABC):
    """Receives UDP response packets from a PacketProxy.

    It is usually implemented by an upstream component such as a network stack.
    The proxy calls `close` once no more responses will be delivered.
    """

    @abstractmethod
    def write_from(self, data: bytes, source: NetAddr) -> int:
        """Deliver a response packet from `source`; return the bytes consumed.

        Raises ClosedError once the receiver has been closed.
        """

    @abstractmethod
    def close(self) -> None:
        """Stop accepting responses."""


class PacketRequestSender(ABC):
    """Sends UDP request packets of one session to a PacketProxy."""

    @abstractmethod
    def write_to(self, data: bytes, destination: NetAddr) -> int:
        """Send `data` to `destination`; return the bytes written.

        Raises ClosedError once the sender has been closed.
        """

    @abstractmethod
    def close(self) -> None:
        """Stop accepting requests and release the session's resources."""

    def __enter__(self) -> PacketRequestSender:
        return self

    def __exit__(self, *exc_info: Any) -> None:
        self.close()


class PacketProxy(ABC):
    """Handles UDP traffic coming from an upstream network stack."""

    @abstractmethod
    def new_session(self, receiver: PacketResponseReceiver) -> PacketRequestSender:
        """Start a UDP session whose responses go to `receiver`."""


class IPDevice(ABC):
    """A network device that reads and writes whole IP packets."""

    @abstractmethod
    def read(self, size: int) -> bytes:
        """Read one IP packet, truncated to `size` bytes.

        Blocks until a packet arrives; returns b"" once the device is closed.
        """

    @abstractmethod
    def write(self, data: bytes) -> int:
        """Write one IP packet and return the number of bytes written.

        Raises MessageSizeError if the packet is larger than `mtu`, and
        ClosedError if the device is closed.
        """

    @abstractmethod
    def close(self) -> None:
        """Close the device."""

    @property
    @abstractmethod
    def mtu(self) -> int:
        """The largest IP packet this device can receive or send."""

    def __enter__(self) -> IPDevice:
        return self

    def __exit__(self, *exc_info: Any) -> None:
        self.close()