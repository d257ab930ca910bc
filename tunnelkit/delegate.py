"""A packet proxy whose underlying proxy can be swapped at run time."""

from __future__ import annotations

import threading

from .network import PacketProxy, PacketRequestSender, PacketResponseReceiver

_INVALID_PROXY = "the underlying proxy must not be None"


class DelegatePacketProxy(PacketProxy):
    """Forwards new sessions to a replaceable PacketProxy.

    Replacing the proxy only affects sessions created afterwards. Safe to use
    from several threads at once.
    """

    def __init__(self, proxy: PacketProxy) -> None:
        if proxy is None:
            raise ValueError(_INVALID_PROXY)
        self._lock = threading.Lock()
        self._proxy = proxy

    def new_session(self, receiver: PacketResponseReceiver) -> PacketRequestSender:
        with self._lock:
            proxy = self._proxy
        return proxy.new_session(receiver)

    def set_proxy(self, proxy: PacketProxy) -> None:
        """Route all future sessions to `proxy`, which must not be None."""
        if proxy is None:
            raise ValueError(_INVALID_PROXY)
        with self._lock:
            self._proxy = proxy