import queue
import socket
import threading
import time

import pytest

from tunnelkit.address import NetAddr
from tunnelkit.errors import ClosedError
from tunnelkit.listener_proxy import PacketListenerProxy
from tunnelkit.network import PacketResponseReceiver
from tunnelkit.packet import PacketConn, PacketListener, UDPPacketListener


class FakePacketConn(PacketConn):
    def __init__(self):
        self.incoming = queue.Queue()
        self.sent = []
        self.closed = threading.Event()
        self.timeout = None

    def read_from(self, size):
        if self.closed.is_set():
            raise OSError("closed")
        try:
            data, addr = self.incoming.get(timeout=self.timeout or 0.05)
        except queue.Empty:
            raise TimeoutError("timed out")
        return data[:size], addr

    def write_to(self, data, addr):
        if self.closed.is_set():
            raise OSError("closed")
        self.sent.append((bytes(data), addr))
        return len(data)

    def close(self):
        self.closed.set()

    def local_addr(self):
        return NetAddr("udp", "127.0.0.1", 1)

    def set_timeout(self, timeout):
        self.timeout = timeout


class FakeListener(PacketListener):
    def __init__(self):
        self.conns = []

    def listen_packet(self):
        conn = FakePacketConn()
        self.conns.append(conn)
        return conn


class CollectingReceiver(PacketResponseReceiver):
    def __init__(self):
        self.packets = queue.Queue()
        self.closed = threading.Event()

    def write_from(self, data, source):
        if self.closed.is_set():
            raise ClosedError()
        self.packets.put((bytes(data), source))
        return len(data)

    def close(self):
        self.closed.set()


def test_none_listener_rejected():
    with pytest.raises(ValueError):
        PacketListenerProxy(None)


def test_none_receiver_rejected():
    listener = FakeListener()
    proxy = PacketListenerProxy(listener)
    with pytest.raises(ValueError):
        proxy.new_session(None)
    assert listener.conns == []


def test_write_to_forwards_to_conn_as_udp():
    listener = FakeListener()
    proxy = PacketListenerProxy(listener)
    sender = proxy.new_session(CollectingReceiver())
    dest = NetAddr("tcp", "1.2.3.4", 53)
    assert sender.write_to(b"query", dest) == 5
    conn = listener.conns[0]
    assert conn.sent == [(b"query", NetAddr("udp", "1.2.3.4", 53))]
    sender.close()


def test_responses_are_relayed_and_receiver_closed():
    listener = FakeListener()
    proxy = PacketListenerProxy(listener)
    receiver = CollectingReceiver()
    sender = proxy.new_session(receiver)
    conn = listener.conns[0]
    source = NetAddr("udp", "5.6.7.8", 99)
    conn.incoming.put((b"answer", source))
    assert receiver.packets.get(timeout=2) == (b"answer", source)

    sender.close()
    assert conn.closed.is_set()
    assert receiver.closed.wait(2)


def test_close_twice_raises():
    proxy = PacketListenerProxy(FakeListener())
    sender = proxy.new_session(CollectingReceiver())
    sender.close()
    with pytest.raises(ClosedError):
        sender.close()


def test_write_after_close_raises():
    listener = FakeListener()
    proxy = PacketListenerProxy(listener)
    sender = proxy.new_session(CollectingReceiver())
    sender.close()
    with pytest.raises(ClosedError):
        sender.write_to(b"x", NetAddr("udp", "1.2.3.4", 53))
    assert listener.conns[0].sent == []


def test_idle_session_expires():
    listener = FakeListener()
    proxy = PacketListenerProxy(listener, write_idle_timeout=0.05)
    receiver = CollectingReceiver()
    sender = proxy.new_session(receiver)
    assert listener.conns[0].closed.wait(2)
    assert sender.closed
    assert receiver.closed.wait(2)
    with pytest.raises(ClosedError):
        sender.write_to(b"x", NetAddr("udp", "1.2.3.4", 53))


def test_writes_keep_session_alive():
    listener = FakeListener()
    proxy = PacketListenerProxy(listener, write_idle_timeout=0.3)
    sender = proxy.new_session(CollectingReceiver())
    for _ in range(4):
        time.sleep(0.15)
        sender.write_to(b"x", NetAddr("udp", "1.2.3.4", 53))
    assert not sender.closed
    assert len(listener.conns[0].sent) == 4
    sender.close()


def test_udp_echo_round_trip():
    server = socket.socket(socket.AF_INET, socket.SOCK_DGRAM)
    server.bind(("127.0.0.1", 0))
    server.settimeout(5)
    server_port = server.getsockname()[1]
    try:
        proxy = PacketListenerProxy(UDPPacketListener("127.0.0.1:0"))
        receiver = CollectingReceiver()
        sender = proxy.new_session(receiver)
        assert sender.write_to(b"ping", NetAddr("udp", "127.0.0.1", server_port)) == 4

        data, client = server.recvfrom(16)
        assert data == b"ping"
        server.sendto(b"pong", client)

        assert receiver.packets.get(timeout=5) == (
            b"pong",
            NetAddr("udp", "127.0.0.1", server_port),
        )
        sender.close()
        assert receiver.closed.wait(5)
    finally:
        server.close()