import errno

import pytest

from tunnelkit.address import make_net_addr
from tunnelkit.packet import (
    BoundPacketConn,
    PacketConn,
    PacketDialer,
    PacketDialerEndpoint,
    PacketListener,
    PacketListenerDialer,
    UDPEndpoint,
    UDPPacketDialer,
    UDPPacketListener,
)


@pytest.fixture
def server():
    conn = UDPPacketListener("127.0.0.1:0").listen_packet()
    conn.set_timeout(5)
    yield conn
    conn.close()


def test_udp_endpoint_ipv4():
    with UDPEndpoint("127.0.0.1:8888").connect() as conn:
        assert conn.remote_addr().network == "udp"
        assert str(conn.remote_addr()) == "127.0.0.1:8888"


def test_udp_endpoint_domain():
    with UDPEndpoint("localhost:53").connect() as conn:
        remote = conn.remote_addr()
        assert remote.port == 53
        assert remote.ip.is_loopback


def test_udp_packet_listener_local_ipv4():
    with UDPPacketListener("127.0.0.1:0").listen_packet() as conn:
        local = conn.local_addr()
        assert local.network == "udp"
        assert local.host == "127.0.0.1"
        assert local.port > 0


def test_udp_packet_listener_localhost():
    with UDPPacketListener("localhost:0").listen_packet() as conn:
        assert conn.local_addr().network == "udp"
        assert conn.local_addr().host == "127.0.0.1"


def test_udp_packet_listener_default_address():
    with UDPPacketListener().listen_packet() as conn:
        assert conn.local_addr().network == "udp"
        assert conn.local_addr().host in ("::", "0.0.0.0")


def test_udp_packet_dialer(server):
    with UDPPacketDialer().dial(str(server.local_addr())) as conn:
        conn.set_timeout(5)
        conn.write(b"PING")
        data, client = server.read_from(5)
        assert data == b"PING"
        assert str(client) == str(conn.local_addr())
        assert server.write_to(b"PONG", client) == 4
        assert conn.read(5) == b"PONG"


def test_packet_listener_dialer(server):
    dialer = PacketListenerDialer(UDPPacketListener("127.0.0.1:0"))
    conn = dialer.dial(str(server.local_addr()))
    with conn:
        conn.set_timeout(5)
        assert isinstance(conn, PacketConn)
        assert str(conn.remote_addr()) == str(server.local_addr())
        assert conn.write(b"Request") == 7
        data, client = server.read_from(len(b"Request") + 1)
        assert data == b"Request"
        assert server.write_to(b"Response", client) == 8
        assert conn.read(len(b"Response")) == b"Response"


def test_bound_packet_conn_ignores_other_sources(server):
    conn = PacketListenerDialer(UDPPacketListener("127.0.0.1:0")).dial(str(server.local_addr()))
    with conn, UDPPacketListener("127.0.0.1:0").listen_packet() as stranger:
        conn.set_timeout(5)
        conn.write(b"hello")
        _, client = server.read_from(16)
        stranger.write_to(b"noise", client)
        server.write_to(b"answer", client)
        assert conn.read(16) == b"answer"


def test_packet_listener_dialer_bad_address():
    closed = []

    class TrackingListener(PacketListener):
        def listen_packet(self):
            conn = UDPPacketListener("127.0.0.1:0").listen_packet()
            closed.append(conn)
            return conn

    with pytest.raises(ValueError, match="missing port"):
        PacketListenerDialer(TrackingListener()).dial("noport")
    with pytest.raises(OSError):
        closed[0].local_addr()


def test_packet_conn_invalid_argument(server):
    domain_addr = make_net_addr("udp", "localhost:8888")
    with pytest.raises(OSError) as info:
        server.write_to(b"PING", domain_addr)
    assert info.value.errno == errno.EINVAL


def test_packet_conn_rejects_tcp_address(server):
    tcp_addr = make_net_addr("tcp", "127.0.0.1:8888")
    with pytest.raises(OSError) as info:
        server.write_to(b"PING", tcp_addr)
    assert info.value.errno == errno.EINVAL


def test_packet_dialer_endpoint_uses_dialer(server):
    class RecordingDialer(PacketDialer):
        def __init__(self):
            self.addresses = []

        def dial(self, address):
            self.addresses.append(address)
            return UDPPacketDialer().dial(address)

    dialer = RecordingDialer()
    address = str(server.local_addr())
    with PacketDialerEndpoint(dialer, address).connect() as conn:
        assert dialer.addresses == [address]
        assert str(conn.remote_addr()) == address


def test_bound_packet_conn_delegates_read_from(server):
    inner = UDPPacketListener("127.0.0.1:0").listen_packet()
    conn = BoundPacketConn(inner, server.local_addr())
    with conn:
        conn.set_timeout(5)
        server.write_to(b"direct", inner.local_addr())
        data, source = conn.read_from(16)
        assert data == b"direct"
        assert str(source) == str(server.local_addr())