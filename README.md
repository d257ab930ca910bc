# tunnelkit

Small, composable pieces for sending TCP streams and UDP packets through
proxies. Everything is built around a few simple ideas:

- A **stream dialer** (`tunnelkit.stream.StreamDialer`) opens a connection to
  a `host:port` and returns a `StreamConn` that can be half-closed
  (`close_read`, `close_write`).
- A **packet listener** (`tunnelkit.packet.PacketListener`) creates an unbound
  `PacketConn` that can send datagrams to many destinations with `write_to`
  and receive them with `read_from`.
- **Endpoints** (`StreamEndpoint`, `PacketEndpoint`) connect to one fixed
  address, so a dialer can be layered on top of another dialer.
- A **packet proxy** (`tunnelkit.network.PacketProxy`) hands out sessions for
  UDP traffic coming from a network stack.

## Installation

From a checkout of the project:

```
pip install .
```

Python 3.10 or later is required. The only dependency is `cryptography`.

## Plain TCP and UDP

```python
from tunnelkit.stream import TCPStreamDialer
from tunnelkit.packet import UDPPacketListener

conn = TCPStreamDialer().dial("example.com:80")
conn.write(b"GET / HTTP/1.0\r\n\r\n")
conn.close_write()
print(conn.read(4096))
conn.close()

pc = UDPPacketListener(address="127.0.0.1:0").listen_packet()
print(pc.local_addr())
pc.close()
```

`UDPPacketDialer` and `UDPEndpoint` give a UDP socket connected to one
destination; `PacketListenerDialer` binds a connection from any packet
listener to a single remote address, dropping packets from other sources.

`tunnelkit.address.make_net_addr("udp", "example.com:domain")` builds a
`NetAddr`, resolving service names to port numbers and writing IP hosts in
canonical form. `split_host_port` and `join_host_port` handle bracketed IPv6
hosts.

## Shadowsocks

Connections go through a Shadowsocks server using one of the AEAD ciphers
(`chacha20-ietf-poly1305`, `aes-256-gcm`, `aes-192-gcm`, `aes-128-gcm`, or
their `AEAD_...` names, case-insensitive).

```python
from tunnelkit.stream import TCPEndpoint
from tunnelkit.packet import UDPEndpoint
from tunnelkit.shadowsocks.cipher import EncryptionKey
from tunnelkit.shadowsocks.tcp_dialer import ShadowsocksStreamDialer
from tunnelkit.shadowsocks.udp_listener import ShadowsocksPacketListener

key = EncryptionKey("chacha20-ietf-poly1305", "secret")

dialer = ShadowsocksStreamDialer(TCPEndpoint(address="127.0.0.1:8388"), key)
conn = dialer.dial("example.com:443")

listener = ShadowsocksPacketListener(UDPEndpoint(address="127.0.0.1:8388"), key)
pc = listener.listen_packet()
```

The target address is held back for `client_data_wait` seconds (0.01 by
default) so that the salt, target address and initial data leave in a single
write. Setting `dialer.salt_generator` to a `PrefixSaltGenerator(b"...")`
makes every salt start with fixed bytes. An unknown cipher name raises
`UnsupportedCipherError`.

The lower-level pieces are available too: `pack` and `unpack` in
`tunnelkit.shadowsocks.udp` encrypt and decrypt single datagrams, and
`Writer` / `Reader` in `tunnelkit.shadowsocks.tcp` encrypt and decrypt a
stream (`Writer.lazy_write` and `Writer.flush` queue data to be sent later).

## SOCKS5

```python
from tunnelkit.stream import TCPEndpoint
from tunnelkit.socks5 import SOCKS5StreamDialer, ReplyCodeError

dialer = SOCKS5StreamDialer(TCPEndpoint(address="127.0.0.1:1080"))
try:
    conn = dialer.dial("example.com:443")
except ReplyCodeError as exc:
    print("proxy refused:", exc.code)
```

Only the "no authentication" method is offered. The method and connect
requests are sent together, saving a round trip. `encode_socks5_address` and
`decode_socks5_address` convert between `host:port` and the SOCKS5 wire form.

## Splitting the first bytes

`SplitWriter` makes sure a write ends right after the first `prefix_bytes`
bytes. `SplitStreamDialer` wraps any stream dialer so that each outgoing
stream is split that way, which changes how the opening of a connection looks
on the wire:

```python
from tunnelkit.split import SplitStreamDialer
from tunnelkit.stream import TCPStreamDialer

dialer = SplitStreamDialer(TCPStreamDialer(), 3)
```

## UDP packet proxies

- `tunnelkit.delegate.DelegatePacketProxy` forwards new sessions to a proxy
  that can be swapped at run time with `set_proxy`; existing sessions are not
  affected.
- `tunnelkit.listener_proxy.PacketListenerProxy` turns any packet listener
  into a packet proxy; a session closes itself after `write_idle_timeout`
  seconds (30 by default) without writes, and its receiver is closed when it
  ends.
- `tunnelkit.dnstruncate.DNSTruncateProxy` answers DNS queries on port 53
  locally with the truncated bit set, telling clients to retry over TCP, for
  servers that carry no UDP at all. Other ports raise `PortUnreachableError`;
  messages shorter than a DNS header raise `ValueError`.

Errors are raised as exceptions from `tunnelkit.errors`: `ClosedError`,
`PortUnreachableError` and `MessageSizeError`.

## What is not included

`tunnelkit.network.IPDevice` is only an interface. The package has no
user-space network stack that turns raw IP packets from a virtual network
device into TCP streams and UDP sessions; you need to supply one to feed the
dialers and packet proxies from a TUN device. There is no command-line
program and no proxy server either: everything here is a client-side library.

## Running the tests

```
pip install -e ".[test]"
pytest
```