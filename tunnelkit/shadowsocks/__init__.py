"""Shadowsocks AEAD ciphers, stream and datagram encryption, and client dialers."""