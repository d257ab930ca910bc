"""Encrypting writer and decrypting reader for Shadowsocks TCP streams."""

from __future__ import annotations

import io
import threading
from typing import Any

from cryptography.exceptions import InvalidTag

from .cipher import EncryptionKey
from .salt import SaltGenerator, random_salt_generator

# Maximum payload size of one chunk.
PAYLOAD_SIZE_MASK = 0x3FFF


def _next_counter(counter: int, nonce_size: int) -> int:
    return (counter + 1) % (1 << (8 * nonce_size))


class Writer:
    """Encrypts everything written to it onto `writer` as a Shadowsocks stream.

    `lazy_write` queues data until `flush`, a normal write, or a full buffer,
    so a header can be sent together with the first payload. All methods
    except `flush` must be called from a single thread.
    """

    def __init__(
        self,
        writer: Any,
        key: EncryptionKey,
        salt_generator: SaltGenerator | None = None,
    ) -> None:
        self._writer = writer
        self._key = key
        self._salt_generator = salt_generator or random_salt_generator
        self._lock = threading.Lock()
        self._need_flush = False
        self._pending = bytearray()
        self._aead: Any = None
        self._salt = b""
        self._salt_sent = False
        self._counter = 0

    def _init(self) -> None:
        if self._aead is not None:
            return
        try:
            salt = bytes(self._salt_generator.get_salt(self._key.salt_size))
        except ValueError as exc:
            raise ValueError(f"failed to generate salt: {exc}") from exc
        if len(salt) != self._key.salt_size:
            raise ValueError(
                f"failed to generate salt: got {len(salt)} bytes, expected {self._key.salt_size}"
            )
        self._aead = self._key.new_aead(salt)
        self._salt = salt
        self._salt_generator = None

    def _encrypt(self, block: bytes) -> bytes:
        nonce_size = self._key.nonce_size
        nonce = self._counter.to_bytes(nonce_size, "little")
        self._counter = _next_counter(self._counter, nonce_size)
        return self._aead.encrypt(nonce, block, None)

    def _enqueue(self, data: Any) -> int:
        room = PAYLOAD_SIZE_MASK - len(self._pending)
        taken = bytes(data[:room])
        self._pending += taken
        return len(taken)

    def _flush_locked(self) -> None:
        if not self._pending:
            return
        payload = bytes(self._pending)
        self._pending.clear()
        message = self._encrypt(len(payload).to_bytes(2, "big")) + self._encrypt(payload)
        if not self._salt_sent:
            # The salt goes out with the first message to avoid a separate packet.
            message = self._salt + message
            self._salt_sent = True
        self._writer.write(message)

    def write(self, data: bytes) -> int:
        """Encrypt and send `data`, along with any lazily queued data."""
        return self.read_from(io.BytesIO(bytes(data)))

    def lazy_write(self, data: bytes) -> int:
        """Queue `data` without sending it until a flush, a write or a full buffer."""
        self._init()
        with self._lock:
            view = memoryview(bytes(data))
            queued = 0
            while True:
                n = self._enqueue(view)
                queued += n
                view = view[n:]
                if not view:
                    self._need_flush = True
                    return queued
                self._flush_locked()

    def flush(self) -> None:
        """Send lazily queued data, if any. Safe to call from another thread."""
        with self._lock:
            if not self._need_flush:
                return
            self._flush_locked()

    def read_from(self, source: Any) -> int:
        """Encrypt and send everything read from `source` until it returns b"".

        Returns the number of plaintext bytes read.
        """
        self._init()
        written = 0
        with self._lock:
            need_flush = self._need_flush
            if need_flush and len(self._pending) == PAYLOAD_SIZE_MASK:
                self._flush_locked()
            room = PAYLOAD_SIZE_MASK - len(self._pending)
        if need_flush:
            # Read without the lock so a concurrent flush can send queued data.
            chunk = bytes(source.read(room))
            written += len(chunk)
            with self._lock:
                view = memoryview(chunk)
                while view:
                    n = self._enqueue(view)
                    view = view[n:]
                    if view:
                        self._flush_locked()
                self._flush_locked()
                self._need_flush = False
            if not chunk:
                return written

        while True:
            chunk = bytes(source.read(PAYLOAD_SIZE_MASK))
            if not chunk:
                return written
            written += len(chunk)
            with self._lock:
                view = memoryview(chunk)
                while view:
                    n = self._enqueue(view)
                    view = view[n:]
                    self._flush_locked()


class Reader:
    """Decrypts a Shadowsocks stream read from `reader`.

    `reader` needs a read(size) method that returns b"" at end of stream.
    A stream that ends in the middle of a salt or chunk raises EOFError; a
    chunk that fails authentication raises ValueError.
    """

    def __init__(self, reader: Any, key: EncryptionKey) -> None:
        self._reader = reader
        self._key = key
        self._aead: Any = None
        self._counter = 0
        self._leftover = b""

    def _read_exact(self, size: int) -> bytes | None:
        """Read exactly `size` bytes, or None if the stream ended cleanly first."""
        buf = bytearray()
        while len(buf) < size:
            chunk = self._reader.read(size - len(buf))
            if not chunk:
                if not buf:
                    return None
                raise EOFError("unexpected EOF")
            buf += chunk
        return bytes(buf)

    def _init(self) -> bool:
        if self._aead is None:
            salt = self._read_exact(self._key.salt_size)
            if salt is None:
                return False
            self._aead = self._key.new_aead(salt)
        return True

    def _open(self, message: bytes) -> bytes:
        nonce_size = self._key.nonce_size
        nonce = self._counter.to_bytes(nonce_size, "little")
        self._counter = _next_counter(self._counter, nonce_size)
        try:
            return self._aead.decrypt(nonce, message, None)
        except InvalidTag:
            raise ValueError("failed to decrypt") from None

    def read_chunk(self) -> bytes | None:
        """Return the payload of the next chunk, or None at end of stream."""
        if not self._init():
            return None
        overhead = self._key.tag_size
        size_message = self._read_exact(2 + overhead)
        if size_message is None:
            return None
        size = int.from_bytes(self._open(size_message), "big") & PAYLOAD_SIZE_MASK
        payload_message = self._read_exact(size + overhead)
        if payload_message is None:
            raise EOFError("unexpected EOF")
        return self._open(payload_message)

    def _fill(self) -> bool:
        while not self._leftover:
            chunk = self.read_chunk()
            if chunk is None:
                return False
            self._leftover = chunk
        return True

    def read(self, size: int = -1) -> bytes:
        """Read up to `size` bytes (all remaining if negative); b"" at end of stream."""
        if size is None or size < 0:
            parts = []
            while self._fill():
                parts.append(self._leftover)
                self._leftover = b""
            return b"".join(parts)
        if not self._fill():
            return b""
        data, self._leftover = self._leftover[:size], self._leftover[size:]
        return data

    def write_to(self, writer: Any) -> int:
        """Copy all decrypted data to `writer`; return the number of bytes written."""
        written = 0
        while self._fill():
            n = writer.write(self._leftover)
            n = len(self._leftover) if n is None else n
            written += n
            self._leftover = self._leftover[n:]
        return written