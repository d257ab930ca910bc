import io
import queue
import threading
import time

import pytest

from tunnelkit.shadowsocks.cipher import CHACHA20IETFPOLY1305, EncryptionKey
from tunnelkit.shadowsocks.salt import PrefixSaltGenerator
from tunnelkit.shadowsocks.tcp import Reader, Writer

TEST_CIPHER_OVERHEAD = 16


@pytest.fixture
def key():
    return EncryptionKey(CHACHA20IETFPOLY1305, "secret")


def encrypt_blocks(key, salt, blocks):
    aead = key.new_aead(salt)
    out = bytearray(salt)
    nonce = bytearray(12)
    for block in blocks:
        out += aead.encrypt(bytes(nonce), bytes([0, len(block)]), None)
        nonce[0] += 1
        out += aead.encrypt(bytes(nonce), block, None)
        nonce[0] += 1
    return bytes(out)


class _ErrorSource:
    def read(self, size):
        raise OSError("xx!!ERROR!!xx")


class _QueueSource:
    def __init__(self):
        self._queue = queue.Queue()

    def feed(self, data):
        self._queue.put(data)

    def read(self, size):
        return self._queue.get(timeout=5)


def test_reader_authentication_failure(key):
    reader = Reader(io.BytesIO(b"Fails Authentication"), key)
    with pytest.raises(EOFError):
        reader.read(1)


def test_reader_bad_tag(key):
    reader = Reader(io.BytesIO(bytes(key.salt_size + 2 + TEST_CIPHER_OVERHEAD)), key)
    with pytest.raises(ValueError, match="failed to decrypt"):
        reader.read(1)


def test_reader_unexpected_eof(key):
    reader = Reader(io.BytesIO(b"short"), key)
    with pytest.raises(EOFError):
        reader.read(10)


def test_reader_eof(key):
    reader = Reader(io.BytesIO(b""), key)
    assert reader.read(10) == b""
    assert reader.read(0) == b""


def test_reader_good_reads(key):
    salt = b"12345678901234567890123456789012"
    assert len(salt) == key.salt_size
    ciphertext = encrypt_blocks(key, salt, [b"[First Block]", b"", b"[Third Block]"])
    assert len(ciphertext) == key.salt_size + 3 * (2 + TEST_CIPHER_OVERHEAD) + 26 + 3 * TEST_CIPHER_OVERHEAD

    reader = Reader(io.BytesIO(ciphertext), key)
    received = b""
    while len(received) < 26:
        chunk = reader.read(26 - len(received))
        assert chunk
        received += chunk
    assert received == b"[First Block][Third Block]"
    assert reader.read(0) == b""
    assert reader.read(1) == b""


def test_reader_read_chunk(key):
    salt = bytes(range(32))
    ciphertext = encrypt_blocks(key, salt, [b"one", b"", b"three"])
    reader = Reader(io.BytesIO(ciphertext), key)
    assert reader.read_chunk() == b"one"
    assert reader.read_chunk() == b""
    assert reader.read_chunk() == b"three"
    assert reader.read_chunk() is None


def test_reader_truncated_payload(key):
    salt = bytes(range(32))
    ciphertext = encrypt_blocks(key, salt, [b"payload"])
    reader = Reader(io.BytesIO(ciphertext[:-3]), key)
    with pytest.raises(EOFError):
        reader.read(10)


def test_reader_propagates_source_error(key):
    reader = Reader(_ErrorSource(), key)
    with pytest.raises(OSError, match="xx!!ERROR!!xx"):
        reader.read(10)


def test_end_to_end(key):
    connection = io.BytesIO()
    writer = Writer(connection, key)
    assert writer.write(b"Test") == 4
    reader = Reader(io.BytesIO(connection.getvalue()), key)
    output = io.BytesIO()
    assert reader.write_to(output) == 4
    assert output.getvalue() == b"Test"


def test_read_all(key):
    connection = io.BytesIO()
    writer = Writer(connection, key)
    writer.write(b"first ")
    writer.write(b"second")
    reader = Reader(io.BytesIO(connection.getvalue()), key)
    assert reader.read() == b"first second"


def test_lazy_write_flush(key):
    buf = io.BytesIO()
    writer = Writer(buf, key)
    header = bytes([1, 2, 3, 4])
    assert writer.lazy_write(header) == len(header)
    assert len(buf.getvalue()) == 0

    writer.flush()
    len1 = len(buf.getvalue())
    assert len1 > len(header)

    body = bytes([5, 6, 7])
    assert writer.write(body) == len(body)
    assert len(buf.getvalue()) > len1

    reader = Reader(io.BytesIO(buf.getvalue()), key)
    assert reader.read(len(header) + len(body)) == header
    assert reader.read(len(body)) == body


def test_lazy_write_concat(key):
    buf = io.BytesIO()
    writer = Writer(buf, key)
    header = bytes([1, 2, 3, 4])
    assert writer.lazy_write(header) == len(header)
    assert len(buf.getvalue()) == 0

    body = bytes([5, 6, 7])
    assert writer.write(body) == len(body)
    len1 = len(buf.getvalue())
    assert len1 > len(body) + len(header)

    writer.flush()
    assert len(buf.getvalue()) == len1

    reader = Reader(io.BytesIO(buf.getvalue()), key)
    assert reader.read(len(header) + len(body)) == header + body


def test_lazy_write_oversize(key):
    buf = io.BytesIO()
    writer = Writer(buf, key)
    size = 25000
    data = bytes(i % 256 for i in range(size))
    assert writer.lazy_write(data) == size
    assert len(buf.getvalue()) < size
    writer.flush()
    assert len(buf.getvalue()) > size

    reader = Reader(io.BytesIO(buf.getvalue()), key)
    assert reader.read() == data


def test_empty_write_sends_lazy_data(key):
    buf = io.BytesIO()
    writer = Writer(buf, key)
    writer.lazy_write(b"header")
    assert writer.write(b"") == 0
    reader = Reader(io.BytesIO(buf.getvalue()), key)
    assert reader.read() == b"header"


def test_lazy_write_concurrent_flush(key):
    buf = io.BytesIO()
    writer = Writer(buf, key)
    header = bytes([1, 2, 3, 4])
    assert writer.lazy_write(header) == len(header)
    assert len(buf.getvalue()) == 0

    body = bytes([5, 6, 7])
    source = _QueueSource()
    results = []
    worker = threading.Thread(target=lambda: results.append(writer.read_from(source)))
    worker.start()

    time.sleep(0.05)
    writer.flush()
    len1 = len(buf.getvalue())
    assert len1 > 0

    source.feed(body)
    source.feed(b"")
    worker.join(timeout=5)
    assert results == [len(body)]
    assert len(buf.getvalue()) > len1

    reader = Reader(io.BytesIO(buf.getvalue()), key)
    assert reader.read(len(header) + len(body)) == header
    assert reader.read(len(body)) == body


def test_prefix_salt(key):
    prefix = b"test prefix"
    buf = io.BytesIO()
    writer = Writer(buf, key, PrefixSaltGenerator(prefix))
    writer.write(b"data")
    assert buf.getvalue().startswith(prefix)
    assert Reader(io.BytesIO(buf.getvalue()), key).read() == b"data"


def test_salt_sent_only_once(key):
    buf = io.BytesIO()
    writer = Writer(buf, key)
    writer.write(b"a")
    first = len(buf.getvalue())
    writer.write(b"a")
    assert len(buf.getvalue()) - first == first - key.salt_size


def test_wrong_key_fails(key):
    buf = io.BytesIO()
    Writer(buf, key).write(b"payload")
    other = EncryptionKey(CHACHA20IETFPOLY1305, "password")
    with pytest.raises(ValueError):
        Reader(io.BytesIO(buf.getvalue()), other).read(10)