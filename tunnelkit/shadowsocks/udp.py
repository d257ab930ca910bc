"""Encryption and decryption of Shadowsocks UDP packets."""

from __future__ import annotations

from cryptography.exceptions import InvalidTag

from .cipher import EncryptionKey
from .salt import SaltGenerator, random_salt_generator


class ShortPacketError(ValueError):
    """The packet is too short to hold a salt."""

    def __init__(self, message: str = "short packet") -> None:
        super().__init__(message)


def _zero_nonce(key: EncryptionKey) -> bytes:
    return bytes(key.nonce_size)


def pack(
    plaintext: bytes,
    key: EncryptionKey,
    salt_generator: SaltGenerator | None = None,
) -> bytes:
    """Encrypt `plaintext` into a packet laid out as [salt][ciphertext][tag].

    The salt comes from `salt_generator`, random by default.
    """
    generator = salt_generator or random_salt_generator
    salt = generator.get_salt(key.salt_size)
    if len(salt) != key.salt_size:
        raise ValueError(f"salt has size {len(salt)}, expected {key.salt_size}")
    aead = key.new_aead(salt)
    return bytes(salt) + aead.encrypt(_zero_nonce(key), bytes(plaintext), None)


def unpack(packet: bytes, key: EncryptionKey) -> bytes:
    """Decrypt a packet laid out as [salt][ciphertext][tag] and return the payload.

    Raises ShortPacketError if the packet cannot hold a salt, EOFError if it
    cannot hold a tag, and ValueError if authentication fails.
    """
    salt_size = key.salt_size
    if len(packet) < salt_size:
        raise ShortPacketError()
    salt = bytes(packet[:salt_size])
    ciphertext_and_tag = bytes(packet[salt_size:])
    if len(ciphertext_and_tag) < key.tag_size:
        raise EOFError("unexpected EOF")
    aead = key.new_aead(salt)
    try:
        return aead.decrypt(_zero_nonce(key), ciphertext_and_tag, None)
    except InvalidTag:
        raise ValueError("failed to decrypt") from None