"""Shadowsocks AEAD cipher specifications and key derivation."""

from __future__ import annotations

import hashlib
from dataclasses import dataclass
from typing import Any, Callable

from cryptography.hazmat.primitives import hashes
from cryptography.hazmat.primitives.ciphers.aead import AESGCM, ChaCha20Poly1305
from cryptography.hazmat.primitives.kdf.hkdf import HKDF

CHACHA20IETFPOLY1305 = "AEAD_CHACHA20_POLY1305"
AES256GCM = "AEAD_AES_256_GCM"
AES192GCM = "AEAD_AES_192_GCM"
AES128GCM = "AEAD_AES_128_GCM"

SUPPORTED_CIPHERS = (CHACHA20IETFPOLY1305, AES256GCM, AES192GCM, AES128GCM)

# Largest tag size among the supported ciphers.
MAX_TAG_SIZE = 16

_SUBKEY_INFO = b"ss-subkey"


class UnsupportedCipherError(ValueError):
    """The named cipher is not supported."""

    def __init__(self, name: str) -> None:
        self.name = name
        super().__init__(f"unsupported cipher {name}")


@dataclass(frozen=True)
class CipherSpec:
    """Sizes of a Shadowsocks AEAD cipher and the factory for its AEAD objects."""

    name: str
    aead_factory: Callable[[bytes], Any]
    key_size: int
    salt_size: int
    tag_size: int
    nonce_size: int = 12


_CHACHA20_POLY1305 = CipherSpec(CHACHA20IETFPOLY1305, ChaCha20Poly1305, 32, 32, 16)
_AES_256_GCM = CipherSpec(AES256GCM, AESGCM, 32, 32, 16)
_AES_192_GCM = CipherSpec(AES192GCM, AESGCM, 24, 24, 16)
_AES_128_GCM = CipherSpec(AES128GCM, AESGCM, 16, 16, 16)

_BY_NAME = {
    "AEAD_CHACHA20_POLY1305": _CHACHA20_POLY1305,
    "CHACHA20-IETF-POLY1305": _CHACHA20_POLY1305,
    "AEAD_AES_256_GCM": _AES_256_GCM,
    "AES-256-GCM": _AES_256_GCM,
    "AEAD_AES_192_GCM": _AES_192_GCM,
    "AES-192-GCM": _AES_192_GCM,
    "AEAD_AES_128_GCM": _AES_128_GCM,
    "AES-128-GCM": _AES_128_GCM,
}


def cipher_by_name(name: str) -> CipherSpec:
    """Look up a cipher by IETF name or Shadowsocks alias, ignoring case."""
    try:
        return _BY_NAME[name.upper()]
    except KeyError:
        raise UnsupportedCipherError(name) from None


def evp_bytes_to_key(data: bytes, key_len: int) -> bytes:
    """Derive `key_len` bytes from `data` as OpenSSL's EVP_BytesToKey with MD5 and no salt."""
    derived = b""
    block = b""
    while len(derived) < key_len:
        block = hashlib.md5(block + data).digest()
        derived += block
    return derived[:key_len]


class EncryptionKey:
    """A Shadowsocks cipher together with the key derived from a secret."""

    def __init__(self, cipher_name: str, secret: str | bytes) -> None:
        self.cipher = cipher_by_name(cipher_name)
        material = secret.encode() if isinstance(secret, str) else bytes(secret)
        self._master_key = evp_bytes_to_key(material, self.cipher.key_size)

    @property
    def salt_size(self) -> int:
        """Size of the salt for this cipher."""
        return self.cipher.salt_size

    @property
    def tag_size(self) -> int:
        """Size of the AEAD tag for this cipher."""
        return self.cipher.tag_size

    @property
    def nonce_size(self) -> int:
        """Size of the AEAD nonce for this cipher."""
        return self.cipher.nonce_size

    def new_aead(self, salt: bytes) -> Any:
        """Create the AEAD for a session with the given salt.

        The result has encrypt(nonce, data, associated_data) and
        decrypt(nonce, data, associated_data) methods.
        """
        session_key = HKDF(
            algorithm=hashes.SHA1(),
            length=self.cipher.key_size,
            salt=bytes(salt),
            info=_SUBKEY_INFO,
        ).derive(self._master_key)
        return self.cipher.aead_factory(session_key)