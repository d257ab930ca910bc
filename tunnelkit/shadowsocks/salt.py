"""Salt generators for Shadowsocks connections."""

from __future__ import annotations

import os
from abc import ABC, abstractmethod


class SaltGenerator(ABC):
    """Generates salts for Shadowsocks connections."""

    @abstractmethod
    def get_salt(self, size: int) -> bytes:
        """Return a new salt of `size` bytes."""


class RandomSaltGenerator(SaltGenerator):
    """Generates salts made entirely of random bytes."""

    def get_salt(self, size: int) -> bytes:
        return os.urandom(size)


class PrefixSaltGenerator(SaltGenerator):
    """Generates salts that start with a fixed prefix followed by random bytes.

    A prefix changes how middleboxes classify the traffic, but it takes
    entropy away from the salt and makes salt reuse more likely.
    """

    def __init__(self, prefix: bytes | None) -> None:
        self.prefix = bytes(prefix or b"")

    def get_salt(self, size: int) -> bytes:
        if len(self.prefix) > size:
            raise ValueError("prefix is too long")
        return self.prefix + os.urandom(size - len(self.prefix))


random_salt_generator = RandomSaltGenerator()