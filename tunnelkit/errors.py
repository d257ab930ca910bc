"""Portable errors raised by devices, proxies and connections."""

import errno


class ClosedError(Exception):
    """An I/O call was made on a device or proxy that is already closed."""

    def __init__(self, message: str = "network device already closed") -> None:
        super().__init__(message)


class PortUnreachableError(Exception):
    """A remote server's port cannot be reached."""

    def __init__(self, message: str = "port is not reachable") -> None:
        super().__init__(message)


class MessageSizeError(OSError):
    """A message is larger than the maximum size a device can process."""

    def __init__(self, message: str = "packet size is too big") -> None:
        super().__init__(errno.EMSGSIZE, message)