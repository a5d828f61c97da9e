"""Low-level socket creation helpers."""

from __future__ import annotations

import ipaddress
import os
import socket
from typing import Any, Union


def new_for_addr(address: tuple, nonblock: bool) -> tuple[int, socket.socket]:
    """Create a stream socket whose family matches ``address``; returns (family, socket)."""
    host = address[0]
    ip = ipaddress.ip_address(host.split("%", 1)[0] if isinstance(host, str) else host)
    family = socket.AF_INET if ip.version == 4 else socket.AF_INET6
    return family, new_socket(family, socket.SOCK_STREAM, nonblock)


def new_socket(family: int, socket_type: int, nonblock: bool) -> socket.socket:
    """Create a close-on-exec socket, optionally non-blocking."""
    sock = socket.socket(family, socket_type)
    try:
        nosigpipe = getattr(socket, "SO_NOSIGPIPE", None)
        if nosigpipe is not None:
            sock.setsockopt(socket.SOL_SOCKET, nosigpipe, 1)
        if nonblock:
            sock.setblocking(False)
    except OSError:
        sock.close()
        raise
    return sock


def set_nonblock(fd: Union[int, Any]) -> None:
    """Put a descriptor (or object with ``fileno()``) into non-blocking mode."""
    raw = fd if isinstance(fd, int) else fd.fileno()
    os.set_blocking(raw, False)