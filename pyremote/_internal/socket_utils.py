"""Socket helpers for pyremote nodes."""

from __future__ import annotations

import errno
import logging
import socket

from ..errors import AddressInUse

__all__ = ["local_address_for", "bind_listener", "connect_to"]

logger = logging.getLogger(__name__)


def local_address_for(host: str) -> str:
    """Return the local IP the kernel would use to reach *host*.

    Connecting a datagram socket sends nothing; it only selects a route, so
    the socket's own address afterwards is the interface facing *host*.
    """
    family = socket.AF_INET6 if ":" in host else socket.AF_INET
    with socket.socket(family, socket.SOCK_DGRAM) as sock:
        try:
            sock.connect((host, 1))
        except OSError as exc:
            logger.debug("No route to %s (%s); using loopback", host, exc)
            return "::1" if family == socket.AF_INET6 else "127.0.0.1"
        return sock.getsockname()[0]


def bind_listener(host: str, port: int, backlog: int = 8) -> socket.socket:
    """Bind and listen on ``(host, port)``.

    Raises AddressInUse when another listener already owns the port.
    """
    family = socket.AF_INET6 if ":" in host else socket.AF_INET
    sock = socket.socket(family, socket.SOCK_STREAM)
    # SO_REUSEADDR only skips TIME_WAIT; a live listener still conflicts.
    sock.setsockopt(socket.SOL_SOCKET, socket.SO_REUSEADDR, 1)
    try:
        sock.bind((host, port))
        sock.listen(backlog)
    except OSError as exc:
        sock.close()
        if exc.errno == errno.EADDRINUSE:
            raise AddressInUse(host, port) from exc
        raise
    return sock


def connect_to(host: str, port: int, timeout: float | None = 10.0) -> socket.socket:
    """Open a TCP connection; the returned socket is in blocking mode."""
    sock = socket.create_connection((host, port), timeout=timeout)
    sock.settimeout(None)
    sock.setsockopt(socket.IPPROTO_TCP, socket.TCP_NODELAY, 1)
    return sock
