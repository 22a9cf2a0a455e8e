"""
RPC Transport Layer.

This module contains:
- RPCTransport Protocol
- JSONSocketTransport
"""

from __future__ import annotations

import contextlib
import json
import logging
import socket
import struct
import threading
from typing import (
    Any,
    Protocol,
    runtime_checkable,
)

from ..errors import ProtocolError, RemoteConnectionError

logger = logging.getLogger(__name__)

MAX_FRAME_BYTES = 100 * 1024 * 1024
_HEADER = struct.Struct(">I")


@runtime_checkable
class RPCTransport(Protocol):
    """Protocol for RPC transport mechanisms.

    Implementations must provide thread-safe send/recv operations.
    """

    def send(self, obj: Any) -> None:
        """Send an object to the remote endpoint."""
        ...

    def recv(self) -> Any:
        """Receive an object from the remote endpoint. Blocks until available."""
        ...

    def close(self) -> None:
        """Close the transport. Further send/recv calls may fail."""
        ...


class JSONSocketTransport:
    """Transport using a stream socket + length-prefixed JSON frames.

    Values must already be in wire form (see rpc_serialization.encode_value);
    this class only frames them.
    """

    def __init__(self, sock: socket.socket) -> None:
        self._sock = sock
        self._lock = threading.Lock()
        self._recv_lock = threading.Lock()
        self._closed = False

    @property
    def closed(self) -> bool:
        return self._closed

    def send(self, obj: Any) -> None:
        """Serialize to JSON with length prefix."""
        try:
            data = json.dumps(obj).encode("utf-8")
        except TypeError as e:
            logger.error(
                "Cannot serialize frame:\n"
                "  Type: %s\n"
                "  Error: %s\n"
                "  Resolution: encode values with encode_value() before sending",
                type(obj).__name__,
                e,
            )
            raise

        msg = _HEADER.pack(len(data)) + data
        with self._lock:
            try:
                self._sock.sendall(msg)
            except OSError as exc:
                raise RemoteConnectionError(f"Send failed: {exc}") from exc

    def recv(self) -> Any:
        """Receive length-prefixed JSON message."""
        with self._recv_lock:
            raw_len = self._recvall(_HEADER.size)
            if len(raw_len) < _HEADER.size:
                raise RemoteConnectionError("Socket closed or incomplete length header")
            msg_len = _HEADER.unpack(raw_len)[0]
            if msg_len > MAX_FRAME_BYTES:
                raise ProtocolError(f"Message too large: {msg_len} bytes")
            data = self._recvall(msg_len)
            if len(data) < msg_len:
                raise RemoteConnectionError(f"Incomplete message: got {len(data)}/{msg_len} bytes")
            try:
                return json.loads(data.decode("utf-8"))
            except ValueError as exc:
                raise ProtocolError(f"Malformed frame: {exc}") from exc

    def _recvall(self, n: int) -> bytes:
        """Receive exactly n bytes from the socket."""
        chunks = []
        remaining = n
        while remaining > 0:
            try:
                chunk = self._sock.recv(min(remaining, 65536))
            except OSError as exc:
                raise RemoteConnectionError(f"Receive failed: {exc}") from exc
            if not chunk:
                break
            chunks.append(chunk)
            remaining -= len(chunk)
        return b"".join(chunks)

    def close(self) -> None:
        """Close the underlying socket."""
        self._closed = True
        with contextlib.suppress(OSError):
            self._sock.shutdown(socket.SHUT_RDWR)
        with contextlib.suppress(Exception):
            self._sock.close()
