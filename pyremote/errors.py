"""Custom error types for pyremote."""

from __future__ import annotations


class PyRemoteError(Exception):
    """Base class for all pyremote errors."""


class AddressInUse(PyRemoteError, OSError):
    """Raised when a node cannot bind its rendezvous address."""

    def __init__(self, host: str, port: int) -> None:
        self.host = host
        self.port = port
        super().__init__(f"Address already in use: {host}:{port}")


class RemoteConnectionError(PyRemoteError, ConnectionError):
    """Raised when a remote call cannot reach its peer."""


class ProtocolError(PyRemoteError):
    """Raised for malformed or unexpected frames on a channel."""


class RemoteError(PyRemoteError):
    """Raised when the remote side reports an exception."""

    remote_type_name: str
    remote_message: str
    remote_traceback: str

    def __init__(
        self,
        remote_type_name: str,
        remote_message: str,
        remote_traceback: str = "",
    ) -> None:
        """Initialize a remote exception wrapper.

        :param remote_type_name: Original remote exception type name.
        :param remote_message: Original remote exception message.
        :param remote_traceback: Original remote traceback text.
        """
        self.remote_type_name = remote_type_name
        self.remote_message = remote_message
        self.remote_traceback = remote_traceback
        super().__init__(f"Remote side raised {remote_type_name}: {remote_message}")

    @property
    def is_missing_method(self) -> bool:
        """True when the remote object has no such method."""
        return self.remote_type_name == "AttributeError"
