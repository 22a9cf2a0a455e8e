"""
pyremote - Attach your terminal to an interactive Python session in another process.

A host process publishes a session on a TCP address; an operator process
attaches to it and drives it as if it were local. Terminal input, output and
the editor stay in the operator's process: the host only ever holds remote
references to them, and every call is forwarded back over the connection.

Key Features:
    - Transparent bidirectional RPC with explicit copy-vs-reference semantics
    - Shell commands and file editing relayed to the operator's terminal
    - Optional capture of the host's stdout/stderr during evaluation
    - Retry (``wait``) and reattach (``persist``) modes for long-lived operators

Basic Usage:
    Host side::

        >>> import pyremote
        >>> pyremote.remote_repl(locals())  # blocks until an operator detaches

    Operator side::

        $ pyremote --server 127.0.0.1 --port 9876
"""

from typing import TYPE_CHECKING

from ._internal.rpc_serialization import ByReference
from .config import DEFAULT_HOST, DEFAULT_PORT, ConnectorConfig, SessionOptions
from .connector import Connector
from .errors import AddressInUse, PyRemoteError, RemoteConnectionError, RemoteError
from .host import RemoteSession, SessionState, remote_repl
from .interfaces import Evaluator, SessionHooks

if TYPE_CHECKING:
    from collections.abc import Callable
    from typing import Any

__version__ = "0.1.0"

# Alias for people who reach for the package name.
pyremote = remote_repl

__all__ = [
    "AddressInUse",
    "ByReference",
    "Connector",
    "ConnectorConfig",
    "DEFAULT_HOST",
    "DEFAULT_PORT",
    "Evaluator",
    "PyRemoteError",
    "RemoteConnectionError",
    "RemoteError",
    "RemoteSession",
    "SessionHooks",
    "SessionOptions",
    "SessionState",
    "pyremote",
    "register_serializer",
    "remote_repl",
]


def register_serializer(
    cls: type,
    serializer: "Callable[[Any], Any]",
    deserializer: "Callable[[Any], Any]",
) -> None:
    """Let instances of *cls* cross the wire by copy."""
    from ._internal.serialization_registry import SerializerRegistry
    SerializerRegistry.get_instance().register_type(cls, serializer, deserializer)
