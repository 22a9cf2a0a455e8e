"""
RPC Serialization Layer & Data Structures.

This module contains:
1. Data Structures: ByReference marker, RPC message TypedDicts
2. Serialization Logic: encode_value/decode_value, debugprint

Copy-vs-reference is decided per type, never by accident:

- JSON primitives, lists, tuples, string-keyed dicts and bytes are copied.
- Types registered in SerializerRegistry are copied through their
  documented serializer/deserializer pair.
- ByReference subclasses and callables are exported; the peer only ever
  sees a RemoteObjectHandle and calls are forwarded back to the origin.
- Anything else fails loudly with TypeError.
"""

from __future__ import annotations

import base64
import logging
import os
from collections.abc import Callable
from typing import (
    Any,
    Literal,
    TypedDict,
    Union,
)

from .remote_handle import HANDLE_TAG, RemoteObjectHandle
from .serialization_registry import SerializerRegistry

logger = logging.getLogger(__name__)

BYTES_TAG = "__pyremote_bytes__"
DICT_TAG = "__pyremote_dict__"
TYPE_TAG = "__type__"
_RESERVED_KEYS = frozenset({HANDLE_TAG, BYTES_TAG, DICT_TAG, TYPE_TAG})

# ---------------------------------------------------------------------------
# Data Structures
# ---------------------------------------------------------------------------


class ByReference:
    """Mixin marking a class as non-copyable.

    Instances never cross a channel by value: the peer receives a handle and
    every method call on it is forwarded back to this process.
    """

    __pyremote_by_reference__ = True


def is_by_reference(obj: Any) -> bool:
    """Return True if *obj* must be exported rather than copied."""
    if isinstance(obj, type):
        return False
    return bool(getattr(type(obj), "__pyremote_by_reference__", False)) or callable(obj)


class RPCHello(TypedDict):
    kind: Literal["hello"]
    node_id: str
    uri: str | None


class RPCRequest(TypedDict):
    kind: Literal["call"]
    call_id: int
    object_id: str
    method: str
    args: list[Any]
    kwargs: dict[str, Any]


class RPCError(TypedDict):
    type: str
    message: str
    traceback: str


class RPCResponse(TypedDict):
    kind: Literal["response"]
    call_id: int
    result: Any
    error: RPCError | None


RPCMessage = Union[RPCHello, RPCRequest, RPCResponse]

Exporter = Callable[[Any], RemoteObjectHandle]
Importer = Callable[[RemoteObjectHandle], Any]

# ---------------------------------------------------------------------------
# Globals / Debug Logic
# ---------------------------------------------------------------------------

# Verbose frame logging (set via PYREMOTE_DEBUG_RPC=1)
debug_all_messages = bool(os.environ.get("PYREMOTE_DEBUG_RPC"))


def debugprint(*args: Any) -> None:
    if debug_all_messages:
        logger.debug(" ".join(str(arg) for arg in args))


# ---------------------------------------------------------------------------
# Serialization Functions
# ---------------------------------------------------------------------------


def encode_value(obj: Any, exporter: Exporter) -> Any:
    """Recursively convert *obj* into its JSON wire form.

    *exporter* is called for every by-reference value and must return the
    handle the value is exported under.
    """
    if obj is None or isinstance(obj, (bool, int, float, str)):
        return obj

    if isinstance(obj, (bytes, bytearray)):
        return {BYTES_TAG: base64.b64encode(bytes(obj)).decode("ascii")}

    if isinstance(obj, (list, tuple)):
        return [encode_value(item, exporter) for item in obj]

    if isinstance(obj, dict):
        encoded: dict[str, Any] = {}
        for key, value in obj.items():
            if not isinstance(key, str):
                raise TypeError(f"Only str dict keys cross the wire, got {type(key).__name__}")
            encoded[key] = encode_value(value, exporter)
        if _RESERVED_KEYS.intersection(encoded):
            return {DICT_TAG: encoded}
        return encoded

    registered = SerializerRegistry.get_instance().find_serializer(obj)
    if registered is not None:
        type_name, serializer = registered
        return {TYPE_TAG: type_name, "data": encode_value(serializer(obj), exporter)}

    if is_by_reference(obj):
        return exporter(obj).to_wire()

    raise TypeError(
        f"Object of type {type(obj).__name__} cannot cross the wire. "
        "Register a serializer via SerializerRegistry.register() or mark the "
        "class ByReference."
    )


def decode_value(obj: Any, importer: Importer) -> Any:
    """Inverse of :func:`encode_value`; handles are passed to *importer*."""
    if isinstance(obj, list):
        return [decode_value(item, importer) for item in obj]

    if not isinstance(obj, dict):
        return obj

    if obj.get(HANDLE_TAG):
        return importer(RemoteObjectHandle.from_wire(obj))

    if BYTES_TAG in obj:
        return base64.b64decode(obj[BYTES_TAG])

    if DICT_TAG in obj:
        return {k: decode_value(v, importer) for k, v in obj[DICT_TAG].items()}

    if TYPE_TAG in obj:
        type_name = obj[TYPE_TAG]
        deserializer = SerializerRegistry.get_instance().get_deserializer(type_name)
        if deserializer is None:
            raise TypeError(f"No deserializer registered for {type_name}")
        return deserializer(decode_value(obj.get("data"), importer))

    return {k: decode_value(v, importer) for k, v in obj.items()}
