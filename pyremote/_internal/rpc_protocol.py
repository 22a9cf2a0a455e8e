"""
RPC Protocol & Core Logic.

This module contains:
- RemoteNode (one substrate instance per process role: listener, exports, channels)
- Channel (one bidirectional connection; call/response matching)
- RemoteObject / RemoteMethod (proxies that forward calls to the origin node)

Every connection is symmetric: either side may invoke objects the other side
exported. Handles that come back to the node that exported them resolve to
the original local object, so identity survives a round trip.
"""

from __future__ import annotations

import contextlib
import itertools
import logging
import threading
import traceback
import uuid
from collections.abc import Callable
from concurrent.futures import Future
from typing import Any

from ..config import parse_uri, uri_for
from ..errors import ProtocolError, RemoteConnectionError, RemoteError
from .remote_handle import RemoteObjectHandle
from .rpc_serialization import (
    RPCError,
    RPCHello,
    RPCRequest,
    RPCResponse,
    debugprint,
    decode_value,
    encode_value,
)
from .rpc_transports import JSONSocketTransport, RPCTransport
from .socket_utils import bind_listener, connect_to

logger = logging.getLogger(__name__)

ROOT_ID = "root"
_ACCEPT_POLL_SECONDS = 0.2
# Dunder methods a peer may invoke; every other "_" name is private.
_REMOTE_DUNDERS = frozenset({"__call__", "__setattr__"})

# ---------------------------------------------------------------------------
# Proxies
# ---------------------------------------------------------------------------


class RemoteObject:
    """Proxy for an object living in another node.

    Attribute reads return RemoteMethod callables, attribute assignment is
    forwarded as a remote ``__setattr__``, and calling the proxy forwards
    ``__call__``. Private names never leave the process.
    """

    __slots__ = ("_node", "_handle", "_channel")

    def __init__(self, node: RemoteNode, handle: RemoteObjectHandle, channel: Channel | None = None) -> None:
        object.__setattr__(self, "_node", node)
        object.__setattr__(self, "_handle", handle)
        object.__setattr__(self, "_channel", channel)

    def __getattr__(self, name: str) -> RemoteMethod:
        if name.startswith("_"):
            raise AttributeError(name)
        return RemoteMethod(self, name)

    def __setattr__(self, name: str, value: Any) -> None:
        if name.startswith("_"):
            raise AttributeError(f"Cannot set private attribute {name} on a remote object")
        self._node.invoke(self, "__setattr__", (name, value), {})

    def __call__(self, *args: Any, **kwargs: Any) -> Any:
        return self._node.invoke(self, "__call__", args, kwargs)

    def __repr__(self) -> str:
        return f"<RemoteObject {self._handle.type_name} id={self._handle.object_id} uri={self._handle.uri}>"


class RemoteMethod:
    """Bound remote method; calling it performs one blocking round trip."""

    __slots__ = ("_proxy", "_name")

    def __init__(self, proxy: RemoteObject, name: str) -> None:
        self._proxy = proxy
        self._name = name

    def __call__(self, *args: Any, **kwargs: Any) -> Any:
        proxy = self._proxy
        return proxy._node.invoke(proxy, self._name, args, kwargs)

    def __repr__(self) -> str:
        return f"<RemoteMethod {self._name} of {self._proxy!r}>"


# ---------------------------------------------------------------------------
# Channel
# ---------------------------------------------------------------------------


class Channel:
    """One bidirectional connection between two nodes."""

    def __init__(self, node: RemoteNode, transport: RPCTransport, peer_uri: str | None = None) -> None:
        self.node = node
        self.peer_uri = peer_uri
        self.peer_node_id: str | None = None
        self._transport = transport
        self.lock = threading.Lock()
        self.pending: dict[int, Future[Any]] = {}
        self._id_gen = itertools.count()
        self._closed = threading.Event()
        self._thread: threading.Thread | None = None

    @property
    def closed(self) -> bool:
        return self._closed.is_set()

    def start(self) -> None:
        self._thread = threading.Thread(target=self._recv_thread, name="pyremote-recv", daemon=True)
        self._thread.start()
        hello = RPCHello(kind="hello", node_id=self.node.node_id, uri=self.node.uri)
        self._transport.send(hello)

    def call(self, object_id: str, method: str, args: tuple[Any, ...], kwargs: dict[str, Any]) -> Any:
        """Invoke *method* on the peer's *object_id* and block for the result."""
        if self.closed:
            raise RemoteConnectionError(f"Channel to {self.peer_uri or 'peer'} is closed")

        request = RPCRequest(
            kind="call",
            call_id=next(self._id_gen),
            object_id=object_id,
            method=method,
            args=encode_value(list(args), self.node.export),
            kwargs=encode_value(kwargs, self.node.export),
        )
        future: Future[Any] = Future()
        with self.lock:
            # close() sets the flag before draining pending under this lock.
            if self.closed:
                raise RemoteConnectionError(f"Channel to {self.peer_uri or 'peer'} is closed")
            self.pending[request["call_id"]] = future

        debugprint("->", request)
        try:
            self._transport.send(request)
        except RemoteConnectionError:
            with self.lock:
                self.pending.pop(request["call_id"], None)
            self.close()
            raise
        return future.result()

    def close(self) -> None:
        if self._closed.is_set():
            return
        self._closed.set()
        self._transport.close()
        with self.lock:
            pending = list(self.pending.values())
            self.pending.clear()
        for future in pending:
            if not future.done():
                future.set_exception(RemoteConnectionError("Connection to peer lost"))
        self.node._channel_closed(self)

    def _import(self, handle: RemoteObjectHandle) -> Any:
        return self.node.import_handle(handle, self)

    def _recv_thread(self) -> None:
        while True:
            try:
                item = self._transport.recv()
            except (RemoteConnectionError, ProtocolError) as exc:
                if self.closed or self.node.stopping:
                    logger.debug("Channel %s shutting down (%s)", self.peer_uri, exc)
                else:
                    logger.info("Channel to %s lost: %s", self.peer_uri or "peer", exc)
                break

            debugprint("<-", item)
            kind = item.get("kind") if isinstance(item, dict) else None
            if kind == "response":
                self._deliver(item)
            elif kind == "call":
                threading.Thread(
                    target=self._dispatch, args=(item,), name="pyremote-dispatch", daemon=True
                ).start()
            elif kind == "hello":
                self.peer_node_id = item.get("node_id")
                if item.get("uri"):
                    self.peer_uri = item["uri"]
                    self.node._adopt_channel(self)
            else:
                logger.error("Dropping frame of unknown kind %r: %s", kind, item)
        self.close()

    def _deliver(self, item: dict[str, Any]) -> None:
        with self.lock:
            future = self.pending.pop(item["call_id"], None)
        if future is None:
            logger.warning("Response for unknown call_id=%s", item.get("call_id"))
            return
        error = item.get("error")
        if error:
            future.set_exception(RemoteError(error["type"], error["message"], error.get("traceback", "")))
            return
        try:
            future.set_result(decode_value(item.get("result"), self._import))
        except Exception as exc:
            future.set_exception(exc)

    def _dispatch(self, request: RPCRequest) -> None:
        try:
            target = self.node.lookup(request["object_id"])
            args = decode_value(request["args"], self._import)
            kwargs = decode_value(request["kwargs"], self._import)
            result = _apply(target, request["method"], args, kwargs)
            response = RPCResponse(
                kind="response",
                call_id=request["call_id"],
                result=encode_value(result, self.node.export),
                error=None,
            )
        except Exception as exc:
            if isinstance(exc, AttributeError):
                logger.debug("No such method %s on %s", request["method"], request["object_id"])
            else:
                logger.exception("RPC dispatch failed for %s.%s", request["object_id"], request["method"])
            response = RPCResponse(
                kind="response",
                call_id=request["call_id"],
                result=None,
                error=RPCError(type=type(exc).__name__, message=str(exc), traceback=traceback.format_exc()),
            )

        debugprint("->", response)
        try:
            self._transport.send(response)
        except RemoteConnectionError as exc:
            logger.debug("Could not deliver response %s: %s", request["call_id"], exc)


def _apply(target: Any, method: str, args: list[Any], kwargs: dict[str, Any]) -> Any:
    if method.startswith("_") and method not in _REMOTE_DUNDERS:
        raise AttributeError(f"{type(target).__name__}.{method} is not a public method")

    if method == "__setattr__":
        name, value = args
        if name.startswith("_"):
            raise AttributeError(f"Cannot set private attribute {name}")
        setattr(target, name, value)
        return None

    if method == "__call__":
        if not callable(target):
            raise TypeError(f"{type(target).__name__} object is not callable")
        return target(*args, **kwargs)

    attr = getattr(target, method)
    if callable(attr):
        return attr(*args, **kwargs)
    if args or kwargs:
        raise TypeError(f"{type(target).__name__}.{method} is an attribute, not a method")
    return attr


# ---------------------------------------------------------------------------
# Node
# ---------------------------------------------------------------------------


class RemoteNode:
    """One substrate instance: exported objects, an optional listener, channels."""

    def __init__(self) -> None:
        self.node_id = uuid.uuid4().hex
        self.uri: str | None = None
        self.lock = threading.RLock()
        self.callees: dict[str, object] = {}
        self._export_ids: dict[int, str] = {}
        self._proxies: dict[tuple[str, str], RemoteObject] = {}
        self._channels: set[Channel] = set()
        self._dialed: dict[str, Channel] = {}
        self._dial_lock = threading.Lock()
        self._listener: Any = None
        self._accept_thread: threading.Thread | None = None
        self._disconnect_callbacks: list[Callable[[Channel], None]] = []
        self._stopping = False

    @property
    def stopping(self) -> bool:
        return self._stopping

    def start(self, host: str, port: int) -> str:
        """Bind a listener and return this node's URI.

        Raises AddressInUse if the port is taken.
        """
        if self._stopping:
            raise RuntimeError("RemoteNode was shut down; create a new one")
        if self._listener is not None:
            raise RuntimeError(f"RemoteNode already listening on {self.uri}")

        listener = bind_listener(host, port)
        listener.settimeout(_ACCEPT_POLL_SECONDS)
        bound_port = listener.getsockname()[1]
        self._listener = listener
        self.uri = uri_for(host, bound_port)
        self._accept_thread = threading.Thread(target=self._accept_loop, name="pyremote-accept", daemon=True)
        self._accept_thread.start()
        logger.debug("Node %s listening on %s", self.node_id, self.uri)
        return self.uri

    def publish(self, address: tuple[str, int], obj: object) -> str:
        """Listen on *address* and expose *obj* as the root object."""
        # Root must be reachable before the first peer can connect.
        self.register_callee(obj, ROOT_ID)
        try:
            return self.start(*address)
        except BaseException:
            with self.lock:
                self.callees.pop(ROOT_ID, None)
                self._export_ids.pop(id(obj), None)
            raise

    def resolve(self, uri: str) -> RemoteObject:
        """Return a proxy for the root object at *uri*.

        Nothing is dialled until the first call on the proxy.
        """
        parse_uri(uri)
        return RemoteObject(self, RemoteObjectHandle(ROOT_ID, "root", "", uri))

    def register_callee(self, obj: object, object_id: str) -> None:
        with self.lock:
            if object_id in self.callees:
                raise ValueError(f"Object ID {object_id} already registered")
            self.callees[object_id] = obj
            self._export_ids[id(obj)] = object_id

    def lookup(self, object_id: str) -> object:
        with self.lock:
            try:
                return self.callees[object_id]
            except KeyError:
                raise LookupError(f"Object ID {object_id} not registered") from None

    def on_disconnect(self, callback: Callable[[Channel], None]) -> None:
        """Call *callback* whenever a channel drops while the node is running."""
        self._disconnect_callbacks.append(callback)

    def export(self, obj: Any) -> RemoteObjectHandle:
        if isinstance(obj, RemoteObject):
            return obj._handle
        with self.lock:
            object_id = self._export_ids.get(id(obj))
            if object_id is None:
                object_id = uuid.uuid4().hex
                self.callees[object_id] = obj
                self._export_ids[id(obj)] = object_id
        return RemoteObjectHandle(object_id, type(obj).__name__, self.node_id, self.uri)

    def import_handle(self, handle: RemoteObjectHandle, channel: Channel | None = None) -> Any:
        if handle.node_id == self.node_id:
            return self.lookup(handle.object_id)
        key = (handle.node_id, handle.object_id)
        with self.lock:
            proxy = self._proxies.get(key)
            if proxy is None:
                proxy = RemoteObject(self, handle, channel)
                self._proxies[key] = proxy
            elif channel is not None and (proxy._channel is None or proxy._channel.closed):
                object.__setattr__(proxy, "_channel", channel)
        return proxy

    def connect(self, uri: str) -> Channel:
        """Return a live channel to *uri*, dialling if needed."""
        with self._dial_lock:
            with self.lock:
                channel = self._dialed.get(uri)
            if channel is not None and not channel.closed:
                return channel
            if self._stopping:
                raise RemoteConnectionError("RemoteNode is shut down")

            host, port = parse_uri(uri)
            try:
                sock = connect_to(host, port)
            except OSError as exc:
                raise RemoteConnectionError(f"Cannot reach {uri}: {exc}") from exc
            channel = Channel(self, JSONSocketTransport(sock), peer_uri=uri)
            with self.lock:
                self._channels.add(channel)
                self._dialed[uri] = channel
            try:
                channel.start()
            except RemoteConnectionError:
                channel.close()
                raise
            logger.debug("Connected to %s", uri)
            return channel

    def invoke(self, proxy: RemoteObject, method: str, args: tuple[Any, ...], kwargs: dict[str, Any]) -> Any:
        channel = proxy._channel
        if channel is None or channel.closed:
            uri = proxy._handle.uri
            if uri is None:
                raise RemoteConnectionError(f"No route back to {proxy!r}")
            channel = self.connect(uri)
            object.__setattr__(proxy, "_channel", channel)
        return channel.call(proxy._handle.object_id, method, args, kwargs)

    def stop_listening(self) -> None:
        """Refuse new peers; channels already open keep working."""
        with self.lock:
            listener, self._listener = self._listener, None
        if listener is not None:
            with contextlib.suppress(OSError):
                listener.close()
        if self._accept_thread is not None and self._accept_thread is not threading.current_thread():
            self._accept_thread.join(timeout=2 * _ACCEPT_POLL_SECONDS + 1)

    def shutdown(self) -> None:
        """Close the listener and every channel. Safe to call repeatedly."""
        with self.lock:
            if self._stopping:
                return
            self._stopping = True
            channels = list(self._channels)

        self.stop_listening()
        for channel in channels:
            channel.close()

        with self.lock:
            self.callees.clear()
            self._export_ids.clear()
            self._proxies.clear()
            self._dialed.clear()
            self._channels.clear()
        logger.debug("Node %s stopped", self.node_id)

    def _accept_loop(self) -> None:
        while not self._stopping:
            listener = self._listener
            if listener is None:
                break
            try:
                sock, addr = listener.accept()
            except TimeoutError:
                continue
            except OSError as exc:
                if self._listener is listener:
                    logger.error("Accept failed on %s: %s", self.uri, exc)
                break
            sock.settimeout(None)
            logger.debug("Accepted connection from %s:%s", addr[0], addr[1])
            channel = Channel(self, JSONSocketTransport(sock))
            with self.lock:
                if self._stopping:
                    channel.close()
                    break
                self._channels.add(channel)
            try:
                channel.start()
            except RemoteConnectionError as exc:
                logger.debug("Peer %s left before hello: %s", addr, exc)
                channel.close()

    def _adopt_channel(self, channel: Channel) -> None:
        """Route future calls for the peer's URI over an inbound channel."""
        if channel.peer_uri is None:
            return
        with self.lock:
            existing = self._dialed.get(channel.peer_uri)
            if existing is None or existing.closed:
                self._dialed[channel.peer_uri] = channel

    def _channel_closed(self, channel: Channel) -> None:
        with self.lock:
            self._channels.discard(channel)
            if channel.peer_uri and self._dialed.get(channel.peer_uri) is channel:
                del self._dialed[channel.peer_uri]
            stopping = self._stopping
        if stopping:
            return
        for callback in list(self._disconnect_callbacks):
            try:
                callback(channel)
            except Exception:
                logger.exception("Disconnect callback failed")
