"""Remote object handle for cross-process object references.

RemoteObjectHandle is the wire form of an object that stays in its origin
process. It carries the object_id the origin node exported it under, the
node_id of that origin, and the URI the origin listens on (if any), so the
receiving node can either route calls back over the channel the handle
arrived on, or dial the origin again when that channel is gone.
"""
from __future__ import annotations

from typing import Any

HANDLE_TAG = "__pyremote_ref__"


class RemoteObjectHandle:
    """Handle to an object in a remote process.

    Attributes:
        object_id: Identifier the origin node exported the object under.
        type_name: The type name of the remote object (for debugging/logging).
        node_id: Identity of the origin node.
        uri: Address of the origin node's listener, or None if it has none.
    """

    __slots__ = ("object_id", "type_name", "node_id", "uri")

    def __init__(self, object_id: str, type_name: str, node_id: str, uri: str | None = None) -> None:
        self.object_id = object_id
        self.type_name = type_name
        self.node_id = node_id
        self.uri = uri

    def to_wire(self) -> dict[str, Any]:
        return {
            HANDLE_TAG: True,
            "object_id": self.object_id,
            "type_name": self.type_name,
            "node_id": self.node_id,
            "uri": self.uri,
        }

    @classmethod
    def from_wire(cls, data: dict[str, Any]) -> RemoteObjectHandle:
        return cls(data["object_id"], data["type_name"], data["node_id"], data.get("uri"))

    def __eq__(self, other: object) -> bool:
        if not isinstance(other, RemoteObjectHandle):
            return NotImplemented
        return (self.node_id, self.object_id) == (other.node_id, other.object_id)

    def __hash__(self) -> int:
        return hash((self.node_id, self.object_id))

    def __repr__(self) -> str:
        return f"<RemoteObject id={self.object_id} type={self.type_name} node={self.node_id}>"
