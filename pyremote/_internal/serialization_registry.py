"""Registry of copyable types for the pyremote wire format.

Values whose type is registered here cross a channel by copy: the sender
runs the serializer, the receiver runs the matching deserializer. Everything
else is either a JSON primitive, exported by reference, or rejected.
"""

from __future__ import annotations

import logging
import threading
from collections.abc import Callable
from typing import Any

logger = logging.getLogger(__name__)


class SerializerRegistry:
    """Process-wide registry of copy serializers, keyed by type name."""

    _instance: SerializerRegistry | None = None
    _lock = threading.Lock()

    def __init__(self) -> None:
        self._serializers: dict[str, Callable[[Any], Any]] = {}
        self._deserializers: dict[str, Callable[[Any], Any]] = {}

    @classmethod
    def get_instance(cls) -> SerializerRegistry:
        """Return the singleton instance, creating it if necessary."""
        if cls._instance is None:
            with cls._lock:
                if cls._instance is None:
                    cls._instance = cls()
        return cls._instance

    def register(
        self,
        type_name: str,
        serializer: Callable[[Any], Any],
        deserializer: Callable[[Any], Any],
    ) -> None:
        """Register the copy form of *type_name*.

        The serializer must return JSON-compatible data; the deserializer
        receives that data back on the other side.
        """
        if type_name in self._serializers:
            logger.debug("Overwriting existing serializer for %s", type_name)
        self._serializers[type_name] = serializer
        self._deserializers[type_name] = deserializer
        logger.debug("Registered serializer for type: %s", type_name)

    def register_type(
        self,
        cls: type,
        serializer: Callable[[Any], Any],
        deserializer: Callable[[Any], Any],
    ) -> None:
        self.register(cls.__name__, serializer, deserializer)

    def find_serializer(self, obj: Any) -> tuple[str, Callable[[Any], Any]] | None:
        """Return ``(type_name, serializer)`` for *obj*, honouring base classes."""
        for klass in type(obj).__mro__:
            serializer = self._serializers.get(klass.__name__)
            if serializer is not None:
                return klass.__name__, serializer
        return None

    def get_deserializer(self, type_name: str) -> Callable[[Any], Any] | None:
        """Return deserializer for *type_name*, or None if not registered."""
        return self._deserializers.get(type_name)

    def has_handler(self, type_name: str) -> bool:
        """Return True if *type_name* has a registered serializer."""
        return type_name in self._serializers

    def clear(self) -> None:
        """Remove all registered handlers (useful for tests)."""
        self._serializers.clear()
        self._deserializers.clear()
