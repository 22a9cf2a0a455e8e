"""Rendezvous defaults, URIs and the TypedDict configs for hosts and operators.

PYREMOTE_DEFAULT_HOST and PYREMOTE_DEFAULT_PORT are read once, at import.
"""

from __future__ import annotations

import logging
import os
from typing import TypedDict
from urllib.parse import urlsplit

logger = logging.getLogger(__name__)

URI_SCHEME = "pyremote"


def _default_port() -> int:
    raw = os.environ.get("PYREMOTE_DEFAULT_PORT", "9876")
    try:
        return int(raw)
    except ValueError as exc:
        raise ValueError(f"PYREMOTE_DEFAULT_PORT must be an integer, got {raw!r}") from exc


DEFAULT_HOST: str = os.environ.get("PYREMOTE_DEFAULT_HOST") or "127.0.0.1"
"""Host the session is published on when none is given."""

DEFAULT_PORT: int = _default_port()
"""Port the session is published on when none is given."""


class ConnectorConfig(TypedDict, total=False):
    """Configuration for an operator-side :class:`~pyremote.connector.Connector`."""

    host: str
    """Host of the published session (defaults to ``DEFAULT_HOST``)."""

    port: int
    """Port of the published session (defaults to ``DEFAULT_PORT``)."""

    wait: bool
    """Retry the initial attach until the host is reachable."""

    persist: bool
    """Reattach after every clean detach instead of returning."""

    capture: bool
    """Proxy the operator's stdout/stderr into the host's global streams."""


class SessionOptions(TypedDict, total=False):
    """Options handed through to the evaluator of a remote session."""

    banner: str
    """Text written to the operator once the session starts."""

    prompt: str
    """Primary prompt (defaults to ``>>> ``)."""

    prompt_continue: str
    """Continuation prompt (defaults to ``... ``)."""


def uri_for(host: str, port: int) -> str:
    """Render a rendezvous address as a node URI."""
    if ":" in host and not host.startswith("["):
        host = f"[{host}]"
    return f"{URI_SCHEME}://{host}:{port}"


def parse_uri(uri: str) -> tuple[str, int]:
    """Split a node URI back into ``(host, port)``."""
    parts = urlsplit(uri)
    if parts.scheme != URI_SCHEME:
        raise ValueError(f"Unsupported URI scheme in {uri!r}, expected {URI_SCHEME}://")
    if parts.hostname is None or parts.port is None:
        raise ValueError(f"URI {uri!r} must name both host and port")
    return parts.hostname, parts.port
