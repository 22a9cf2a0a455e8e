"""Operator-side connector for pyremote.

Finds a published session, hands it this process's terminal as remote
capabilities, and blocks until the host says the session is over.
"""

from __future__ import annotations

import functools
import logging
import sys
import threading
from typing import Any, TextIO

from ._internal.editor import EditorDelegate
from ._internal.io_proxy import LineReaderAdapter, TerminalInput, WriterAdapter
from ._internal.rpc_protocol import RemoteNode, RemoteObject
from ._internal.session_handle import Terminator
from ._internal.socket_utils import local_address_for
from .config import DEFAULT_HOST, DEFAULT_PORT, ConnectorConfig, uri_for
from .errors import RemoteConnectionError, RemoteError

__all__ = ["Connector"]

logger = logging.getLogger(__name__)


class Connector:
    """Attach the local terminal to a remote session."""

    def __init__(
        self,
        host: str = DEFAULT_HOST,
        port: int = DEFAULT_PORT,
        *,
        wait: bool = False,
        persist: bool = False,
        capture: bool = False,
        retry_interval: float = 1.0,
        stdout: TextIO | None = None,
        stderr: TextIO | None = None,
        editor: Any = None,
        input: Any = None,
    ) -> None:
        """Initialize the connector.

        Args:
            host: Host the session is published on.
            port: Port the session is published on.
            wait: Keep retrying the initial attach while the host is unreachable.
            persist: Attach again after every clean detach.
            capture: Also proxy this process's stdout/stderr into the host's
                global streams for the duration of each evaluation.
            retry_interval: Seconds to sleep between attach attempts.
            stdout: Stream used as the output sink and for capture
                (defaults to ``sys.stdout`` at connect time).
            stderr: Stream used for capture (defaults to ``sys.stderr``).
            editor: Editor delegate handed to the host (defaults to an
                EditorDelegate running ``$VISUAL``/``$EDITOR``).
            input: Line source offered to the host (defaults to a
                TerminalInput over stdin).
        """
        self.host = host
        self.port = port
        self.wait = wait
        self.persist = persist
        self.capture = capture
        self.retry_interval = retry_interval
        self._stdout = stdout
        self._stderr = stderr
        self._editor = editor
        self._input = input
        self._stopped = threading.Event()
        self.sessions = 0

    @classmethod
    def from_config(cls, config: ConnectorConfig, **kwargs: Any) -> Connector:
        return cls(
            config.get("host", DEFAULT_HOST),
            config.get("port", DEFAULT_PORT),
            wait=config.get("wait", False),
            persist=config.get("persist", False),
            capture=config.get("capture", False),
            **kwargs,
        )

    @property
    def uri(self) -> str:
        return uri_for(self.host, self.port)

    def run(self) -> None:
        """Attach once, or forever with ``persist``, until stopped."""
        while not self._stopped.is_set():
            try:
                self.connect()
            except ConnectionError:
                if self._stopped.is_set():
                    return
                raise
            if not self.persist:
                break

    def stop(self) -> None:
        """Stop retrying and reattaching; a session in progress is unaffected."""
        self._stopped.set()

    def connect(self, input: Any = None, output: Any = None) -> None:
        """Attach *input*/*output* to the session and block until it ends.

        Raises ConnectionError if the host is unreachable (and neither
        ``wait`` nor ``persist`` is set) or if the host drops mid-session.
        """
        if input is None:
            input = self._input if self._input is not None else TerminalInput()
        if output is None:
            output = self._stdout if self._stdout is not None else sys.stdout

        while True:
            node = self._start_node()
            terminator = Terminator()
            node.on_disconnect(functools.partial(_fire_lost, terminator))
            try:
                handle = node.resolve(self.uri)
                self._cleanup(handle)
                handle.input = LineReaderAdapter(input, prompt_stream=output)
                handle.output = WriterAdapter(output)
            except ConnectionError as exc:
                node.shutdown()
                if not (self.wait or self.persist):
                    raise
                logger.info(
                    "[pyremote] %s unreachable (%s); retrying in %.1fs", self.uri, exc, self.retry_interval
                )
                if self._stopped.wait(self.retry_interval):
                    raise RemoteConnectionError(f"Connector stopped while waiting for {self.uri}") from exc
                continue
            break

        logger.info("[pyremote] Attached to %s", self.uri)
        try:
            if self.capture:
                handle.stdout = WriterAdapter(self._stdout if self._stdout is not None else sys.stdout)
                handle.stderr = WriterAdapter(self._stderr if self._stderr is not None else sys.stderr)
            handle.editor = self._editor if self._editor is not None else EditorDelegate()
            handle.terminator = terminator
            terminator.wait()
        finally:
            node.shutdown()

        if terminator.lost:
            raise RemoteConnectionError(f"Lost connection to {self.uri}")
        self.sessions += 1
        logger.info("[pyremote] Session on %s ended", self.uri)

    def _start_node(self) -> RemoteNode:
        node = RemoteNode()
        node.start(local_address_for(self.host), 0)
        return node

    @staticmethod
    def _cleanup(handle: RemoteObject) -> None:
        """Make a throwaway call so a stale cached connection is noticed and dropped."""
        try:
            handle.cleanup()
        except ConnectionError as exc:
            logger.debug("Cleanup call failed to connect: %s", exc)
        except RemoteError as exc:
            if not exc.is_missing_method:
                raise


def _fire_lost(terminator: Terminator, _channel: object) -> None:
    terminator.fire(lost=True)
