"""Host-side session controller for pyremote.

Publishes a session handle, waits for an operator to attach, runs the
evaluator over the operator's terminal, and restores every piece of global
state afterwards, whatever way the evaluator exits.
"""

from __future__ import annotations

import enum
import functools
import logging
import pydoc
import sys
from collections.abc import Callable, Mapping
from typing import Any, TextIO

from ._internal.console import run_console
from ._internal.editor import edit_file
from ._internal.io_proxy import SessionOutput
from ._internal.rpc_protocol import RemoteNode
from ._internal.session_handle import SessionHandle
from ._internal.shell import relay_command
from .config import DEFAULT_HOST, DEFAULT_PORT, SessionOptions, uri_for
from .interfaces import Evaluator, SessionHooks

__all__ = ["RemoteSession", "SessionState", "remote_repl"]

logger = logging.getLogger(__name__)


class SessionState(enum.Enum):
    IDLE = "idle"
    PUBLISHED_WAITING = "published_waiting"
    ATTACHED = "attached"
    TEARING_DOWN = "tearing_down"
    DONE = "done"


class RemoteSession:
    """Expose *target* to one operator for one session."""

    def __init__(
        self,
        target: Any,
        host: str = DEFAULT_HOST,
        port: int = DEFAULT_PORT,
        options: SessionOptions | Mapping[str, Any] | None = None,
        *,
        evaluator: Evaluator | None = None,
        poll_interval: float = 0.01,
        attach_grace: float = 1.0,
        notices: TextIO | None = None,
    ) -> None:
        """Initialize the session.

        Args:
            target: Object the session evaluates against (a namespace dict,
                a module, or any object, bound as ``self``).
            host: Interface to publish on.
            port: Port to publish on.
            options: Passed through to the evaluator.
            evaluator: Read-eval-print loop to run; defaults to the built-in
                console.
            poll_interval: Sleep between checks while waiting for an operator.
            attach_grace: Once input and output are attached, how long to wait
                for the operator to finish assigning its remaining fields.
            notices: Stream the lifecycle notices are printed to (defaults to
                ``sys.stderr`` at the time of printing). They are also logged.
        """
        self.target = target
        self.host = host
        self.port = port
        self.options: dict[str, Any] = dict(options or {})
        self.evaluator: Evaluator = evaluator or run_console
        self.poll_interval = poll_interval
        self.attach_grace = attach_grace
        self.notices = notices
        self.state = SessionState.IDLE
        self._node: RemoteNode | None = None
        self._handle: SessionHandle | None = None
        self._restorers: list[tuple[str, Callable[[], None]]] = []
        self._saved_streams: tuple[Any, Any] | None = None
        self._capture_streams: tuple[Any, Any] | None = None

    @property
    def uri(self) -> str:
        return uri_for(self.host, self.port)

    @property
    def handle(self) -> SessionHandle | None:
        return self._handle

    def run(self) -> Any:
        """Publish, wait for an operator, and run one full session.

        Returns whatever the evaluator returns. Evaluator exceptions propagate
        after teardown has run.
        """
        if self.state is not SessionState.IDLE:
            raise RuntimeError(f"RemoteSession already used (state={self.state.value})")

        node = RemoteNode()
        handle = SessionHandle()
        try:
            node.publish((self.host, self.port), handle)
        except BaseException:
            node.shutdown()
            raise
        self._node, self._handle = node, handle
        self.state = SessionState.PUBLISHED_WAITING

        try:
            self._notice("[pyremote] Waiting for client on %s", self.uri)
            handle.wait(self.poll_interval)
            if not handle.wait_complete(self.attach_grace, self.poll_interval):
                logger.warning("[pyremote] Client attached without a terminator; continuing anyway")

            self._notice("[pyremote] Client received, starting remote session")
            self.state = SessionState.ATTACHED
            output = handle.output_proxy()
            hooks = self._setup(output)
            return self.evaluator(
                self.target,
                input=handle.input_proxy(),
                output=output,
                hooks=hooks,
                options=self.options,
            )
        finally:
            self._teardown()

    # ------------------------------------------------------------------
    # Setup / teardown
    # ------------------------------------------------------------------

    def _setup(self, output: SessionOutput) -> SessionHooks:
        """Install session-scoped hooks; each one registers its own restorer."""
        # No usable pager on the operator side: page straight into the session.
        previous_pager = pydoc.pager
        pydoc.pager = functools.partial(_plain_page, output)
        self._restorers.append(("pager", functools.partial(setattr, pydoc, "pager", previous_pager)))

        return SessionHooks(
            system=functools.partial(relay_command, output),
            editor=self._edit_file,
            pager=False,
            before_eval=self._capture_output,
            after_eval=self._uncapture_output,
        )

    def _teardown(self) -> None:
        self.state = SessionState.TEARING_DOWN
        self._uncapture_output()
        self._restore_hooks()

        self._notice("[pyremote] Remote session terminated")
        handle, node = self._handle, self._node
        try:
            # A reattaching operator must not reach this session's listener.
            if node is not None:
                node.stop_listening()
            if handle is not None and handle.is_ready():
                handle.terminate(self.attach_grace, self.poll_interval)
        except ConnectionError as exc:
            self._notice("[pyremote] Continuing to stop service (%s)", exc)
        finally:
            self._notice("[pyremote] Ensure stop service")
            if handle is not None:
                handle.clear()
            if node is not None:
                node.shutdown()
            self._capture_streams = None
            self.state = SessionState.DONE

    def _notice(self, message: str, *args: Any) -> None:
        logger.info(message, *args)
        print(message % args, file=self.notices if self.notices is not None else sys.stderr, flush=True)

    def _restore_hooks(self) -> None:
        while self._restorers:
            name, restore = self._restorers.pop()
            try:
                restore()
            except Exception:
                logger.exception("[pyremote] Failed to restore %s hook", name)

    def _capture_output(self) -> None:
        """Swap sys.stdout/sys.stderr for the operator's streams, if supplied."""
        handle = self._handle
        if handle is None or self._saved_streams is not None:
            return
        if handle.stdout is None and handle.stderr is None:
            return
        if self._capture_streams is None:
            self._capture_streams = (
                SessionOutput(handle.stdout) if handle.stdout is not None else None,
                SessionOutput(handle.stderr) if handle.stderr is not None else None,
            )
        stdout, stderr = self._capture_streams
        self._saved_streams = (sys.stdout, sys.stderr)
        sys.stdout = stdout or sys.stdout
        sys.stderr = stderr or sys.stderr

    def _uncapture_output(self) -> None:
        if self._saved_streams is None:
            return
        sys.stdout, sys.stderr = self._saved_streams
        self._saved_streams = None

    def _edit_file(self, path: str, line: int | None = None) -> None:
        handle = self._handle
        edit_file(handle.editor if handle is not None else None, path, line)


def _plain_page(output: SessionOutput, text: str, title: str = "") -> None:
    output.write(pydoc.plain(text))
    if not text.endswith("\n"):
        output.write("\n")


def remote_repl(
    target: Any,
    host: str = DEFAULT_HOST,
    port: int = DEFAULT_PORT,
    **options: Any,
) -> Any:
    """Expose *target* for remote attachment and block until the session ends.

    Keyword options that match :class:`RemoteSession` arguments (``evaluator``,
    ``poll_interval``, ``attach_grace``, ``notices``) configure the session; the rest are
    passed through to the evaluator.
    """
    session_keys = ("evaluator", "poll_interval", "attach_grace", "notices")
    session_kwargs = {key: options.pop(key) for key in session_keys if key in options}
    return RemoteSession(target, host, port, options, **session_kwargs).run()
