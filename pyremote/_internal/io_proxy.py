"""Terminal I/O capabilities that cross the process boundary by reference.

Operator side:
    LineReaderAdapter, WriterAdapter wrap the operator's own terminal so the
    host can call into it; TerminalInput is the default line source.

Host side:
    SessionInput, SessionOutput wrap the remote references the operator
    assigned to the session handle and present them as local file-likes.
"""

from __future__ import annotations

import inspect
import io
import logging
import sys
import threading
from collections.abc import Callable
from typing import Any, Optional, TextIO

from ..errors import RemoteError
from .rpc_serialization import ByReference

logger = logging.getLogger(__name__)

CompletionProc = Callable[[str, int], Optional[str]]


def accepts_prompt(readline: Callable[..., Any]) -> bool:
    """Return True if *readline* takes a required positional prompt argument.

    Optional parameters do not count: ``io.TextIOBase.readline(size=-1)``
    must not be handed a prompt string.
    """
    try:
        signature = inspect.signature(readline)
    except (TypeError, ValueError):
        return False
    for param in signature.parameters.values():
        if param.kind in (inspect.Parameter.POSITIONAL_ONLY, inspect.Parameter.POSITIONAL_OR_KEYWORD):
            return param.default is inspect.Parameter.empty
        if param.kind is inspect.Parameter.VAR_POSITIONAL:
            return False
    return False


def supports_completion(source: Any) -> bool:
    return hasattr(source, "completion_proc")


class TerminalInput:
    """Line source over stdin, using GNU readline when stdin is a terminal."""

    def __init__(self, stdin: TextIO | None = None, stdout: TextIO | None = None) -> None:
        self._stdin = stdin if stdin is not None else sys.stdin
        self._stdout = stdout if stdout is not None else sys.stdout
        self._readline: Any = None
        self._completion_proc: CompletionProc | None = None
        if self._stdin is sys.stdin and self._stdin.isatty():
            try:
                import readline
            except ImportError:
                logger.debug("readline module unavailable; falling back to plain stdin")
            else:
                self._readline = readline

    @property
    def interactive(self) -> bool:
        return self._readline is not None

    def readline(self, prompt: str, add_history: bool = True) -> str:
        """Read one line, returning ``""`` at end of input."""
        if self._readline is None:
            if prompt:
                self._stdout.write(prompt)
                self._stdout.flush()
            return self._stdin.readline()

        self._readline.set_auto_history(add_history)
        try:
            return input(prompt) + "\n"
        except EOFError:
            return ""

    @property
    def completion_proc(self) -> CompletionProc | None:
        return self._completion_proc

    @completion_proc.setter
    def completion_proc(self, func: CompletionProc | None) -> None:
        self._completion_proc = func
        if self._readline is not None:
            self._readline.set_completer(func)
            self._readline.parse_and_bind("tab: complete")


class LineReaderAdapter(ByReference):
    """Remote-callable line reader over a local source.

    Whether the source takes a prompt is declared once, at construction.
    ``readline`` itself always takes one: a source that cannot is handed
    nothing and the prompt is written to *prompt_stream* instead.
    """

    is_interactive = False

    def __init__(self, source: Any, prompt_capable: bool | None = None, prompt_stream: Any = None) -> None:
        self._source = source
        self._prompt_stream = prompt_stream
        self._lock = threading.Lock()
        self.accepts_prompt = accepts_prompt(source.readline) if prompt_capable is None else prompt_capable

    def readline(self, prompt: str = "") -> str:
        with self._lock:
            if isinstance(self._source, TerminalInput):
                return self._source.readline(prompt, add_history=True)
            if self.accepts_prompt:
                return self._source.readline(prompt)
            if prompt:
                stream = self._prompt_stream if self._prompt_stream is not None else sys.stdout
                stream.write(prompt)
                flush = getattr(stream, "flush", None)
                if flush is not None:
                    flush()
            return self._source.readline()

    def handles_prompt(self) -> bool:
        return True

    def get_completion_proc(self) -> CompletionProc | None:
        return self.completion_proc

    @property
    def completion_proc(self) -> CompletionProc | None:
        if supports_completion(self._source):
            return self._source.completion_proc
        return None

    @completion_proc.setter
    def completion_proc(self, func: CompletionProc | None) -> None:
        if not supports_completion(self._source):
            logger.debug("%s has no completion support", type(self._source).__name__)
            return
        if func is None:
            self._source.completion_proc = None
            return

        # func is usually a proxy; readline discards completer exceptions.
        def complete(text: str, state: int) -> str | None:
            try:
                return func(text, state)
            except (ConnectionError, RemoteError) as exc:
                logger.debug("Remote completion failed: %s", exc)
                return None

        self._source.completion_proc = complete

    def isatty(self) -> bool:
        return False


class WriterAdapter(ByReference):
    """Remote-callable writer over a local sink; calls reach the sink in order."""

    is_interactive = False

    def __init__(self, sink: Any) -> None:
        self._sink = sink
        self._lock = threading.Lock()

    def write(self, data: str) -> int:
        with self._lock:
            written = self._sink.write(data)
        return len(data) if written is None else written

    def print(self, *objs: Any) -> None:
        with self._lock:
            for obj in objs:
                self._sink.write(str(obj))

    def puts(self, *lines: Any) -> None:
        with self._lock:
            if not lines:
                self._sink.write("\n")
            for line in lines:
                text = str(line)
                self._sink.write(text if text.endswith("\n") else text + "\n")

    def printf(self, fmt: str, *args: Any) -> None:
        self.write(fmt % args)

    def append(self, data: Any) -> None:
        self.write(str(data))

    def flush(self) -> None:
        flush = getattr(self._sink, "flush", None)
        if flush is not None:
            with self._lock:
                flush()

    def isatty(self) -> bool:
        return False


class SessionInput:
    """Host-side view of the operator's line reader."""

    def __init__(self, remote: Any) -> None:
        self._remote = remote
        self._accepts_prompt: bool | None = None

    @property
    def accepts_prompt(self) -> bool:
        """Whether ``readline`` is called with the prompt.

        LineReaderAdapter always is, and deals with the prompt on its own
        side. Other readers are asked for ``accepts_prompt``; one that cannot
        answer gets no prompt.
        """
        if self._accepts_prompt is None:
            self._accepts_prompt = self._ask("handles_prompt")
            if self._accepts_prompt is None:
                self._accepts_prompt = bool(self._ask("accepts_prompt"))
        return self._accepts_prompt

    def _ask(self, name: str) -> Any:
        try:
            return getattr(self._remote, name)()
        except RemoteError as exc:
            if not exc.is_missing_method:
                raise
            return None

    def readline(self, prompt: str = "") -> str:
        if self.accepts_prompt:
            return self._remote.readline(prompt)
        return self._remote.readline()

    @property
    def completion_proc(self) -> CompletionProc | None:
        return self._remote.get_completion_proc()

    @completion_proc.setter
    def completion_proc(self, func: CompletionProc | None) -> None:
        self._remote.completion_proc = func

    def isatty(self) -> bool:
        return False


class SessionOutput:
    """Host-side text stream writing to the operator's writer.

    Usable as a drop-in for ``sys.stdout`` / ``sys.stderr``.
    """

    encoding = "utf-8"
    errors = "strict"
    closed = False

    def __init__(self, remote: Any) -> None:
        self._remote = remote

    def write(self, data: str) -> int:
        if not isinstance(data, str):
            raise TypeError(f"write() argument must be str, not {type(data).__name__}")
        if data:
            self._remote.write(data)
        return len(data)

    def writelines(self, lines: Any) -> None:
        for line in lines:
            self.write(line)

    def print(self, *objs: Any) -> None:
        """Write each object's ``str()`` with no separator or newline."""
        self._remote.print(*[str(obj) for obj in objs])

    def puts(self, *lines: Any) -> None:
        self._remote.puts(*[str(line) for line in lines])

    def printf(self, fmt: str, *args: Any) -> None:
        # Formatted here; args need not cross the wire.
        self.write(fmt % args)

    def flush(self) -> None:
        self._remote.flush()

    def writable(self) -> bool:
        return True

    def readable(self) -> bool:
        return False

    def fileno(self) -> int:
        raise io.UnsupportedOperation("remote session streams have no file descriptor")

    def isatty(self) -> bool:
        return False
