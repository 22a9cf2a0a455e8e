"""Public protocols between the pyremote core and the evaluator it drives.

The evaluator (the read-eval-print loop) is not part of the core: any callable
matching :class:`Evaluator` can be handed to :class:`pyremote.RemoteSession`.
Everything it may need from the session arrives through its arguments, in
particular :class:`SessionHooks`, which stands in for process-wide
pager/shell/editor settings.
"""

from __future__ import annotations

from collections.abc import Callable, Mapping
from dataclasses import dataclass, field
from typing import Any, Protocol, runtime_checkable


def _noop() -> None:
    return None


@runtime_checkable
class LineReader(Protocol):
    """Source of input lines; ``""`` signals end of input."""

    def readline(self, prompt: str = "") -> str:
        """Return the next line, including its trailing newline."""
        ...


@runtime_checkable
class Writer(Protocol):
    """Sink for evaluator output."""

    def write(self, data: str) -> int:
        """Write *data*, returning the number of characters written."""
        ...

    def flush(self) -> None:
        """Push buffered output to the operator."""
        ...


@dataclass
class SessionHooks:
    """Per-session replacements for the evaluator's process-wide settings.

    Attributes:
        system: Runs a shell command, relaying its output to the operator;
            returns the exit status.
        editor: Edits a file in place through the operator's editor
            (``editor(path, line)``).
        pager: Whether a pager may be used. Always False for remote sessions.
        before_eval: Called immediately before each evaluation unit.
        after_eval: Called immediately after each evaluation unit, even if it
            raised.
    """

    system: Callable[[str], int]
    editor: Callable[..., None]
    pager: bool = False
    before_eval: Callable[[], None] = field(default=_noop)
    after_eval: Callable[[], None] = field(default=_noop)


@runtime_checkable
class Evaluator(Protocol):
    """Runs an interactive session over the given input and output."""

    def __call__(
        self,
        target: Any,
        *,
        input: LineReader,
        output: Writer,
        hooks: SessionHooks,
        options: Mapping[str, Any],
    ) -> Any:
        """Drive the session until the operator ends it."""
        ...
