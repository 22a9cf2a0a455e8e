"""Default evaluator: a ``code.InteractiveConsole`` driven over a remote terminal."""

from __future__ import annotations

import code
import logging
import rlcompleter
import shlex
import sys
import types
from collections.abc import Mapping
from typing import Any

from typing_extensions import override

from ..errors import RemoteError
from ..interfaces import LineReader, SessionHooks, Writer

logger = logging.getLogger(__name__)

_EXIT_WORDS = frozenset({"exit", "quit", "exit()", "quit()"})


def namespace_for(target: Any) -> dict[str, Any]:
    """Return the globals a session on *target* evaluates in."""
    if isinstance(target, dict):
        return target
    if isinstance(target, types.ModuleType):
        return vars(target)
    return {"__name__": "__pyremote__", "self": target}


class RemoteConsole(code.InteractiveConsole):
    """Interactive console whose terminal lives in the operator process.

    Besides Python source it understands two meta commands:

    - ``!command`` runs a shell command through ``hooks.system``
    - ``%edit PATH [LINE]`` edits a file through ``hooks.editor``
    """

    def __init__(
        self,
        namespace: dict[str, Any],
        input: LineReader,
        output: Writer,
        hooks: SessionHooks,
        options: Mapping[str, Any] | None = None,
    ) -> None:
        super().__init__(locals=namespace, filename="<pyremote>")
        self._input = input
        self._output = output
        self._hooks = hooks
        self._options = dict(options or {})

    def install_completion(self) -> None:
        completer = rlcompleter.Completer(self.locals)
        try:
            self._input.completion_proc = completer.complete  # type: ignore[attr-defined]
        except (AttributeError, ConnectionError, RemoteError) as exc:
            logger.debug("Tab completion unavailable: %s", exc)

    @override
    def raw_input(self, prompt: str = "") -> str:
        line = self._input.readline(prompt)
        if not line:
            raise EOFError
        return line.rstrip("\r\n")

    @override
    def write(self, data: str) -> None:
        self._output.write(data)

    @override
    def push(self, line: str, *args: Any, **kwargs: Any) -> bool:
        if not self.buffer:
            stripped = line.strip()
            if stripped in _EXIT_WORDS:
                raise SystemExit(0)
            if stripped.startswith("!"):
                self._run_shell(stripped[1:].strip())
                return False
            if stripped.startswith("%edit"):
                self._run_edit(stripped[len("%edit"):].strip())
                return False
        return super().push(line, *args, **kwargs)

    @override
    def runsource(self, source: str, filename: str = "<input>", symbol: str = "single") -> bool:
        previous_hook = sys.displayhook
        self._hooks.before_eval()
        sys.displayhook = self._display
        try:
            return super().runsource(source, filename, symbol)
        finally:
            sys.displayhook = previous_hook
            self._hooks.after_eval()

    def _display(self, value: Any) -> None:
        if value is None:
            return
        self.locals["_"] = value
        self.write(repr(value) + "\n")

    def _run_shell(self, command: str) -> None:
        if not command:
            return
        self._hooks.before_eval()
        try:
            self._hooks.system(command)
        finally:
            self._hooks.after_eval()

    def _run_edit(self, arguments: str) -> None:
        parts = shlex.split(arguments)
        if not parts:
            self.write("usage: %edit PATH [LINE]\n")
            return
        line = int(parts[1]) if len(parts) > 1 and parts[1].isdigit() else None
        try:
            self._hooks.editor(parts[0], line)
        except (OSError, RuntimeError, RemoteError) as exc:
            self.write(f"Could not edit {parts[0]}: {exc}\n")


def run_console(
    target: Any,
    *,
    input: LineReader,
    output: Writer,
    hooks: SessionHooks,
    options: Mapping[str, Any] | None = None,
) -> None:
    """Evaluator entry point used when a session is given no other evaluator."""
    options = options or {}
    console = RemoteConsole(namespace_for(target), input, output, hooks, options)
    console.install_completion()
    saved_prompts = (getattr(sys, "ps1", None), getattr(sys, "ps2", None))
    sys.ps1 = options.get("prompt", ">>> ")
    sys.ps2 = options.get("prompt_continue", "... ")
    try:
        console.interact(banner=options.get("banner", ""), exitmsg="")
    except SystemExit:
        logger.info("[pyremote] Session ended by exit()")
    finally:
        _restore_prompts(*saved_prompts)


def _restore_prompts(ps1: Any, ps2: Any) -> None:
    for name, value in (("ps1", ps1), ("ps2", ps2)):
        if value is None:
            if hasattr(sys, name):
                delattr(sys, name)
        else:
            setattr(sys, name, value)
