"""Editor delegation between host and operator.

The host never launches an editor itself: it sends the file's content to the
operator's EditorDelegate, which edits a temporary copy in the operator's own
terminal and returns the new content.
"""

from __future__ import annotations

import contextlib
import logging
import os
import shlex
import subprocess
import tempfile
from pathlib import Path
from typing import Any

from .rpc_serialization import ByReference

logger = logging.getLogger(__name__)


def default_editor_command() -> str:
    return os.environ.get("VISUAL") or os.environ.get("EDITOR") or "vi"


class EditorDelegate(ByReference):
    """Operator-side editor: ``edit(content, line) -> new content``."""

    def __init__(self, command: str | None = None, suffix: str = ".py") -> None:
        self._command = command
        self._suffix = suffix

    def edit(self, content: str, line: int | None = None) -> str:
        fd, path = tempfile.mkstemp(prefix="pyremote-", suffix=self._suffix)
        try:
            with os.fdopen(fd, "w", encoding="utf-8") as fh:
                fh.write(content)
            argv = shlex.split(self._command or default_editor_command())
            if line:
                argv.append(f"+{int(line)}")
            argv.append(path)
            result = subprocess.run(argv, check=False)
            if result.returncode != 0:
                logger.warning("Editor %s exited with status %s", argv[0], result.returncode)
            return Path(path).read_text(encoding="utf-8")
        finally:
            with contextlib.suppress(OSError):
                os.unlink(path)

    def __call__(self, content: str, line: int | None = None) -> str:
        return self.edit(content, line)


def edit_file(editor: Any, path: str | os.PathLike[str], line: int | None = None) -> None:
    """Round-trip *path* through a (remote) editor and write the result back."""
    if editor is None:
        raise RuntimeError("The attached operator did not supply an editor")
    target = Path(path)
    content = target.read_text(encoding="utf-8") if target.exists() else ""
    target.write_text(editor.edit(content, line), encoding="utf-8")
