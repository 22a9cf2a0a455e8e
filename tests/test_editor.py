"""Tests for editing files through the operator's editor."""

import sys

import pytest

from pyremote._internal.editor import EditorDelegate, default_editor_command, edit_file

from fixtures.terminal import FakeEditor


def test_default_editor_prefers_visual(monkeypatch):
    monkeypatch.setenv("VISUAL", "nano")
    monkeypatch.setenv("EDITOR", "ed")

    assert default_editor_command() == "nano"


def test_default_editor_falls_back(monkeypatch):
    monkeypatch.delenv("VISUAL", raising=False)
    monkeypatch.delenv("EDITOR", raising=False)

    assert default_editor_command() == "vi"


def test_edit_file_round_trips_content(tmp_path):
    path = tmp_path / "script.py"
    path.write_text("print('hi')\n", encoding="utf-8")
    editor = FakeEditor()

    edit_file(editor, path, 3)

    assert path.read_text(encoding="utf-8") == "PRINT('HI')\n"
    assert editor.requests == [("print('hi')\n", 3)]


def test_edit_file_creates_missing_file(tmp_path):
    path = tmp_path / "new.py"

    edit_file(FakeEditor(), path)

    assert path.exists()
    assert path.read_text(encoding="utf-8") == ""


def test_edit_file_without_editor(tmp_path):
    with pytest.raises(RuntimeError, match="did not supply an editor"):
        edit_file(None, tmp_path / "x.py")


@pytest.mark.skipif(sys.platform == "win32", reason="POSIX shell required")
def test_editor_delegate_runs_command(tmp_path):
    script = tmp_path / "fake-editor"
    log = tmp_path / "argv"
    script.write_text(
        "#!/bin/sh\n"
        f'echo "$@" > {log}\n'
        'for last; do :; done\n'
        'echo "# edited" >> "$last"\n',
        encoding="utf-8",
    )
    script.chmod(0o755)

    delegate = EditorDelegate(str(script))
    result = delegate.edit("x = 1\n", line=7)

    assert result == "x = 1\n# edited\n"
    argv = log.read_text(encoding="utf-8").split()
    assert argv[0] == "+7"
    assert argv[1].endswith(".py")


@pytest.mark.skipif(sys.platform == "win32", reason="POSIX shell required")
def test_editor_failure_still_returns_content(caplog):
    delegate = EditorDelegate("false")

    assert delegate("unchanged\n") == "unchanged\n"
    assert "exited with status" in caplog.text
