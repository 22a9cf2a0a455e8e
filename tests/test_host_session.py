"""End-to-end tests: a RemoteSession and a Connector in one process."""

import io
import pydoc
import socket
import sys

import pytest

import pyremote
from pyremote import Connector, RemoteSession, SessionState, remote_repl
from pyremote.errors import AddressInUse

from fixtures.terminal import Background, FakeEditor, PromptlessInput, RecordingSink, ScriptedInput, echo_evaluator


def start_session(target, port, **kwargs):
    kwargs.setdefault("poll_interval", 0.005)
    kwargs.setdefault("attach_grace", 2.0)
    session = RemoteSession(target, "127.0.0.1", port, **kwargs)
    return session, Background(session.run)


def make_connector(port, lines=(), **kwargs):
    sink = RecordingSink()
    kwargs.setdefault("editor", FakeEditor())
    kwargs.setdefault("input", ScriptedInput(lines))
    connector = Connector(
        "127.0.0.1",
        port,
        wait=True,
        retry_interval=0.02,
        stdout=sink,
        **kwargs,
    )
    return connector, sink


class TestSessionLifecycle:
    def test_echo_session(self, free_port):
        session, task = start_session({}, free_port, evaluator=echo_evaluator)
        connector, sink = make_connector(free_port, ["hi\n"])

        connector.connect()
        task.join()

        assert task.error is None
        assert task.result == "hi\n"
        assert sink.text == "echo: hi\n"
        assert session.state is SessionState.DONE
        assert connector.sessions == 1

    def test_default_console(self, free_port):
        namespace = {}
        session, task = start_session(namespace, free_port)
        connector, sink = make_connector(free_port, ["x = 41\n", "x + 1\n"])

        connector.connect()
        task.join()

        assert task.error is None
        assert namespace["x"] == 41
        assert "42\n" in sink.text

    def test_default_console_prompts_promptless_reader(self, free_port):
        namespace = {}
        session, task = start_session(namespace, free_port)
        connector, sink = make_connector(free_port, input=PromptlessInput(["x = 41\n", "x + 1\n"]))

        connector.connect()
        task.join()

        assert task.error is None
        assert sink.text.startswith(">>> ")
        assert "42\n" in sink.text

    def test_options_reach_the_evaluator(self, free_port):
        seen = {}

        def evaluator(target, *, input, output, hooks, options):
            seen.update(options)

        task = Background(
            remote_repl, {}, "127.0.0.1", free_port,
            evaluator=evaluator, poll_interval=0.005, banner="hello",
        )
        connector, _ = make_connector(free_port)

        connector.connect()
        task.join()

        assert task.error is None
        assert seen == {"banner": "hello"}

    def test_package_alias(self):
        assert pyremote.pyremote is remote_repl

    def test_session_cannot_be_reused(self, free_port):
        session, task = start_session({}, free_port, evaluator=echo_evaluator)
        connector, _ = make_connector(free_port, ["x\n"])
        connector.connect()
        task.join()

        with pytest.raises(RuntimeError, match="already used"):
            session.run()

    def test_address_in_use(self, free_port):
        with socket.socket() as blocker:
            blocker.setsockopt(socket.SOL_SOCKET, socket.SO_REUSEADDR, 1)
            blocker.bind(("127.0.0.1", free_port))
            blocker.listen(1)

            session = RemoteSession({}, "127.0.0.1", free_port)
            with pytest.raises(AddressInUse):
                session.run()
            assert session.state is SessionState.IDLE


class TestTeardown:
    def test_failing_evaluator_restores_global_state(self, free_port):
        saved = (pydoc.pager, sys.stdout, sys.stderr)

        def evaluator(target, *, input, output, hooks, options):
            hooks.before_eval()
            raise ValueError("evaluator crashed")

        session, task = start_session({}, free_port, evaluator=evaluator)
        connector, _ = make_connector(free_port, capture=True, stderr=RecordingSink())

        connector.connect()
        task.join()

        assert isinstance(task.error, ValueError)
        assert (pydoc.pager, sys.stdout, sys.stderr) == saved
        assert session.state is SessionState.DONE
        assert session.handle.input is None

    def test_teardown_logs(self, free_port, caplog):
        session, task = start_session({}, free_port, evaluator=echo_evaluator)
        connector, _ = make_connector(free_port, ["x\n"])

        with caplog.at_level("INFO", logger="pyremote"):
            connector.connect()
            task.join()

        assert "[pyremote] Remote session terminated" in caplog.text
        assert "[pyremote] Ensure stop service" in caplog.text

    def test_notices_printed_without_logging_setup(self, free_port, capsys):
        session, task = start_session({}, free_port, evaluator=echo_evaluator)
        connector, _ = make_connector(free_port, ["x\n"])

        connector.connect()
        task.join()

        err = capsys.readouterr().err
        assert f"[pyremote] Waiting for client on pyremote://127.0.0.1:{free_port}" in err
        assert "[pyremote] Client received, starting remote session" in err
        assert "[pyremote] Remote session terminated" in err

    def test_notices_stream(self, free_port, capsys):
        notices = io.StringIO()
        session, task = start_session({}, free_port, evaluator=echo_evaluator, notices=notices)
        connector, _ = make_connector(free_port, ["x\n"])

        connector.connect()
        task.join()

        lines = notices.getvalue().splitlines()
        assert lines[0] == f"[pyremote] Waiting for client on {session.uri}"
        assert lines[-1] == "[pyremote] Ensure stop service"
        assert "Waiting for client" not in capsys.readouterr().err


class TestHooks:
    def test_capture_routes_prints_to_operator(self, free_port, capsys):
        saved = (sys.stdout, sys.stderr)

        def evaluator(target, *, input, output, hooks, options):
            hooks.before_eval()
            try:
                print("hello")
                print("oops", file=sys.stderr)
            finally:
                hooks.after_eval()
            print("after")

        session, task = start_session({}, free_port, evaluator=evaluator)
        stderr = RecordingSink()
        connector, sink = make_connector(free_port, capture=True, stderr=stderr)

        connector.connect()
        task.join()

        assert task.error is None
        assert sink.text == "hello\n"
        assert stderr.text == "oops\n"
        assert (sys.stdout, sys.stderr) == saved
        host_out = capsys.readouterr().out
        assert "hello" not in host_out
        assert "after" in host_out

    def test_without_capture_prints_stay_local(self, free_port, capsys):
        def evaluator(target, *, input, output, hooks, options):
            hooks.before_eval()
            try:
                print("local")
            finally:
                hooks.after_eval()

        session, task = start_session({}, free_port, evaluator=evaluator)
        connector, sink = make_connector(free_port)

        connector.connect()
        task.join()

        assert sink.text == ""
        assert "local" in capsys.readouterr().out

    def test_shell_hook(self, free_port):
        statuses = []

        def evaluator(target, *, input, output, hooks, options):
            statuses.append(hooks.system("echo relayed"))
            statuses.append(hooks.system("exit 2"))

        session, task = start_session({}, free_port, evaluator=evaluator)
        connector, sink = make_connector(free_port)

        connector.connect()
        task.join()

        assert statuses == [0, 2]
        assert sink.text == "relayed\nError while executing command: exit 2 (exit status 2)\n"

    def test_editor_hook(self, free_port, tmp_path):
        path = tmp_path / "edit_me.py"
        path.write_text("value = 1\n", encoding="utf-8")
        editor = FakeEditor()

        def evaluator(target, *, input, output, hooks, options):
            hooks.editor(str(path), 1)

        session, task = start_session({}, free_port, evaluator=evaluator)
        connector, _ = make_connector(free_port, editor=editor)

        connector.connect()
        task.join()

        assert task.error is None
        assert editor.requests == [("value = 1\n", 1)]
        assert path.read_text(encoding="utf-8") == "VALUE = 1\n"

    def test_pager_writes_into_session(self, free_port):
        def evaluator(target, *, input, output, hooks, options):
            assert hooks.pager is False
            pydoc.pager("paged text")

        saved_pager = pydoc.pager
        session, task = start_session({}, free_port, evaluator=evaluator)
        connector, sink = make_connector(free_port)

        connector.connect()
        task.join()

        assert task.error is None
        assert sink.text == "paged text\n"
        assert pydoc.pager is saved_pager
