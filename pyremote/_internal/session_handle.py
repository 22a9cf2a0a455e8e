"""Shared coordination record between a host session and its operator."""

from __future__ import annotations

import logging
import threading
import time
from typing import Any

from .io_proxy import SessionInput, SessionOutput
from .rpc_serialization import ByReference

logger = logging.getLogger(__name__)

_FIELDS = ("input", "output", "stdout", "stderr", "editor", "terminator")


class Terminator(ByReference):
    """One-shot signal that ends the operator's wait.

    The host fires it when the session is over; the operator's own node fires
    it with ``lost=True`` when the host channel drops. Only the first firing
    counts.
    """

    def __init__(self) -> None:
        self._event = threading.Event()
        self._lock = threading.Lock()
        self._lost = False

    def fire(self, lost: bool = False) -> None:
        with self._lock:
            if self._event.is_set():
                return
            self._lost = lost
            self._event.set()

    def wait(self, timeout: float | None = None) -> bool:
        return self._event.wait(timeout)

    @property
    def fired(self) -> bool:
        return self._event.is_set()

    @property
    def lost(self) -> bool:
        return self._lost


class SessionHandle(ByReference):
    """Published by the host; the operator fills in its I/O capabilities.

    The operator writes each field once per attach cycle and the host only
    reads them, so no locking is needed.
    """

    def __init__(self) -> None:
        self.input: Any = None
        self.output: Any = None
        self.stdout: Any = None
        self.stderr: Any = None
        self.editor: Any = None
        self.terminator: Any = None

    def is_ready(self) -> bool:
        return self.input is not None and self.output is not None

    def wait(self, poll_interval: float = 0.01) -> None:
        """Block until both input and output have been assigned."""
        while not self.is_ready():
            time.sleep(poll_interval)

    def is_complete(self) -> bool:
        """True once the operator made its last assignment (the terminator)."""
        return self.terminator is not None

    def wait_complete(self, grace: float = 1.0, poll_interval: float = 0.01) -> bool:
        """Give the remaining assignments up to *grace* seconds to arrive."""
        deadline = time.monotonic() + grace
        while not self.is_complete() and time.monotonic() < deadline:
            time.sleep(poll_interval)
        return self.is_complete()

    def terminate(self, grace: float = 1.0, poll_interval: float = 0.01) -> None:
        """Tell the operator the session is over.

        The terminator is the operator's last assignment; give it *grace*
        seconds to arrive if the session ended very quickly.
        """
        if not self.wait_complete(grace, poll_interval):
            logger.info("[pyremote] Operator supplied no terminator; nothing to signal")
            return
        self.terminator.fire()

    def input_proxy(self) -> SessionInput:
        return SessionInput(self.input)

    def output_proxy(self) -> SessionOutput:
        return SessionOutput(self.output)

    def clear(self) -> None:
        for name in _FIELDS:
            setattr(self, name, None)
