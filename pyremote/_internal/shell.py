"""Shell command relay for remote sessions.

Output is forwarded chunk by chunk as it arrives, not line by line, so
interleaved stdout/stderr stays in order and partial lines (prompts,
progress bars) are not held back.
"""

from __future__ import annotations

import codecs
import logging
import os
import selectors
import subprocess
from typing import IO, Any, cast

logger = logging.getLogger(__name__)

CHUNK_SIZE = 1024


def relay_command(output: Any, command: str, chunk_size: int = CHUNK_SIZE) -> int:
    """Run *command* through the shell, streaming its output into *output*.

    A non-zero exit is reported as a single line on *output*. Returns the
    exit status.
    """
    logger.debug("Relaying shell command: %s", command)
    proc = subprocess.Popen(
        command,
        shell=True,
        stdin=subprocess.DEVNULL,
        stdout=subprocess.PIPE,
        stderr=subprocess.PIPE,
    )
    stdout = cast(IO[bytes], proc.stdout)
    stderr = cast(IO[bytes], proc.stderr)
    decoders = {
        stdout.fileno(): codecs.getincrementaldecoder("utf-8")(errors="replace"),
        stderr.fileno(): codecs.getincrementaldecoder("utf-8")(errors="replace"),
    }
    try:
        with selectors.DefaultSelector() as selector:
            selector.register(stdout, selectors.EVENT_READ)
            selector.register(stderr, selectors.EVENT_READ)
            while selector.get_map():
                for key, _ in selector.select():
                    chunk = os.read(key.fd, chunk_size)
                    decoder = decoders[key.fd]
                    if not chunk:
                        selector.unregister(key.fileobj)
                        text = decoder.decode(b"", final=True)
                    else:
                        text = decoder.decode(chunk)
                    if text:
                        output.write(text)
        status = proc.wait()
    finally:
        stdout.close()
        stderr.close()
        if proc.poll() is None:
            proc.kill()
            proc.wait()

    if status != 0:
        output.write(f"Error while executing command: {command} (exit status {status})\n")
    return status
