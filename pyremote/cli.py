"""Command-line entry point for attaching to a remote session."""

from __future__ import annotations

import argparse
import logging
import sys
from collections.abc import Sequence

from .config import DEFAULT_HOST, DEFAULT_PORT, uri_for
from .connector import Connector


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="pyremote",
        description="Attach this terminal to a Python session published with pyremote.remote_repl().",
    )
    parser.add_argument("-s", "--server", default=DEFAULT_HOST, help=f"Host of the server ({DEFAULT_HOST})")
    parser.add_argument("-p", "--port", type=int, default=DEFAULT_PORT, help=f"Port of the server ({DEFAULT_PORT})")
    parser.add_argument(
        "-w", "--wait", action="store_true", help="Wait for the server to come up instead of failing"
    )
    parser.add_argument(
        "-P", "--persist", action="store_true", help="Reattach after every session (implies --wait)"
    )
    parser.add_argument(
        "-c", "--capture", action="store_true", help="Capture the server's stdout/stderr into this terminal"
    )
    parser.add_argument("-v", "--verbose", action="store_true", help="Log connection details")
    return parser


def main(argv: Sequence[str] | None = None) -> int:
    args = build_parser().parse_args(argv)

    logging.basicConfig(
        level=logging.DEBUG if args.verbose else logging.WARNING,
        format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
        stream=sys.stderr,
    )

    connector = Connector(
        args.server,
        args.port,
        wait=args.wait,
        persist=args.persist,
        capture=args.capture,
    )
    try:
        connector.run()
    except ConnectionError as exc:
        print(f"pyremote: cannot connect to {uri_for(args.server, args.port)}: {exc}", file=sys.stderr)
        return 1
    except KeyboardInterrupt:
        return 130
    return 0


if __name__ == "__main__":
    sys.exit(main())
