"""
Pytest configuration and fixtures.

Add any shared fixtures or pytest configuration here.
"""

import logging
import socket
import sys

import pytest

from pyremote._internal.serialization_registry import SerializerRegistry


def pytest_configure(config):
    """Configure pytest with custom settings."""
    log_level = logging.DEBUG if config.getoption("--debug-pyremote") else logging.INFO

    logging.basicConfig(
        level=log_level,
        format="%(asctime)s - %(name)s - %(levelname)s - [%(filename)s:%(lineno)d] - %(message)s",
        handlers=[logging.StreamHandler(sys.__stderr__)],
        force=True,
    )
    logging.getLogger("pyremote").setLevel(log_level)

    custom_log_file = config.getoption("--pyremote-log-file")
    if custom_log_file:
        file_handler = logging.FileHandler(custom_log_file)
        file_handler.setLevel(log_level)
        file_handler.setFormatter(
            logging.Formatter(
                "%(asctime)s - %(name)s - %(levelname)s - [%(filename)s:%(lineno)d] - %(message)s"
            )
        )
        logging.getLogger().addHandler(file_handler)


def pytest_addoption(parser):
    """Add custom command line options."""
    parser.addoption(
        "--debug-pyremote",
        action="store_true",
        default=False,
        help="Enable debug logging for pyremote (shows every RPC call)",
    )
    parser.addoption(
        "--pyremote-log-file",
        action="store",
        default=None,
        help="Log pyremote debug output to specified file",
    )


@pytest.fixture
def free_port():
    """A loopback port nothing is listening on."""
    with socket.socket(socket.AF_INET, socket.SOCK_STREAM) as sock:
        sock.bind(("127.0.0.1", 0))
        return sock.getsockname()[1]


@pytest.fixture
def clean_registry():
    registry = SerializerRegistry.get_instance()
    registry.clear()
    yield registry
    registry.clear()
