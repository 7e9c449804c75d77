"""Network helpers for tests."""
from __future__ import annotations

import socket


def open_port() -> int:
    """Find a TCP port on localhost that is currently free.

    The port is released before returning so another process could claim
    it first, which is acceptable for tests.
    """
    with socket.socket(socket.AF_INET, socket.SOCK_STREAM) as s:
        s.bind(('localhost', 0))
        return s.getsockname()[1]
