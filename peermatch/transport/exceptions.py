"""Exception types raised by transports."""
from __future__ import annotations


class TransportError(Exception):
    """Base exception type for transport errors."""

    pass


class TransportStateError(TransportError):
    """A transport operation was called in an invalid state."""

    pass
