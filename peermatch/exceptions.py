"""Exception types for peer session errors."""
from __future__ import annotations


class PeerMatchError(Exception):
    """Base exception type for peer session errors."""

    pass


class UnreachablePeerError(PeerMatchError):
    """Relay target is not connected.

    The relay drops such messages silently so this is only used to describe
    the condition in logs, never raised to the sender.
    """

    pass


class HandshakeOutOfOrderError(PeerMatchError):
    """A handshake step was attempted in an invalid session state."""

    pass


class HandshakeTimeoutError(PeerMatchError):
    """The handshake did not complete within the timeout."""

    pass


class TransportFailureError(PeerMatchError):
    """The transport to the peer failed or was closed."""

    pass


class MalformedMessageError(PeerMatchError):
    """An application message could not be parsed."""

    pass


class SessionClosedError(PeerMatchError):
    """Operation requires a session that is open."""

    pass
