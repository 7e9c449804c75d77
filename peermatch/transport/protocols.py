"""Transport interface protocols."""
from __future__ import annotations

import dataclasses
import enum
from typing import Any
from typing import Callable
from typing import Dict
from typing import Protocol
from typing import runtime_checkable
from typing import Union

HandshakeMessage = Dict[str, Any]
"""JSON-compatible handshake payload.

The `type` key is one of `offer`, `answer`, or `candidate`. All other keys
are opaque to everything except the transport that produced the message.
"""

ChannelData = Union[bytes, str]

Callback = Callable[..., None]
"""Transports invoke callbacks synchronously from the event loop."""


class Connectivity(enum.Enum):
    """Connectivity state reported by a transport."""

    CONNECTING = 'connecting'
    CONNECTED = 'connected'
    DISCONNECTED = 'disconnected'
    FAILED = 'failed'
    CLOSED = 'closed'

    @property
    def terminal(self) -> bool:
        """The transport will never recover from this state."""
        return self in (Connectivity.FAILED, Connectivity.CLOSED)


class RouteKind(enum.Enum):
    """Classification of the established peer-to-peer path."""

    DIRECT_LOCAL = 'direct-local'
    DIRECT_NAT_TRAVERSED = 'direct-nat-traversed'
    RELAYED = 'relayed'
    UNKNOWN = 'unknown'

    @classmethod
    def from_candidate_type(cls, candidate_type: str | None) -> RouteKind:
        """Map an ICE candidate type to a route kind."""
        return {
            'host': cls.DIRECT_LOCAL,
            'srflx': cls.DIRECT_NAT_TRAVERSED,
            'prflx': cls.DIRECT_NAT_TRAVERSED,
            'relay': cls.RELAYED,
        }.get(candidate_type or '', cls.UNKNOWN)


@dataclasses.dataclass(frozen=True)
class TransportStats:
    """Connection statistics sample.

    Attributes:
        round_trip_time_ms: Round trip time in milliseconds if known.
        route_kind: Kind of path the connection uses.
    """

    round_trip_time_ms: float | None = None
    route_kind: RouteKind = RouteKind.UNKNOWN


@runtime_checkable
class Channel(Protocol):
    """Bidirectional message channel between two peers."""

    @property
    def label(self) -> str:
        """Channel label."""
        ...

    @property
    def ready_state(self) -> str:
        """One of `connecting`, `open`, `closing`, or `closed`."""
        ...

    def send(self, data: ChannelData) -> None:
        """Send a message to the peer.

        Raises:
            TransportStateError: If the channel is not open.
        """
        ...

    def on_open(self, callback: Callback) -> None:
        """Register a callback invoked once the channel is usable."""
        ...

    def on_message(self, callback: Callback) -> None:
        """Register a callback invoked with each received message."""
        ...

    def close(self) -> None:
        """Close the channel."""
        ...


@runtime_checkable
class Transport(Protocol):
    """Peer-to-peer transport used by a single session.

    A transport is created for exactly one remote peer and is closed when
    the session owning it ends.
    """

    async def begin_as_initiator(self) -> HandshakeMessage:
        """Create the local offer."""
        ...

    async def begin_as_responder(
        self,
        offer: HandshakeMessage,
    ) -> HandshakeMessage:
        """Apply the remote offer and create the local answer."""
        ...

    async def supply_remote_handshake(self, answer: HandshakeMessage) -> None:
        """Apply the remote answer.

        Raises:
            TransportStateError: If no local offer has been created.
        """
        ...

    async def supply_candidate(self, candidate: HandshakeMessage) -> None:
        """Add a remote reachability candidate."""
        ...

    def open_channel(self, label: str) -> Channel:
        """Create a message channel. Must be called before the offer."""
        ...

    def on_channel_offered(self, callback: Callback) -> None:
        """Register a callback invoked with channels opened by the peer."""
        ...

    def on_local_candidate(self, callback: Callback) -> None:
        """Register a callback invoked with local reachability candidates."""
        ...

    def on_connectivity_change(self, callback: Callback) -> None:
        """Register a callback invoked with new connectivity states."""
        ...

    async def get_stats(self) -> TransportStats:
        """Sample connection statistics."""
        ...

    async def close(self) -> None:
        """Close the transport and all of its channels."""
        ...
