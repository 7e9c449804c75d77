"""Events reported by sessions to the application layer."""
from __future__ import annotations

import dataclasses

from peermatch.chat import ChatEntry
from peermatch.profile import Profile
from peermatch.transport.protocols import Connectivity
from peermatch.transport.protocols import TransportStats


@dataclasses.dataclass(frozen=True)
class SessionEvent:
    """Base event.

    Attributes:
        peer_id: Participant identifier of the remote peer.
    """

    peer_id: str


@dataclasses.dataclass(frozen=True)
class PeerDiscovered(SessionEvent):
    """A session was created for a newly discovered peer."""

    initiator: bool


@dataclasses.dataclass(frozen=True)
class SessionOpened(SessionEvent):
    """The message channel to the peer is open."""

    pass


@dataclasses.dataclass(frozen=True)
class ProfileUpdated(SessionEvent):
    """The peer sent a new profile."""

    profile: Profile


@dataclasses.dataclass(frozen=True)
class LikeReceived(SessionEvent):
    """The peer liked the local participant."""

    pass


@dataclasses.dataclass(frozen=True)
class Matched(SessionEvent):
    """Both participants like each other."""

    profile: Profile | None


@dataclasses.dataclass(frozen=True)
class ChatReceived(SessionEvent):
    """The peer sent a chat message.

    Attributes:
        entry: The message as recorded in the chat log.
        active: The peer is the active conversation so the message should
            be displayed immediately.
    """

    entry: ChatEntry
    active: bool


@dataclasses.dataclass(frozen=True)
class ConnectivityChanged(SessionEvent):
    """The transport reported a new connectivity state."""

    connectivity: Connectivity


@dataclasses.dataclass(frozen=True)
class StatsUpdated(SessionEvent):
    """A new connection statistics sample was recorded."""

    stats: TransportStats


@dataclasses.dataclass(frozen=True)
class SessionClosed(SessionEvent):
    """The session ended and the peer should be removed from display."""

    reason: str
