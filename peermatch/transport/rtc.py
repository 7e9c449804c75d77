"""WebRTC transport built on aiortc."""
from __future__ import annotations

import contextlib
import json
import logging
import warnings
from typing import Any
from typing import Generator
from typing import Sequence

from aiortc import RTCConfiguration
from aiortc import RTCDataChannel
from aiortc import RTCIceCandidate
from aiortc import RTCIceServer
from aiortc import RTCPeerConnection
from aiortc import RTCSessionDescription
from aiortc.contrib.signaling import object_from_string
from aiortc.contrib.signaling import object_to_string
from aiortc.exceptions import InvalidStateError
from cryptography.utils import CryptographyDeprecationWarning

from peermatch.transport.exceptions import TransportStateError
from peermatch.transport.protocols import Callback
from peermatch.transport.protocols import ChannelData
from peermatch.transport.protocols import Connectivity
from peermatch.transport.protocols import HandshakeMessage
from peermatch.transport.protocols import RouteKind
from peermatch.transport.protocols import TransportStats

warnings.simplefilter('ignore', CryptographyDeprecationWarning)

logger = logging.getLogger(__name__)

DEFAULT_ICE_SERVERS = ('stun:stun.l.google.com:19302',)


class RTCChannel:
    """Message channel backed by an aiortc data channel."""

    def __init__(self, channel: RTCDataChannel) -> None:
        self._channel = channel

    @property
    def label(self) -> str:
        """Channel label."""
        return self._channel.label

    @property
    def ready_state(self) -> str:
        """One of `connecting`, `open`, `closing`, or `closed`."""
        return self._channel.readyState

    def send(self, data: ChannelData) -> None:
        """Send a message to the peer.

        Raises:
            TransportStateError: If the channel is not open.
        """
        try:
            self._channel.send(data)
        except InvalidStateError as e:
            raise TransportStateError(str(e)) from e

    def on_open(self, callback: Callback) -> None:
        """Register a callback invoked once the channel is usable."""
        self._channel.on('open', callback)

    def on_message(self, callback: Callback) -> None:
        """Register a callback invoked with each received message."""
        self._channel.on('message', callback)

    def close(self) -> None:
        """Close the channel."""
        self._channel.close()


class RTCTransport:
    """Peer-to-peer transport using an aiortc peer connection.

    aiortc gathers all reachability candidates before a local description
    is set, so candidates are embedded in the offer and answer. Separate
    candidate messages from other implementations (e.g., browsers using
    trickle ICE) are still accepted by
    [`supply_candidate()`][peermatch.transport.rtc.RTCTransport.supply_candidate].

    Args:
        ice_servers: STUN/TURN server URLs. Defaults to a public STUN
            server. Pass an empty sequence to only use local candidates.
    """

    def __init__(
        self,
        ice_servers: Sequence[str] | None = DEFAULT_ICE_SERVERS,
    ) -> None:
        servers = [] if ice_servers is None else list(ice_servers)
        configuration = RTCConfiguration(
            iceServers=[RTCIceServer(urls=url) for url in servers],
        )
        self._pc = RTCPeerConnection(configuration=configuration)
        self._connectivity_callbacks: list[Callback] = []
        self._candidate_callbacks: list[Callback] = []
        self._pc.on('connectionstatechange', self._on_connectionstatechange)

    def _on_connectionstatechange(self) -> None:
        state = self._pc.connectionState
        try:
            connectivity = Connectivity(state)
        except ValueError:
            # aiortc reports 'new' before any connection attempt
            return
        for callback in self._connectivity_callbacks:
            callback(connectivity)

    def _description(self) -> HandshakeMessage:
        return json.loads(object_to_string(self._pc.localDescription))

    async def begin_as_initiator(self) -> HandshakeMessage:
        """Create the local offer."""
        try:
            await self._pc.setLocalDescription(await self._pc.createOffer())
        except InvalidStateError as e:
            raise TransportStateError(str(e)) from e
        return self._description()

    async def begin_as_responder(
        self,
        offer: HandshakeMessage,
    ) -> HandshakeMessage:
        """Apply the remote offer and create the local answer."""
        description = _parse(offer, RTCSessionDescription)
        with _rejects_remote_input('apply remote offer'):
            await self._pc.setRemoteDescription(description)
            await self._pc.setLocalDescription(await self._pc.createAnswer())
        return self._description()

    async def supply_remote_handshake(self, answer: HandshakeMessage) -> None:
        """Apply the remote answer.

        Raises:
            TransportStateError: If no local offer has been created.
        """
        if self._pc.localDescription is None:
            raise TransportStateError(
                'Cannot apply a remote answer before the local offer exists.',
            )
        description = _parse(answer, RTCSessionDescription)
        with _rejects_remote_input('apply remote answer'):
            await self._pc.setRemoteDescription(description)

    async def supply_candidate(self, candidate: HandshakeMessage) -> None:
        """Add a remote reachability candidate.

        Raises:
            TransportStateError: If the candidate cannot be applied.
        """
        parsed = _parse(candidate, RTCIceCandidate)
        with _rejects_remote_input('add remote candidate'):
            await self._pc.addIceCandidate(parsed)

    def open_channel(self, label: str) -> RTCChannel:
        """Create a message channel. Must be called before the offer."""
        return RTCChannel(self._pc.createDataChannel(label))

    def on_channel_offered(self, callback: Callback) -> None:
        """Register a callback invoked with channels opened by the peer."""

        def _on_datachannel(channel: RTCDataChannel) -> None:
            callback(RTCChannel(channel))

        self._pc.on('datachannel', _on_datachannel)

    def on_local_candidate(self, callback: Callback) -> None:
        """Register a callback invoked with local reachability candidates.

        aiortc embeds every gathered candidate in the local description and
        never trickles them, so the callbacks are stored but not invoked.
        """
        if not self._candidate_callbacks:
            logger.debug(
                'aiortc does not trickle ICE, local candidates are sent '
                'in the offer or answer',
            )
        self._candidate_callbacks.append(callback)

    def on_connectivity_change(self, callback: Callback) -> None:
        """Register a callback invoked with new connectivity states."""
        self._connectivity_callbacks.append(callback)

    async def get_stats(self) -> TransportStats:
        """Sample connection statistics.

        aiortc does not measure round trip times for data-only connections
        so only the route kind is reported.
        """
        return TransportStats(
            round_trip_time_ms=None,
            route_kind=RouteKind.from_candidate_type(
                self._remote_candidate_type(),
            ),
        )

    def _remote_candidate_type(self) -> str | None:
        # aiortc does not expose the nominated ICE pair so we read it from
        # the underlying aioice connection.
        sctp = self._pc.sctp
        if sctp is None:
            return None
        try:
            connection = sctp.transport.transport._connection
            pairs = list(connection._nominated.values())
        except AttributeError:
            return None
        return pairs[0].remote_candidate.type if pairs else None

    async def close(self) -> None:
        """Close the peer connection and all of its channels."""
        await self._pc.close()


@contextlib.contextmanager
def _rejects_remote_input(action: str) -> Generator[None, None, None]:
    """Report any failure to use input from the peer as a state error.

    aiortc raises assorted exception types on malformed SDP and candidate
    lines, including bare assertion errors.
    """
    try:
        yield
    except TransportStateError:
        raise
    except Exception as e:
        raise TransportStateError(f'Failed to {action}: {e!r}') from e


def _parse(message: HandshakeMessage, expected: type[Any]) -> Any:
    with _rejects_remote_input('parse handshake message'):
        obj = object_from_string(json.dumps(message))
    if not isinstance(obj, expected):
        raise TransportStateError(
            f'Expected {expected.__name__} but got {type(obj).__name__}.',
        )
    return obj
