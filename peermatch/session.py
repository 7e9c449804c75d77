"""Per-peer session state machine.

A [`Session`][peermatch.session.Session] drives the handshake with one
remote participant, exchanges application messages once the direct channel
is open, and tears the connection down when the participant leaves.

Every input to a session (relay signals, transport callbacks, channel
messages, and stats samples) is posted to the session's inbox and handled
in arrival order by a single task running
[`Session.run()`][peermatch.session.Session.run]. Handlers of different
sessions interleave freely because each session has its own task.
"""
from __future__ import annotations

import asyncio
import enum
import logging
from typing import Any
from typing import Awaitable
from typing import Callable

from peermatch.chat import ChatEntry
from peermatch.chat import ChatLog
from peermatch.events import ChatReceived
from peermatch.events import ConnectivityChanged
from peermatch.events import LikeReceived
from peermatch.events import Matched
from peermatch.events import ProfileUpdated
from peermatch.events import SessionClosed
from peermatch.events import SessionEvent
from peermatch.events import SessionOpened
from peermatch.events import StatsUpdated
from peermatch.exceptions import HandshakeOutOfOrderError
from peermatch.exceptions import HandshakeTimeoutError
from peermatch.exceptions import SessionClosedError
from peermatch.exceptions import TransportFailureError
from peermatch.match import MatchTracker
from peermatch.messages import ChatMessage
from peermatch.messages import decode_message
from peermatch.messages import encode_message
from peermatch.messages import LikeMessage
from peermatch.messages import Message
from peermatch.messages import MessageDecodeError
from peermatch.messages import ProfileMessage
from peermatch.messages import UnknownMessageTypeError
from peermatch.profile import Profile
from peermatch.transport.exceptions import TransportStateError
from peermatch.transport.protocols import Channel
from peermatch.transport.protocols import ChannelData
from peermatch.transport.protocols import Connectivity
from peermatch.transport.protocols import HandshakeMessage
from peermatch.transport.protocols import RouteKind
from peermatch.transport.protocols import Transport
from peermatch.transport.protocols import TransportStats

logger = logging.getLogger(__name__)

CHANNEL_LABEL = 'profile-exchange'

SignalSender = Callable[[str, HandshakeMessage], Awaitable[None]]


class SessionState(enum.Enum):
    """Lifecycle state of a session."""

    NEW = 'new'
    """Session exists but no handshake message was exchanged."""
    HANDSHAKE = 'handshake'
    """Offer/answer exchange is in progress."""
    OPEN = 'open'
    """The message channel is usable."""
    CLOSED = 'closed'
    """Terminal state. The transport has been released."""


class Role(enum.Enum):
    """Which side of the handshake a session plays."""

    INITIATOR = 'initiator'
    """Creates the channel and sends the offer."""
    RESPONDER = 'responder'
    """Waits for the offer and replies with an answer."""


class _Input(enum.Enum):
    START = 'start'
    SIGNAL = 'signal'
    LOCAL_CANDIDATE = 'local-candidate'
    CHANNEL = 'channel'
    CHANNEL_OPEN = 'channel-open'
    MESSAGE = 'message'
    CONNECTIVITY = 'connectivity'
    STATS = 'stats'
    WAKE = 'wake'


def short_id(participant_id: str) -> str:
    """Shorten a participant identifier for log messages."""
    return participant_id[: min(8, len(participant_id))]


class Session:
    """Connection and application state for one remote participant.

    The session exclusively owns its transport and closes it exactly once.
    Sessions are normally created and owned by the
    [`SessionRegistry`][peermatch.registry.SessionRegistry].

    Handshake ordering:

    * The initiator opens the message channel, creates the offer, and
      applies the answer.
    * The responder applies the offer and replies with exactly one answer.
    * Remote candidates are only given to the transport once the offer and
      answer have both been exchanged. Candidates that arrive earlier are
      queued and replayed in arrival order.

    Once the channel opens the initiator sends its profile. The responder
    replies with its own profile when the first profile arrives. A like
    issued before the channel opened is sent right after the profile.

    Args:
        local_id: Participant identifier of the local client.
        peer_id: Participant identifier of the remote peer.
        transport: Transport to the peer. Owned by the session.
        role: Handshake role of this side.
        send_signal: Coroutine function used to send a handshake message to
            the peer via the relay.
        local_profile: Callable returning the current local profile.
        events: Queue that session events are put on.
        chat_log: Chat history shared by all sessions of the client.
        handshake_timeout: Seconds to wait for the channel to open before
            closing the session. `None` waits forever.
        on_close: Callback invoked with the session when it closes.
    """

    def __init__(
        self,
        local_id: str,
        peer_id: str,
        transport: Transport,
        role: Role,
        *,
        send_signal: SignalSender,
        local_profile: Callable[[], Profile],
        events: asyncio.Queue[SessionEvent],
        chat_log: ChatLog | None = None,
        handshake_timeout: float | None = 30,
        on_close: Callable[[Session], None] | None = None,
    ) -> None:
        self._local_id = local_id
        self._peer_id = peer_id
        self._transport = transport
        self._role = role
        self._send_signal = send_signal
        self._local_profile = local_profile
        self._events = events
        self._chat_log = chat_log if chat_log is not None else ChatLog()
        self._handshake_timeout = handshake_timeout
        self._on_close = on_close

        self._state = SessionState.NEW
        self._close_reason: str | None = None
        self._inbox: asyncio.Queue[tuple[_Input, Any]] = asyncio.Queue()

        self._channel: Channel | None = None
        self._offer_sent = False
        self._answer_sent = False
        self._paired = False
        self._pending_candidates: list[HandshakeMessage] = []

        self._remote_profile: Profile | None = None
        self._profile_sent = False
        self._liked_by_me = False
        self._likes_me = False
        self._match_tracker = MatchTracker()

        self._connectivity: Connectivity | None = None
        self._latency_ms: float | None = None
        self._route_kind = RouteKind.UNKNOWN

        transport.on_connectivity_change(
            lambda state: self._post(_Input.CONNECTIVITY, state),
        )
        transport.on_local_candidate(
            lambda candidate: self._post(_Input.LOCAL_CANDIDATE, candidate),
        )
        transport.on_channel_offered(self._watch_channel)

    def __repr__(self) -> str:
        return (
            f'{self.__class__.__name__}(peer_id={self.peer_id}, '
            f'role={self.role.value}, state={self.state.value})'
        )

    @property
    def _log_prefix(self) -> str:
        local = short_id(self._local_id)
        remote = short_id(self.peer_id)
        return f'{self.__class__.__name__}[{local} > {remote}]'

    @property
    def peer_id(self) -> str:
        """Participant identifier of the remote peer."""
        return self._peer_id

    @property
    def role(self) -> Role:
        """Handshake role of this side."""
        return self._role

    @property
    def state(self) -> SessionState:
        """Current lifecycle state."""
        return self._state

    @property
    def close_reason(self) -> str | None:
        """Why the session closed, if it has."""
        return self._close_reason

    @property
    def transport(self) -> Transport:
        """Transport to the peer."""
        return self._transport

    @property
    def remote_profile(self) -> Profile | None:
        """Last profile received from the peer."""
        return self._remote_profile

    @property
    def liked_by_me(self) -> bool:
        """The local participant liked the peer."""
        return self._liked_by_me

    @property
    def likes_me(self) -> bool:
        """The peer liked the local participant."""
        return self._likes_me

    @property
    def matched(self) -> bool:
        """Both participants like each other."""
        return self._match_tracker.matched

    @property
    def connectivity(self) -> Connectivity | None:
        """Last connectivity state reported by the transport."""
        return self._connectivity

    @property
    def latency_ms(self) -> float | None:
        """Last round trip time sample in milliseconds."""
        return self._latency_ms

    @property
    def route_kind(self) -> RouteKind:
        """Last observed route kind."""
        return self._route_kind

    @property
    def pending_candidates(self) -> int:
        """Number of remote candidates waiting for the handshake to pair."""
        return len(self._pending_candidates)

    def _post(self, kind: _Input, payload: Any = None) -> None:
        if self._state is not SessionState.CLOSED:
            self._inbox.put_nowait((kind, payload))

    def _emit(self, event: SessionEvent) -> None:
        self._events.put_nowait(event)

    def start(self) -> None:
        """Begin the handshake as the initiator."""
        self._post(_Input.START)

    def deliver_signal(self, signal: HandshakeMessage) -> None:
        """Queue a handshake message received from the peer via the relay."""
        self._post(_Input.SIGNAL, signal)

    def deliver_stats(self, stats: TransportStats) -> None:
        """Queue a connection statistics sample."""
        self._post(_Input.STATS, stats)

    def like(self) -> bool:
        """Like the peer.

        Liking is idempotent. If the channel is not open yet, the like is
        sent once it opens.

        Returns:
            `True` if this call changed the like state.
        """
        if self._state is SessionState.CLOSED or self._liked_by_me:
            return False
        self._liked_by_me = True
        logger.info(f'{self._log_prefix}: liked peer')
        if self._state is SessionState.OPEN:
            self._send(LikeMessage())
        self._check_match()
        return True

    def send_profile(self) -> None:
        """Send the current local profile if the channel is open."""
        if self._state is SessionState.OPEN:
            self._profile_sent = True
            self._send(ProfileMessage(self._local_profile()))

    def send_chat(self, text: str) -> ChatEntry:
        """Send a chat message to the peer and record it in the chat log.

        Raises:
            SessionClosedError: If the channel is not open.
        """
        if self._state is not SessionState.OPEN:
            raise SessionClosedError(
                f'Cannot chat with {self.peer_id} in state '
                f'{self.state.value}.',
            )
        self._send(ChatMessage(text))
        return self._chat_log.append(self.peer_id, self._local_id, text)

    def _send(self, message: Message) -> None:
        assert self._channel is not None
        try:
            self._channel.send(encode_message(message))
        except TransportStateError as e:
            logger.warning(
                f'{self._log_prefix}: failed to send '
                f'{type(message).__name__}: {e}',
            )

    async def run(self) -> None:
        """Handle inputs until the session closes.

        The session is closed if the channel does not open within the
        handshake timeout, if the handshake steps arrive out of order, if
        the transport fails, or if handling an input raises unexpectedly.
        """
        loop = asyncio.get_running_loop()
        deadline = (
            None
            if self._handshake_timeout is None
            else loop.time() + self._handshake_timeout
        )

        while self._state is not SessionState.CLOSED:
            try:
                kind, payload = await self._next_input(deadline)
                await self._handle(kind, payload)
            except HandshakeTimeoutError as e:
                logger.warning(f'{self._log_prefix}: {e}')
                await self.close('handshake timeout')
            except HandshakeOutOfOrderError as e:
                logger.error(f'{self._log_prefix}: aborting handshake: {e}')
                await self.close(f'handshake out of order: {e}')
            except TransportFailureError as e:
                logger.info(f'{self._log_prefix}: {e}')
                await self.close(str(e))
            except Exception as e:
                # Any other failure is scoped to this session
                logger.exception(f'{self._log_prefix}: unexpected error')
                await self.close(f'unexpected error: {e!r}')

    async def _next_input(self, deadline: float | None) -> tuple[_Input, Any]:
        if deadline is None or self._state is SessionState.OPEN:
            return await self._inbox.get()

        timeout = max(0, deadline - asyncio.get_running_loop().time())
        try:
            return await asyncio.wait_for(self._inbox.get(), timeout)
        except asyncio.TimeoutError as e:
            raise HandshakeTimeoutError(
                'channel did not open within '
                f'{self._handshake_timeout} seconds',
            ) from e

    async def _handle(self, kind: _Input, payload: Any) -> None:
        if kind is _Input.START:
            await self._begin()
        elif kind is _Input.SIGNAL:
            await self._handle_signal(payload)
        elif kind is _Input.LOCAL_CANDIDATE:
            await self._send_signal(self.peer_id, payload)
        elif kind is _Input.CHANNEL:
            self._attach_channel(payload)
        elif kind is _Input.CHANNEL_OPEN:
            self._handle_open()
        elif kind is _Input.MESSAGE:
            self._handle_message(payload)
        elif kind is _Input.CONNECTIVITY:
            self._handle_connectivity(payload)
        elif kind is _Input.STATS:
            self._latency_ms = payload.round_trip_time_ms
            self._route_kind = payload.route_kind
            self._emit(StatsUpdated(self.peer_id, payload))
        elif kind is _Input.WAKE:
            pass
        else:
            raise AssertionError('Unreachable.')

    async def _step(self, step: Awaitable[Any]) -> Any:
        # Transports report out of order calls as TransportStateError
        try:
            return await step
        except TransportStateError as e:
            raise HandshakeOutOfOrderError(str(e)) from e

    async def _begin(self) -> None:
        if self._role is not Role.INITIATOR or self._offer_sent:
            raise HandshakeOutOfOrderError(
                'only the initiator may send an offer and only once',
            )
        self._state = SessionState.HANDSHAKE
        self._watch_channel(self._transport.open_channel(CHANNEL_LABEL))
        offer = await self._step(self._transport.begin_as_initiator())
        self._offer_sent = True
        logger.info(f'{self._log_prefix}: sending offer')
        await self._send_signal(self.peer_id, offer)

    async def _handle_signal(self, signal: HandshakeMessage) -> None:
        kind = signal.get('type') if isinstance(signal, dict) else None
        if kind == 'offer':
            await self._accept_offer(signal)
        elif kind == 'answer':
            await self._accept_answer(signal)
        elif kind == 'candidate':
            await self._accept_candidate(signal)
        else:
            logger.warning(
                f'{self._log_prefix}: ignoring handshake message of unknown '
                f'type {kind!r}',
            )

    async def _accept_offer(self, offer: HandshakeMessage) -> None:
        if self._role is not Role.RESPONDER:
            raise HandshakeOutOfOrderError('initiator received an offer')
        if self._answer_sent:
            raise HandshakeOutOfOrderError('received a second offer')
        logger.info(f'{self._log_prefix}: received offer')
        self._state = SessionState.HANDSHAKE
        answer = await self._step(self._transport.begin_as_responder(offer))
        self._answer_sent = True
        logger.info(f'{self._log_prefix}: sending answer')
        await self._send_signal(self.peer_id, answer)
        await self._pair()

    async def _accept_answer(self, answer: HandshakeMessage) -> None:
        if self._role is not Role.INITIATOR:
            raise HandshakeOutOfOrderError('responder received an answer')
        if not self._offer_sent:
            raise HandshakeOutOfOrderError('received an answer before offer')
        if self._paired:
            raise HandshakeOutOfOrderError('received a second answer')
        logger.info(f'{self._log_prefix}: received answer')
        await self._step(self._transport.supply_remote_handshake(answer))
        await self._pair()

    async def _pair(self) -> None:
        self._paired = True
        pending, self._pending_candidates = self._pending_candidates, []
        if pending:
            logger.debug(
                f'{self._log_prefix}: replaying {len(pending)} queued '
                'candidates',
            )
        for candidate in pending:
            await self._supply_candidate(candidate)

    async def _accept_candidate(self, candidate: HandshakeMessage) -> None:
        if not self._paired:
            self._pending_candidates.append(candidate)
        else:
            await self._supply_candidate(candidate)

    async def _supply_candidate(self, candidate: HandshakeMessage) -> None:
        try:
            await self._transport.supply_candidate(candidate)
        except TransportStateError as e:
            logger.warning(f'{self._log_prefix}: rejected candidate: {e}')

    def _watch_channel(self, channel: Channel) -> None:
        # Callbacks are registered immediately so no message sent by the
        # peer is missed while the channel waits in the inbox.
        channel.on_message(lambda data: self._post(_Input.MESSAGE, data))
        channel.on_open(lambda: self._post(_Input.CHANNEL_OPEN))
        self._post(_Input.CHANNEL, channel)

    def _attach_channel(self, channel: Channel) -> None:
        if self._channel is not None:
            logger.warning(
                f'{self._log_prefix}: ignoring extra channel {channel.label}',
            )
            return
        self._channel = channel
        if channel.ready_state == 'open':
            self._handle_open()

    def _handle_open(self) -> None:
        if self._state is not SessionState.HANDSHAKE:
            return
        self._state = SessionState.OPEN
        logger.info(f'{self._log_prefix}: channel open')
        self._emit(SessionOpened(self.peer_id))
        if self._role is Role.INITIATOR:
            self.send_profile()
        if self._liked_by_me:
            self._send(LikeMessage())

    def _handle_message(self, data: ChannelData) -> None:
        try:
            message = decode_message(data)
        except UnknownMessageTypeError as e:
            logger.debug(f'{self._log_prefix}: ignoring message: {e}')
            return
        except MessageDecodeError as e:
            logger.warning(
                f'{self._log_prefix}: discarding malformed message: {e}',
            )
            return

        if isinstance(message, ProfileMessage):
            self._remote_profile = message.profile
            logger.info(
                f'{self._log_prefix}: received profile of '
                f'{message.profile.display_name}',
            )
            self._emit(ProfileUpdated(self.peer_id, message.profile))
            if not self._profile_sent:
                self.send_profile()
        elif isinstance(message, LikeMessage):
            if not self._likes_me:
                self._likes_me = True
                logger.info(f'{self._log_prefix}: peer liked us')
                self._emit(LikeReceived(self.peer_id))
                self._check_match()
        elif isinstance(message, ChatMessage):
            entry = self._chat_log.append(
                self.peer_id,
                self.peer_id,
                message.text,
            )
            active = self._chat_log.is_active(self.peer_id)
            self._emit(ChatReceived(self.peer_id, entry, active))
        else:
            raise AssertionError('Unreachable.')

    def _check_match(self) -> None:
        if self._match_tracker.update(self):
            logger.info(f'{self._log_prefix}: mutual match')
            self._emit(Matched(self.peer_id, self._remote_profile))

    def _handle_connectivity(self, connectivity: Connectivity) -> None:
        self._connectivity = connectivity
        self._emit(ConnectivityChanged(self.peer_id, connectivity))
        if connectivity.terminal:
            raise TransportFailureError(
                f'transport entered {connectivity.value} state',
            )

    async def close(self, reason: str = 'closed') -> None:
        """Close the session and release the transport.

        This is a no-op if the session is already closed.

        Args:
            reason: Why the session is closing.
        """
        if self._state is SessionState.CLOSED:
            return
        self._state = SessionState.CLOSED
        self._close_reason = reason
        self._remote_profile = None
        self._pending_candidates.clear()
        if self._on_close is not None:
            self._on_close(self)
        # Wake run() so it observes the closed state
        self._inbox.put_nowait((_Input.WAKE, None))

        logger.info(f'{self._log_prefix}: closing session ({reason})')
        await self._transport.close()
        self._emit(SessionClosed(self.peer_id, reason))
