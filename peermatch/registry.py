"""Registry of the sessions with every discovered peer."""
from __future__ import annotations

import asyncio
import logging
from types import TracebackType
from typing import Any
from typing import Callable
from typing import Generator

import websockets.exceptions

from peermatch.chat import ChatEntry
from peermatch.chat import ChatLog
from peermatch.events import PeerDiscovered
from peermatch.events import SessionEvent
from peermatch.exceptions import SessionClosedError
from peermatch.profile import Profile
from peermatch.relay.client import RelayClient
from peermatch.relay.exceptions import RelayNotConnectedError
from peermatch.relay.messages import PeerJoined
from peermatch.relay.messages import PeerLeft
from peermatch.relay.messages import PresenceList
from peermatch.relay.messages import RelayMessage
from peermatch.relay.messages import RelayMessageDecodeError
from peermatch.relay.messages import Signal
from peermatch.relay.messages import Welcome
from peermatch.session import Role
from peermatch.session import Session
from peermatch.session import short_id
from peermatch.stats import periodic_stats_poller
from peermatch.transport.protocols import HandshakeMessage
from peermatch.transport.protocols import Transport
from peermatch.transport.rtc import RTCTransport
from peermatch.utils.tasks import cancel_and_wait
from peermatch.utils.tasks import spawn_guarded_background_task

logger = logging.getLogger(__name__)


class SessionRegistry:
    """Owner of the sessions with all discovered peers.

    Listens to the relay server, creates a
    [`Session`][peermatch.session.Session] for every discovered
    participant, routes handshake messages to the right session, and
    removes sessions when participants leave.

    Roles are assigned deterministically: participants listed in the
    presence list received after joining are initiated by this side, while
    participants announced as joining later (or who send a handshake
    message before being announced) are waited on as a responder. Duplicate
    discovery of a participant is ignored.

    Example:
        ```python
        from peermatch.registry import SessionRegistry
        from peermatch.relay.client import RelayClient

        async with SessionRegistry(
            RelayClient(relay_server_address),
            Profile(name='alice'),
        ) as registry:
            event = await registry.recv()
            registry.like(event.peer_id)
        ```

    Note:
        The registry must be initialized with `await`, with
        [`async_init()`][peermatch.registry.SessionRegistry.async_init], or
        by using it as an async context manager.

    Args:
        relay_client: Client interface to a relay server.
        profile: Local profile announced to peers.
        transport_factory: Callable returning a new transport for each
            session. Defaults to
            [`RTCTransport`][peermatch.transport.rtc.RTCTransport].
        handshake_timeout: Seconds a session may take to open its channel.
        stats_interval: Seconds between connection stats polls. `None`
            disables polling.
        chat_log: Chat history shared by all sessions.
    """

    def __init__(
        self,
        relay_client: RelayClient,
        profile: Profile | None = None,
        *,
        transport_factory: Callable[[], Transport] | None = None,
        handshake_timeout: float | None = 30,
        stats_interval: float | None = None,
        chat_log: ChatLog | None = None,
    ) -> None:
        self._relay_client = relay_client
        self._profile = profile if profile is not None else Profile()
        self._transport_factory = (
            RTCTransport if transport_factory is None else transport_factory
        )
        self._handshake_timeout = handshake_timeout
        self._stats_interval = stats_interval
        self._chat_log = chat_log if chat_log is not None else ChatLog()

        self._sessions: dict[str, Session] = {}
        self._tasks: dict[str, asyncio.Task[None]] = {}
        self._events: asyncio.Queue[SessionEvent] = asyncio.Queue()

        self._relay_task: asyncio.Task[None] | None = None
        self._stats_task: asyncio.Task[None] | None = None

    @property
    def _log_prefix(self) -> str:
        try:
            local = short_id(self._relay_client.participant_id)
        except RelayNotConnectedError:
            local = 'pending'
        return f'{self.__class__.__name__}[{local}]'

    @property
    def participant_id(self) -> str:
        """Identifier assigned to this client by the relay server."""
        return self.relay_client.participant_id

    @property
    def relay_client(self) -> RelayClient:
        """Relay client interface.

        Raises:
            RuntimeError: if the registry is not initialized with `await` or
                [`SessionRegistry.async_init()`][peermatch.registry.SessionRegistry.async_init]
                has not been called.
        """
        if self._relay_task is not None:
            return self._relay_client
        raise RuntimeError(
            'The relay server message handler has not been created yet. '
            'This is likely because async_init() has not been called. '
            'Is the registry being initialized with await?',
        )

    @property
    def profile(self) -> Profile:
        """Local profile announced to peers."""
        return self._profile

    @property
    def chat_log(self) -> ChatLog:
        """Chat history with all peers."""
        return self._chat_log

    async def async_init(self) -> None:
        """Connect to relay server and begin listening to incoming messages."""
        await self._relay_client.connect()
        if self._relay_task is None:
            self._relay_task = spawn_guarded_background_task(
                self._handle_relay_messages,
            )
            self._relay_task.set_name('session-registry-relay-handler')
        if self._stats_task is None and self._stats_interval is not None:
            self._stats_task = periodic_stats_poller(
                self,
                self._stats_interval,
            )

    async def __aenter__(self) -> SessionRegistry:
        await self.async_init()
        return self

    async def __aexit__(
        self,
        exc_type: type[BaseException] | None,
        exc_value: BaseException | None,
        exc_traceback: TracebackType | None,
    ) -> None:
        await self.close()

    def __await__(self) -> Generator[Any, None, SessionRegistry]:
        return self.__aenter__().__await__()

    async def _handle_relay_messages(self) -> None:
        """Handle messages from the relay server.

        If the connection to the relay server is lost, every session is
        closed because the peers can no longer be addressed. The client
        then reconnects, receiving a new participant identifier, and
        discovery starts over.
        """
        logger.info(
            f'{self._log_prefix}: listening for messages from relay server',
        )
        while True:
            try:
                message = await self._relay_client.recv()
            except (
                websockets.exceptions.ConnectionClosed,
                RelayNotConnectedError,
            ) as e:
                logger.warning(
                    f'{self._log_prefix}: lost connection to relay server '
                    f'({e}), closing all sessions and reconnecting',
                )
                await self._close_sessions('relay connection lost')
                await self._relay_client.connect()
                continue
            except RelayMessageDecodeError as e:
                logger.error(
                    f'{self._log_prefix}: error deserializing message from '
                    f'relay server: {e} ...skipping message',
                )
                continue

            await self._dispatch(message)

    async def _dispatch(self, message: RelayMessage) -> None:
        if isinstance(message, Welcome):
            logger.info(
                f'{self._log_prefix}: relay assigned participant id '
                f'{message.participant_id}',
            )
        elif isinstance(message, PresenceList):
            logger.info(
                f'{self._log_prefix}: {len(message.participants)} peers '
                'already present',
            )
            for peer_id in message.participants:
                self._discover(peer_id, Role.INITIATOR)
        elif isinstance(message, PeerJoined):
            self._discover(message.participant_id, Role.RESPONDER)
        elif isinstance(message, PeerLeft):
            logger.info(
                f'{self._log_prefix}: peer {message.participant_id} left',
            )
            await self.close_session(message.participant_id, 'peer left')
        elif isinstance(message, Signal):
            session = self._discover(message.source, Role.RESPONDER)
            if session is not None:
                session.deliver_signal(message.signal)
        else:
            logger.error(
                f'{self._log_prefix}: received unknown message type '
                f'{type(message).__name__} from relay server',
            )

    def _discover(self, peer_id: str, role: Role) -> Session | None:
        """Get the session with a peer, creating it if needed."""
        if peer_id == self.participant_id:
            logger.warning(
                f'{self._log_prefix}: ignoring discovery of own participant '
                'id',
            )
            return None

        session = self._sessions.get(peer_id)
        if session is not None:
            logger.debug(
                f'{self._log_prefix}: peer {peer_id} already has a session',
            )
            return session

        session = Session(
            self.participant_id,
            peer_id,
            self._transport_factory(),
            role,
            send_signal=self._send_signal,
            local_profile=lambda: self._profile,
            events=self._events,
            chat_log=self._chat_log,
            handshake_timeout=self._handshake_timeout,
            on_close=self._forget,
        )
        self._sessions[peer_id] = session
        task = spawn_guarded_background_task(session.run)
        task.set_name(f'session-{peer_id}')
        self._tasks[peer_id] = task
        logger.info(
            f'{self._log_prefix}: discovered peer {peer_id} '
            f'({role.value})',
        )
        self._events.put_nowait(
            PeerDiscovered(peer_id, initiator=role is Role.INITIATOR),
        )

        if role is Role.INITIATOR:
            session.start()
        return session

    def _forget(self, session: Session) -> None:
        # Invoked by sessions as they close. The task is left to finish.
        if self._sessions.get(session.peer_id) is session:
            del self._sessions[session.peer_id]
            self._tasks.pop(session.peer_id, None)

    async def _send_signal(
        self,
        peer_id: str,
        signal: HandshakeMessage,
    ) -> None:
        message = Signal(
            source=self.participant_id,
            signal=signal,
            target=peer_id,
        )
        try:
            await self._relay_client.send(message)
        except (
            websockets.exceptions.ConnectionClosed,
            RelayNotConnectedError,
        ) as e:
            logger.warning(
                f'{self._log_prefix}: dropped signal to {peer_id} because the '
                f'relay connection is not open ({e})',
            )

    def get_session(self, peer_id: str) -> Session | None:
        """Get the session with a peer if one exists."""
        return self._sessions.get(peer_id)

    def sessions(self) -> list[Session]:
        """Get all current sessions."""
        return list(self._sessions.values())

    def _require_session(self, peer_id: str) -> Session:
        session = self._sessions.get(peer_id)
        if session is None:
            raise SessionClosedError(f'No session with peer {peer_id}.')
        return session

    async def recv(self) -> SessionEvent:
        """Receive the next event from any session."""
        return await self._events.get()

    def like(self, peer_id: str) -> bool:
        """Like a peer.

        Returns:
            `True` if the peer was not already liked.

        Raises:
            SessionClosedError: If there is no session with the peer.
        """
        return self._require_session(peer_id).like()

    def send_chat(self, peer_id: str, text: str) -> ChatEntry:
        """Send a chat message to a peer.

        Raises:
            SessionClosedError: If the session with the peer is not open.
        """
        return self._require_session(peer_id).send_chat(text)

    def select_chat(self, peer_id: str | None) -> list[ChatEntry]:
        """Make a peer the active conversation and return its history."""
        return self._chat_log.select(peer_id)

    def update_profile(self, profile: Profile) -> None:
        """Replace the local profile and send it to every open session."""
        self._profile = profile
        for session in self.sessions():
            session.send_profile()

    async def close_session(
        self,
        peer_id: str,
        reason: str = 'closed',
    ) -> None:
        """Close and remove the session with a peer if it exists.

        Any in-progress handshake step of that session is cancelled. Other
        sessions are not affected.

        Args:
            peer_id: Participant identifier of the peer.
            reason: Why the session is closing.
        """
        session = self._sessions.pop(peer_id, None)
        task = self._tasks.pop(peer_id, None)
        await cancel_and_wait(task)
        if session is not None:
            await session.close(reason)

    async def _close_sessions(self, reason: str) -> None:
        for peer_id in list(self._sessions):
            await self.close_session(peer_id, reason)

    async def close(self) -> None:
        """Close the registry.

        Warning:
            This will close all sessions and close the connection to the
            relay server.
        """
        await cancel_and_wait(self._relay_task)
        await cancel_and_wait(self._stats_task)
        await self._close_sessions('shutdown')
        await self.relay_client.close()
        logger.info(f'{self._log_prefix}: session registry closed')
