"""Relay server implementation for facilitating WebRTC peer connections.

The relay server (or signaling server) is a lightweight server accessible by
all peers (e.g., has a public IP address). It tells each participant who else
is connected and forwards handshake payloads between pairs of participants
so they can establish direct peer connections.
"""
from __future__ import annotations

import asyncio
import http
import logging
import sys
import uuid

import websockets.exceptions
from websockets.asyncio.server import ServerConnection
from websockets.http11 import Request
from websockets.http11 import Response

from peermatch.exceptions import UnreachablePeerError
from peermatch.relay.manager import Client
from peermatch.relay.manager import ClientManager
from peermatch.relay.messages import decode_relay_message
from peermatch.relay.messages import encode_relay_message
from peermatch.relay.messages import PeerJoined
from peermatch.relay.messages import PeerLeft
from peermatch.relay.messages import PresenceList
from peermatch.relay.messages import RelayMessage
from peermatch.relay.messages import RelayMessageDecodeError
from peermatch.relay.messages import RelayMessageEncodeError
from peermatch.relay.messages import Signal
from peermatch.relay.messages import Welcome

logger = logging.getLogger(__name__)

HEALTH_CHECK_PATH = '/health'


class RelayServer:
    """WebRTC relay server.

    The relay server acts as a public third-party that helps peers
    discover each other and establish peer-to-peer connections. The server
    keeps no application state: it only knows which participants are
    currently connected. Handshake payloads are forwarded verbatim and
    never inspected.

    The relay server is built on websockets and designed to be
    served using [`serve()`][peermatch.relay.run.serve].

    Args:
        max_message_bytes: Optional maximum size of client messages in bytes.
            Clients that send oversized messages will have their connections
            closed. Note that message size is computed using
            [`sys.getsizeof()`][sys.getsizeof] so will also include the
            PyObject overhead.
    """

    def __init__(self, max_message_bytes: int | None = None) -> None:
        self._client_manager = ClientManager()
        self._max_message_bytes = max_message_bytes

    @property
    def client_manager(self) -> ClientManager:
        """Manager of connected clients."""
        return self._client_manager

    async def send(self, client: Client, message: RelayMessage) -> None:
        """Send message on the socket.

        Messages to clients whose connection has closed are dropped.

        Args:
            client: Client to send message to.
            message: Message to encode and send via the websocket connection
                to the client.
        """
        try:
            message_str = encode_relay_message(message)
        except RelayMessageEncodeError as e:
            logger.error(f'Failed to encode message: {e}')
            return

        try:
            await client.websocket.send(message_str)
        except websockets.exceptions.ConnectionClosed:
            logger.error(
                'Connection closed while attempting to send message to '
                f'{client.participant_id}',
            )

    async def broadcast(
        self,
        clients: list[Client],
        message: RelayMessage,
    ) -> None:
        """Send a message to each client."""
        await asyncio.gather(
            *(self.send(client, message) for client in clients),
        )

    async def join(self, websocket: ServerConnection) -> Client:
        """Register a new connection as a participant.

        The new client is told its identifier and the identifiers of all
        other connected clients. Every other client is told about the new
        client.

        Args:
            websocket: Websocket connection of the new client.

        Returns:
            The registered client.
        """
        client = Client(participant_id=str(uuid.uuid4()), websocket=websocket)
        # The welcome goes out before the client is visible to others so it
        # is always the first message the client receives.
        await self.send(client, Welcome(client.participant_id))

        others = self.client_manager.get_clients()
        self.client_manager.add_client(client)
        logger.info(f'Registered client: {client}')

        await self.send(
            client,
            PresenceList([other.participant_id for other in others]),
        )
        await self.broadcast(others, PeerJoined(client.participant_id))
        return client

    async def leave(self, client: Client, expected: bool = True) -> None:
        """Unregister a client and announce the departure.

        Args:
            client: Client to unregister.
            expected: If the connection was closed intentionally or due to an
                error.
        """
        reason = 'ok' if expected else 'unexpected'
        logger.info(
            f'Unregistering client {client.participant_id} for {reason} '
            'reason',
        )
        self.client_manager.remove_client(client)
        await client.websocket.close(code=1000 if expected else 1001)
        await self.broadcast(
            self.client_manager.get_clients(),
            PeerLeft(client.participant_id),
        )

    async def forward(self, source: Client, request: Signal) -> None:
        """Forward a signal from one client to another.

        Args:
            source: Client making forwarding request.
            request: Signal to forward.

        Raises:
            UnreachablePeerError: If the target participant is not connected.
        """
        if request.source != source.participant_id:
            logger.warning(
                f'Client {source.participant_id} sent a signal claiming to '
                f'be from {request.source}',
            )

        assert request.target is not None
        target = self.client_manager.get_client_by_id(request.target)
        if target is None:
            raise UnreachablePeerError(
                f'Client {source.participant_id} attempting to send message '
                f'to unknown peer {request.target}',
            )

        logger.debug(
            f'Forwarding signal from {source.participant_id} to '
            f'{target.participant_id}',
        )
        await self.send(
            target,
            Signal(source=source.participant_id, signal=request.signal),
        )

    def process_request(
        self,
        connection: ServerConnection,
        request: Request,
    ) -> Response | None:
        """Answer health check requests without a websocket upgrade.

        Used as the `process_request` hook of
        [`serve()`][websockets.asyncio.server.serve].
        """
        if request.path == HEALTH_CHECK_PATH:
            return connection.respond(http.HTTPStatus.OK, '')
        return None

    async def handler(self, websocket: ServerConnection) -> None:
        """Websocket server message handler.

        The handler will close the connection for the following reasons.

        - An undecodable or unexpected message type is received (code 4000).
        - The client sends a message larger than the allowed size (code 4003).

        Args:
            websocket: Websocket message was received on.
        """
        client = await self.join(websocket)
        expected = False
        try:
            while True:
                try:
                    message_str = await websocket.recv()
                except websockets.exceptions.ConnectionClosedOK:
                    expected = True
                    break
                except websockets.exceptions.ConnectionClosedError:
                    break

                if (
                    self._max_message_bytes is not None
                    and sys.getsizeof(message_str) > self._max_message_bytes
                ):
                    await websocket.close(
                        4003,
                        reason='Message length exceeds limit.',
                    )
                    logger.warning(
                        f'Client {client.participant_id} sent message with '
                        f'size {sys.getsizeof(message_str)} bytes which '
                        'exceeds the max configured size of '
                        f'{self._max_message_bytes} bytes. Connection closed '
                        'with error code 4003',
                    )
                    break

                try:
                    if isinstance(message_str, bytes):
                        raise RelayMessageDecodeError(
                            'Got message as bytes but expected str.',
                        )
                    message = decode_relay_message(message_str)
                except RelayMessageDecodeError as e:
                    logger.error(
                        'Closing websocket because deserialization error was '
                        f'caught on message received from '
                        f'{client.participant_id}. {e}',
                    )
                    await websocket.close(4000, reason='Unknown message type.')
                    break

                if not isinstance(message, Signal) or message.target is None:
                    logger.error(
                        f'Closing websocket because client '
                        f'{client.participant_id} sent unexpected message '
                        f'type {type(message).__name__}',
                    )
                    await websocket.close(4000, reason='Unknown message type.')
                    break

                try:
                    await self.forward(client, message)
                except UnreachablePeerError as e:
                    # The sender is not notified. Its handshake with the
                    # departed peer stalls until the session times out.
                    logger.warning(f'{e}, dropping message')
        finally:
            await self.leave(client, expected=expected)
