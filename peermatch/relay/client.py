"""Client interface to a relay server."""
from __future__ import annotations

import asyncio
import logging
import ssl
import sys
from types import TracebackType
from typing import Any

if sys.version_info >= (3, 11):  # pragma: >=3.11 cover
    from typing import Self
else:  # pragma: <3.11 cover
    from typing_extensions import Self

import websockets.exceptions
from websockets.asyncio.client import ClientConnection
from websockets.asyncio.client import connect
from websockets.protocol import State

from peermatch.relay.exceptions import RelayNotConnectedError
from peermatch.relay.exceptions import RelayRegistrationError
from peermatch.relay.messages import decode_relay_message
from peermatch.relay.messages import encode_relay_message
from peermatch.relay.messages import RelayMessage
from peermatch.relay.messages import RelayMessageDecodeError
from peermatch.relay.messages import Welcome

logger = logging.getLogger(__name__)


class RelayClient:
    """Client interface to a relay server.

    This interface abstracts the low-level WebSocket connection to a
    relay server. The relay assigns a new participant identifier each time
    the client connects.

    Tip:
        This class can be used as an async context manager!
        ```python
        from peermatch.relay.client import RelayClient

        async with RelayClient(...) as client:
            await client.send(...)
            message = await client.recv(...)
        ```

    Args:
        address: Address of the relay server. Should start with `ws://` or
            `wss://`.
        ssl_context: Custom SSL context to pass to
            [`connect()`][websockets.asyncio.client.connect]. A TLS context
            is created with
            [`ssl.create_default_context()`][ssl.create_default_context]
            when connecting to a `wss://` URI and `ssl_context` is not
            provided.
        timeout: Time to wait in seconds on relay server connection.
        verify_certificate: Verify the relay server's SSL certificate. Only
            used if `ssl_context` is `None` and connecting to a `wss://` URI.

    Raises:
        ValueError: If address does not start with `ws://` or `wss://`.
    """

    def __init__(
        self,
        address: str,
        *,
        ssl_context: ssl.SSLContext | None = None,
        timeout: float = 10,
        verify_certificate: bool = True,
    ) -> None:
        if not (address.startswith('ws://') or address.startswith('wss://')):
            raise ValueError(
                'Relay server address must start with ws:// or wss://. '
                f'Got {address}.',
            )

        self._address = address
        self._timeout = timeout

        if self._address.startswith('wss://') and ssl_context is None:
            ssl_context = ssl.create_default_context()
            if not verify_certificate:
                ssl_context.check_hostname = False
                ssl_context.verify_mode = ssl.CERT_NONE
        self._ssl_context = ssl_context

        self._initial_backoff_seconds = 1.0

        self._connect_lock = asyncio.Lock()
        self._websocket: ClientConnection | None = None
        self._participant_id: str | None = None

    async def __aenter__(self) -> Self:
        await self.connect()
        return self

    async def __aexit__(
        self,
        exc_type: type[BaseException] | None,
        exc_value: BaseException | None,
        exc_traceback: TracebackType | None,
    ) -> None:
        await self.close()

    async def _register(
        self,
        timeout: float,
    ) -> tuple[ClientConnection, str]:
        """Open a websocket connection and wait for the assigned identifier.

        Args:
            timeout: Timeout to wait on opening the initial connection and
                waiting for a server response.

        Returns:
            Open websocket connection with the relay server and the \
            participant identifier assigned by the server.

        Raises:
            OSError: If the server could not be connected to.
            asyncio.TimeoutError: If the server did not reply within the
                timeout.
            websockets.exceptions.ConnectionClosed: If the websocket connection
                was closed while registering.
            RelayRegistrationError: If the registration process failed.
        """
        kwargs: dict[str, Any] = {}
        if self._ssl_context is not None:
            kwargs['ssl'] = self._ssl_context
        websocket = await connect(
            self._address,
            open_timeout=timeout,
            **kwargs,
        )

        try:
            message_str = await asyncio.wait_for(websocket.recv(), timeout)
            if not isinstance(message_str, str):
                raise RelayRegistrationError(
                    'Received non-string type on websocket.',
                )
            message = decode_relay_message(message_str)
        except RelayMessageDecodeError as e:
            await websocket.close()
            raise RelayRegistrationError(
                'Unable to decode response message from relay server.',
            ) from e
        except BaseException:
            await websocket.close()
            raise

        if not isinstance(message, Welcome):
            await websocket.close()
            raise RelayRegistrationError(
                'Relay server replied with unexpected message type: '
                f'{type(message).__name__}.',
            )

        logger.info(
            'Established client connection to relay server at '
            f'{self._address} with participant id {message.participant_id}',
        )
        return websocket, message.participant_id

    @property
    def address(self) -> str:
        """Address of the relay server."""
        return self._address

    @property
    def participant_id(self) -> str:
        """Identifier assigned by the relay server on the last connect.

        Raises:
            RelayNotConnectedError: if the client has never connected.
        """
        if self._participant_id is None:
            raise RelayNotConnectedError(
                'Client has not connected to the relay server. '
                'Try calling connect() first.',
            )
        return self._participant_id

    @property
    def connected(self) -> bool:
        """Check if the websocket connection to the relay server is open."""
        return (
            self._websocket is not None
            and self._websocket.state is State.OPEN
        )

    @property
    def websocket(self) -> ClientConnection:
        """Websocket connection to the relay server.

        Raises:
            RelayNotConnectedError: if the websocket connection to the relay
                server is not open. This usually indicates that
                [`connect()`][peermatch.relay.client.RelayClient.connect]
                needs to be called.
        """
        if self._websocket is not None and self.connected:
            return self._websocket
        else:
            raise RelayNotConnectedError(
                'Websocket connection to the relay server is not open. '
                'Try calling connect() first.',
            )

    async def connect(self, retry: bool = True) -> None:
        """Connect to the relay server.

        Note:
            This method is a no-op if a connection is already established.
            Otherwise, a new connection will be attempted with
            exponential backoff when `retry` is True for connection failures.

        Args:
            retry: Retry the connection with exponential backoff starting at
                one second and increasing to a max of 60 seconds.
        """
        async with self._connect_lock:
            if self.connected:
                return

            backoff_seconds = self._initial_backoff_seconds
            while True:
                try:
                    websocket, participant_id = await self._register(
                        timeout=self._timeout,
                    )
                    self._websocket = websocket
                    self._participant_id = participant_id
                except (
                    # Exceptions that we should wait and retry again for
                    OSError,
                    asyncio.TimeoutError,
                    websockets.exceptions.ConnectionClosed,
                    websockets.exceptions.InvalidHandshake,
                ) as e:
                    if not retry:
                        raise

                    logger.warning(
                        f'Connection to relay server at {self._address} '
                        f'failed because of {e!r}. Retrying connection in '
                        f'{backoff_seconds} seconds',
                    )
                    await asyncio.sleep(backoff_seconds)
                    backoff_seconds = min(backoff_seconds * 2, 60)
                else:
                    break

    async def close(self) -> None:
        """Close the connection to the relay server."""
        if self._websocket is not None:
            await self._websocket.close()

    async def recv(self) -> RelayMessage:
        """Receive the next message.

        Returns:
            The message received from the relay server.

        Raises:
            RelayNotConnectedError: If the client is not connected.
            RelayMessageDecodeError: If the message received cannot
                be decoded into the appropriate message type.
            websockets.exceptions.ConnectionClosed: If the connection closes
                while waiting for a message.
        """
        message_str = await self.websocket.recv()
        if not isinstance(message_str, str):
            raise RelayMessageDecodeError(
                'Received non-string from websocket.',
            )
        return decode_relay_message(message_str)

    async def send(self, message: RelayMessage) -> None:
        """Send a message.

        Args:
            message: The message to send to the relay server.

        Raises:
            RelayNotConnectedError: If the client is not connected.
        """
        await self.websocket.send(encode_relay_message(message))
