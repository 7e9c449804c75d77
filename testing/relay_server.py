"""Tools for running a local relay server for unit tests."""
from __future__ import annotations

from typing import AsyncGenerator
from typing import NamedTuple

import pytest_asyncio
from websockets.asyncio.server import serve
from websockets.asyncio.server import Server

from peermatch.relay.server import RelayServer
from testing.utils import open_port


class RelayServerInfo(NamedTuple):
    """NamedTuple returned by relay_server fixture."""

    relay_server: RelayServer
    websocket_server: Server
    host: str
    port: int
    address: str


@pytest_asyncio.fixture()
async def relay_server() -> AsyncGenerator[RelayServerInfo, None]:
    """Fixture that runs relay server locally.

    Yields:
        `RelayServerInfo <.RelayServerInfo>`
    """
    host = 'localhost'
    port = open_port()
    address = f'ws://{host}:{port}'

    relay_server = RelayServer()
    async with serve(
        relay_server.handler,
        host,
        port,
        process_request=relay_server.process_request,
    ) as websocket_server:
        yield RelayServerInfo(
            relay_server=relay_server,
            websocket_server=websocket_server,
            host=host,
            port=port,
            address=address,
        )
