from __future__ import annotations

import asyncio
import json
import logging
from unittest import mock

import pytest
import websockets.exceptions
from websockets.asyncio.client import ClientConnection
from websockets.asyncio.client import connect
from websockets.asyncio.server import serve

from peermatch.exceptions import UnreachablePeerError
from peermatch.relay.manager import Client
from peermatch.relay.messages import decode_relay_message
from peermatch.relay.messages import encode_relay_message
from peermatch.relay.messages import PeerJoined
from peermatch.relay.messages import PeerLeft
from peermatch.relay.messages import PresenceList
from peermatch.relay.messages import RelayMessage
from peermatch.relay.messages import Signal
from peermatch.relay.messages import Welcome
from peermatch.relay.server import HEALTH_CHECK_PATH
from peermatch.relay.server import RelayServer
from testing.relay_server import RelayServerInfo
from testing.utils import open_port

_WAIT_FOR = 0.5


async def _recv(websocket: ClientConnection) -> RelayMessage:
    message = await asyncio.wait_for(websocket.recv(), _WAIT_FOR)
    assert isinstance(message, str)
    return decode_relay_message(message)


async def _join(address: str) -> tuple[ClientConnection, str, list[str]]:
    websocket = await connect(address)
    welcome = await _recv(websocket)
    assert isinstance(welcome, Welcome)
    presence = await _recv(websocket)
    assert isinstance(presence, PresenceList)
    return websocket, welcome.participant_id, presence.participants


async def _expect_close(websocket: ClientConnection, code: int) -> None:
    with pytest.raises(websockets.exceptions.ConnectionClosed) as exc_info:
        await asyncio.wait_for(websocket.recv(), _WAIT_FOR)
    assert exc_info.value.rcvd is not None
    assert exc_info.value.rcvd.code == code


@pytest.mark.asyncio()
async def test_server_send_encoding_error(caplog) -> None:
    caplog.set_level(logging.ERROR)
    server = RelayServer()
    client = Client('alice', mock.MagicMock())
    await server.send(client, object())  # type: ignore[arg-type]
    assert any('encode' in record.message for record in caplog.records)


@pytest.mark.asyncio()
async def test_server_send_connection_closed(caplog) -> None:
    caplog.set_level(logging.ERROR)
    server = RelayServer()
    websocket = mock.MagicMock()
    websocket.send = mock.AsyncMock(
        side_effect=websockets.exceptions.ConnectionClosedOK(None, None),
    )
    client = Client('alice', websocket)
    await server.send(client, PeerJoined('bob'))
    websocket.send.assert_awaited_once()
    assert any('alice' in record.message for record in caplog.records)


@pytest.mark.asyncio()
async def test_first_client_gets_empty_presence_list(
    relay_server: RelayServerInfo,
) -> None:
    websocket, participant_id, participants = await _join(
        relay_server.address,
    )
    assert participants == []
    client = relay_server.relay_server.client_manager.get_client_by_id(
        participant_id,
    )
    assert client is not None
    await websocket.close()


@pytest.mark.asyncio()
async def test_join_announces_presence(relay_server: RelayServerInfo) -> None:
    alice, alice_id, _ = await _join(relay_server.address)
    bob, bob_id, participants = await _join(relay_server.address)

    assert alice_id != bob_id
    assert participants == [alice_id]
    assert await _recv(alice) == PeerJoined(bob_id)

    carol, carol_id, participants = await _join(relay_server.address)
    assert sorted(participants) == sorted([alice_id, bob_id])
    assert carol_id not in participants
    assert await _recv(alice) == PeerJoined(carol_id)
    assert await _recv(bob) == PeerJoined(carol_id)

    for websocket in (alice, bob, carol):
        await websocket.close()


@pytest.mark.asyncio()
async def test_leave_announces_departure(
    relay_server: RelayServerInfo,
) -> None:
    alice, _, _ = await _join(relay_server.address)
    bob, bob_id, _ = await _join(relay_server.address)
    await _recv(alice)

    await bob.close()
    assert await _recv(alice) == PeerLeft(bob_id)
    manager = relay_server.relay_server.client_manager
    assert manager.get_client_by_id(bob_id) is None

    await alice.close()


@pytest.mark.asyncio()
async def test_forward_signal(relay_server: RelayServerInfo) -> None:
    alice, alice_id, _ = await _join(relay_server.address)
    bob, bob_id, _ = await _join(relay_server.address)
    await _recv(alice)

    signal = {'type': 'offer', 'sdp': 'v=0'}
    await alice.send(
        encode_relay_message(
            Signal(source=alice_id, signal=signal, target=bob_id),
        ),
    )
    forwarded = await asyncio.wait_for(bob.recv(), _WAIT_FOR)
    assert json.loads(forwarded) == {
        'event': 'signal',
        'from': alice_id,
        'signal': signal,
    }

    await alice.close()
    await bob.close()


@pytest.mark.asyncio()
async def test_forward_overrides_claimed_source(
    relay_server: RelayServerInfo,
    caplog,
) -> None:
    caplog.set_level(logging.WARNING)
    alice, alice_id, _ = await _join(relay_server.address)
    bob, bob_id, _ = await _join(relay_server.address)
    await _recv(alice)

    await alice.send(
        encode_relay_message(
            Signal(source='mallory', signal={}, target=bob_id),
        ),
    )
    forwarded = await _recv(bob)
    assert isinstance(forwarded, Signal)
    assert forwarded.source == alice_id
    assert any('mallory' in record.message for record in caplog.records)

    await alice.close()
    await bob.close()


@pytest.mark.asyncio()
async def test_forward_to_absent_peer_is_dropped(
    relay_server: RelayServerInfo,
    caplog,
) -> None:
    caplog.set_level(logging.WARNING)
    alice, alice_id, _ = await _join(relay_server.address)
    bob, bob_id, _ = await _join(relay_server.address)
    await _recv(alice)

    await alice.send(
        encode_relay_message(
            Signal(source=alice_id, signal={}, target='nobody'),
        ),
    )
    # The sender is not notified and stays connected
    await alice.send(
        encode_relay_message(
            Signal(source=alice_id, signal={'n': 1}, target=bob_id),
        ),
    )
    forwarded = await _recv(bob)
    assert isinstance(forwarded, Signal)
    assert forwarded.signal == {'n': 1}
    with pytest.raises(asyncio.TimeoutError):
        await asyncio.wait_for(alice.recv(), 0.1)
    assert any('nobody' in record.message for record in caplog.records)

    await alice.close()
    await bob.close()


@pytest.mark.parametrize(
    'message',
    (
        'not json',
        b'{"event": "signal"}',
        encode_relay_message(Welcome('alice')),
        encode_relay_message(Signal(source='alice', signal={})),
    ),
)
@pytest.mark.asyncio()
async def test_bad_message_closes_connection(
    relay_server: RelayServerInfo,
    message: str | bytes,
) -> None:
    websocket, participant_id, _ = await _join(relay_server.address)
    await websocket.send(message)
    await _expect_close(websocket, 4000)

    manager = relay_server.relay_server.client_manager
    assert manager.get_client_by_id(participant_id) is None


@pytest.mark.asyncio()
async def test_oversized_message_closes_connection() -> None:
    host, port = 'localhost', open_port()
    server = RelayServer(max_message_bytes=100)
    async with serve(server.handler, host, port):
        websocket, _, _ = await _join(f'ws://{host}:{port}')
        await websocket.send('x' * 200)
        await _expect_close(websocket, 4003)


@pytest.mark.asyncio()
async def test_health_check(relay_server: RelayServerInfo) -> None:
    reader, writer = await asyncio.open_connection(
        relay_server.host,
        relay_server.port,
    )
    writer.write(
        f'GET {HEALTH_CHECK_PATH} HTTP/1.1\r\n'
        f'Host: {relay_server.host}\r\n\r\n'.encode(),
    )
    await writer.drain()
    status = await asyncio.wait_for(reader.readline(), _WAIT_FOR)
    assert status.startswith(b'HTTP/1.1 200')
    writer.close()
    await writer.wait_closed()


def test_process_request_ignores_other_paths() -> None:
    server = RelayServer()
    request = mock.MagicMock()
    request.path = '/'
    assert server.process_request(mock.MagicMock(), request) is None


@pytest.mark.asyncio()
async def test_forward_to_unknown_target_raises() -> None:
    server = RelayServer()
    source = Client('alice', mock.MagicMock())
    server.client_manager.add_client(source)
    with pytest.raises(UnreachablePeerError, match='nobody'):
        await server.forward(
            source,
            Signal(source='alice', signal={}, target='nobody'),
        )
