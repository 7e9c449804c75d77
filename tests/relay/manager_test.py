from __future__ import annotations

from unittest import mock

from peermatch.relay.manager import Client
from peermatch.relay.manager import ClientManager


def _client(participant_id: str) -> Client:
    return Client(participant_id=participant_id, websocket=mock.MagicMock())


def test_client_equality() -> None:
    websocket = mock.MagicMock()
    client1 = Client('alice', websocket)
    client2 = Client('alice', mock.MagicMock())
    client3 = Client('bob', websocket)

    assert client1 == client2
    assert client1 != client3
    assert client1 != object()
    assert hash(client1) == hash(client2)


def test_client_repr() -> None:
    client = _client('alice')
    assert 'participant_id=alice' in repr(client)


def test_add_and_remove_clients() -> None:
    manager = ClientManager()
    alice, bob = _client('alice'), _client('bob')

    manager.add_client(alice)
    manager.add_client(bob)
    assert manager.get_clients() == [alice, bob]
    assert manager.get_client_by_id('alice') is alice
    assert manager.get_client_by_websocket(bob.websocket) is bob

    manager.remove_client(alice)
    assert manager.get_clients() == [bob]
    assert manager.get_client_by_id('alice') is None
    assert manager.get_client_by_websocket(alice.websocket) is None

    # Removing twice is a no-op
    manager.remove_client(alice)
    assert manager.get_clients() == [bob]
