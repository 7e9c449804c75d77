from __future__ import annotations

import asyncio
import logging
import os
import pathlib
import signal
from unittest import mock
from unittest.mock import AsyncMock

import click.testing
import pytest

import peermatch
from peermatch.chat import ChatEntry
from peermatch.cli import cli
from peermatch.cli import describe_event
from peermatch.cli import handle_event
from peermatch.cli import run_peer
from peermatch.config import PeerConfig
from peermatch.events import ChatReceived
from peermatch.events import ConnectivityChanged
from peermatch.events import LikeReceived
from peermatch.events import Matched
from peermatch.events import PeerDiscovered
from peermatch.events import ProfileUpdated
from peermatch.events import SessionClosed
from peermatch.events import SessionEvent
from peermatch.events import SessionOpened
from peermatch.events import StatsUpdated
from peermatch.profile import Coordinate
from peermatch.profile import Profile
from peermatch.registry import SessionRegistry
from peermatch.relay.client import RelayClient
from peermatch.transport.protocols import Connectivity
from peermatch.transport.protocols import RouteKind
from peermatch.transport.protocols import TransportStats
from testing.relay_server import RelayServerInfo

_PEER = '0123456789abcdef'


def test_version() -> None:
    runner = click.testing.CliRunner()
    result = runner.invoke(cli, ['version'])
    assert result.exit_code == 0
    assert peermatch.__version__ in result.output


def test_configure(tmp_path: pathlib.Path) -> None:
    filepath = tmp_path / 'peer.toml'
    runner = click.testing.CliRunner()
    result = runner.invoke(
        cli,
        [
            'configure',
            str(filepath),
            '--relay-address',
            'wss://relay.example.com',
            '--no-verify-certificate',
            '--ice-server',
            'stun:a.example.com',
            '--ice-server',
            'stun:b.example.com',
            '--name',
            'Alice',
            '--about',
            'Climbing.',
            '--latitude',
            '1.5',
            '--longitude',
            '2.5',
        ],
    )
    assert result.exit_code == 0, result.output

    config = PeerConfig.from_toml(filepath)
    assert config.relay_address == 'wss://relay.example.com'
    assert not config.verify_certificate
    assert config.ice_servers == ['stun:a.example.com', 'stun:b.example.com']
    assert config.profile.name == 'Alice'
    assert config.profile.about == 'Climbing.'
    assert config.profile.location == Coordinate(latitude=1.5, longitude=2.5)


def test_configure_requires_both_coordinates(tmp_path: pathlib.Path) -> None:
    filepath = tmp_path / 'peer.toml'
    runner = click.testing.CliRunner()
    result = runner.invoke(
        cli,
        ['configure', str(filepath), '--latitude', '1.5'],
    )
    assert result.exit_code != 0
    assert not filepath.exists()


def test_configure_invalid_address(tmp_path: pathlib.Path) -> None:
    filepath = tmp_path / 'peer.toml'
    runner = click.testing.CliRunner()
    result = runner.invoke(
        cli,
        ['configure', str(filepath), '--relay-address', 'http://x'],
    )
    assert result.exit_code != 0
    assert not filepath.exists()


def test_start_with_overrides(tmp_path: pathlib.Path) -> None:
    filepath = tmp_path / 'peer.toml'
    PeerConfig(profile=Profile(name='Alice')).write_toml(filepath)
    picture = tmp_path / 'picture.png'
    picture.write_bytes(b'\x89PNG')

    async def _mock_run_peer(config: PeerConfig, *, like_all: bool) -> None:
        assert config.relay_address == 'ws://relay.example.com:1234'
        assert config.profile.name == 'Alice'
        assert config.profile.picture == b'\x89PNG'
        assert config.log_level == 'DEBUG'
        assert like_all

    runner = click.testing.CliRunner()
    with mock.patch(
        'peermatch.cli.run_peer',
        AsyncMock(side_effect=_mock_run_peer),
    ) as mock_run_peer:
        result = runner.invoke(
            cli,
            [
                'start',
                '--config',
                str(filepath),
                '--relay-address',
                'ws://relay.example.com:1234',
                '--picture',
                str(picture),
                '--like-all',
                '--log-level',
                'debug',
            ],
        )

    assert result.exit_code == 0, result.output
    mock_run_peer.assert_awaited_once()


def test_start_default_config() -> None:
    runner = click.testing.CliRunner()
    with mock.patch('peermatch.cli.run_peer', AsyncMock()) as mock_run_peer:
        result = runner.invoke(cli, ['start'])

    assert result.exit_code == 0, result.output
    config = mock_run_peer.await_args.args[0]
    assert config == PeerConfig()
    assert mock_run_peer.await_args.kwargs == {'like_all': False}


_LOCAL = Profile(location=Coordinate(latitude=0, longitude=0))
_REMOTE = Profile(
    name='Bob',
    phone='555-0100',
    location=Coordinate(latitude=0, longitude=1),
)


@pytest.mark.parametrize(
    ('event', 'expected'),
    (
        (PeerDiscovered(_PEER, initiator=True), 'initiator'),
        (SessionOpened(_PEER), 'Connected to peer 01234567'),
        (ProfileUpdated(_PEER, _REMOTE), 'Bob, 111.2 km away'),
        (ProfileUpdated(_PEER, Profile()), 'is Anonymous'),
        (LikeReceived(_PEER), 'liked you'),
        (Matched(_PEER, _REMOTE), 'phone: 555-0100'),
        (Matched(_PEER, None), 'Matched with unknown'),
        (ChatReceived(_PEER, ChatEntry(_PEER, 'hi'), True), 'hi'),
        (ConnectivityChanged(_PEER, Connectivity.FAILED), 'failed'),
        (StatsUpdated(_PEER, TransportStats(4.0, RouteKind.RELAYED)), '4 ms'),
        (StatsUpdated(_PEER, TransportStats()), 'latency unknown'),
        (SessionClosed(_PEER, 'peer left'), 'peer left'),
        (SessionEvent(_PEER), 'Unknown event'),
    ),
)
def test_describe_event(event: SessionEvent, expected: str) -> None:
    assert expected in describe_event(event, _LOCAL)


@pytest.mark.asyncio()
async def test_handle_session_opened_after_peer_left(
    caplog: pytest.LogCaptureFixture,
) -> None:
    caplog.set_level(logging.DEBUG, logger='peermatch.cli')
    registry = SessionRegistry(RelayClient('ws://localhost:8700'))
    assert registry.get_session(_PEER) is None

    # The session was removed before its opened event was consumed
    handle_event(registry, SessionOpened(_PEER), like_all=True)
    assert 'Not liking' in caplog.text


def test_handle_session_opened_likes_peer() -> None:
    registry = mock.MagicMock(spec=SessionRegistry)
    registry.profile = Profile()

    handle_event(registry, SessionOpened(_PEER), like_all=True)
    registry.like.assert_called_once_with(_PEER)

    registry.like.reset_mock()
    handle_event(registry, SessionOpened(_PEER), like_all=False)
    handle_event(registry, LikeReceived(_PEER), like_all=True)
    registry.like.assert_not_called()


@pytest.mark.timeout(10)
@pytest.mark.asyncio()
async def test_run_peer_until_signal(relay_server: RelayServerInfo) -> None:
    config = PeerConfig(
        relay_address=relay_server.address,
        ice_servers=[],
        stats_interval=None,
    )
    task = asyncio.create_task(run_peer(config, like_all=True))

    manager = relay_server.relay_server.client_manager
    while len(manager.get_clients()) == 0:
        await asyncio.sleep(0.01)

    os.kill(os.getpid(), signal.SIGINT)
    await asyncio.wait_for(task, 5)

    while len(manager.get_clients()) > 0:
        await asyncio.sleep(0.01)
