"""`peermatch-peer` command-line interface.

The CLI runs a headless peer which announces a profile, logs session
events as they happen, and can optionally like every peer it connects to.
"""
from __future__ import annotations

import asyncio
import functools
import logging
import pathlib
import signal
import sys

import click

import peermatch
from peermatch.config import DEFAULT_RELAY_ADDRESS
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
from peermatch.exceptions import SessionClosedError
from peermatch.profile import Coordinate
from peermatch.profile import Profile
from peermatch.profile import profile_distance
from peermatch.registry import SessionRegistry
from peermatch.relay.client import RelayClient
from peermatch.relay.run import LOG_DATE_FORMAT
from peermatch.relay.run import LOG_FORMAT
from peermatch.session import short_id
from peermatch.transport.rtc import RTCTransport

logger = logging.getLogger(__name__)


def describe_event(event: SessionEvent, local: Profile) -> str:
    """Get a human readable description of a session event.

    Args:
        event: Event to describe.
        local: Profile of the local participant used to compute distances.
    """
    peer = short_id(event.peer_id)
    if isinstance(event, PeerDiscovered):
        role = 'initiator' if event.initiator else 'responder'
        return f'Discovered peer {peer} (we are the {role})'
    elif isinstance(event, SessionOpened):
        return f'Connected to peer {peer}'
    elif isinstance(event, ProfileUpdated):
        km = profile_distance(local, event.profile)
        where = '' if km is None else f', {km:.1f} km away'
        return f'Peer {peer} is {event.profile.display_name}{where}'
    elif isinstance(event, LikeReceived):
        return f'Peer {peer} liked you'
    elif isinstance(event, Matched):
        name = 'unknown' if event.profile is None else event.profile.name
        phone = '' if event.profile is None else event.profile.phone
        contact = f' (phone: {phone})' if phone else ''
        return f'Matched with {name} [{peer}]{contact}'
    elif isinstance(event, ChatReceived):
        return f'Chat from {peer}: {event.entry.text}'
    elif isinstance(event, ConnectivityChanged):
        return f'Connection to {peer} is {event.connectivity.value}'
    elif isinstance(event, StatsUpdated):
        rtt = event.stats.round_trip_time_ms
        latency = 'unknown' if rtt is None else f'{rtt:.0f} ms'
        return (
            f'Connection to {peer}: latency {latency}, route '
            f'{event.stats.route_kind.value}'
        )
    elif isinstance(event, SessionClosed):
        return f'Session with {peer} closed ({event.reason})'
    else:
        return f'Unknown event from {peer}: {event!r}'


def handle_event(
    registry: SessionRegistry,
    event: SessionEvent,
    *,
    like_all: bool = False,
) -> None:
    """Log a session event and optionally like newly connected peers.

    Events are consumed after they are queued so the session an event
    refers to may already be closed.
    """
    level = (
        logging.DEBUG
        if isinstance(event, (StatsUpdated, ConnectivityChanged))
        else logging.INFO
    )
    logger.log(level, describe_event(event, registry.profile))
    if like_all and isinstance(event, SessionOpened):
        try:
            registry.like(event.peer_id)
        except SessionClosedError as e:
            logger.debug(f'Not liking {short_id(event.peer_id)}: {e}')


async def run_peer(config: PeerConfig, *, like_all: bool = False) -> None:
    """Run a peer until SIGINT or SIGTERM is received.

    Args:
        config: Peer configuration.
        like_all: Like every peer once its session opens.
    """
    loop = asyncio.get_running_loop()
    stop = loop.create_future()
    loop.add_signal_handler(signal.SIGINT, stop.set_result, None)
    loop.add_signal_handler(signal.SIGTERM, stop.set_result, None)

    relay_client = RelayClient(
        config.relay_address,
        verify_certificate=config.verify_certificate,
    )
    registry = SessionRegistry(
        relay_client,
        config.profile,
        transport_factory=functools.partial(
            RTCTransport,
            ice_servers=config.ice_servers,
        ),
        handshake_timeout=config.handshake_timeout,
        stats_interval=config.stats_interval,
    )

    async with registry:
        logger.info(
            f'Registered with relay server at {config.relay_address} as '
            f'{registry.participant_id}',
        )
        logger.info('Use ctrl-C to stop')
        while not stop.done():
            recv_task = asyncio.ensure_future(registry.recv())
            done, _ = await asyncio.wait(
                {recv_task, stop},
                return_when=asyncio.FIRST_COMPLETED,
            )
            if recv_task not in done:
                recv_task.cancel()
                break

            handle_event(registry, recv_task.result(), like_all=like_all)

    loop.remove_signal_handler(signal.SIGINT)
    loop.remove_signal_handler(signal.SIGTERM)

    logger.info('Peer shutdown')


@click.group()
def cli() -> None:
    """Configure and run PeerMatch peers."""
    pass


@cli.command()
def version() -> None:
    """Show the PeerMatch version."""
    click.echo(f'PeerMatch v{peermatch.__version__}')


@cli.command()
@click.argument('path', metavar='PATH', type=click.Path(dir_okay=False))
@click.option(
    '--relay-address',
    default=DEFAULT_RELAY_ADDRESS,
    metavar='ADDR',
    help='Relay server address.',
)
@click.option(
    '--verify-certificate/--no-verify-certificate',
    default=True,
    help='Verify the relay server SSL certificate.',
)
@click.option(
    '--ice-server',
    'ice_servers',
    multiple=True,
    metavar='URL',
    help='STUN/TURN server URL. May be repeated.',
)
@click.option('--name', default='', help='Display name.')
@click.option('--preferences', default='', help='Preference tag.')
@click.option('--about', default='', help='Short bio.')
@click.option('--phone', default='', help='Contact number.')
@click.option('--latitude', type=float, help='Location latitude.')
@click.option('--longitude', type=float, help='Location longitude.')
def configure(
    path: str,
    relay_address: str,
    verify_certificate: bool,
    ice_servers: tuple[str, ...],
    name: str,
    preferences: str,
    about: str,
    phone: str,
    latitude: float | None,
    longitude: float | None,
) -> None:
    """Write a new peer configuration file."""
    if (latitude is None) != (longitude is None):
        raise click.UsageError(
            'Both --latitude and --longitude must be given for a location.',
        )
    location = (
        None
        if latitude is None or longitude is None
        else Coordinate(latitude=latitude, longitude=longitude)
    )
    kwargs = {'ice_servers': list(ice_servers)} if ice_servers else {}
    try:
        config = PeerConfig(
            relay_address=relay_address,
            verify_certificate=verify_certificate,
            profile=Profile(
                name=name,
                preferences=preferences,
                about=about,
                phone=phone,
                location=location,
            ),
            **kwargs,
        )
    except ValueError as e:
        raise click.BadParameter(str(e)) from e

    config.write_toml(path)
    click.echo(f'Wrote peer configuration to {path}')


@cli.command()
@click.option('--config', '-c', 'config_path', help='Configuration file.')
@click.option('--relay-address', metavar='ADDR', help='Relay server address.')
@click.option(
    '--picture',
    type=click.Path(exists=True, dir_okay=False),
    help='Image file to attach to the profile.',
)
@click.option(
    '--like-all/--no-like-all',
    default=False,
    help='Like every peer once connected.',
)
@click.option(
    '--log-level',
    type=click.Choice(
        ['CRITICAL', 'ERROR', 'WARNING', 'INFO', 'DEBUG'],
        case_sensitive=False,
    ),
    help='Minimum logging level.',
)
def start(
    config_path: str | None,
    relay_address: str | None,
    picture: str | None,
    like_all: bool,
    log_level: str | None,
) -> None:
    """Start a peer.

    If no configuration file is provided, a default configuration will be
    created from [`PeerConfig()`][peermatch.config.PeerConfig]. The
    remaining CLI options will override the options provided in the
    configuration object.
    """
    config = (
        PeerConfig()
        if config_path is None
        else PeerConfig.from_toml(config_path)
    )

    # Override config with CLI options if given
    if relay_address is not None:
        config.relay_address = relay_address
    if picture is not None:
        config.profile = config.profile.model_copy(
            update={'picture': pathlib.Path(picture).read_bytes()},
        )
    if log_level is not None:
        config.log_level = log_level.upper()

    logging.basicConfig(
        format=LOG_FORMAT,
        datefmt=LOG_DATE_FORMAT,
        level=config.log_level,
        handlers=[logging.StreamHandler(sys.stdout)],
    )
    logging.getLogger('aioice').setLevel(config.aioice_level)
    logging.getLogger('websockets').setLevel(logging.WARNING)

    asyncio.run(run_peer(config, like_all=like_all))
