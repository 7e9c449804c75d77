from __future__ import annotations

import pytest

from peermatch.transport import Channel
from peermatch.transport import Connectivity
from peermatch.transport import RouteKind
from peermatch.transport import Transport
from peermatch.transport import TransportStats
from testing.transport import MemoryChannel
from testing.transport import MemoryNetwork


@pytest.mark.parametrize(
    ('candidate_type', 'route_kind'),
    (
        ('host', RouteKind.DIRECT_LOCAL),
        ('srflx', RouteKind.DIRECT_NAT_TRAVERSED),
        ('prflx', RouteKind.DIRECT_NAT_TRAVERSED),
        ('relay', RouteKind.RELAYED),
        ('other', RouteKind.UNKNOWN),
        (None, RouteKind.UNKNOWN),
    ),
)
def test_route_kind_from_candidate_type(
    candidate_type: str | None,
    route_kind: RouteKind,
) -> None:
    assert RouteKind.from_candidate_type(candidate_type) is route_kind


def test_route_kind_values() -> None:
    assert {kind.value for kind in RouteKind} == {
        'direct-local',
        'direct-nat-traversed',
        'relayed',
        'unknown',
    }


def test_terminal_connectivity() -> None:
    terminal = {state for state in Connectivity if state.terminal}
    assert terminal == {Connectivity.FAILED, Connectivity.CLOSED}


def test_default_stats() -> None:
    stats = TransportStats()
    assert stats.round_trip_time_ms is None
    assert stats.route_kind is RouteKind.UNKNOWN


def test_memory_implementations_satisfy_protocols() -> None:
    network = MemoryNetwork()
    assert isinstance(network.create_transport(), Transport)
    assert isinstance(MemoryChannel('test'), Channel)
