"""Peer-to-peer transport abstraction.

Sessions consume any implementation of the
[`Transport`][peermatch.transport.protocols.Transport] protocol. The
[`RTCTransport`][peermatch.transport.rtc.RTCTransport] implementation uses
[aiortc](https://aiortc.readthedocs.io/){target=_blank}.
"""
from __future__ import annotations

from peermatch.transport.exceptions import TransportStateError
from peermatch.transport.protocols import Channel
from peermatch.transport.protocols import Connectivity
from peermatch.transport.protocols import RouteKind
from peermatch.transport.protocols import Transport
from peermatch.transport.protocols import TransportStats
