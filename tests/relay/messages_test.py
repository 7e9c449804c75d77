from __future__ import annotations

import json

import pytest

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


@pytest.mark.parametrize(
    'message',
    (
        Welcome('alice'),
        PresenceList(['alice', 'bob']),
        PresenceList([]),
        PeerJoined('alice'),
        PeerLeft('alice'),
        Signal(source='alice', signal={'type': 'offer', 'sdp': 'x'}),
        Signal(source='alice', signal={}, target='bob'),
    ),
)
def test_encode_decode(message: RelayMessage) -> None:
    assert decode_relay_message(encode_relay_message(message)) == message


def test_signal_wire_format() -> None:
    message = Signal(source='alice', signal={'type': 'answer'}, target='bob')
    data = json.loads(encode_relay_message(message))
    assert data == {
        'event': 'signal',
        'from': 'alice',
        'to': 'bob',
        'signal': {'type': 'answer'},
    }


def test_forwarded_signal_omits_target() -> None:
    message = Signal(source='alice', signal={'type': 'answer'})
    data = json.loads(encode_relay_message(message))
    assert 'to' not in data
    assert data['from'] == 'alice'


def test_presence_list_wire_format() -> None:
    data = json.loads(encode_relay_message(PresenceList(['bob'])))
    assert data == {'event': 'presence-list', 'participants': ['bob']}


def test_decode_peer_joined_from_wire() -> None:
    message = decode_relay_message(
        '{"event": "peer-joined", "participant_id": "carol"}',
    )
    assert message == PeerJoined('carol')


@pytest.mark.parametrize(
    ('message', 'match'),
    (
        ('not json', 'JSON'),
        ('[1, 2]', 'JSON object'),
        ('{"participant_id": "a"}', 'event key'),
        ('{"event": "unknown"}', 'unknown event'),
        ('{"event": ["welcome"]}', 'unknown event'),
        ('{"event": "welcome"}', 'Failed to convert'),
        ('{"event": "welcome", "participant_id": "a", "x": 1}', 'convert'),
        ('{"event": "welcome", "participant_id": 1}', 'must be str'),
        ('{"event": "presence-list", "participants": "a"}', 'list'),
        ('{"event": "presence-list", "participants": [1]}', 'must be str'),
        ('{"event": "signal", "from": "a", "signal": "x"}', 'object'),
        ('{"event": "signal", "from": "a", "to": 2, "signal": {}}', 'str'),
    ),
)
def test_decode_bad_messages(message: str, match: str) -> None:
    with pytest.raises(RelayMessageDecodeError, match=match):
        decode_relay_message(message)


def test_encode_non_message() -> None:
    with pytest.raises(RelayMessageEncodeError):
        encode_relay_message(object())  # type: ignore[arg-type]


def test_encode_base_message() -> None:
    with pytest.raises(RelayMessageEncodeError):
        encode_relay_message(RelayMessage())


def test_encode_unserializable_signal() -> None:
    message = Signal(source='alice', signal={'value': object()}, target='bob')
    with pytest.raises(RelayMessageEncodeError):
        encode_relay_message(message)
