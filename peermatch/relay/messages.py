"""Message types for relay client and relay server communication.

Messages are JSON objects with an `event` key naming the message type.
The wire keys `from` and `to` of signal messages are Python keywords so
they are mapped to the `source` and `target` attributes of
[`Signal`][peermatch.relay.messages.Signal].
"""
from __future__ import annotations

import dataclasses
import enum
import json
from typing import Any


class RelayEvent(enum.Enum):
    """Types of messages supported."""

    welcome = 'welcome'
    """Relay tells a new client its participant identifier."""
    presence_list = 'presence-list'
    """Relay tells a new client about the other connected participants."""
    peer_joined = 'peer-joined'
    """Relay announces a newly connected participant."""
    peer_left = 'peer-left'
    """Relay announces a departed participant."""
    signal = 'signal'
    """Handshake payload addressed to one participant."""


@dataclasses.dataclass
class RelayMessage:
    """Base message."""

    pass


@dataclasses.dataclass
class Welcome(RelayMessage):
    """Identifier assigned to the client by the relay server.

    Attributes:
        participant_id: Identifier of the receiving client.
    """

    participant_id: str
    event: str = RelayEvent.welcome.value


@dataclasses.dataclass
class PresenceList(RelayMessage):
    """Participants connected when the receiving client joined.

    Attributes:
        participants: Identifiers of the other connected clients. Never
            contains the identifier of the receiving client.
    """

    participants: list[str]
    event: str = RelayEvent.presence_list.value


@dataclasses.dataclass
class PeerJoined(RelayMessage):
    """A participant connected to the relay server."""

    participant_id: str
    event: str = RelayEvent.peer_joined.value


@dataclasses.dataclass
class PeerLeft(RelayMessage):
    """A participant disconnected from the relay server."""

    participant_id: str
    event: str = RelayEvent.peer_left.value


@dataclasses.dataclass
class Signal(RelayMessage):
    """Opaque handshake payload exchanged between two participants.

    Clients send signals with `target` set. The relay server forwards the
    signal to the target with `target` cleared and `source` set to the
    sender's identifier.

    Attributes:
        source: Identifier of the sending participant.
        signal: Opaque handshake payload. The relay never inspects it.
        target: Identifier of the receiving participant.
    """

    source: str
    signal: dict[str, Any]
    target: str | None = None
    event: str = RelayEvent.signal.value


_MESSAGE_TYPES: dict[str, type[RelayMessage]] = {
    RelayEvent.welcome.value: Welcome,
    RelayEvent.presence_list.value: PresenceList,
    RelayEvent.peer_joined.value: PeerJoined,
    RelayEvent.peer_left.value: PeerLeft,
    RelayEvent.signal.value: Signal,
}

# Attribute name to wire key
_WIRE_KEYS = {'source': 'from', 'target': 'to'}
_ATTRIBUTE_NAMES = {value: key for key, value in _WIRE_KEYS.items()}


class RelayMessageError(Exception):
    """Base exception type for relay messages."""

    pass


class RelayMessageDecodeError(RelayMessageError):
    """Exception raised when a message cannot be decoded."""

    pass


class RelayMessageEncodeError(RelayMessageError):
    """Exception raised when an message cannot be encoded."""

    pass


def _check_types(message: RelayMessage) -> None:
    if isinstance(message, Signal):
        if not isinstance(message.signal, dict):
            raise RelayMessageDecodeError('Signal payload must be an object.')
        ids = [message.source]
        if message.target is not None:
            ids.append(message.target)
    elif isinstance(message, PresenceList):
        if not isinstance(message.participants, list):
            raise RelayMessageDecodeError('Participants must be a list.')
        ids = message.participants
    else:
        ids = [getattr(message, 'participant_id')]

    if not all(isinstance(i, str) for i in ids):
        raise RelayMessageDecodeError('Participant identifiers must be str.')


def decode_relay_message(message: str) -> RelayMessage:
    """Decode JSON string into correct relay message type.

    Args:
        message: JSON string to decode.

    Returns:
        Parsed message.

    Raises:
        RelayMessageDecodeError: If the message cannot be decoded.
    """
    try:
        data = json.loads(message)
    except json.JSONDecodeError as e:
        raise RelayMessageDecodeError('Failed to load string as JSON.') from e

    if not isinstance(data, dict):
        raise RelayMessageDecodeError('Message is not a JSON object.')

    try:
        event = data.pop('event')
    except KeyError as e:
        raise RelayMessageDecodeError(
            'Message does not contain an event key.',
        ) from e

    try:
        message_type = _MESSAGE_TYPES[event]
    except (KeyError, TypeError) as e:
        raise RelayMessageDecodeError(
            f'The message is of an unknown event type: {event}.',
        ) from e

    data = {
        _ATTRIBUTE_NAMES.get(key, key): value for key, value in data.items()
    }

    try:
        decoded = message_type(**data)
    except TypeError as e:
        raise RelayMessageDecodeError(
            f'Failed to convert message to {message_type.__name__}: {e}',
        ) from e

    _check_types(decoded)
    return decoded


def encode_relay_message(message: RelayMessage) -> str:
    """Encode message as JSON string.

    Args:
        message: Message to JSON encode.

    Raises:
        RelayMessageEncodeError: If the message cannot be JSON encoded.
    """
    if not isinstance(message, RelayMessage) or type(message) is RelayMessage:
        raise RelayMessageEncodeError(
            f'Message is not an instance of {RelayMessage.__name__}. '
            f'Got {type(message).__name__}.',
        )

    data = dataclasses.asdict(message)
    if isinstance(message, Signal) and message.target is None:
        data.pop('target')
    data = {_WIRE_KEYS.get(key, key): value for key, value in data.items()}

    try:
        return json.dumps(data)
    except (TypeError, ValueError) as e:
        raise RelayMessageEncodeError('Error encoding message.') from e
