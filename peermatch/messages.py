"""Application messages exchanged over an open peer channel.

Messages are JSON objects tagged by a `type` key. Profile pictures are
base64 encoded on the wire.
"""
from __future__ import annotations

import base64
import binascii
import dataclasses
import enum
import json
from typing import Any

import pydantic

from peermatch.exceptions import MalformedMessageError
from peermatch.profile import Profile


class MessageType(enum.Enum):
    """Types of messages supported."""

    profile = 'profile'
    """Full profile snapshot of the sender."""
    like = 'like'
    """Sender likes the receiver."""
    chat = 'chat'
    """Chat text from the sender."""


@dataclasses.dataclass
class Message:
    """Base message."""

    pass


@dataclasses.dataclass
class ProfileMessage(Message):
    """Announce the sender's profile.

    Attributes:
        profile: Snapshot of the sender's profile.
    """

    profile: Profile


@dataclasses.dataclass
class LikeMessage(Message):
    """Tell the receiver they are liked by the sender."""

    pass


@dataclasses.dataclass
class ChatMessage(Message):
    """Chat text sent to the receiver."""

    text: str


class MessageError(Exception):
    """Base exception type for application messages."""

    pass


class MessageDecodeError(MessageError, MalformedMessageError):
    """Exception raised when a message cannot be decoded."""

    pass


class UnknownMessageTypeError(MessageDecodeError):
    """Exception raised when a message has an unknown type tag.

    Receivers should ignore these messages to stay compatible with peers
    running newer versions of the protocol.
    """

    pass


class MessageEncodeError(MessageError):
    """Exception raised when a message cannot be encoded."""

    pass


def _profile_to_dict(profile: Profile) -> dict[str, Any]:
    data = profile.model_dump(mode='python')
    if profile.picture is not None:
        data['picture'] = base64.b64encode(profile.picture).decode('ascii')
    return data


def _profile_from_dict(data: Any) -> Profile:
    if not isinstance(data, dict):
        raise MessageDecodeError('Profile must be a JSON object.')
    data = data.copy()
    picture = data.get('picture')
    if picture is not None:
        try:
            data['picture'] = base64.b64decode(picture, validate=True)
        except (binascii.Error, TypeError, ValueError) as e:
            raise MessageDecodeError(
                'Profile picture is not valid base64.',
            ) from e
    try:
        return Profile.model_validate(data)
    except pydantic.ValidationError as e:
        raise MessageDecodeError(f'Invalid profile: {e}') from e


def encode_message(message: Message) -> str:
    """Encode message as JSON string.

    Args:
        message: Message to JSON encode.

    Raises:
        MessageEncodeError: If the message cannot be JSON encoded.
    """
    if isinstance(message, ProfileMessage):
        data: dict[str, Any] = {
            'type': MessageType.profile.value,
            'profile': _profile_to_dict(message.profile),
        }
    elif isinstance(message, LikeMessage):
        data = {'type': MessageType.like.value}
    elif isinstance(message, ChatMessage):
        data = {'type': MessageType.chat.value, 'text': message.text}
    else:
        raise MessageEncodeError(
            f'Message is not an instance of {Message.__name__}. '
            f'Got {type(message).__name__}.',
        )

    try:
        return json.dumps(data)
    except (TypeError, ValueError) as e:
        raise MessageEncodeError('Error encoding message.') from e


def decode_message(message: bytes | str) -> Message:
    """Decode JSON string into correct message type.

    Args:
        message: JSON string or UTF-8 bytes to decode.

    Returns:
        Parsed message.

    Raises:
        UnknownMessageTypeError: If the message type is not known.
        MessageDecodeError: If the message cannot be decoded.
    """
    try:
        data = json.loads(message)
    except (json.JSONDecodeError, UnicodeDecodeError) as e:
        raise MessageDecodeError('Failed to load message as JSON.') from e

    if not isinstance(data, dict):
        raise MessageDecodeError('Message is not a JSON object.')

    try:
        message_type = MessageType(data['type'])
    except KeyError as e:
        raise MessageDecodeError(
            'Message does not contain a type key.',
        ) from e
    except (TypeError, ValueError) as e:
        raise UnknownMessageTypeError(
            f'The message is of an unknown type: {data["type"]}.',
        ) from e

    if message_type is MessageType.profile:
        return ProfileMessage(_profile_from_dict(data.get('profile')))
    elif message_type is MessageType.like:
        return LikeMessage()
    else:
        text = data.get('text')
        if not isinstance(text, str):
            raise MessageDecodeError('Chat message text must be a string.')
        return ChatMessage(text)
