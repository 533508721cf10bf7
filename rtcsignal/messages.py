"""Signaling message types and the JSON wire codec."""
from __future__ import annotations

import dataclasses
import enum
import json
from typing import Any


class MessageType(enum.Enum):
    """Types of signaling messages supported."""

    offer = 'offer'
    """SDP offer from the remote peer."""
    answer = 'answer'
    """SDP answer to a previously received offer."""
    candidate = 'candidate'
    """Trickled ICE candidate."""
    data = 'data'
    """Arbitrary application-level text."""


@dataclasses.dataclass
class SignalingMessage:
    """Signaling message exchanged with a peer over the transport.

    Attributes:
        type: Message type.
        sdp: Session description protocol text for offers and answers.
        candidate: ICE candidate line (e.g., `#!python 'candidate:...'`).
            An empty string marks the end of candidates.
        sdpMid: Media stream identification the candidate belongs to.
        sdpMLineIndex: Index of the media line the candidate belongs to.
        data: Application-level payload.
    """

    type: MessageType  # noqa: A003
    sdp: str | None = None
    candidate: str | None = None
    sdpMid: str | None = None  # noqa: N815
    sdpMLineIndex: int = 0  # noqa: N815
    data: str | None = None


class MessageError(Exception):
    """Base exception type for signaling messages."""

    pass


class MessageDecodeError(MessageError):
    """Exception raised when a message cannot be decoded."""

    pass


class MessageEncodeError(MessageError):
    """Exception raised when a message cannot be encoded."""

    pass


_REQUIRED_FIELDS: dict[MessageType, tuple[str, ...]] = {
    MessageType.offer: ('sdp',),
    MessageType.answer: ('sdp',),
    MessageType.candidate: ('candidate', 'sdpMid'),
    MessageType.data: ('data',),
}
_STRING_FIELDS = ('sdp', 'candidate', 'sdpMid', 'data')


def _check_field_types(data: dict[str, Any]) -> None:
    for key in _STRING_FIELDS:
        value = data.get(key)
        if value is not None and not isinstance(value, str):
            raise MessageDecodeError(
                f'Field {key} must be a string but got '
                f'{type(value).__name__}.',
            )

    index = data.get('sdpMLineIndex')
    # bool is a subclass of int but is never a valid line index
    if index is not None and (
        not isinstance(index, int) or isinstance(index, bool)
    ):
        raise MessageDecodeError(
            'Field sdpMLineIndex must be an integer but got '
            f'{type(index).__name__}.',
        )


def decode_message(message: str | bytes) -> SignalingMessage:
    """Decode JSON string into a signaling message.

    Args:
        message: JSON string to decode.

    Returns:
        Parsed message.

    Raises:
        MessageDecodeError: If the message is not valid JSON, has an unknown
            type, is missing fields required by its type, or has fields of
            the wrong type.
    """
    try:
        data = json.loads(message)
    except (json.JSONDecodeError, UnicodeDecodeError) as e:
        raise MessageDecodeError('Failed to load string as JSON.') from e

    if not isinstance(data, dict):
        raise MessageDecodeError(
            f'Expected a JSON object but got {type(data).__name__}.',
        )

    try:
        type_name = data['type']
    except KeyError as e:
        raise MessageDecodeError('Message does not contain a type key.') from e

    try:
        message_type = MessageType(type_name)
    except ValueError as e:
        raise MessageDecodeError(
            f'The message is of an unknown message type: {type_name}.',
        ) from e

    _check_field_types(data)

    missing = [
        key
        for key in _REQUIRED_FIELDS[message_type]
        if data.get(key) is None
    ]
    if len(missing) > 0:
        raise MessageDecodeError(
            f'Message of type {message_type.value} is missing required '
            f'field(s): {", ".join(missing)}.',
        )

    index = data.get('sdpMLineIndex')
    return SignalingMessage(
        type=message_type,
        sdp=data.get('sdp'),
        candidate=data.get('candidate'),
        sdpMid=data.get('sdpMid'),
        sdpMLineIndex=0 if index is None else index,
        data=data.get('data'),
    )


def encode_message(message: SignalingMessage) -> str:
    """Encode message as JSON string.

    Fields set to `None` are omitted. The `sdpMLineIndex` field is only
    written for candidate messages.

    Args:
        message: Message to JSON encode.

    Raises:
        MessageEncodeError: If the message cannot be JSON encoded.
    """
    if not isinstance(message, SignalingMessage):
        raise MessageEncodeError(
            f'Message is not an instance of {SignalingMessage.__name__}. '
            f'Got {type(message).__name__}.',
        )

    data: dict[str, Any] = {'type': message.type.value}
    for key in _STRING_FIELDS:
        value = getattr(message, key)
        if value is not None:
            data[key] = value
    if message.type is MessageType.candidate:
        data['sdpMLineIndex'] = message.sdpMLineIndex

    try:
        return json.dumps(data)
    except TypeError as e:
        raise MessageEncodeError('Error encoding message.') from e
