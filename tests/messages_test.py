"""Message encode/decode tests."""
from __future__ import annotations

import json
from typing import Any

import pytest

from rtcsignal.messages import decode_message
from rtcsignal.messages import encode_message
from rtcsignal.messages import MessageDecodeError
from rtcsignal.messages import MessageEncodeError
from rtcsignal.messages import MessageType
from rtcsignal.messages import SignalingMessage

_CANDIDATE = 'candidate:1 1 udp 2130706431 192.168.1.2 5000 typ host'


@pytest.mark.parametrize(
    'data',
    (
        {'type': 'offer', 'sdp': 'v=0'},
        {'type': 'answer', 'sdp': 'v=0'},
        {
            'type': 'candidate',
            'candidate': _CANDIDATE,
            'sdpMid': '0',
            'sdpMLineIndex': 1,
        },
        {'type': 'candidate', 'candidate': '', 'sdpMid': '0'},
        {'type': 'data', 'data': 'hello'},
        {'type': 'offer', 'sdp': 'v=0', 'data': 'extra'},
    ),
)
def test_encode_decode(data: dict[str, Any]) -> None:
    message = decode_message(json.dumps(data))
    assert decode_message(encode_message(message)) == message

    expected = dict(data)
    if data['type'] == 'candidate':
        expected.setdefault('sdpMLineIndex', 0)
    assert json.loads(encode_message(message)) == expected


def test_decode_defaults_line_index() -> None:
    message = decode_message(
        json.dumps(
            {'type': 'candidate', 'candidate': _CANDIDATE, 'sdpMid': '0'},
        ),
    )
    assert message.type is MessageType.candidate
    assert message.sdpMLineIndex == 0


def test_decode_ignores_unknown_keys() -> None:
    message = decode_message(json.dumps({'type': 'data', 'data': 'x', 'y': 1}))
    assert message == SignalingMessage(type=MessageType.data, data='x')


def test_decode_bytes() -> None:
    message = decode_message(b'{"type": "offer", "sdp": "v=0"}')
    assert message.sdp == 'v=0'


@pytest.mark.parametrize(
    'raw',
    (
        'not json',
        '[1, 2, 3]',
        '"offer"',
        json.dumps({'sdp': 'v=0'}),
        json.dumps({'type': 'bye'}),
        json.dumps({'type': None}),
        json.dumps({'type': 'offer'}),
        json.dumps({'type': 'answer', 'sdp': None}),
        json.dumps({'type': 'candidate', 'sdpMid': '0'}),
        json.dumps({'type': 'candidate', 'candidate': _CANDIDATE}),
        json.dumps({'type': 'data'}),
        json.dumps({'type': 'offer', 'sdp': 42}),
        json.dumps(
            {
                'type': 'candidate',
                'candidate': _CANDIDATE,
                'sdpMid': '0',
                'sdpMLineIndex': '0',
            },
        ),
        json.dumps(
            {
                'type': 'candidate',
                'candidate': _CANDIDATE,
                'sdpMid': '0',
                'sdpMLineIndex': True,
            },
        ),
        json.dumps({'type': 'data', 'data': {'nested': 'object'}}),
    ),
)
def test_decode_bad_messages(raw: str) -> None:
    with pytest.raises(MessageDecodeError):
        decode_message(raw)


def test_encode_omits_unset_fields() -> None:
    message = SignalingMessage(type=MessageType.answer, sdp='v=0')
    assert json.loads(encode_message(message)) == {
        'type': 'answer',
        'sdp': 'v=0',
    }


def test_encode_bad_type() -> None:
    with pytest.raises(MessageEncodeError, match='Got object'):
        encode_message(object())  # type: ignore[arg-type]
