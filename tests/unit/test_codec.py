from __future__ import annotations

import json

import pytest

from chat_client.application.dto.events import MessageEvent, SendMessagePayload
from chat_client.application.exceptions import FrameDecodeError
from chat_client.infrastructure.ws.codec import decode_frame, encode_frame, parse_payload
from tests.conftest import message_event


def test_encode_uses_camel_case_aliases():
    raw = encode_frame(
        "message:send",
        SendMessagePayload(recipient_id=None, content="Hi", conversation_id="c1", client_msg_id="t1"),
    )

    assert json.loads(raw) == {
        "event": "message:send",
        "data": {"recipientId": None, "content": "Hi", "conversationId": "c1", "clientMsgId": "t1"},
    }


def test_encode_without_payload():
    assert json.loads(encode_frame("ping")) == {"event": "ping", "data": {}}


def test_decode_accepts_bytes():
    frame = decode_frame(b'{"event": "user:online", "data": {"userId": 5}}')

    assert frame.event == "user:online"
    assert frame.data == {"userId": 5}


@pytest.mark.parametrize(
    "raw",
    [
        "not json",
        '{"data": {}}',
        '{"event": "", "data": {}}',
        '{"event": "x", "data": [1, 2]}',
    ],
)
def test_decode_rejects_malformed_frames(raw):
    with pytest.raises(FrameDecodeError):
        decode_frame(raw)


def test_parse_payload_accepts_legacy_field_names():
    data = message_event(id=1)
    data["chatId"] = data.pop("conversationId")
    data["read"] = data.pop("isRead")

    event = parse_payload(MessageEvent, data)

    assert event.conversation_id == "c1"
    assert event.is_read is False


def test_parse_payload_wraps_validation_errors():
    with pytest.raises(FrameDecodeError):
        parse_payload(MessageEvent, {"id": "not-a-number"})
