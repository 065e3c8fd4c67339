import json

import pytest

from relaychat.protocol import (
    FirstFrame,
    NewUserFrame,
    ProtocolError,
    RelayMessageFrame,
    SendMessageFrame,
    UserLeftFrame,
    decode_frame,
)

KEY = "ab" * 32


def test_decode_new_user():
    frame = decode_frame(json.dumps({
        "kind": "new_user",
        "user": {"id": KEY, "name": "Alice", "public_key": KEY},
    }))
    assert isinstance(frame, NewUserFrame)
    assert frame.user.identity == KEY
    assert frame.user.public_key == KEY
    assert frame.user.display_name == "Alice"


def test_decode_new_user_without_id_uses_key():
    frame = decode_frame({"kind": "new_user", "user": {"name": "Alice", "public_key": KEY}})
    assert frame.user.identity == KEY


def test_decode_relay_message_with_and_without_group():
    plain = decode_frame(b'{"kind": "relay_message", "sender": "s", "payload": "p"}')
    assert plain == RelayMessageFrame(sender="s", payload="p", group_id=None)
    grouped = decode_frame({"kind": "relay_message", "sender": "s", "payload": "p", "group_id": "s"})
    assert grouped.group_id == "s"


def test_decode_user_left():
    assert decode_frame({"kind": "user_left", "user_id": KEY}) == UserLeftFrame(user_id=KEY)


@pytest.mark.parametrize("raw", [
    "not json",
    "[1, 2]",
    b"\xff\xfe",
    {"kind": "mystery"},
    {"kind": "first", "public_key": KEY, "name": "me"},
    {"kind": "new_user", "user": {"id": KEY, "name": "Alice", "public_key": None}},
    {"kind": "new_user", "user": {"id": "other", "name": "Alice", "public_key": KEY}},
    {"kind": "new_user", "user": "Alice"},
    {"kind": "relay_message", "sender": "s"},
    {"kind": "relay_message", "sender": "s", "payload": 5},
    {"kind": "relay_message", "sender": "s", "payload": "p", "group_id": ""},
    {"kind": "user_left"},
])
def test_malformed_frames_rejected(raw):
    with pytest.raises(ProtocolError):
        decode_frame(raw)


def test_outbound_frames():
    assert FirstFrame(KEY, "me").to_dict() == {"kind": "first", "public_key": KEY, "name": "me"}
    assert SendMessageFrame("r", "c").to_dict() == {"kind": "send_message", "recipient": "r", "payload": "c"}
    assert SendMessageFrame("r", "c", KEY).to_dict()["group_id"] == KEY
