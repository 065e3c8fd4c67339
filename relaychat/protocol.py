"""Relay wire frames.

Frames are JSON objects tagged by ``kind``. Inbound text is decoded once into
one of the frame classes below; anything else raises ProtocolError.
"""

import json
from dataclasses import dataclass
from typing import Optional

from .roster import Peer


class ProtocolError(Exception):
    pass


@dataclass(frozen=True)
class FirstFrame:
    public_key: str
    name: str
    kind = "first"

    def to_dict(self):
        return {"kind": self.kind, "public_key": self.public_key, "name": self.name}


@dataclass(frozen=True)
class SendMessageFrame:
    recipient: str
    payload: str
    group_id: Optional[str] = None
    kind = "send_message"

    def to_dict(self):
        data = {"kind": self.kind, "recipient": self.recipient, "payload": self.payload}
        if self.group_id is not None:
            data["group_id"] = self.group_id
        return data


@dataclass(frozen=True)
class NewUserFrame:
    user: Peer
    kind = "new_user"


@dataclass(frozen=True)
class RelayMessageFrame:
    sender: str
    payload: str
    group_id: Optional[str] = None
    kind = "relay_message"


@dataclass(frozen=True)
class UserLeftFrame:
    user_id: str
    kind = "user_left"


def _require_str(msg, field):
    value = msg.get(field)
    if not isinstance(value, str) or not value:
        raise ProtocolError(f"'{field}' must be a non-empty string")
    return value


def _optional_str(msg, field):
    value = msg.get(field)
    if value is None:
        return None
    if not isinstance(value, str) or not value:
        raise ProtocolError(f"'{field}' must be a non-empty string when present")
    return value


def _decode_new_user(msg):
    user = msg.get("user")
    if not isinstance(user, dict):
        raise ProtocolError("'user' must be an object")
    public_key = _optional_str(user, "public_key")
    user_id = _optional_str(user, "id") or public_key
    if not public_key or not user_id:
        raise ProtocolError("user without public key")
    if user_id != public_key:
        raise ProtocolError("user id does not match public key")
    name = user.get("name")
    if not isinstance(name, str):
        raise ProtocolError("'name' must be a string")
    return NewUserFrame(user=Peer.from_public_key(public_key, name))


def _decode_relay_message(msg):
    return RelayMessageFrame(
        sender=_require_str(msg, "sender"),
        payload=_require_str(msg, "payload"),
        group_id=_optional_str(msg, "group_id"),
    )


def _decode_user_left(msg):
    return UserLeftFrame(user_id=_require_str(msg, "user_id"))


_INBOUND_DECODERS = {
    NewUserFrame.kind: _decode_new_user,
    RelayMessageFrame.kind: _decode_relay_message,
    UserLeftFrame.kind: _decode_user_left,
}


def decode_frame(raw):
    """Decode one inbound frame from text, bytes or an already parsed dict."""
    if isinstance(raw, (bytes, bytearray)):
        try:
            raw = raw.decode("utf-8")
        except UnicodeDecodeError as e:
            raise ProtocolError(f"invalid UTF-8: {e}") from e
    if isinstance(raw, str):
        try:
            msg = json.loads(raw)
        except json.JSONDecodeError as e:
            raise ProtocolError(f"invalid JSON: {e}") from e
    else:
        msg = raw
    if not isinstance(msg, dict):
        raise ProtocolError("frame must be a JSON object")
    kind = msg.get("kind")
    decoder = _INBOUND_DECODERS.get(kind)
    if decoder is None:
        raise ProtocolError(f"unknown frame kind: {kind!r}")
    return decoder(msg)
