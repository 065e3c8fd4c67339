import pytest

from relaychat.crypto_utils import generate_keypair
from relaychat.message_store import MessageStore
from relaychat.profile_store import ProfileStore
from relaychat.roster import Peer


class FakeTransport:
    def __init__(self):
        self.sent = []

    async def send(self, data):
        self.sent.append(data)

    def of_kind(self, kind):
        return [f for f in self.sent if f.get("kind") == kind]


class SignalSpy:
    def __init__(self, signal):
        self.calls = []
        signal.connect(self._record)

    def _record(self, *args):
        self.calls.append(args)


class PeerKeys:
    """A remote user: roster entry plus the private key only that user holds."""

    def __init__(self, name):
        self.public_key, self.private_key = generate_keypair()
        self.peer = Peer.from_public_key(self.public_key, name)

    def new_user_frame(self):
        return {
            "kind": "new_user",
            "user": {"id": self.public_key, "name": self.peer.display_name, "public_key": self.public_key},
        }


@pytest.fixture
def fake_transport():
    return FakeTransport()


@pytest.fixture
def profile_store(tmp_path):
    return ProfileStore(config_dir=tmp_path / "config", use_keyring=False, allow_plaintext=True)


@pytest.fixture
def db_path(tmp_path):
    return tmp_path / "config" / "messages.db"


@pytest.fixture
def make_store(db_path):
    def _make(max_messages=100):
        return MessageStore(db_path, max_messages=max_messages)
    return _make
