from dataclasses import dataclass


@dataclass(frozen=True)
class Peer:
    identity: str
    display_name: str
    public_key: str

    @classmethod
    def from_public_key(cls, public_key, display_name):
        return cls(identity=public_key, display_name=display_name, public_key=public_key)


class Roster:
    """Peers currently present in the session, keyed by identity (= public key)."""

    def __init__(self):
        self._peers = {}

    def add(self, peer):
        self._peers[peer.identity] = peer

    def remove(self, identity):
        return self._peers.pop(identity, None)

    def get(self, identity):
        return self._peers.get(identity)

    def all(self):
        return set(self._peers.values())

    def find_by_name(self, name):
        wanted = (name or "").strip().lower()
        if not wanted:
            return None
        for peer in self._peers.values():
            if peer.display_name.lower() == wanted:
                return peer
        for identity, peer in self._peers.items():
            if identity.startswith(wanted):
                return peer
        return None

    def __contains__(self, identity):
        return identity in self._peers

    def __len__(self):
        return len(self._peers)
