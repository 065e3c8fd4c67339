from .message_store import GROUP_CONVERSATION, Message, MessageStore, StoredMessage
from .roster import Peer, Roster
from .session import SessionController, SessionState

__all__ = [
    "GROUP_CONVERSATION",
    "Message",
    "MessageStore",
    "StoredMessage",
    "Peer",
    "Roster",
    "SessionController",
    "SessionState",
]
