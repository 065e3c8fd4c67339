"""Client session: relay protocol state machine.

The controller owns the roster, the active conversation and the transport
handle. It is the only writer of the roster and the message store.
"""

import asyncio
import enum
from dataclasses import dataclass

from .crypto_utils import DecryptionError, IdentityProvider
from .message_store import GROUP_CONVERSATION, Message, MessageStoreError
from .profile_store import DEFAULT_DISPLAY_NAME, SelfProfile
from .protocol import (
    FirstFrame,
    NewUserFrame,
    ProtocolError,
    RelayMessageFrame,
    SendMessageFrame,
    UserLeftFrame,
    decode_frame,
)
from .roster import Roster


class SessionState(enum.Enum):
    UNPROVISIONED = "unprovisioned"
    AWAITING_DISPLAY_NAME = "awaiting_display_name"
    CONNECTING = "connecting"
    ACTIVE = "active"
    DISCONNECTED = "disconnected"


class SessionStateError(Exception):
    pass


@dataclass(frozen=True)
class ConversationSummary:
    conversation_id: str
    label: str
    unread: bool
    online: bool


class SessionController:
    def __init__(self, store, profile_store, signals=None, identity=None, roster=None):
        self.store = store
        self.profile_store = profile_store
        self.signals = signals
        self.identity = identity or IdentityProvider()
        self.roster = roster if roster is not None else Roster()
        self.profile = None
        self.transport = None
        self.active_conversation = None
        self.state = SessionState.UNPROVISIONED
        # Held while the active conversation is switched and while an inbound
        # message is stored, so every message is either in the loaded history
        # or emitted live, never neither.
        self._conversation_lock = asyncio.Lock()

    def _emit(self, name, *args):
        if self.signals is None:
            return
        getattr(self.signals, name).emit(*args)

    def _set_state(self, state):
        self.state = state
        print(f"[SESSION] state -> {state.value}")
        self._emit("state_changed", state.value)

    def _require(self, *states):
        if self.state not in states:
            allowed = ", ".join(s.value for s in states)
            raise SessionStateError(f"Operation requires state {allowed}, session is {self.state.value}")

    def _report_error(self, message):
        print(f"[SESSION ERROR] {message}")
        self._emit("error", message)

    # ----------------- lifecycle -----------------

    def start(self):
        self.profile = self.profile_store.load()
        if self.profile is None:
            self._set_state(SessionState.UNPROVISIONED)
        else:
            self._set_state(SessionState.CONNECTING)
        return self.state

    def request_identity(self):
        self._require(SessionState.UNPROVISIONED)
        public_key, private_key = self.identity.generate_keypair()
        self.profile = SelfProfile.create(public_key, private_key, DEFAULT_DISPLAY_NAME)
        self._set_state(SessionState.AWAITING_DISPLAY_NAME)
        return self.profile

    def submit_display_name(self, name):
        self._require(SessionState.AWAITING_DISPLAY_NAME)
        self.profile.name = (name or "").strip() or DEFAULT_DISPLAY_NAME
        self.profile_store.save(self.profile)
        self._set_state(SessionState.CONNECTING)
        self._emit("notice", f"{self.profile.name} joined the chat.")

    async def transport_opened(self, transport):
        self._require(SessionState.CONNECTING)
        self.transport = transport
        await transport.send(FirstFrame(self.profile.public_key, self.profile.name).to_dict())
        self.active_conversation = GROUP_CONVERSATION
        self._set_state(SessionState.ACTIVE)
        await self._load_history(GROUP_CONVERSATION)

    def transport_closed(self):
        self.transport = None
        if self.state != SessionState.DISCONNECTED:
            self._set_state(SessionState.DISCONNECTED)

    # ----------------- inbound -----------------

    async def handle_frame(self, raw):
        """Apply one inbound relay frame. Returns False when the frame was dropped."""
        if self.state != SessionState.ACTIVE:
            print(f"[SESSION] frame ignored in state {self.state.value}")
            return False
        try:
            frame = decode_frame(raw)
        except ProtocolError as e:
            print("[JSON ERROR]", e)
            return False

        if isinstance(frame, NewUserFrame):
            return await self._on_new_user(frame)
        if isinstance(frame, UserLeftFrame):
            return await self._on_user_left(frame)
        if isinstance(frame, RelayMessageFrame):
            return await self._on_relay_message(frame)
        return False

    async def _on_new_user(self, frame):
        peer = frame.user
        if peer.identity == self.profile.public_key:
            return False
        self.roster.add(peer)
        self._emit("notice", f"{peer.display_name} joined the chat.")
        await self.refresh_conversations()
        return True

    async def _on_user_left(self, frame):
        peer = self.roster.remove(frame.user_id)
        if peer is not None:
            self._emit("notice", f"{peer.display_name} left the chat.")
        await self.refresh_conversations()
        return peer is not None

    def _conversation_for(self, frame):
        if frame.group_id is None:
            return frame.sender
        if frame.group_id in (frame.sender, self.profile.public_key):
            return GROUP_CONVERSATION
        return frame.sender

    async def _on_relay_message(self, frame):
        peer = self.roster.get(frame.sender)
        if peer is None:
            print(f"[SESSION] message from unknown sender {frame.sender[:16]} dropped")
            return False
        conversation_id = self._conversation_for(frame)
        try:
            text = self.identity.decrypt(frame.payload, self.profile.private_key)
        except DecryptionError as e:
            print(f"[SESSION] cannot decrypt message from {peer.display_name}: {e}")
            return False

        async with self._conversation_lock:
            is_active = conversation_id == self.active_conversation
            try:
                await self.store.append(
                    Message(sender=peer.display_name, payload=text, conversation_id=conversation_id),
                    mark_unread=not is_active,
                )
            except MessageStoreError as e:
                self._report_error(f"Message from {peer.display_name} could not be saved: {e}")
                # Already decrypted: still show it rather than lose it.
                if is_active:
                    self._emit("message", conversation_id, peer.display_name, text)
                else:
                    label = self.conversation_label(conversation_id)
                    self._emit("notice", f"[{label}] {peer.display_name}: {text}")
                return True
            if is_active:
                self._emit("message", conversation_id, peer.display_name, text)

        if not is_active:
            self._emit("conversation_updated", conversation_id)
            await self.refresh_conversations()
        return True

    # ----------------- outbound -----------------

    def recipients_for(self, conversation_id):
        if conversation_id == GROUP_CONVERSATION:
            return sorted(self.roster.all(), key=lambda p: p.identity)
        peer = self.roster.get(conversation_id)
        return [peer] if peer is not None else []

    async def send_message(self, text):
        self._require(SessionState.ACTIVE)
        if not text:
            return 0
        conversation_id = self.active_conversation
        try:
            await self.store.append(
                Message(sender=self.profile.name, payload=text, conversation_id=conversation_id)
            )
        except MessageStoreError as e:
            self._report_error(f"Message could not be saved: {e}")
            raise
        self._emit("message", conversation_id, self.profile.name, text)

        group_id = self.profile.public_key if conversation_id == GROUP_CONVERSATION else None
        recipients = self.recipients_for(conversation_id)
        if not recipients and conversation_id != GROUP_CONVERSATION:
            self._emit("notice", "Peer is offline, message kept locally only.")
        sent = 0
        for peer in recipients:
            try:
                payload = self.identity.encrypt(text, peer.public_key)
            except ValueError as e:
                self._report_error(f"Cannot encrypt for {peer.display_name}: {e}")
                continue
            await self.transport.send(SendMessageFrame(peer.identity, payload, group_id).to_dict())
            sent += 1
        return sent

    # ----------------- conversations -----------------

    async def _load_history(self, conversation_id):
        messages = await self.store.list_by_conversation(conversation_id)
        self._emit("history", conversation_id, messages)
        return messages

    async def select_conversation(self, conversation_id):
        self._require(SessionState.ACTIVE)
        async with self._conversation_lock:
            self.active_conversation = conversation_id
            messages = await self._load_history(conversation_id)
            await self.store.mark_read(conversation_id)
        await self.refresh_conversations()
        return messages

    async def find_conversation(self, query):
        """Resolve a name or id prefix to a conversation id, or None.

        Online peers are matched first. Stored one-to-one conversations with
        peers who have left can still be reached by their id prefix.
        """
        peer = self.roster.find_by_name(query)
        if peer is not None:
            return peer.identity
        query = (query or "").strip().lower()
        if not query:
            return None
        matches = sorted(
            c for c in await self.store.conversation_ids()
            if c != GROUP_CONVERSATION and c.lower().startswith(query)
        )
        return matches[0] if matches else None

    def conversation_label(self, conversation_id):
        if conversation_id == GROUP_CONVERSATION:
            return "Group"
        peer = self.roster.get(conversation_id)
        if peer is not None:
            return peer.display_name
        return conversation_id[:12]

    async def conversation_summaries(self):
        unread = await self.store.unread_conversations()
        known = await self.store.conversation_ids()
        ids = {p.identity for p in self.roster.all()} | known
        ids.discard(GROUP_CONVERSATION)
        summaries = [ConversationSummary(GROUP_CONVERSATION, "Group", GROUP_CONVERSATION in unread, True)]
        for conversation_id in sorted(ids, key=lambda c: (self.conversation_label(c).lower(), c)):
            summaries.append(ConversationSummary(
                conversation_id,
                self.conversation_label(conversation_id),
                conversation_id in unread,
                conversation_id in self.roster,
            ))
        return summaries

    async def refresh_conversations(self):
        try:
            summaries = await self.conversation_summaries()
        except MessageStoreError as e:
            self._report_error(f"Conversation list unavailable: {e}")
            return []
        self._emit("conversations", summaries)
        return summaries

    async def clear_conversation(self, conversation_id):
        await self.store.clear_conversation(conversation_id)
        if conversation_id == self.active_conversation:
            self._emit("history", conversation_id, [])
        await self.refresh_conversations()

    async def clear_history(self):
        await self.store.clear_all()
        if self.active_conversation is not None:
            self._emit("history", self.active_conversation, [])
        await self.refresh_conversations()
