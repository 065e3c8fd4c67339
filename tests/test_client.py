import asyncio
import io
import json
import ssl

from relaychat.client import ConsoleView, handle_input, name_color
from relaychat.config import ClientConfig, MAX_MESSAGES_PER_CONVERSATION
from relaychat.message_store import GROUP_CONVERSATION, MessageStore
from relaychat.session import SessionController, SessionState
from relaychat.signals import Signals

from .conftest import FakeTransport, PeerKeys


def test_name_color_is_stable():
    assert name_color("Alice") == name_color("Alice")
    assert isinstance(name_color("Bob"), int)


def test_config_defaults(monkeypatch):
    for var in ("RELAYCHAT_SERVER_HOST", "RELAYCHAT_SERVER_PORT", "RELAYCHAT_TLS_ENABLED",
                "RELAYCHAT_CONFIG_DIR", "RELAYCHAT_MAX_MESSAGES"):
        monkeypatch.delenv(var, raising=False)
    config = ClientConfig()
    assert config.server_host == "127.0.0.1"
    assert config.server_port == 3333
    assert config.max_messages == MAX_MESSAGES_PER_CONVERSATION
    assert config.ssl_context() is None


def test_config_from_env(monkeypatch, tmp_path):
    monkeypatch.setenv("RELAYCHAT_SERVER_HOST", "relay.example")
    monkeypatch.setenv("RELAYCHAT_SERVER_PORT", "not-a-port")
    monkeypatch.setenv("RELAYCHAT_CONFIG_DIR", str(tmp_path))
    monkeypatch.setenv("RELAYCHAT_MAX_MESSAGES", "25")
    monkeypatch.setenv("RELAYCHAT_TLS_ENABLED", "yes")
    monkeypatch.setenv("RELAYCHAT_TLS_MIN_VERSION", "TLSv1.3")
    config = ClientConfig(server_port=4444)
    assert config.server_host == "relay.example"
    assert config.server_port == 4444
    assert config.max_messages == 25
    assert config.database_path.startswith(str(tmp_path))
    assert config.tls_server_name == "relay.example"
    assert config.ssl_context().minimum_version == ssl.TLSVersion.TLSv1_3


def test_console_commands(db_path, profile_store):
    alice = PeerKeys("Alice")

    async def scenario():
        store = MessageStore(db_path)
        await store.init()
        try:
            signals = Signals()
            controller = SessionController(store, profile_store, signals)
            screen = io.StringIO()
            view = ConsoleView(signals, controller, out=screen)
            controller.start()
            controller.request_identity()
            controller.submit_display_name("Me")
            transport = FakeTransport()
            await controller.transport_opened(transport)
            await controller.handle_frame(json.dumps(alice.new_user_frame()))

            out = io.StringIO()
            assert await handle_input(controller, "/peers", out)
            assert await handle_input(controller, "/to alice", out)
            active_after_to = controller.active_conversation
            assert await handle_input(controller, "hello alice\n", out)
            assert await handle_input(controller, "/list", out)
            assert await handle_input(controller, "/group", out)
            assert await handle_input(controller, "/to nobody", out)
            assert await handle_input(controller, "/bogus", out)
            assert not await handle_input(controller, "/quit", out)
            return view, active_after_to, controller, transport, out.getvalue(), screen.getvalue()
        finally:
            await store.close()

    view, active_after_to, controller, transport, out, screen = asyncio.run(scenario())
    assert active_after_to == alice.public_key
    assert controller.active_conversation == GROUP_CONVERSATION
    assert controller.state == SessionState.ACTIVE
    assert [f["recipient"] for f in transport.of_kind("send_message")] == [alice.public_key]
    assert "Alice" in out
    assert "unknown peer: nobody" in out
    assert "unknown command /bogus" in out
    assert "Me joined the chat." in screen
    assert "hello alice" in screen


def test_console_to_reaches_stored_conversation_after_peer_left(db_path, profile_store):
    alice = PeerKeys("Alice")

    async def scenario():
        store = MessageStore(db_path)
        await store.init()
        try:
            controller = SessionController(store, profile_store, Signals())
            controller.start()
            controller.request_identity()
            controller.submit_display_name("Me")
            await controller.transport_opened(FakeTransport())
            await controller.handle_frame(json.dumps(alice.new_user_frame()))
            await controller.select_conversation(alice.public_key)
            await controller.send_message("see you")
            await controller.select_conversation(GROUP_CONVERSATION)
            await controller.handle_frame(json.dumps({"kind": "user_left", "user_id": alice.public_key}))

            out = io.StringIO()
            await handle_input(controller, "/list", out)
            label = controller.conversation_label(alice.public_key)
            assert await handle_input(controller, f"/to {label}", out)
            return controller.active_conversation, out.getvalue()
        finally:
            await store.close()

    active, out = asyncio.run(scenario())
    assert active == alice.public_key
    assert "(offline)" in out
    assert "unknown peer" not in out
