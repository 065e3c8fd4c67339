import argparse
import asyncio
import hashlib
import sys
import threading

from .config import ClientConfig
from .message_store import GROUP_CONVERSATION, MessageStore, MessageStoreError
from .network import RelayConnection
from .profile_store import ProfileStore
from .session import SessionController, SessionState
from .signals import Signals

_COLORS = (31, 32, 33, 34, 35, 36, 91, 92, 93, 94, 95, 96)

HELP_TEXT = (
    "Commands: /peers, /list, /group, /to <name or id>, /clear, /help, /quit. "
    "Anything else is sent to the current conversation."
)


def name_color(name):
    """Stable ANSI colour code for a display name."""
    digest = hashlib.sha256(name.encode("utf-8")).digest()
    return _COLORS[digest[0] % len(_COLORS)]


def colorize(name):
    return f"\033[{name_color(name)}m{name}\033[0m"


class ConsoleView:
    def __init__(self, signals, controller=None, out=None):
        self.controller = controller
        self.out = out or sys.stdout
        signals.notice.connect(self.on_notice)
        signals.message.connect(self.on_message)
        signals.history.connect(self.on_history)
        signals.conversation_updated.connect(self.on_conversation_updated)
        signals.storage_warning.connect(self.on_warning)
        signals.error.connect(self.on_error)

    def _write(self, text):
        self.out.write(text + "\n")
        self.out.flush()

    def _label(self, conversation_id):
        if self.controller is None:
            return conversation_id
        return self.controller.conversation_label(conversation_id)

    def on_notice(self, text):
        self._write(f"* {text}")

    def on_message(self, conversation_id, sender, text):
        self._write(f"{colorize(sender)}: {text}")

    def on_history(self, conversation_id, messages):
        self._write(f"--- {self._label(conversation_id)} ({len(messages)} messages) ---")
        for msg in messages:
            self._write(f"{colorize(msg.sender)}: {msg.payload}")

    def on_conversation_updated(self, conversation_id):
        self._write(f"* new message in {self._label(conversation_id)}")

    def on_warning(self, text):
        self._write(f"! {text}")

    def on_error(self, text):
        self._write(f"! error: {text}")


async def handle_input(controller, line, out=None):
    """Apply one line of console input. Returns False when the user quits."""
    out = out or sys.stdout
    line = line.strip()
    if not line:
        return True
    if not line.startswith("/"):
        try:
            await controller.send_message(line)
        except MessageStoreError:
            out.write(f"! not sent, your text was: {line}\n")
        return True

    command, _, arg = line.partition(" ")
    arg = arg.strip()
    if command == "/quit":
        return False
    if command == "/help":
        out.write(HELP_TEXT + "\n")
    elif command == "/peers":
        peers = sorted(controller.roster.all(), key=lambda p: p.display_name.lower())
        if not peers:
            out.write("nobody else is here\n")
        for peer in peers:
            out.write(f"{colorize(peer.display_name)} {peer.identity[:16]}\n")
    elif command == "/list":
        for summary in await controller.conversation_summaries():
            marker = "*" if summary.unread else " "
            status = "" if summary.online else " (offline)"
            active = ">" if summary.conversation_id == controller.active_conversation else " "
            out.write(f"{active}{marker} {summary.label}{status}\n")
    elif command == "/group":
        await controller.select_conversation(GROUP_CONVERSATION)
    elif command == "/to":
        conversation_id = await controller.find_conversation(arg)
        if conversation_id is None:
            out.write(f"unknown peer: {arg}\n")
        else:
            await controller.select_conversation(conversation_id)
    elif command == "/clear":
        await controller.clear_conversation(controller.active_conversation)
    else:
        out.write(f"unknown command {command}. {HELP_TEXT}\n")
    out.flush()
    return True


def _start_stdin_reader(loop, queue):
    def _reader():
        for line in sys.stdin:
            loop.call_soon_threadsafe(queue.put_nowait, line)
        loop.call_soon_threadsafe(queue.put_nowait, None)

    threading.Thread(target=_reader, daemon=True).start()


async def _pump_frames(controller, connection):
    async for raw in connection.frames():
        await controller.handle_frame(raw)
    controller.transport_closed()


async def run_session(config, display_name=None):
    signals = Signals()
    store = MessageStore(config.database_path, config.max_messages)
    await store.init()
    profile_store = ProfileStore(
        config_dir=config.config_dir,
        warning_callback=signals.storage_warning.emit,
        allow_plaintext=config.allow_plaintext_keystore,
    )
    controller = SessionController(store, profile_store, signals)
    view = ConsoleView(signals, controller)
    connection = RelayConnection(config)
    loop = asyncio.get_running_loop()
    lines = asyncio.Queue()
    _start_stdin_reader(loop, lines)

    try:
        if controller.start() == SessionState.UNPROVISIONED:
            controller.request_identity()
            if display_name is None:
                print("Display name: ", end="", flush=True)
                display_name = await lines.get()
            controller.submit_display_name(display_name or "")

        if not await connection.connect():
            print(f"[CONN ERROR] cannot reach {config.server_host}:{config.server_port}")
            return 1
        await controller.transport_opened(connection)
        print(HELP_TEXT)

        pump = asyncio.create_task(_pump_frames(controller, connection))
        while True:
            next_line = asyncio.ensure_future(lines.get())
            done, _ = await asyncio.wait({next_line, pump}, return_when=asyncio.FIRST_COMPLETED)
            if pump in done:
                next_line.cancel()
                if pump.exception() is not None:
                    print("[READER ERROR]", pump.exception())
                print("[DISCONNECT] relay closed the connection")
                break
            line = next_line.result()
            if line is None or not await handle_input(controller, line):
                pump.cancel()
                break
        return 0
    finally:
        controller.transport_closed()
        await connection.close()
        await store.close()


def main(argv=None):
    parser = argparse.ArgumentParser(description="End-to-end encrypted relay chat client")
    parser.add_argument("--host", default=None, help="relay host (RELAYCHAT_SERVER_HOST)")
    parser.add_argument("--port", type=int, default=None, help="relay port (RELAYCHAT_SERVER_PORT)")
    parser.add_argument("--config-dir", default=None, help="profile and history directory")
    parser.add_argument("--name", default=None, help="display name for a new profile")
    args = parser.parse_args(argv)

    config = ClientConfig(server_host=args.host, server_port=args.port, config_dir=args.config_dir)
    try:
        return asyncio.run(run_session(config, display_name=args.name))
    except KeyboardInterrupt:
        return 130


if __name__ == "__main__":
    sys.exit(main())
