"""Local CLI REPL connector for development and testing.

Simulates one Discord thread: the first message opens it, later messages
are follow-ups in it, so session resumption can be exercised locally.
Type "new" to start a fresh thread.
"""

from __future__ import annotations

import asyncio
import logging
import sys
from typing import TYPE_CHECKING

from bobby.connectors.base import IncomingMessage
from bobby.sessions import WAKE_WORD

if TYPE_CHECKING:
    from bobby.connectors.base import ChatSurface, MessageHandler

logger = logging.getLogger(__name__)

_CLI_CHANNEL_ID = "cli"
_CLI_SENDER = "user"


class CLISurface:
    """Prints replies to stdout."""

    def __init__(self, thread_id: str | None = None, name: str | None = None) -> None:
        self._thread_id = thread_id
        self._name = name

    @property
    def thread_id(self) -> str | None:
        return self._thread_id

    @property
    def name(self) -> str | None:
        return self._name

    async def send(self, text: str) -> None:
        print(f"\nBobby: {text}")

    async def send_typing(self) -> None:
        print("  [Bobby is typing...]", file=sys.stderr)

    async def set_name(self, name: str) -> None:
        self._name = name
        print(f"  [thread renamed: {name}]", file=sys.stderr)

    async def create_thread(self, name: str) -> ChatSurface:
        self._thread_id = f"cli-thread-{id(self)}"
        self._name = name
        print(f"  [thread opened: {name}]", file=sys.stderr)
        return self


class CLIConnector:
    """Interactive REPL connector — reads from stdin, writes to stdout."""

    def __init__(self) -> None:
        self._running = False
        self._thread: CLISurface | None = None
        self._counter = 0

    @property
    def name(self) -> str:
        return "cli"

    async def start(self, handler: MessageHandler) -> None:
        self._running = True
        loop = asyncio.get_event_loop()

        print("Bobby code assistant (type 'new' for a fresh thread, 'exit' or Ctrl+C to quit)")
        print("-" * 48)

        while self._running:
            try:
                line = await loop.run_in_executor(None, self._read_input)
            except (EOFError, KeyboardInterrupt):
                print("\nBye!")
                break

            if line is None or line.strip().lower() in ("exit", "quit"):
                print("Bye!")
                break

            text = line.strip()
            if not text:
                continue
            if text.lower() == "new":
                self._thread = None
                print("  [started a new conversation]", file=sys.stderr)
                continue

            msg, surface = self._to_message(text)
            await handler(msg, surface)

    def _to_message(self, text: str) -> tuple[IncomingMessage, CLISurface]:
        self._counter += 1
        thread = self._thread
        if thread is not None and thread.thread_id:
            msg = IncomingMessage(
                text=text,
                author_id=_CLI_SENDER,
                channel_id=_CLI_CHANNEL_ID,
                message_id=str(self._counter),
                thread_id=thread.thread_id,
                thread_name=thread.name,
                sender=_CLI_SENDER,
                connector_name=self.name,
            )
            return msg, thread

        # First message: address Bobby implicitly and open a thread
        if WAKE_WORD not in text.lower():
            text = f"{WAKE_WORD} {text}"
        self._thread = CLISurface()
        msg = IncomingMessage(
            text=text,
            author_id=_CLI_SENDER,
            channel_id=_CLI_CHANNEL_ID,
            message_id=str(self._counter),
            sender=_CLI_SENDER,
            connector_name=self.name,
        )
        return msg, self._thread

    def _read_input(self) -> str | None:
        try:
            sys.stdout.write("\nYou: ")
            sys.stdout.flush()
            raw = sys.stdin.buffer.readline()
            if not raw:
                return None
            return raw.decode("utf-8", errors="replace").rstrip("\n")
        except EOFError:
            return None

    async def stop(self) -> None:
        self._running = False
