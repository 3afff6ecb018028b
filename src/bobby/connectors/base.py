"""Connector protocol and shared types."""

from __future__ import annotations

from dataclasses import dataclass
from typing import TYPE_CHECKING, Callable, Coroutine, Protocol, runtime_checkable

if TYPE_CHECKING:
    from bobby.core import QueryOutcome

MESSAGE_LIMIT = 2000
_SPLIT_AT = 1900
_MIN_BREAK = 1500


@dataclass
class IncomingMessage:
    """A message received from any connector."""

    text: str
    author_id: str
    channel_id: str = ""
    message_id: str = ""
    author_is_bot: bool = False
    thread_id: str | None = None
    thread_name: str | None = None
    space_id: str | None = None
    sender: str = ""
    connector_name: str = ""


@runtime_checkable
class ChatSurface(Protocol):
    """Where replies for one inbound message go: a channel or a thread."""

    @property
    def thread_id(self) -> str | None: ...

    @property
    def name(self) -> str | None: ...

    async def send(self, text: str) -> None:
        """Post a new message."""
        ...

    async def send_typing(self) -> None: ...

    async def set_name(self, name: str) -> None:
        """Rename the thread. Raises on failure (e.g. name too long)."""
        ...

    async def create_thread(self, name: str) -> ChatSurface:
        """Open a thread on the inbound message and return it as a surface."""
        ...


# Callback type: core.Bobby.handle_message
MessageHandler = Callable[[IncomingMessage, ChatSurface], Coroutine[None, None, "QueryOutcome"]]


@runtime_checkable
class Connector(Protocol):
    """Protocol that all input connectors must implement."""

    @property
    def name(self) -> str: ...

    async def start(self, handler: MessageHandler) -> None:
        """Start listening for messages. Call handler for each incoming message."""
        ...

    async def stop(self) -> None:
        """Gracefully stop the connector."""
        ...


def split_message(text: str, limit: int = MESSAGE_LIMIT) -> list[str]:
    """Split text that exceeds the platform limit into labelled parts.

    Breaks at a paragraph, then a sentence boundary, when one falls late
    enough in the window; otherwise cuts hard. Each part is prefixed with
    "Part i/n: ".
    """
    if len(text) <= limit:
        return [text]

    parts: list[str] = []
    remaining = text
    while remaining:
        if len(remaining) <= _SPLIT_AT:
            parts.append(remaining)
            break
        break_point = _SPLIT_AT
        para = remaining.rfind("\n\n", 0, _SPLIT_AT)
        if para > _MIN_BREAK:
            break_point = para + 2
        else:
            sentence = remaining.rfind(". ", 0, _SPLIT_AT)
            if sentence > _MIN_BREAK:
                break_point = sentence + 2
        parts.append(remaining[:break_point])
        remaining = remaining[break_point:].strip()

    return [f"Part {i}/{len(parts)}: {part}" for i, part in enumerate(parts, start=1)]
