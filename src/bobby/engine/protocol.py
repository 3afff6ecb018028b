"""NDJSON streaming protocol — event types + incremental decoding.

The Claude CLI in `--output-format stream-json` mode writes one JSON document
per line on stdout. This module turns that byte stream into typed events:

- parse_line: one text line -> ProtocolEvent (never raises)
- StreamDecoder: raw byte chunks -> lines -> events
- decode_stream: async reader -> async iterator of events
"""

from __future__ import annotations

import codecs
import json
import logging
from collections.abc import AsyncIterator
from dataclasses import dataclass, field
from typing import Any, Protocol

logger = logging.getLogger(__name__)

READ_SIZE = 4096


# ── Event types (CLI stdout -> Bobby) ─────────────────────────


@dataclass
class Metadata:
    """type=metadata (or system/init) — carries the engine session id."""

    session_id: str


@dataclass
class AssistantChunk:
    """type=assistant — one assistant message, flattened to plain text."""

    content_blocks: list[dict[str, Any]] = field(default_factory=list)
    text: str = ""


@dataclass
class Result:
    """type=result, subtype=success — final message of the run."""

    status: str
    text: str
    session_id: str | None = None


@dataclass
class Unparseable:
    """A line that is not JSON or matches no known shape. Dropped by consumers."""

    line: str


ProtocolEvent = Metadata | AssistantChunk | Result | Unparseable


# ── Parsing (one line -> typed event) ─────────────────────────


def flatten_content(content: Any) -> str:
    """Join the text of all text blocks; tool_use and other blocks add nothing."""
    if isinstance(content, str):
        return content
    if not isinstance(content, list):
        return ""
    parts: list[str] = []
    for block in content:
        if isinstance(block, dict) and block.get("type", "text") == "text":
            text = block.get("text")
            if isinstance(text, str):
                parts.append(text)
    return "".join(parts)


def parse_line(line: str) -> ProtocolEvent:
    """Parse a single NDJSON line from CLI stdout into a typed event.

    Malformed or unrecognized lines come back as Unparseable rather than
    raising, so one bad line never aborts the rest of the stream.
    """
    try:
        data = json.loads(line)
    except json.JSONDecodeError:
        return Unparseable(line)
    if not isinstance(data, dict):
        return Unparseable(line)

    msg_type = data.get("type")
    session_id = data.get("session_id")

    if msg_type == "metadata" or (msg_type == "system" and data.get("subtype") == "init"):
        if isinstance(session_id, str) and session_id:
            return Metadata(session_id=session_id)
        return Unparseable(line)

    if msg_type == "assistant":
        message = data.get("message")
        if isinstance(message, dict) and "content" in message:
            content = message["content"]
            blocks = content if isinstance(content, list) else [{"type": "text", "text": content}]
            return AssistantChunk(content_blocks=blocks, text=flatten_content(content))
        return Unparseable(line)

    if msg_type == "result" and data.get("subtype") == "success":
        result = data.get("result")
        return Result(
            status="success",
            text=result if isinstance(result, str) else "",
            session_id=session_id if isinstance(session_id, str) and session_id else None,
        )

    return Unparseable(line)


# ── Incremental decoding (bytes -> events) ────────────────────


class StreamDecoder:
    """Buffers partial reads and yields one event per complete non-blank line."""

    def __init__(self) -> None:
        self._decoder = codecs.getincrementaldecoder("utf-8")(errors="replace")
        self._buffer = ""

    def feed(self, data: bytes) -> list[ProtocolEvent]:
        self._buffer += self._decoder.decode(data)
        *lines, self._buffer = self._buffer.split("\n")
        return self._parse_lines(lines)

    def close(self) -> list[ProtocolEvent]:
        """Flush whatever is left at EOF (a final line without newline)."""
        self._buffer += self._decoder.decode(b"", final=True)
        rest, self._buffer = self._buffer, ""
        return self._parse_lines([rest])

    def _parse_lines(self, lines: list[str]) -> list[ProtocolEvent]:
        events: list[ProtocolEvent] = []
        for raw in lines:
            line = raw.strip()
            if not line:
                continue
            event = parse_line(line)
            if isinstance(event, Unparseable):
                logger.debug("Unparseable line: %s", line[:200])
            events.append(event)
        return events


class ByteReader(Protocol):
    async def read(self, n: int = -1) -> bytes: ...


async def decode_stream(reader: ByteReader, chunk_size: int = READ_SIZE) -> AsyncIterator[ProtocolEvent]:
    """Lazily decode an async byte stream (e.g. process stdout) into events."""
    decoder = StreamDecoder()
    while True:
        data = await reader.read(chunk_size)
        if not data:
            break
        for event in decoder.feed(data):
            yield event
    for event in decoder.close():
        yield event
