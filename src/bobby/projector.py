"""Response projector — protocol events -> chat messages.

Every non-empty assistant chunk is posted as its own new message, in decode
order. Messages are never edited after they are sent.
"""

from __future__ import annotations

import logging
import re
from dataclasses import dataclass
from typing import TYPE_CHECKING

from bobby.engine.protocol import AssistantChunk, Metadata, ProtocolEvent, Result

if TYPE_CHECKING:
    from bobby.connectors.base import ChatSurface

logger = logging.getLogger(__name__)

TITLE_RE = re.compile(r"\[THREAD_TITLE:\s*(.*?)\s*\]")

ERROR_NOTICE = "Sorry, I encountered an error while processing your request. Please try again."
NO_OUTPUT_NOTICE = (
    "Analysis complete, but no output was produced. Please try rephrasing your question."
)


@dataclass
class ProjectionSummary:
    success: bool
    final_text: str
    session_id: str | None = None
    title: str | None = None
    issue_filing_detected: bool = False
    emitted: int = 0


def extract_title(text: str) -> str | None:
    match = TITLE_RE.search(text)
    if match and match.group(1):
        return match.group(1)
    return None


def strip_titles(text: str) -> str:
    return TITLE_RE.sub("", text)


def detects_issue_filing(text: str) -> bool:
    if "Created GitHub issue #" in text:
        return True
    return "github.com/" in text and "/issues/" in text


class ResponseProjector:
    """Drives message emission for one query."""

    def __init__(self, surface: ChatSurface) -> None:
        self._surface = surface
        self._parts: list[str] = []
        self._result: Result | None = None
        self.session_id: str | None = None
        self.title: str | None = None
        self.emitted = 0

    async def feed(self, event: ProtocolEvent) -> None:
        if isinstance(event, Metadata):
            self._learn_session(event.session_id)
        elif isinstance(event, AssistantChunk):
            await self._on_chunk(event)
        elif isinstance(event, Result):
            await self._on_result(event)
        # Unparseable lines are dropped

    async def finish(self, returncode: int = 0, stderr: str = "") -> ProjectionSummary:
        """Close out the query once the subprocess has exited."""
        final_text = strip_titles(self._accumulated()).strip()
        failed = returncode != 0 or bool(stderr.strip())

        if failed:
            await self._emit(ERROR_NOTICE)
        elif self.emitted == 0 and self._result is None:
            logger.warning("Engine exited cleanly without any output")
            await self._emit(NO_OUTPUT_NOTICE)
            failed = True

        return ProjectionSummary(
            success=not failed,
            final_text=final_text,
            session_id=self.session_id,
            title=self.title,
            issue_filing_detected=detects_issue_filing(final_text),
            emitted=self.emitted,
        )

    # ── Internal ──────────────────────────────────────────────

    def _learn_session(self, session_id: str | None) -> None:
        if session_id and self.session_id is None:
            self.session_id = session_id

    def _learn_title(self, text: str) -> None:
        if self.title is None:
            self.title = extract_title(text)

    def _accumulated(self) -> str:
        text = "".join(self._parts)
        if not text.strip() and self._result is not None:
            return self._result.text
        return text

    async def _on_chunk(self, chunk: AssistantChunk) -> None:
        self._parts.append(chunk.text)
        self._learn_title(chunk.text)
        visible = strip_titles(chunk.text)
        if visible.strip():
            await self._emit(visible)

    async def _on_result(self, result: Result) -> None:
        self._result = result
        self._learn_title(result.text)
        self._learn_session(result.session_id)
        if self.emitted == 0:
            visible = strip_titles(result.text).strip()
            if visible:
                await self._emit(visible)

    async def _emit(self, text: str) -> None:
        try:
            await self._surface.send(text)
        except Exception as e:
            logger.error("Failed to send message: %s", e)
            return
        self.emitted += 1
