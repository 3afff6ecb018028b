"""Bobby orchestrator — the hub between chat connectors and the Claude CLI.

Responsibilities:
1. Classify inbound messages (new call vs. follow-up in a Bobby thread)
2. Lane Queue — serialize per conversation
3. Rate limiting per author
4. Session management — thread ↔ engine session, resumed on follow-ups
5. Stream engine output to the conversation through the projector
6. File successful answers into topic memory
"""

from __future__ import annotations

import asyncio
import logging
import random
import textwrap
from dataclasses import dataclass, field
from typing import TYPE_CHECKING

from bobby.errors import EngineError
from bobby.projector import ProjectionSummary, ResponseProjector
from bobby.sessions import (
    FOLLOWUP_PREFIX,
    Classification,
    SessionRegistry,
    classify,
    extract_query,
)

if TYPE_CHECKING:
    from bobby.config import BobbyConfig
    from bobby.connectors.base import ChatSurface, Connector, IncomingMessage
    from bobby.engine.process import ClaudeEngine
    from bobby.memory.store import MemoryStore
    from bobby.ratelimit import RateLimiter

logger = logging.getLogger(__name__)

SYSTEM_PROMPT = """\
You are Bobby, a read-only code analysis assistant answering questions about \
the GitHub repository {repo} from a Discord chat.

## Rules
- Always fetch the latest changes (git pull) before inspecting the code.
- Never modify, commit or push files. You may only read and search the repository.
- Read CLAUDE.md and the docs/ directory first: they hold answers to earlier questions.
- Answer clearly and concisely in Discord-flavoured Markdown. Keep code excerpts short.
- Begin your first answer in a conversation with a short title for the thread, \
written exactly as [THREAD_TITLE: <three to six words>]. Emit it only once.

## Bugs
If, and only if, you are confident you found a genuine bug related to the question, \
file it with `gh issue create --repo {repo}` using a clear title, a summary, technical \
details, reproduction steps if known, possible fixes and the labels "bug" and \
"bobby-detected". Mention that it was detected by Bobby. Then tell the user \
"Created GitHub issue #<number>" with its URL.
"""

ACKNOWLEDGMENTS = [
    "I'm looking into that for you. Give me a moment to search the codebase...",
    "Bobby on the case! Searching through the code now...",
    "Let me check that out for you. Just a moment while I search...",
    "Bobby's on it! Give me a moment to analyze the repository...",
    "Scanning the codebase now. I'll have an answer for you shortly...",
    "Leave it to Bobby! Checking the code for you now...",
    "Working on your request now. This will just take a moment...",
    "This looks like a job for Bobby! Searching now...",
    "Analyzing your question. I'll have a response for you soon...",
    "On it! Digging into the code for you...",
]

RATE_LIMIT_MESSAGE = "You have exceeded the rate limit. Please try again later."
UNEXPECTED_ERROR_MESSAGE = "I encountered an unexpected error. Please try again later."
LOST_SESSION_MESSAGE = (
    "I can't find the conversation this thread belongs to. "
    "Please start a new one by mentioning Bobby in a channel."
)

BUG_TOPIC = "Bugs"
GENERAL_TOPIC = "General Queries"

_EXCERPT_WIDTH = 50


def build_system_prompt(repo: str) -> str:
    return SYSTEM_PROMPT.format(repo=repo)


def query_excerpt(query: str) -> str:
    return textwrap.shorten(query, width=_EXCERPT_WIDTH, placeholder="...")


@dataclass
class QueryOutcome:
    """What happened to one inbound message."""

    classification: Classification
    query: str = ""
    rate_limited: bool = False
    summary: ProjectionSummary | None = None
    thread_id: str | None = None
    surface: ChatSurface | None = field(default=None, repr=False)

    @property
    def success(self) -> bool:
        return self.summary is not None and self.summary.success


class Bobby:
    """Core orchestrator — routes chat messages to the engine and back."""

    def __init__(
        self,
        config: BobbyConfig,
        *,
        engine: ClaudeEngine,
        rate_limiter: RateLimiter,
        memory: MemoryStore,
        sessions: SessionRegistry | None = None,
    ) -> None:
        self.config = config
        self.engine = engine
        self.rate_limiter = rate_limiter
        self.memory = memory
        self.sessions = sessions or SessionRegistry()
        self._connectors: list[Connector] = []
        self._lane_locks: dict[str, asyncio.Lock] = {}  # per-conversation serialization

    # ── Connector management ─────────────────────────────────

    def add_connector(self, connector: Connector) -> None:
        self._connectors.append(connector)
        logger.info("Registered connector: %s", connector.name)

    # ── Lane Queue (per-conversation serialization) ──────────

    def _get_lane_lock(self, key: str) -> asyncio.Lock:
        if key not in self._lane_locks:
            self._lane_locks[key] = asyncio.Lock()
        return self._lane_locks[key]

    # ── Message handling (the core loop) ─────────────────────

    async def handle_message(self, msg: IncomingMessage, surface: ChatSurface) -> QueryOutcome:
        """Process an incoming message — the main entry point for all connectors."""
        if msg.author_is_bot:
            return QueryOutcome(Classification.IGNORE)

        kind = classify(msg)
        if kind is Classification.IGNORE:
            return QueryOutcome(kind)

        query = extract_query(msg.text)
        if not query:
            logger.debug("Empty query from %s, skipping", msg.sender or msg.author_id)
            return QueryOutcome(kind)

        if kind is Classification.FOLLOW_UP:
            lane = msg.thread_id or msg.channel_id
        else:
            lane = msg.message_id or msg.channel_id

        outcome = QueryOutcome(kind, query=query, surface=surface)
        async with self._get_lane_lock(lane):
            try:
                await self._process(msg, outcome)
            except Exception:
                logger.exception("Error handling message %s", msg.message_id)
                # The thread, once opened, is where the conversation lives
                await self._safe_send(outcome.surface or surface, UNEXPECTED_ERROR_MESSAGE)
                outcome.summary = None
        return outcome

    async def _process(self, msg: IncomingMessage, outcome: QueryOutcome) -> None:
        kind, query, surface = outcome.classification, outcome.query, outcome.surface
        logger.info("Query from %s (%s): %s", msg.sender or msg.author_id, kind.value, query[:100])

        # 1. A follow-up must resolve to a known session
        if kind is Classification.FOLLOW_UP:
            thread = surface
            thread_key = msg.thread_id or msg.channel_id
            session = self.sessions.resolve(thread_key, msg.thread_name)
            outcome.thread_id = thread_key
            if session.engine_session_id is None:
                logger.info("No session id for thread %r, not resuming", msg.thread_name)
                await self._safe_send(thread, LOST_SESSION_MESSAGE)
                return

        # 2. Rate limit
        if not await self.rate_limiter.try_consume(msg.author_id):
            await self._safe_send(surface, RATE_LIMIT_MESSAGE)
            outcome.rate_limited = True
            return

        # 3. New calls get their own thread
        if kind is Classification.NEW_CALL:
            thread = await self._open_thread(surface, query)
            outcome.surface = thread
            thread_key = thread.thread_id or msg.message_id or msg.channel_id
            outcome.thread_id = thread_key
            session = self.sessions.resolve(thread_key, None)
            await self._safe_send(thread, random.choice(ACKNOWLEDGMENTS))

        # 4. Run engine, streaming into the conversation
        await self._safe_typing(thread)
        summary = await self._run_query(thread, query, session.engine_session_id)
        outcome.summary = summary
        logger.info(
            "Query finished: success=%s emitted=%d issue=%s",
            summary.success,
            summary.emitted,
            summary.issue_filing_detected,
        )

        # 5. Session bookkeeping + memory
        if summary.success:
            session, learned = self.sessions.learn(thread_key, summary.session_id, summary.title)
            if learned:
                await self.sessions.rename(thread, session, fallback_title=query_excerpt(query))
            await self._save_memory(query, summary)

    async def _run_query(
        self, thread: ChatSurface, query: str, session_id: str | None
    ) -> ProjectionSummary:
        projector = ResponseProjector(thread)
        try:
            run = await self.engine.start(query, session_id=session_id)
        except EngineError as e:
            logger.error("Engine unavailable: %s", e)
            return await projector.finish(returncode=-1, stderr=str(e))

        try:
            async for event in run.events():
                await projector.feed(event)
        except BaseException:
            run.kill()
            await run.wait()
            raise
        result = await run.wait()
        return await projector.finish(returncode=result.returncode, stderr=result.stderr)

    async def _open_thread(self, surface: ChatSurface, query: str) -> ChatSurface:
        try:
            return await surface.create_thread(f"{FOLLOWUP_PREFIX}{query_excerpt(query)}")
        except Exception as e:
            logger.warning("Failed to create thread, replying in channel: %s", e)
            return surface

    async def _save_memory(self, query: str, summary: ProjectionSummary) -> None:
        topic = BUG_TOPIC if summary.issue_filing_detected else GENERAL_TOPIC
        try:
            saved = await asyncio.to_thread(self.memory.append, topic, query, summary.final_text)
        except Exception:
            logger.exception("Memory write raised for topic %s", topic)
            return
        if not saved:
            logger.warning("Memory write failed for topic %s", topic)

    @staticmethod
    async def _safe_send(surface: ChatSurface, text: str) -> None:
        try:
            await surface.send(text)
        except Exception as e:
            logger.error("Failed to send message: %s", e)

    @staticmethod
    async def _safe_typing(surface: ChatSurface) -> None:
        try:
            await surface.send_typing()
        except Exception as e:
            logger.debug("Typing indicator failed: %s", e)

    # ── Lifecycle ─────────────────────────────────────────────

    async def start(self) -> None:
        """Start all connectors (each listens for messages)."""
        if not self._connectors:
            raise RuntimeError("No connectors registered. Call add_connector() first.")

        self.memory.ensure_index()
        tasks = [connector.start(self.handle_message) for connector in self._connectors]
        await asyncio.gather(*tasks)

    async def stop(self) -> None:
        """Gracefully stop all connectors and release the rate-limit store."""
        for connector in self._connectors:
            await connector.stop()
        self.rate_limiter.close()
