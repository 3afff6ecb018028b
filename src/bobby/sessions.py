"""Session registry — thread name <-> engine session id.

A conversation thread carries its engine session id in its display name:

    "Bobby - <title> - <session_id>"

The name is the durable anchor (it survives restarts); an in-memory map
keyed by thread id avoids re-parsing it and remembers titles.
"""

from __future__ import annotations

import enum
import logging
import re
from dataclasses import dataclass
from typing import TYPE_CHECKING

if TYPE_CHECKING:
    from bobby.connectors.base import ChatSurface, IncomingMessage

logger = logging.getLogger(__name__)

THREAD_PREFIX = "Bobby"
FOLLOWUP_PREFIX = f"{THREAD_PREFIX} - "
SEPARATOR = " - "
WAKE_WORD = "bobby"

_SESSION_ID_RE = re.compile(
    r"^[0-9a-f]{8}-[0-9a-f]{4}-[0-9a-f]{4}-[0-9a-f]{4}-[0-9a-f]{12}$", re.IGNORECASE
)
_WAKE_RE = re.compile(r"@?bobby", re.IGNORECASE)


class Classification(enum.Enum):
    FOLLOW_UP = "follow_up"
    NEW_CALL = "new_call"
    IGNORE = "ignore"


@dataclass
class Session:
    thread_id: str
    engine_session_id: str | None = None
    title: str | None = None


# ── Name encoding ─────────────────────────────────────────────


def encode_thread_name(title: str, session_id: str) -> str:
    return f"{THREAD_PREFIX}{SEPARATOR}{title}{SEPARATOR}{session_id}"


def abbreviated_thread_name(session_id: str) -> str:
    return f"{THREAD_PREFIX}{SEPARATOR}{session_id}"


def decode_session_id(name: str | None) -> str | None:
    """Return the session id after the last separator, or None."""
    if not name or SEPARATOR not in name:
        return None
    candidate = name.rsplit(SEPARATOR, 1)[1].strip()
    if _SESSION_ID_RE.match(candidate):
        return candidate
    return None


# ── Inbound classification ────────────────────────────────────


def is_followup_thread(name: str | None) -> bool:
    return bool(name) and name.startswith(FOLLOWUP_PREFIX)


def is_calling_bobby(text: str | None) -> bool:
    return bool(text) and WAKE_WORD in text.lower()


def extract_query(text: str | None) -> str:
    """Remove every wake-word mention and trim."""
    if not text:
        return ""
    return _WAKE_RE.sub("", text).strip()


def classify(msg: IncomingMessage) -> Classification:
    if is_followup_thread(msg.thread_name):
        return Classification.FOLLOW_UP
    if is_calling_bobby(msg.text):
        return Classification.NEW_CALL
    return Classification.IGNORE


# ── Registry ──────────────────────────────────────────────────


class SessionRegistry:
    """Maps conversation threads onto resumable engine sessions."""

    def __init__(self) -> None:
        self._sessions: dict[str, Session] = {}  # thread_id → Session

    def resolve(self, thread_id: str, thread_name: str | None) -> Session:
        """Return the session for a thread, decoding the name on first sight."""
        session = self._sessions.get(thread_id)
        if session is None:
            session = Session(thread_id=thread_id, engine_session_id=decode_session_id(thread_name))
            self._sessions[thread_id] = session
        elif session.engine_session_id is None:
            session.engine_session_id = decode_session_id(thread_name)
        return session

    def learn(
        self, thread_id: str, session_id: str | None, title: str | None = None
    ) -> tuple[Session, bool]:
        """Record what a query revealed. First write wins for both fields.

        Returns the session and whether its engine session id was newly set.
        """
        session = self._sessions.setdefault(thread_id, Session(thread_id=thread_id))
        learned = False
        if session_id and session.engine_session_id is None:
            session.engine_session_id = session_id
            learned = True
        if title and session.title is None:
            session.title = title
        return session, learned

    async def rename(self, surface: ChatSurface, session: Session, fallback_title: str) -> bool:
        """Best-effort rename: full name, then abbreviated, then give up."""
        if not session.engine_session_id:
            return False
        title = session.title or fallback_title
        try:
            await surface.set_name(encode_thread_name(title, session.engine_session_id))
            return True
        except Exception as e:
            logger.warning("Failed to set thread name for %s: %s", session.thread_id, e)
        try:
            await surface.set_name(abbreviated_thread_name(session.engine_session_id))
            return True
        except Exception as e:
            logger.error("Failed to set fallback thread name for %s: %s", session.thread_id, e)
        return False
