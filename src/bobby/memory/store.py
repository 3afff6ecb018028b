"""Topic memory — append-only Markdown topic files plus an index document.

The index (CLAUDE.md) is what the engine reads first; each topic file under
docs/ collects the question/answer pairs filed under that topic.
"""

from __future__ import annotations

import logging
import re
import threading
from pathlib import Path

logger = logging.getLogger(__name__)

INDEX_FILENAME = "CLAUDE.md"
DOCS_DIRNAME = "docs"
PLACEHOLDER = "- No memories stored yet"

INDEX_TEMPLATE = (
    "# Bobby Memory Index\n\n"
    "This file maintains references to Bobby's memory documents stored in the docs/ directory.\n\n"
    "## Memory Access Instructions\n\n"
    "- Read documents from the docs/ directory to retrieve stored information\n"
    "- Store new information in topic-specific markdown files in the docs/ directory\n"
    "- Update this index when creating new documents\n\n"
    "## Memory Index\n\n"
    f"{PLACEHOLDER}\n"
)


def topic_key(topic: str) -> str:
    """Lower-case, every character outside [a-z0-9] becomes '-'."""
    return re.sub(r"[^a-z0-9]", "-", topic.lower())


def _entry(query: str, response: str) -> str:
    return f"## Query: {query}\n\n{response}\n\n---\n"


class MemoryStore:
    """Read/write access to the topic memory."""

    def __init__(self, root: Path) -> None:
        self.root = root
        self.docs_dir = root / DOCS_DIRNAME
        self.index_path = root / INDEX_FILENAME
        self._lock = threading.Lock()

    def ensure_index(self) -> None:
        """Create the docs directory and the index document if missing. Idempotent."""
        self.docs_dir.mkdir(parents=True, exist_ok=True)
        if not self.index_path.exists():
            self.index_path.write_text(INDEX_TEMPLATE, encoding="utf-8")
            logger.info("Created memory index at %s", self.index_path)

    def topic_path(self, topic: str) -> Path:
        return self.docs_dir / f"{topic_key(topic)}.md"

    def read_index(self) -> str:
        if self.index_path.exists():
            return self.index_path.read_text(encoding="utf-8")
        return ""

    def read_topic(self, topic: str) -> str:
        path = self.topic_path(topic)
        if path.exists():
            return path.read_text(encoding="utf-8")
        return ""

    def append(self, topic: str, query: str, response: str) -> bool:
        """File a query/response pair under a topic. Returns False on I/O or decode failure."""
        with self._lock:
            try:
                self._append(topic, query, response)
            except (OSError, ValueError) as e:
                logger.error("Error saving to memory (topic=%s): %s", topic, e)
                return False
        return True

    def _append(self, topic: str, query: str, response: str) -> None:
        path = self.topic_path(topic)
        if path.exists():
            with path.open("a", encoding="utf-8") as f:
                f.write(f"\n\n{_entry(query, response)}")
            logger.debug("Appended to topic %s", path.name)
            return

        self.docs_dir.mkdir(parents=True, exist_ok=True)
        path.write_text(f"# {topic}\n\n{_entry(query, response)}", encoding="utf-8")
        self._add_to_index(topic, path)
        logger.info("Created memory topic: %s", topic)

    def _add_to_index(self, topic: str, path: Path) -> None:
        self.ensure_index()
        link = f"- [{topic}]({DOCS_DIRNAME}/{path.name})"
        content = self.index_path.read_text(encoding="utf-8")

        if link in content:
            return
        if PLACEHOLDER in content:
            content = content.replace(PLACEHOLDER, link, 1)
        else:
            content = content.rstrip("\n") + f"\n{link}\n"

        self.index_path.write_text(content, encoding="utf-8")
