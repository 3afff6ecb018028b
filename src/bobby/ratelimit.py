"""Durable per-user request rate limiting backed by SQLite."""

from __future__ import annotations

import asyncio
import logging
import sqlite3
import time
from collections.abc import Callable
from pathlib import Path

logger = logging.getLogger(__name__)

WINDOW_MS = 3_600_000
MAX_REQUESTS = 20


def _now_ms() -> int:
    return int(time.time() * 1000)


class RateLimiter:
    """Sliding approval counter: at most `max_requests` per `window_ms`.

    The window start moves to "now" on every accepted request, so the count
    only resets after a full window of silence.
    """

    def __init__(
        self,
        db_path: Path | str,
        *,
        max_requests: int = MAX_REQUESTS,
        window_ms: int = WINDOW_MS,
        clock: Callable[[], int] = _now_ms,
    ) -> None:
        self.max_requests = max_requests
        self.window_ms = window_ms
        self._clock = clock
        self._lock = asyncio.Lock()
        self._conn = self._open(db_path)
        self._conn.execute(
            """
            CREATE TABLE IF NOT EXISTS rate_limits (
                user_id TEXT PRIMARY KEY,
                last_request INTEGER,
                request_count INTEGER
            )
            """
        )
        self._conn.commit()

    @staticmethod
    def _open(db_path: Path | str) -> sqlite3.Connection:
        if str(db_path) != ":memory:":
            try:
                Path(db_path).parent.mkdir(parents=True, exist_ok=True)
                conn = sqlite3.connect(str(db_path), check_same_thread=False)
                logger.info("Opened rate-limit database at %s", db_path)
                return conn
            except (OSError, sqlite3.Error) as e:
                logger.error("Failed to open rate-limit database %s: %s", db_path, e)
                logger.warning("Falling back to in-memory rate-limit database")
        return sqlite3.connect(":memory:", check_same_thread=False)

    async def try_consume(self, user_id: str) -> bool:
        """Admit or deny one request. Serialized so no two callers race past the limit."""
        async with self._lock:
            try:
                return await asyncio.to_thread(self.check_and_update, user_id)
            except sqlite3.Error as e:
                logger.error("Rate-limit check failed for %s, allowing: %s", user_id, e)
                return True

    def check_and_update(self, user_id: str) -> bool:
        """Synchronous read-modify-write in a single transaction."""
        now = self._clock()
        with self._conn:
            row = self._conn.execute(
                "SELECT last_request, request_count FROM rate_limits WHERE user_id = ?",
                (user_id,),
            ).fetchone()

            if row is None or now - row[0] > self.window_ms:
                self._conn.execute(
                    "INSERT OR REPLACE INTO rate_limits (user_id, last_request, request_count)"
                    " VALUES (?, ?, ?)",
                    (user_id, now, 1),
                )
                return True

            count = row[1]
            if count < self.max_requests:
                self._conn.execute(
                    "UPDATE rate_limits SET last_request = ?, request_count = ? WHERE user_id = ?",
                    (now, count + 1, user_id),
                )
                return True

        logger.info("Rate limit exceeded for %s (%d requests)", user_id, count)
        return False

    def count(self, user_id: str) -> int:
        row = self._conn.execute(
            "SELECT request_count FROM rate_limits WHERE user_id = ?", (user_id,)
        ).fetchone()
        return row[0] if row else 0

    def close(self) -> None:
        self._conn.close()
