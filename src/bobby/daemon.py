"""Daemon process — always-on mode for production.

Usage: python -m bobby serve

Manages:
- Component wiring (engine, rate limiter, memory, connectors)
- PID file (prevent duplicate instances)
- Graceful shutdown (SIGTERM/SIGINT)
"""

from __future__ import annotations

import asyncio
import logging
import os
import signal
import sys

from bobby.config import BobbyConfig, load_config
from bobby.core import Bobby, build_system_prompt
from bobby.engine.process import ClaudeEngine
from bobby.memory.store import MemoryStore
from bobby.ratelimit import RateLimiter

logger = logging.getLogger(__name__)


class BobbyDaemon:
    """Always-on daemon process."""

    def __init__(self, config: BobbyConfig | None = None) -> None:
        self.config = config or load_config()
        self._shutdown_event = asyncio.Event()

    # ── PID file management ──────────────────────────────────

    def _write_pid(self) -> None:
        self.config.pid_file.parent.mkdir(parents=True, exist_ok=True)
        self.config.pid_file.write_text(str(os.getpid()))
        logger.info("PID file written: %s (pid=%d)", self.config.pid_file, os.getpid())

    def _remove_pid(self) -> None:
        if self.config.pid_file.exists():
            self.config.pid_file.unlink()

    def _check_existing(self) -> None:
        if not self.config.pid_file.exists():
            return
        try:
            pid = int(self.config.pid_file.read_text().strip())
            os.kill(pid, 0)  # Check if process exists
            print(f"Bobby already running (pid={pid}). Exiting.", file=sys.stderr)
            sys.exit(1)
        except (ProcessLookupError, ValueError):
            # Stale PID file
            self._remove_pid()

    # ── Signal handling ──────────────────────────────────────

    def _setup_signals(self) -> None:
        loop = asyncio.get_running_loop()
        for sig in (signal.SIGTERM, signal.SIGINT):
            loop.add_signal_handler(sig, self._handle_signal, sig)

    def _handle_signal(self, sig: signal.Signals) -> None:
        logger.info("Received %s, shutting down...", sig.name)
        self._shutdown_event.set()

    # ── Build components ─────────────────────────────────────

    def build_engine(self) -> ClaudeEngine:
        cfg = self.config
        env = {
            "ANTHROPIC_API_KEY": cfg.engine.api_key,
            "GH_TOKEN": cfg.github.token,
            "GITHUB_REPO": cfg.github.repo,
        }
        return ClaudeEngine(
            repo_dir=cfg.engine.repo_dir,
            system_prompt=build_system_prompt(cfg.github.repo),
            allowed_tools=cfg.engine.allowed_tools,
            model=cfg.engine.model,
            command=cfg.engine.command,
            env={k: v for k, v in env.items() if v},
        )

    def build_bobby(self) -> Bobby:
        memory = MemoryStore(self.config.memory_dir)
        memory.ensure_index()
        return Bobby(
            self.config,
            engine=self.build_engine(),
            rate_limiter=RateLimiter(self.config.db_path),
            memory=memory,
        )

    def _build_connectors(self, bobby: Bobby) -> None:
        from bobby.connectors.discord import DiscordConnector

        bobby.add_connector(DiscordConnector(self.config.discord))

    # ── Main run loop ────────────────────────────────────────

    async def run(self) -> None:
        self._check_existing()
        self._write_pid()
        self._setup_signals()

        bobby = self.build_bobby()
        self._build_connectors(bobby)

        if not await bobby.engine.health_check():
            logger.warning("Claude CLI health check failed; queries will error until it is installed")

        logger.info("Bobby daemon starting (repo=%s)", self.config.github.repo)

        serve = asyncio.ensure_future(bobby.start())
        shutdown = asyncio.ensure_future(self._shutdown_event.wait())
        try:
            done, _ = await asyncio.wait({serve, shutdown}, return_when=asyncio.FIRST_COMPLETED)
            if serve in done:
                serve.result()
        except asyncio.CancelledError:
            pass
        finally:
            shutdown.cancel()
            await bobby.stop()
            if not serve.done():
                serve.cancel()
            self._remove_pid()
            logger.info("Bobby daemon stopped.")
