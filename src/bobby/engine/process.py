"""Claude CLI subprocess invocation.

Each query runs a one-shot `claude -p ... --output-format stream-json`
process in the repository checkout. stdout is decoded incrementally while
stderr is drained in the background and inspected once the process exits.
"""

from __future__ import annotations

import asyncio
import logging
import os
from collections.abc import AsyncIterator
from dataclasses import dataclass, field
from pathlib import Path

from bobby.engine.protocol import ProtocolEvent, decode_stream
from bobby.errors import EngineError

logger = logging.getLogger(__name__)


@dataclass
class EngineExit:
    """How the subprocess finished."""

    returncode: int
    stderr: str = ""

    @property
    def failed(self) -> bool:
        return self.returncode != 0 or bool(self.stderr.strip())


class EngineRun:
    """A running engine subprocess for one query."""

    def __init__(self, process: asyncio.subprocess.Process) -> None:
        self._process = process
        self._stderr_task = asyncio.ensure_future(self._drain_stderr())

    @property
    def pid(self) -> int:
        return self._process.pid

    async def events(self) -> AsyncIterator[ProtocolEvent]:
        """Yield protocol events from stdout until EOF."""
        if self._process.stdout is None:
            return
        async for event in decode_stream(self._process.stdout):
            yield event

    async def wait(self) -> EngineExit:
        """Wait for exit and return the exit code plus the full stderr text."""
        stderr = await self._stderr_task
        returncode = await self._process.wait()
        if returncode != 0 or stderr.strip():
            logger.error("claude CLI failed (rc=%d): %s", returncode, stderr.strip())
        return EngineExit(returncode=returncode, stderr=stderr)

    def kill(self) -> None:
        """Kill the process if it is still running. `wait()` must still be awaited."""
        if self._process.returncode is not None:
            return
        logger.warning("Killing CLI process (pid=%d)", self.pid)
        try:
            self._process.kill()
        except ProcessLookupError:
            pass

    async def _drain_stderr(self) -> str:
        if self._process.stderr is None:
            return ""
        data = await self._process.stderr.read()
        return data.decode("utf-8", errors="replace")


@dataclass
class ClaudeEngine:
    """Launches the Claude CLI against the repository under analysis."""

    repo_dir: Path
    system_prompt: str = ""
    allowed_tools: list[str] = field(default_factory=list)
    model: str | None = None
    command: str = "claude"
    env: dict[str, str] = field(default_factory=dict)

    def build_command(self, prompt: str, *, session_id: str | None = None) -> list[str]:
        cmd = [self.command, "-p", prompt, "--output-format", "stream-json", "--verbose"]
        if session_id:
            cmd.extend(["--resume", session_id])
        if self.model:
            cmd.extend(["--model", self.model])
        if self.allowed_tools:
            cmd.extend(["--allowedTools", ",".join(self.allowed_tools)])
        if self.system_prompt:
            cmd.extend(["--append-system-prompt", self.system_prompt])
        return cmd

    async def start(self, prompt: str, *, session_id: str | None = None) -> EngineRun:
        """Spawn the CLI. Raises EngineError if it cannot be started."""
        cmd = self.build_command(prompt, session_id=session_id)
        logger.debug("Running: %s ... (resume=%s)", " ".join(cmd[:2]), session_id)

        try:
            process = await asyncio.create_subprocess_exec(
                *cmd,
                stdout=asyncio.subprocess.PIPE,
                stderr=asyncio.subprocess.PIPE,
                cwd=str(self.repo_dir),
                env={**os.environ, **self.env},
            )
        except FileNotFoundError as e:
            raise EngineError(f"`{self.command}` CLI not found. Is Claude Code installed?") from e
        except OSError as e:
            raise EngineError(f"Failed to start {self.command}: {e}") from e

        logger.info("CLI process started (pid=%d)", process.pid)
        return EngineRun(process)

    async def health_check(self) -> bool:
        try:
            process = await asyncio.create_subprocess_exec(
                self.command,
                "--version",
                stdout=asyncio.subprocess.PIPE,
                stderr=asyncio.subprocess.PIPE,
            )
            stdout, _ = await asyncio.wait_for(process.communicate(), timeout=10)
        except (OSError, asyncio.TimeoutError):
            return False
        if process.returncode == 0:
            logger.info("Claude CLI found: %s", stdout.decode(errors="replace").strip())
            return True
        return False
