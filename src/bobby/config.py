"""Configuration loading from environment variables and bobby.toml."""

from __future__ import annotations

import os
import sys
from dataclasses import dataclass, field

if sys.version_info >= (3, 11):
    import tomllib
else:
    import tomli as tomllib
from pathlib import Path

from bobby.errors import ConfigurationError

_DEFAULT_HOME = Path.home() / ".bobby"
_CONFIG_FILENAME = "bobby.toml"

DEFAULT_ALLOWED_TOOLS = [
    "Read",
    "Grep",
    "Glob",
    "LS",
    "Bash(git pull:*)",
    "Bash(git log:*)",
    "Bash(git show:*)",
    "Bash(git diff:*)",
    "Bash(git blame:*)",
    "Bash(gh issue create:*)",
    "Bash(gh issue list:*)",
    "Bash(gh issue view:*)",
]


@dataclass
class DiscordConfig:
    """Discord connector configuration."""

    token: str = ""
    allowed_servers: list[str] = field(default_factory=list)


@dataclass
class GitHubConfig:
    """Source-control credential and the repository under analysis."""

    token: str = ""
    repo: str = ""


@dataclass
class EngineConfig:
    """Configuration for the Claude CLI analysis engine."""

    api_key: str = ""
    command: str = "claude"
    model: str | None = None
    repo_dir: Path = Path("/app/repo")
    allowed_tools: list[str] = field(default_factory=lambda: list(DEFAULT_ALLOWED_TOOLS))


@dataclass
class BobbyConfig:
    """Top-level Bobby configuration."""

    discord: DiscordConfig = field(default_factory=DiscordConfig)
    github: GitHubConfig = field(default_factory=GitHubConfig)
    engine: EngineConfig = field(default_factory=EngineConfig)
    data_dir: Path = _DEFAULT_HOME / "data"
    memory_dir: Path = _DEFAULT_HOME
    log_level: str = "INFO"

    @property
    def db_path(self) -> Path:
        return self.data_dir / "bobby.sqlite"

    @property
    def pid_file(self) -> Path:
        return self.data_dir / "bobby.pid"


def _split_csv(value: str | list | None) -> list[str]:
    if not value:
        return []
    if isinstance(value, list):
        return [str(v).strip() for v in value if str(v).strip()]
    return [part.strip() for part in value.split(",") if part.strip()]


def load_config(config_path: Path | None = None) -> BobbyConfig:
    """Load configuration from environment variables and optional bobby.toml.

    Priority: environment variables > bobby.toml > defaults.
    """
    file_data: dict = {}
    if config_path and config_path.exists():
        file_data = tomllib.loads(config_path.read_text())
    else:
        for candidate in [Path.cwd() / _CONFIG_FILENAME, _DEFAULT_HOME / _CONFIG_FILENAME]:
            if candidate.exists():
                file_data = tomllib.loads(candidate.read_text())
                break

    discord_data = file_data.get("discord", {})
    github_data = file_data.get("github", {})
    engine_data = file_data.get("engine", {})

    allowed_tools = engine_data.get("allowed_tools") or list(DEFAULT_ALLOWED_TOOLS)

    config = BobbyConfig(
        discord=DiscordConfig(
            token=os.getenv("DISCORD_TOKEN", discord_data.get("token", "")),
            allowed_servers=_split_csv(
                os.getenv("ALLOWED_DISCORD_SERVERS", discord_data.get("allowed_servers"))
            ),
        ),
        github=GitHubConfig(
            token=os.getenv("GH_TOKEN", github_data.get("token", "")),
            repo=os.getenv("GITHUB_REPO", github_data.get("repo", "")),
        ),
        engine=EngineConfig(
            api_key=os.getenv("ANTHROPIC_API_KEY", engine_data.get("api_key", "")),
            command=engine_data.get("command", "claude"),
            model=os.getenv("BOBBY_MODEL", engine_data.get("model")),
            repo_dir=Path(os.getenv("BOBBY_REPO_DIR", engine_data.get("repo_dir", "/app/repo"))),
            allowed_tools=allowed_tools,
        ),
        data_dir=Path(os.getenv("BOBBY_DATA_DIR", file_data.get("data_dir", _DEFAULT_HOME / "data"))),
        memory_dir=Path(os.getenv("BOBBY_MEMORY_DIR", file_data.get("memory_dir", _DEFAULT_HOME))),
        log_level=os.getenv("BOBBY_LOG_LEVEL", file_data.get("log_level", "INFO")),
    )
    return config


def validate_config(config: BobbyConfig, *, require_discord: bool = True) -> None:
    """Raise ConfigurationError naming every missing required variable."""
    missing: list[str] = []
    if require_discord and not config.discord.token:
        missing.append("DISCORD_TOKEN")
    if not config.engine.api_key:
        missing.append("ANTHROPIC_API_KEY")
    if not config.github.repo:
        missing.append("GITHUB_REPO")
    if not config.github.token:
        missing.append("GH_TOKEN")
    if missing:
        raise ConfigurationError(missing)
