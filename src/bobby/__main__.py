"""Entry point: python -m bobby [chat|serve]

- No args / "chat": Interactive CLI REPL (development/testing)
- "serve":          Discord bot daemon (production)
"""

from __future__ import annotations

import asyncio
import logging
import sys

from bobby.config import BobbyConfig, load_config, validate_config
from bobby.errors import ConfigurationError


def _setup_logging(level: str) -> None:
    logging.basicConfig(
        level=getattr(logging, level.upper(), logging.INFO),
        format="%(asctime)s [%(levelname)s] %(name)s: %(message)s",
        datefmt="%H:%M:%S",
    )


def _load_validated(*, require_discord: bool) -> BobbyConfig:
    config = load_config()
    try:
        validate_config(config, require_discord=require_discord)
    except ConfigurationError as e:
        for name in e.missing:
            print(f"Error: {name} environment variable is not set", file=sys.stderr)
        sys.exit(1)
    return config


def _run_cli() -> None:
    """Interactive CLI REPL mode."""
    config = _load_validated(require_discord=False)
    _setup_logging(config.log_level)

    from bobby.connectors.cli import CLIConnector
    from bobby.daemon import BobbyDaemon

    bobby = BobbyDaemon(config).build_bobby()
    bobby.add_connector(CLIConnector())

    async def _chat() -> None:
        try:
            await bobby.start()
        finally:
            await bobby.stop()

    try:
        asyncio.run(_chat())
    except KeyboardInterrupt:
        pass


def _run_serve() -> None:
    """Daemon mode — Discord connector."""
    config = _load_validated(require_discord=True)
    _setup_logging(config.log_level)

    from bobby.daemon import BobbyDaemon

    daemon = BobbyDaemon(config)
    asyncio.run(daemon.run())


def main() -> None:
    cmd = sys.argv[1] if len(sys.argv) > 1 else "chat"

    if cmd in ("chat", "repl"):
        _run_cli()
    elif cmd == "serve":
        _run_serve()
    else:
        print("Usage: python -m bobby [chat|serve]")
        print("  chat   — Interactive CLI REPL (default)")
        print("  serve  — Discord bot daemon")
        sys.exit(1)


if __name__ == "__main__":
    main()
