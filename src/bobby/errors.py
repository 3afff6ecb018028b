"""Exceptions raised across Bobby.

Most failure modes (subprocess errors, rate-limit denials, persistence and
platform hiccups) are recovered where they occur and never surface as
exceptions. Only the two below cross module boundaries.
"""

from __future__ import annotations


class ConfigurationError(Exception):
    """Required configuration is missing. Fatal at startup."""

    def __init__(self, missing: list[str]) -> None:
        self.missing = list(missing)
        super().__init__(f"Missing required configuration: {', '.join(self.missing)}")


class EngineError(RuntimeError):
    """The analysis engine subprocess could not be started."""
