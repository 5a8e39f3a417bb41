"""Stable constants shared across the sub-agent runtime."""

from __future__ import annotations

from typing import Final

# Config schema version for ``subagent.toml``.
CONFIG_SCHEMA_VERSION: Final[int] = 1

# Task pool defaults.
DEFAULT_MAX_CONCURRENCY: Final[int] = 8
DEFAULT_TIMEOUT_SECONDS: Final[float] = 300.0
DEFAULT_SUBAGENT_MODEL: Final[str] = "claude-3-haiku-20240307"
DEFAULT_MAX_OUTPUT_TOKENS: Final[int] = 4096
DEFAULT_COMPLETED_RETENTION: Final[int] = 10
DEFAULT_MAX_ARCHIVED: Final[int] = 200
DEFAULT_LABEL: Final[str] = "Sub-Agent Task"

# Result text a sub-agent emits when there is nothing worth announcing.
ANNOUNCE_SKIP: Final[str] = "ANNOUNCE_SKIP"

# Provider router defaults.
DEFAULT_PROVIDER_ORDER: Final[tuple[str, ...]] = ("anthropic", "openai", "groq", "google")
DEFAULT_FAILOVER_COOLDOWN_SECONDS: Final[float] = 3600.0

GROQ_BASE_URL: Final[str] = "https://api.groq.com/openai/v1"

__all__ = [
    "ANNOUNCE_SKIP",
    "CONFIG_SCHEMA_VERSION",
    "DEFAULT_COMPLETED_RETENTION",
    "DEFAULT_FAILOVER_COOLDOWN_SECONDS",
    "DEFAULT_LABEL",
    "DEFAULT_MAX_ARCHIVED",
    "DEFAULT_MAX_CONCURRENCY",
    "DEFAULT_MAX_OUTPUT_TOKENS",
    "DEFAULT_PROVIDER_ORDER",
    "DEFAULT_SUBAGENT_MODEL",
    "DEFAULT_TIMEOUT_SECONDS",
    "GROQ_BASE_URL",
]
