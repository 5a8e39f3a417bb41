"""Typed construction settings derived from a validated config mapping."""

from __future__ import annotations

import math
from collections.abc import Mapping
from dataclasses import dataclass, field
from typing import Any

from subagent_runtime.config.schema import assert_valid_config
from subagent_runtime.constants import (
    DEFAULT_COMPLETED_RETENTION,
    DEFAULT_FAILOVER_COOLDOWN_SECONDS,
    DEFAULT_MAX_ARCHIVED,
    DEFAULT_MAX_CONCURRENCY,
    DEFAULT_MAX_OUTPUT_TOKENS,
    DEFAULT_PROVIDER_ORDER,
    DEFAULT_SUBAGENT_MODEL,
    DEFAULT_TIMEOUT_SECONDS,
)


def _validate_positive_int(value: object, name: str) -> None:
    if isinstance(value, bool) or not isinstance(value, int) or value < 1:
        raise ValueError(f"{name} must be an integer >= 1, got {value!r}")


def _validate_positive_seconds(value: object, name: str, *, allow_zero: bool = False) -> None:
    if isinstance(value, bool) or not isinstance(value, (int, float)):
        raise ValueError(f"{name} must be a number, got {type(value).__name__}")
    if not math.isfinite(value) or value < 0 or (value == 0 and not allow_zero):
        bound = ">= 0" if allow_zero else "> 0"
        raise ValueError(f"{name} must be a finite number {bound}, got {value!r}")


@dataclass(frozen=True, slots=True)
class PoolConfig:
    max_concurrency: int = DEFAULT_MAX_CONCURRENCY
    default_timeout_seconds: float = DEFAULT_TIMEOUT_SECONDS
    default_model: str = DEFAULT_SUBAGENT_MODEL
    max_output_tokens: int = DEFAULT_MAX_OUTPUT_TOKENS
    completed_retention: int = DEFAULT_COMPLETED_RETENTION
    max_archived: int = DEFAULT_MAX_ARCHIVED
    max_queue_depth: int | None = None

    def __post_init__(self) -> None:
        _validate_positive_int(self.max_concurrency, "max_concurrency")
        _validate_positive_seconds(self.default_timeout_seconds, "default_timeout_seconds")
        if not isinstance(self.default_model, str) or not self.default_model.strip():
            raise ValueError("default_model must be a non-empty string")
        _validate_positive_int(self.max_output_tokens, "max_output_tokens")
        if (
            isinstance(self.completed_retention, bool)
            or not isinstance(self.completed_retention, int)
            or self.completed_retention < 0
        ):
            raise ValueError("completed_retention must be an integer >= 0")
        _validate_positive_int(self.max_archived, "max_archived")
        if self.max_queue_depth is not None:
            _validate_positive_int(self.max_queue_depth, "max_queue_depth")

    def to_dict(self) -> dict[str, Any]:
        return {
            "max_concurrency": self.max_concurrency,
            "default_timeout_seconds": self.default_timeout_seconds,
            "default_model": self.default_model,
            "max_output_tokens": self.max_output_tokens,
            "max_queue_depth": self.max_queue_depth,
        }


@dataclass(frozen=True, slots=True)
class RouterConfig:
    failover_cooldown_seconds: float = DEFAULT_FAILOVER_COOLDOWN_SECONDS

    def __post_init__(self) -> None:
        _validate_positive_seconds(
            self.failover_cooldown_seconds, "failover_cooldown_seconds", allow_zero=True
        )


@dataclass(frozen=True, slots=True)
class ProviderSettings:
    """Per-provider adapter settings; the key itself stays in the environment."""

    name: str
    api_key_env: str
    base_url: str | None = None
    model: str | None = None
    timeout_seconds: float | None = None


@dataclass(frozen=True, slots=True)
class RuntimeSettings:
    pool: PoolConfig = field(default_factory=PoolConfig)
    router: RouterConfig = field(default_factory=RouterConfig)
    provider_order: tuple[str, ...] = DEFAULT_PROVIDER_ORDER
    providers: Mapping[str, ProviderSettings] = field(default_factory=dict)
    observability: Mapping[str, Any] = field(default_factory=dict)


def pool_config_from(config: Mapping[str, object]) -> PoolConfig:
    section = _section(assert_valid_config(config), "pool")
    return PoolConfig(
        max_concurrency=section["max_concurrency"],
        default_timeout_seconds=section["default_timeout_seconds"],
        default_model=section["default_model"],
        max_output_tokens=section["max_output_tokens"],
        completed_retention=section["completed_retention"],
        max_archived=section["max_archived"],
        max_queue_depth=section.get("max_queue_depth"),
    )


def router_config_from(config: Mapping[str, object]) -> RouterConfig:
    section = _section(assert_valid_config(config), "router")
    return RouterConfig(failover_cooldown_seconds=section["failover_cooldown_seconds"])


def runtime_settings_from(config: Mapping[str, object]) -> RuntimeSettings:
    """Build every typed settings object from one validated config mapping."""
    validated = assert_valid_config(config)
    router_section = _section(validated, "router")
    providers_section = _section(validated, "providers")
    providers = {
        name: ProviderSettings(
            name=name,
            api_key_env=settings["api_key_env"],
            base_url=settings.get("base_url"),
            model=settings.get("model"),
            timeout_seconds=settings.get("timeout_seconds"),
        )
        for name, settings in providers_section.items()
    }
    return RuntimeSettings(
        pool=pool_config_from(validated),
        router=router_config_from(validated),
        provider_order=tuple(router_section["provider_order"]),
        providers=providers,
        observability=dict(_section(validated, "observability")),
    )


def _section(config: Mapping[str, Any], key: str) -> Mapping[str, Any]:
    section = config.get(key)
    if not isinstance(section, Mapping):
        raise ValueError(f"config section {key!r} is missing")
    return section


__all__ = [
    "PoolConfig",
    "ProviderSettings",
    "RouterConfig",
    "RuntimeSettings",
    "pool_config_from",
    "router_config_from",
    "runtime_settings_from",
]
