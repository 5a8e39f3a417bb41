"""
subagent-runtime — configuration schema and validation.

File: src/subagent_runtime/config/schema.py
Last updated: 2026-10-18

Purpose
- Define authoritative configuration defaults and strict validation rules.

What is included in this file
- Defaults for the ``pool``, ``router``, ``providers`` and ``observability`` sections.
- Validation rules for required fields, types, enums, and numeric constraints.
- Deterministic deep-merge and redaction helpers.

Functional requirements
- Validate config payloads and return structured errors (field path + message).
- Reject embedded secrets; credentials are referenced by env var name only.
"""

from __future__ import annotations

import copy
import math
import re
from collections.abc import Callable, Mapping, Sequence
from dataclasses import dataclass
from typing import Any, Final, TypedDict

from subagent_runtime.constants import (
    CONFIG_SCHEMA_VERSION,
    DEFAULT_COMPLETED_RETENTION,
    DEFAULT_FAILOVER_COOLDOWN_SECONDS,
    DEFAULT_MAX_ARCHIVED,
    DEFAULT_MAX_CONCURRENCY,
    DEFAULT_MAX_OUTPUT_TOKENS,
    DEFAULT_PROVIDER_ORDER,
    DEFAULT_SUBAGENT_MODEL,
    DEFAULT_TIMEOUT_SECONDS,
    GROQ_BASE_URL,
)

ConfigSchemaVersion: Final[int] = CONFIG_SCHEMA_VERSION
KNOWN_PROVIDERS: Final[tuple[str, ...]] = DEFAULT_PROVIDER_ORDER

_ENV_NAME_PATTERN = re.compile(r"^[A-Z_][A-Z0-9_]*$")
_CAMEL_CASE_BOUNDARY = re.compile(r"([a-z0-9])([A-Z])")
_NON_ALNUM = re.compile(r"[^a-z0-9]+")

_SENSITIVE_KEY_TOKENS: Final[frozenset[str]] = frozenset(
    {"secret", "token", "password", "api", "key", "apikey", "credential", "auth"}
)
_SENSITIVE_KEY_PHRASES: Final[tuple[str, ...]] = ("api_key", "access_token", "password", "secret")
# Settings whose names mention secrets but hold no secret value.
_NON_SENSITIVE_KEYS: Final[frozenset[str]] = frozenset({"redact_secrets"})

# Config paths that are normalized relative to the config file location.
PATH_FIELDS: Final[tuple[tuple[str, ...], ...]] = (("observability", "log_dir"),)

# Fields whose default is ``None`` and therefore cannot be inferred from defaults.
OPTIONAL_FIELDS: Final[tuple[tuple[tuple[str, ...], str], ...]] = (
    (("pool", "max_queue_depth"), "int"),
    *((("providers", name, "base_url"), "str") for name in KNOWN_PROVIDERS),
    *((("providers", name, "model"), "str") for name in KNOWN_PROVIDERS),
    *((("providers", name, "timeout_seconds"), "float") for name in KNOWN_PROVIDERS),
)


class MetaConfig(TypedDict):
    schema_version: int


class PoolSection(TypedDict):
    max_concurrency: int
    default_timeout_seconds: float
    default_model: str
    max_output_tokens: int
    completed_retention: int
    max_archived: int
    max_queue_depth: int | None


class RouterSection(TypedDict):
    provider_order: list[str]
    failover_cooldown_seconds: float


class ProviderSection(TypedDict, total=False):
    api_key_env: str
    base_url: str
    model: str
    timeout_seconds: float


class ObservabilitySection(TypedDict):
    log_level: str
    log_dir: str
    log_to_stdout: bool
    redact_secrets: bool


class SubagentConfig(TypedDict):
    meta: MetaConfig
    pool: PoolSection
    router: RouterSection
    providers: dict[str, ProviderSection]
    observability: ObservabilitySection


DEFAULT_CONFIG: Final[SubagentConfig] = {
    "meta": {
        "schema_version": ConfigSchemaVersion,
    },
    "pool": {
        "max_concurrency": DEFAULT_MAX_CONCURRENCY,
        "default_timeout_seconds": DEFAULT_TIMEOUT_SECONDS,
        "default_model": DEFAULT_SUBAGENT_MODEL,
        "max_output_tokens": DEFAULT_MAX_OUTPUT_TOKENS,
        "completed_retention": DEFAULT_COMPLETED_RETENTION,
        "max_archived": DEFAULT_MAX_ARCHIVED,
        "max_queue_depth": None,
    },
    "router": {
        "provider_order": list(DEFAULT_PROVIDER_ORDER),
        "failover_cooldown_seconds": DEFAULT_FAILOVER_COOLDOWN_SECONDS,
    },
    "providers": {
        "anthropic": {"api_key_env": "ANTHROPIC_API_KEY"},
        "openai": {"api_key_env": "OPENAI_API_KEY"},
        "groq": {"api_key_env": "GROQ_API_KEY", "base_url": GROQ_BASE_URL},
        "google": {"api_key_env": "GOOGLE_API_KEY"},
    },
    "observability": {
        "log_level": "INFO",
        "log_dir": "logs/",
        "log_to_stdout": True,
        "redact_secrets": True,
    },
}


@dataclass(frozen=True, slots=True)
class ConfigValidationIssue:
    """Single structured validation failure."""

    path: str
    message: str


@dataclass(frozen=True, slots=True)
class ConfigValidationResult:
    """Validation result with normalized config when no issues were found."""

    config: dict[str, Any] | None
    issues: tuple[ConfigValidationIssue, ...]

    @property
    def is_valid(self) -> bool:
        return self.config is not None and not self.issues


class ConfigValidationError(ValueError):
    """Raised when strict config validation fails."""

    def __init__(self, issues: Sequence[ConfigValidationIssue]) -> None:
        self.issues = tuple(issues)
        if not self.issues:
            rendered = "unknown validation failure"
        else:
            rendered = "\n".join(f"- {item.path}: {item.message}" for item in self.issues)
        super().__init__(f"invalid config:\n{rendered}")


class _IssueCollector:
    __slots__ = ("_items",)

    def __init__(self) -> None:
        self._items: list[ConfigValidationIssue] = []

    def add(self, path: str, message: str) -> None:
        self._items.append(ConfigValidationIssue(path=path, message=message))

    def items(self) -> tuple[ConfigValidationIssue, ...]:
        return tuple(self._items)

    @property
    def has_issues(self) -> bool:
        return bool(self._items)


_SectionValidator = Callable[[Mapping[str, object], str, _IssueCollector], dict[str, Any]]


def default_config() -> SubagentConfig:
    """Return a deep copy of the built-in defaults."""
    return copy.deepcopy(DEFAULT_CONFIG)


def merge_config(base: Mapping[str, object], overlay: Mapping[str, object]) -> dict[str, Any]:
    """Deterministically deep-merge ``overlay`` onto ``base``."""
    merged = _deep_copy_mapping(base)
    _merge_into(merged, overlay)
    return merged


def validate_config(config: Mapping[str, object] | object) -> ConfigValidationResult:
    """Validate a complete config and return structured issues with deterministic paths."""
    issues = _IssueCollector()
    root = _as_object(config, "<root>", issues)
    if root is None:
        return ConfigValidationResult(config=None, issues=issues.items())

    sections: dict[str, _SectionValidator] = {
        "meta": _validate_meta,
        "pool": _validate_pool,
        "router": _validate_router,
        "providers": _validate_providers,
        "observability": _validate_observability,
    }
    _reject_unknown_keys(root, set(sections), "", issues)
    _require_keys(root, set(sections), "", issues)

    normalized: dict[str, Any] = {}
    for key in sorted(sections):
        raw = root.get(key)
        if raw is None:
            continue
        section = _as_object(raw, key, issues)
        if section is None:
            continue
        normalized[key] = sections[key](section, key, issues)

    _validate_router_cross_fields(normalized, issues)

    if issues.has_issues:
        return ConfigValidationResult(config=None, issues=issues.items())
    return ConfigValidationResult(config=normalized, issues=())


def assert_valid_config(config: Mapping[str, object] | object) -> dict[str, Any]:
    """Validate config and raise ``ConfigValidationError`` on failure."""
    result = validate_config(config)
    if result.config is None:
        raise ConfigValidationError(result.issues)
    return result.config


def redact_config(config: Mapping[str, object] | object) -> dict[str, Any]:
    """Return a redacted representation suitable for logs."""
    if not isinstance(config, Mapping):
        return {}
    redacted = _redact_value(config, parent_key=None)
    if isinstance(redacted, dict):
        return redacted
    return {}


def _validate_meta(
    payload: Mapping[str, object], path: str, issues: _IssueCollector
) -> dict[str, Any]:
    _reject_unknown_keys(payload, {"schema_version"}, path, issues)
    _require_keys(payload, {"schema_version"}, path, issues)

    out: dict[str, Any] = {}
    if "schema_version" in payload:
        field_path = _join(path, "schema_version")
        parsed = _as_int(payload["schema_version"], field_path, issues, minimum=1)
        if parsed is not None:
            out["schema_version"] = parsed
            if parsed != ConfigSchemaVersion:
                issues.add(
                    field_path,
                    f"schema version {parsed} is not supported; expected {ConfigSchemaVersion}",
                )
    return out


def _validate_pool(
    payload: Mapping[str, object], path: str, issues: _IssueCollector
) -> dict[str, Any]:
    int_fields = {
        "max_concurrency": 1,
        "max_output_tokens": 1,
        "completed_retention": 0,
        "max_archived": 1,
    }
    allowed = {*int_fields, "default_timeout_seconds", "default_model", "max_queue_depth"}
    _reject_unknown_keys(payload, allowed, path, issues)
    _require_keys(payload, allowed - {"max_queue_depth"}, path, issues)

    out: dict[str, Any] = {}
    for key, minimum in sorted(int_fields.items()):
        if key in payload:
            parsed_int = _as_int(payload[key], _join(path, key), issues, minimum=minimum)
            if parsed_int is not None:
                out[key] = parsed_int

    if "default_timeout_seconds" in payload:
        parsed_timeout = _as_positive_float(
            payload["default_timeout_seconds"], _join(path, "default_timeout_seconds"), issues
        )
        if parsed_timeout is not None:
            out["default_timeout_seconds"] = parsed_timeout

    if "default_model" in payload:
        parsed_model = _as_str(payload["default_model"], _join(path, "default_model"), issues)
        if parsed_model is not None:
            out["default_model"] = parsed_model

    raw_depth = payload.get("max_queue_depth")
    if raw_depth is None:
        out["max_queue_depth"] = None
    else:
        parsed_depth = _as_int(raw_depth, _join(path, "max_queue_depth"), issues, minimum=1)
        if parsed_depth is not None:
            out["max_queue_depth"] = parsed_depth

    return out


def _validate_router(
    payload: Mapping[str, object], path: str, issues: _IssueCollector
) -> dict[str, Any]:
    allowed = {"provider_order", "failover_cooldown_seconds"}
    _reject_unknown_keys(payload, allowed, path, issues)
    _require_keys(payload, allowed, path, issues)

    out: dict[str, Any] = {}
    if "provider_order" in payload:
        order_path = _join(path, "provider_order")
        raw_order = payload["provider_order"]
        if isinstance(raw_order, str) or not isinstance(raw_order, Sequence):
            issues.add(
                order_path, f"expected list of provider names, got {type(raw_order).__name__}"
            )
        else:
            order: list[str] = []
            for index, item in enumerate(raw_order):
                name = _as_enum(
                    item, f"{order_path}[{index}]", issues, allowed_values=KNOWN_PROVIDERS
                )
                if name is None:
                    continue
                if name in order:
                    issues.add(f"{order_path}[{index}]", f"duplicate provider {name!r}")
                    continue
                order.append(name)
            out["provider_order"] = order

    if "failover_cooldown_seconds" in payload:
        parsed_cooldown = _as_float(
            payload["failover_cooldown_seconds"],
            _join(path, "failover_cooldown_seconds"),
            issues,
            minimum=0.0,
        )
        if parsed_cooldown is not None:
            out["failover_cooldown_seconds"] = parsed_cooldown

    return out


def _validate_providers(
    payload: Mapping[str, object], path: str, issues: _IssueCollector
) -> dict[str, Any]:
    _reject_unknown_keys(payload, set(KNOWN_PROVIDERS), path, issues)

    out: dict[str, Any] = {}
    for provider_name in KNOWN_PROVIDERS:
        raw = payload.get(provider_name)
        if raw is None:
            continue
        section_path = _join(path, provider_name)
        section = _as_object(raw, section_path, issues)
        if section is None:
            continue
        out[provider_name] = _validate_provider_settings(section, section_path, issues)
    return out


def _validate_provider_settings(
    payload: Mapping[str, object], path: str, issues: _IssueCollector
) -> dict[str, Any]:
    allowed = {"api_key_env", "base_url", "model", "timeout_seconds"}
    _reject_unknown_keys(payload, allowed, path, issues)
    _require_keys(payload, {"api_key_env"}, path, issues)

    out: dict[str, Any] = {}
    if "api_key_env" in payload:
        parsed_env = _as_env_name(payload["api_key_env"], _join(path, "api_key_env"), issues)
        if parsed_env is not None:
            out["api_key_env"] = parsed_env

    if payload.get("base_url") is not None:
        base_url_path = _join(path, "base_url")
        parsed_url = _as_str(payload["base_url"], base_url_path, issues)
        if parsed_url is not None:
            if not parsed_url.startswith(("https://", "http://")):
                issues.add(base_url_path, "must be an http(s) URL")
            else:
                out["base_url"] = parsed_url.rstrip("/")

    if payload.get("model") is not None:
        parsed_model = _as_str(payload["model"], _join(path, "model"), issues)
        if parsed_model is not None:
            out["model"] = parsed_model

    if payload.get("timeout_seconds") is not None:
        parsed_timeout = _as_positive_float(
            payload["timeout_seconds"], _join(path, "timeout_seconds"), issues
        )
        if parsed_timeout is not None:
            out["timeout_seconds"] = parsed_timeout

    return out


def _validate_observability(
    payload: Mapping[str, object], path: str, issues: _IssueCollector
) -> dict[str, Any]:
    allowed = {"log_level", "log_dir", "log_to_stdout", "redact_secrets"}
    _reject_unknown_keys(payload, allowed, path, issues)
    _require_keys(payload, allowed, path, issues)

    out: dict[str, Any] = {}
    if "log_level" in payload:
        parsed_log_level = _as_enum(
            payload["log_level"],
            _join(path, "log_level"),
            issues,
            allowed_values=("DEBUG", "INFO", "WARNING", "ERROR"),
        )
        if parsed_log_level is not None:
            out["log_level"] = parsed_log_level

    if "log_dir" in payload:
        parsed_log_dir = _as_str(payload["log_dir"], _join(path, "log_dir"), issues)
        if parsed_log_dir is not None:
            if "\x00" in parsed_log_dir:
                issues.add(_join(path, "log_dir"), "must not contain NUL bytes")
            else:
                out["log_dir"] = parsed_log_dir

    for flag in ("log_to_stdout", "redact_secrets"):
        if flag in payload:
            parsed_flag = _as_bool(payload[flag], _join(path, flag), issues)
            if parsed_flag is not None:
                out[flag] = parsed_flag

    return out


def _validate_router_cross_fields(config: Mapping[str, Any], issues: _IssueCollector) -> None:
    router = config.get("router")
    providers = config.get("providers")
    if not isinstance(router, Mapping) or not isinstance(providers, Mapping):
        return
    for index, name in enumerate(router.get("provider_order", ())):
        if name not in providers:
            issues.add(
                f"router.provider_order[{index}]",
                f"provider {name!r} has no [providers.{name}] section",
            )


def _as_object(value: object, path: str, issues: _IssueCollector) -> dict[str, object] | None:
    if not isinstance(value, Mapping):
        issues.add(path, f"expected object, got {type(value).__name__}")
        return None
    out: dict[str, object] = {}
    for key, item in value.items():
        if not isinstance(key, str):
            issues.add(path, f"object key must be string, got {type(key).__name__}")
            continue
        out[key] = item
    return out


def _as_str(value: object, path: str, issues: _IssueCollector) -> str | None:
    if not isinstance(value, str):
        issues.add(path, f"expected string, got {type(value).__name__}")
        return None
    parsed = value.strip()
    if not parsed:
        issues.add(path, "must not be empty")
        return None
    return parsed


def _as_env_name(value: object, path: str, issues: _IssueCollector) -> str | None:
    parsed = _as_str(value, path, issues)
    if parsed is None:
        return None
    if not _ENV_NAME_PATTERN.fullmatch(parsed):
        issues.add(path, "must be an env var name (example: ANTHROPIC_API_KEY)")
        return None
    return parsed


def _as_bool(value: object, path: str, issues: _IssueCollector) -> bool | None:
    if isinstance(value, bool):
        return value
    issues.add(path, f"expected boolean, got {type(value).__name__}")
    return None


def _as_int(
    value: object,
    path: str,
    issues: _IssueCollector,
    *,
    minimum: int | None = None,
) -> int | None:
    if isinstance(value, bool) or not isinstance(value, int):
        issues.add(path, f"expected integer, got {type(value).__name__}")
        return None
    if minimum is not None and value < minimum:
        issues.add(path, f"must be >= {minimum}")
        return None
    return value


def _as_float(
    value: object,
    path: str,
    issues: _IssueCollector,
    *,
    minimum: float | None = None,
) -> float | None:
    if isinstance(value, bool) or not isinstance(value, (int, float)):
        issues.add(path, f"expected number, got {type(value).__name__}")
        return None
    parsed = float(value)
    if not math.isfinite(parsed):
        issues.add(path, "must be finite")
        return None
    if minimum is not None and parsed < minimum:
        issues.add(path, f"must be >= {minimum}")
        return None
    return parsed


def _as_positive_float(value: object, path: str, issues: _IssueCollector) -> float | None:
    parsed = _as_float(value, path, issues)
    if parsed is not None and parsed <= 0:
        issues.add(path, "must be > 0")
        return None
    return parsed


def _as_enum(
    value: object,
    path: str,
    issues: _IssueCollector,
    *,
    allowed_values: tuple[str, ...],
) -> str | None:
    parsed = _as_str(value, path, issues)
    if parsed is None:
        return None
    if parsed not in allowed_values:
        expected = ", ".join(sorted(allowed_values))
        issues.add(path, f"invalid value {parsed!r}; expected one of: {expected}")
        return None
    return parsed


def _reject_unknown_keys(
    payload: Mapping[str, object],
    allowed: set[str],
    path: str,
    issues: _IssueCollector,
) -> None:
    for key in sorted(payload):
        if key in allowed:
            continue
        key_path = _join(path, key)
        if _looks_sensitive_key(key):
            issues.add(
                key_path,
                "embedded secret values are forbidden; use an *_env key with an env var name",
            )
        else:
            issues.add(key_path, "unknown field")


def _require_keys(
    payload: Mapping[str, object],
    required: set[str],
    path: str,
    issues: _IssueCollector,
) -> None:
    for key in sorted(required):
        if key not in payload:
            issues.add(_join(path, key), "missing required field")


def _looks_sensitive_key(key: str) -> bool:
    normalized = _normalize_key(key)
    if normalized.endswith("_env") or normalized in _NON_SENSITIVE_KEYS:
        return False
    if any(phrase in normalized for phrase in _SENSITIVE_KEY_PHRASES):
        return True
    tokens = tuple(token for token in normalized.split("_") if token)
    return any(token in _SENSITIVE_KEY_TOKENS for token in tokens)


def _normalize_key(key: str) -> str:
    with_boundaries = _CAMEL_CASE_BOUNDARY.sub(r"\1_\2", key.strip())
    return _NON_ALNUM.sub("_", with_boundaries.lower()).strip("_")


def _join(path: str, key: str) -> str:
    if not path:
        return key
    return f"{path}.{key}"


def _merge_into(target: dict[str, Any], overlay: Mapping[str, object]) -> None:
    for key in sorted(overlay):
        value = overlay[key]
        if isinstance(value, Mapping):
            existing = target.get(key)
            nested = existing if isinstance(existing, dict) else {}
            _merge_into(nested, value)
            target[key] = nested
        else:
            target[key] = copy.deepcopy(value)


def _deep_copy_mapping(value: Mapping[str, object]) -> dict[str, Any]:
    out: dict[str, Any] = {}
    for key in sorted(value):
        item = value[key]
        out[key] = _deep_copy_mapping(item) if isinstance(item, Mapping) else copy.deepcopy(item)
    return out


def _redact_value(value: object, parent_key: str | None) -> object:
    if isinstance(value, Mapping):
        out: dict[str, object] = {}
        for key in sorted(value):
            item = value[key]
            if _looks_sensitive_key(key):
                out[key] = "<redacted>"
            else:
                out[key] = _redact_value(item, key)
        return out
    if isinstance(value, (list, tuple)):
        return [_redact_value(item, parent_key) for item in value]
    return value


__all__ = [
    "ConfigSchemaVersion",
    "ConfigValidationError",
    "ConfigValidationIssue",
    "ConfigValidationResult",
    "DEFAULT_CONFIG",
    "KNOWN_PROVIDERS",
    "OPTIONAL_FIELDS",
    "PATH_FIELDS",
    "SubagentConfig",
    "assert_valid_config",
    "default_config",
    "merge_config",
    "redact_config",
    "validate_config",
]
