"""
subagent-runtime config package public API.

File: src/subagent_runtime/config/__init__.py
Last updated: 2026-10-18

Purpose
- Export config loading/validation entrypoints, typed settings and error types.

Functional requirements
- Support loading from ``subagent.toml`` + ``SUBAGENT_`` env overrides.
- Fail fast with clear structured validation/load errors.
"""

from subagent_runtime.config.loader import (
    DEFAULT_CONFIG_FILE,
    ENV_PREFIX,
    ConfigLoadError,
    dump_effective_config,
    env_name_for_path,
    load_config,
    normalize_paths,
)
from subagent_runtime.config.schema import (
    DEFAULT_CONFIG,
    KNOWN_PROVIDERS,
    ConfigSchemaVersion,
    ConfigValidationError,
    ConfigValidationIssue,
    ConfigValidationResult,
    SubagentConfig,
    assert_valid_config,
    default_config,
    merge_config,
    redact_config,
    validate_config,
)
from subagent_runtime.config.settings import (
    PoolConfig,
    ProviderSettings,
    RouterConfig,
    RuntimeSettings,
    pool_config_from,
    router_config_from,
    runtime_settings_from,
)

__all__ = [
    "ConfigLoadError",
    "ConfigSchemaVersion",
    "ConfigValidationError",
    "ConfigValidationIssue",
    "ConfigValidationResult",
    "DEFAULT_CONFIG",
    "DEFAULT_CONFIG_FILE",
    "ENV_PREFIX",
    "KNOWN_PROVIDERS",
    "PoolConfig",
    "ProviderSettings",
    "RouterConfig",
    "RuntimeSettings",
    "SubagentConfig",
    "assert_valid_config",
    "default_config",
    "dump_effective_config",
    "env_name_for_path",
    "load_config",
    "merge_config",
    "normalize_paths",
    "pool_config_from",
    "redact_config",
    "router_config_from",
    "runtime_settings_from",
    "validate_config",
]
