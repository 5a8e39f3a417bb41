"""Unit tests for config schema validation and helpers."""

from __future__ import annotations

import pytest

from subagent_runtime.config.schema import (
    DEFAULT_CONFIG,
    ConfigValidationError,
    assert_valid_config,
    default_config,
    merge_config,
    redact_config,
    validate_config,
)


def _issue_paths(config: object) -> list[str]:
    return [issue.path for issue in validate_config(config).issues]


def test_default_config_is_valid_and_copied() -> None:
    result = validate_config(default_config())
    assert result.is_valid
    assert result.config is not None
    assert result.config["pool"]["max_concurrency"] == 8
    assert result.config["router"]["provider_order"] == ["anthropic", "openai", "groq", "google"]

    copy = default_config()
    copy["pool"]["max_concurrency"] = 1
    assert DEFAULT_CONFIG["pool"]["max_concurrency"] == 8


def test_unknown_and_missing_fields_are_reported_with_paths() -> None:
    config = merge_config(default_config(), {"pool": {"workers": 3}, "extra": {}})
    del config["observability"]["log_level"]

    paths = _issue_paths(config)
    assert "extra" in paths
    assert "pool.workers" in paths
    assert "observability.log_level" in paths


def test_type_and_range_errors() -> None:
    config = merge_config(
        default_config(),
        {
            "pool": {"max_concurrency": True, "default_timeout_seconds": 0, "max_queue_depth": 0},
            "router": {"failover_cooldown_seconds": -1},
            "observability": {"log_level": "LOUD"},
        },
    )
    result = validate_config(config)
    messages = {issue.path: issue.message for issue in result.issues}

    assert messages["pool.max_concurrency"] == "expected integer, got bool"
    assert messages["pool.default_timeout_seconds"] == "must be > 0"
    assert messages["pool.max_queue_depth"] == "must be >= 1"
    assert messages["router.failover_cooldown_seconds"] == "must be >= 0.0"
    assert messages["observability.log_level"].startswith("invalid value 'LOUD'")


def test_provider_order_must_name_known_configured_providers() -> None:
    unknown = merge_config(
        default_config(), {"router": {"provider_order": ["anthropic", "mistral"]}}
    )
    assert "router.provider_order[1]" in _issue_paths(unknown)

    duplicate = merge_config(default_config(), {"router": {"provider_order": ["groq", "groq"]}})
    assert "router.provider_order[1]" in _issue_paths(duplicate)

    missing_section = default_config()
    del missing_section["providers"]["openai"]
    assert "router.provider_order[1]" in _issue_paths(missing_section)


def test_embedded_secrets_are_rejected() -> None:
    config = merge_config(default_config(), {"providers": {"openai": {"api_key": "sk-live"}}})
    result = validate_config(config)
    assert [issue.path for issue in result.issues] == ["providers.openai.api_key"]
    assert "forbidden" in result.issues[0].message


def test_provider_settings_validation() -> None:
    config = merge_config(
        default_config(),
        {"providers": {"groq": {"base_url": "ftp://groq", "api_key_env": "groq key"}}},
    )
    paths = _issue_paths(config)
    assert "providers.groq.base_url" in paths
    assert "providers.groq.api_key_env" in paths


def test_assert_valid_config_raises_structured_error() -> None:
    with pytest.raises(ConfigValidationError) as excinfo:
        assert_valid_config({"pool": "eight"})
    paths = [issue.path for issue in excinfo.value.issues]
    assert "pool" in paths
    assert "router" in paths


def test_non_mapping_root_is_rejected() -> None:
    result = validate_config(["not", "a", "mapping"])
    assert not result.is_valid
    assert result.issues[0].path == "<root>"


def test_redact_config_masks_secret_like_keys_only() -> None:
    redacted = redact_config(
        {
            "providers": {"x": {"token": "abc", "api_key_env": "X_KEY"}},
            "observability": {"redact_secrets": True},
        }
    )
    assert redacted["providers"]["x"]["token"] == "<redacted>"
    assert redacted["providers"]["x"]["api_key_env"] == "X_KEY"
    assert redacted["observability"]["redact_secrets"] is True
