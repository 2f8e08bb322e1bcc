"""
fleet-secrets — unit tests for config schema validation

File: tests/unit/config/test_schema.py
Last updated: 2026-10-19

Purpose
- Validate strict schema checks, structured issue paths, embedded-secret
  rejection, profile overlays, and redacted dumps.
"""

from __future__ import annotations

import pytest

from fleet_secrets.config.schema import (
    BUILTIN_PROFILE_NAMES,
    ConfigValidationError,
    apply_profile_overlay,
    assert_valid_config,
    default_config,
    merge_config,
    redact_config,
    validate_config,
)


def _issues(config: object) -> dict[str, str]:
    result = validate_config(config)
    assert not result.is_valid
    return {item.path: item.message for item in result.issues}


@pytest.mark.unit
def test_defaults_are_valid_and_carry_builtin_profiles() -> None:
    result = validate_config(default_config())
    assert result.is_valid
    assert result.config is not None
    assert tuple(sorted(result.config["profiles"])) == BUILTIN_PROFILE_NAMES
    assert result.config["keys"]["turn_credential"] == "ROBOT_TURN_CREDENTIAL"


@pytest.mark.unit
def test_default_config_is_a_fresh_copy() -> None:
    first = default_config()
    first["keys"]["identity"] = "CHANGED"
    assert default_config()["keys"]["identity"] == "ROBOT_IDENTITY"


@pytest.mark.unit
def test_embedded_secret_values_are_rejected() -> None:
    config = merge_config(
        default_config(),
        {
            "keys": {"turn_credential": "hunter2-value"},
            "resolution": {"api_token": "abc123"},
        },
    )

    issues = _issues(config)

    assert "embedded secret values are forbidden" in issues["keys.turn_credential"]
    assert "embedded secret values are forbidden" in issues["resolution.api_token"]


@pytest.mark.unit
def test_unknown_fields_are_reported_with_paths() -> None:
    config = merge_config(default_config(), {"paths": {"artifact_folder": "x"}, "extra": {}})
    issues = _issues(config)
    assert issues["paths.artifact_folder"] == "unknown field"
    assert issues["extra"] == "unknown field"


@pytest.mark.unit
def test_key_table_rules() -> None:
    config = default_config()
    config["keys"] = {"Identity": "ROBOT_ID", "endpoint": "ROBOT_ID", "api_token": "ROBOT_ID"}

    issues = _issues(config)

    assert "lower snake case" in issues["keys.Identity"]
    assert issues["keys.endpoint"] == "ROBOT_ID is already mapped to 'api_token'"

    empty = default_config()
    empty["keys"] = {}
    assert "at least one config key" in _issues(empty)["keys"]


@pytest.mark.unit
@pytest.mark.parametrize(
    ("overlay", "path"),
    [
        ({"paths": {"artifact_pattern": "secrets.json"}}, "paths.artifact_pattern"),
        ({"paths": {"artifact_pattern": "a/{target}.json"}}, "paths.artifact_pattern"),
        ({"resolution": {"placeholder_format": "{key}"}}, "resolution.placeholder_format"),
        ({"resolution": {"on_corrupted": "ignore"}}, "resolution.on_corrupted"),
        ({"fleet": {"max_workers": 0}}, "fleet.max_workers"),
        ({"fleet": {"max_workers": 65}}, "fleet.max_workers"),
        ({"observability": {"log_level": "TRACE"}}, "observability.log_level"),
        ({"recipients": {"default": ["not-a-key"]}}, "recipients.default[0]"),
        ({"key_material": {"path_env": "lower-case"}}, "key_material.path_env"),
        ({"meta": {"schema_version": 2}}, "meta.schema_version"),
    ],
)
def test_invalid_values_are_reported(overlay: dict[str, object], path: str) -> None:
    assert path in _issues(merge_config(default_config(), overlay))


@pytest.mark.unit
def test_newer_schema_version_explains_upgrade() -> None:
    issues = _issues(merge_config(default_config(), {"meta": {"schema_version": 2}}))
    assert "upgrade fleet-secrets" in issues["meta.schema_version"]


@pytest.mark.unit
def test_recipient_duplicates_are_dropped(make_key_pair) -> None:
    text = make_key_pair().public_text
    config = assert_valid_config(
        merge_config(default_config(), {"recipients": {"default": [text, text]}})
    )
    assert config["recipients"]["default"] == [text]


@pytest.mark.unit
def test_profile_overlay_merges_and_revalidates() -> None:
    config = assert_valid_config(default_config())

    release = apply_profile_overlay(config, "release")
    runtime = apply_profile_overlay(config, "runtime")

    assert release["resolution"]["fail_on_degraded"] is True
    assert runtime["resolution"]["on_corrupted"] == "raise"
    assert apply_profile_overlay(config, None) == config
    with pytest.raises(ConfigValidationError, match="profile 'staging' is not defined"):
        apply_profile_overlay(config, "staging")


@pytest.mark.unit
def test_profile_overlay_rejects_unknown_sections() -> None:
    config = default_config()
    config["profiles"]["build"] = {"keys": {"identity": "X"}}
    assert "profiles.build.keys" in _issues(config)


@pytest.mark.unit
def test_merge_is_deep_and_does_not_mutate_inputs() -> None:
    base = {"a": {"b": 1, "c": [1, 2]}}
    overlay = {"a": {"c": [3]}, "d": 4}

    merged = merge_config(base, overlay)

    assert merged == {"a": {"b": 1, "c": [3]}, "d": 4}
    assert base == {"a": {"b": 1, "c": [1, 2]}}


@pytest.mark.unit
def test_redacted_config_keeps_env_names_and_public_keys(make_key_pair) -> None:
    text = make_key_pair().public_text
    config = assert_valid_config(
        merge_config(default_config(), {"recipients": {"default": [text]}})
    )

    redacted = redact_config(config)

    assert redacted["keys"]["turn_credential"] == "ROBOT_TURN_CREDENTIAL"
    assert redacted["keys"]["api_token"] == "ROBOT_API_TOKEN"
    assert redacted["recipients"]["default"] == [text]
    assert redacted["paths"] == config["paths"]
    assert list(redacted) == sorted(config)
