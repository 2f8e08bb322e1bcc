"""
fleet-secrets — configuration schema and validation.

File: src/fleet_secrets/config/schema.py
Last updated: 2026-10-19

Purpose
- Own the built-in defaults and the strict rules every config layer must pass.

What should be included in this file
- One field table per section; each field names its check and whether it is required.
- The key table rules (lower snake case names, env var targets, one to one).
- Profile overlays, validated with the same field table minus the required rule.
- Deep merge and redacted dumps.

Functional requirements
- Issues carry a dotted path (``resolution.on_corrupted``, ``recipients.default[0]``).
- A field that looks like a secret value is reported as forbidden, not unknown.
- Built-in profiles: ``build``, ``release`` and ``runtime``.
"""

from __future__ import annotations

import copy
import re
from collections.abc import Callable, Mapping, Sequence
from dataclasses import dataclass
from typing import Any, Final

from fleet_secrets.constants import (
    CONFIG_SCHEMA_VERSION,
    DEFAULT_ARTIFACT_DIR,
    DEFAULT_ARTIFACT_PATTERN,
    DEFAULT_KEY_PATH_ENV,
    DEFAULT_KEY_TABLE,
    DEFAULT_LOG_DIR,
    DEFAULT_PLACEHOLDER_FORMAT,
    DEFAULT_RUNTIME_DIR,
)
from fleet_secrets.crypto.keys import KeyFormatError, load_public_key
from fleet_secrets.providers.placeholder import validate_placeholder_format
from fleet_secrets.security.redaction import redact_structure

ConfigSchemaVersion: Final[int] = CONFIG_SCHEMA_VERSION
BUILTIN_PROFILE_NAMES: Final[tuple[str, ...]] = ("build", "release", "runtime")
MAX_FLEET_WORKERS: Final[int] = 64

_KEY_NAME = re.compile(r"[a-z][a-z0-9_]*")
_ENV_NAME = re.compile(r"[A-Z_][A-Z0-9_]*")
_PROFILE_NAME = re.compile(r"[a-z][a-z0-9_-]*")
# Unknown field names that suggest someone pasted a secret into the config.
_SECRET_LIKE_FIELD = re.compile(r"secret|token|passw|passphrase|credential|private|api_?key|auth")

_FORBIDDEN_SECRET = "embedded secret values are forbidden; seal them into the target artifact"

# Config paths normalized relative to the config file location.
PATH_FIELDS: Final[tuple[tuple[str, str], ...]] = (
    ("paths", "artifact_dir"),
    ("paths", "key_dir"),
    ("paths", "runtime_dir"),
    ("observability", "log_dir"),
)

DEFAULT_CONFIG: Final[dict[str, Any]] = {
    "meta": {"schema_version": ConfigSchemaVersion},
    "keys": dict(DEFAULT_KEY_TABLE),
    "paths": {
        "artifact_dir": DEFAULT_ARTIFACT_DIR.as_posix(),
        "artifact_pattern": DEFAULT_ARTIFACT_PATTERN,
        "runtime_dir": DEFAULT_RUNTIME_DIR.as_posix(),
    },
    "key_material": {"path_env": DEFAULT_KEY_PATH_ENV},
    "resolution": {
        "placeholder_format": DEFAULT_PLACEHOLDER_FORMAT,
        "on_corrupted": "report",
        "fail_on_degraded": False,
    },
    "recipients": {"default": []},
    "fleet": {"max_workers": 4},
    "observability": {
        "log_level": "INFO",
        "log_format": "json",
        "log_dir": DEFAULT_LOG_DIR.as_posix(),
        "redact_secrets": True,
    },
    "profiles": {
        "build": {"resolution": {"fail_on_degraded": False}},
        "release": {"resolution": {"fail_on_degraded": True}},
        "runtime": {"resolution": {"on_corrupted": "raise"}},
    },
}


@dataclass(frozen=True, slots=True)
class ConfigValidationIssue:
    """Single structured validation failure."""

    path: str
    message: str


@dataclass(frozen=True, slots=True)
class ConfigValidationResult:
    config: dict[str, Any] | None
    issues: tuple[ConfigValidationIssue, ...]

    @property
    def is_valid(self) -> bool:
        return self.config is not None and not self.issues


class ConfigValidationError(ValueError):
    """Raised when strict config validation fails."""

    def __init__(self, issues: Sequence[ConfigValidationIssue]) -> None:
        self.issues = tuple(issues)
        lines = [f"- {item.path}: {item.message}" for item in self.issues]
        super().__init__("invalid config:\n" + ("\n".join(lines) or "- <root>: no details"))


class _IssueCollector:
    __slots__ = ("_items",)

    def __init__(self) -> None:
        self._items: list[ConfigValidationIssue] = []

    def add(self, path: str, message: str) -> None:
        self._items.append(ConfigValidationIssue(path=path, message=message))

    def items(self) -> tuple[ConfigValidationIssue, ...]:
        return tuple(self._items)

    def __bool__(self) -> bool:
        return bool(self._items)


# A check returns the normalized value, or None after recording an issue.
_Check = Callable[[object, str, _IssueCollector], Any]


def _text(value: object, path: str, issues: _IssueCollector) -> str | None:
    if not isinstance(value, str):
        issues.add(path, f"expected string, got {type(value).__name__}")
        return None
    stripped = value.strip()
    if not stripped:
        issues.add(path, "must not be empty")
        return None
    return stripped


def _path_text(value: object, path: str, issues: _IssueCollector) -> str | None:
    text = _text(value, path, issues)
    if text is not None and "\x00" in text:
        issues.add(path, "must not contain NUL bytes")
        return None
    return text


def _env_name(value: object, path: str, issues: _IssueCollector) -> str | None:
    text = _text(value, path, issues)
    if text is not None and not _ENV_NAME.fullmatch(text):
        issues.add(path, "must be an env var name (example: FLEET_SECRETS_KEY_FILE)")
        return None
    return text


def _boolean(value: object, path: str, issues: _IssueCollector) -> bool | None:
    if not isinstance(value, bool):
        issues.add(path, f"expected boolean, got {type(value).__name__}")
        return None
    return value


def _bounded_int(low: int, high: int | None = None) -> _Check:
    def check(value: object, path: str, issues: _IssueCollector) -> int | None:
        if isinstance(value, bool) or not isinstance(value, int):
            issues.add(path, f"expected integer, got {type(value).__name__}")
            return None
        if value < low:
            issues.add(path, f"must be >= {low}")
            return None
        if high is not None and value > high:
            issues.add(path, f"must be <= {high}")
            return None
        return value

    return check


def _one_of(*choices: str) -> _Check:
    def check(value: object, path: str, issues: _IssueCollector) -> str | None:
        text = _text(value, path, issues)
        if text is not None and text not in choices:
            expected = ", ".join(sorted(choices))
            issues.add(path, f"invalid value {text!r}; expected one of: {expected}")
            return None
        return text

    return check


def _schema_version(value: object, path: str, issues: _IssueCollector) -> int | None:
    version = _bounded_int(1)(value, path, issues)
    if version is not None and version != ConfigSchemaVersion:
        issues.add(path, migration_guidance(version))
        return None
    return version


def _artifact_pattern(value: object, path: str, issues: _IssueCollector) -> str | None:
    text = _text(value, path, issues)
    if text is None:
        return None
    if text.count("{target}") != 1:
        issues.add(path, "must contain exactly one '{target}' field")
        return None
    if "/" in text or "\\" in text:
        issues.add(path, "must be a file name, not a path")
        return None
    return text


def _placeholder_format(value: object, path: str, issues: _IssueCollector) -> str | None:
    text = _text(value, path, issues)
    if text is None:
        return None
    try:
        return validate_placeholder_format(text)
    except ValueError as exc:
        issues.add(path, str(exc))
        return None


def _public_keys(value: object, path: str, issues: _IssueCollector) -> list[str] | None:
    if not isinstance(value, list):
        issues.add(path, f"expected list of public keys, got {type(value).__name__}")
        return None
    accepted: list[str] = []
    for index, item in enumerate(value):
        item_path = f"{path}[{index}]"
        text = _text(item, item_path, issues)
        if text is None:
            continue
        try:
            load_public_key(text)
        except KeyFormatError as exc:
            issues.add(item_path, str(exc))
            continue
        if text not in accepted:
            accepted.append(text)
    return accepted


@dataclass(frozen=True, slots=True)
class _Field:
    check: _Check
    required: bool = True


_SECTIONS: Final[dict[str, dict[str, _Field]]] = {
    "meta": {"schema_version": _Field(_schema_version)},
    "paths": {
        "artifact_dir": _Field(_path_text),
        "artifact_pattern": _Field(_artifact_pattern),
        "key_dir": _Field(_path_text, required=False),
        "runtime_dir": _Field(_path_text),
    },
    "key_material": {"path_env": _Field(_env_name)},
    "resolution": {
        "placeholder_format": _Field(_placeholder_format),
        "on_corrupted": _Field(_one_of("report", "raise")),
        "fail_on_degraded": _Field(_boolean),
    },
    "recipients": {"default": _Field(_public_keys)},
    "fleet": {"max_workers": _Field(_bounded_int(1, MAX_FLEET_WORKERS))},
    "observability": {
        "log_level": _Field(_one_of("DEBUG", "INFO", "WARNING", "ERROR")),
        "log_format": _Field(_one_of("json", "text")),
        "log_dir": _Field(_path_text),
        "redact_secrets": _Field(_boolean),
    },
}

# Profiles may override any section except schema metadata and the key table.
_OVERLAY_SECTIONS: Final[tuple[str, ...]] = tuple(name for name in _SECTIONS if name != "meta")


def default_config() -> dict[str, Any]:
    """Return a deep copy of the built-in defaults."""

    return copy.deepcopy(DEFAULT_CONFIG)


def migration_guidance(found_version: int) -> str:
    if found_version < ConfigSchemaVersion:
        return (
            f"schema version {found_version} is older than supported {ConfigSchemaVersion}; "
            "upgrade fleet_secrets.toml to the current schema"
        )
    if found_version > ConfigSchemaVersion:
        return (
            f"schema version {found_version} is newer than supported {ConfigSchemaVersion}; "
            "upgrade fleet-secrets"
        )
    return "schema version is current"


def merge_config(base: Mapping[str, object], overlay: Mapping[str, object]) -> dict[str, Any]:
    """Deep-merge ``overlay`` onto a copy of ``base``; lists and scalars are replaced."""

    merged = copy.deepcopy(dict(base))
    _overlay_into(merged, overlay)
    return merged


def apply_profile_overlay(config: Mapping[str, object], profile: str | None) -> dict[str, Any]:
    """Apply a named profile overlay and re-validate the result."""

    name = (profile or "").strip()
    if not name:
        return copy.deepcopy(dict(config))
    profiles = config.get("profiles")
    overlay = profiles.get(name) if isinstance(profiles, Mapping) else None
    if not isinstance(overlay, Mapping):
        message = "profile overlay must be an object"
        if overlay is None:
            message = f"profile {name!r} is not defined"
        raise ConfigValidationError((ConfigValidationIssue(f"profiles.{name}", message),))
    return assert_valid_config(merge_config(config, overlay))


def validate_config(config: object) -> ConfigValidationResult:
    """Validate ``config``; on failure ``config`` is None and every issue is listed."""

    issues = _IssueCollector()
    normalized: dict[str, Any] | None = None
    if isinstance(config, Mapping):
        normalized = _validate_root(config, issues)
    else:
        issues.add("<root>", f"expected object, got {type(config).__name__}")
    if issues:
        return ConfigValidationResult(config=None, issues=issues.items())
    return ConfigValidationResult(config=normalized, issues=())


def assert_valid_config(config: object) -> dict[str, Any]:
    result = validate_config(config)
    if result.config is None:
        raise ConfigValidationError(result.issues)
    return result.config


def redact_config(config: object) -> dict[str, Any]:
    """Redacted copy for logs and ``config`` output.

    The key table maps names to env var names and recipients are public keys;
    both are shown as is.
    """

    if not isinstance(config, Mapping):
        return {}
    return {
        section: (
            copy.deepcopy(config[section])
            if section in ("keys", "recipients")
            else redact_structure(copy.deepcopy(config[section]))
        )
        for section in sorted(config)
    }


def dump_redacted(config: object) -> dict[str, Any]:
    return redact_config(config)


def _validate_root(payload: Mapping[str, object], issues: _IssueCollector) -> dict[str, Any]:
    _report_unknown(payload, {*_SECTIONS, "keys", "profiles"}, "", issues)
    out: dict[str, Any] = {}
    for name in ("meta", "keys", *_OVERLAY_SECTIONS):
        if name not in payload:
            issues.add(name, "missing required field")
            continue
        table = _table(payload[name], name, issues)
        if table is None:
            continue
        if name == "keys":
            out[name] = _validate_key_table(table, issues)
        else:
            out[name] = _validate_section(table, name, name, issues, partial=False)

    if "profiles" in payload:
        profiles = _table(payload["profiles"], "profiles", issues)
        if profiles is not None:
            out["profiles"] = _validate_profiles(profiles, issues)
    return out


def _validate_section(
    payload: Mapping[str, object],
    section: str,
    path: str,
    issues: _IssueCollector,
    *,
    partial: bool,
) -> dict[str, Any]:
    fields = _SECTIONS[section]
    _report_unknown(payload, set(fields), path, issues)
    out: dict[str, Any] = {}
    for name, rule in fields.items():
        field_path = f"{path}.{name}"
        if name not in payload:
            if rule.required and not partial:
                issues.add(field_path, "missing required field")
            continue
        parsed = rule.check(payload[name], field_path, issues)
        if parsed is not None:
            out[name] = parsed
    return out


def _validate_key_table(payload: Mapping[str, object], issues: _IssueCollector) -> dict[str, str]:
    if not payload:
        issues.add("keys", "at least one config key must be declared")
    table: dict[str, str] = {}
    owners: dict[str, str] = {}
    for name in sorted(payload):
        path = f"keys.{name}"
        if not _KEY_NAME.fullmatch(name):
            issues.add(path, "key name must be lower snake case (example: turn_credential)")
            continue
        env_name = _text(payload[name], path, issues)
        if env_name is None:
            continue
        if not _ENV_NAME.fullmatch(env_name):
            issues.add(path, "must be an environment variable name; " + _FORBIDDEN_SECRET)
        elif env_name in owners:
            issues.add(path, f"{env_name} is already mapped to {owners[env_name]!r}")
        else:
            owners[env_name] = name
            table[name] = env_name
    return table


def _validate_profiles(payload: Mapping[str, object], issues: _IssueCollector) -> dict[str, Any]:
    profiles: dict[str, Any] = {}
    for name in sorted(payload):
        path = f"profiles.{name}"
        if not _PROFILE_NAME.fullmatch(name):
            issues.add(path, "profile name must match ^[a-z][a-z0-9_-]*$")
            continue
        overlay = _table(payload[name], path, issues)
        if overlay is None:
            continue
        _report_unknown(overlay, set(_OVERLAY_SECTIONS), path, issues)
        validated: dict[str, Any] = {}
        for section in _OVERLAY_SECTIONS:
            if section not in overlay:
                continue
            table = _table(overlay[section], f"{path}.{section}", issues)
            if table is not None:
                validated[section] = _validate_section(
                    table, section, f"{path}.{section}", issues, partial=True
                )
        profiles[name] = validated
    return profiles


def _table(value: object, path: str, issues: _IssueCollector) -> dict[str, object] | None:
    if not isinstance(value, Mapping):
        issues.add(path, f"expected object, got {type(value).__name__}")
        return None
    table: dict[str, object] = {}
    for key, item in value.items():
        if isinstance(key, str):
            table[key] = item
        else:
            issues.add(path, f"object key must be string, got {type(key).__name__}")
    return table


def _report_unknown(
    payload: Mapping[str, object], allowed: set[str], path: str, issues: _IssueCollector
) -> None:
    for key in sorted(set(payload) - allowed):
        key_path = f"{path}.{key}" if path else key
        lowered = key.strip().lower()
        if not lowered.endswith("_env") and _SECRET_LIKE_FIELD.search(lowered):
            issues.add(key_path, _FORBIDDEN_SECRET)
        else:
            issues.add(key_path, "unknown field")


def _overlay_into(target: dict[str, Any], overlay: Mapping[str, object]) -> None:
    for key, value in overlay.items():
        current = target.get(key)
        if isinstance(value, Mapping) and isinstance(current, dict):
            _overlay_into(current, value)
        elif isinstance(value, Mapping):
            target[key] = merge_config({}, value)
        else:
            target[key] = copy.deepcopy(value)


__all__ = [
    "BUILTIN_PROFILE_NAMES",
    "ConfigSchemaVersion",
    "ConfigValidationError",
    "ConfigValidationIssue",
    "ConfigValidationResult",
    "DEFAULT_CONFIG",
    "MAX_FLEET_WORKERS",
    "PATH_FIELDS",
    "apply_profile_overlay",
    "assert_valid_config",
    "default_config",
    "dump_redacted",
    "merge_config",
    "migration_guidance",
    "redact_config",
    "validate_config",
]
