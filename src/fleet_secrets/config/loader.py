"""
fleet-secrets — config loader.

File: src/fleet_secrets/config/loader.py
Last updated: 2026-10-19

Purpose
- Build the effective config for one command from four layers:
  built-in defaults, ``fleet_secrets.toml``, ``FLEET_SECRETS_*`` env vars, CLI flags.

What should be included in this file
- TOML loading via ``tomllib``.
- The fixed table of environment overrides and their value types.
- Profile selection (argument, then ``FLEET_SECRETS_PROFILE``).
- Path normalization relative to the config file's directory.

Functional requirements
- Later layers win: CLI > env > file > defaults.
- The ``[keys]`` table is file-only; a file-level table replaces the built-in key set.
- ``FLEET_SECRETS_RECIPIENTS_DEFAULT`` takes a comma separated list.
- Every layer boundary is validated by the schema; env coercion failures raise
  ``ConfigLoadError`` naming the variable, never echoing its value.
"""

from __future__ import annotations

import json
import os
import tomllib
from collections.abc import Callable, Mapping
from pathlib import Path
from typing import Any, Final

from fleet_secrets.config.schema import (
    PATH_FIELDS,
    apply_profile_overlay,
    assert_valid_config,
    default_config,
    dump_redacted,
    merge_config,
)

DEFAULT_CONFIG_FILE: Final[str] = "fleet_secrets.toml"
ENV_PREFIX: Final[str] = "FLEET_SECRETS_"
PROFILE_ENV: Final[str] = f"{ENV_PREFIX}PROFILE"

_TRUTHY: Final[frozenset[str]] = frozenset({"1", "true", "yes", "on"})
_FALSY: Final[frozenset[str]] = frozenset({"0", "false", "no", "off"})


class ConfigLoadError(ValueError):
    """Raised when config cannot be loaded or overrides cannot be coerced."""


def _as_text(raw: str, env_name: str) -> str:
    return raw.strip()


def _as_int(raw: str, env_name: str) -> int:
    try:
        return int(raw.strip())
    except ValueError as exc:
        raise ConfigLoadError(f"{env_name} must be an integer") from exc


def _as_bool(raw: str, env_name: str) -> bool:
    lowered = raw.strip().lower()
    if lowered in _TRUTHY:
        return True
    if lowered in _FALSY:
        return False
    raise ConfigLoadError(f"{env_name} must be a boolean (true/false/1/0/yes/no/on/off)")


def _as_csv(raw: str, env_name: str) -> list[str]:
    return [item.strip() for item in raw.split(",") if item.strip()]


# Config field -> coercion for its FLEET_SECRETS_<SECTION>_<FIELD> variable.
ENV_OVERRIDES: Final[dict[tuple[str, str], Callable[[str, str], object]]] = {
    ("paths", "artifact_dir"): _as_text,
    ("paths", "artifact_pattern"): _as_text,
    ("paths", "key_dir"): _as_text,
    ("paths", "runtime_dir"): _as_text,
    ("key_material", "path_env"): _as_text,
    ("resolution", "placeholder_format"): _as_text,
    ("resolution", "on_corrupted"): _as_text,
    ("resolution", "fail_on_degraded"): _as_bool,
    ("recipients", "default"): _as_csv,
    ("fleet", "max_workers"): _as_int,
    ("observability", "log_level"): _as_text,
    ("observability", "log_format"): _as_text,
    ("observability", "log_dir"): _as_text,
    ("observability", "redact_secrets"): _as_bool,
}


def env_var_for(section: str, field: str) -> str:
    return f"{ENV_PREFIX}{section.upper()}_{field.upper()}"


def load_config(
    config_path: str | Path | None = None,
    *,
    profile: str | None = None,
    cli_overrides: Mapping[str, object] | None = None,
    environ: Mapping[str, str] | None = None,
) -> dict[str, Any]:
    """Return the validated effective config.

    ``config_path`` defaults to ``./fleet_secrets.toml``, which may be absent;
    an explicit path must exist. ``cli_overrides`` uses dotted keys
    (``{"fleet.max_workers": 2}``); ``None`` values are ignored.
    """

    env = os.environ if environ is None else environ
    source = _config_file_path(config_path)
    file_layer = _read_toml(source, required=config_path is not None)

    base = default_config()
    if isinstance(file_layer.get("keys"), Mapping):
        base["keys"] = {}
    config = assert_valid_config(merge_config(base, file_layer))

    selected = _selected_profile(profile, env)
    if selected is not None:
        config = apply_profile_overlay(config, selected)

    config = merge_config(config, _env_layer(env))
    config = merge_config(config, _cli_layer(cli_overrides or {}))
    config = assert_valid_config(config)

    return assert_valid_config(normalize_paths(config, base_dir=source.parent))


def load_config_file(path: str | Path) -> dict[str, Any]:
    """Load config from a specific TOML file path."""

    return load_config(path)


def normalize_paths(config: Mapping[str, object], *, base_dir: Path) -> dict[str, Any]:
    """Make every path field (top level and profile overlays) absolute against ``base_dir``."""

    normalized = merge_config({}, config)
    sections: list[dict[str, Any]] = [normalized]
    profiles = normalized.get("profiles")
    if isinstance(profiles, dict):
        sections.extend(overlay for overlay in profiles.values() if isinstance(overlay, dict))

    for root in sections:
        for section, field in PATH_FIELDS:
            table = root.get(section)
            if isinstance(table, dict) and isinstance(table.get(field), str):
                table[field] = _absolute_posix(table[field], base_dir)
    return normalized


def effective_config(config: Mapping[str, object]) -> dict[str, Any]:
    """Return a redacted effective config representation suitable for logging."""

    return dump_redacted(config)


def dump_effective_config(config: Mapping[str, object]) -> str:
    """Return deterministic JSON dump of redacted effective config."""

    return json.dumps(
        effective_config(config), sort_keys=True, separators=(",", ":"), ensure_ascii=False
    )


def _config_file_path(config_path: str | Path | None) -> Path:
    raw = Path.cwd() / DEFAULT_CONFIG_FILE if config_path is None else Path(config_path)
    return raw.expanduser().resolve()


def _read_toml(path: Path, *, required: bool) -> dict[str, Any]:
    if not path.exists():
        if required:
            raise ConfigLoadError(f"config file not found: {path}")
        return {}
    try:
        with path.open("rb") as handle:
            return tomllib.load(handle)
    except tomllib.TOMLDecodeError as exc:
        raise ConfigLoadError(f"invalid TOML in {path}: {exc}") from exc
    except OSError as exc:
        raise ConfigLoadError(f"unable to read config file {path}: {exc}") from exc


def _selected_profile(profile: str | None, environ: Mapping[str, str]) -> str | None:
    raw = profile if profile is not None else environ.get(PROFILE_ENV)
    if raw is None:
        return None
    return raw.strip() or None


def _env_layer(environ: Mapping[str, str]) -> dict[str, Any]:
    layer: dict[str, Any] = {}
    for (section, field), coerce in sorted(ENV_OVERRIDES.items()):
        env_name = env_var_for(section, field)
        raw = environ.get(env_name)
        if raw is None:
            continue
        layer.setdefault(section, {})[field] = coerce(raw, env_name)
    return layer


def _cli_layer(overrides: Mapping[str, object]) -> dict[str, Any]:
    layer: dict[str, Any] = {}
    for dotted in sorted(overrides):
        value = overrides[dotted]
        if value is None:
            continue
        parts = [part for part in dotted.split(".") if part]
        if len(parts) != 2:
            raise ConfigLoadError(f"invalid CLI override key {dotted!r}; expected 'section.field'")
        section, field = parts
        layer.setdefault(section, {})[field] = value
    return layer


def _absolute_posix(raw: str, base_dir: Path) -> str:
    candidate = Path(os.path.expandvars(raw)).expanduser()
    if not candidate.is_absolute():
        candidate = base_dir / candidate
    return Path(os.path.normpath(candidate)).as_posix()


__all__ = [
    "ConfigLoadError",
    "DEFAULT_CONFIG_FILE",
    "ENV_OVERRIDES",
    "ENV_PREFIX",
    "PROFILE_ENV",
    "dump_effective_config",
    "effective_config",
    "env_var_for",
    "load_config",
    "load_config_file",
    "normalize_paths",
]
