"""Stable constants shared across the resolution pipeline."""

from __future__ import annotations

from pathlib import PurePosixPath
from typing import Final

# Schema versions for persisted contracts.
CONFIG_SCHEMA_VERSION: Final[int] = 1
ENVELOPE_FORMAT: Final[str] = "fleet-secrets-envelope"
ENVELOPE_VERSION: Final[int] = 1
REPORT_SCHEMA_VERSION: Final[int] = 1

# File conventions (relative to the config file unless overridden).
DEFAULT_ARTIFACT_DIR: Final[PurePosixPath] = PurePosixPath("secrets")
DEFAULT_ARTIFACT_PATTERN: Final[str] = "{target}.secrets.json"
DEFAULT_KEY_FILE_PATTERN: Final[str] = "{target}.key"
DEFAULT_RUNTIME_DIR: Final[PurePosixPath] = PurePosixPath("run/fleet-secrets")
DEFAULT_LOG_DIR: Final[PurePosixPath] = PurePosixPath("logs")

# Key material is located through an env var naming a path, never the key itself.
DEFAULT_KEY_PATH_ENV: Final[str] = "FLEET_SECRETS_KEY_FILE"

DEFAULT_PLACEHOLDER_FORMAT: Final[str] = "[[{key}]]"

# Runtime file permissions.
RUNTIME_FILE_MODE: Final[int] = 0o600
RUNTIME_DIR_MODE: Final[int] = 0o700

# Default enumerated key set: ConfigKey name -> environment variable name.
DEFAULT_KEY_TABLE: Final[dict[str, str]] = {
    "identity": "ROBOT_IDENTITY",
    "endpoint": "ROBOT_ENDPOINT",
    "signaling_url": "ROBOT_SIGNALING_URL",
    "turn_username": "ROBOT_TURN_USERNAME",
    "turn_credential": "ROBOT_TURN_CREDENTIAL",
    "api_token": "ROBOT_API_TOKEN",
}

__all__ = [
    "CONFIG_SCHEMA_VERSION",
    "DEFAULT_ARTIFACT_DIR",
    "DEFAULT_ARTIFACT_PATTERN",
    "DEFAULT_KEY_FILE_PATTERN",
    "DEFAULT_KEY_PATH_ENV",
    "DEFAULT_KEY_TABLE",
    "DEFAULT_LOG_DIR",
    "DEFAULT_PLACEHOLDER_FORMAT",
    "DEFAULT_RUNTIME_DIR",
    "ENVELOPE_FORMAT",
    "ENVELOPE_VERSION",
    "REPORT_SCHEMA_VERSION",
    "RUNTIME_DIR_MODE",
    "RUNTIME_FILE_MODE",
]
