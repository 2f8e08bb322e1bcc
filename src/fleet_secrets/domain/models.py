"""Dataclass domain models with strict validation and canonical serialization."""

from __future__ import annotations

import json
import re
from collections.abc import Iterable, Mapping
from dataclasses import dataclass, field
from enum import StrEnum
from pathlib import Path
from types import MappingProxyType
from typing import Final, NoReturn

from fleet_secrets.constants import REPORT_SCHEMA_VERSION

JSONScalar = str | int | float | bool | None
JSONValue = JSONScalar | list["JSONValue"] | dict[str, "JSONValue"]

_KEY_NAME_RE: Final[re.Pattern[str]] = re.compile(r"^[a-z][a-z0-9_]*$")
_ENV_NAME_RE: Final[re.Pattern[str]] = re.compile(r"^[A-Z_][A-Z0-9_]*$")
_TARGET_ID_RE: Final[re.Pattern[str]] = re.compile(r"^[A-Za-z0-9][A-Za-z0-9._-]*$")
_MAX_TARGET_ID = 128


class SourceKind(StrEnum):
    ENCRYPTED_STORE = "encrypted_store"
    ENVIRONMENT = "environment"
    PLACEHOLDER = "placeholder"


# Fixed provider precedence, highest first.
SOURCE_PRECEDENCE: Final[tuple[SourceKind, ...]] = (
    SourceKind.ENCRYPTED_STORE,
    SourceKind.ENVIRONMENT,
    SourceKind.PLACEHOLDER,
)


class ResolutionStatus(StrEnum):
    COMPLETE = "complete"
    DEGRADED = "degraded"
    CORRUPTED = "corrupted"


def _fail(path: str, message: str) -> NoReturn:
    raise ValueError(f"{path}: {message}")


def _canonical_json(value: JSONValue) -> str:
    return json.dumps(value, sort_keys=True, separators=(",", ":"), ensure_ascii=False)


def validate_target_id(value: object) -> str:
    """Return ``value`` if it is a usable target identifier, else raise ``ValueError``."""

    if not isinstance(value, str):
        _fail("target_id", f"expected string, got {type(value).__name__}")
    if not value:
        _fail("target_id", "must not be empty")
    if len(value) > _MAX_TARGET_ID:
        _fail("target_id", f"must be <= {_MAX_TARGET_ID} characters")
    if not _TARGET_ID_RE.fullmatch(value):
        _fail("target_id", f"invalid target identifier {value!r}")
    return value


class TargetError(ValueError):
    """Base class for target scoping failures."""


class InvalidTarget(TargetError):
    """Raised when a target identifier is empty or not path-safe."""


class TargetMismatch(TargetError):
    """Raised when an artifact or engine is bound to a different target."""

    def __init__(
        self, target_id: str, found_scope: str, artifact_path: Path | str | None = None
    ) -> None:
        self.target_id = target_id
        self.found_scope = found_scope
        self.artifact_path = artifact_path
        bound = "resolution scope" if artifact_path is None else f"artifact {artifact_path}"
        super().__init__(
            f"{bound} is scoped to {found_scope!r}, "
            f"refusing to resolve target {target_id!r} against it"
        )


@dataclass(frozen=True, slots=True, order=True)
class ConfigKey:
    """One named configuration item (identity, endpoint, credential, ...)."""

    name: str

    def __post_init__(self) -> None:
        if not isinstance(self.name, str) or not _KEY_NAME_RE.fullmatch(self.name):
            _fail("ConfigKey.name", f"must be lower snake case, got {self.name!r}")

    @property
    def file_name(self) -> str:
        """Kebab-cased runtime file name."""

        return self.name.replace("_", "-")

    def __str__(self) -> str:
        return self.name


@dataclass(frozen=True, slots=True)
class KeyCatalog:
    """The enumerated key set plus its one-to-one environment variable table."""

    env_names: Mapping[str, str]

    def __post_init__(self) -> None:
        table: dict[str, str] = {}
        seen_env: dict[str, str] = {}
        for name in sorted(self.env_names):
            env_name = self.env_names[name]
            ConfigKey(name)
            if not isinstance(env_name, str) or not _ENV_NAME_RE.fullmatch(env_name):
                _fail(f"keys.{name}", f"invalid environment variable name {env_name!r}")
            if env_name in seen_env:
                _fail(
                    f"keys.{name}",
                    f"environment variable {env_name} already mapped to {seen_env[env_name]!r}",
                )
            seen_env[env_name] = name
            table[name] = env_name
        object.__setattr__(self, "env_names", MappingProxyType(table))

    @classmethod
    def from_table(cls, table: Mapping[str, str]) -> KeyCatalog:
        return cls(env_names=dict(table))

    @property
    def keys(self) -> tuple[ConfigKey, ...]:
        return tuple(ConfigKey(name) for name in self.env_names)

    def key(self, name: str) -> ConfigKey:
        if name not in self.env_names:
            known = ", ".join(self.env_names)
            raise ValueError(f"unknown config key {name!r}; expected one of: {known}")
        return ConfigKey(name)

    def select(self, names: Iterable[str] | None = None) -> tuple[ConfigKey, ...]:
        """Return catalog keys for ``names`` (all keys when ``None``)."""

        if names is None:
            return self.keys
        return tuple(self.key(name) for name in names)

    def env_var_for(self, key: ConfigKey) -> str:
        try:
            return self.env_names[key.name]
        except KeyError:
            raise ValueError(f"config key {key.name!r} is not in the catalog") from None

    def __contains__(self, key: object) -> bool:
        return isinstance(key, ConfigKey) and key.name in self.env_names

    def __len__(self) -> int:
        return len(self.env_names)


@dataclass(frozen=True, slots=True)
class KeyMaterialContext:
    """Reference to a private key file. Holds the path only, never key bytes."""

    path: Path

    def __post_init__(self) -> None:
        object.__setattr__(self, "path", Path(self.path).expanduser())

    @classmethod
    def from_environ(
        cls, environ: Mapping[str, str], env_var: str
    ) -> KeyMaterialContext | None:
        raw = environ.get(env_var, "").strip()
        if not raw:
            return None
        return cls(Path(raw))


@dataclass(frozen=True, slots=True)
class EncryptedArtifact:
    """Opaque envelope bytes plus where they were read from."""

    data: bytes = field(repr=False)
    origin: str | None = None

    @classmethod
    def read(cls, path: Path) -> EncryptedArtifact:
        return cls(data=Path(path).read_bytes(), origin=str(path))

    def __len__(self) -> int:
        return len(self.data)


@dataclass(frozen=True, slots=True)
class ResolutionRequest:
    """Immutable input for one resolution run."""

    target_id: str
    keys: tuple[ConfigKey, ...]
    key_material: KeyMaterialContext | None = None

    def __post_init__(self) -> None:
        validate_target_id(self.target_id)
        keys = tuple(self.keys)
        for item in keys:
            if not isinstance(item, ConfigKey):
                _fail("keys", f"expected ConfigKey, got {type(item).__name__}")
        duplicates = sorted({item.name for item in keys if keys.count(item) > 1})
        if duplicates:
            _fail("keys", f"duplicate keys in request: {duplicates}")
        object.__setattr__(self, "keys", keys)


@dataclass(frozen=True, slots=True)
class ProviderResult:
    """Outcome of one provider for one key: fully resolved or unresolved."""

    key: ConfigKey
    source: SourceKind | None
    value: str | None = field(default=None, repr=False)
    detail: str | None = None

    def __post_init__(self) -> None:
        if (self.source is None) != (self.value is None):
            _fail("ProviderResult", "value and source must be set together")

    @classmethod
    def resolved(cls, key: ConfigKey, value: str, source: SourceKind) -> ProviderResult:
        return cls(key=key, source=source, value=value)

    @classmethod
    def unresolved(cls, key: ConfigKey, detail: str | None = None) -> ProviderResult:
        return cls(key=key, source=None, value=None, detail=detail)

    @property
    def is_resolved(self) -> bool:
        return self.source is not None

    def to_dict(self, *, include_value: bool = False) -> dict[str, JSONValue]:
        payload: dict[str, JSONValue] = {
            "resolved": self.is_resolved,
            "source": None if self.source is None else self.source.value,
        }
        if self.detail is not None:
            payload["detail"] = self.detail
        if include_value and self.value is not None:
            payload["value"] = self.value
        return payload


@dataclass(frozen=True, slots=True)
class ResolutionReport:
    """Total mapping of requested keys to results, plus the derived status."""

    target_id: str
    results: Mapping[ConfigKey, ProviderResult]
    status: ResolutionStatus
    store_failure: str | None = None

    @classmethod
    def build(
        cls,
        *,
        target_id: str,
        results: Mapping[ConfigKey, ProviderResult],
        store_failure: str | None = None,
        corrupted: bool = False,
    ) -> ResolutionReport:
        ordered = {key: results[key] for key in sorted(results)}
        if corrupted:
            status = ResolutionStatus.CORRUPTED
        elif any(
            not item.is_resolved or item.source is SourceKind.PLACEHOLDER
            for item in ordered.values()
        ):
            status = ResolutionStatus.DEGRADED
        else:
            status = ResolutionStatus.COMPLETE
        return cls(
            target_id=target_id,
            results=MappingProxyType(ordered),
            status=status,
            store_failure=store_failure,
        )

    @property
    def keys(self) -> tuple[ConfigKey, ...]:
        return tuple(self.results)

    @property
    def unresolved_keys(self) -> tuple[ConfigKey, ...]:
        return tuple(key for key, item in self.results.items() if not item.is_resolved)

    @property
    def placeholder_keys(self) -> tuple[ConfigKey, ...]:
        return self.keys_from(SourceKind.PLACEHOLDER)

    def keys_from(self, source: SourceKind) -> tuple[ConfigKey, ...]:
        return tuple(key for key, item in self.results.items() if item.source is source)

    def provenance(self) -> dict[str, str | None]:
        return {
            key.name: None if item.source is None else item.source.value
            for key, item in self.results.items()
        }

    def values(self) -> dict[str, str]:
        """Resolved values by key name. Callers own the returned plaintext."""

        return {
            key.name: item.value for key, item in self.results.items() if item.value is not None
        }

    def __getitem__(self, key: ConfigKey) -> ProviderResult:
        return self.results[key]

    def to_dict(self, *, include_values: bool = False) -> dict[str, JSONValue]:
        return {
            "schema_version": REPORT_SCHEMA_VERSION,
            "target_id": self.target_id,
            "status": self.status.value,
            "store_failure": self.store_failure,
            "keys": {
                key.name: item.to_dict(include_value=include_values)
                for key, item in self.results.items()
            },
            "unresolved": [key.name for key in self.unresolved_keys],
            "placeholders": [key.name for key in self.placeholder_keys],
        }

    def to_json(self, *, include_values: bool = False) -> str:
        return _canonical_json(self.to_dict(include_values=include_values))


__all__ = [
    "ConfigKey",
    "EncryptedArtifact",
    "InvalidTarget",
    "JSONScalar",
    "JSONValue",
    "KeyCatalog",
    "KeyMaterialContext",
    "ProviderResult",
    "ResolutionReport",
    "ResolutionRequest",
    "ResolutionStatus",
    "SOURCE_PRECEDENCE",
    "SourceKind",
    "TargetError",
    "TargetMismatch",
    "validate_target_id",
]
