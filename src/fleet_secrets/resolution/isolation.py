"""
fleet-secrets — target isolation layer

File: src/fleet_secrets/resolution/isolation.py
Last updated: 2026-10-19

Purpose
- Bind each resolution run to exactly one target: one artifact located by
  convention, at most one key-material reference, and a fresh engine.

Functional requirements
- Target identifiers are non-empty and path-safe.
- The artifact's scope tag must equal the requested target; a mismatch is a
  hard ``TargetMismatch`` error, never a fallback.
- No decrypted cache or key material is shared between scopes, even for the
  same target: each ``resolve`` builds new providers.
- Engines handed out by a scope are bound to its target and refuse requests
  for any other.
- ``resolve_fleet`` runs independent scopes on a thread pool; outcomes are
  returned in target order.

Conventions
- Artifact: ``<artifact_dir>/<artifact_pattern with {target}>``.
- Key material: explicit path > ``<key_dir>/<key_pattern>`` when that file
  exists > path named by the ``key_path_env`` environment variable.
"""

from __future__ import annotations

import os
import re
from concurrent.futures import ThreadPoolExecutor
from collections.abc import Iterable, Mapping
from dataclasses import dataclass
from pathlib import Path
from typing import Any

import structlog

from fleet_secrets.constants import (
    DEFAULT_ARTIFACT_PATTERN,
    DEFAULT_KEY_FILE_PATTERN,
    DEFAULT_KEY_PATH_ENV,
    DEFAULT_PLACEHOLDER_FORMAT,
)
from fleet_secrets.crypto.envelope import DecryptError, EnvelopeCodec
from fleet_secrets.domain.models import (
    EncryptedArtifact,
    InvalidTarget,
    KeyCatalog,
    KeyMaterialContext,
    ResolutionReport,
    ResolutionRequest,
    TargetError,
    TargetMismatch,
    validate_target_id,
)
from fleet_secrets.observability.logging import correlation_scope
from fleet_secrets.resolution.engine import (
    CorruptedArtifactError,
    CorruptionPolicy,
    InvariantViolation,
    ResolutionEngine,
)

_TARGET_FIELD = "{target}"


def _check_pattern(pattern: str, field: str) -> str:
    if pattern.count(_TARGET_FIELD) != 1:
        raise ValueError(f"{field} must contain exactly one '{_TARGET_FIELD}' field")
    if "/" in pattern or "\\" in pattern:
        raise ValueError(f"{field} must be a file name, not a path")
    return pattern


@dataclass(frozen=True, slots=True)
class ArtifactLocator:
    """Derive per-target artifact and key file paths from naming conventions."""

    artifact_dir: Path
    artifact_pattern: str = DEFAULT_ARTIFACT_PATTERN
    key_dir: Path | None = None
    key_pattern: str = DEFAULT_KEY_FILE_PATTERN

    def __post_init__(self) -> None:
        object.__setattr__(self, "artifact_dir", Path(self.artifact_dir))
        if self.key_dir is not None:
            object.__setattr__(self, "key_dir", Path(self.key_dir))
        _check_pattern(self.artifact_pattern, "artifact_pattern")
        _check_pattern(self.key_pattern, "key_pattern")

    def artifact_path(self, target_id: str) -> Path:
        return self.artifact_dir / self.artifact_pattern.replace(_TARGET_FIELD, target_id)

    def key_path(self, target_id: str) -> Path | None:
        if self.key_dir is None:
            return None
        return self.key_dir / self.key_pattern.replace(_TARGET_FIELD, target_id)

    def discover_targets(self) -> tuple[str, ...]:
        """Targets that have an artifact on disk, sorted."""

        if not self.artifact_dir.is_dir():
            return ()
        prefix, suffix = self.artifact_pattern.split(_TARGET_FIELD)
        matcher = re.compile(re.escape(prefix) + r"(?P<target>.+)" + re.escape(suffix) + r"\Z")
        found: set[str] = set()
        for entry in self.artifact_dir.iterdir():
            match = matcher.match(entry.name)
            if match is None or not entry.is_file():
                continue
            try:
                found.add(validate_target_id(match.group("target")))
            except ValueError:
                continue
        return tuple(sorted(found))


class TargetIsolationLayer:
    """Factory for per-target scopes sharing configuration but never state."""

    def __init__(
        self,
        *,
        locator: ArtifactLocator,
        catalog: KeyCatalog,
        environ: Mapping[str, str] | None = None,
        key_path_env: str = DEFAULT_KEY_PATH_ENV,
        placeholder_format: str = DEFAULT_PLACEHOLDER_FORMAT,
        on_corrupted: CorruptionPolicy = "report",
        codec: EnvelopeCodec | None = None,
        logger: Any | None = None,
    ) -> None:
        self._locator = locator
        self._catalog = catalog
        self._environ = dict(os.environ if environ is None else environ)
        self._key_path_env = key_path_env
        self._placeholder_format = placeholder_format
        self._on_corrupted: CorruptionPolicy = on_corrupted
        self._codec = codec if codec is not None else EnvelopeCodec()
        self._logger = logger if logger is not None else structlog.get_logger(__name__)

    @classmethod
    def from_config(
        cls,
        config: Mapping[str, Any],
        *,
        environ: Mapping[str, str] | None = None,
        on_corrupted: CorruptionPolicy | None = None,
        logger: Any | None = None,
    ) -> TargetIsolationLayer:
        """Build a layer from a validated effective config mapping."""

        paths = config["paths"]
        resolution = config["resolution"]
        key_dir = paths.get("key_dir")
        return cls(
            locator=ArtifactLocator(
                artifact_dir=Path(paths["artifact_dir"]),
                artifact_pattern=paths["artifact_pattern"],
                key_dir=Path(key_dir) if key_dir else None,
            ),
            catalog=KeyCatalog.from_table(config["keys"]),
            environ=environ,
            key_path_env=config["key_material"]["path_env"],
            placeholder_format=resolution["placeholder_format"],
            on_corrupted=on_corrupted or resolution["on_corrupted"],
            logger=logger,
        )

    @property
    def catalog(self) -> KeyCatalog:
        return self._catalog

    @property
    def locator(self) -> ArtifactLocator:
        return self._locator

    def key_material_for(
        self, target_id: str, explicit: KeyMaterialContext | None = None
    ) -> KeyMaterialContext | None:
        if explicit is not None:
            return explicit
        per_target = self._locator.key_path(target_id)
        if per_target is not None and per_target.is_file():
            return KeyMaterialContext(per_target)
        return KeyMaterialContext.from_environ(self._environ, self._key_path_env)

    def scope(
        self, target_id: object, *, key_material: KeyMaterialContext | None = None
    ) -> TargetScope:
        try:
            checked = validate_target_id(target_id)
        except ValueError as exc:
            raise InvalidTarget(str(exc)) from exc
        return TargetScope(
            target_id=checked,
            layer=self,
            key_material=self.key_material_for(checked, key_material),
        )

    def resolve(
        self,
        target_id: str,
        keys: Iterable[str] | None = None,
        *,
        key_material: KeyMaterialContext | None = None,
    ) -> ResolutionReport:
        return self.scope(target_id, key_material=key_material).resolve(keys)

    def _build_engine(self, scope: TargetScope) -> ResolutionEngine:
        artifact = self._load_artifact(scope)
        return ResolutionEngine.for_sources(
            catalog=self._catalog,
            artifact=artifact,
            key_material=scope.key_material,
            environ=self._environ,
            placeholder_format=self._placeholder_format,
            codec=self._codec,
            target_id=scope.target_id,
            on_corrupted=self._on_corrupted,
            logger=self._logger,
        )

    def _load_artifact(self, scope: TargetScope) -> EncryptedArtifact | None:
        path = scope.artifact_path
        if not path.exists():
            self._logger.info("target_artifact_missing", target_id=scope.target_id, path=str(path))
            return None
        try:
            artifact = EncryptedArtifact.read(path)
        except OSError as exc:
            self._logger.warning(
                "target_artifact_unreadable",
                target_id=scope.target_id,
                path=str(path),
                error=exc.strerror or exc.__class__.__name__,
            )
            return None
        try:
            header = self._codec.inspect(artifact)
        except DecryptError:
            # Damage is surfaced as a corrupted report by the engine.
            return artifact
        if header.scope != scope.target_id:
            self._logger.error(
                "target_scope_mismatch",
                target_id=scope.target_id,
                found_scope=header.scope,
                path=str(path),
            )
            raise TargetMismatch(scope.target_id, header.scope, path)
        return artifact


class TargetScope:
    """One target's view: request construction and fresh engines."""

    def __init__(
        self,
        *,
        target_id: str,
        layer: TargetIsolationLayer,
        key_material: KeyMaterialContext | None,
    ) -> None:
        self.target_id = target_id
        self.key_material = key_material
        self._layer = layer

    @property
    def artifact_path(self) -> Path:
        return self._layer.locator.artifact_path(self.target_id)

    def request(self, keys: Iterable[str] | None = None) -> ResolutionRequest:
        return ResolutionRequest(
            target_id=self.target_id,
            keys=self._layer.catalog.select(keys),
            key_material=self.key_material,
        )

    def engine(self) -> ResolutionEngine:
        """A new engine with its own decrypted cache, bound to this target only."""

        return self._layer._build_engine(self)

    def resolve(self, keys: Iterable[str] | None = None) -> ResolutionReport:
        request = self.request(keys)
        with correlation_scope(target_id=self.target_id):
            return self.engine().resolve(request)


@dataclass(frozen=True, slots=True)
class FleetOutcome:
    """One target's result in a fleet batch: a report or the hard error it raised."""

    target_id: str
    report: ResolutionReport | None = None
    error: Exception | None = None

    @property
    def ok(self) -> bool:
        return self.report is not None


_FLEET_ERRORS = (TargetError, CorruptedArtifactError, InvariantViolation)


def resolve_fleet(
    layer: TargetIsolationLayer,
    targets: Iterable[str],
    keys: Iterable[str] | None = None,
    *,
    max_workers: int = 4,
) -> tuple[FleetOutcome, ...]:
    """Resolve many targets concurrently, one isolated scope per target.

    Outcomes come back in input order. A hard error for one target is recorded
    on its outcome and does not stop the others.
    """

    if max_workers < 1:
        raise ValueError("max_workers must be >= 1")
    ordered = list(dict.fromkeys(targets))
    selected = None if keys is None else [key.name for key in layer.catalog.select(keys)]

    def run(target_id: str) -> FleetOutcome:
        try:
            return FleetOutcome(target_id, report=layer.resolve(target_id, selected))
        except _FLEET_ERRORS as exc:
            return FleetOutcome(target_id, error=exc)

    if not ordered:
        return ()
    with ThreadPoolExecutor(max_workers=min(max_workers, len(ordered))) as pool:
        return tuple(pool.map(run, ordered))


__all__ = [
    "ArtifactLocator",
    "FleetOutcome",
    "InvalidTarget",
    "TargetError",
    "TargetIsolationLayer",
    "TargetMismatch",
    "TargetScope",
    "resolve_fleet",
]
