"""
fleet-secrets — domain types

File: src/fleet_secrets/domain/__init__.py
Last updated: 2026-10-19

Purpose
- Domain types shared across layers: ConfigKey, KeyCatalog, ResolutionRequest,
  ProviderResult, ResolutionReport, KeyMaterialContext, EncryptedArtifact.

Functional requirements
- Domain objects are immutable and free of IO side effects (except explicit ``read``).
- Reports never render secret values unless explicitly asked to.
"""

from fleet_secrets.domain.models import (
    SOURCE_PRECEDENCE,
    ConfigKey,
    EncryptedArtifact,
    InvalidTarget,
    KeyCatalog,
    KeyMaterialContext,
    ProviderResult,
    ResolutionReport,
    ResolutionRequest,
    ResolutionStatus,
    SourceKind,
    TargetError,
    TargetMismatch,
    validate_target_id,
)

__all__ = [
    "SOURCE_PRECEDENCE",
    "ConfigKey",
    "EncryptedArtifact",
    "InvalidTarget",
    "KeyCatalog",
    "KeyMaterialContext",
    "ProviderResult",
    "ResolutionReport",
    "ResolutionRequest",
    "ResolutionStatus",
    "SourceKind",
    "TargetError",
    "TargetMismatch",
    "validate_target_id",
]
