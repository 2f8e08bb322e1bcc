"""Resolution engine, per-target isolation, fleet batches, and key rotation."""

from fleet_secrets.resolution.engine import (
    CorruptedArtifactError,
    CorruptionPolicy,
    InvariantViolation,
    ResolutionEngine,
)
from fleet_secrets.resolution.isolation import (
    ArtifactLocator,
    FleetOutcome,
    InvalidTarget,
    TargetError,
    TargetIsolationLayer,
    TargetMismatch,
    TargetScope,
    resolve_fleet,
)
from fleet_secrets.resolution.rotation import (
    RotationCoordinator,
    RotationError,
    RotationFailure,
    RotationMode,
    RotationOutcome,
)

__all__ = [
    "ArtifactLocator",
    "CorruptedArtifactError",
    "CorruptionPolicy",
    "FleetOutcome",
    "InvalidTarget",
    "InvariantViolation",
    "ResolutionEngine",
    "RotationCoordinator",
    "RotationError",
    "RotationFailure",
    "RotationMode",
    "RotationOutcome",
    "TargetError",
    "TargetIsolationLayer",
    "TargetMismatch",
    "TargetScope",
    "resolve_fleet",
]
