"""Caller contracts: build-time gate and runtime file-per-key output."""

from fleet_secrets.consumers.build import BuildVerdict, evaluate_build
from fleet_secrets.consumers.runtime import (
    RuntimeFiles,
    RuntimeMaterializationError,
    materialize_runtime_files,
)

__all__ = [
    "BuildVerdict",
    "RuntimeFiles",
    "RuntimeMaterializationError",
    "evaluate_build",
    "materialize_runtime_files",
]
