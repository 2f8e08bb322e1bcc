"""
fleet-secrets — runtime materialization

File: src/fleet_secrets/consumers/runtime.py
Last updated: 2026-10-19

Purpose
- Write resolved values to a file-per-key directory for service consumption.

Functional requirements
- File name is the kebab-cased key name (``turn_credential`` -> ``turn-credential``).
- Directory mode 0700, file mode 0600, each file written atomically.
- Corrupted reports are refused; nothing is written.
- Placeholder values are never written. A stale file for a key that now
  resolves to a placeholder is removed.
- File content is the exact value, without a trailing newline.
"""

from __future__ import annotations

from dataclasses import dataclass
from pathlib import Path
from typing import Any

import structlog

from fleet_secrets.constants import RUNTIME_DIR_MODE, RUNTIME_FILE_MODE
from fleet_secrets.domain.models import ResolutionReport, ResolutionStatus, SourceKind
from fleet_secrets.utils.fs import atomic_write, ensure_private_directory, safe_unlink


class RuntimeMaterializationError(RuntimeError):
    """Raised when a report must not be materialized."""


@dataclass(frozen=True, slots=True)
class RuntimeFiles:
    runtime_dir: Path
    written: tuple[Path, ...]
    removed: tuple[Path, ...] = ()
    skipped: tuple[str, ...] = ()


def materialize_runtime_files(
    report: ResolutionReport,
    runtime_dir: Path | str,
    *,
    logger: Any | None = None,
) -> RuntimeFiles:
    log = logger if logger is not None else structlog.get_logger(__name__)
    if report.status is ResolutionStatus.CORRUPTED:
        names = ", ".join(key.name for key in report.keys) or "(none)"
        raise RuntimeMaterializationError(
            f"refusing to materialize corrupted report for target {report.target_id!r} "
            f"(keys: {names})"
        )

    directory = ensure_private_directory(Path(runtime_dir), mode=RUNTIME_DIR_MODE)
    written: list[Path] = []
    removed: list[Path] = []
    skipped: list[str] = []
    for key, result in report.results.items():
        target = directory / key.file_name
        if result.value is None or result.source is SourceKind.PLACEHOLDER:
            skipped.append(key.name)
            if safe_unlink(target, directory):
                removed.append(target)
            continue
        atomic_write(target, result.value, mode=RUNTIME_FILE_MODE)
        written.append(target)

    log.info(
        "runtime_files_materialized",
        target_id=report.target_id,
        runtime_dir=str(directory),
        written=[path.name for path in written],
        removed=[path.name for path in removed],
        skipped=skipped,
    )
    return RuntimeFiles(
        runtime_dir=directory,
        written=tuple(written),
        removed=tuple(removed),
        skipped=tuple(skipped),
    )


__all__ = ["RuntimeFiles", "RuntimeMaterializationError", "materialize_runtime_files"]
