"""
fleet-secrets — filesystem utilities

File: src/fleet_secrets/utils/fs.py
Last updated: 2026-10-19

Purpose
- Atomic, permission-restricted writes for artifacts and runtime secret files.
- Guarded deletion confined to a root directory.

Functional requirements
- Atomic writes go through a temp file beside the destination and one ``os.replace``.
- The temp file carries the final mode before any byte is written.
- Deletion refuses paths outside the given root.
"""

from __future__ import annotations

import contextlib
import os
import tempfile
from pathlib import Path

PathLike = str | os.PathLike[str]

__all__ = [
    "atomic_write",
    "ensure_private_directory",
    "is_within",
    "safe_unlink",
]


def atomic_write(
    path: PathLike,
    data: bytes | str,
    *,
    mode: int | None = None,
    encoding: str = "utf-8",
) -> None:
    """Replace ``path`` with ``data`` so readers see either the old or the new file.

    ``mkstemp`` creates the temp file as 0600; ``mode`` is applied before writing,
    so secret bytes never sit in a file wider than the final permissions.
    """

    destination = Path(path)
    directory = destination.parent.resolve(strict=True)
    if not directory.is_dir():
        raise NotADirectoryError(f"{directory} is not a directory")

    payload = data.encode(encoding) if isinstance(data, str) else data
    fd, staging_name = tempfile.mkstemp(
        dir=directory, prefix=f".{destination.name}.", suffix=".tmp"
    )
    staging = Path(staging_name)
    try:
        with os.fdopen(fd, "wb") as staged:
            if mode is not None:
                os.fchmod(staged.fileno(), mode)
            staged.write(payload)
            staged.flush()
            os.fsync(staged.fileno())
        os.replace(staging, destination)
    except BaseException:
        staging.unlink(missing_ok=True)
        raise
    _sync_directory(directory)


def ensure_private_directory(path: PathLike, *, mode: int = 0o700) -> Path:
    """Create ``path`` with parents; an existing directory is narrowed to ``mode``."""

    directory = Path(path)
    directory.mkdir(parents=True, exist_ok=True, mode=mode)
    directory.chmod(mode)
    return directory


def is_within(child: PathLike, parent: PathLike) -> bool:
    """True when ``child`` resolves inside the existing directory ``parent``."""

    root = Path(parent).resolve()
    if not root.is_dir():
        return False
    return Path(child).resolve().is_relative_to(root)


def safe_unlink(path: PathLike, root: PathLike) -> bool:
    """Delete the file ``path`` inside ``root``; False when it was already gone."""

    target = Path(path)
    if not is_within(target.parent, root):
        raise ValueError(f"refusing to delete path outside root: {target}")
    if target.is_dir() and not target.is_symlink():
        raise IsADirectoryError(f"refusing to delete directory: {target}")
    try:
        target.unlink()
    except FileNotFoundError:
        return False
    return True


def _sync_directory(directory: Path) -> None:
    # Persists the rename; some filesystems refuse fsync on a directory.
    if os.name == "nt":
        return
    flags = os.O_RDONLY | getattr(os, "O_DIRECTORY", 0)
    with contextlib.suppress(OSError):
        dir_fd = os.open(directory, flags)
        try:
            os.fsync(dir_fd)
        finally:
            os.close(dir_fd)
