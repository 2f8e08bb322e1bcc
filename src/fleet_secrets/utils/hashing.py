"""Deterministic SHA-256 helper used for public key fingerprints."""

from __future__ import annotations

import hashlib

__all__ = ["sha256_bytes"]


def sha256_bytes(data: bytes) -> str:
    """Return the lowercase SHA-256 hex digest for raw bytes."""

    return hashlib.sha256(data).hexdigest()
