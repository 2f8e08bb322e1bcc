"""X25519 key loading, encoding, and fingerprints."""

from __future__ import annotations

import base64
import binascii
from pathlib import Path
from typing import Final

from cryptography.exceptions import UnsupportedAlgorithm
from cryptography.hazmat.primitives import serialization
from cryptography.hazmat.primitives.asymmetric.x25519 import X25519PrivateKey, X25519PublicKey

from fleet_secrets.utils.fs import atomic_write
from fleet_secrets.utils.hashing import sha256_bytes

PublicKey = X25519PublicKey
PrivateKey = X25519PrivateKey

_RAW_KEY_BYTES: Final[int] = 32
_FINGERPRINT_HEX: Final[int] = 16
_PRIVATE_KEY_FILE_MODE: Final[int] = 0o600
_PEM_PUBLIC_MARKER: Final[str] = "-----BEGIN PUBLIC KEY-----"


class KeyFormatError(ValueError):
    """Raised when key text or a key file cannot be parsed as an X25519 key."""


def load_private_key(path: Path) -> X25519PrivateKey:
    """Load a PEM (PKCS8) X25519 private key.

    ``OSError`` from reading the file propagates unchanged so callers can tell an
    unreadable file from a file holding the wrong kind of key. The raw file
    buffer is overwritten before returning.
    """

    buffer = bytearray(Path(path).read_bytes())
    try:
        loaded = serialization.load_pem_private_key(bytes(buffer), password=None)
    except (ValueError, TypeError, UnsupportedAlgorithm) as exc:
        raise KeyFormatError(f"not a PEM private key: {path}") from exc
    finally:
        _wipe(buffer)
    if not isinstance(loaded, X25519PrivateKey):
        raise KeyFormatError(f"expected an X25519 private key: {path}")
    return loaded


def load_public_key(text: str) -> X25519PublicKey:
    """Parse a PEM public key or base64 of the 32 raw public-key bytes."""

    if not isinstance(text, str) or not text.strip():
        raise KeyFormatError("public key must be a non-empty string")
    stripped = text.strip()
    if _PEM_PUBLIC_MARKER in stripped:
        try:
            loaded = serialization.load_pem_public_key(stripped.encode("ascii"))
        except (ValueError, TypeError, UnsupportedAlgorithm) as exc:
            raise KeyFormatError("invalid PEM public key") from exc
        if not isinstance(loaded, X25519PublicKey):
            raise KeyFormatError("expected an X25519 public key")
        return loaded
    try:
        raw = base64.b64decode(stripped, validate=True)
    except (binascii.Error, ValueError) as exc:
        raise KeyFormatError("public key is neither PEM nor base64") from exc
    if len(raw) != _RAW_KEY_BYTES:
        raise KeyFormatError(f"raw public key must be {_RAW_KEY_BYTES} bytes, got {len(raw)}")
    return X25519PublicKey.from_public_bytes(raw)


def load_public_key_file(path: Path) -> X25519PublicKey:
    return load_public_key(Path(path).read_text(encoding="utf-8"))


def raw_public_bytes(key: X25519PublicKey) -> bytes:
    return key.public_bytes(
        encoding=serialization.Encoding.Raw,
        format=serialization.PublicFormat.Raw,
    )


def public_key_text(key: X25519PublicKey) -> str:
    """Canonical text form: base64 of the raw public bytes."""

    return base64.b64encode(raw_public_bytes(key)).decode("ascii")


def fingerprint(key: X25519PublicKey) -> str:
    """Short stable identifier for a recipient, safe to log."""

    return "x25519:" + sha256_bytes(raw_public_bytes(key))[:_FINGERPRINT_HEX]


def write_private_key(path: Path, *, overwrite: bool = False) -> X25519PublicKey:
    """Generate a key pair, write the private half as PKCS8 PEM (mode 0600).

    Returns the public half. An existing file is only replaced with ``overwrite``.
    """

    target = Path(path)
    if target.exists() and not overwrite:
        raise FileExistsError(f"refusing to overwrite existing key file: {target}")
    private_key = X25519PrivateKey.generate()
    pem = bytearray(
        private_key.private_bytes(
            encoding=serialization.Encoding.PEM,
            format=serialization.PrivateFormat.PKCS8,
            encryption_algorithm=serialization.NoEncryption(),
        )
    )
    try:
        atomic_write(target, bytes(pem), mode=_PRIVATE_KEY_FILE_MODE)
    finally:
        _wipe(pem)
    return private_key.public_key()


def _wipe(buffer: bytearray) -> None:
    for index in range(len(buffer)):
        buffer[index] = 0


__all__ = [
    "KeyFormatError",
    "PrivateKey",
    "PublicKey",
    "fingerprint",
    "load_private_key",
    "load_public_key",
    "load_public_key_file",
    "public_key_text",
    "raw_public_bytes",
    "write_private_key",
]
