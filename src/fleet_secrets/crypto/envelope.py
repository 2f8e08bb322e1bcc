"""
fleet-secrets — envelope codec

File: src/fleet_secrets/crypto/envelope.py
Last updated: 2026-10-19

Purpose
- Open and seal per-target encrypted artifacts.

Envelope layout (canonical JSON)
- ``format`` / ``version`` / ``scope`` header; ``scope`` is the target identifier.
- ``recipients``: one stanza per recipient public key. Each stanza wraps the
  random file key with ChaCha20-Poly1305 under a key derived (HKDF-SHA256) from
  an ephemeral X25519 exchange with that recipient.
- ``payload``: the plaintext mapping as YAML, encrypted with the file key.
  The header is bound as associated data everywhere, so the scope tag cannot be
  edited without the artifact failing to open.

Functional requirements
- ``open`` returns the whole mapping or raises ``DecryptError``; no partial plaintext.
- Failure reasons separate a wrong/missing key, a damaged artifact, and I/O failure.
- ``seal`` encrypts for every supplied recipient; output is randomized per call.
- ``inspect`` reads the header without key material.
"""

from __future__ import annotations

import base64
import binascii
import json
import os
from collections.abc import Iterable, Mapping
from dataclasses import dataclass
from enum import StrEnum
from typing import Final

import yaml
from cryptography.exceptions import InvalidTag
from cryptography.hazmat.primitives import hashes
from cryptography.hazmat.primitives.asymmetric.x25519 import X25519PrivateKey, X25519PublicKey
from cryptography.hazmat.primitives.ciphers.aead import ChaCha20Poly1305
from cryptography.hazmat.primitives.kdf.hkdf import HKDF

from fleet_secrets.constants import ENVELOPE_FORMAT, ENVELOPE_VERSION
from fleet_secrets.crypto.keys import (
    KeyFormatError,
    fingerprint,
    load_private_key,
    raw_public_bytes,
)
from fleet_secrets.domain.models import EncryptedArtifact, KeyMaterialContext, validate_target_id

_FILE_KEY_BYTES: Final[int] = 32
_NONCE_BYTES: Final[int] = 12
_TAG_BYTES: Final[int] = 16
_RAW_KEY_BYTES: Final[int] = 32
_HKDF_INFO: Final[bytes] = b"fleet-secrets/v1/file-key"

_ROOT_FIELDS: Final[frozenset[str]] = frozenset(
    {"format", "version", "scope", "recipients", "payload"}
)
_STANZA_FIELDS: Final[frozenset[str]] = frozenset(
    {"recipient", "ephemeral", "nonce", "wrapped_key"}
)
_PAYLOAD_FIELDS: Final[frozenset[str]] = frozenset({"nonce", "ciphertext"})


class DecryptFailure(StrEnum):
    KEY_MISMATCH = "key_mismatch"
    MALFORMED = "malformed"
    UNREADABLE = "unreadable"


class DecryptError(Exception):
    """Raised when an artifact cannot be opened. Never carries plaintext."""

    def __init__(self, reason: DecryptFailure, message: str) -> None:
        self.reason = reason
        self.message = message
        super().__init__(f"{reason.value}: {message}")


@dataclass(frozen=True, slots=True)
class _Stanza:
    recipient: bytes
    ephemeral: bytes
    nonce: bytes
    wrapped_key: bytes


@dataclass(frozen=True, slots=True)
class EnvelopeHeader:
    """Public metadata of an envelope."""

    scope: str
    recipients: tuple[str, ...]
    version: int = ENVELOPE_VERSION

    @property
    def fingerprints(self) -> tuple[str, ...]:
        return tuple(
            fingerprint(X25519PublicKey.from_public_bytes(base64.b64decode(item)))
            for item in self.recipients
        )


@dataclass(frozen=True, slots=True)
class _Envelope:
    header: EnvelopeHeader
    stanzas: tuple[_Stanza, ...]
    payload_nonce: bytes
    ciphertext: bytes


class EnvelopeCodec:
    """Stateless codec over the X25519 / ChaCha20-Poly1305 envelope."""

    def inspect(self, artifact: EncryptedArtifact) -> EnvelopeHeader:
        return _parse_envelope(artifact).header

    def open(
        self, artifact: EncryptedArtifact, key_material: KeyMaterialContext
    ) -> dict[str, str]:
        envelope = _parse_envelope(artifact)
        private_key = _load_key_material(key_material)
        try:
            file_key = _unwrap_file_key(envelope, private_key)
        finally:
            del private_key
        try:
            plaintext = _decrypt_payload(envelope, file_key)
        finally:
            _wipe(file_key)
        return _decode_plaintext(plaintext)

    def seal(
        self,
        plaintext: Mapping[str, str],
        recipients: Iterable[X25519PublicKey],
        *,
        scope: str,
    ) -> EncryptedArtifact:
        validate_target_id(scope)
        unique = _unique_recipients(recipients)
        if not unique:
            raise ValueError("seal requires at least one recipient public key")
        body = _encode_plaintext(plaintext)
        aad = _header_aad(scope)

        file_key = bytearray(os.urandom(_FILE_KEY_BYTES))
        try:
            stanzas = [_wrap_file_key(bytes(file_key), recipient, aad) for recipient in unique]
            payload_nonce = os.urandom(_NONCE_BYTES)
            ciphertext = ChaCha20Poly1305(bytes(file_key)).encrypt(payload_nonce, body, aad)
        finally:
            _wipe(file_key)

        document = {
            "format": ENVELOPE_FORMAT,
            "version": ENVELOPE_VERSION,
            "scope": scope,
            "recipients": [
                {
                    "recipient": _b64(stanza.recipient),
                    "ephemeral": _b64(stanza.ephemeral),
                    "nonce": _b64(stanza.nonce),
                    "wrapped_key": _b64(stanza.wrapped_key),
                }
                for stanza in stanzas
            ],
            "payload": {"nonce": _b64(payload_nonce), "ciphertext": _b64(ciphertext)},
        }
        rendered = json.dumps(document, sort_keys=True, indent=2, ensure_ascii=True) + "\n"
        return EncryptedArtifact(data=rendered.encode("ascii"))


def _parse_envelope(artifact: EncryptedArtifact) -> _Envelope:
    try:
        document = json.loads(artifact.data.decode("utf-8"))
    except (UnicodeDecodeError, json.JSONDecodeError) as exc:
        raise _malformed(artifact, f"not a JSON envelope ({exc.__class__.__name__})") from exc

    root = _expect_fields(artifact, document, _ROOT_FIELDS, "envelope")
    if root["format"] != ENVELOPE_FORMAT:
        raise _malformed(artifact, f"unknown envelope format {root['format']!r}")
    if root["version"] != ENVELOPE_VERSION:
        raise _malformed(artifact, f"unsupported envelope version {root['version']!r}")
    scope = root["scope"]
    try:
        validate_target_id(scope)
    except ValueError as exc:
        raise _malformed(artifact, "envelope scope is not a valid target identifier") from exc

    raw_recipients = root["recipients"]
    if not isinstance(raw_recipients, list) or not raw_recipients:
        raise _malformed(artifact, "envelope has no recipients")
    stanzas: list[_Stanza] = []
    for index, item in enumerate(raw_recipients):
        fields = _expect_fields(artifact, item, _STANZA_FIELDS, f"recipients[{index}]")
        stanzas.append(
            _Stanza(
                recipient=_b64_field(artifact, fields, "recipient", _RAW_KEY_BYTES),
                ephemeral=_b64_field(artifact, fields, "ephemeral", _RAW_KEY_BYTES),
                nonce=_b64_field(artifact, fields, "nonce", _NONCE_BYTES),
                wrapped_key=_b64_field(
                    artifact, fields, "wrapped_key", _FILE_KEY_BYTES + _TAG_BYTES
                ),
            )
        )

    payload = _expect_fields(artifact, root["payload"], _PAYLOAD_FIELDS, "payload")
    payload_nonce = _b64_field(artifact, payload, "nonce", _NONCE_BYTES)
    ciphertext = _b64_field(artifact, payload, "ciphertext", None)
    if len(ciphertext) < _TAG_BYTES:
        raise _malformed(artifact, "payload ciphertext is truncated")

    header = EnvelopeHeader(
        scope=scope,
        recipients=tuple(_b64(stanza.recipient) for stanza in stanzas),
    )
    return _Envelope(
        header=header,
        stanzas=tuple(stanzas),
        payload_nonce=payload_nonce,
        ciphertext=ciphertext,
    )


def _load_key_material(key_material: KeyMaterialContext) -> X25519PrivateKey:
    try:
        return load_private_key(key_material.path)
    except OSError as exc:
        raise DecryptError(
            DecryptFailure.UNREADABLE,
            f"cannot read key material {key_material.path}: {exc.strerror or exc}",
        ) from exc
    except KeyFormatError as exc:
        raise DecryptError(DecryptFailure.KEY_MISMATCH, str(exc)) from exc


def _unwrap_file_key(envelope: _Envelope, private_key: X25519PrivateKey) -> bytearray:
    own_public = raw_public_bytes(private_key.public_key())
    candidates = [stanza for stanza in envelope.stanzas if stanza.recipient == own_public]
    if not candidates:
        raise DecryptError(
            DecryptFailure.KEY_MISMATCH,
            f"artifact for {envelope.header.scope!r} is not encrypted to "
            f"{fingerprint(private_key.public_key())}",
        )
    aad = _header_aad(envelope.header.scope)
    for stanza in candidates:
        try:
            shared = private_key.exchange(X25519PublicKey.from_public_bytes(stanza.ephemeral))
            wrap_key = _derive_wrap_key(
                shared, ephemeral=stanza.ephemeral, recipient=stanza.recipient
            )
            unwrapped = ChaCha20Poly1305(wrap_key).decrypt(stanza.nonce, stanza.wrapped_key, aad)
        except (InvalidTag, ValueError):
            continue
        return bytearray(unwrapped)
    raise DecryptError(
        DecryptFailure.MALFORMED,
        f"recipient stanza for {envelope.header.scope!r} failed authentication",
    )


def _decrypt_payload(envelope: _Envelope, file_key: bytearray) -> bytes:
    try:
        return ChaCha20Poly1305(bytes(file_key)).decrypt(
            envelope.payload_nonce,
            envelope.ciphertext,
            _header_aad(envelope.header.scope),
        )
    except InvalidTag as exc:
        raise DecryptError(
            DecryptFailure.MALFORMED,
            f"payload for {envelope.header.scope!r} failed authentication",
        ) from exc


def _wrap_file_key(file_key: bytes, recipient: X25519PublicKey, aad: bytes) -> _Stanza:
    ephemeral = X25519PrivateKey.generate()
    ephemeral_public = raw_public_bytes(ephemeral.public_key())
    recipient_raw = raw_public_bytes(recipient)
    wrap_key = _derive_wrap_key(
        ephemeral.exchange(recipient), ephemeral=ephemeral_public, recipient=recipient_raw
    )
    nonce = os.urandom(_NONCE_BYTES)
    return _Stanza(
        recipient=recipient_raw,
        ephemeral=ephemeral_public,
        nonce=nonce,
        wrapped_key=ChaCha20Poly1305(wrap_key).encrypt(nonce, file_key, aad),
    )


def _derive_wrap_key(shared_secret: bytes, *, ephemeral: bytes, recipient: bytes) -> bytes:
    return HKDF(
        algorithm=hashes.SHA256(),
        length=_FILE_KEY_BYTES,
        salt=ephemeral + recipient,
        info=_HKDF_INFO,
    ).derive(shared_secret)


def _unique_recipients(recipients: Iterable[X25519PublicKey]) -> list[X25519PublicKey]:
    by_raw: dict[bytes, X25519PublicKey] = {}
    for item in recipients:
        if not isinstance(item, X25519PublicKey):
            raise TypeError(f"recipient must be an X25519 public key, got {type(item).__name__}")
        by_raw.setdefault(raw_public_bytes(item), item)
    return [by_raw[raw] for raw in sorted(by_raw)]


def _encode_plaintext(plaintext: Mapping[str, str]) -> bytes:
    if not isinstance(plaintext, Mapping):
        raise TypeError("plaintext must be a mapping")
    for key, value in plaintext.items():
        if not isinstance(key, str) or not isinstance(value, str):
            raise TypeError("plaintext keys and values must be strings")
    rendered = yaml.safe_dump(dict(plaintext), sort_keys=True, allow_unicode=True)
    return rendered.encode("utf-8")


def _decode_plaintext(body: bytes) -> dict[str, str]:
    try:
        loaded = yaml.safe_load(body.decode("utf-8"))
    except (UnicodeDecodeError, yaml.YAMLError) as exc:
        raise DecryptError(DecryptFailure.MALFORMED, "decrypted payload is not YAML") from exc
    if loaded is None:
        return {}
    if not isinstance(loaded, dict):
        raise DecryptError(DecryptFailure.MALFORMED, "decrypted payload must be a mapping")
    decoded: dict[str, str] = {}
    for key in sorted(loaded, key=str):
        value = loaded[key]
        if not isinstance(key, str):
            raise DecryptError(DecryptFailure.MALFORMED, "decrypted payload keys must be strings")
        decoded[key] = _scalar_text(key, value)
    return decoded


def _scalar_text(key: str, value: object) -> str:
    if value is None:
        return ""
    if isinstance(value, bool):
        return "true" if value else "false"
    if isinstance(value, (str, int, float)):
        return str(value)
    raise DecryptError(
        DecryptFailure.MALFORMED, f"value for {key!r} must be a scalar, got {type(value).__name__}"
    )


def _header_aad(scope: str) -> bytes:
    header = {"format": ENVELOPE_FORMAT, "scope": scope, "version": ENVELOPE_VERSION}
    return json.dumps(header, sort_keys=True, separators=(",", ":")).encode("utf-8")


def _expect_fields(
    artifact: EncryptedArtifact,
    value: object,
    expected: frozenset[str],
    path: str,
) -> dict[str, object]:
    if not isinstance(value, dict):
        raise _malformed(artifact, f"{path} must be an object")
    missing = sorted(expected - set(value))
    unknown = sorted(set(value) - expected)
    if missing or unknown:
        raise _malformed(artifact, f"{path} fields mismatch (missing={missing}, unknown={unknown})")
    return value


def _b64_field(
    artifact: EncryptedArtifact,
    fields: Mapping[str, object],
    name: str,
    length: int | None,
) -> bytes:
    raw = fields[name]
    if not isinstance(raw, str):
        raise _malformed(artifact, f"{name} must be a base64 string")
    try:
        decoded = base64.b64decode(raw, validate=True)
    except (binascii.Error, ValueError) as exc:
        raise _malformed(artifact, f"{name} is not valid base64") from exc
    if length is not None and len(decoded) != length:
        raise _malformed(artifact, f"{name} must decode to {length} bytes")
    return decoded


def _malformed(artifact: EncryptedArtifact, message: str) -> DecryptError:
    origin = f" ({artifact.origin})" if artifact.origin else ""
    return DecryptError(DecryptFailure.MALFORMED, f"{message}{origin}")


def _b64(raw: bytes) -> str:
    return base64.b64encode(raw).decode("ascii")


def _wipe(buffer: bytearray) -> None:
    for index in range(len(buffer)):
        buffer[index] = 0


__all__ = [
    "DecryptError",
    "DecryptFailure",
    "EnvelopeCodec",
    "EnvelopeHeader",
]
