"""
fleet-secrets — rotation coordinator

File: src/fleet_secrets/resolution/rotation.py
Last updated: 2026-10-19

Purpose
- Re-wrap an existing artifact for a new recipient set without the plaintext
  ever leaving process memory.

Functional requirements
- Open with the old key material, reseal for the replacement or union set, and
  keep the original scope tag. A caller-supplied expected scope is checked
  against the header before anything is decrypted.
- Verify by reopening the resealed artifact with every supplied sample private
  key that belongs to the new recipient set; the plaintext must match exactly.
- With no usable sample key, return the artifact with ``verified = False`` and a
  warning instead of blocking: keys are often rotated before distribution.
- Persisting the result is the caller's job; nothing is written here.
"""

from __future__ import annotations

from collections.abc import Iterable, Sequence
from dataclasses import dataclass
from enum import StrEnum
from pathlib import Path
from typing import Any, Literal

import structlog

from fleet_secrets.crypto.envelope import DecryptError, EnvelopeCodec, EnvelopeHeader
from fleet_secrets.crypto.keys import (
    KeyFormatError,
    PublicKey,
    fingerprint,
    load_private_key,
    load_public_key,
    raw_public_bytes,
)
from fleet_secrets.domain.models import EncryptedArtifact, KeyMaterialContext, TargetMismatch

RotationMode = Literal["replace", "union"]

_UNVERIFIED_WARNING = (
    "no sample private key for the new recipient set was supplied; "
    "the resealed artifact was not verified"
)


class RotationFailure(StrEnum):
    CANNOT_DECRYPT_ORIGINAL = "cannot_decrypt_original"
    NO_RECIPIENTS = "no_recipients"
    VERIFICATION_FAILED = "verification_failed"


class RotationError(Exception):
    """Raised when rotation cannot produce a trustworthy artifact."""

    def __init__(self, reason: RotationFailure, message: str) -> None:
        self.reason = reason
        self.message = message
        super().__init__(f"{reason.value}: {message}")


@dataclass(frozen=True, slots=True)
class RotationOutcome:
    artifact: EncryptedArtifact
    scope: str
    recipients: tuple[str, ...]
    verified_with: tuple[str, ...] = ()
    warning: str | None = None

    @property
    def verified(self) -> bool:
        return bool(self.verified_with)


class RotationCoordinator:
    """Open, reseal, and verify envelopes for a changed recipient set."""

    def __init__(self, *, codec: EnvelopeCodec | None = None, logger: Any | None = None) -> None:
        self._codec = codec if codec is not None else EnvelopeCodec()
        self._logger = logger if logger is not None else structlog.get_logger(__name__)

    def rotate(
        self,
        artifact: EncryptedArtifact,
        old_key_material: KeyMaterialContext,
        new_recipients: Iterable[PublicKey],
        *,
        mode: RotationMode = "replace",
        verify_with: Sequence[KeyMaterialContext] = (),
        expected_scope: str | None = None,
    ) -> RotationOutcome:
        """Reseal ``artifact`` for a new recipient set.

        With ``expected_scope`` the header scope is checked before any decryption;
        an artifact tagged for another target raises ``TargetMismatch``.
        """

        if mode not in ("replace", "union"):
            raise ValueError(f"unsupported rotation mode {mode!r}")
        header = self._inspect(artifact)
        if expected_scope is not None and header.scope != expected_scope:
            self._logger.error(
                "rotation_scope_mismatch", target_id=expected_scope, found_scope=header.scope
            )
            raise TargetMismatch(expected_scope, header.scope, artifact.origin)
        recipients = _recipient_set(new_recipients, header if mode == "union" else None)
        if not recipients:
            raise RotationError(
                RotationFailure.NO_RECIPIENTS,
                f"rotation of {header.scope!r} needs at least one recipient public key",
            )

        try:
            plaintext = self._codec.open(artifact, old_key_material)
        except DecryptError as exc:
            self._logger.warning(
                "rotation_open_failed", target_id=header.scope, reason=exc.reason.value
            )
            raise RotationError(
                RotationFailure.CANNOT_DECRYPT_ORIGINAL,
                f"cannot open artifact for {header.scope!r} with the old key ({exc.reason.value})",
            ) from exc

        try:
            resealed = self._codec.seal(plaintext, recipients, scope=header.scope)
            verified_with = self._verify(resealed, plaintext, recipients, verify_with, header.scope)
        finally:
            plaintext.clear()

        outcome = RotationOutcome(
            artifact=resealed,
            scope=header.scope,
            recipients=tuple(fingerprint(key) for key in recipients),
            verified_with=verified_with,
            warning=None if verified_with else _UNVERIFIED_WARNING,
        )
        self._logger.info(
            "rotation_completed",
            target_id=header.scope,
            mode=mode,
            recipients=list(outcome.recipients),
            previous_recipients=list(header.fingerprints),
            verified=outcome.verified,
        )
        if outcome.warning is not None:
            self._logger.warning("rotation_unverified", target_id=header.scope)
        return outcome

    def _inspect(self, artifact: EncryptedArtifact) -> EnvelopeHeader:
        try:
            return self._codec.inspect(artifact)
        except DecryptError as exc:
            raise RotationError(
                RotationFailure.CANNOT_DECRYPT_ORIGINAL,
                f"original artifact is unreadable ({exc.reason.value}): {exc.message}",
            ) from exc

    def _verify(
        self,
        resealed: EncryptedArtifact,
        plaintext: dict[str, str],
        recipients: Sequence[PublicKey],
        samples: Sequence[KeyMaterialContext],
        scope: str,
    ) -> tuple[str, ...]:
        wanted = {raw_public_bytes(key) for key in recipients}
        verified: list[str] = []
        for sample in samples:
            public = _sample_public_key(sample)
            if raw_public_bytes(public) not in wanted:
                self._logger.warning(
                    "rotation_sample_not_recipient",
                    target_id=scope,
                    fingerprint=fingerprint(public),
                )
                continue
            try:
                reopened = self._codec.open(resealed, sample)
            except DecryptError as exc:
                raise RotationError(
                    RotationFailure.VERIFICATION_FAILED,
                    f"resealed artifact for {scope!r} does not open with "
                    f"{fingerprint(public)} ({exc.reason.value})",
                ) from exc
            matches = reopened == plaintext
            reopened.clear()
            if not matches:
                raise RotationError(
                    RotationFailure.VERIFICATION_FAILED,
                    f"resealed artifact for {scope!r} decrypts to different content",
                )
            verified.append(fingerprint(public))
        return tuple(verified)


def _recipient_set(
    new_recipients: Iterable[PublicKey], existing: EnvelopeHeader | None
) -> list[PublicKey]:
    by_raw: dict[bytes, PublicKey] = {}
    if existing is not None:
        for text in existing.recipients:
            key = load_public_key(text)
            by_raw.setdefault(raw_public_bytes(key), key)
    for key in new_recipients:
        by_raw.setdefault(raw_public_bytes(key), key)
    return [by_raw[raw] for raw in sorted(by_raw)]


def _sample_public_key(sample: KeyMaterialContext) -> PublicKey:
    try:
        return load_private_key(Path(sample.path)).public_key()
    except (OSError, KeyFormatError) as exc:
        raise RotationError(
            RotationFailure.VERIFICATION_FAILED,
            f"cannot load verification key {sample.path}: {exc}",
        ) from exc


__all__ = [
    "RotationCoordinator",
    "RotationError",
    "RotationFailure",
    "RotationMode",
    "RotationOutcome",
]
