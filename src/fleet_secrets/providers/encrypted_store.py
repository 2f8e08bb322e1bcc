"""Encrypted-store provider: one decrypt per run, a read-only cache, no key retained."""

from __future__ import annotations

from collections.abc import Mapping
from types import MappingProxyType
from typing import Any

import structlog

from fleet_secrets.crypto.envelope import DecryptError, DecryptFailure, EnvelopeCodec
from fleet_secrets.domain.models import (
    ConfigKey,
    EncryptedArtifact,
    KeyMaterialContext,
    ProviderResult,
    ResolutionRequest,
    SourceKind,
    TargetMismatch,
)
from fleet_secrets.providers.base import ProviderAvailability


class EncryptedStoreProvider:
    """Resolve keys from one target's decrypted artifact."""

    def __init__(
        self,
        artifact: EncryptedArtifact | None,
        key_material: KeyMaterialContext | None,
        *,
        codec: EnvelopeCodec | None = None,
        logger: Any | None = None,
    ) -> None:
        self._artifact = artifact
        self._key_material = key_material
        self._codec = codec if codec is not None else EnvelopeCodec()
        self._logger = logger if logger is not None else structlog.get_logger(__name__)
        self._values: Mapping[str, str] | None = None
        self._availability: ProviderAvailability | None = None
        self._failure: DecryptFailure | None = None
        self._scope: str | None = None

    @property
    def kind(self) -> SourceKind:
        return SourceKind.ENCRYPTED_STORE

    @property
    def failure(self) -> DecryptFailure | None:
        return self._failure

    @property
    def scope(self) -> str | None:
        """Target the opened artifact is tagged for, once prepared."""

        return self._scope

    @property
    def holds_key_material(self) -> bool:
        return self._key_material is not None

    def prepare(self, request: ResolutionRequest | None = None) -> ProviderAvailability:
        if self._availability is None:
            self._availability = self._open_once(request)
        elif request is not None:
            self._check_scope(request.target_id)
        return self._availability

    def try_resolve(self, key: ConfigKey, request: ResolutionRequest) -> ProviderResult:
        availability = self.prepare(request)
        if not availability.is_available or self._values is None:
            return ProviderResult.unresolved(key, availability.detail)
        value = self._values.get(key.name)
        if value is None or not value.strip():
            return ProviderResult.unresolved(key, "absent from encrypted store")
        return ProviderResult.resolved(key, value, self.kind)

    def _open_once(self, request: ResolutionRequest | None) -> ProviderAvailability:
        key_material = self._key_material
        self._key_material = None
        if key_material is None and request is not None:
            key_material = request.key_material
        if self._artifact is None:
            return ProviderAvailability.unavailable("no encrypted artifact")
        try:
            # Structural damage and the scope tag are readable without a key.
            self._scope = self._codec.inspect(self._artifact).scope
        except DecryptError as exc:
            self._record_failure(exc)
            return ProviderAvailability.corrupted(exc.message)
        if request is not None:
            self._check_scope(request.target_id)
        if key_material is None:
            return ProviderAvailability.unavailable("no key material")
        try:
            opened = self._codec.open(self._artifact, key_material)
        except DecryptError as exc:
            self._record_failure(exc)
            if exc.reason is DecryptFailure.MALFORMED:
                return ProviderAvailability.corrupted(exc.message)
            return ProviderAvailability.unavailable(exc.reason.value)
        finally:
            del key_material
        self._values = MappingProxyType(opened)
        self._logger.debug(
            "encrypted_store_opened",
            artifact=self._artifact.origin,
            key_count=len(opened),
        )
        return ProviderAvailability.available()

    def _check_scope(self, target_id: str) -> None:
        if self._scope is None or target_id == self._scope:
            return
        origin = None if self._artifact is None else self._artifact.origin
        self._logger.error(
            "encrypted_store_scope_mismatch",
            target_id=target_id,
            found_scope=self._scope,
            artifact=origin,
        )
        raise TargetMismatch(target_id, self._scope, origin)

    def _record_failure(self, exc: DecryptError) -> None:
        self._failure = exc.reason
        self._logger.info(
            "encrypted_store_open_failed",
            reason=exc.reason.value,
            artifact=None if self._artifact is None else self._artifact.origin,
        )


__all__ = ["EncryptedStoreProvider"]
