"""
fleet-secrets — resolution engine

File: src/fleet_secrets/resolution/engine.py
Last updated: 2026-10-19

Purpose
- Resolve every requested key against an ordered provider list and produce a
  total, immutable ``ResolutionReport`` with per-key provenance.

Algorithm
- Each provider is prepared exactly once per run. Unavailable providers are
  skipped for every key; they are not retried.
- For each key, providers are queried in precedence order and the first
  resolved result wins. Results never depend on the order of other keys.
- A corrupted encrypted store is recorded once for the run: the report status
  becomes ``corrupted`` and placeholder fallback is suppressed, so no key is
  silently papered over. Environment values still resolve.
- An engine serves one target. Requests for any other target raise
  ``TargetMismatch`` before a provider is prepared.
- A key left unresolved while placeholder fallback is active is a
  configuration bug and raises ``InvariantViolation``.
"""

from __future__ import annotations

from collections import Counter
from collections.abc import Mapping, Sequence
from typing import Any, Final, Literal

import structlog

from fleet_secrets.constants import DEFAULT_PLACEHOLDER_FORMAT
from fleet_secrets.crypto.envelope import EnvelopeCodec
from fleet_secrets.domain.models import (
    SOURCE_PRECEDENCE,
    ConfigKey,
    EncryptedArtifact,
    KeyCatalog,
    KeyMaterialContext,
    ProviderResult,
    ResolutionReport,
    ResolutionRequest,
    SourceKind,
    TargetMismatch,
    validate_target_id,
)
from fleet_secrets.providers.base import ProviderAvailability, ProviderState, SourceProvider
from fleet_secrets.providers.encrypted_store import EncryptedStoreProvider
from fleet_secrets.providers.environment import EnvironmentProvider
from fleet_secrets.providers.placeholder import PlaceholderProvider

CorruptionPolicy = Literal["report", "raise"]

_SUPPRESSED_DETAIL: Final[str] = "encrypted store corrupted; placeholder fallback suppressed"


class InvariantViolation(RuntimeError):
    """Raised when no provider resolved a key although placeholder fallback was active."""


class CorruptedArtifactError(RuntimeError):
    """Raised instead of a ``corrupted`` report when the policy is ``raise``."""

    def __init__(self, target_id: str, keys: Sequence[ConfigKey], detail: str | None) -> None:
        self.target_id = target_id
        self.keys = tuple(keys)
        self.detail = detail
        names = ", ".join(key.name for key in sorted(self.keys)) or "(none)"
        super().__init__(
            f"encrypted artifact for target {target_id!r} is corrupted "
            f"(affected keys: {names}): {detail or 'malformed'}"
        )


class ResolutionEngine:
    """Query providers in fixed precedence and aggregate provenance."""

    def __init__(
        self,
        providers: Sequence[SourceProvider],
        *,
        target_id: str | None = None,
        on_corrupted: CorruptionPolicy = "report",
        logger: Any | None = None,
    ) -> None:
        if on_corrupted not in ("report", "raise"):
            raise ValueError(f"unsupported corruption policy {on_corrupted!r}")
        _check_precedence(providers)
        self._providers = tuple(providers)
        self._target_id = None if target_id is None else validate_target_id(target_id)
        self._on_corrupted = on_corrupted
        self._logger = logger if logger is not None else structlog.get_logger(__name__)

    @classmethod
    def for_sources(
        cls,
        *,
        catalog: KeyCatalog,
        artifact: EncryptedArtifact | None,
        key_material: KeyMaterialContext | None,
        environ: Mapping[str, str] | None = None,
        placeholder_format: str = DEFAULT_PLACEHOLDER_FORMAT,
        codec: EnvelopeCodec | None = None,
        target_id: str | None = None,
        on_corrupted: CorruptionPolicy = "report",
        logger: Any | None = None,
    ) -> ResolutionEngine:
        """Build the standard store -> environment -> placeholder chain."""

        return cls(
            (
                EncryptedStoreProvider(artifact, key_material, codec=codec, logger=logger),
                EnvironmentProvider(catalog, environ),
                PlaceholderProvider(placeholder_format),
            ),
            target_id=target_id,
            on_corrupted=on_corrupted,
            logger=logger,
        )

    @property
    def target_id(self) -> str | None:
        return self._target_id

    @property
    def providers(self) -> tuple[SourceProvider, ...]:
        return self._providers

    def resolve(self, request: ResolutionRequest) -> ResolutionReport:
        """Resolve ``request``; an engine serves exactly one target for its lifetime.

        An unbound engine binds to the first request it sees. A request for any
        other target raises ``TargetMismatch`` before a provider is consulted.
        """

        self._bind(request.target_id)
        availability = [(provider, provider.prepare(request)) for provider in self._providers]
        corrupted = next(
            (state for _, state in availability if state.state is ProviderState.CORRUPTED),
            None,
        )
        store_failure = _store_failure(availability)

        if corrupted is not None and self._on_corrupted == "raise":
            self._logger.error(
                "resolution_corrupted_artifact",
                target_id=request.target_id,
                keys=[key.name for key in request.keys],
            )
            raise CorruptedArtifactError(request.target_id, request.keys, corrupted.detail)

        active = [provider for provider, state in availability if state.is_available]
        if corrupted is not None:
            active = [
                provider for provider in active if provider.kind is not SourceKind.PLACEHOLDER
            ]

        results: dict[ConfigKey, ProviderResult] = {}
        for key in request.keys:
            results[key] = self._resolve_key(
                key, request, active, fallback_suppressed=corrupted is not None
            )

        report = ResolutionReport.build(
            target_id=request.target_id,
            results=results,
            store_failure=store_failure,
            corrupted=corrupted is not None,
        )
        self._log_report(report)
        return report

    def _bind(self, target_id: str) -> None:
        if self._target_id is None:
            self._target_id = target_id
        elif target_id != self._target_id:
            self._logger.error(
                "resolution_target_mismatch",
                target_id=target_id,
                bound_target=self._target_id,
            )
            raise TargetMismatch(target_id, self._target_id)

    def _resolve_key(
        self,
        key: ConfigKey,
        request: ResolutionRequest,
        active: Sequence[SourceProvider],
        *,
        fallback_suppressed: bool,
    ) -> ProviderResult:
        for provider in active:
            result = provider.try_resolve(key, request)
            if result.is_resolved:
                return result
        if fallback_suppressed:
            return ProviderResult.unresolved(key, _SUPPRESSED_DETAIL)
        raise InvariantViolation(
            f"no provider resolved key {key.name!r} for target {request.target_id!r}; "
            "the provider chain must end with a placeholder source"
        )

    def _log_report(self, report: ResolutionReport) -> None:
        counts = Counter(
            "unresolved" if item.source is None else item.source.value
            for item in report.results.values()
        )
        self._logger.info(
            "resolution_completed",
            target_id=report.target_id,
            status=report.status.value,
            sources=dict(sorted(counts.items())),
            store_failure=report.store_failure,
        )
        for key in report.placeholder_keys:
            self._logger.warning(
                "resolution_placeholder_fallback",
                target_id=report.target_id,
                key=key.name,
            )


def _check_precedence(providers: Sequence[SourceProvider]) -> None:
    if not providers:
        raise ValueError("resolution engine requires at least one provider")
    ranks = [SOURCE_PRECEDENCE.index(provider.kind) for provider in providers]
    if ranks != sorted(set(ranks)):
        order = " -> ".join(kind.value for kind in SOURCE_PRECEDENCE)
        raise ValueError(f"providers must be unique and ordered by precedence ({order})")


def _store_failure(
    availability: Sequence[tuple[SourceProvider, ProviderAvailability]],
) -> str | None:
    for provider, state in availability:
        if provider.kind is SourceKind.ENCRYPTED_STORE and not state.is_available:
            return state.detail
    return None


__all__ = [
    "CorruptedArtifactError",
    "CorruptionPolicy",
    "InvariantViolation",
    "ResolutionEngine",
]
