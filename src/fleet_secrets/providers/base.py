"""
fleet-secrets — source provider contract

File: src/fleet_secrets/providers/base.py
Last updated: 2026-10-19

Purpose
- Define the single capability every value source implements.

Contract
- ``prepare(request)`` is called once per resolution run, before any key is
  resolved, and reports whether the provider can contribute to this run at all.
  A provider bound to one target raises ``TargetMismatch`` for any other.
- ``try_resolve(key, request)`` returns a ``ProviderResult`` that is either fully
  resolved or unresolved. Providers never raise to signal "not found".
"""

from __future__ import annotations

from dataclasses import dataclass
from enum import StrEnum
from typing import TYPE_CHECKING, Protocol

if TYPE_CHECKING:
    from fleet_secrets.domain.models import (
        ConfigKey,
        ProviderResult,
        ResolutionRequest,
        SourceKind,
    )


class ProviderState(StrEnum):
    AVAILABLE = "available"
    UNAVAILABLE = "unavailable"
    CORRUPTED = "corrupted"


@dataclass(frozen=True, slots=True)
class ProviderAvailability:
    state: ProviderState
    detail: str | None = None

    @classmethod
    def available(cls) -> ProviderAvailability:
        return cls(ProviderState.AVAILABLE)

    @classmethod
    def unavailable(cls, detail: str) -> ProviderAvailability:
        return cls(ProviderState.UNAVAILABLE, detail)

    @classmethod
    def corrupted(cls, detail: str) -> ProviderAvailability:
        return cls(ProviderState.CORRUPTED, detail)

    @property
    def is_available(self) -> bool:
        return self.state is ProviderState.AVAILABLE


class SourceProvider(Protocol):
    """Interface implemented by all value sources."""

    @property
    def kind(self) -> SourceKind: ...

    def prepare(self, request: ResolutionRequest | None = None) -> ProviderAvailability: ...

    def try_resolve(self, key: ConfigKey, request: ResolutionRequest) -> ProviderResult: ...


__all__ = ["ProviderAvailability", "ProviderState", "SourceProvider"]
