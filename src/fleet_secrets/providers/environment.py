"""Environment provider backed by the injected key -> variable table."""

from __future__ import annotations

import os
from collections.abc import Mapping

from fleet_secrets.domain.models import (
    ConfigKey,
    KeyCatalog,
    ProviderResult,
    ResolutionRequest,
    SourceKind,
)
from fleet_secrets.providers.base import ProviderAvailability


class EnvironmentProvider:
    """Load values from process environment variables named by the catalog."""

    def __init__(self, catalog: KeyCatalog, environ: Mapping[str, str] | None = None) -> None:
        self._catalog = catalog
        self._environ = dict(os.environ if environ is None else environ)

    @property
    def kind(self) -> SourceKind:
        return SourceKind.ENVIRONMENT

    def prepare(self, request: ResolutionRequest | None = None) -> ProviderAvailability:
        return ProviderAvailability.available()

    def try_resolve(self, key: ConfigKey, request: ResolutionRequest) -> ProviderResult:
        if key not in self._catalog:
            return ProviderResult.unresolved(key, "no environment mapping")
        env_name = self._catalog.env_var_for(key)
        value = self._environ.get(env_name)
        # Blank overrides must not shadow lower-precedence sources.
        if value is None or not value.strip():
            return ProviderResult.unresolved(key, f"{env_name} not set")
        return ProviderResult.resolved(key, value, self.kind)


__all__ = ["EnvironmentProvider"]
