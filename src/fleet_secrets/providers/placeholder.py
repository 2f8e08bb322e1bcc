"""Placeholder provider: always resolves to a greppable, bracketed token."""

from __future__ import annotations

import re
from typing import Final

from fleet_secrets.constants import DEFAULT_PLACEHOLDER_FORMAT
from fleet_secrets.domain.models import ConfigKey, ProviderResult, ResolutionRequest, SourceKind
from fleet_secrets.providers.base import ProviderAvailability

_KEY_FIELD: Final[str] = "{key}"


def validate_placeholder_format(template: str) -> str:
    if not isinstance(template, str) or template.count(_KEY_FIELD) != 1:
        raise ValueError("placeholder format must contain exactly one '{key}' field")
    prefix, suffix = template.split(_KEY_FIELD)
    if not prefix or not suffix:
        raise ValueError("placeholder format must wrap '{key}' with delimiters on both sides")
    if "{" in prefix.replace("{{", "") or "{" in suffix.replace("{{", ""):
        raise ValueError("placeholder format must not contain other format fields")
    return template


def placeholder_pattern(template: str = DEFAULT_PLACEHOLDER_FORMAT) -> re.Pattern[str]:
    """Regex matching tokens rendered from ``template``; group ``key`` holds the key name."""

    prefix, suffix = validate_placeholder_format(template).split(_KEY_FIELD)
    prefix = prefix.replace("{{", "{").replace("}}", "}")
    suffix = suffix.replace("{{", "{").replace("}}", "}")
    return re.compile(re.escape(prefix) + r"(?P<key>[a-z][a-z0-9_]*)" + re.escape(suffix))


class PlaceholderProvider:
    """Last-resort source. Never unresolved."""

    def __init__(self, template: str = DEFAULT_PLACEHOLDER_FORMAT) -> None:
        self._template = validate_placeholder_format(template)

    @property
    def kind(self) -> SourceKind:
        return SourceKind.PLACEHOLDER

    def token_for(self, key: ConfigKey) -> str:
        return self._template.format(key=key.name)

    def prepare(self, request: ResolutionRequest | None = None) -> ProviderAvailability:
        return ProviderAvailability.available()

    def try_resolve(self, key: ConfigKey, request: ResolutionRequest) -> ProviderResult:
        return ProviderResult.resolved(key, self.token_for(key), self.kind)


__all__ = ["PlaceholderProvider", "placeholder_pattern", "validate_placeholder_format"]
