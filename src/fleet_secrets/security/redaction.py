"""
fleet-secrets — redaction utilities

File: src/fleet_secrets/security/redaction.py
Last updated: 2026-10-19

Purpose
- Keep resolved secret values and key material out of logs, CLI output, and
  config dumps.

What should be included in this file
- Key-name rules for secret-bearing fields (credential, token, private_key, ...).
- Text rules for PEM private key blocks and ``name=value`` credential assignments.
- Exact-value redaction for values resolved during the current run.

Functional requirements
- Deterministic and idempotent for stable inputs.
- Never raises on unexpected structure; unknown objects pass through unchanged.
"""

from __future__ import annotations

import dataclasses
import re
from collections.abc import Callable, Iterable, Mapping
from typing import Final, NamedTuple

REDACTED_VALUE: Final[str] = "***REDACTED***"

# Exact-value redaction ignores very short values: they collide with ordinary text.
_MIN_KNOWN_VALUE_LENGTH: Final[int] = 4

DEFAULT_SENSITIVE_KEY_DENYLIST: Final[frozenset[str]] = frozenset(
    """
    api_key api_token authorization credential credentials passphrase password
    private_key secret token turn_credential value values
    """.split()
)
_SENSITIVE_SUFFIXES: Final[tuple[str, ...]] = tuple(
    f"_{word}" for word in ("credential", "password", "private_key", "secret", "token")
)

_WORD_BOUNDARY = re.compile(r"(?<=[a-z0-9])(?=[A-Z])")
_SEPARATORS = re.compile(r"[^a-z0-9]+")


@dataclasses.dataclass(frozen=True, slots=True)
class SecretFinding:
    """Span of one secret-like match; ``rule`` names the pattern that hit."""

    rule: str
    start: int
    end: int


class _Rule(NamedTuple):
    name: str
    pattern: re.Pattern[str]
    # Group holding the secret itself; 0 masks the whole match.
    group: int = 0


_RULES: Final[tuple[_Rule, ...]] = (
    _Rule(
        "private_key_block",
        re.compile(
            r"-----BEGIN[ A-Z0-9]* PRIVATE KEY-----[\s\S]+?-----END[ A-Z0-9]* PRIVATE KEY-----"
        ),
    ),
    _Rule("authorization_bearer", re.compile(r"(?i)(\bbearer\s+)([A-Za-z0-9\-._~+/=]{8,})"), 2),
    _Rule(
        "explicit_secret_assignment",
        re.compile(
            r"(?i)(\b(?:password|passphrase|secret|credential|api[_-]?key|"
            r"api[_-]?token|turn[_-]?credential|token)\b\s*[:=]\s*[\"']?)"
            r"([A-Za-z0-9._~+/=-]{6,})"
        ),
        2,
    ),
)


@dataclasses.dataclass(frozen=True, slots=True)
class RedactionConfig:
    """Policy for one redaction pass.

    ``known_values`` are exact strings resolved during this run; they are masked
    wherever they appear, whatever the surrounding key or text.
    """

    replacement: str = REDACTED_VALUE
    key_denylist: frozenset[str] = DEFAULT_SENSITIVE_KEY_DENYLIST
    key_allowlist: frozenset[str] = frozenset()
    known_values: frozenset[str] = frozenset()

    def with_known_values(self, values: Iterable[str]) -> RedactionConfig:
        usable = {
            item
            for item in values
            if isinstance(item, str) and len(item) >= _MIN_KNOWN_VALUE_LENGTH
        }
        return dataclasses.replace(self, known_values=self.known_values | usable)


DEFAULT_REDACTION_CONFIG: Final[RedactionConfig] = RedactionConfig()


def is_sensitive_key(key: str, *, config: RedactionConfig | None = None) -> bool:
    policy = config or DEFAULT_REDACTION_CONFIG
    snake = _snake_case(key)
    if not snake or snake in policy.key_allowlist:
        return False
    return snake in policy.key_denylist or snake.endswith(_SENSITIVE_SUFFIXES)


def scan_for_secrets(text: str) -> tuple[SecretFinding, ...]:
    """Secret-like spans in ``text``, ordered by position."""

    _require_str(text)
    found = {
        SecretFinding(rule.name, *match.span(rule.group))
        for rule in _RULES
        for match in rule.pattern.finditer(text)
    }
    return tuple(sorted(found, key=lambda item: (item.start, item.end, item.rule)))


def redact_text(text: str, *, config: RedactionConfig | None = None) -> str:
    _require_str(text)
    policy = config or DEFAULT_REDACTION_CONFIG
    # Longest first so a value containing another value is replaced whole.
    for value in sorted(policy.known_values, key=lambda item: (-len(item), item)):
        text = text.replace(value, policy.replacement)
    for rule in _RULES:
        text = rule.pattern.sub(_masker(rule.group, policy.replacement), text)
    return text


def redact_structure(value: object, *, config: RedactionConfig | None = None) -> object:
    """Return a deep-redacted copy of nested mappings, lists and tuples."""

    return _Redactor(config or DEFAULT_REDACTION_CONFIG).visit(value)


def redact_value(value: object, *, config: RedactionConfig | None = None) -> object:
    """Logging redactor hook; same as ``redact_structure``."""

    return redact_structure(value, config=config)


class _Redactor:
    __slots__ = ("_active", "_policy")

    def __init__(self, policy: RedactionConfig) -> None:
        self._policy = policy
        # Containers on the current path; a repeat is a cycle.
        self._active: set[int] = set()

    def visit(self, value: object) -> object:
        if isinstance(value, str):
            return redact_text(value, config=self._policy)
        if not isinstance(value, (Mapping, list, tuple)):
            return value
        if id(value) in self._active:
            return self._policy.replacement
        self._active.add(id(value))
        try:
            if isinstance(value, Mapping):
                return {key: self._entry(key, value[key]) for key in sorted(value, key=str)}
            items = [self.visit(item) for item in value]
            return items if isinstance(value, list) else tuple(items)
        finally:
            self._active.discard(id(value))

    def _entry(self, key: object, item: object) -> object:
        if item and isinstance(key, str) and is_sensitive_key(key, config=self._policy):
            return self._policy.replacement
        return self.visit(item)


def _masker(group: int, replacement: str) -> Callable[[re.Match[str]], str]:
    def mask(match: re.Match[str]) -> str:
        whole = match.group(0)
        start = match.start(group) - match.start(0)
        end = match.end(group) - match.start(0)
        return whole[:start] + replacement + whole[end:]

    return mask


def _require_str(text: object) -> None:
    if not isinstance(text, str):
        raise TypeError(f"text must be a string, got {type(text).__name__}")


def _snake_case(key: str) -> str:
    return _SEPARATORS.sub("_", _WORD_BOUNDARY.sub("_", key.strip()).lower()).strip("_")


__all__ = [
    "DEFAULT_REDACTION_CONFIG",
    "DEFAULT_SENSITIVE_KEY_DENYLIST",
    "REDACTED_VALUE",
    "RedactionConfig",
    "SecretFinding",
    "is_sensitive_key",
    "redact_structure",
    "redact_text",
    "redact_value",
    "scan_for_secrets",
]
