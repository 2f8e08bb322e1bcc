"""Security primitives: redaction of secret-bearing values."""

from fleet_secrets.security.redaction import (
    DEFAULT_REDACTION_CONFIG,
    REDACTED_VALUE,
    RedactionConfig,
    SecretFinding,
    is_sensitive_key,
    redact_structure,
    redact_text,
    redact_value,
    scan_for_secrets,
)

__all__ = [
    "DEFAULT_REDACTION_CONFIG",
    "REDACTED_VALUE",
    "RedactionConfig",
    "SecretFinding",
    "is_sensitive_key",
    "redact_structure",
    "redact_text",
    "redact_value",
    "scan_for_secrets",
]
