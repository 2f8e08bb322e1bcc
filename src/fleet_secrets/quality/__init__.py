"""Release-gate checks over rendered output artifacts."""

from fleet_secrets.quality.placeholder_audit import (
    AuditResult,
    PlaceholderFinding,
    format_json,
    format_text,
    scan_for_placeholders,
)

__all__ = [
    "AuditResult",
    "PlaceholderFinding",
    "format_json",
    "format_text",
    "scan_for_placeholders",
]
