"""
fleet-secrets — placeholder token audit

File: src/fleet_secrets/quality/placeholder_audit.py
Last updated: 2026-10-19

Purpose
- Find placeholder tokens (``[[endpoint]]`` by default) that leaked into
  rendered output artifacts such as launch files or service configs, so a
  degraded build is caught before an image ships.

What should be included in this file
- Deterministic file collection and finding ordering.
- Text/JSON formatters.
- CLI entrypoint with deterministic exit codes.

Functional requirements
- Exit code ``0`` when no placeholder token is found.
- Exit code ``1`` when at least one token is found.
- Exit code ``2`` when the scan itself cannot run (bad format, unreadable input).
- Snippets are redacted before they are reported; rendered files may hold
  real secrets next to a leftover token.
"""

from __future__ import annotations

import argparse
import json
import os
import re
import sys
from collections.abc import Iterable, Sequence
from dataclasses import dataclass
from pathlib import Path

from fleet_secrets.constants import DEFAULT_PLACEHOLDER_FORMAT
from fleet_secrets.providers.placeholder import placeholder_pattern
from fleet_secrets.security.redaction import redact_text

_ALWAYS_IGNORED_DIRS = frozenset(
    {".git", ".venv", "__pycache__", ".mypy_cache", ".pytest_cache", ".ruff_cache", ".hypothesis"}
)
_BINARY_SNIFF_BYTES = 8192
_MAX_SNIPPET = 160


@dataclass(frozen=True, slots=True)
class PlaceholderFinding:
    path: str
    line: int
    col: int
    key: str
    snippet: str

    def sort_key(self) -> tuple[str, int, int, str]:
        return (self.path, self.line, self.col, self.key)

    def to_dict(self) -> dict[str, object]:
        return {
            "path": self.path,
            "line": self.line,
            "col": self.col,
            "key": self.key,
            "snippet": self.snippet,
        }


@dataclass(frozen=True, slots=True)
class AuditResult:
    findings: tuple[PlaceholderFinding, ...]
    scanned_files: tuple[str, ...]
    skipped_files: tuple[str, ...] = ()

    @property
    def finding_count(self) -> int:
        return len(self.findings)

    @property
    def keys(self) -> tuple[str, ...]:
        return tuple(sorted({item.key for item in self.findings}))

    def summary(self) -> dict[str, object]:
        return {
            "total_findings": self.finding_count,
            "keys": list(self.keys),
            "scanned_files": len(self.scanned_files),
            "skipped_files": len(self.skipped_files),
        }

    def to_dict(self) -> dict[str, object]:
        return {
            "summary": self.summary(),
            "findings": [item.to_dict() for item in self.findings],
            "scanned_files": list(self.scanned_files),
            "skipped_files": list(self.skipped_files),
        }


def scan_for_placeholders(
    paths: Iterable[Path | str],
    token_pattern: re.Pattern[str] | None = None,
    *,
    exclude: Sequence[str] = (),
) -> AuditResult:
    """Scan files (directories are walked) for placeholder tokens.

    ``token_pattern`` must expose the key name as group ``key``; it defaults to
    the pattern for ``[[{key}]]``. Binary files are listed as skipped.
    """

    pattern = token_pattern if token_pattern is not None else placeholder_pattern()
    findings: list[PlaceholderFinding] = []
    scanned: list[str] = []
    skipped: list[str] = []
    for file_path in _collect_files(paths, exclude=exclude):
        display = file_path.as_posix()
        raw = file_path.read_bytes()
        if b"\x00" in raw[:_BINARY_SNIFF_BYTES]:
            skipped.append(display)
            continue
        scanned.append(display)
        text = raw.decode("utf-8", errors="replace")
        for line_no, line in enumerate(text.splitlines(), start=1):
            for match in pattern.finditer(line):
                findings.append(
                    PlaceholderFinding(
                        path=display,
                        line=line_no,
                        col=match.start() + 1,
                        key=match.group("key"),
                        snippet=_snippet(line),
                    )
                )
    return AuditResult(
        findings=tuple(sorted(set(findings), key=lambda item: item.sort_key())),
        scanned_files=tuple(sorted(scanned)),
        skipped_files=tuple(sorted(skipped)),
    )


def format_text(result: AuditResult) -> str:
    lines: list[str] = []
    if result.findings:
        lines.append("PLACEHOLDERS (fail build)")
        for item in result.findings:
            lines.append(f"  {item.path}:{item.line}:{item.col} [{item.key}] {item.snippet}")
    else:
        lines.append("No placeholder tokens found.")
    summary = result.summary()
    lines.append("")
    lines.append(
        f"Summary: findings={summary['total_findings']} "
        f"keys={','.join(result.keys) or '-'} "
        f"scanned_files={summary['scanned_files']} "
        f"skipped_files={summary['skipped_files']}"
    )
    return "\n".join(lines) + "\n"


def format_json(result: AuditResult) -> str:
    return json.dumps(result.to_dict(), sort_keys=True, indent=2, ensure_ascii=False) + "\n"


def main(argv: Sequence[str] | None = None) -> int:
    parser = build_parser()
    args = parser.parse_args(argv)
    try:
        result = scan_for_placeholders(
            [Path(item) for item in args.paths],
            placeholder_pattern(args.placeholder_format),
            exclude=args.exclude,
        )
    except (OSError, ValueError) as exc:
        sys.stderr.write(f"placeholder audit failed: {exc}\n")
        return 2
    if args.output_format == "json":
        sys.stdout.write(format_json(result))
    else:
        sys.stdout.write(format_text(result))
    return 1 if result.findings else 0


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        description="Scan rendered output artifacts for leftover placeholder tokens."
    )
    parser.add_argument("paths", nargs="+", help="Files or directories to scan.")
    parser.add_argument(
        "--format",
        dest="output_format",
        choices=("text", "json"),
        default="text",
        help="Output format.",
    )
    parser.add_argument(
        "--placeholder-format",
        default=DEFAULT_PLACEHOLDER_FORMAT,
        help="Placeholder template containing '{key}' (default: %(default)s).",
    )
    parser.add_argument(
        "--exclude",
        nargs="+",
        default=[],
        help="Path prefixes to skip.",
    )
    return parser


def _collect_files(paths: Iterable[Path | str], *, exclude: Sequence[str]) -> list[Path]:
    discovered: set[Path] = set()
    prefixes = tuple(Path(item).as_posix().rstrip("/") for item in exclude if item)
    for entry in paths:
        base = Path(entry)
        if base.is_file():
            if not _is_excluded(base, prefixes):
                discovered.add(base)
            continue
        if not base.is_dir():
            raise FileNotFoundError(f"no such file or directory: {base}")
        for dirpath, dirnames, filenames in os.walk(base):
            current = Path(dirpath)
            dirnames[:] = sorted(
                name
                for name in dirnames
                if name not in _ALWAYS_IGNORED_DIRS and not _is_excluded(current / name, prefixes)
            )
            for filename in sorted(filenames):
                candidate = current / filename
                if not _is_excluded(candidate, prefixes):
                    discovered.add(candidate)
    return sorted(discovered)


def _is_excluded(path: Path, prefixes: Sequence[str]) -> bool:
    rendered = path.as_posix()
    return any(rendered == prefix or rendered.startswith(f"{prefix}/") for prefix in prefixes)


def _snippet(line: str) -> str:
    stripped = redact_text(line.strip())
    if len(stripped) > _MAX_SNIPPET:
        return stripped[: _MAX_SNIPPET - 3] + "..."
    return stripped


__all__ = [
    "AuditResult",
    "PlaceholderFinding",
    "build_parser",
    "format_json",
    "format_text",
    "main",
    "scan_for_placeholders",
]
