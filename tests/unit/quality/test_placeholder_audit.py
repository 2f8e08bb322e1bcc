"""
fleet-secrets — unit tests for the placeholder token audit

File: tests/unit/quality/test_placeholder_audit.py
Last updated: 2026-10-19

Purpose
- Verify token detection in rendered artifacts, deterministic ordering,
  redacted snippets, output formats, and CLI exit codes.

Functional requirements
- Offline only.
"""

from __future__ import annotations

import json
from pathlib import Path

import pytest

from fleet_secrets.providers.placeholder import placeholder_pattern
from fleet_secrets.quality import placeholder_audit


def _write(root: Path, rel_path: str, text: str | bytes) -> Path:
    path = root / rel_path
    path.parent.mkdir(parents=True, exist_ok=True)
    if isinstance(text, bytes):
        path.write_bytes(text)
    else:
        path.write_text(text, encoding="utf-8")
    return path


@pytest.mark.unit
def test_finds_tokens_in_order_with_positions(tmp_path: Path) -> None:
    _write(tmp_path, "out/b.launch", "endpoint: [[endpoint]]\n")
    _write(tmp_path, "out/a.env", "ROBOT_IDENTITY=rx-7\nROBOT_API_TOKEN=[[api_token]] [[identity]]\n")
    _write(tmp_path, "out/clean.yaml", "identity: rx-7\n")

    result = placeholder_audit.scan_for_placeholders([tmp_path / "out"])

    assert [(Path(item.path).name, item.line, item.col, item.key) for item in result.findings] == [
        ("a.env", 2, 17, "api_token"),
        ("a.env", 2, 31, "identity"),
        ("b.launch", 1, 11, "endpoint"),
    ]
    assert result.keys == ("api_token", "endpoint", "identity")
    assert len(result.scanned_files) == 3


@pytest.mark.unit
def test_non_key_brackets_and_binary_files_are_ignored(tmp_path: Path) -> None:
    _write(tmp_path, "out/list.txt", "matrix[[0]] and [[Upper]] and [[ spaced ]]\n")
    _write(tmp_path, "out/blob.bin", b"\x00\x01[[endpoint]]")

    result = placeholder_audit.scan_for_placeholders([tmp_path / "out"])

    assert result.findings == ()
    assert [Path(item).name for item in result.skipped_files] == ["blob.bin"]


@pytest.mark.unit
def test_snippets_are_redacted(tmp_path: Path) -> None:
    _write(tmp_path, "svc.conf", "turn_credential=realpass99 endpoint=[[endpoint]]\n")

    result = placeholder_audit.scan_for_placeholders([tmp_path / "svc.conf"])

    assert result.finding_count == 1
    assert "realpass99" not in result.findings[0].snippet
    assert "realpass99" not in placeholder_audit.format_json(result)


@pytest.mark.unit
def test_custom_format_and_excludes(tmp_path: Path) -> None:
    _write(tmp_path, "out/keep.conf", "url=<<signaling_url>>\n")
    _write(tmp_path, "out/vendor/skip.conf", "url=<<signaling_url>>\n")

    result = placeholder_audit.scan_for_placeholders(
        [tmp_path / "out"],
        placeholder_pattern("<<{key}>>"),
        exclude=[(tmp_path / "out" / "vendor").as_posix()],
    )

    assert [Path(item.path).name for item in result.findings] == ["keep.conf"]


@pytest.mark.unit
def test_missing_path_raises(tmp_path: Path) -> None:
    with pytest.raises(FileNotFoundError):
        placeholder_audit.scan_for_placeholders([tmp_path / "absent"])


@pytest.mark.unit
def test_text_and_json_formats(tmp_path: Path) -> None:
    _write(tmp_path, "a.conf", "x=[[identity]]\n")
    result = placeholder_audit.scan_for_placeholders([tmp_path / "a.conf"])

    text = placeholder_audit.format_text(result)
    payload = json.loads(placeholder_audit.format_json(result))

    assert text.startswith("PLACEHOLDERS (fail build)\n")
    assert "Summary: findings=1 keys=identity scanned_files=1 skipped_files=0" in text
    assert payload["summary"] == {
        "keys": ["identity"],
        "scanned_files": 1,
        "skipped_files": 0,
        "total_findings": 1,
    }
    clean = placeholder_audit.AuditResult(findings=(), scanned_files=())
    assert placeholder_audit.format_text(clean).startswith("No placeholder tokens found.")


@pytest.mark.unit
def test_main_exit_codes(tmp_path: Path, capsys: pytest.CaptureFixture[str]) -> None:
    dirty = _write(tmp_path, "dirty.conf", "x=[[identity]]\n")
    clean = _write(tmp_path, "clean.conf", "x=rx-7\n")

    assert placeholder_audit.main([str(clean)]) == 0
    assert "No placeholder tokens found." in capsys.readouterr().out

    assert placeholder_audit.main([str(dirty), "--format", "json"]) == 1
    assert json.loads(capsys.readouterr().out)["summary"]["keys"] == ["identity"]

    assert placeholder_audit.main([str(dirty), "--placeholder-format", "{key}"]) == 2
    assert placeholder_audit.main([str(tmp_path / "absent")]) == 2
    assert "placeholder audit failed" in capsys.readouterr().err
