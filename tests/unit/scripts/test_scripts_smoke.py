"""
fleet-secrets — script subprocess smoke tests

File: tests/unit/scripts/test_scripts_smoke.py
Last updated: 2026-10-19

Purpose
- Keep the no-install placeholder audit wrapper executable and its exit codes stable.
"""

from __future__ import annotations

import json
import os
import subprocess
import sys
from pathlib import Path

import pytest

REPO_ROOT = Path(__file__).resolve().parents[3]
SRC_PATH = REPO_ROOT / "src"


def _run_script(*args: str) -> subprocess.CompletedProcess[str]:
    env = os.environ.copy()
    existing_pythonpath = env.get("PYTHONPATH")
    src_pythonpath = str(SRC_PATH)
    env["PYTHONPATH"] = (
        src_pythonpath if not existing_pythonpath else f"{src_pythonpath}:{existing_pythonpath}"
    )
    return subprocess.run(
        [sys.executable, *args],
        cwd=REPO_ROOT,
        text=True,
        capture_output=True,
        check=False,
        env=env,
    )


def _render_failure(label: str, completed: subprocess.CompletedProcess[str]) -> str:
    return (
        f"{label} failed with exit code {completed.returncode}\n"
        f"stdout:\n{completed.stdout}\n"
        f"stderr:\n{completed.stderr}\n"
    )


@pytest.mark.unit
def test_audit_placeholders_help_smoke() -> None:
    result = _run_script("scripts/audit_placeholders.py", "--help")

    assert result.returncode == 0, _render_failure("audit_placeholders --help", result)
    lowered_output = result.stdout.lower()
    assert "usage" in lowered_output
    assert "--format" in lowered_output
    assert "--placeholder-format" in lowered_output


@pytest.mark.unit
def test_audit_placeholders_json_exit_codes(tmp_path: Path) -> None:
    dirty = tmp_path / "robot.env"
    dirty.write_text("ROBOT_ENDPOINT=[[endpoint]]\n", encoding="utf-8")
    clean = tmp_path / "clean.env"
    clean.write_text("ROBOT_ENDPOINT=tcp://10.0.0.7:7400\n", encoding="utf-8")

    failing = _run_script("scripts/audit_placeholders.py", str(dirty), "--format", "json")
    passing = _run_script("scripts/audit_placeholders.py", str(clean))

    assert failing.returncode == 1, _render_failure("audit_placeholders dirty", failing)
    payload = json.loads(failing.stdout)
    assert payload["summary"]["keys"] == ["endpoint"]
    assert passing.returncode == 0, _render_failure("audit_placeholders clean", passing)
