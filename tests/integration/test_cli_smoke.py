"""
fleet-secrets — CLI subprocess smoke contracts

File: tests/integration/test_cli_smoke.py
Last updated: 2026-10-19

Purpose
- Run `python -m fleet_secrets` end to end: keygen, seal, resolve, inspect, rotate.
- Verify exit codes, stdout/stderr separation, and on-disk side effects.
"""

from __future__ import annotations

import json
import os
import subprocess
import sys
from pathlib import Path

import pytest

PROJECT_ROOT = Path(__file__).resolve().parents[2]
SRC_PATH = PROJECT_ROOT / "src"


def _run_cli(workdir: Path, *args: str, **extra_env: str) -> subprocess.CompletedProcess[str]:
    env = {
        name: value
        for name, value in os.environ.items()
        if not name.startswith(("FLEET_SECRETS_", "ROBOT_"))
    }
    existing_pythonpath = env.get("PYTHONPATH")
    src_pythonpath = str(SRC_PATH)
    env["PYTHONPATH"] = (
        src_pythonpath if not existing_pythonpath else f"{src_pythonpath}:{existing_pythonpath}"
    )
    env["NO_COLOR"] = "1"
    env.update(extra_env)
    return subprocess.run(
        [sys.executable, "-m", "fleet_secrets", *args],
        cwd=workdir,
        text=True,
        capture_output=True,
        check=False,
        env=env,
    )


def _json_out(completed: subprocess.CompletedProcess[str]) -> dict[str, object]:
    assert completed.returncode == 0, completed.stderr
    return json.loads(completed.stdout)


@pytest.mark.integration
def test_seal_resolve_rotate_round(tmp_path: Path) -> None:
    (tmp_path / "rx-7.yaml").write_text(
        "identity: rx-7\nturn_credential: turn-pass\n", encoding="utf-8"
    )

    first = _json_out(_run_cli(tmp_path, "keygen", "--out", "keys/first.key", "--json"))
    second = _json_out(_run_cli(tmp_path, "keygen", "--out", "keys/second.key", "--json"))

    sealed = _json_out(
        _run_cli(
            tmp_path,
            "seal",
            "rx-7",
            "--input",
            "rx-7.yaml",
            "--recipient",
            str(first["public_key"]),
            "--json",
        )
    )
    assert sealed["recipients"] == [first["fingerprint"]]

    resolved = _run_cli(
        tmp_path,
        "resolve",
        "rx-7",
        "--json",
        FLEET_SECRETS_KEY_FILE=str(tmp_path / "keys" / "first.key"),
        ROBOT_ENDPOINT="tcp://10.0.0.7:7400",
    )
    report = _json_out(resolved)
    assert report["status"] == "degraded"
    assert report["keys"]["turn_credential"]["source"] == "encrypted_store"
    assert report["keys"]["endpoint"]["source"] == "environment"
    assert "turn-pass" not in resolved.stdout
    assert "warning:" in resolved.stderr

    refused = _run_cli(
        tmp_path,
        "resolve",
        "rx-7",
        "--profile",
        "release",
        FLEET_SECRETS_KEY_FILE=str(tmp_path / "keys" / "first.key"),
    )
    assert refused.returncode == 1
    assert "degraded build refused" in refused.stderr

    header = _json_out(_run_cli(tmp_path, "inspect", "rx-7", "--json"))
    assert header["scope_matches"] is True

    rotated = _json_out(
        _run_cli(
            tmp_path,
            "rotate",
            "rx-7",
            "--key-file",
            "keys/first.key",
            "--recipient",
            str(second["public_key"]),
            "--verify-key",
            "keys/second.key",
            "--json",
        )
    )
    assert rotated["recipients"] == [second["fingerprint"]]

    after = _json_out(_run_cli(tmp_path, "resolve", "rx-7", "--key-file", "keys/second.key",
                               "--json"))
    assert after["keys"]["identity"]["source"] == "encrypted_store"
    assert list((tmp_path / "logs").glob("*/fleet-secrets.jsonl"))


@pytest.mark.integration
def test_runtime_mode_writes_private_files(tmp_path: Path) -> None:
    (tmp_path / "rx-8.yaml").write_text("api_token: tok-abc\n", encoding="utf-8")
    key = _json_out(_run_cli(tmp_path, "keygen", "--out", "keys/rx-8.key", "--json"))
    _json_out(
        _run_cli(
            tmp_path, "seal", "rx-8", "--input", "rx-8.yaml", "--recipient", str(key["public_key"]),
            "--json",
        )
    )

    completed = _run_cli(
        tmp_path,
        "resolve",
        "rx-8",
        "--mode",
        "runtime",
        "--key-file",
        "keys/rx-8.key",
        "--runtime-dir",
        "run/rx-8",
    )

    assert completed.returncode == 0, completed.stderr
    token_file = tmp_path / "run" / "rx-8" / "api-token"
    assert token_file.read_text(encoding="utf-8") == "tok-abc"
    assert token_file.stat().st_mode & 0o777 == 0o600


@pytest.mark.integration
def test_unknown_subcommand_exits_with_usage_error(tmp_path: Path) -> None:
    completed = _run_cli(tmp_path, "launch")
    assert completed.returncode == 2
    assert "usage:" in completed.stderr
