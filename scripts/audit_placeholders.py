"""
fleet-secrets — placeholder audit CLI wrapper

File: scripts/audit_placeholders.py
Last updated: 2026-10-19

Purpose
- Stable, no-install wrapper for the placeholder audit so image build
  pipelines can gate on leftover tokens before the package is installed.
"""

from __future__ import annotations

import sys
from pathlib import Path

REPO_ROOT = Path(__file__).resolve().parents[1]
SRC_PATH = REPO_ROOT / "src"


def _load_main():
    try:
        from fleet_secrets.quality.placeholder_audit import main as loaded_main
    except ModuleNotFoundError:
        if str(SRC_PATH) not in sys.path:
            sys.path.insert(0, str(SRC_PATH))
        from fleet_secrets.quality.placeholder_audit import main as loaded_main
    return loaded_main


if __name__ == "__main__":
    raise SystemExit(_load_main()())
