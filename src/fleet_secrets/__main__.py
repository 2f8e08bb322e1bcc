"""Module entrypoint for ``python -m fleet_secrets``."""

from __future__ import annotations

from fleet_secrets.main import cli_entrypoint

if __name__ == "__main__":
    raise SystemExit(cli_entrypoint())
