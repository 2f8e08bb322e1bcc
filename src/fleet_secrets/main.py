"""Process entrypoint for ``fleet-secrets`` and ``python -m fleet_secrets``."""

from __future__ import annotations

import sys
import traceback
from enum import IntEnum
from typing import TYPE_CHECKING

if TYPE_CHECKING:
    from collections.abc import Iterator, Sequence


class ExitCode(IntEnum):
    """Exit codes shared by every subcommand."""

    SUCCESS = 0
    RESOLUTION_FAILED = 1
    CONFIG_ERROR = 2
    SECURITY_ERROR = 3
    INTERNAL_ERROR = 4


def cli_entrypoint(argv: Sequence[str] | None = None) -> int:
    try:
        from fleet_secrets.ui.cli import run_cli

        return _normalize_exit_code(run_cli(argv))
    except SystemExit as exc:
        # argparse exits 2 on usage errors and 0 after --help.
        return _normalize_exit_code(exc.code)
    except BaseException as exc:  # noqa: BLE001 - last line before the process exits.
        code = _route_exception(exc)
        if code is ExitCode.INTERNAL_ERROR:
            traceback.print_exception(exc, file=sys.stderr)
        else:
            _write_stderr(str(exc).strip() or type(exc).__name__)
        return int(code)


def console_entrypoint() -> None:
    raise SystemExit(cli_entrypoint())


def _normalize_exit_code(raw_code: object) -> int:
    if raw_code is None:
        return int(ExitCode.SUCCESS)
    if isinstance(raw_code, int) and raw_code in set(ExitCode):
        return int(raw_code)
    if isinstance(raw_code, str) and raw_code.strip():
        _write_stderr(raw_code.strip())
    return int(ExitCode.INTERNAL_ERROR)


def _routing_table() -> tuple[tuple[tuple[type[BaseException], ...], ExitCode], ...]:
    from fleet_secrets.config.loader import ConfigLoadError
    from fleet_secrets.config.schema import ConfigValidationError
    from fleet_secrets.consumers.runtime import RuntimeMaterializationError
    from fleet_secrets.resolution.engine import CorruptedArtifactError
    from fleet_secrets.resolution.isolation import TargetMismatch
    from fleet_secrets.resolution.rotation import RotationError

    # Order matters: several domain errors subclass ValueError.
    return (
        ((TargetMismatch, RotationError), ExitCode.SECURITY_ERROR),
        ((CorruptedArtifactError, RuntimeMaterializationError), ExitCode.RESOLUTION_FAILED),
        ((ConfigLoadError, ConfigValidationError), ExitCode.CONFIG_ERROR),
        (
            (FileNotFoundError, NotADirectoryError, PermissionError, ValueError),
            ExitCode.CONFIG_ERROR,
        ),
    )


def _route_exception(exc: BaseException) -> ExitCode:
    table = _routing_table()
    for item in _exception_chain(exc):
        for types, code in table:
            if isinstance(item, types):
                return code
    return ExitCode.INTERNAL_ERROR


def _exception_chain(exc: BaseException) -> Iterator[BaseException]:
    """Yield ``exc`` then its explicit causes, falling back to unsuppressed context."""

    seen: set[int] = set()
    current: BaseException | None = exc
    while current is not None and id(current) not in seen:
        seen.add(id(current))
        yield current
        if current.__cause__ is not None:
            current = current.__cause__
        elif not current.__suppress_context__:
            current = current.__context__
        else:
            current = None


def _write_stderr(message: str) -> None:
    sys.stderr.write(message.rstrip("\n") + "\n")


__all__ = ["ExitCode", "cli_entrypoint", "console_entrypoint"]
