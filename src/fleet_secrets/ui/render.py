"""Terminal output for the fleet-secrets CLI.

File: src/fleet_secrets/ui/render.py
Last updated: 2026-10-19

Purpose
- Print human-readable command output through ``rich``, colored only on a TTY.

Functional requirements
- ``NO_COLOR`` or ``--no-color`` give plain output: no markup parsing, no wrapping, no color.
- Warnings and errors go to stderr so ``--json`` stdout stays machine-readable.
"""

from __future__ import annotations

import os
import sys
from typing import TYPE_CHECKING, Final

from rich.console import Console
from rich.table import Table

if TYPE_CHECKING:
    from collections.abc import Sequence

_STATUS_STYLES: Final[dict[str, str]] = {
    "complete": "green",
    "degraded": "yellow",
    "corrupted": "bold red",
}


def _wants_color(disabled: bool) -> bool:
    if disabled or os.environ.get("NO_COLOR"):
        return False
    isatty = getattr(sys.stdout, "isatty", None)
    return bool(isatty and isatty())


def _aligned(headers: Sequence[str], rows: Sequence[Sequence[str]]) -> list[str]:
    grid = [list(headers), *([str(cell) for cell in row] for row in rows)]
    widths = [
        max(len(line[i]) if i < len(line) else 0 for line in grid) for i in range(len(headers))
    ]
    lines = [
        "  ".join(
            (line[i] if i < len(line) else "").ljust(width) for i, width in enumerate(widths)
        ).rstrip()
        for line in grid
    ]
    lines.insert(1, "  ".join("-" * width for width in widths))
    return [f"  {line}" for line in lines]


class CLIRenderer:
    """Writes CLI output to stdout and diagnostics to stderr."""

    def __init__(self, *, no_color: bool = False) -> None:
        self.color = _wants_color(no_color)

    def _emit(self, line: str, *, style: str | None = None, stderr: bool = False) -> None:
        # Consoles are built per call so pytest's capsys sees the current streams.
        console = Console(
            stderr=stderr,
            no_color=not self.color,
            force_terminal=True if self.color else None,
            highlight=False,
            soft_wrap=True,
            emoji=False,
        )
        console.print(line, style=style if self.color else None, markup=False)

    def heading(self, text: str) -> None:
        self._emit(text, style="bold")

    def section(self, title: str) -> None:
        self._emit(f"\n{title}", style="bold")

    def text(self, line: str) -> None:
        self._emit(line)

    def kv(self, key: str, value: object) -> None:
        self._emit(f"{key}: {value}")

    def items(self, entries: Sequence[str], *, prefix: str = "- ") -> None:
        for entry in entries:
            self._emit(f"  {prefix}{entry}")

    def status(self, label: str, status: str) -> None:
        self._emit(f"{label}: {status}", style=_STATUS_STYLES.get(status))

    def ok(self, label: str) -> None:
        self._emit(f"  OK  {label}", style="green")

    def fail(self, label: str) -> None:
        self._emit(f"  FAIL  {label}", style="red")

    def warning(self, text: str) -> None:
        self._emit(f"warning: {text}", style="yellow", stderr=True)

    def error(self, text: str) -> None:
        self._emit(f"error: {text}", style="bold red", stderr=True)

    def table(
        self,
        headers: Sequence[str],
        rows: Sequence[Sequence[str]],
        *,
        title: str | None = None,
    ) -> None:
        """Rich table on color terminals, space-aligned columns otherwise.

        Empty tables print nothing.
        """

        if not rows:
            return
        if title:
            self.section(title)
        if not self.color:
            for line in _aligned(headers, rows):
                self._emit(line)
            return
        grid = Table(*headers, show_edge=False, header_style="bold")
        for row in rows:
            grid.add_row(*(str(cell) for cell in row))
        Console(force_terminal=True, highlight=False, soft_wrap=True).print(grid)


def create_renderer(*, no_color: bool = False) -> CLIRenderer:
    return CLIRenderer(no_color=no_color)


__all__ = ["CLIRenderer", "create_renderer"]
