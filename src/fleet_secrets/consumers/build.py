"""Build-time gate over a resolution report."""

from __future__ import annotations

from dataclasses import dataclass

from fleet_secrets.domain.models import ResolutionReport, ResolutionStatus


@dataclass(frozen=True, slots=True)
class BuildVerdict:
    """Decision for one target: exit code plus operator-facing messages.

    Messages name the target and keys only.
    """

    target_id: str
    status: ResolutionStatus
    exit_code: int
    warnings: tuple[str, ...] = ()
    errors: tuple[str, ...] = ()

    @property
    def passed(self) -> bool:
        return self.exit_code == 0


def evaluate_build(report: ResolutionReport, *, fail_on_degraded: bool = False) -> BuildVerdict:
    target = report.target_id
    warnings = tuple(
        f"target {target!r}: key {key.name!r} resolved to a placeholder"
        for key in report.placeholder_keys
    )
    errors: list[str] = []

    if report.status is ResolutionStatus.CORRUPTED:
        errors.append(
            f"target {target!r}: encrypted artifact is corrupted"
            + (f" ({report.store_failure})" if report.store_failure else "")
        )
    unresolved = report.unresolved_keys
    if unresolved:
        names = ", ".join(key.name for key in unresolved)
        errors.append(f"target {target!r}: unresolved keys: {names}")
    if report.status is ResolutionStatus.DEGRADED and fail_on_degraded:
        names = ", ".join(key.name for key in report.placeholder_keys) or "(none)"
        errors.append(f"target {target!r}: degraded build refused; placeholder keys: {names}")

    return BuildVerdict(
        target_id=target,
        status=report.status,
        exit_code=1 if errors else 0,
        warnings=warnings,
        errors=tuple(errors),
    )


__all__ = ["BuildVerdict", "evaluate_build"]
