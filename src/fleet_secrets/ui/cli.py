"""Command-line interface router for fleet-secrets."""

from __future__ import annotations

import argparse
import contextlib
import importlib.metadata
import json
import os
import sys
import time
import uuid
from collections.abc import Iterator, Mapping, Sequence
from dataclasses import dataclass
from pathlib import Path
from typing import Any, Final

import structlog
import yaml

from fleet_secrets.config import (
    ConfigLoadError,
    ConfigValidationError,
    effective_config,
    load_config,
)
from fleet_secrets.consumers import (
    BuildVerdict,
    RuntimeFiles,
    evaluate_build,
    materialize_runtime_files,
)
from fleet_secrets.crypto import (
    DecryptError,
    EnvelopeCodec,
    KeyFormatError,
    PublicKey,
    fingerprint,
    load_private_key,
    load_public_key,
    load_public_key_file,
    public_key_text,
    write_private_key,
)
from fleet_secrets.domain.models import (
    EncryptedArtifact,
    KeyCatalog,
    KeyMaterialContext,
    ResolutionReport,
    ResolutionStatus,
    validate_target_id,
)
from fleet_secrets.main import ExitCode
from fleet_secrets.observability import correlation_scope, setup_logging, shutdown_logging
from fleet_secrets.providers.placeholder import placeholder_pattern
from fleet_secrets.quality.placeholder_audit import (
    format_json,
    format_text,
    scan_for_placeholders,
)
from fleet_secrets.resolution import (
    CorruptedArtifactError,
    FleetOutcome,
    InvariantViolation,
    RotationCoordinator,
    RotationError,
    TargetError,
    TargetIsolationLayer,
    TargetMismatch,
    resolve_fleet,
)
from fleet_secrets.ui.render import CLIRenderer, create_renderer
from fleet_secrets.utils.fs import atomic_write

# Sealed artifacts are ciphertext meant for version control.
ARTIFACT_FILE_MODE: Final[int] = 0o644
_REQUIRED_DISTRIBUTIONS: Final[tuple[str, ...]] = ("cryptography", "PyYAML", "structlog", "rich")


# Not frozen: contextlib assigns __traceback__ on exceptions leaving a with block.
@dataclass(eq=False, slots=True)
class CLIError(RuntimeError):
    """Typed CLI failure with an explicit process exit code."""

    message: str
    exit_code: int = 1

    def __str__(self) -> str:
        return self.message


# ---------------------------------------------------------------------------
# Parser
# ---------------------------------------------------------------------------


def build_parser() -> argparse.ArgumentParser:
    """Build the argparse command router for all supported CLI workflows."""

    parser = argparse.ArgumentParser(
        prog="fleet-secrets",
        description=(
            "fleet-secrets — per-target secret resolution for a robot fleet.\n\n"
            "Common workflows:\n"
            "  fleet-secrets resolve rx-7                 Build gate for one target\n"
            "  fleet-secrets resolve rx-7 --mode runtime  Write file-per-key runtime output\n"
            "  fleet-secrets fleet                        Resolve every known target\n"
            "  fleet-secrets seal rx-7 --input rx-7.yaml  Encrypt operator plaintext\n"
            "  fleet-secrets doctor                       Check environment health\n"
        ),
        formatter_class=argparse.RawDescriptionHelpFormatter,
    )
    common = argparse.ArgumentParser(add_help=False)
    common.add_argument(
        "--config",
        dest="config_path",
        default=None,
        help="Path to TOML config (default: ./fleet_secrets.toml if present).",
    )
    common.add_argument(
        "--profile",
        default=None,
        help="Optional config profile overlay name (build, release, runtime, ...).",
    )
    common.add_argument(
        "--verbose",
        "-v",
        action="store_true",
        default=False,
        help="Also write log records to stderr.",
    )
    common.add_argument(
        "--no-color",
        action="store_true",
        default=False,
        help="Disable colored output (also respects NO_COLOR env var).",
    )

    subparsers = parser.add_subparsers(dest="command", required=True)

    # resolve --------------------------------------------------------------
    resolve_parser = subparsers.add_parser(
        "resolve",
        parents=[common],
        help="Resolve configuration for one target",
        description=(
            "Resolve every configured key for TARGET from its encrypted artifact,\n"
            "the environment, or placeholders.\n\n"
            "Examples:\n"
            "  fleet-secrets resolve rx-7\n"
            "  fleet-secrets resolve rx-7 --key identity --key endpoint --json\n"
            "  fleet-secrets resolve rx-7 --mode runtime --runtime-dir /run/robot\n"
        ),
        formatter_class=argparse.RawDescriptionHelpFormatter,
    )
    resolve_parser.add_argument("target", help="Target identifier")
    resolve_parser.add_argument(
        "--key", dest="keys", action="append", default=None, help="Key to resolve (repeatable)."
    )
    resolve_parser.add_argument("--key-file", default=None, help="Private key file for TARGET.")
    resolve_parser.add_argument(
        "--mode",
        choices=("build", "runtime"),
        default="build",
        help="build: gate only; runtime: also write file-per-key output.",
    )
    resolve_parser.add_argument(
        "--runtime-dir", default=None, help="Override paths.runtime_dir for --mode runtime."
    )
    resolve_parser.add_argument("--json", action="store_true", help="Emit the report as JSON")
    resolve_parser.add_argument(
        "--show-values",
        action="store_true",
        help="Include resolved values in output (never use in shared CI logs).",
    )
    resolve_parser.set_defaults(handler=_cmd_resolve)

    # fleet ----------------------------------------------------------------
    fleet_parser = subparsers.add_parser(
        "fleet",
        parents=[common],
        help="Resolve many targets, each in its own scope",
        description=(
            "Resolve targets concurrently. Without TARGET arguments every artifact\n"
            "found in paths.artifact_dir is resolved.\n\n"
            "Examples:\n"
            "  fleet-secrets fleet\n"
            "  fleet-secrets fleet rx-7 rx-8 --workers 2 --json\n"
        ),
        formatter_class=argparse.RawDescriptionHelpFormatter,
    )
    fleet_parser.add_argument("targets", nargs="*", help="Target identifiers")
    fleet_parser.add_argument(
        "--key", dest="keys", action="append", default=None, help="Key to resolve (repeatable)."
    )
    fleet_parser.add_argument("--workers", type=int, default=None, help="Thread pool size.")
    fleet_parser.add_argument("--json", action="store_true", help="Emit JSON output")
    fleet_parser.set_defaults(handler=_cmd_fleet)

    # seal -----------------------------------------------------------------
    seal_parser = subparsers.add_parser(
        "seal",
        parents=[common],
        help="Encrypt operator plaintext into a target's artifact",
        description=(
            "Read a YAML mapping of key -> value and seal it for TARGET.\n\n"
            "Examples:\n"
            "  fleet-secrets seal rx-7 --input rx-7.yaml --recipient rx-7.pub\n"
        ),
        formatter_class=argparse.RawDescriptionHelpFormatter,
    )
    seal_parser.add_argument("target", help="Target identifier")
    seal_parser.add_argument("--input", required=True, help="YAML plaintext file")
    seal_parser.add_argument(
        "--recipient",
        action="append",
        default=[],
        help="Public key text or file (repeatable; default: recipients.default).",
    )
    seal_parser.add_argument("--json", action="store_true", help="Emit JSON output")
    seal_parser.set_defaults(handler=_cmd_seal)

    # rotate ---------------------------------------------------------------
    rotate_parser = subparsers.add_parser(
        "rotate",
        parents=[common],
        help="Re-encrypt a target's artifact for a new recipient set",
        description=(
            "Open the artifact with the current key and reseal it.\n\n"
            "Examples:\n"
            "  fleet-secrets rotate rx-7 --recipient new.pub --verify-key new.key\n"
            "  fleet-secrets rotate rx-7 --recipient ops.pub --mode union\n"
        ),
        formatter_class=argparse.RawDescriptionHelpFormatter,
    )
    rotate_parser.add_argument("target", help="Target identifier")
    rotate_parser.add_argument(
        "--recipient",
        action="append",
        default=[],
        help="Public key text or file (repeatable; default: recipients.default).",
    )
    rotate_parser.add_argument(
        "--mode",
        choices=("replace", "union"),
        default="replace",
        help="replace: new set only; union: keep existing recipients too.",
    )
    rotate_parser.add_argument("--key-file", default=None, help="Current private key file.")
    rotate_parser.add_argument(
        "--verify-key",
        action="append",
        default=[],
        help="New private key used to check the resealed artifact (repeatable).",
    )
    rotate_parser.add_argument("--json", action="store_true", help="Emit JSON output")
    rotate_parser.set_defaults(handler=_cmd_rotate)

    # inspect --------------------------------------------------------------
    inspect_parser = subparsers.add_parser(
        "inspect",
        parents=[common],
        help="Show an artifact header without decrypting",
    )
    inspect_parser.add_argument("target", help="Target identifier")
    inspect_parser.add_argument("--json", action="store_true", help="Emit JSON output")
    inspect_parser.set_defaults(handler=_cmd_inspect)

    # audit ----------------------------------------------------------------
    audit_parser = subparsers.add_parser(
        "audit",
        parents=[common],
        help="Scan rendered files for leftover placeholder tokens",
        description=(
            "Exit 1 when any placeholder token is found.\n\n"
            "Examples:\n"
            "  fleet-secrets audit build/rootfs/etc/robot\n"
        ),
        formatter_class=argparse.RawDescriptionHelpFormatter,
    )
    audit_parser.add_argument("paths", nargs="+", help="Files or directories to scan")
    audit_parser.add_argument(
        "--exclude", nargs="+", default=[], help="Path prefixes to skip."
    )
    audit_parser.add_argument("--json", action="store_true", help="Emit JSON output")
    audit_parser.set_defaults(handler=_cmd_audit)

    # keys -----------------------------------------------------------------
    keys_parser = subparsers.add_parser(
        "keys",
        parents=[common],
        help="Show key -> env var -> runtime file name table",
    )
    keys_parser.add_argument("--json", action="store_true", help="Emit JSON output")
    keys_parser.set_defaults(handler=_cmd_keys)

    # keygen ---------------------------------------------------------------
    keygen_parser = subparsers.add_parser(
        "keygen",
        parents=[common],
        help="Generate an X25519 key pair",
    )
    keygen_parser.add_argument("--out", required=True, help="Private key output path")
    keygen_parser.add_argument(
        "--force", action="store_true", help="Overwrite an existing private key file."
    )
    keygen_parser.add_argument("--json", action="store_true", help="Emit JSON output")
    keygen_parser.set_defaults(handler=_cmd_keygen)

    # config ---------------------------------------------------------------
    config_parser = subparsers.add_parser(
        "config",
        parents=[common],
        help="Show effective configuration (redacted)",
        description=(
            "Display the effective config after merging defaults, file, env, and profile.\n\n"
            "Examples:\n"
            "  fleet-secrets config\n"
            "  fleet-secrets config --profile runtime --json\n"
        ),
        formatter_class=argparse.RawDescriptionHelpFormatter,
    )
    config_parser.add_argument("--json", action="store_true", help="Emit JSON output")
    config_parser.set_defaults(handler=_cmd_config)

    # doctor ---------------------------------------------------------------
    doctor_parser = subparsers.add_parser(
        "doctor",
        parents=[common],
        help="Check config, artifacts, key material, and dependencies",
    )
    doctor_parser.add_argument("--json", action="store_true", help="Emit JSON output")
    doctor_parser.set_defaults(handler=_cmd_doctor)

    return parser


# ---------------------------------------------------------------------------
# Entrypoints
# ---------------------------------------------------------------------------


def run_cli(argv: Sequence[str] | None = None) -> int:
    """Parse argv, route to a command handler, and return process exit code."""

    parser = build_parser()
    namespace = parser.parse_args(list(argv) if argv is not None else None)
    handler = getattr(namespace, "handler", None)
    if not callable(handler):
        parser.print_help(sys.stderr)
        return int(ExitCode.CONFIG_ERROR)

    try:
        result = handler(namespace)
    except CLIError as exc:
        print(f"error: {exc}", file=sys.stderr)
        return exc.exit_code
    return int(result)


def main(argv: Sequence[str] | None = None) -> int:
    """Compatibility wrapper for main-module wiring."""

    return run_cli(argv)


# ---------------------------------------------------------------------------
# Command handlers
# ---------------------------------------------------------------------------


def _cmd_resolve(args: argparse.Namespace) -> int:
    runtime_files: RuntimeFiles | None = None
    with _command_session(args) as config:
        layer = TargetIsolationLayer.from_config(config)
        report = layer.resolve(args.target, args.keys, key_material=_key_material_arg(args))
        verdict = evaluate_build(report, fail_on_degraded=_fail_on_degraded(config))
        if args.mode == "runtime" and report.status is not ResolutionStatus.CORRUPTED:
            runtime_files = materialize_runtime_files(report, _runtime_dir(args, config))

    renderer = _get_renderer(args)
    _render_verdict(renderer, verdict)
    if args.mode == "runtime" and runtime_files is None:
        renderer.error(f"target {report.target_id!r}: runtime files were not written")

    if _flag(args, "json"):
        print(report.to_json(include_values=_flag(args, "show_values")))
        return verdict.exit_code

    _render_report(renderer, report, show_values=_flag(args, "show_values"))
    if runtime_files is not None:
        renderer.section("Runtime files:")
        renderer.kv("  Directory", runtime_files.runtime_dir.as_posix())
        renderer.items([path.name for path in runtime_files.written])
        if runtime_files.skipped:
            renderer.kv("  Not written", ", ".join(runtime_files.skipped))
    return verdict.exit_code


def _cmd_fleet(args: argparse.Namespace) -> int:
    overrides = {} if args.workers is None else {"fleet.max_workers": args.workers}
    with _command_session(args, cli_overrides=overrides) as config:
        layer = TargetIsolationLayer.from_config(config)
        targets = list(args.targets) or list(layer.locator.discover_targets())
        if not targets:
            raise CLIError(
                f"no targets given and no artifacts found in {layer.locator.artifact_dir}",
                exit_code=int(ExitCode.CONFIG_ERROR),
            )
        outcomes = resolve_fleet(
            layer, targets, args.keys, max_workers=int(config["fleet"]["max_workers"])
        )
        fail_on_degraded = _fail_on_degraded(config)

    entries = [_fleet_entry(outcome, fail_on_degraded=fail_on_degraded) for outcome in outcomes]
    exit_code = max((int(entry["exit_code"]) for entry in entries), default=0)

    if _flag(args, "json"):
        _emit_json({"command": "fleet", "exit_code": exit_code, "targets": entries})
        return exit_code

    renderer = _get_renderer(args)
    renderer.table(
        ("TARGET", "STATUS", "EXIT"),
        [
            (str(entry["target_id"]), str(entry["status"]), str(entry["exit_code"]))
            for entry in entries
        ],
    )
    for entry in entries:
        for message in entry["warnings"]:
            renderer.warning(str(message))
        for message in entry["errors"]:
            renderer.error(str(message))
    return exit_code


def _cmd_seal(args: argparse.Namespace) -> int:
    renderer = _get_renderer(args)
    with _command_session(args) as config:
        target = validate_target_id(args.target)
        layer = TargetIsolationLayer.from_config(config)
        plaintext = _read_plaintext(Path(args.input))
        recipients = _recipients(args.recipient, config)
        if not recipients:
            raise CLIError(
                "no recipients: pass --recipient or set recipients.default",
                exit_code=int(ExitCode.CONFIG_ERROR),
            )
        unknown = sorted(name for name in plaintext if name not in layer.catalog.env_names)
        try:
            artifact = EnvelopeCodec().seal(plaintext, recipients, scope=target)
        finally:
            sealed_keys = sorted(plaintext)
            plaintext.clear()
        path = layer.locator.artifact_path(target)
        path.parent.mkdir(parents=True, exist_ok=True)
        atomic_write(path, artifact.data, mode=ARTIFACT_FILE_MODE)
        fingerprints = sorted(fingerprint(key) for key in recipients)
        structlog.get_logger(__name__).info(
            "artifact_sealed",
            target_id=target,
            path=path.as_posix(),
            keys=sealed_keys,
            recipients=fingerprints,
        )

    for name in unknown:
        renderer.warning(f"key {name!r} is not in the key table and will never be resolved")
    payload: dict[str, object] = {
        "command": "seal",
        "target_id": target,
        "path": path.as_posix(),
        "keys": sealed_keys,
        "recipients": fingerprints,
    }
    if _flag(args, "json"):
        _emit_json(payload)
        return int(ExitCode.SUCCESS)
    renderer.kv("Sealed", path.as_posix())
    renderer.kv("Keys", ", ".join(sealed_keys) or "(none)")
    renderer.kv("Recipients", ", ".join(fingerprints))
    return int(ExitCode.SUCCESS)


def _cmd_rotate(args: argparse.Namespace) -> int:
    with _command_session(args) as config:
        target = validate_target_id(args.target)
        layer = TargetIsolationLayer.from_config(config)
        path = layer.locator.artifact_path(target)
        artifact = EncryptedArtifact.read(path)
        old_key = layer.key_material_for(target, _key_material_arg(args))
        if old_key is None:
            raise CLIError(
                f"no key material for target {target!r}: pass --key-file or set "
                f"{config['key_material']['path_env']}",
                exit_code=int(ExitCode.CONFIG_ERROR),
            )
        outcome = RotationCoordinator().rotate(
            artifact,
            old_key,
            _recipients(args.recipient, config),
            mode=args.mode,
            verify_with=[KeyMaterialContext(Path(item)) for item in args.verify_key],
            expected_scope=target,
        )
        atomic_write(path, outcome.artifact.data, mode=ARTIFACT_FILE_MODE)

    renderer = _get_renderer(args)
    if outcome.warning is not None:
        renderer.warning(f"target {target!r}: {outcome.warning}")
    payload: dict[str, object] = {
        "command": "rotate",
        "target_id": target,
        "path": path.as_posix(),
        "mode": args.mode,
        "recipients": list(outcome.recipients),
        "verified_with": list(outcome.verified_with),
        "warning": outcome.warning,
    }
    if _flag(args, "json"):
        _emit_json(payload)
        return int(ExitCode.SUCCESS)
    renderer.kv("Rotated", path.as_posix())
    renderer.kv("Recipients", ", ".join(outcome.recipients))
    renderer.kv("Verified with", ", ".join(outcome.verified_with) or "(none)")
    return int(ExitCode.SUCCESS)


def _cmd_inspect(args: argparse.Namespace) -> int:
    with _command_session(args) as config:
        target = validate_target_id(args.target)
        layer = TargetIsolationLayer.from_config(config)
        path = layer.locator.artifact_path(target)
        artifact = EncryptedArtifact.read(path)
        try:
            header = EnvelopeCodec().inspect(artifact)
        except DecryptError as exc:
            raise CLIError(
                f"artifact for target {target!r} is malformed: {exc}",
                exit_code=int(ExitCode.RESOLUTION_FAILED),
            ) from exc

    matches = header.scope == target
    exit_code = int(ExitCode.SUCCESS if matches else ExitCode.SECURITY_ERROR)
    payload: dict[str, object] = {
        "command": "inspect",
        "target_id": target,
        "path": path.as_posix(),
        "scope": header.scope,
        "scope_matches": matches,
        "version": header.version,
        "recipients": list(header.fingerprints),
    }
    if _flag(args, "json"):
        _emit_json(payload)
        return exit_code

    renderer = _get_renderer(args)
    renderer.kv("Artifact", path.as_posix())
    renderer.kv("Scope", header.scope)
    renderer.kv("Envelope version", header.version)
    renderer.section("Recipients:")
    renderer.items(list(header.fingerprints))
    if not matches:
        renderer.error(f"artifact is scoped to {header.scope!r}, not {target!r}")
    return exit_code


def _cmd_audit(args: argparse.Namespace) -> int:
    config = _load_effective_config(args)
    pattern = placeholder_pattern(str(config["resolution"]["placeholder_format"]))
    try:
        result = scan_for_placeholders(args.paths, pattern, exclude=args.exclude)
    except OSError as exc:
        raise CLIError(
            f"placeholder audit failed: {exc}", exit_code=int(ExitCode.CONFIG_ERROR)
        ) from exc

    if _flag(args, "json"):
        sys.stdout.write(format_json(result))
    else:
        sys.stdout.write(format_text(result))
    return int(ExitCode.RESOLUTION_FAILED if result.findings else ExitCode.SUCCESS)


def _cmd_keys(args: argparse.Namespace) -> int:
    config = _load_effective_config(args)
    catalog = KeyCatalog.from_table(config["keys"])
    entries = [
        {"name": key.name, "env_var": catalog.env_var_for(key), "file_name": key.file_name}
        for key in catalog.keys
    ]
    if _flag(args, "json"):
        _emit_json({"command": "keys", "keys": entries})
        return int(ExitCode.SUCCESS)

    renderer = _get_renderer(args)
    renderer.table(
        ("KEY", "ENV VAR", "RUNTIME FILE"),
        [(entry["name"], entry["env_var"], entry["file_name"]) for entry in entries],
    )
    return int(ExitCode.SUCCESS)


def _cmd_keygen(args: argparse.Namespace) -> int:
    out = Path(args.out).expanduser()
    try:
        out.parent.mkdir(parents=True, exist_ok=True)
        public = write_private_key(out, overwrite=_flag(args, "force"))
    except FileExistsError as exc:
        raise CLIError(str(exc), exit_code=int(ExitCode.CONFIG_ERROR)) from exc
    except OSError as exc:
        raise CLIError(
            f"unable to write private key {out}: {exc}", exit_code=int(ExitCode.CONFIG_ERROR)
        ) from exc

    payload: dict[str, object] = {
        "command": "keygen",
        "private_key_path": out.as_posix(),
        "public_key": public_key_text(public),
        "fingerprint": fingerprint(public),
    }
    if _flag(args, "json"):
        _emit_json(payload)
        return int(ExitCode.SUCCESS)

    renderer = _get_renderer(args)
    renderer.kv("Private key", out.as_posix())
    renderer.kv("Public key", public_key_text(public))
    renderer.kv("Fingerprint", fingerprint(public))
    return int(ExitCode.SUCCESS)


def _cmd_config(args: argparse.Namespace) -> int:
    config = _load_effective_config(args)
    profile = _optional_str(getattr(args, "profile", None))
    redacted = effective_config(config)

    payload: dict[str, object] = {
        "command": "config",
        "active_profile": profile,
        "config": redacted,
    }

    if _flag(args, "json"):
        _emit_json(payload)
        return int(ExitCode.SUCCESS)

    renderer = _get_renderer(args)
    renderer.kv("Active profile", profile or "(default)")
    renderer.text(json.dumps(redacted, indent=2, sort_keys=True, ensure_ascii=False))
    return int(ExitCode.SUCCESS)


def _cmd_doctor(args: argparse.Namespace) -> int:
    checks: list[tuple[str, bool, str]] = []

    # 1. Config check
    config: dict[str, Any] | None = None
    try:
        config = _load_effective_config(args)
        checks.append(("config", True, "loaded successfully"))
    except CLIError as exc:
        checks.append(("config", False, str(exc)))

    if config is not None:
        # 2. Artifacts
        layer = TargetIsolationLayer.from_config(config)
        artifact_dir = layer.locator.artifact_dir
        if artifact_dir.is_dir():
            count = len(layer.locator.discover_targets())
            checks.append(("artifacts", True, f"{count} target artifact(s) in {artifact_dir}"))
        else:
            checks.append(("artifacts", False, f"directory not found: {artifact_dir}"))

        # 3. Key material named by the environment
        checks.append(_key_material_check(str(config["key_material"]["path_env"])))

        # 4. Default recipients
        recipients = list(config["recipients"]["default"])
        checks.append(("recipients", True, f"{len(recipients)} default recipient(s)"))

        # 5. Runtime directory parent
        runtime_parent = Path(config["paths"]["runtime_dir"]).parent
        if runtime_parent.is_dir():
            checks.append(("runtime_dir", True, f"parent exists: {runtime_parent}"))
        else:
            checks.append(("runtime_dir", False, f"parent directory not found: {runtime_parent}"))
    else:
        checks.append(("artifacts", False, "skipped (config failed)"))

    # 6. Required dependencies
    for dist_name in _REQUIRED_DISTRIBUTIONS:
        try:
            version = importlib.metadata.version(dist_name)
        except importlib.metadata.PackageNotFoundError:
            checks.append((f"dependency:{dist_name}", False, "not installed"))
        else:
            checks.append((f"dependency:{dist_name}", True, f"installed ({version})"))

    checks_payload: list[dict[str, object]] = [
        {"name": name, "status": "ok" if passed else "fail", "detail": detail}
        for name, passed, detail in checks
    ]
    payload: dict[str, object] = {"command": "doctor", "checks": checks_payload}

    if _flag(args, "json"):
        _emit_json(payload)
        return int(ExitCode.SUCCESS)

    renderer = _get_renderer(args)
    renderer.heading("fleet-secrets doctor")
    for name, passed, detail in checks:
        if passed:
            renderer.ok(f"{name}: {detail}")
        else:
            renderer.fail(f"{name}: {detail}")

    if all(passed for _, passed, _ in checks):
        renderer.text("\nAll checks passed.")
    else:
        renderer.text("\nSome checks failed. See details above.")
    return int(ExitCode.SUCCESS)


# ---------------------------------------------------------------------------
# Helpers: sessions and errors
# ---------------------------------------------------------------------------


@contextlib.contextmanager
def _command_session(
    args: argparse.Namespace, *, cli_overrides: Mapping[str, object] | None = None
) -> Iterator[dict[str, Any]]:
    """Load config, start a logging run, and map domain errors to ``CLIError``."""

    config = _load_effective_config(args, cli_overrides=cli_overrides)
    observability = config["observability"]
    try:
        setup_logging(
            observability, run_id=_new_run_id(), log_to_stderr=_flag(args, "verbose")
        )
    except OSError as exc:
        raise CLIError(
            f"unable to initialise logging in {observability['log_dir']}: {exc}",
            exit_code=int(ExitCode.CONFIG_ERROR),
        ) from exc
    try:
        with correlation_scope(command=str(args.command)), _translate_errors():
            yield config
    finally:
        shutdown_logging()


@contextlib.contextmanager
def _translate_errors() -> Iterator[None]:
    try:
        yield
    except (TargetMismatch, RotationError) as exc:
        raise CLIError(str(exc), exit_code=int(ExitCode.SECURITY_ERROR)) from exc
    except CorruptedArtifactError as exc:
        raise CLIError(str(exc), exit_code=int(ExitCode.RESOLUTION_FAILED)) from exc
    except InvariantViolation as exc:
        raise CLIError(str(exc), exit_code=int(ExitCode.INTERNAL_ERROR)) from exc
    except (TargetError, KeyFormatError, ValueError) as exc:
        raise CLIError(str(exc), exit_code=int(ExitCode.CONFIG_ERROR)) from exc
    except OSError as exc:
        detail = f"{exc.strerror}: {exc.filename}" if exc.filename else str(exc)
        raise CLIError(detail, exit_code=int(ExitCode.CONFIG_ERROR)) from exc


def _emit_json(payload: Mapping[str, object]) -> None:
    """Emit a JSON payload to stdout with deterministic formatting."""

    print(json.dumps(payload, sort_keys=True, separators=(",", ":"), ensure_ascii=False))


def _get_renderer(args: argparse.Namespace) -> CLIRenderer:
    return create_renderer(no_color=_flag(args, "no_color"))


def _render_verdict(renderer: CLIRenderer, verdict: BuildVerdict) -> None:
    for message in verdict.warnings:
        renderer.warning(message)
    for message in verdict.errors:
        renderer.error(message)


def _render_report(renderer: CLIRenderer, report: ResolutionReport, *, show_values: bool) -> None:
    renderer.kv("Target", report.target_id)
    renderer.status("Status", report.status.value)
    if report.store_failure:
        renderer.kv("Store failure", report.store_failure)
    headers: tuple[str, ...] = ("KEY", "SOURCE", "DETAIL")
    if show_values:
        headers = (*headers, "VALUE")
    rows: list[tuple[str, ...]] = []
    for key, result in report.results.items():
        row: tuple[str, ...] = (
            key.name,
            result.source.value if result.source is not None else "unresolved",
            result.detail or "",
        )
        if show_values:
            row = (*row, result.value or "")
        rows.append(row)
    renderer.table(headers, rows)


def _fleet_entry(outcome: FleetOutcome, *, fail_on_degraded: bool) -> dict[str, object]:
    if outcome.report is not None:
        verdict = evaluate_build(outcome.report, fail_on_degraded=fail_on_degraded)
        return {
            "target_id": outcome.target_id,
            "status": outcome.report.status.value,
            "exit_code": verdict.exit_code,
            "warnings": list(verdict.warnings),
            "errors": list(verdict.errors),
        }
    error = outcome.error
    return {
        "target_id": outcome.target_id,
        "status": "error",
        "exit_code": int(_exit_code_for_error(error)),
        "warnings": [],
        "errors": [f"target {outcome.target_id!r}: {error}"],
    }


def _exit_code_for_error(error: Exception | None) -> ExitCode:
    if isinstance(error, TargetMismatch):
        return ExitCode.SECURITY_ERROR
    if isinstance(error, CorruptedArtifactError):
        return ExitCode.RESOLUTION_FAILED
    if isinstance(error, TargetError):
        return ExitCode.CONFIG_ERROR
    return ExitCode.INTERNAL_ERROR


def _key_material_check(path_env: str) -> tuple[str, bool, str]:
    context = KeyMaterialContext.from_environ(os.environ, path_env)
    if context is None:
        return ("key_material", True, f"{path_env} not set (store skipped unless per-target keys)")
    try:
        load_private_key(context.path)
    except KeyFormatError as exc:
        return ("key_material", False, str(exc))
    except OSError as exc:
        return ("key_material", False, f"{path_env} -> unreadable: {exc.strerror or exc}")
    return ("key_material", True, f"{path_env} -> X25519 private key")


# ---------------------------------------------------------------------------
# Helpers: config and inputs
# ---------------------------------------------------------------------------


def _load_effective_config(
    args: argparse.Namespace, *, cli_overrides: Mapping[str, object] | None = None
) -> dict[str, Any]:
    config_path = _optional_str(getattr(args, "config_path", None))
    profile = _optional_str(getattr(args, "profile", None))

    try:
        loaded = load_config(config_path, profile=profile, cli_overrides=cli_overrides)
    except (ConfigLoadError, ConfigValidationError) as exc:
        raise CLIError(str(exc), exit_code=int(ExitCode.CONFIG_ERROR)) from exc

    return {key: value for key, value in loaded.items()}


def _key_material_arg(args: argparse.Namespace) -> KeyMaterialContext | None:
    raw = _optional_str(getattr(args, "key_file", None))
    return None if raw is None else KeyMaterialContext(Path(raw))


def _runtime_dir(args: argparse.Namespace, config: Mapping[str, Any]) -> Path:
    raw = _optional_str(getattr(args, "runtime_dir", None))
    if raw is not None:
        return Path(raw).expanduser().resolve()
    return Path(config["paths"]["runtime_dir"])


def _fail_on_degraded(config: Mapping[str, Any]) -> bool:
    return bool(config["resolution"]["fail_on_degraded"])


def _recipients(raw_items: Sequence[str], config: Mapping[str, Any]) -> list[PublicKey]:
    """Parse ``--recipient`` values (key text or key file); fall back to config."""

    items = list(raw_items) or list(config["recipients"]["default"])
    parsed: list[PublicKey] = []
    for item in items:
        if "-----BEGIN" in item:
            parsed.append(load_public_key(item))
            continue
        candidate = Path(item).expanduser()
        if candidate.is_file():
            parsed.append(load_public_key_file(candidate))
        else:
            parsed.append(load_public_key(item))
    return parsed


def _read_plaintext(path: Path) -> dict[str, str]:
    try:
        with path.open("r", encoding="utf-8") as handle:
            loaded = yaml.safe_load(handle)
    except yaml.YAMLError as exc:
        raise CLIError(
            f"plaintext input {path} is not valid YAML", exit_code=int(ExitCode.CONFIG_ERROR)
        ) from exc
    if loaded is None:
        loaded = {}
    if not isinstance(loaded, dict):
        raise CLIError(
            f"plaintext input {path} must be a mapping of key -> value",
            exit_code=int(ExitCode.CONFIG_ERROR),
        )
    plaintext: dict[str, str] = {}
    for name, value in loaded.items():
        if not isinstance(name, str):
            raise CLIError(
                f"plaintext input {path}: keys must be strings",
                exit_code=int(ExitCode.CONFIG_ERROR),
            )
        plaintext[name] = _scalar_text(path, name, value)
    return plaintext


def _scalar_text(path: Path, name: str, value: object) -> str:
    if value is None:
        return ""
    if isinstance(value, bool):
        return "true" if value else "false"
    if isinstance(value, (str, int, float)):
        return str(value)
    raise CLIError(
        f"plaintext input {path}: value for {name!r} must be a scalar",
        exit_code=int(ExitCode.CONFIG_ERROR),
    )


def _new_run_id() -> str:
    stamp = time.strftime("%Y%m%dT%H%M%SZ", time.gmtime())
    return f"{stamp}-{uuid.uuid4().hex[:8]}"


def _optional_str(value: object) -> str | None:
    if not isinstance(value, str):
        return None
    stripped = value.strip()
    return stripped or None


def _flag(args: argparse.Namespace, name: str) -> bool:
    return bool(getattr(args, name, False))


__all__ = ["CLIError", "build_parser", "main", "run_cli"]
