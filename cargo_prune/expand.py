"""Expand mode: collect references from ``-Zunpretty=expanded`` output.

Needs a nightly toolchain. Each target is expanded on its own and its
references go to the target's dependency bucket.
"""

from __future__ import annotations

import subprocess

import structlog

from cargo_prune.exceptions import ExpansionError
from cargo_prune.metadata import cargo_binary
from cargo_prune.models.finding import Code, Finding
from cargo_prune.models.workspace import DepKind, Package, Target, TargetKind
from cargo_prune.source_parser import parse_expanded

log = structlog.get_logger("cargo_prune.expand")

_TARGET_FLAGS = {
    TargetKind.BIN: "--bin",
    TargetKind.EXAMPLE: "--example",
    TargetKind.TEST: "--test",
    TargetKind.BENCH: "--bench",
}


def expand_command(target: Target) -> list[str]:
    if target.kind is TargetKind.LIB:
        selector = "--lib"
    else:
        selector = f"{_TARGET_FLAGS[target.kind]}={target.name}"
    return [
        cargo_binary(),
        "rustc",
        selector,
        "--all-features",
        "--profile=check",
        "--color=never",
        "--",
        "-Zunpretty=expanded",
    ]


def expand_target(package: Package, target: Target) -> str:
    """Return the expanded source of one target."""
    cmd = expand_command(target)
    log.debug("expand.run", package=package.name, target=target.name, cmd=" ".join(cmd))
    try:
        result = subprocess.run(
            cmd,
            cwd=package.directory,
            capture_output=True,
            text=True,
        )
    except OSError as e:
        raise ExpansionError(target.name, f"failed to run {cmd[0]}: {e}") from e
    if result.returncode != 0:
        detail = result.stderr.strip().splitlines()
        raise ExpansionError(target.name, detail[-1] if detail else f"exit {result.returncode}")
    if not result.stdout.strip():
        raise ExpansionError(target.name, "cargo produced no output")
    return result.stdout


def expand_package(package: Package) -> tuple[dict[DepKind, set[str]], list[Finding]]:
    """Expand every target of ``package`` except its build script."""
    expanded: dict[DepKind, set[str]] = {}
    errors: list[Finding] = []
    for target in package.targets:
        if target.kind is TargetKind.BUILD_SCRIPT:
            continue
        try:
            source = expand_target(package, target)
        except ExpansionError as e:
            log.warning("expand.failed", package=package.name, target=target.name, error=e.detail)
            errors.append(
                Finding(
                    code=Code.EXPAND_ERROR,
                    message=str(e),
                    package=package.name,
                    file=target.root,
                    help="fixes for this package are disabled; expansion needs a nightly toolchain",
                )
            )
            continue
        parsed = parse_expanded(source, target.root)
        expanded.setdefault(target.kind.bucket, set()).update(parsed.imports)
    return expanded, errors
