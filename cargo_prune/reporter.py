"""Diagnostics reporter: ordering, rendering and exit status."""

from __future__ import annotations

from pathlib import Path

import click

from cargo_prune.models.finding import Finding, Severity
from cargo_prune.schemas import FindingOut, FixOut, LocationOut, Report, Summary

EXIT_OK = 0
EXIT_FINDINGS = 1
EXIT_FATAL = 2


def sort_findings(findings: list[Finding]) -> list[Finding]:
    return sorted(findings, key=lambda f: f.sort_key())


def display_path(path: Path | None, root: Path) -> str | None:
    if path is None:
        return None
    try:
        return path.relative_to(root).as_posix()
    except ValueError:
        return path.as_posix()


def summarize(findings: list[Finding]) -> Summary:
    return Summary(
        errors=sum(1 for f in findings if f.severity is Severity.ERROR),
        warnings=sum(1 for f in findings if f.severity is Severity.WARNING),
        fixes=sum(1 for f in findings if f.fix is not None and f.fix.applied),
    )


def build_report(findings: list[Finding], root: Path) -> Report:
    items = []
    for f in sort_findings(findings):
        fix = None
        if f.fix is not None:
            fix = FixOut(
                action=f.fix.action.value,
                dependency=f.fix.dependency,
                table=f.fix.table_name,
                destination=f.fix.destination.table if f.fix.destination else None,
                applied=f.fix.applied,
            )
        items.append(
            FindingOut(
                code=f.code.value,
                severity=f.severity.value,
                message=f.message,
                package=f.package,
                file=display_path(f.file, root),
                location=(
                    LocationOut(offset=f.location.offset, length=f.location.length)
                    if f.location
                    else None
                ),
                help=f.help,
                fix=fix,
            )
        )
    return Report(summary=summarize(findings), findings=items)


def render_json(findings: list[Finding], root: Path) -> str:
    return build_report(findings, root).model_dump_json(indent=2)


def format_finding(f: Finding, root: Path) -> str:
    where = display_path(f.file, root) or "<workspace>"
    if f.location is not None:
        where = f"{where}:{f.location.line}:{f.location.column}"
    line = f"{f.severity.value}[{f.code.value}] {where}: {f.message}"
    if f.help:
        line += f" (help: {f.help})"
    if f.fix is not None and f.fix.applied:
        line += " [fixed]"
    return line


def render_human(findings: list[Finding], root: Path) -> list[str]:
    lines = [format_finding(f, root) for f in sort_findings(findings)]
    summary = summarize(findings)
    if not findings:
        lines.append("cargo-prune: no issues found")
    else:
        lines.append(
            f"cargo-prune: {summary.errors} error(s), {summary.warnings} warning(s), "
            f"{summary.fixes} fix(es) applied"
        )
    return lines


def emit(findings: list[Finding], root: Path, output_format: str) -> None:
    if output_format == "json":
        click.echo(render_json(findings, root))
        return
    for line in render_human(findings, root):
        click.echo(line)


def exit_code(findings: list[Finding]) -> int:
    """0 when nothing was found, 1 when anything was found (fixed or not)."""
    return EXIT_FINDINGS if findings else EXIT_OK
