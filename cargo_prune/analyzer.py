"""Dependency usage analyzer.

Reconciles the references collected from a package's sources against the
dependencies its manifest declares, per target kind, and turns the
differences into findings. Workspace-wide checks (``[workspace.dependencies]``
and workspace-level ignores) run once every package report is in.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from pathlib import Path

import pathspec
import structlog

from cargo_prune.models.finding import Code, Finding, Fix, FixAction, Location
from cargo_prune.models.workspace import (
    Dependency,
    DepKind,
    FeatureRefKind,
    Package,
    Span,
    Workspace,
    normalize,
)
from cargo_prune.scanner import PackageSources

log = structlog.get_logger("cargo_prune.analyzer")


@dataclass
class PackageReport:
    """Everything one package task produces."""

    package: Package
    findings: list[Finding] = field(default_factory=list)
    fixes_allowed: bool = True
    kept_keys: set[str] = field(default_factory=set)  # declared keys not slated for removal
    used_workspace_ignores: set[str] = field(default_factory=set)
    used_workspace_paths: set[str] = field(default_factory=set)


@dataclass
class Usage:
    """Normalized identifiers referenced from each dependency table's targets."""

    normal: set[str] = field(default_factory=set)
    dev: set[str] = field(default_factory=set)
    build: set[str] = field(default_factory=set)
    features: set[str] = field(default_factory=set)  # referenced by `cfg(feature = ...)`

    def bucket(self, kind: DepKind) -> set[str]:
        return {DepKind.NORMAL: self.normal, DepKind.DEV: self.dev, DepKind.BUILD: self.build}[kind]

    @property
    def all(self) -> set[str]:
        return self.normal | self.dev | self.build


def collect_usage(
    package: Package,
    sources: PackageSources,
    expanded: dict[DepKind, set[str]] | None = None,
) -> Usage:
    usage = Usage()
    for target, files in sources.target_files.items():
        bucket = usage.bucket(target.kind.bucket)
        for path in files:
            bucket.update(normalize(n) for n in sources.parsed[path].imports)
    for parsed in sources.parsed.values():
        usage.features |= parsed.features
    if expanded:
        for kind, names in expanded.items():
            usage.bucket(kind).update(normalize(n) for n in names)
    return usage


def enabled_features(package: Package, code_features: set[str]) -> set[str]:
    """Features reachable from ``default`` and from features named in code."""
    enabled: set[str] = set()
    queue = ["default", *sorted(code_features)]
    while queue:
        name = queue.pop()
        if name in enabled:
            continue
        enabled.add(name)
        for value in package.features.get(name, ()):
            if ":" not in value and "/" not in value:
                queue.append(value)
    return enabled


def _past_comments(text: str, span: Span) -> int:
    """Offset of the first line in ``span`` that is not blank or a comment."""
    pos = span.start
    while pos < span.end:
        eol = text.find("\n", pos, span.end)
        end = span.end if eol == -1 else eol + 1
        line = text[pos:end].strip()
        if line and not line.startswith("#"):
            break
        pos = end
    return pos


def _key_location(text: str, spans: tuple[Span, ...], key: str, header: Span | None) -> Span:
    if header is not None:
        return header
    span = spans[0]
    idx = text.find(key, _past_comments(text, span), span.end)
    if idx == -1:
        return span
    return Span(idx, idx + len(key))


def _quoted_location(text: str, value: str) -> Span | None:
    for quote in ('"', "'"):
        idx = text.find(f"{quote}{value}{quote}")
        if idx != -1:
            return Span(idx, idx + len(value) + 2)
    return None


class DependencyAnalyzer:
    def __init__(self, workspace: Workspace) -> None:
        self.workspace = workspace

    # ── per package ──

    def analyze_package(
        self,
        package: Package,
        sources: PackageSources,
        expanded: dict[DepKind, set[str]] | None = None,
        expand_errors: list[Finding] | None = None,
    ) -> PackageReport:
        report = PackageReport(package=package)

        for parsed in sources.errors:
            err = parsed.error
            report.findings.append(
                Finding(
                    code=Code.PARSE_ERROR,
                    message=err.reason,
                    package=package.name,
                    file=err.path,
                    location=Location(err.offset, err.length, err.line, err.column),
                    help=(
                        "fixes for this package are disabled until the file parses; "
                        "the tree-sitter-rust grammar may lag the newest Rust syntax"
                    ),
                )
            )
        if expand_errors:
            report.findings.extend(expand_errors)
        report.fixes_allowed = not any(
            f.code in (Code.PARSE_ERROR, Code.EXPAND_ERROR) for f in report.findings
        )

        usage = collect_usage(package, sources, expanded)
        enabled = enabled_features(package, usage.features)
        suppressed_by: set[str] = set()
        removed: set[tuple[str, tuple[str, ...]]] = set()

        for dep in package.dependencies:
            finding = self._check_dependency(package, dep, usage, enabled, report.fixes_allowed)
            if finding is None:
                continue
            matched = self._ignore_match(package, dep)
            if matched:
                suppressed_by |= matched
                continue
            if finding.fix is not None and finding.fix.action is FixAction.REMOVE:
                removed.add((dep.key, dep.table))
            report.findings.append(finding)

        report.kept_keys = {
            d.key for d in package.dependencies if (d.key, d.table) not in removed
        }
        report.findings.extend(self._package_ignores(package, suppressed_by))
        report.used_workspace_ignores = {
            n for n in package.workspace_ignore.names if normalize(n) in suppressed_by
        }
        report.findings.extend(self._file_findings(package, sources, report))

        log.debug(
            "analyzer.package_done",
            package=package.name,
            findings=len(report.findings),
            fixes_allowed=report.fixes_allowed,
        )
        return report

    def _check_dependency(
        self,
        package: Package,
        dep: Dependency,
        usage: Usage,
        enabled: set[str],
        fixes_allowed: bool,
    ) -> Finding | None:
        name = dep.import_name
        if dep.kind is DepKind.NORMAL:
            in_normal = name in usage.normal
            in_dev = name in usage.dev
            in_build = name in usage.build
            if in_normal or (in_dev and in_build):
                return None
            if in_dev or in_build:
                destination = DepKind.DEV if in_dev else DepKind.BUILD
                return self._misplaced(package, dep, destination, enabled, fixes_allowed)
        elif dep.kind is DepKind.DEV:
            if name in usage.normal or name in usage.dev:
                return None
        elif name in usage.build:
            return None

        feature_only = bool(dep.optional or dep.features)
        if feature_only and self._enabled_by_feature(package, dep, enabled):
            return None

        ambiguous = sorted(n for n in usage.all if n != name and n.casefold() == name.casefold())
        code = Code.UNUSED_OPTIONAL_DEPENDENCY if feature_only else Code.UNUSED_DEPENDENCY
        if ambiguous:
            help_text = (
                f"`{ambiguous[0]}` is referenced and differs only in case; "
                "confirm manually before removing"
            )
        elif dep.features:
            help_text = "remove this dependency and its entries in [features]"
        else:
            help_text = "remove this dependency"
        fix = None
        if fixes_allowed and not ambiguous:
            fix = Fix(action=FixAction.REMOVE, dependency=dep.key, table=dep.table)
        return Finding(
            code=code,
            message=f"unused dependency `{dep.key}`",
            package=package.name,
            file=package.manifest_path,
            location=Location.from_span(
                package.manifest_text,
                _key_location(package.manifest_text, dep.spans, dep.key, dep.header),
            ),
            help=help_text,
            fix=fix,
        )

    def _misplaced(
        self,
        package: Package,
        dep: Dependency,
        destination: DepKind,
        enabled: set[str],
        fixes_allowed: bool,
    ) -> Finding:
        if destination is DepKind.DEV:
            where = "dev targets (tests, examples, benches)"
        else:
            where = "the build script"
        location = Location.from_span(
            package.manifest_text,
            _key_location(package.manifest_text, dep.spans, dep.key, dep.header),
        )
        if dep.optional or dep.features:
            return Finding(
                code=Code.MISPLACED_OPTIONAL_DEPENDENCY,
                message=f"`{dep.key}` is only used in {where} but is optional or feature-gated",
                package=package.name,
                file=package.manifest_path,
                location=location,
                help=f"[{destination.table}] cannot hold optional dependencies; move it by hand",
            )
        fix = None
        if fixes_allowed:
            fix = Fix(
                action=FixAction.MOVE,
                dependency=dep.key,
                table=dep.table,
                destination=destination,
            )
        return Finding(
            code=Code.MISPLACED_DEPENDENCY,
            message=f"`{dep.key}` is only used in {where}",
            package=package.name,
            file=package.manifest_path,
            location=location,
            help=f"move this dependency to [{destination.table}]",
            fix=fix,
        )

    def _enabled_by_feature(self, package: Package, dep: Dependency, enabled: set[str]) -> bool:
        explicit = False
        for ref in package.feature_refs:
            if ref.dep_key != dep.key:
                continue
            if ref.kind is FeatureRefKind.EXPLICIT:
                explicit = True
            if ref.kind is not FeatureRefKind.WEAK and ref.feature in enabled:
                return True
        # the implicit feature of an optional dependency, e.g. `cfg(feature = "serde")`
        return (
            dep.optional
            and not explicit
            and dep.key not in package.features
            and dep.key in enabled
        )

    def _ignore_match(self, package: Package, dep: Dependency) -> set[str]:
        names = {dep.import_name, normalize(dep.key), normalize(dep.package_name)}
        return names & package.ignored_names

    def _package_ignores(self, package: Package, suppressed_by: set[str]) -> list[Finding]:
        findings = []
        declared = set()
        for dep in package.dependencies:
            declared |= {dep.import_name, normalize(dep.key), normalize(dep.package_name)}
        for name in package.ignore.names:
            span = _quoted_location(package.manifest_text, name)
            location = Location.from_span(package.manifest_text, span) if span else None
            if normalize(name) not in declared:
                findings.append(
                    Finding(
                        code=Code.UNKNOWN_IGNORE,
                        message=f"`{name}` is ignored but is not a dependency of this package",
                        package=package.name,
                        file=package.manifest_path,
                        location=location,
                        help="remove it from `ignored`",
                    )
                )
            elif normalize(name) not in suppressed_by:
                findings.append(
                    Finding(
                        code=Code.REDUNDANT_IGNORE,
                        message=f"`{name}` is ignored but is used",
                        package=package.name,
                        file=package.manifest_path,
                        location=location,
                        help="remove it from `ignored`",
                    )
                )
        return findings

    def _file_findings(
        self, package: Package, sources: PackageSources, report: PackageReport
    ) -> list[Finding]:
        findings = []
        package_specs = _path_specs(package.ignore.paths)
        workspace_specs = _path_specs(package.workspace_ignore.paths)
        matched_package: set[str] = set()

        for path in sources.unlinked:
            rel_pkg = _relative(path, package.directory)
            rel_ws = _relative(path, self.workspace.root)
            hits = _matching(package_specs, rel_pkg)
            ws_hits = _matching(workspace_specs, rel_ws)
            matched_package |= hits
            report.used_workspace_paths |= ws_hits
            if hits or ws_hits:
                continue
            findings.append(
                Finding(
                    code=Code.UNLINKED_FILE,
                    message=f"`{rel_pkg or path}` is not linked to any target",
                    package=package.name,
                    file=path,
                    help="delete the file or add it to `ignored-paths`",
                )
            )

        roots = {t.root for t in package.targets}
        for path in sorted(sources.reachable):
            parsed = sources.parsed.get(path)
            if parsed is None or parsed.error is not None or path in roots:
                continue
            if parsed.is_empty:
                findings.append(
                    Finding(
                        code=Code.EMPTY_FILE,
                        message=f"`{_relative(path, package.directory) or path}` contains no items",
                        package=package.name,
                        file=path,
                        help="delete the file and its `mod` declaration",
                    )
                )

        for pattern in package.ignore.paths:
            if pattern in matched_package:
                continue
            span = _quoted_location(package.manifest_text, pattern)
            findings.append(
                Finding(
                    code=Code.REDUNDANT_IGNORE_PATH,
                    message=f"`{pattern}` in `ignored-paths` matches no unlinked file",
                    package=package.name,
                    file=package.manifest_path,
                    location=Location.from_span(package.manifest_text, span) if span else None,
                    help="remove it from `ignored-paths`",
                )
            )
        return findings

    # ── workspace level ──

    def analyze_workspace(self, reports: list[PackageReport]) -> list[Finding]:
        """Checks that need every package's result; run after the join."""
        ws = self.workspace
        findings: list[Finding] = []
        text = ws.manifest_text
        ignored = {normalize(n) for n in ws.ignore.names}
        suppressed: set[str] = set()
        for r in reports:
            suppressed |= {normalize(n) for n in r.used_workspace_ignores}

        if len(ws.packages) > 1:
            kept: set[str] = set()
            for r in reports:
                kept |= {
                    d.key for d in r.package.dependencies if d.workspace and d.key in r.kept_keys
                }
            for wdep in ws.dependencies:
                if wdep.key in kept:
                    continue
                names = {normalize(wdep.key), normalize(wdep.package_name)}
                if names & ignored:
                    suppressed |= names & ignored
                    continue
                findings.append(
                    Finding(
                        code=Code.UNUSED_WORKSPACE_DEPENDENCY,
                        message=f"workspace dependency `{wdep.key}` is not used by any member",
                        file=ws.manifest_path,
                        location=Location.from_span(
                            text, _key_location(text, wdep.spans, wdep.key, wdep.header)
                        ),
                        help="remove it from [workspace.dependencies]",
                        fix=Fix(
                            action=FixAction.REMOVE,
                            dependency=wdep.key,
                            table=("workspace", "dependencies"),
                        ),
                    )
                )

        declared: set[str] = {normalize(d.key) for d in ws.dependencies}
        declared |= {normalize(d.package_name) for d in ws.dependencies}
        for pkg in ws.packages:
            for dep in pkg.dependencies:
                declared |= {dep.import_name, normalize(dep.key), normalize(dep.package_name)}

        for name in ws.ignore.names:
            span = _quoted_location(text, name)
            location = Location.from_span(text, span) if span else None
            if normalize(name) not in declared:
                code = Code.UNKNOWN_IGNORE
                message = f"`{name}` is ignored but no member depends on it"
            elif normalize(name) not in suppressed:
                code = Code.REDUNDANT_IGNORE
                message = f"`{name}` is ignored but is used"
            else:
                continue
            findings.append(
                Finding(
                    code=code,
                    message=message,
                    file=ws.manifest_path,
                    location=location,
                    help="remove it from `workspace.metadata.cargo-prune.ignored`",
                )
            )

        matched_paths: set[str] = set()
        for r in reports:
            matched_paths |= r.used_workspace_paths
        for pattern in ws.ignore.paths:
            if pattern in matched_paths:
                continue
            span = _quoted_location(text, pattern)
            findings.append(
                Finding(
                    code=Code.REDUNDANT_IGNORE_PATH,
                    message=f"`{pattern}` in `ignored-paths` matches no unlinked file",
                    file=ws.manifest_path,
                    location=Location.from_span(text, span) if span else None,
                    help="remove it from `workspace.metadata.cargo-prune.ignored-paths`",
                )
            )
        return findings


def _relative(path: Path, base: Path) -> str | None:
    try:
        return path.relative_to(base).as_posix()
    except ValueError:
        return None


def _path_specs(patterns: tuple[str, ...]) -> dict[str, pathspec.PathSpec]:
    return {p: pathspec.PathSpec.from_lines("gitwildmatch", [p]) for p in patterns}


def _matching(specs: dict[str, pathspec.PathSpec], rel: str | None) -> set[str]:
    if not rel:
        return set()
    return {p for p, spec in specs.items() if spec.match_file(rel)}
