"""Prune orchestrator: load, analyze packages in parallel, check the workspace, fix."""

from __future__ import annotations

from concurrent.futures import ThreadPoolExecutor, as_completed
from dataclasses import dataclass, field

import structlog

from cargo_prune.analyzer import DependencyAnalyzer, PackageReport
from cargo_prune.config import PruneOptions
from cargo_prune.core.logging import package_context
from cargo_prune.editor import ManifestEditor, package_requests, workspace_requests
from cargo_prune.exceptions import FatalLoadError, ManifestEditError
from cargo_prune.expand import expand_package
from cargo_prune.loader import WorkspaceLoader
from cargo_prune.metadata import CargoMetadata, load_metadata, load_metadata_file
from cargo_prune.models.finding import Code, Finding
from cargo_prune.models.workspace import Package, Workspace
from cargo_prune.progress import ProgressTracker
from cargo_prune.reporter import exit_code, sort_findings
from cargo_prune.scanner import SourceScanner

log = structlog.get_logger("cargo_prune.orchestrator")


@dataclass
class PruneResult:
    """Orchestrator return value."""

    workspace: Workspace
    findings: list[Finding] = field(default_factory=list)
    reports: list[PackageReport] = field(default_factory=list)

    @property
    def exit_code(self) -> int:
        return exit_code(self.findings)


class PruneOrchestrator:
    """
    Run one prune pass over a Cargo workspace.

    Phase 1: load       cargo metadata + manifests -> frozen Workspace
    Phase 2: analyze    one task per package: scan, expand, analyze, member fixes
    Phase 3: workspace  [workspace.dependencies] and workspace-level ignores
    Phase 4: fix        root manifest edits, serialized after the join
    """

    def __init__(self, options: PruneOptions) -> None:
        self.options = options
        self.progress = ProgressTracker()

    def _new_progress(self) -> ProgressTracker:
        """Fresh tracker for each run, keeping the callbacks registered so far."""
        tracker = ProgressTracker()
        tracker.callbacks.extend(self.progress.callbacks)
        return tracker

    def run(self) -> PruneResult:
        progress = self.progress = self._new_progress()
        opts = self.options

        progress.start_phase("load")
        try:
            workspace = WorkspaceLoader(self._load_metadata()).load()
            selected = self._select(workspace)
        except FatalLoadError as e:
            progress.fail_phase("load", str(e))
            raise
        progress.complete_phase(
            "load",
            detail=f"packages={len(workspace.packages)}, selected={len(selected)}",
        )

        result = PruneResult(workspace=workspace)
        scanner = SourceScanner(workspace)
        analyzer = DependencyAnalyzer(workspace)

        progress.start_phase("analyze", total=len(selected))
        with ThreadPoolExecutor(max_workers=opts.jobs) as pool:
            futures = {
                pool.submit(self._run_package, scanner, analyzer, pkg): pkg for pkg in selected
            }
            for future in as_completed(futures):
                pkg = futures[future]
                try:
                    report = future.result()
                except Exception as e:
                    log.error("orchestrator.package_failed", package=pkg.name, exc_info=True)
                    report = _failed_report(pkg, e)
                result.reports.append(report)
                progress.advance("analyze", pkg.name)
        result.reports.sort(key=lambda r: r.package.name)
        for report in result.reports:
            result.findings.extend(report.findings)
        progress.complete_phase("analyze", detail=f"findings={len(result.findings)}")

        workspace_findings: list[Finding] = []
        if opts.filtered:
            # member usage outside the selection is unknown
            progress.skip_phase("workspace", "package filter active")
        else:
            progress.start_phase("workspace")
            workspace_findings = analyzer.analyze_workspace(result.reports)
            result.findings.extend(workspace_findings)
            progress.complete_phase("workspace", detail=f"findings={len(workspace_findings)}")

        if opts.fix:
            progress.start_phase("fix")
            try:
                conflicts = self._fix_root(workspace, result.reports, workspace_findings)
            except ManifestEditError as e:
                progress.fail_phase("fix", str(e))
                raise
            result.findings.extend(conflicts)
            progress.complete_phase("fix", detail=f"conflicts={len(conflicts)}")
        else:
            progress.skip_phase("fix", "fix mode off")

        result.findings = sort_findings(result.findings)
        log.info(
            "orchestrator.done",
            packages=len(selected),
            findings=len(result.findings),
            exit_code=result.exit_code,
        )
        return result

    def _load_metadata(self) -> CargoMetadata:
        if self.options.metadata_file is not None:
            return load_metadata_file(self.options.metadata_file)
        path = self.options.path
        return load_metadata(path.parent if path.is_file() else path)

    def _select(self, workspace: Workspace) -> list[Package]:
        names = {p.name for p in workspace.packages}
        for name in self.options.packages:
            if name not in names:
                raise FatalLoadError(f"package `{name}` is not a member of the workspace")
        return [p for p in workspace.packages if self.options.selects(p.name)]

    def _run_package(
        self,
        scanner: SourceScanner,
        analyzer: DependencyAnalyzer,
        package: Package,
    ) -> PackageReport:
        """One package task. Touches only the package's own files."""
        with package_context(package.name):
            return self._analyze_package(scanner, analyzer, package)

    def _analyze_package(
        self,
        scanner: SourceScanner,
        analyzer: DependencyAnalyzer,
        package: Package,
    ) -> PackageReport:
        sources = scanner.scan(package)
        expanded, expand_errors = None, None
        if self.options.expand:
            expanded, expand_errors = expand_package(package)
        report = analyzer.analyze_package(package, sources, expanded, expand_errors)

        # the root manifest is shared with [workspace.dependencies]; fixed after the join
        if self.options.fix and report.fixes_allowed and not package.is_root:
            requests = package_requests(package, report.findings)
            editor = ManifestEditor(package.manifest_path, package.manifest_text)
            try:
                outcome = editor.apply(requests)
            except ManifestEditError as e:
                log.warning("orchestrator.write_failed", package=package.name, error=str(e))
                report.findings.append(
                    Finding(
                        code=Code.WRITE_ERROR,
                        message=str(e),
                        package=package.name,
                        file=package.manifest_path,
                        help="check that the manifest is writable",
                    )
                )
            else:
                report.findings.extend(outcome.conflicts)
        return report

    def _fix_root(
        self,
        workspace: Workspace,
        reports: list[PackageReport],
        workspace_findings: list[Finding],
    ) -> list[Finding]:
        requests = workspace_requests(workspace, workspace_findings)
        for report in reports:
            if report.package.is_root and report.fixes_allowed:
                requests.extend(package_requests(report.package, report.findings))
        if not requests:
            return []
        editor = ManifestEditor(workspace.manifest_path, workspace.manifest_text)
        outcome = editor.apply(requests)
        log.debug(
            "orchestrator.root_fixed",
            applied=len(outcome.applied),
            conflicts=len(outcome.conflicts),
        )
        return outcome.conflicts


def _failed_report(package: Package, error: Exception) -> PackageReport:
    finding = Finding(
        code=Code.INTERNAL_ERROR,
        message=f"internal error while analyzing `{package.name}`: {error}",
        package=package.name,
        file=package.manifest_path,
        help="re-run with --verbose and report the traceback",
    )
    return PackageReport(
        package=package,
        findings=[finding],
        fixes_allowed=False,
        kept_keys={d.key for d in package.dependencies},
    )
