"""cargo-prune: find unused and misplaced Cargo dependencies and unlinked source files."""

__version__ = "0.4.0"

from cargo_prune.analyzer import DependencyAnalyzer, PackageReport
from cargo_prune.config import PruneOptions
from cargo_prune.editor import ManifestEditor
from cargo_prune.loader import WorkspaceLoader
from cargo_prune.models.finding import Code, Finding, Fix, FixAction, Severity
from cargo_prune.orchestrator import PruneOrchestrator, PruneResult
from cargo_prune.scanner import SourceScanner
from cargo_prune.source_parser import ImportReference, parse_source

__all__ = [
    "Code",
    "DependencyAnalyzer",
    "Finding",
    "Fix",
    "FixAction",
    "ImportReference",
    "ManifestEditor",
    "PackageReport",
    "PruneOptions",
    "PruneOrchestrator",
    "PruneResult",
    "Severity",
    "SourceScanner",
    "WorkspaceLoader",
    "parse_source",
]
