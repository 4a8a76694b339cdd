"""Source scanner: file discovery and module reachability per package."""

from __future__ import annotations

import os
from collections import deque
from dataclasses import dataclass, field
from pathlib import Path

import pathspec
import structlog

from cargo_prune.models.workspace import Package, Target, TargetKind, Workspace
from cargo_prune.source_parser import ParsedSource, parse_file

log = structlog.get_logger("cargo_prune.scanner")

# Directories never holding crate sources
_SKIP_DIRS = {"target", "node_modules"}


@dataclass
class PackageSources:
    """Everything the analyzer needs to know about a package's source files."""

    files: list[Path]  # found by the directory walk, sorted
    parsed: dict[Path, ParsedSource] = field(default_factory=dict)
    reachable: set[Path] = field(default_factory=set)
    target_files: dict[Target, list[Path]] = field(default_factory=dict)

    @property
    def unlinked(self) -> list[Path]:
        return [f for f in self.files if f not in self.reachable]

    @property
    def errors(self) -> list[ParsedSource]:
        return [p for p in self.parsed.values() if p.error is not None]


class SourceScanner:
    """Walk a package directory, parse its files and follow ``mod`` links."""

    def __init__(self, workspace: Workspace) -> None:
        self.workspace = workspace
        self._root_ignore = _load_gitignore(workspace.root)

    def scan(self, package: Package) -> PackageSources:
        files = self.walk(package)
        roots = {t.root for t in package.targets}
        sources = PackageSources(files=files)

        for path in sorted(set(files) | {r for r in roots if r.is_file()}):
            sources.parsed[path] = parse_file(path, mod_rs=path in roots)

        sources.reachable = self._reachable(package, sources)
        for target in package.targets:
            sources.target_files[target] = self._files_for_target(target, sources)

        log.debug(
            "scanner.scanned",
            package=package.name,
            files=len(files),
            reachable=len(sources.reachable),
            errors=len(sources.errors),
        )
        return sources

    def walk(self, package: Package) -> list[Path]:
        """Collect ``.rs`` files under the package directory.

        Hidden directories, ``target/`` and nested packages (directories
        with their own ``Cargo.toml``) are pruned, as are gitignored paths.
        """
        top = package.directory
        package_ignore = _load_gitignore(top) if top != self.workspace.root else None
        found: list[Path] = []
        for dirpath, dirnames, filenames in os.walk(top):
            current = Path(dirpath)
            kept = []
            for d in dirnames:
                sub = current / d
                if d.startswith(".") or d in _SKIP_DIRS:
                    continue
                if (sub / "Cargo.toml").is_file():
                    continue
                if self._ignored(sub, top, package_ignore, is_dir=True):
                    continue
                kept.append(d)
            dirnames[:] = sorted(kept)
            for f in filenames:
                if not f.endswith(".rs"):
                    continue
                path = current / f
                if self._ignored(path, top, package_ignore):
                    continue
                found.append(path)
        return sorted(found)

    def _ignored(
        self,
        path: Path,
        package_dir: Path,
        package_ignore: pathspec.PathSpec | None,
        is_dir: bool = False,
    ) -> bool:
        suffix = "/" if is_dir else ""
        if self._root_ignore is not None:
            rel = _relative(path, self.workspace.root)
            if rel is not None and self._root_ignore.match_file(rel + suffix):
                return True
        if package_ignore is not None:
            rel = _relative(path, package_dir)
            if rel is not None and package_ignore.match_file(rel + suffix):
                return True
        return False

    def _reachable(self, package: Package, sources: PackageSources) -> set[Path]:
        """Breadth-first walk of the module graph from every target root."""
        roots = sorted({t.root for t in package.targets})
        seen: set[Path] = set()
        queue = deque(r for r in roots if r.is_file())
        seen.update(queue)
        while queue:
            current = queue.popleft()
            parsed = sources.parsed.get(current)
            if parsed is None:
                # linked from outside the walked tree, e.g. via #[path]
                parsed = sources.parsed[current] = parse_file(current)
            for linked in sorted(parsed.paths):
                if linked not in seen and linked.is_file():
                    seen.add(linked)
                    queue.append(linked)
        return seen

    def _files_for_target(self, target: Target, sources: PackageSources) -> list[Path]:
        """Files whose references count for ``target``.

        A build script is a single file; every other target owns the
        directory subtree of its root file.
        """
        if target.kind is TargetKind.BUILD_SCRIPT:
            return [target.root] if target.root in sources.parsed else []
        directory = target.root.parent
        return sorted(p for p in sources.parsed if _is_under(p, directory))


def _load_gitignore(directory: Path) -> pathspec.PathSpec | None:
    path = directory / ".gitignore"
    if not path.is_file():
        return None
    try:
        lines = path.read_text(encoding="utf-8").splitlines()
    except (OSError, UnicodeDecodeError):
        log.warning("scanner.gitignore_unreadable", path=str(path))
        return None
    return pathspec.PathSpec.from_lines("gitwildmatch", lines)


def _relative(path: Path, base: Path) -> str | None:
    try:
        return path.relative_to(base).as_posix()
    except ValueError:
        return None


def _is_under(path: Path, directory: Path) -> bool:
    try:
        path.relative_to(directory)
    except ValueError:
        return False
    return True
