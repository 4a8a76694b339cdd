"""Data models for the loaded workspace: packages, dependencies, targets.

All of these are built once by the loader and shared read-only across the
package worker threads.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum
from pathlib import Path
from types import MappingProxyType
from typing import Mapping


def normalize(name: str) -> str:
    """Crate identifiers treat ``-`` and ``_`` as the same character."""
    return name.replace("-", "_")


class DepKind(Enum):
    """Dependency table category."""

    NORMAL = "normal"
    DEV = "dev"
    BUILD = "build"

    @property
    def table(self) -> str:
        return _KIND_TABLES[self]

    @classmethod
    def from_table(cls, table: str) -> DepKind | None:
        return _TABLE_KINDS.get(table)


_KIND_TABLES = {
    DepKind.NORMAL: "dependencies",
    DepKind.DEV: "dev-dependencies",
    DepKind.BUILD: "build-dependencies",
}

_TABLE_KINDS = {
    "dependencies": DepKind.NORMAL,
    "dev-dependencies": DepKind.DEV,
    "dev_dependencies": DepKind.DEV,
    "build-dependencies": DepKind.BUILD,
    "build_dependencies": DepKind.BUILD,
}


class TargetKind(Enum):
    LIB = "lib"
    BIN = "bin"
    EXAMPLE = "example"
    TEST = "test"
    BENCH = "bench"
    BUILD_SCRIPT = "custom-build"

    @property
    def bucket(self) -> DepKind:
        """The dependency table whose entries this target can reference."""
        if self in (TargetKind.EXAMPLE, TargetKind.TEST, TargetKind.BENCH):
            return DepKind.DEV
        if self is TargetKind.BUILD_SCRIPT:
            return DepKind.BUILD
        return DepKind.NORMAL

    @classmethod
    def from_metadata(cls, kinds: list[str]) -> TargetKind:
        """Map cargo's ``kind`` list (``["rlib", "cdylib"]`` etc.) to one kind."""
        first = kinds[0] if kinds else "lib"
        try:
            return cls(first)
        except ValueError:
            # rlib, dylib, cdylib, staticlib, proc-macro
            return cls.LIB


class FeatureRefKind(Enum):
    EXPLICIT = "explicit"  # "dep:foo"
    DEP_FEATURE = "dep_feature"  # "foo/bar"
    WEAK = "weak"  # "foo?/bar"
    IMPLICIT = "implicit"  # "foo", the implicit feature of an optional dep


@dataclass(frozen=True)
class Span:
    """Character range ``[start, end)`` in a manifest's text."""

    start: int
    end: int


@dataclass(frozen=True)
class FeatureRef:
    """One ``[features]`` array element that mentions a dependency."""

    feature: str
    value: str
    dep_key: str
    kind: FeatureRefKind
    span: Span  # the string literal, quotes included


@dataclass(frozen=True)
class Dependency:
    """A single entry in one of the dependency tables of a manifest."""

    key: str  # declared name, the manifest key
    package_name: str  # registry name (differs from key under `package = ...`)
    import_name: str  # resolved identifier, normalized
    kind: DepKind
    table: tuple[str, ...]  # ("dependencies",) or ("target", "cfg(unix)", "dependencies")
    spans: tuple[Span, ...]  # one per manifest entry making up the declaration
    target_cfg: str | None = None
    optional: bool = False
    workspace: bool = False  # `workspace = true`
    header: Span | None = None  # set for `[dependencies.foo]` sub-tables
    features: tuple[str, ...] = ()  # features whose lists mention this dependency

    @property
    def is_table(self) -> bool:
        return self.header is not None


@dataclass(frozen=True)
class Target:
    kind: TargetKind
    name: str
    root: Path  # absolute path of the crate root source file


@dataclass(frozen=True)
class IgnoreConfig:
    """``ignored`` / ``ignored-paths`` from a manifest's metadata section."""

    names: tuple[str, ...] = ()
    paths: tuple[str, ...] = ()


@dataclass(frozen=True)
class Package:
    id: str
    name: str
    directory: Path
    manifest_path: Path
    dependencies: tuple[Dependency, ...]
    targets: tuple[Target, ...]
    features: Mapping[str, tuple[str, ...]] = field(default_factory=dict, hash=False)
    feature_refs: tuple[FeatureRef, ...] = ()
    ignore: IgnoreConfig = IgnoreConfig()
    workspace_ignore: IgnoreConfig = IgnoreConfig()
    is_root: bool = False  # the manifest is also the workspace root manifest
    manifest_text: str = ""  # as read at load time; edits are checked against it

    def __post_init__(self) -> None:
        object.__setattr__(self, "features", MappingProxyType(dict(self.features)))

    @property
    def ignored_names(self) -> set[str]:
        """Effective ignore set: workspace list ∪ package list, normalized."""
        return {normalize(n) for n in self.workspace_ignore.names + self.ignore.names}


@dataclass(frozen=True)
class WorkspaceDependency:
    """An entry of ``[workspace.dependencies]`` in the root manifest."""

    key: str
    package_name: str
    spans: tuple[Span, ...]
    header: Span | None = None


@dataclass(frozen=True)
class Workspace:
    root: Path
    manifest_path: Path
    packages: tuple[Package, ...]
    ignore: IgnoreConfig = IgnoreConfig()
    dependencies: tuple[WorkspaceDependency, ...] = ()
    manifest_text: str = ""

    def package(self, name: str) -> Package | None:
        for pkg in self.packages:
            if pkg.name == name:
                return pkg
        return None
