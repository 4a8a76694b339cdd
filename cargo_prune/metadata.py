"""Workspace metadata: ``cargo metadata`` output schema and providers."""

from __future__ import annotations

import json
import os
import subprocess
from pathlib import Path

import pydantic
import structlog
from pydantic import BaseModel, ConfigDict, Field

from cargo_prune.exceptions import FatalLoadError

log = structlog.get_logger("cargo_prune.metadata")


class MetadataDependency(BaseModel):
    model_config = ConfigDict(extra="ignore")

    name: str  # registry package name
    kind: str | None = None  # None (normal) | "dev" | "build"
    optional: bool = False
    rename: str | None = None
    target: str | None = None


class MetadataTarget(BaseModel):
    model_config = ConfigDict(extra="ignore")

    kind: list[str]
    name: str
    src_path: str


class MetadataPackage(BaseModel):
    model_config = ConfigDict(extra="ignore")

    id: str
    name: str
    manifest_path: str
    dependencies: list[MetadataDependency] = Field(default_factory=list)
    targets: list[MetadataTarget] = Field(default_factory=list)
    features: dict[str, list[str]] = Field(default_factory=dict)


class ResolveDep(BaseModel):
    model_config = ConfigDict(extra="ignore")

    name: str  # extern crate name as seen by the depending package
    pkg: str


class ResolveNode(BaseModel):
    model_config = ConfigDict(extra="ignore")

    id: str
    deps: list[ResolveDep] = Field(default_factory=list)


class Resolve(BaseModel):
    model_config = ConfigDict(extra="ignore")

    nodes: list[ResolveNode] = Field(default_factory=list)


class CargoMetadata(BaseModel):
    """The subset of ``cargo metadata --format-version 1`` we consume."""

    model_config = ConfigDict(extra="ignore")

    packages: list[MetadataPackage]
    workspace_members: list[str]
    workspace_root: str
    resolve: Resolve | None = None

    def members(self) -> list[MetadataPackage]:
        members = set(self.workspace_members)
        return sorted((p for p in self.packages if p.id in members), key=lambda p: p.name)

    def package_by_id(self, package_id: str) -> MetadataPackage | None:
        for p in self.packages:
            if p.id == package_id:
                return p
        return None

    def extern_names(self, package_id: str) -> dict[str, str]:
        """``{registry name: extern crate name}`` for a package's resolved deps."""
        if self.resolve is None:
            return {}
        for node in self.resolve.nodes:
            if node.id != package_id:
                continue
            names = {}
            for dep in node.deps:
                target = self.package_by_id(dep.pkg)
                if target is not None:
                    names[target.name] = dep.name
            return names
        return {}


def parse_metadata(raw: str | bytes) -> CargoMetadata:
    try:
        return CargoMetadata.model_validate(json.loads(raw))
    except json.JSONDecodeError as e:
        raise FatalLoadError(f"metadata is not valid JSON: {e}") from e
    except pydantic.ValidationError as e:
        raise FatalLoadError(f"metadata does not match the expected schema: {e}") from e


def cargo_binary() -> str:
    return os.environ.get("CARGO", "cargo")


def load_metadata(manifest_dir: Path) -> CargoMetadata:
    """Run ``cargo metadata`` for the workspace containing ``manifest_dir``."""
    cmd = [
        cargo_binary(),
        "metadata",
        "--format-version",
        "1",
        "--all-features",
        "--color",
        "never",
    ]
    log.debug("metadata.run", cmd=" ".join(cmd), cwd=str(manifest_dir))
    try:
        result = subprocess.run(
            cmd,
            cwd=manifest_dir,
            capture_output=True,
            text=True,
        )
    except OSError as e:
        raise FatalLoadError(f"failed to run {cmd[0]}: {e}") from e
    if result.returncode != 0:
        raise FatalLoadError(f"cargo metadata failed:\n{result.stderr.strip()}")
    return parse_metadata(result.stdout)


def load_metadata_file(path: Path) -> CargoMetadata:
    """Read a pre-recorded ``cargo metadata`` document."""
    try:
        raw = path.read_text(encoding="utf-8")
    except OSError as e:
        raise FatalLoadError(f"cannot read metadata file {path}: {e}") from e
    return parse_metadata(raw)
