"""Shared pytest fixtures for cargo-prune tests.

``CargoWorkspace`` lays out a small Cargo workspace under ``tmp_path`` and
produces the matching ``cargo metadata`` document, so no cargo toolchain is
needed to run the suite.
"""

from __future__ import annotations

import json
import textwrap
from pathlib import Path

import pytest

from cargo_prune.loader import WorkspaceLoader
from cargo_prune.metadata import CargoMetadata
from cargo_prune.models.workspace import Workspace

_DEV_DIRS = {"benches": "bench", "tests": "test", "examples": "example"}


def _detect_targets(name: str, files: dict[str, str]) -> list[tuple[str, str, str]]:
    targets = []
    for rel in sorted(files):
        parts = rel.split("/")
        if rel == "src/lib.rs":
            targets.append(("lib", name.replace("-", "_"), rel))
        elif rel == "src/main.rs":
            targets.append(("bin", name, rel))
        elif rel == "build.rs":
            targets.append(("custom-build", "build-script-build", rel))
        elif len(parts) == 2 and parts[0] in _DEV_DIRS and parts[1].endswith(".rs"):
            targets.append((_DEV_DIRS[parts[0]], parts[1][:-3], rel))
    return targets


class CargoWorkspace:
    def __init__(self, root: Path) -> None:
        self.root = root
        self.root.mkdir(parents=True, exist_ok=True)
        self._packages: list[dict] = []
        self.resolve: dict | None = None

    def write(self, rel: str, text: str) -> Path:
        path = self.root / rel
        path.parent.mkdir(parents=True, exist_ok=True)
        path.write_text(textwrap.dedent(text).lstrip("\n"), encoding="utf-8")
        return path

    def read(self, rel: str) -> str:
        return (self.root / rel).read_text(encoding="utf-8")

    def add_package(
        self,
        name: str,
        manifest: str,
        files: dict[str, str],
        rel: str = "",
        targets: list[tuple[str, str, str]] | None = None,
    ) -> Path:
        """Write a package; ``rel`` is its directory relative to the root."""
        directory = self.root / rel if rel else self.root
        prefix = f"{rel}/" if rel else ""
        self.write(f"{prefix}Cargo.toml", manifest)
        for file_rel, text in files.items():
            self.write(f"{prefix}{file_rel}", text)
        if targets is None:
            targets = _detect_targets(name, files)
        self._packages.append(
            {
                "id": f"path+file://{directory}#{name}@0.1.0",
                "name": name,
                "manifest_path": str(directory / "Cargo.toml"),
                "dependencies": [],
                "targets": [
                    {"kind": [kind], "name": tname, "src_path": str(directory / src)}
                    for kind, tname, src in targets
                ],
                "features": {},
            }
        )
        return directory

    def package_id(self, name: str) -> str:
        return next(p["id"] for p in self._packages if p["name"] == name)

    def metadata(self) -> dict:
        return {
            "packages": self._packages,
            "workspace_members": [p["id"] for p in self._packages],
            "workspace_root": str(self.root),
            "resolve": self.resolve,
        }

    def metadata_file(self) -> Path:
        path = self.root.parent / "metadata.json"
        path.write_text(json.dumps(self.metadata()), encoding="utf-8")
        return path

    def load(self) -> Workspace:
        return WorkspaceLoader(CargoMetadata.model_validate(self.metadata())).load()

    @staticmethod
    def manifest(name: str, body: str = "") -> str:
        """A package manifest with the usual ``[package]`` header."""
        header = f'[package]\nname = "{name}"\nversion = "0.1.0"\nedition = "2021"\n'
        body = textwrap.dedent(body).strip("\n")
        return header + ("\n" + body + "\n" if body else "")


@pytest.fixture
def cargo_ws(tmp_path):
    return CargoWorkspace(tmp_path / "ws")
