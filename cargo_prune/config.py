"""Run options collected from the command line."""

from __future__ import annotations

import os
from dataclasses import dataclass, field
from pathlib import Path

OUTPUT_FORMATS = ("human", "json")


def default_jobs() -> int:
    return os.cpu_count() or 1


@dataclass
class PruneOptions:
    path: Path = field(default_factory=Path.cwd)
    fix: bool = False
    expand: bool = False
    packages: tuple[str, ...] = ()  # --package; empty selects every member
    exclude: tuple[str, ...] = ()
    format: str = "human"
    metadata_file: Path | None = None  # pre-recorded `cargo metadata` output
    jobs: int = field(default_factory=default_jobs)
    verbose: bool = False

    def __post_init__(self) -> None:
        if self.format not in OUTPUT_FORMATS:
            raise ValueError(f"unknown output format: {self.format}")
        if self.jobs < 1:
            raise ValueError("jobs must be at least 1")

    @property
    def filtered(self) -> bool:
        """True when only part of the workspace is analyzed."""
        return bool(self.packages or self.exclude)

    def selects(self, name: str) -> bool:
        if self.packages and name not in self.packages:
            return False
        return name not in self.exclude
