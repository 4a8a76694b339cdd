"""Custom exceptions for cargo-prune."""

from __future__ import annotations

from pathlib import Path


class PruneError(Exception):
    """Base exception for all cargo-prune errors."""


class FatalLoadError(PruneError):
    """Raised when workspace metadata or a manifest cannot be loaded.

    Nothing downstream can be trusted without the workspace model, so this
    aborts the whole run.
    """


class ParseError(PruneError):
    """Raised when a source file cannot be read or parsed cleanly."""

    def __init__(
        self,
        path: Path,
        reason: str,
        offset: int = 0,
        length: int = 0,
        line: int = 1,
        column: int = 1,
    ):
        self.path = path
        self.reason = reason
        self.offset = offset
        self.length = length
        self.line = line
        self.column = column
        super().__init__(f"failed to parse {path}: {reason}")


class ExpansionError(PruneError):
    """Raised when ``cargo rustc -Zunpretty=expanded`` fails for a target."""

    def __init__(self, target: str, detail: str):
        self.target = target
        self.detail = detail
        super().__init__(f"macro expansion failed for target '{target}': {detail}")


class FixConflictError(PruneError):
    """Raised when a recorded edit no longer matches the manifest on disk."""

    def __init__(self, path: Path, offset: int, expected: str, found: str):
        self.path = path
        self.offset = offset
        self.expected = expected
        self.found = found
        super().__init__(
            f"{path} changed on disk at offset {offset}: "
            f"expected {expected!r}, found {found!r}"
        )


class ManifestEditError(PruneError):
    """Raised when an edited manifest cannot be written back."""
