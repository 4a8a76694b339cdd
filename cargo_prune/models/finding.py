"""Data models for diagnostics and the fixes attached to them."""

from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum
from pathlib import Path

from cargo_prune.models.workspace import DepKind, Span


class Severity(Enum):
    ERROR = "error"
    WARNING = "warning"


class Code(Enum):
    """Finding codes. The value is what the reports print."""

    UNUSED_DEPENDENCY = "unused_dependency"
    UNUSED_OPTIONAL_DEPENDENCY = "unused_optional_dependency"
    UNUSED_WORKSPACE_DEPENDENCY = "unused_workspace_dependency"
    MISPLACED_DEPENDENCY = "misplaced_dependency"
    MISPLACED_OPTIONAL_DEPENDENCY = "misplaced_optional_dependency"
    REDUNDANT_IGNORE = "redundant_ignore"
    UNKNOWN_IGNORE = "unknown_ignore"
    REDUNDANT_IGNORE_PATH = "redundant_ignore_path"
    UNLINKED_FILE = "unlinked_file"
    EMPTY_FILE = "empty_file"
    PARSE_ERROR = "parse_error"
    EXPAND_ERROR = "expand_error"
    FIX_CONFLICT = "fix_conflict"
    WRITE_ERROR = "write_error"
    INTERNAL_ERROR = "internal_error"

    @property
    def severity(self) -> Severity:
        if self in _ERROR_CODES:
            return Severity.ERROR
        return Severity.WARNING


_ERROR_CODES = {
    Code.UNUSED_DEPENDENCY,
    Code.UNUSED_WORKSPACE_DEPENDENCY,
    Code.MISPLACED_DEPENDENCY,
    Code.PARSE_ERROR,
    Code.EXPAND_ERROR,
    Code.WRITE_ERROR,
    Code.INTERNAL_ERROR,
}


class FixAction(Enum):
    REMOVE = "remove"
    MOVE = "move"


@dataclass(frozen=True)
class Location:
    """Byte range in a file, plus the 1-based line/column of its start."""

    offset: int
    length: int
    line: int = 1
    column: int = 1

    @classmethod
    def from_span(cls, text: str, span: Span) -> Location:
        """Build from a character span of ``text``."""
        before = text[: span.start]
        offset = len(before.encode())
        length = len(text[span.start : span.end].encode())
        line = before.count("\n") + 1
        column = len(before) - (before.rfind("\n") + 1) + 1
        return cls(offset=offset, length=length, line=line, column=column)


@dataclass
class Fix:
    """A manifest change that resolves a finding.

    ``applied`` is set by the editor once the change is on disk.
    """

    action: FixAction
    dependency: str
    table: tuple[str, ...]
    destination: DepKind | None = None
    applied: bool = False

    @property
    def table_name(self) -> str:
        return ".".join(self.table)


@dataclass
class Finding:
    code: Code
    message: str
    package: str | None = None
    file: Path | None = None
    location: Location | None = None
    help: str | None = None
    fix: Fix | None = None
    severity: Severity = field(init=False)

    def __post_init__(self) -> None:
        self.severity = self.code.severity

    def sort_key(self) -> tuple:
        return (
            self.package or "",
            str(self.file) if self.file else "",
            self.location.offset if self.location else -1,
            self.code.value,
            self.message,
        )
