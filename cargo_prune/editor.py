"""Manifest editor: applies fixes as span splices over the original text.

The manifest is never re-serialized: every fix becomes a set of
non-overlapping ``(start, end, replacement)`` edits against the text read at
load time, so comments, ordering and whitespace of untouched entries survive.
Before writing, each edit's original text is compared with the file on disk;
a fix whose text moved underneath the run is dropped and reported instead.
"""

from __future__ import annotations

import sys
from dataclasses import dataclass, field
from pathlib import Path

import structlog

if sys.version_info >= (3, 11):
    import tomllib
else:
    import tomli as tomllib

from cargo_prune.exceptions import FixConflictError, ManifestEditError
from cargo_prune.manifest import ManifestDocument, StringElement, format_table_header
from cargo_prune.models.finding import Code, Finding, FixAction
from cargo_prune.models.workspace import FeatureRef, Package, Span, Workspace

log = structlog.get_logger("cargo_prune.editor")


@dataclass
class FixRequest:
    """A fix resolved to the spans it touches."""

    finding: Finding
    key: str
    spans: tuple[Span, ...]
    header: Span | None = None
    feature_refs: tuple[FeatureRef, ...] = ()
    destination: tuple[str, ...] | None = None  # table path for moves


@dataclass
class Edit:
    start: int
    end: int
    replacement: str
    owners: set[int]  # indexes of the requests that need this edit
    check_start: int = -1  # start of the text compared against the file

    def __post_init__(self) -> None:
        if self.check_start < 0:
            self.check_start = self.start


@dataclass
class EditOutcome:
    applied: list[Finding] = field(default_factory=list)
    conflicts: list[Finding] = field(default_factory=list)
    text: str | None = None


def package_requests(package: Package, findings: list[Finding]) -> list[FixRequest]:
    """Resolve the fixable findings of ``package`` to edit requests."""
    requests = []
    removing = {
        (f.fix.dependency, f.fix.table)
        for f in findings
        if f.fix is not None and f.fix.action is FixAction.REMOVE
    }
    for finding in findings:
        fix = finding.fix
        if fix is None:
            continue
        dep = next(
            (d for d in package.dependencies if d.key == fix.dependency and d.table == fix.table),
            None,
        )
        if dep is None:
            continue
        if fix.action is FixAction.REMOVE:
            # the key lives on in another table, so its feature entries stay valid
            survives = any(
                d.key == dep.key and (d.key, d.table) not in removing
                for d in package.dependencies
            )
            refs: tuple = ()
            if not survives:
                refs = tuple(r for r in package.feature_refs if r.dep_key == dep.key)
            requests.append(FixRequest(finding, dep.key, dep.spans, feature_refs=refs))
            continue

        destination = dep.table[:-1] + (fix.destination.table,)
        already = any(
            d.key == dep.key and d.table[:-1] == dep.table[:-1] and d.kind is fix.destination
            for d in package.dependencies
        )
        if already:
            requests.append(FixRequest(finding, dep.key, dep.spans))
        else:
            requests.append(
                FixRequest(finding, dep.key, dep.spans, header=dep.header, destination=destination)
            )
    return requests


def workspace_requests(workspace: Workspace, findings: list[Finding]) -> list[FixRequest]:
    requests = []
    for finding in findings:
        fix = finding.fix
        if fix is None or fix.table != ("workspace", "dependencies"):
            continue
        wdep = next((d for d in workspace.dependencies if d.key == fix.dependency), None)
        if wdep is not None:
            requests.append(FixRequest(finding, wdep.key, wdep.spans))
    return requests


class ManifestEditor:
    """Plan and apply edits for one manifest."""

    def __init__(self, path: Path, original: str) -> None:
        self.path = path
        self.original = original
        self.doc = ManifestDocument(path, original)

    def apply(self, requests: list[FixRequest], write: bool = True) -> EditOutcome:
        outcome = EditOutcome()
        if not requests:
            return outcome
        try:
            current = self.path.read_bytes().decode("utf-8")
        except (OSError, UnicodeDecodeError) as e:
            raise ManifestEditError(f"cannot re-read {self.path}: {e}") from e

        active = set(range(len(requests)))
        while True:
            edits = self.plan(requests, active)
            bad: set[int] = set()
            for edit in edits:
                try:
                    self._check(edit, current)
                except FixConflictError as e:
                    log.info("editor.conflict", path=str(self.path), offset=e.offset)
                    bad |= edit.owners & active
            if not bad:
                break
            for idx in sorted(bad):
                outcome.conflicts.append(self._conflict(requests[idx]))
            active -= bad

        if not active:
            return outcome

        # every edited range matched, so unrelated on-disk changes are kept
        text = self.splice(edits, current)
        try:
            tomllib.loads(text)
        except tomllib.TOMLDecodeError as e:
            raise ManifestEditError(f"edits to {self.path} would produce invalid TOML: {e}") from e

        if write:
            try:
                self.path.write_bytes(text.encode("utf-8"))
            except OSError as e:
                raise ManifestEditError(f"cannot write {self.path}: {e}") from e
        for idx in sorted(active):
            finding = requests[idx].finding
            finding.fix.applied = True
            outcome.applied.append(finding)
        outcome.text = text
        log.debug("editor.applied", path=str(self.path), fixes=len(active), edits=len(edits))
        return outcome

    # ── planning ──

    def plan(self, requests: list[FixRequest], active: set[int]) -> list[Edit]:
        edits: list[Edit] = []
        inserts: dict[tuple[str, ...], list[tuple[int, str]]] = {}
        removed_elements: dict[tuple[int, int], set[int]] = {}

        for idx in sorted(active):
            req = requests[idx]
            if req.destination is not None and req.header is not None:
                new_header = format_table_header(req.destination + (req.key,))
                edits.append(Edit(req.header.start, req.header.end, new_header, {idx}))
                continue
            for span in req.spans:
                edits.append(Edit(span.start, span.end, "", {idx}))
            if req.destination is not None:
                moved = "".join(self._entry_text(s) for s in req.spans)
                inserts.setdefault(req.destination, []).append((idx, moved))
            for ref in req.feature_refs:
                removed_elements.setdefault((ref.span.start, ref.span.end), set()).add(idx)

        edits.extend(self._feature_edits(removed_elements))
        edits.extend(self._insert_edits(inserts))
        return edits

    def _entry_text(self, span: Span) -> str:
        text = self.original[span.start : span.end]
        return text if text.endswith("\n") else text + "\n"

    def _feature_edits(self, removed: dict[tuple[int, int], set[int]]) -> list[Edit]:
        edits = []
        if not removed:
            return edits
        for entry in self.doc.feature_entries():
            hit = [
                i
                for i, el in enumerate(entry.elements)
                if (el.span.start, el.span.end) in removed
            ]
            if not hit:
                continue
            owners: set[int] = set()
            for i in hit:
                el = entry.elements[i]
                owners |= removed[(el.span.start, el.span.end)]
            for start, end in self._array_ranges(entry.elements, hit):
                edits.append(Edit(start, end, "", set(owners)))
        return edits

    def _array_ranges(self, elements: list[StringElement], hit: list[int]) -> list[tuple[int, int]]:
        """Character ranges that drop the ``hit`` elements with their commas."""
        n = len(elements)
        if len(hit) == n:
            start = elements[0].span.start
            end = elements[-1].span.end
            j = end
            while j < len(self.original) and self.original[j] in " \t\r\n":
                j += 1
            if j < len(self.original) and self.original[j] == ",":
                end = j + 1
            return [(start, end)]

        runs: list[list[int]] = []
        for i in hit:
            if runs and runs[-1][-1] == i - 1:
                runs[-1].append(i)
            else:
                runs.append([i])
        ranges = []
        for run in runs:
            first, last = run[0], run[-1]
            if last + 1 < n:
                ranges.append((elements[first].span.start, elements[last + 1].span.start))
            else:
                ranges.append((elements[first - 1].span.end, elements[last].span.end))
        return ranges

    def _insert_edits(self, inserts: dict[tuple[str, ...], list[tuple[int, str]]]) -> list[Edit]:
        edits = []
        appended: list[tuple[tuple[str, ...], list[tuple[int, str]]]] = []
        for table_path in sorted(inserts):
            items = inserts[table_path]
            table = self.doc.table(table_path)
            if table is None:
                appended.append((table_path, items))
                continue
            pos = table.end
            text = "".join(t for _, t in items)
            if pos > 0 and self.original[pos - 1] != "\n":
                text = "\n" + text
            owners = {i for i, _ in items}
            check = _line_start(self.original, pos)
            edits.append(Edit(pos, pos, text, owners, check_start=check))

        if appended:
            pos = len(self.original)
            blocks = []
            owners: set[int] = set()
            for table_path, items in appended:
                blocks.append("\n" + format_table_header(table_path) + "\n")
                blocks.extend(t for _, t in items)
                owners |= {i for i, _ in items}
            text = "".join(blocks)
            if pos > 0 and not self.original.endswith("\n"):
                text = "\n" + text
            edits.append(Edit(pos, pos, text, owners, check_start=_line_start(self.original, pos)))
        return edits

    # ── applying ──

    def _check(self, edit: Edit, current: str) -> None:
        expected = self.original[edit.check_start : edit.end]
        found = current[edit.check_start : edit.end]
        if expected != found:
            raise FixConflictError(self.path, edit.check_start, expected, found)

    def splice(self, edits: list[Edit], base: str | None = None) -> str:
        base = self.original if base is None else base
        out = []
        cursor = 0
        for edit in sorted(edits, key=lambda e: (e.start, e.end)):
            if edit.start < cursor:
                # overlapping spans, e.g. a dotted key inside a removed sub-table
                continue
            out.append(base[cursor : edit.start])
            out.append(edit.replacement)
            cursor = edit.end
        out.append(base[cursor:])
        return "".join(out)

    def _conflict(self, request: FixRequest) -> Finding:
        finding = request.finding
        finding.fix = None
        return Finding(
            code=Code.FIX_CONFLICT,
            message=f"could not apply fix for `{request.key}`: {self.path.name} changed on disk",
            package=finding.package,
            file=self.path,
            location=finding.location,
            help="re-run after the manifest settles",
        )


def _line_start(text: str, pos: int) -> int:
    """Start of the line ending just before ``pos``."""
    if pos <= 0:
        return 0
    return text.rfind("\n", 0, pos - 1) + 1
