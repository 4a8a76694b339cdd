"""Span index over the text of a ``Cargo.toml``.

The semantic values come from ``tomllib``; this module records *where* each
table header, key/value entry and array string element lives in the original
text, so the editor can splice fixes in without re-serializing the file.

Comment lines directly above a header or entry (no blank line in between)
are attached to it, the same way ``toml_edit`` keeps them as key decor.
"""

from __future__ import annotations

import json
import re
import sys
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any

if sys.version_info >= (3, 11):
    import tomllib
else:
    import tomli as tomllib

from cargo_prune.models.workspace import DepKind, Span

_BARE_KEY_RE = re.compile(r"[A-Za-z0-9_-]+")
_SCALAR_RE = re.compile(r"[^,\]\}#\r\n]+")


class ManifestSyntaxError(ValueError):
    """The span scanner could not follow the manifest text."""


@dataclass
class StringElement:
    value: str
    span: Span  # quotes included


@dataclass
class Entry:
    path: tuple[str, ...]  # table path + dotted key
    key: tuple[str, ...]
    span: Span  # whole lines, attached comments included
    value: Span
    elements: list[StringElement] = field(default_factory=list)


@dataclass
class Table:
    path: tuple[str, ...]
    span: Span  # header line, attached comments included
    bracket: Span | None  # "[a.b]" text; None for the implicit root table
    is_array: bool = False
    entries: list[Entry] = field(default_factory=list)

    @property
    def end(self) -> int:
        """Where text appended to this table should go."""
        if self.entries:
            return self.entries[-1].span.end
        return self.span.end


@dataclass
class Declaration:
    """Every span that makes up one dependency key in one table."""

    table: tuple[str, ...]
    key: str
    spans: list[Span]
    header: Span | None = None  # `[dependencies.foo]` bracket text
    value: Any = None


def format_key(segment: str) -> str:
    if _BARE_KEY_RE.fullmatch(segment):
        return segment
    if "'" not in segment and "\n" not in segment:
        return f"'{segment}'"
    return json.dumps(segment)


def format_table_header(path: tuple[str, ...]) -> str:
    return "[" + ".".join(format_key(s) for s in path) + "]"


def decode_string(raw: str) -> str:
    """Decode a TOML string literal (any of the four kinds)."""
    return tomllib.loads("v = " + raw)["v"]


class _Scanner:
    def __init__(self, text: str) -> None:
        self.text = text
        self.n = len(text)

    # ── low-level helpers ──

    def _skip_ws(self, i: int) -> int:
        while i < self.n and self.text[i] in " \t":
            i += 1
        return i

    def _skip_ws_nl_comments(self, i: int) -> int:
        while i < self.n:
            ch = self.text[i]
            if ch in " \t\r\n":
                i += 1
            elif ch == "#":
                i = self._line_end(i)
            else:
                break
        return i

    def _line_end(self, i: int) -> int:
        j = self.text.find("\n", i)
        return self.n if j == -1 else j + 1

    def _expect(self, i: int, token: str) -> int:
        if not self.text.startswith(token, i):
            raise ManifestSyntaxError(f"expected {token!r} at offset {i}")
        return i + len(token)

    # ── keys ──

    def _parse_key(self, i: int) -> tuple[tuple[str, ...], int]:
        parts: list[str] = []
        while True:
            i = self._skip_ws(i)
            if i >= self.n:
                raise ManifestSyntaxError("unexpected end of file in key")
            ch = self.text[i]
            if ch in "\"'":
                end = self._string_end(i)
                parts.append(decode_string(self.text[i:end]))
                i = end
            else:
                m = _BARE_KEY_RE.match(self.text, i)
                if not m:
                    raise ManifestSyntaxError(f"invalid key at offset {i}")
                parts.append(m.group())
                i = m.end()
            i = self._skip_ws(i)
            if i < self.n and self.text[i] == ".":
                i += 1
                continue
            return tuple(parts), i

    # ── values ──

    def _string_end(self, i: int) -> int:
        text = self.text
        if text.startswith('"""', i) or text.startswith("'''", i):
            quote = text[i : i + 3]
            j = i + 3
            while True:
                j = text.find(quote, j)
                if j == -1:
                    raise ManifestSyntaxError(f"unterminated string at offset {i}")
                if quote == '"""' and _escaped(text, j):
                    j += 1
                    continue
                # up to two quote characters may precede the closing delimiter
                while text.startswith(quote[0], j + 3) and j + 3 < self.n:
                    j += 1
                return j + 3
        quote = text[i]
        j = i + 1
        while j < self.n:
            ch = text[j]
            if ch == "\\" and quote == '"':
                j += 2
                continue
            if ch == quote:
                return j + 1
            if ch == "\n":
                break
            j += 1
        raise ManifestSyntaxError(f"unterminated string at offset {i}")

    def _parse_value(
        self,
        i: int,
        elements: list[StringElement] | None = None,
        array_sink: list[StringElement] | None = None,
    ) -> int:
        """Return the end of the value at ``i``.

        String values are appended to ``elements``; when the value is an
        array, its string items are appended to ``array_sink``.
        """
        text = self.text
        ch = text[i] if i < self.n else ""
        if ch in "\"'":
            end = self._string_end(i)
            if elements is not None:
                elements.append(StringElement(decode_string(text[i:end]), Span(i, end)))
            return end
        if ch == "[":
            i += 1
            items: list[StringElement] = []
            while True:
                i = self._skip_ws_nl_comments(i)
                if i < self.n and text[i] == "]":
                    break
                i = self._parse_value(i, items)
                i = self._skip_ws_nl_comments(i)
                if i < self.n and text[i] == ",":
                    i += 1
                    continue
                break
            i = self._expect(i, "]")
            if array_sink is not None:
                array_sink.extend(items)
            return i
        if ch == "{":
            i += 1
            while True:
                i = self._skip_ws_nl_comments(i)
                if i < self.n and text[i] == "}":
                    break
                _, i = self._parse_key(i)
                i = self._expect(self._skip_ws(i), "=")
                i = self._parse_value(self._skip_ws(i), [])
                i = self._skip_ws_nl_comments(i)
                if i < self.n and text[i] == ",":
                    i += 1
                    continue
                break
            return self._expect(i, "}")
        m = _SCALAR_RE.match(text, i)
        if not m:
            raise ManifestSyntaxError(f"invalid value at offset {i}")
        return i + len(m.group().rstrip())

    # ── document ──

    def scan(self) -> list[Table]:
        text = self.text
        root = Table(path=(), span=Span(0, 0), bracket=None)
        tables = [root]
        current = root
        pending: int | None = None
        pos = 0
        while pos < self.n:
            line_start = pos
            i = self._skip_ws(pos)
            ch = text[i] if i < self.n else "\n"
            if ch in "\r\n":
                pending = None
                pos = self._line_end(i)
                continue
            if ch == "#":
                if pending is None:
                    pending = line_start
                pos = self._line_end(i)
                continue
            start = line_start if pending is None else pending
            pending = None
            if ch == "[":
                is_array = text.startswith("[[", i)
                path, j = self._parse_key(i + (2 if is_array else 1))
                j = self._expect(j, "]]" if is_array else "]")
                current = Table(
                    path=path,
                    span=Span(start, self._line_end(j)),
                    bracket=Span(i, j),
                    is_array=is_array,
                )
                tables.append(current)
                pos = current.span.end
                continue
            key, j = self._parse_key(i)
            j = self._skip_ws(self._expect(j, "="))
            elements: list[StringElement] = []
            value_end = self._parse_value(j, array_sink=elements)
            end = self._line_end(value_end)
            current.entries.append(
                Entry(
                    path=current.path + key,
                    key=key,
                    span=Span(start, end),
                    value=Span(j, value_end),
                    elements=elements,
                )
            )
            pos = end
        return tables


def _escaped(text: str, i: int) -> bool:
    backslashes = 0
    j = i - 1
    while j >= 0 and text[j] == "\\":
        backslashes += 1
        j -= 1
    return backslashes % 2 == 1


class ManifestDocument:
    """Parsed manifest: ``data`` for values, tables/entries for spans."""

    def __init__(self, path: Path, text: str) -> None:
        self.path = path
        self.text = text
        self.data: dict[str, Any] = tomllib.loads(text)
        self.tables = _Scanner(text).scan()

    @classmethod
    def load(cls, path: Path) -> ManifestDocument:
        # bytes, so CRLF line endings survive a round trip
        return cls(path, path.read_bytes().decode("utf-8"))

    @property
    def entries(self) -> list[Entry]:
        return [e for t in self.tables for e in t.entries]

    def table(self, path: tuple[str, ...]) -> Table | None:
        for t in self.tables:
            if t.path == path and not t.is_array:
                return t
        return None

    def entry(self, path: tuple[str, ...]) -> Entry | None:
        for e in self.entries:
            if e.path == path:
                return e
        return None

    def value(self, path: tuple[str, ...]) -> Any:
        node: Any = self.data
        for part in path:
            if not isinstance(node, dict) or part not in node:
                return None
            node = node[part]
        return node

    # ── dependency tables ──

    def dependency_declarations(self) -> list[Declaration]:
        """Declarations in ``[dependencies]``-style tables, target tables included."""
        return self._declarations(_dependency_prefix_len)

    def workspace_declarations(self) -> list[Declaration]:
        """Declarations in ``[workspace.dependencies]``."""
        return self._declarations(_workspace_prefix_len)

    def _declarations(self, prefix_len) -> list[Declaration]:
        found: dict[tuple[tuple[str, ...], str], Declaration] = {}
        for t in self.tables:
            if t.is_array:
                continue
            p = prefix_len(t.path)
            if p and len(t.path) > p:
                # `[dependencies.foo]` and anything nested below it
                ident = (t.path[:p], t.path[p])
                decl = found.get(ident)
                if decl is None:
                    decl = found[ident] = Declaration(table=ident[0], key=ident[1], spans=[])
                if len(t.path) == p + 1:
                    decl.header = t.bracket
                decl.spans.append(Span(t.span.start, t.end))
                continue
            for e in t.entries:
                p = prefix_len(e.path)
                if not p or len(e.path) <= p:
                    continue
                ident = (e.path[:p], e.path[p])
                decl = found.get(ident)
                if decl is None:
                    decl = found[ident] = Declaration(table=ident[0], key=ident[1], spans=[])
                decl.spans.append(e.span)
        for (table, key), decl in found.items():
            decl.value = self.value(table + (key,))
        return list(found.values())

    def feature_entries(self) -> list[Entry]:
        return [e for e in self.entries if len(e.path) == 2 and e.path[0] == "features"]


def _dependency_prefix_len(path: tuple[str, ...]) -> int:
    if path and DepKind.from_table(path[0]):
        return 1
    if len(path) >= 3 and path[0] == "target" and DepKind.from_table(path[2]):
        return 3
    return 0


def _workspace_prefix_len(path: tuple[str, ...]) -> int:
    if path[:2] == ("workspace", "dependencies"):
        return 2
    return 0
