"""Import collector: extracts external crate references from Rust source.

Uses tree-sitter with the Rust grammar. The parser is error tolerant, so a
malformed construct never aborts the walk; a tree containing errors is still
reported as a parse error so its package is not auto-fixed from an
incomplete picture.

References come from five places, each tagged with a :class:`Context`:
use/extern crate items and multi-segment paths (``code``), macro heads and
path-like tokens inside macro arguments (``macro``), fenced code samples in
doc comments (``doc-example``), and attribute bodies (``attribute``).
"""

from __future__ import annotations

import os
import re
from dataclasses import dataclass, field
from enum import Enum
from pathlib import Path

import structlog
import tree_sitter_rust
from tree_sitter import Language, Node, Parser

from cargo_prune import doc_blocks, tokens
from cargo_prune.exceptions import ParseError

log = structlog.get_logger("cargo_prune.parser")

_RUST_LANGUAGE = Language(tree_sitter_rust.language())

_SCOPED_TYPES = ("scoped_identifier", "scoped_type_identifier")
_COMMENT_TYPES = ("line_comment", "block_comment")
_ATTRIBUTE_TYPES = ("attribute_item", "inner_attribute_item")
_PATH_ATTR_RE = re.compile(r'\bpath\s*=\s*"((?:\\.|[^"\\])*)"')
_STRING_RE = re.compile(r'"((?:\\.|[^"\\])*)"')
_MAX_MACRO_DEPTH = 8


class Context(Enum):
    CODE = "code"
    DOC_EXAMPLE = "doc-example"
    MACRO = "macro"
    ATTRIBUTE = "attribute"


@dataclass(frozen=True)
class ImportReference:
    """A potential reference to an external crate."""

    name: str
    offset: int  # byte offset into the file
    length: int
    context: Context
    file: Path | None = None


@dataclass
class ParsedSource:
    path: Path | None
    references: list[ImportReference] = field(default_factory=list)
    features: set[str] = field(default_factory=set)  # from `feature = "..."` predicates
    paths: set[Path] = field(default_factory=set)  # files this one links via mod/include!
    is_empty: bool = False
    error: ParseError | None = None

    @property
    def imports(self) -> set[str]:
        return {ref.name for ref in self.references}


def parse_file(path: Path, mod_rs: bool = False) -> ParsedSource:
    """Read and parse one source file.

    ``mod_rs`` marks crate roots and ``mod.rs`` files, whose child modules
    live next to them instead of in a directory named after the file.
    """
    try:
        source = path.read_bytes().decode("utf-8")
    except (OSError, UnicodeDecodeError) as e:
        log.debug("parser.unreadable", path=str(path), error=str(e))
        return ParsedSource(path=path, error=ParseError(path, str(e)))
    return parse_source(source, path, mod_rs=mod_rs or path.name == "mod.rs")


def parse_source(source: str, path: Path = Path("lib.rs"), mod_rs: bool = True) -> ParsedSource:
    data = source.encode("utf-8")
    tree = Parser(_RUST_LANGUAGE).parse(data)
    root = tree.root_node

    path_dir = path.parent
    module_dir = path_dir if mod_rs else path_dir / path.stem
    collector = _Collector(path)
    collector.visit(root, module_dir=module_dir, path_dir=path_dir)
    collector.visit_docs()

    result = ParsedSource(
        path=path,
        references=collector.sorted_references(),
        features=collector.features,
        paths=collector.paths,
        is_empty=_is_empty(root),
    )
    if root.has_error:
        bad = _first_error(root) or root
        line = bad.start_point.row + 1
        column = len(data[: bad.start_byte].rsplit(b"\n", 1)[-1].decode("utf-8", "replace")) + 1
        result.error = ParseError(
            path,
            f"syntax error near line {line}",
            offset=bad.start_byte,
            length=max(bad.end_byte - bad.start_byte, 1),
            line=line,
            column=column,
        )
        # an incomplete reference set must not drive removals
        result.references = []
        log.debug("parser.syntax_error", path=str(path), line=line)
    return result


def parse_expanded(source: str, path: Path) -> ParsedSource:
    """Parse ``-Zunpretty=expanded`` output of a whole target.

    Absolute ``::name`` paths are skipped: macro hygiene emits them for
    every crate the expanded code touches, re-exports included.
    """
    root = Parser(_RUST_LANGUAGE).parse(source.encode("utf-8")).root_node
    collector = _Collector(path, include_absolute=False, collect_modules=False)
    collector.visit(root, module_dir=path.parent, path_dir=path.parent)
    return ParsedSource(path=path, references=collector.sorted_references())


def _is_empty(root: Node) -> bool:
    return all(
        child.type in _COMMENT_TYPES or child.type == "inner_attribute_item"
        for child in root.named_children
    )


def _first_error(root: Node) -> Node | None:
    stack = [root]
    while stack:
        node = stack.pop()
        if node.is_error or node.is_missing:
            return node
        if node.has_error:
            stack.extend(reversed(node.children))
    return None


def _text(node: Node) -> str:
    return node.text.decode("utf-8", errors="replace")


class _Collector:
    """Walks one syntax tree and accumulates references, features and links."""

    def __init__(
        self,
        path: Path | None,
        include_absolute: bool = True,
        collect_modules: bool = True,
        forced: tuple[int, int] | None = None,
        depth: int = 0,
    ) -> None:
        self.path = path
        self.include_absolute = include_absolute
        self.collect_modules = collect_modules
        # doc samples report every reference at the span of their comment
        self.forced = forced
        self.depth = depth
        self.references: dict[tuple[str, int], ImportReference] = {}
        self.features: set[str] = set()
        self.paths: set[Path] = set()
        self.doc_comments: list[Node] = []

    def sorted_references(self) -> list[ImportReference]:
        return sorted(self.references.values(), key=lambda r: (r.offset, r.name))

    # ── recording ──

    def _add(self, name: str, offset: int, length: int, context: Context, base: int = 0) -> None:
        name = tokens.strip_raw(name)
        if not tokens.is_crate_ident(name):
            return
        if self.forced is not None:
            offset, length = self.forced
            context = Context.DOC_EXAMPLE
            base = 0
        key = (name, base + offset)
        if key not in self.references:
            self.references[key] = ImportReference(
                name=name, offset=base + offset, length=length, context=context, file=self.path
            )

    def _add_node(self, node: Node, context: Context, base: int) -> None:
        self._add(_text(node), node.start_byte, node.end_byte - node.start_byte, context, base)

    def _add_lexed(self, node: Node, context: Context, base: int) -> None:
        """Add path starts found by lexing the node's text."""
        text = _text(node)
        for name, char_offset in tokens.path_starts(text, self.include_absolute):
            byte_offset = node.start_byte + len(text[:char_offset].encode("utf-8"))
            self._add(name, byte_offset, len(name), context, base)

    def _leftmost(self, node: Node | None) -> Node | None:
        while node is not None:
            if node.type == "identifier":
                return node
            if node.type == "generic_type":
                node = node.child_by_field_name("type")
                continue
            if node.type not in _SCOPED_TYPES:
                return None
            path = node.child_by_field_name("path")
            if path is None:
                # `::name`, an absolute path
                return node.child_by_field_name("name") if self.include_absolute else None
            node = path
        return None

    # ── tree walk ──

    def visit(self, root: Node, module_dir: Path, path_dir: Path, base: int = 0) -> None:
        stack: list[tuple[Node, Path, Path]] = [(root, module_dir, path_dir)]
        while stack:
            node, module_dir, path_dir = stack.pop()
            kind = node.type

            if kind == "use_declaration":
                self._visit_use(node.child_by_field_name("argument"), base)
                continue
            if kind == "extern_crate_declaration":
                name = node.child_by_field_name("name")
                if name is not None:
                    self._add_node(name, Context.CODE, base)
                continue
            if kind in _ATTRIBUTE_TYPES:
                self._visit_attribute(node, base)
                continue
            if kind == "macro_invocation":
                self._visit_macro(node, module_dir, path_dir, base)
                continue
            if kind == "macro_definition":
                self._add_lexed(node, Context.MACRO, base)
                continue
            if kind in _COMMENT_TYPES:
                if self.forced is None and self.depth == 0:
                    self.doc_comments.append(node)
                continue
            if kind == "mod_item" and self.collect_modules:
                body = self._visit_mod(node, module_dir, path_dir)
                if body is not None:
                    stack.append(body)
                continue
            if kind in _SCOPED_TYPES:
                head = self._leftmost(node)
                if head is not None:
                    self._add_node(head, Context.CODE, base)

            for child in reversed(node.children):
                stack.append((child, module_dir, path_dir))

    def _visit_use(self, node: Node | None, base: int) -> None:
        if node is None:
            return
        kind = node.type
        if kind == "identifier" or kind in _SCOPED_TYPES:
            head = self._leftmost(node)
            if head is not None:
                self._add_node(head, Context.CODE, base)
        elif kind == "scoped_use_list":
            path = node.child_by_field_name("path")
            if path is not None:
                self._visit_use(path, base)
            else:
                self._visit_use(node.child_by_field_name("list"), base)
        elif kind == "use_list":
            for child in node.named_children:
                self._visit_use(child, base)
        elif kind == "use_as_clause":
            self._visit_use(node.child_by_field_name("path"), base)
        elif kind == "use_wildcard":
            if node.named_children:
                self._visit_use(node.named_children[0], base)

    def _visit_attribute(self, node: Node, base: int) -> None:
        text = _text(node)
        self._add_lexed(node, Context.ATTRIBUTE, base)
        self.features.update(tokens.feature_names(text))
        if "serde" in text:
            for name, char_offset in tokens.serde_paths(text):
                byte_offset = node.start_byte + len(text[:char_offset].encode("utf-8"))
                self._add(name, byte_offset, len(name), Context.ATTRIBUTE, base)

    def _visit_macro(self, node: Node, module_dir: Path, path_dir: Path, base: int) -> None:
        head = node.child_by_field_name("macro")
        if head is not None:
            if head.type == "identifier":
                # `foo!()` may come from `#[macro_use] extern crate foo`
                self._add_node(head, Context.MACRO, base)
            else:
                first = self._leftmost(head)
                if first is not None:
                    self._add_node(first, Context.MACRO, base)

        body = next((c for c in node.children if c.type == "token_tree"), None)
        if body is None:
            return
        text = _text(body)
        self._add_lexed(body, Context.MACRO, base)
        self.features.update(tokens.feature_names(text))

        if self.collect_modules and self.forced is None:
            for m in _STRING_RE.finditer(text):
                value = m.group(1)
                if value.endswith(".rs"):
                    self.paths.add(_join(path_dir, value))

        if self.depth < _MAX_MACRO_DEPTH and tokens.has_item_keywords(text):
            inner = text[1:-1].encode("utf-8")
            sub = _Collector(
                self.path,
                include_absolute=self.include_absolute,
                collect_modules=self.collect_modules,
                forced=self.forced,
                depth=self.depth + 1,
            )
            tree = Parser(_RUST_LANGUAGE).parse(inner)
            sub.visit(tree.root_node, module_dir, path_dir, base=base + body.start_byte + 1)
            for key, ref in sub.references.items():
                self.references.setdefault(key, _retag(ref, Context.MACRO, self.forced))
            self.features |= sub.features
            self.paths |= sub.paths

    def _visit_mod(self, node: Node, module_dir: Path, path_dir: Path):
        """Record the files a ``mod`` item links; return its inline body, if any."""
        name_node = node.child_by_field_name("name")
        if name_node is None:
            return None
        name = tokens.strip_raw(_text(name_node))

        unconditional: list[str] = []
        conditional: list[str] = []
        sibling = node.prev_named_sibling
        while sibling is not None and (
            sibling.type == "attribute_item" or sibling.type in _COMMENT_TYPES
        ):
            if sibling.type == "attribute_item":
                attr = _text(sibling)
                found = _PATH_ATTR_RE.findall(attr)
                if re.match(r"#\s*\[\s*path\b", attr):
                    unconditional.extend(found)
                else:
                    conditional.extend(found)
            sibling = sibling.prev_named_sibling

        explicit = unconditional + conditional
        body = node.child_by_field_name("body")
        if body is not None:
            self._add_module_paths(name, module_dir)
            for p in explicit:
                if p.lower().endswith(".rs"):
                    self.paths.add(_join(path_dir, p))
            subdir = explicit[0] if explicit else name
            if subdir.endswith(".rs"):
                subdir = subdir[:-3]
            return (body, module_dir / subdir, path_dir / subdir)

        for p in explicit:
            self.paths.add(_join(path_dir, p))
        if not unconditional:
            self._add_module_paths(name, module_dir)
        return None

    def _add_module_paths(self, name: str, module_dir: Path) -> None:
        self.paths.add(module_dir / f"{name}.rs")
        self.paths.add(module_dir / name / "mod.rs")

    # ── doc comments ──

    def visit_docs(self) -> None:
        """Parse fenced samples out of the doc comments seen during the walk."""
        for start, end, text in _doc_groups(self.doc_comments):
            for snippet in doc_blocks.fenced_blocks(text):
                sub = _Collector(
                    self.path,
                    include_absolute=self.include_absolute,
                    collect_modules=False,
                    forced=(start, end - start),
                    depth=self.depth + 1,
                )
                wrapped = "fn __doctest() {\n" + snippet + "\n}\n"
                tree = Parser(_RUST_LANGUAGE).parse(wrapped.encode("utf-8"))
                sub.visit(tree.root_node, Path("."), Path("."))
                for key, ref in sub.references.items():
                    self.references.setdefault(key, ref)


def _doc_groups(comments: list[Node]) -> list[tuple[int, int, str]]:
    """Merge consecutive ``///`` (or ``//!``) lines into one doc text each."""
    groups: list[tuple[int, int, str]] = []
    run: list[tuple[Node, str]] = []
    run_marker = ""

    def flush() -> None:
        if run:
            start = run[0][0].start_byte
            end = run[-1][0].end_byte
            groups.append((start, end, "\n".join(text for _, text in run)))
            run.clear()

    for node in sorted(comments, key=lambda n: n.start_byte):
        raw = _text(node)
        doc = doc_blocks.doc_text(raw)
        if doc is None:
            flush()
            continue
        if node.type == "block_comment":
            flush()
            groups.append((node.start_byte, node.end_byte, doc))
            continue
        marker = raw[:3]
        if run and (marker != run_marker or node.start_point.row != run[-1][0].start_point.row + 1):
            flush()
        run_marker = marker
        run.append((node, doc))
    flush()
    return groups


def _retag(ref: ImportReference, context: Context, forced) -> ImportReference:
    if forced is not None or ref.context is not Context.CODE:
        return ref
    return ImportReference(ref.name, ref.offset, ref.length, context, ref.file)


def _join(base: Path, relative: str) -> Path:
    return Path(os.path.normpath(base / relative))
