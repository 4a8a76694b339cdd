"""Token-level heuristics for text the syntax tree leaves opaque.

Macro arguments and attribute bodies are plain token streams to the
parser, so path starts (``foo::``) are recovered by lexing them here.
"""

from __future__ import annotations

import re
from dataclasses import dataclass

_WS_RE = re.compile(r"\s+")
_LINE_COMMENT_RE = re.compile(r"//[^\n]*")
_RAW_STR_RE = re.compile(r'(?:b|c)?r(#*)"')
_STR_RE = re.compile(r'(?:b|c)?"(?:\\.|[^"\\])*"', re.S)
_CHAR_RE = re.compile(r"b?'(?:\\(?:x[0-9a-fA-F]{2}|u\{[0-9a-fA-F]{1,6}\}|.)|[^'\\\n])'")
_LIFETIME_RE = re.compile(r"'[A-Za-z_]\w*")
_IDENT_RE = re.compile(r"(?:r#)?[A-Za-z_]\w*")
_NUMBER_RE = re.compile(r"\d[\w.]*")

_FEATURE_RE = re.compile(r'\bfeature\s*=\s*"([^"\\]+)"')
_SERDE_PATH_RE = re.compile(
    r'\b(?:with|serialize_with|deserialize_with|crate|remote)\s*=\s*"'
    r'\s*(?:::)?\s*((?:r#)?[A-Za-z_]\w*)'
)

KEYWORDS = frozenset(
    """as async await box break const continue dyn else enum extern fn for if impl
    in let loop match mod move mut pub ref return static struct trait type unsafe
    use where while yield""".split()
)
PATH_KEYWORDS = frozenset({"crate", "self", "super", "Self"})


@dataclass(frozen=True)
class Token:
    kind: str  # "ident" | "keyword" | "path_sep" | "literal" | "lifetime" | "punct"
    text: str
    start: int  # character offset into the lexed text


def is_crate_ident(name: str) -> bool:
    """Whether ``name`` could be the first segment of an external crate path."""
    if name.startswith("r#"):
        name = name[2:]
    if not name or name == "_" or name in PATH_KEYWORDS:
        return False
    return name[0] == "_" or ("a" <= name[0] <= "z")


def strip_raw(name: str) -> str:
    return name[2:] if name.startswith("r#") else name


def lex(text: str) -> list[Token]:
    """Split Rust source text into tokens, dropping whitespace and comments."""
    tokens: list[Token] = []
    i = 0
    n = len(text)
    while i < n:
        ch = text[i]
        m = _WS_RE.match(text, i)
        if m:
            i = m.end()
            continue
        if text.startswith("//", i):
            i = _LINE_COMMENT_RE.match(text, i).end()
            continue
        if text.startswith("/*", i):
            i = _block_comment_end(text, i)
            continue
        m = _RAW_STR_RE.match(text, i)
        if m:
            close = '"' + m.group(1)
            end = text.find(close, m.end())
            end = n if end == -1 else end + len(close)
            tokens.append(Token("literal", text[i:end], i))
            i = end
            continue
        m = _STR_RE.match(text, i) or _CHAR_RE.match(text, i)
        if m:
            tokens.append(Token("literal", m.group(), i))
            i = m.end()
            continue
        if ch == "'":
            m = _LIFETIME_RE.match(text, i)
            if m:
                tokens.append(Token("lifetime", m.group(), i))
                i = m.end()
                continue
        m = _IDENT_RE.match(text, i)
        if m:
            word = m.group()
            kind = "keyword" if word in KEYWORDS else "ident"
            tokens.append(Token(kind, word, i))
            i = m.end()
            continue
        m = _NUMBER_RE.match(text, i)
        if m:
            tokens.append(Token("literal", m.group(), i))
            i = m.end()
            continue
        if text.startswith("::", i):
            tokens.append(Token("path_sep", "::", i))
            i += 2
            continue
        tokens.append(Token("punct", ch, i))
        i += 1
    return tokens


def _block_comment_end(text: str, i: int) -> int:
    depth = 0
    n = len(text)
    while i < n:
        if text.startswith("/*", i):
            depth += 1
            i += 2
        elif text.startswith("*/", i):
            depth -= 1
            i += 2
            if depth == 0:
                return i
        else:
            i += 1
    return n


def path_starts(text: str, include_absolute: bool = True) -> list[tuple[str, int]]:
    """Return ``(name, offset)`` for every path start in ``text``.

    A path start is ``name ::`` not itself preceded by ``::``, or an absolute
    ``:: name``. Offsets are character offsets into ``text``.
    """
    tokens = lex(text)
    found: list[tuple[str, int]] = []
    for idx, tok in enumerate(tokens):
        prev = tokens[idx - 1] if idx else None
        nxt = tokens[idx + 1] if idx + 1 < len(tokens) else None
        if tok.kind == "ident":
            if nxt is None or nxt.kind != "path_sep":
                continue
            if prev is not None and (prev.kind == "path_sep" or prev.text in (".", "$")):
                continue
            if is_crate_ident(tok.text):
                found.append((strip_raw(tok.text), tok.start))
        elif tok.kind == "path_sep" and include_absolute:
            if nxt is None or nxt.kind != "ident":
                continue
            if prev is not None and (prev.kind in ("ident", "path_sep") or prev.text == ">"):
                continue
            if is_crate_ident(nxt.text):
                found.append((strip_raw(nxt.text), nxt.start))
    return found


def has_item_keywords(text: str) -> bool:
    """Whether a macro body may declare items worth re-parsing as source."""
    return any(t.kind == "keyword" and t.text in ("use", "extern", "mod") for t in lex(text))


def feature_names(text: str) -> set[str]:
    """Feature names referenced by ``feature = "..."`` predicates."""
    return set(_FEATURE_RE.findall(text))


def serde_paths(text: str) -> list[tuple[str, int]]:
    """First path segment of serde's string-valued path arguments."""
    found = []
    for m in _SERDE_PATH_RE.finditer(text):
        name = m.group(1)
        if is_crate_ident(name):
            found.append((strip_raw(name), m.start(1)))
    return found
