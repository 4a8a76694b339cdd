"""Extract compilable code samples from Rust doc comments."""

from __future__ import annotations

import re

_INCLUDED_INFO = {"rust", "ignore", "no_run", "should_panic", "compile_fail"}
_EDITION_RE = re.compile(r"edition\d{4}")
_INFO_SPLIT_RE = re.compile(r"[\s,]+")


def doc_text(comment: str) -> str | None:
    """Return the documentation text of a comment, or None for plain comments.

    ``///`` and ``//!`` line comments and ``/** */`` / ``/*! */`` block
    comments are doc comments; ``////`` and ``/***`` are not.
    """
    if comment.startswith(("///", "//!")):
        if comment.startswith("////"):
            return None
        body = comment[3:].rstrip("\r\n")
        return body[1:] if body.startswith(" ") else body
    if comment.startswith(("/**", "/*!")) and comment.endswith("*/"):
        if comment.startswith(("/***", "/**/")):
            return None
        return _block_doc_text(comment[3:-2])
    return None


def _block_doc_text(raw: str) -> str:
    lines = []
    for line in raw.splitlines():
        stripped = line.lstrip()
        if stripped.startswith("*"):
            stripped = stripped[1:]
            if stripped[:1] in (" ", "\t"):
                stripped = stripped[1:]
        lines.append(stripped)
    return "\n".join(lines)


def include_info(info: str) -> bool:
    """Whether a fence info string marks a block rustdoc would compile."""
    info = info.strip()
    if not info:
        return True
    for part in _INFO_SPLIT_RE.split(info.lower()):
        if part in _INCLUDED_INFO or _EDITION_RE.fullmatch(part):
            return True
    return False


def fenced_blocks(text: str) -> list[str]:
    """Return the normalized contents of every included fenced code block."""
    blocks = []
    lines = text.splitlines()
    idx = 0
    while idx < len(lines):
        stripped = lines[idx].lstrip()
        if not stripped.startswith("```"):
            idx += 1
            continue
        include = include_info(stripped[3:])
        idx += 1
        body = []
        while idx < len(lines) and not lines[idx].lstrip().startswith("```"):
            body.append(lines[idx])
            idx += 1
        idx += 1  # closing fence
        if include:
            blocks.append(normalize_block(body))
    return blocks


def normalize_block(lines: list[str]) -> str:
    """Un-hide ``# `` setup lines and strip the common indentation."""
    unhidden = [_strip_hidden(line) for line in lines]
    indents = [len(line) - len(line.lstrip(" \t")) for line in unhidden if line.strip()]
    indent = min(indents, default=0)
    return "\n".join(line[indent:] if line.strip() else "" for line in unhidden)


def _strip_hidden(line: str) -> str:
    stripped = line.lstrip(" \t")
    prefix = line[: len(line) - len(stripped)]
    if stripped == "#":
        return prefix
    if stripped.startswith(("# ", "#\t")):
        return prefix + stripped[2:]
    return line
