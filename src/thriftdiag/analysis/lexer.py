"""Quote- and comment-aware scanning helpers.

Everything in here walks text one character at a time and never raises on
malformed input: unbalanced quotes or brackets simply run to the end of the
text.
"""
from __future__ import annotations

import re
from dataclasses import dataclass
from typing import Iterator, List, Optional, Tuple

IDENT_RE = re.compile(r"[A-Za-z_][A-Za-z0-9_]*")

OPENERS = "<([{"
CLOSERS = ">)]}"
MATCHING = {"(": ")", "[": "]", "{": "}", "<": ">"}


@dataclass(slots=True)
class CommentState:
    """Carries block-comment state from one line to the next."""

    in_block: bool = False


def split_lines(text: str) -> List[str]:
    return [line[:-1] if line.endswith("\r") else line for line in text.split("\n")]


def strip_comments(raw_line: str, state: CommentState) -> str:
    """Remove comments from a single line.

    Block comments are replaced by spaces so the columns of the remaining
    code still match the raw line; `//` and `#` comments truncate the line.
    String literals (single or double quoted, backslash escapes) are kept
    verbatim and never start a comment.
    """
    out: List[str] = []
    quote: Optional[str] = None
    escaped = False
    i = 0
    n = len(raw_line)
    while i < n:
        if state.in_block:
            end = raw_line.find("*/", i)
            if end == -1:
                out.append(" " * (n - i))
                return "".join(out)
            out.append(" " * (end + 2 - i))
            i = end + 2
            state.in_block = False
            continue

        ch = raw_line[i]
        nxt = raw_line[i + 1] if i + 1 < n else ""
        if quote:
            out.append(ch)
            if escaped:
                escaped = False
            elif ch == "\\":
                escaped = True
            elif ch == quote:
                quote = None
            i += 1
            continue

        if ch == "/" and nxt == "*":
            state.in_block = True
            out.append("  ")
            i += 2
            continue
        if (ch == "/" and nxt == "/") or ch == "#":
            break
        if ch in "'\"":
            quote = ch
        out.append(ch)
        i += 1
    return "".join(out)


def strip_comments_from_lines(lines: List[str]) -> List[str]:
    state = CommentState()
    return [strip_comments(line, state) for line in lines]


def iter_code_chars(text: str, start: int = 0) -> Iterator[Tuple[int, str, bool]]:
    """Yield ``(index, char, quoted)``; quoted covers literals and their delimiters."""
    quote: Optional[str] = None
    escaped = False
    for i in range(start, len(text)):
        ch = text[i]
        if quote:
            if escaped:
                escaped = False
            elif ch == "\\":
                escaped = True
            elif ch == quote:
                quote = None
            yield i, ch, True
            continue
        if ch in "'\"":
            quote = ch
            yield i, ch, True
            continue
        yield i, ch, False


def find_top_level(text: str, targets: str, start: int = 0) -> int:
    """Index of the first target char outside strings and brackets, or -1."""
    depth = 0
    for i, ch, quoted in iter_code_chars(text, start):
        if quoted:
            continue
        if depth == 0 and ch in targets:
            return i
        if ch in OPENERS:
            depth += 1
        elif ch in CLOSERS:
            depth = max(0, depth - 1)
    return -1


def split_top_level(text: str, separator: str = ",") -> List[Tuple[int, str]]:
    """Split on a separator at bracket depth zero; returns ``(offset, piece)`` pairs."""
    pieces: List[Tuple[int, str]] = []
    depth = 0
    start = 0
    for i, ch, quoted in iter_code_chars(text):
        if quoted:
            continue
        if ch in OPENERS:
            depth += 1
        elif ch in CLOSERS:
            depth = max(0, depth - 1)
        elif ch == separator and depth == 0:
            pieces.append((start, text[start:i]))
            start = i + 1
    pieces.append((start, text[start:]))
    return pieces


def matching_close(text: str, open_index: int) -> int:
    """Index of the bracket closing the one at ``open_index``, or -1."""
    opener = text[open_index]
    closer = MATCHING.get(opener)
    if closer is None:
        return -1
    depth = 0
    for i, ch, quoted in iter_code_chars(text, open_index):
        if quoted:
            continue
        if ch == opener:
            depth += 1
        elif ch == closer:
            depth -= 1
            if depth == 0:
                return i
    return -1


def is_balanced(text: str) -> bool:
    """True when brackets pair up and no string literal is left open."""
    stack: List[str] = []
    quote: Optional[str] = None
    escaped = False
    for ch in text:
        if quote:
            if escaped:
                escaped = False
            elif ch == "\\":
                escaped = True
            elif ch == quote:
                quote = None
            continue
        if ch in "'\"":
            quote = ch
        elif ch in "([{":
            stack.append(MATCHING[ch])
        elif ch in ")]}":
            if not stack or stack.pop() != ch:
                return False
    return quote is None and not stack


def strip_type_annotations(type_text: str) -> str:
    """Drop parenthesised annotations such as ``(go.tag = "x")`` from a type."""
    out: List[str] = []
    depth = 0
    for _, ch, quoted in iter_code_chars(type_text):
        if not quoted and ch == "(":
            depth += 1
            continue
        if not quoted and ch == ")" and depth > 0:
            depth -= 1
            continue
        if depth == 0:
            out.append(ch)
    return "".join(out).strip()


@dataclass(slots=True)
class TypeAndName:
    type_text: str
    type_start: int
    type_end: int
    name: str
    name_start: int
    name_end: int


def scan_type_and_name(text: str, start: int = 0) -> Optional[TypeAndName]:
    """Consume ``<type expression> <identifier>`` starting at ``start``.

    The type may contain nested ``<...>`` and ``(...)`` groups with spaces
    inside them; it ends at the first whitespace at depth zero that is
    followed by an identifier, which becomes the name. A name written
    directly after the closing ``>`` of a container (``map<K,V>Name``)
    ends the type too.
    """
    i = start
    n = len(text)
    while i < n and text[i].isspace():
        i += 1
    type_start = i
    depth = 0
    quote: Optional[str] = None
    escaped = False
    while i < n:
        ch = text[i]
        if quote:
            if escaped:
                escaped = False
            elif ch == "\\":
                escaped = True
            elif ch == quote:
                quote = None
            i += 1
            continue
        if ch in "'\"":
            quote = ch
        elif ch in "<(":
            depth += 1
        elif ch in ">)":
            depth = max(0, depth - 1)
            if ch == ">" and depth == 0:
                match = IDENT_RE.match(text, i + 1)
                if match:
                    return _type_and_name(text, type_start, i + 1, match)
        elif ch.isspace() and depth == 0 and i > type_start:
            j = i
            while j < n and text[j].isspace():
                j += 1
            match = IDENT_RE.match(text, j)
            if match:
                return _type_and_name(text, type_start, i, match)
        i += 1
    return None


def _type_and_name(text: str, type_start: int, type_end: int, name: re.Match) -> TypeAndName:
    return TypeAndName(
        type_text=text[type_start:type_end],
        type_start=type_start,
        type_end=type_end,
        name=name.group(0),
        name_start=name.start(),
        name_end=name.end(),
    )
