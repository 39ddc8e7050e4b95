"""Line-oriented semantic analyzer for Thrift IDL text.

The analyzer does not build a syntax tree. It makes a declaration pass over
comment-stripped lines, then a single streaming pass over every character
that keeps two explicit stacks:

- a bracket stack of open ``{`` and ``(`` (``<`` is tracked on its own and
  matched leniently, so ``>`` never corrupts brace matching);
- a block stack recording which declaration each open ``{`` belongs to.

Inside struct-like and enum blocks the stream is cut into member segments
at top-level ``,`` / ``;``, at end of line and at the block's closing brace;
each segment is checked as a field or an enum member. The same pass records
where every service body starts and ends; method signatures are then matched
over the joined text of each body, so a signature may span several lines.
"""
from __future__ import annotations

import logging
import re
from bisect import bisect_right
from dataclasses import dataclass, field
from typing import List, Mapping, Optional, Tuple

from ..models.records import (
    DECLARATION_KINDS,
    BlockFrame,
    BlockKind,
    BracketStackEntry,
    FieldSignature,
    Issue,
    Severity,
    TextRange,
    TypeKindMap,
)
from .declarations import DECLARATION_RE, DeclarationScan, scan_declarations
from .lexer import (
    IDENT_RE,
    OPENERS,
    CLOSERS,
    find_top_level,
    is_balanced,
    matching_close,
    scan_type_and_name,
    split_lines,
    split_top_level,
    strip_comments_from_lines,
    strip_type_annotations,
)
from .types import is_integer_literal, is_known_type, resolve_kind, value_matches_type

logger = logging.getLogger(__name__)

FIELD_HEAD_RE = re.compile(r"\s*(?:(?P<id>[+-]?\d+)\s*:\s*)?(?:(?:required|optional)\s+)?")
CONST_RE = re.compile(r"^\s*const\s+")
METHOD_RE = re.compile(
    r"(?<![\w.])(?P<oneway>oneway\s+)?"
    r"(?P<ret>[A-Za-z_][\w.]*(?:\s*<[^(){};]*>)?)\s+(?P<name>[A-Za-z_]\w*)\s*\("
)
THROWS_RE = re.compile(r"\s*throws\s*\(")

NON_RETURN_WORDS = frozenset(
    DECLARATION_KINDS
    + ("typedef", "const", "include", "cpp_include", "namespace", "extends", "throws",
       "required", "optional")
)
FIELD_BLOCKS = frozenset({BlockKind.STRUCT, BlockKind.UNION, BlockKind.EXCEPTION})
MEMBER_BLOCKS = FIELD_BLOCKS | {BlockKind.ENUM}
CLOSER_FOR = {"}": "{", ")": "("}
BLOCK_KIND_FOR = {
    "struct": BlockKind.STRUCT,
    "union": BlockKind.UNION,
    "exception": BlockKind.EXCEPTION,
    "enum": BlockKind.ENUM,
    "service": BlockKind.SERVICE,
}


@dataclass(slots=True)
class _Segment:
    """Characters of one struct/enum member collected from a single line."""

    frame: BlockFrame
    line_no: int
    start_col: int
    chars: List[str] = field(default_factory=list)
    nesting: int = 0


class TextAnalyzer:
    """Single-use analyzer; call :func:`analyze` rather than using it directly."""

    def __init__(self, text: str, included_types: Optional[Mapping[str, str]] = None) -> None:
        self.lines = split_lines(text)
        self.code_lines = strip_comments_from_lines(self.lines)
        self.included_types = dict(included_types or {})
        self.issues: List[Issue] = []
        self.types: TypeKindMap = {}
        self._brackets: List[BracketStackEntry] = []
        self._angles: List[BracketStackEntry] = []
        self._frames: List[BlockFrame] = []
        self._pending_kind: Optional[BlockKind] = None
        self._segment: Optional[_Segment] = None
        # open brackets still owed by a member cut off at end of line
        self._carry = 0

        # code lines joined with "\n"; offsets map back through _line_starts
        self._code = "\n".join(self.code_lines)
        self._line_starts: List[int] = []
        offset = 0
        for code in self.code_lines:
            self._line_starts.append(offset)
            offset += len(code) + 1
        self._open_services: List[Tuple[BlockFrame, int]] = []
        self._service_bodies: List[Tuple[int, int]] = []

    def run(self) -> List[Issue]:
        scan = scan_declarations(self.code_lines)
        self.types = dict(self.included_types)
        self.types.update(scan.types)

        self._check_extends(scan)
        self._scan_structure()
        self._check_typedefs(scan)
        self._check_consts()
        self._check_service_methods()
        return self.issues

    # --- reporting -------------------------------------------------------
    def _report(self, code: str, message: str, text_range: TextRange) -> None:
        self.issues.append(
            Issue(message=message, range=text_range, code=code, severity=Severity.ERROR)
        )

    def _whole_line(self, line_no: int) -> TextRange:
        return TextRange.on_line(line_no, 0, len(self.lines[line_no]))

    def _offset(self, line_no: int, col: int) -> int:
        return self._line_starts[line_no] + col

    def _position(self, offset: int) -> Tuple[int, int]:
        line_no = bisect_right(self._line_starts, offset) - 1
        return line_no, offset - self._line_starts[line_no]

    def _span(self, start: int, end: int) -> TextRange:
        start_line, start_col = self._position(start)
        end_line, end_col = self._position(end)
        return TextRange(start_line, start_col, end_line, end_col)

    # --- service extends -------------------------------------------------
    def _check_extends(self, scan: DeclarationScan) -> None:
        for record in scan.extends:
            kind = resolve_kind(record.parent_name, self.types)
            text_range = TextRange.on_line(
                record.line_no, record.column, record.column + len("extends")
            )
            if kind is None:
                self._report(
                    "service.extends.unknown",
                    f"Unknown parent service '{record.parent_name}' in extends",
                    text_range,
                )
            elif kind != "service":
                self._report(
                    "service.extends.notService",
                    f"Parent type '{record.parent_name}' is not a service",
                    text_range,
                )

    # --- streaming structure pass ---------------------------------------
    def _scan_structure(self) -> None:
        for line_no, code in enumerate(self.code_lines):
            self._start_line(code)
            quote: Optional[str] = None
            escaped = False
            for col, ch in enumerate(code):
                if quote:
                    if escaped:
                        escaped = False
                    elif ch == "\\":
                        escaped = True
                    elif ch == quote:
                        quote = None
                    self._append_to_member(line_no, col, ch)
                    continue
                if ch in "'\"":
                    quote = ch
                    self._append_to_member(line_no, col, ch)
                    continue
                self._structural_char(line_no, col, ch)
            self._flush_member(end_of_line=True)

        for _, start in self._open_services:
            self._service_bodies.append((start, len(self._code)))
        self._service_bodies.sort()

        for entry in self._brackets:
            self._report(
                "syntax.unclosed",
                f"Unclosed '{entry.char}'",
                TextRange.on_line(entry.line, entry.col, entry.col + 1),
            )

    def _start_line(self, code: str) -> None:
        match = DECLARATION_RE.match(code)
        if match:
            self._pending_kind = BLOCK_KIND_FOR.get(match.group("kind"), BlockKind.OTHER)
        elif self._pending_kind is not None:
            stripped = code.strip()
            if stripped and not stripped.startswith("{"):
                self._pending_kind = None

    def _member_frame(self) -> Optional[BlockFrame]:
        if self._frames and self._frames[-1].kind in MEMBER_BLOCKS:
            return self._frames[-1]
        return None

    def _append_to_member(self, line_no: int, col: int, ch: str) -> None:
        if self._carry:
            return
        if self._segment is None:
            frame = self._member_frame()
            if frame is None:
                return
            self._segment = _Segment(frame=frame, line_no=line_no, start_col=col)
        self._segment.chars.append(ch)

    def _structural_char(self, line_no: int, col: int, ch: str) -> None:
        if self._carry:
            # tail of a member that started on an earlier line
            if ch == "}" and self._member_frame() is not None:
                self._carry = 0
            elif ch in OPENERS:
                self._carry += 1
            elif ch in CLOSERS:
                self._carry -= 1
            self._track_bracket(line_no, col, ch)
            return

        segment = self._segment
        if segment is not None and segment.nesting > 0:
            self._track_bracket(line_no, col, ch)
            if ch in OPENERS:
                segment.nesting += 1
            elif ch in CLOSERS:
                segment.nesting -= 1
            segment.chars.append(ch)
            return

        if self._member_frame() is not None:
            if ch in ",;":
                self._flush_member()
                return
            if ch == "}":
                self._flush_member()
                self._track_bracket(line_no, col, ch)
                return
            if ch.isspace() and segment is None:
                return
            self._append_to_member(line_no, col, ch)
            if ch in OPENERS:
                self._segment.nesting += 1
        self._track_bracket(line_no, col, ch)

    def _track_bracket(self, line_no: int, col: int, ch: str) -> None:
        if ch in "{(":
            self._brackets.append(BracketStackEntry(ch, line_no, col))
            if ch == "{":
                frame = BlockFrame(kind=self._pending_kind or BlockKind.OTHER)
                self._frames.append(frame)
                self._pending_kind = None
                if frame.kind == BlockKind.SERVICE:
                    self._open_services.append((frame, self._offset(line_no, col + 1)))
        elif ch == "<":
            self._angles.append(BracketStackEntry(ch, line_no, col))
        elif ch == ">":
            if self._angles:
                self._angles.pop()
        elif ch in CLOSER_FOR:
            if not self._brackets:
                self._report(
                    "syntax.unmatchedCloser",
                    f"Unmatched closing '{ch}'",
                    TextRange.on_line(line_no, col, col + 1),
                )
                return
            opened = self._brackets.pop()
            if opened.char == "{" and self._frames:
                frame = self._frames.pop()
                if self._open_services and self._open_services[-1][0] is frame:
                    _, start = self._open_services.pop()
                    self._service_bodies.append((start, self._offset(line_no, col)))
            if opened.char != CLOSER_FOR[ch]:
                self._report(
                    "syntax.mismatched",
                    f"Mismatched '{opened.char}' and '{ch}'",
                    TextRange.on_line(line_no, col, col + 1),
                )

    # --- members ---------------------------------------------------------
    def _flush_member(self, end_of_line: bool = False) -> None:
        segment = self._segment
        if segment is None:
            return
        self._segment = None
        text = "".join(segment.chars)
        stripped = text.strip()
        if not stripped:
            return
        truncated = end_of_line and segment.nesting > 0
        if truncated:
            self._carry = segment.nesting
        if segment.frame.kind == BlockKind.ENUM:
            self._check_enum_member(segment, text)
        else:
            self._check_field(segment, text, truncated)

    def _segment_range(self, segment: _Segment, text: str) -> TextRange:
        lead = len(text) - len(text.lstrip())
        start = segment.start_col + lead
        return TextRange.on_line(segment.line_no, start, start + len(text.strip()))

    def _check_enum_member(self, segment: _Segment, text: str) -> None:
        stripped = text.strip()
        name = IDENT_RE.match(stripped)
        if not name:
            return
        rest = stripped[name.end():].lstrip()
        if not rest.startswith("="):
            return
        value = rest[1:]
        cut = find_top_level(value, "(")
        if cut != -1:
            value = value[:cut]
        if not is_integer_literal(value):
            self._report(
                "enum.valueNotInteger",
                "Enum value must be an integer literal",
                self._segment_range(segment, text),
            )

    def _check_field(self, segment: _Segment, text: str, truncated: bool) -> None:
        head = FIELD_HEAD_RE.match(text)
        field_id = int(head.group("id")) if head.group("id") else None
        if field_id is not None:
            if field_id in segment.frame.field_ids:
                self._report(
                    "field.duplicateId",
                    f"Duplicate field id {field_id}",
                    self._segment_range(segment, text),
                )
            else:
                segment.frame.field_ids.add(field_id)

        parsed = scan_type_and_name(text, head.end())
        if parsed is None:
            return
        signature = FieldSignature(
            id=field_id,
            type_text=parsed.type_text.strip(),
            name=parsed.name,
            type_range=TextRange.on_line(
                segment.line_no,
                segment.start_col + parsed.type_start,
                segment.start_col + parsed.type_end,
            ),
        )
        type_text = signature.type_text
        if not is_known_type(type_text, self.types):
            self._report("type.unknown", f"Unknown type '{type_text}'", signature.type_range)

        rest = text[parsed.name_end:]
        eq = find_top_level(rest, "=")
        if eq == -1 or truncated:
            return
        value = rest[eq + 1:]
        cut = find_top_level(value, "(")
        if cut != -1:
            value = value[:cut]
        value = value.strip()
        if value and is_balanced(value) and not value_matches_type(value, type_text):
            self._report(
                "value.typeMismatch",
                f"Invalid default value '{value}' for type '{strip_type_annotations(type_text)}'",
                self._whole_line(segment.line_no),
            )

    # --- line checks -----------------------------------------------------
    def _check_typedefs(self, scan: DeclarationScan) -> None:
        for typedef in scan.typedefs:
            base = typedef.base_type.strip()
            if not is_known_type(base, self.types):
                self._report(
                    "typedef.unknownBase",
                    f"Unknown base type '{base}' in typedef",
                    typedef.base_range,
                )

    def _check_consts(self) -> None:
        for line_no, code in enumerate(self.code_lines):
            const = CONST_RE.match(code)
            if not const:
                continue
            parsed = scan_type_and_name(code, const.end())
            if parsed is None:
                continue
            type_text = parsed.type_text.strip()
            if not is_known_type(type_text, self.types):
                self._report(
                    "type.unknown",
                    f"Unknown type '{type_text}'",
                    TextRange.on_line(line_no, parsed.type_start, parsed.type_end),
                )
                continue
            rest = code[parsed.name_end:]
            eq = find_top_level(rest, "=")
            if eq == -1:
                continue
            value = rest[eq + 1:]
            end = find_top_level(value, ",;")
            if end != -1:
                value = value[:end]
            value = value.strip()
            if value and is_balanced(value) and not value_matches_type(value, type_text):
                self._report(
                    "value.typeMismatch",
                    f"Invalid value '{value}' for const of type '{type_text}'",
                    self._whole_line(line_no),
                )

    def _check_service_methods(self) -> None:
        code = self._code
        for body_start, body_end in self._service_bodies:
            pos = body_start
            while True:
                match = METHOD_RE.search(code, pos, body_end)
                if not match:
                    break
                pos = self._check_method(match, body_end)

    def _check_method(self, match: re.Match, body_end: int) -> int:
        code = self._code
        return_type = match.group("ret").strip()
        open_index = match.end() - 1
        if return_type in NON_RETURN_WORDS:
            return open_index + 1

        close_index = matching_close(code, open_index)
        throws_text: Optional[str] = None
        throws_offset = 0
        if close_index == -1 or close_index >= body_end:
            args_text = code[open_index + 1:body_end]
            end = body_end
        else:
            args_text = code[open_index + 1:close_index]
            end = close_index + 1
            throws = THROWS_RE.match(code, end, body_end)
            if throws:
                throws_open = throws.end() - 1
                throws_close = matching_close(code, throws_open)
                throws_offset = throws_open + 1
                if throws_close == -1 or throws_close >= body_end:
                    throws_text = code[throws_offset:body_end]
                    end = body_end
                else:
                    throws_text = code[throws_offset:throws_close]
                    end = throws_close + 1

        name = match.group("name")
        signature_range = self._span(match.start(), end)
        if match.group("oneway"):
            if return_type != "void":
                self._report(
                    "service.oneway.returnNotVoid",
                    f"oneway method '{name}' must return void",
                    signature_range,
                )
            if throws_text is not None and throws_text.strip():
                self._report(
                    "service.oneway.hasThrows",
                    f"oneway method '{name}' must not declare throws",
                    signature_range,
                )

        for offset, type_text, type_start, type_end in _argument_types(args_text):
            if not is_known_type(type_text, self.types):
                base = open_index + 1 + offset
                self._report(
                    "type.unknown",
                    f"Unknown type '{type_text}'",
                    self._span(base + type_start, base + type_end),
                )

        if throws_text is not None:
            for offset, type_text, type_start, type_end in _argument_types(throws_text):
                base = throws_offset + offset
                text_range = self._span(base + type_start, base + type_end)
                kind = resolve_kind(strip_type_annotations(type_text), self.types)
                if kind is None:
                    self._report(
                        "service.throws.unknown",
                        f"Unknown exception type '{type_text}' in throws",
                        text_range,
                    )
                elif kind != "exception":
                    self._report(
                        "service.throws.notException",
                        f"Type '{type_text}' in throws is not an exception",
                        text_range,
                    )
        return max(end, open_index + 1)


def _argument_types(args_text: str):
    """Yield ``(piece_offset, type_text, type_start, type_end)`` for each ``[N:] Type name`` item."""
    for offset, piece in split_top_level(args_text):
        head = FIELD_HEAD_RE.match(piece)
        parsed = scan_type_and_name(piece, head.end())
        if parsed is None:
            continue
        yield offset, parsed.type_text.strip(), parsed.type_start, parsed.type_end


def analyze(text: str, included_types: Optional[Mapping[str, str]] = None) -> List[Issue]:
    """Analyze IDL text and return every issue found, in a deterministic order.

    ``included_types`` maps names declared in included files to their kind;
    local declarations take precedence on collision. Never raises.
    """
    analyzer = TextAnalyzer(text, included_types)
    try:
        return analyzer.run()
    except Exception:
        logger.exception("Analyzer failed; returning partial results")
        return list(analyzer.issues)
