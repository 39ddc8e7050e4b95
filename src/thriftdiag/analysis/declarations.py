"""Lightweight declaration scan shared by the analyzer and the include collector."""
from __future__ import annotations

import re
from dataclasses import dataclass, field
from typing import List

from ..models.records import ServiceExtendsRecord, TextRange, TypeKindMap
from .lexer import scan_type_and_name, split_lines, strip_comments_from_lines

DECLARATION_RE = re.compile(
    r"^\s*(?P<kind>struct|union|exception|enum|senum|service)\s+(?P<name>[A-Za-z_]\w*)"
    r"(?:\s+(?P<extends>extends)\s+(?P<parent>[A-Za-z_][\w.]*))?"
)
TYPEDEF_RE = re.compile(r"^\s*typedef\s+")
INCLUDE_RE = re.compile(r"""^\s*include\s+(?:"(?P<dq>[^"]*)"|'(?P<sq>[^']*)')""")


@dataclass(slots=True)
class TypedefDecl:
    line_no: int
    name: str
    base_type: str
    base_range: TextRange


@dataclass(slots=True)
class DeclarationScan:
    types: TypeKindMap = field(default_factory=dict)
    extends: List[ServiceExtendsRecord] = field(default_factory=list)
    typedefs: List[TypedefDecl] = field(default_factory=list)


def scan_declarations(code_lines: List[str]) -> DeclarationScan:
    """Collect typedefs and named declarations from comment-stripped lines."""
    scan = DeclarationScan()
    for line_no, code in enumerate(code_lines):
        typedef = TYPEDEF_RE.match(code)
        if typedef:
            parsed = scan_type_and_name(code, typedef.end())
            if parsed is None:
                continue
            scan.types[parsed.name] = "typedef"
            scan.typedefs.append(
                TypedefDecl(
                    line_no=line_no,
                    name=parsed.name,
                    base_type=parsed.type_text,
                    base_range=TextRange.on_line(line_no, parsed.type_start, parsed.type_end),
                )
            )
            continue

        match = DECLARATION_RE.match(code)
        if not match:
            continue
        scan.types[match.group("name")] = match.group("kind")
        if match.group("kind") == "service" and match.group("parent"):
            scan.extends.append(
                ServiceExtendsRecord(
                    line_no=line_no,
                    parent_name=match.group("parent"),
                    column=match.start("extends"),
                )
            )
    return scan


def extract_type_kinds(text: str) -> TypeKindMap:
    """Name -> kind map for a whole file, used for included files."""
    return scan_declarations(strip_comments_from_lines(split_lines(text))).types


def extract_include_paths(text: str) -> List[str]:
    paths: List[str] = []
    for code in strip_comments_from_lines(split_lines(text)):
        match = INCLUDE_RE.match(code)
        if match:
            path = match.group("dq") if match.group("dq") is not None else match.group("sq")
            if path:
                paths.append(path)
    return paths
