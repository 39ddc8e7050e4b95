from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum
from pathlib import Path
from typing import Any, Dict, Optional, Set


class Severity(str, Enum):
    ERROR = "error"
    WARNING = "warning"
    INFO = "info"
    HINT = "hint"


class BlockKind(str, Enum):
    STRUCT = "struct"
    UNION = "union"
    EXCEPTION = "exception"
    ENUM = "enum"
    SERVICE = "service"
    OTHER = "other"


# Declared name -> one of typedef, struct, union, exception, enum, senum, service
TypeKindMap = Dict[str, str]

DECLARATION_KINDS = ("struct", "union", "exception", "enum", "senum", "service")


@dataclass(frozen=True, slots=True)
class TextRange:
    """Zero-based, end-exclusive span inside a document."""

    start_line: int
    start_col: int
    end_line: int
    end_col: int

    @classmethod
    def on_line(cls, line: int, start_col: int, end_col: int) -> "TextRange":
        return cls(line, start_col, line, end_col)


@dataclass(frozen=True, slots=True)
class Issue:
    message: str
    range: TextRange
    code: str
    severity: Severity = Severity.ERROR

    def to_dict(self) -> Dict[str, Any]:
        return {
            "message": self.message,
            "code": self.code,
            "severity": self.severity.value,
            "range": {
                "start": {"line": self.range.start_line, "character": self.range.start_col},
                "end": {"line": self.range.end_line, "character": self.range.end_col},
            },
        }


@dataclass(slots=True)
class ServiceExtendsRecord:
    line_no: int
    parent_name: str
    column: int


@dataclass(slots=True)
class FieldSignature:
    id: Optional[int]
    type_text: str
    name: str
    type_range: TextRange


@dataclass(slots=True)
class BracketStackEntry:
    char: str
    line: int
    col: int


@dataclass(slots=True)
class BlockFrame:
    """An open `{` together with the declaration kind it belongs to."""

    kind: BlockKind
    field_ids: Set[int] = field(default_factory=set)


@dataclass(frozen=True, slots=True)
class FileStat:
    mtime: float
    size: int


@dataclass(slots=True)
class IncludeCacheEntry:
    type_map: TypeKindMap
    fetched_at: float
    file_stat: Optional[FileStat]


@dataclass(slots=True)
class DocumentAnalysisState:
    version: int
    is_analyzing: bool = False
    last_analysis_at: Optional[float] = None


@dataclass(slots=True)
class Document:
    path: Path
    text: str
    version: int = 1

    @property
    def key(self) -> str:
        return str(self.path)


DIAGNOSTIC_CODES: Dict[str, str] = {
    "syntax.unmatchedCloser": "Closing '}' or ')' without an open bracket",
    "syntax.mismatched": "Closing bracket does not match the innermost open bracket",
    "syntax.unclosed": "Bracket still open at end of file",
    "enum.valueNotInteger": "Enum member value is not an integer literal",
    "field.duplicateId": "Field id already used in the same block",
    "type.unknown": "Type is neither primitive, declared, included nor a valid container",
    "value.typeMismatch": "Default or const value does not fit the declared type",
    "typedef.unknownBase": "Base type of a typedef cannot be resolved",
    "service.extends.unknown": "Parent service in extends cannot be resolved",
    "service.extends.notService": "Parent in extends is not a service",
    "service.oneway.returnNotVoid": "oneway method returns a value",
    "service.oneway.hasThrows": "oneway method declares exceptions",
    "service.throws.unknown": "Type in throws cannot be resolved",
    "service.throws.notException": "Type in throws is not an exception",
}
