from __future__ import annotations

import re
from typing import List, Mapping, Optional, Tuple

from .lexer import find_top_level, split_top_level, strip_type_annotations

PRIMITIVES = frozenset(
    {"void", "bool", "byte", "i8", "i16", "i32", "i64", "double", "string", "binary", "uuid", "slist"}
)
INTEGER_TYPES = frozenset({"byte", "i8", "i16", "i32", "i64"})

CONTAINER_ARITY = {"list": 1, "set": 1, "map": 2}

CONTAINER_RE = re.compile(r"^(?P<name>list|set|map)\s*<(?P<inner>.*)>$", re.DOTALL)
DOTTED_RE = re.compile(r"^[A-Za-z_][A-Za-z0-9_]*(?:\.[A-Za-z_][A-Za-z0-9_]*)+$")
INTEGER_RE = re.compile(r"^[+-]?(?:0[xX][0-9A-Fa-f]+|\d+)$")
FLOAT_RE = re.compile(r"^[+-]?(?:\d+(?:\.\d*)?|\.\d+)(?:[eE][+-]?\d+)?$")
UUID_RE = re.compile(r"^[0-9a-fA-F]{8}-(?:[0-9a-fA-F]{4}-){3}[0-9a-fA-F]{12}$")


def is_integer_literal(text: str) -> bool:
    return bool(INTEGER_RE.match(text.strip()))


def is_float_literal(text: str) -> bool:
    return bool(FLOAT_RE.match(text.strip()))


def is_quoted_string(text: str) -> bool:
    t = text.strip()
    return len(t) >= 2 and t[0] == t[-1] and t[0] in "'\""


def parse_container(type_text: str) -> Optional[Tuple[str, List[str]]]:
    """Split ``list<T>`` / ``set<T>`` / ``map<K,V>`` into name and component types.

    Returns None for anything that is not shaped like a container. Arity is
    not checked here.
    """
    match = CONTAINER_RE.match(type_text.strip())
    if not match:
        return None
    args = [piece.strip() for _, piece in split_top_level(match.group("inner"))]
    return match.group("name"), args


def is_known_type(type_text: str, known: Mapping[str, str]) -> bool:
    """Resolve a type expression against primitives and declared names.

    Dotted ``ns.Type`` references are accepted as-is; containers resolve
    only when every component type resolves.
    """
    t = strip_type_annotations(type_text)
    if not t:
        return False
    if t in PRIMITIVES or t in known:
        return True
    if DOTTED_RE.match(t):
        return True
    container = parse_container(t)
    if container is None:
        return False
    name, args = container
    if len(args) != CONTAINER_ARITY[name] or not all(args):
        return False
    return all(is_known_type(arg, known) for arg in args)


def resolve_kind(name: str, known: Mapping[str, str]) -> Optional[str]:
    """Look a name up directly, falling back to the last segment of a dotted name."""
    kind = known.get(name)
    if kind is None and "." in name:
        kind = known.get(name.rsplit(".", 1)[1])
    return kind


def _has_top_level_colon(inner: str) -> bool:
    return find_top_level(inner, ":") != -1


def value_matches_type(value: str, type_text: str) -> bool:
    """Check the literal shape of a default/const value against its declared type.

    Only primitives and containers are checked; user-defined types (enums,
    structs, typedefs) accept any value.
    """
    t = strip_type_annotations(type_text)
    v = value.strip()
    if not v:
        return True
    if t in INTEGER_TYPES:
        return is_integer_literal(v)
    if t == "double":
        return is_integer_literal(v) or is_float_literal(v)
    if t == "bool":
        return v in ("true", "false")
    if t in ("string", "binary"):
        return is_quoted_string(v)
    if t == "uuid":
        return is_quoted_string(v) and bool(UUID_RE.match(v[1:-1]))

    container = parse_container(t)
    if container is None:
        return True
    name = container[0]
    is_list_shape = v.startswith("[") and v.endswith("]")
    is_brace_shape = v.startswith("{") and v.endswith("}")
    inner = v[1:-1].strip()
    if name == "list":
        return is_list_shape
    if name == "set":
        return is_list_shape or (is_brace_shape and not _has_top_level_colon(inner))
    return is_brace_shape and (not inner or _has_top_level_colon(inner))
