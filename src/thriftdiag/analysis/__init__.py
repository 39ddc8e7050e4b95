from .analyzer import TextAnalyzer, analyze
from .declarations import extract_include_paths, extract_type_kinds, scan_declarations

__all__ = [
    "TextAnalyzer",
    "analyze",
    "extract_include_paths",
    "extract_type_kinds",
    "scan_declarations",
]
