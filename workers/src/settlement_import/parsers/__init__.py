"""
Source ingestion for uploaded import files
"""

from .tabular_source import CellKind, CellValue, TabularSource, normalize_headers
from .tabular_parser import TabularParser, tabular_parser

__all__ = [
    "CellKind",
    "CellValue",
    "TabularSource",
    "normalize_headers",
    "TabularParser",
    "tabular_parser",
]
