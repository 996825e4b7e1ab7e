"""
Tabular source model

Every uploaded file is turned into an immutable TabularSource whose cells are
tagged once at ingestion, so downstream stages never re-guess a cell's kind.
"""
import math
import re
from dataclasses import dataclass, field
from datetime import date, datetime
from enum import Enum
from typing import Any, Dict, Iterable, List, Optional, Sequence, Tuple

from ..error_handler import IngestionError


class CellKind(Enum):
    """Kind assigned to a raw cell at ingestion"""
    TEXT = "text"
    NUMBER = "number"
    DATE = "date"
    BOOLEAN = "boolean"
    NULL = "null"


_BOOLEAN_TRUE = {'true', 'yes'}
_BOOLEAN_FALSE = {'false', 'no'}
_NUMBER_PATTERN = re.compile(r'^[-+]?\d+(\.\d+)?$')
_ISO_DATE_PATTERN = re.compile(r'^\d{4}-\d{2}-\d{2}(?:[T ]\d{2}:\d{2}(?::\d{2}(?:\.\d+)?)?)?(?:Z|[+-]\d{2}:?\d{2})?$')


@dataclass(frozen=True)
class CellValue:
    """A raw cell with the kind and typed value assigned at ingestion"""
    kind: CellKind
    raw: str
    value: Any = None

    @property
    def is_null(self) -> bool:
        return self.kind is CellKind.NULL

    @property
    def text(self) -> str:
        """Raw text of the cell, trimmed; empty for nulls"""
        return '' if self.is_null else self.raw.strip()

    @classmethod
    def null(cls) -> 'CellValue':
        return cls(CellKind.NULL, '', None)

    @classmethod
    def from_raw(cls, raw: Any) -> 'CellValue':
        """Tag a raw value coming from a parser or an in-memory caller"""
        if raw is None:
            return cls.null()
        if isinstance(raw, bool):
            return cls(CellKind.BOOLEAN, str(raw).lower(), raw)
        if isinstance(raw, (int, float)):
            if isinstance(raw, float) and math.isnan(raw):
                return cls.null()
            return cls(CellKind.NUMBER, _format_number(raw), raw)
        if isinstance(raw, datetime):
            return cls(CellKind.DATE, raw.isoformat(), raw)
        if isinstance(raw, date):
            return cls(CellKind.DATE, raw.isoformat(), raw)

        text = str(raw)
        stripped = text.strip()
        if not stripped or stripped.lower() in ('nan', 'null', 'none'):
            return cls.null()

        lowered = stripped.lower()
        if lowered in _BOOLEAN_TRUE:
            return cls(CellKind.BOOLEAN, text, True)
        if lowered in _BOOLEAN_FALSE:
            return cls(CellKind.BOOLEAN, text, False)

        cleaned = stripped.replace('$', '').replace(',', '')
        # Leading zeros are identifiers (ZIP codes, account numbers), not numbers
        if _NUMBER_PATTERN.match(cleaned) and not _has_significant_leading_zero(cleaned):
            number = float(cleaned) if '.' in cleaned else int(cleaned)
            return cls(CellKind.NUMBER, text, number)

        if _ISO_DATE_PATTERN.match(stripped):
            try:
                parsed = datetime.fromisoformat(stripped.replace('Z', '+00:00'))
                return cls(CellKind.DATE, text, parsed)
            except ValueError:
                pass

        return cls(CellKind.TEXT, text, stripped)

    def with_text(self, text: str) -> 'CellValue':
        """Re-tag after normalization changed the text"""
        return CellValue.from_raw(text)


def _format_number(value: Any) -> str:
    if isinstance(value, float) and value.is_integer():
        return str(int(value))
    return str(value)


def _has_significant_leading_zero(cleaned: str) -> bool:
    digits = cleaned.lstrip('+-')
    return len(digits) > 1 and digits.startswith('0') and not digits.startswith('0.')


Row = Tuple[CellValue, ...]


@dataclass(frozen=True)
class TabularSource:
    """Ordered headers and tagged rows of one uploaded file"""
    headers: Tuple[str, ...]
    rows: Tuple[Row, ...]
    file_name: str = 'upload.csv'
    file_type: str = 'csv'
    metadata: Dict[str, Any] = field(default_factory=dict, compare=False, hash=False)

    def __post_init__(self):
        if len(set(self.headers)) != len(self.headers):
            raise IngestionError("Column headers must be unique")
        width = len(self.headers)
        for index, row in enumerate(self.rows):
            if len(row) != width:
                raise IngestionError(
                    f"Row {index + 1} has {len(row)} cells, expected {width}"
                )

    @property
    def total_rows(self) -> int:
        return len(self.rows)

    def column_index(self, header: str) -> int:
        try:
            return self.headers.index(header)
        except ValueError:
            raise KeyError(f"Unknown column: {header}") from None

    def column(self, header: str) -> List[CellValue]:
        index = self.column_index(header)
        return [row[index] for row in self.rows]

    def row_dict(self, row_index: int) -> Dict[str, CellValue]:
        return dict(zip(self.headers, self.rows[row_index]))

    @classmethod
    def from_rows(
        cls,
        headers: Sequence[str],
        rows: Iterable[Sequence[Any]],
        file_name: str = 'upload.csv',
        file_type: str = 'csv',
        metadata: Optional[Dict[str, Any]] = None,
    ) -> 'TabularSource':
        """Build a source from raw values, padding or truncating ragged rows"""
        clean_headers = normalize_headers(headers)
        width = len(clean_headers)
        tagged_rows = []
        for row in rows:
            cells = [CellValue.from_raw(value) for value in list(row)[:width]]
            cells.extend(CellValue.null() for _ in range(width - len(cells)))
            tagged_rows.append(tuple(cells))

        return cls(
            headers=tuple(clean_headers),
            rows=tuple(tagged_rows),
            file_name=file_name,
            file_type=file_type,
            metadata=dict(metadata or {}),
        )


def normalize_headers(headers: Sequence[Any]) -> List[str]:
    """Fill blank headers and make duplicates unique with numeric suffixes"""
    result: List[str] = []
    seen: Dict[str, int] = {}
    for position, header in enumerate(headers, start=1):
        name = '' if header is None else str(header).strip()
        if not name or name.lower().startswith('unnamed:'):
            name = f"column_{position}"
        if name in seen:
            seen[name] += 1
            candidate = f"{name}_{seen[name]}"
            while candidate in seen:
                seen[name] += 1
                candidate = f"{name}_{seen[name]}"
            name = candidate
        seen.setdefault(name, 1)
        result.append(name)
    return result
