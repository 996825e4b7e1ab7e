"""
Data Normalization Engine

Applies the run's cleaning settings to mapped cells before any validator runs:
whitespace trimming, case standardization, special-character removal and the
missing-data policy.
"""
import re
from dataclasses import dataclass
from typing import Dict, List, Optional, Sequence, Tuple

import structlog

from ..error_handler import ValidationIssue, validation_error
from ..parsers.tabular_source import CellValue, Row
from .mapping_resolver import FieldMapping
from .run_settings import ValidationSettings

logger = structlog.get_logger(__name__)

SPECIAL_CHARACTERS = re.compile(r'[^A-Za-z0-9 @.+\-_]')
TITLE_WORD = re.compile(r'\w\S*')


@dataclass(frozen=True)
class ProcessedRow:
    """A source row after normalization; row_number is the 1-based data row"""
    row_number: int
    cells: Row

    def text(self, index: int) -> str:
        return self.cells[index].text


@dataclass
class RowNormalization:
    row: Optional[ProcessedRow]
    issues: List[ValidationIssue]

    @property
    def removed(self) -> bool:
        return self.row is None


class DataNormalizer:
    """Per-row normalization for the mapped columns of one run"""

    def __init__(self, headers: Sequence[str], mappings: Sequence[FieldMapping],
                 validation_settings: ValidationSettings):
        self.settings = validation_settings
        self.mapped_columns: Dict[int, FieldMapping] = {
            index: mapping
            for mapping in mappings if mapping.is_mapped
            for index, header in enumerate(headers) if header == mapping.source_column
        }

    def normalize_text(self, raw: str) -> str:
        """Apply trim, special-character and case settings to one value"""
        value = raw.strip() if self.settings.trim_whitespace else raw
        if self.settings.remove_special_characters:
            value = SPECIAL_CHARACTERS.sub('', value)

        case = self.settings.standardize_case
        if case == 'upper':
            value = value.upper()
        elif case == 'lower':
            value = value.lower()
        elif case == 'title':
            value = TITLE_WORD.sub(lambda m: m.group(0)[0].upper() + m.group(0)[1:].lower(), value)
        return value

    def normalize_cell(self, cell: CellValue) -> CellValue:
        if cell.is_null:
            return cell
        normalized = self.normalize_text(cell.raw)
        if normalized == cell.raw:
            return cell
        return cell.with_text(normalized)

    def normalize_row(self, row_index: int, row: Row) -> RowNormalization:
        """Normalize one row; a removed row comes back with row=None"""
        row_number = row_index + 1
        cells = list(row)
        issues: List[ValidationIssue] = []
        empty_columns: List[str] = []

        for index, mapping in self.mapped_columns.items():
            cell = self.normalize_cell(cells[index])
            if cell.is_null:
                empty_columns.append(mapping.source_column)
                cell, issue = self._apply_missing_policy(row_number, mapping)
                if issue is not None:
                    issues.append(issue)
            cells[index] = cell

        if empty_columns and self.settings.handle_missing_data == 'remove_row':
            return RowNormalization(row=None, issues=[])

        return RowNormalization(row=ProcessedRow(row_number, tuple(cells)), issues=issues)

    def _apply_missing_policy(self, row_number: int,
                              mapping: FieldMapping) -> Tuple[CellValue, Optional[ValidationIssue]]:
        policy = self.settings.handle_missing_data
        if policy == 'default' and self.settings.default_value:
            return CellValue.from_raw(self.settings.default_value), None
        if policy == 'error' and (mapping.required or not self.settings.skip_empty_fields):
            return CellValue.null(), validation_error(
                f"Row {row_number}: Missing value for {mapping.target_table}.{mapping.target_field}",
                row=row_number,
                column=mapping.source_column,
            )
        return CellValue.null(), None
