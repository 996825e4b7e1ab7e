"""
Delimited text export of an import: file summary, mappings and validation results
"""
import csv
import io
from datetime import datetime, timezone
from typing import Optional, Sequence

from .validation.mapping_resolver import FieldMapping
from .validation.validation_engine import ValidationResult


def _timestamp(value: Optional[datetime]) -> str:
    return value.isoformat() if value is not None else ''


def build_import_report(
    file_name: str,
    upload_status: str,
    total_rows: int,
    mappings: Sequence[FieldMapping],
    results: Sequence[ValidationResult] = (),
    uploaded_at: Optional[datetime] = None,
    generated_at: Optional[datetime] = None,
) -> str:
    buffer = io.StringIO()
    writer = csv.writer(buffer, lineterminator='\n')

    writer.writerow(['Data Import Report'])
    writer.writerow(['File Name', file_name])
    writer.writerow(['Upload Status', upload_status])
    writer.writerow(['Total Rows', total_rows])
    writer.writerow(['Uploaded At', _timestamp(uploaded_at)])
    writer.writerow(['Generated At', _timestamp(generated_at or datetime.now(timezone.utc))])
    writer.writerow([])

    writer.writerow(['Source Column', 'Target Table', 'Target Field', 'Confidence'])
    for mapping in mappings:
        writer.writerow([
            mapping.source_column,
            mapping.target_table or '',
            mapping.target_field or '',
            f"{round(mapping.confidence * 100)}%",
        ])
    writer.writerow([])

    writer.writerow(['Field', 'Records', 'Errors', 'Warnings'])
    for result in results:
        writer.writerow([result.field, result.record_count, len(result.errors), len(result.warnings)])

    return buffer.getvalue()
