# =============================================================================
# workers/tests/test_reporting.py - Import Report Export Tests
# =============================================================================
# Tests for the delimited import report.
# =============================================================================

from datetime import datetime, timezone

from settlement_import.error_handler import validation_error, validation_warning
from settlement_import.reporting import build_import_report
from settlement_import.validation.mapping_resolver import FieldMapping
from settlement_import.validation.validation_engine import ValidationResult


GENERATED_AT = datetime(2024, 1, 15, 10, 30, tzinfo=timezone.utc)


class TestBuildImportReport:
    """Tests for build_import_report()."""

    def test_full_report(self):
        mappings = [
            FieldMapping("email", "individual_parties", "email_address", confidence=0.95),
            FieldMapping("notes"),
        ]
        results = [
            ValidationResult(field="email", record_count=3,
                             errors=[validation_error("Row 2: bad")],
                             warnings=[validation_warning("Row 3: long"), validation_warning("Row 1: long")]),
        ]
        text = build_import_report("claims.csv", "validated", 3, mappings, results,
                                   uploaded_at=GENERATED_AT, generated_at=GENERATED_AT)

        assert text.split("\n") == [
            "Data Import Report",
            "File Name,claims.csv",
            "Upload Status,validated",
            "Total Rows,3",
            "Uploaded At,2024-01-15T10:30:00+00:00",
            "Generated At,2024-01-15T10:30:00+00:00",
            "",
            "Source Column,Target Table,Target Field,Confidence",
            "email,individual_parties,email_address,95%",
            "notes,,,0%",
            "",
            "Field,Records,Errors,Warnings",
            "email,3,1,2",
            "",
        ]

    def test_mappings_only(self):
        text = build_import_report("x.csv", "mapped", 0, [], generated_at=GENERATED_AT)
        lines = text.split("\n")

        assert lines[4] == "Uploaded At,"
        assert lines[-2] == "Field,Records,Errors,Warnings"

    def test_values_with_commas_are_quoted(self):
        text = build_import_report("north, south.csv", "staged", 1, [], generated_at=GENERATED_AT)
        assert 'File Name,"north, south.csv"' in text
