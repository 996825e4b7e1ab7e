# =============================================================================
# workers/tests/test_column_profiler.py - Column Profiling Tests
# =============================================================================
# Tests for semantic type inference and the staging analysis.
# Covers:
#   - Detector priority (postal codes before phones and numbers)
#   - Override rules for postal-code names and reference identifiers
#   - Format issues, quality tiers and suggestions
#   - File-level quality score and recommendations
# =============================================================================

import pytest

from settlement_import.error_handler import ErrorCategory
from settlement_import.parsers.tabular_source import TabularSource
from settlement_import.validation.column_profiler import (
    ColumnProfiler,
    TypeOverrideRule,
    apply_override_rules,
    is_reference_column_name,
    quality_tier,
)


@pytest.fixture
def profiler() -> ColumnProfiler:
    return ColumnProfiler()


# =============================================================================
# Type Detection Tests
# =============================================================================

class TestTypeDetection:
    """Tests for ColumnProfiler.profile_column() type inference."""

    def test_zip_codes_are_postal_not_phone(self, profiler):
        """Five digit ZIP codes never come out as phones or plain numbers."""
        result = profiler.profile_column("customer_zip", ["90210", "10001", "02134"])
        assert result.type == "postal_code"
        assert "us_zip_5" in result.patterns
        assert result.confidence == 1.0

    def test_zip_values_under_neutral_name(self, profiler):
        result = profiler.profile_column("code", ["90210", "10001", "60614"])
        assert result.type == "postal_code"

    def test_phone_numbers(self, profiler):
        result = profiler.profile_column("contact", ["555-123-4567", "(555) 987-6543", "5551234567"])
        assert result.type == "phone"
        assert result.confidence == 1.0
        assert "length_10" in result.patterns

    def test_emails_with_one_bad_value(self, profiler):
        result = profiler.profile_column("contact", ["a@x.com", "b@y.org", "bad"])
        assert result.type == "email"
        assert result.confidence == 0.67
        assert "1 invalid email format(s)" in result.issues

    def test_booleans(self, profiler):
        result = profiler.profile_column("active", ["yes", "no", "yes"])
        assert result.type == "boolean"
        assert "yes_no" in result.patterns

    def test_integers_and_decimals(self, profiler):
        assert profiler.profile_column("count", ["10", "20", "30"]).type == "number"
        assert profiler.profile_column("amount", ["1.5", "2.25", "3"]).type == "decimal"

    def test_iso_dates(self, profiler):
        result = profiler.profile_column("paid_on", ["2024-01-15", "2024-02-20"])
        assert result.type == "date"
        assert "iso_format" in result.patterns

    def test_enum_needs_many_repeats(self, profiler):
        """Two labels over forty rows is an enum; over four rows it is text."""
        many = ["active", "inactive"] * 20
        assert profiler.profile_column("state", many).type == "enum"
        assert profiler.profile_column("state", ["active", "inactive"] * 2).type == "text"

    def test_undetected_values_are_text(self, profiler):
        result = profiler.profile_column("notes", ["hello there", "general remark"])
        assert result.type == "text"
        assert result.confidence == 0.8

    def test_empty_column(self, profiler):
        result = profiler.profile_column("notes", ["", "", ""])
        assert result.type == "text"
        assert "no_data" in result.patterns
        assert result.completeness == 0.0
        assert result.issues[0] == "High missing data rate: 100%"
        assert result.quality == "poor"


# =============================================================================
# Override Rule Tests
# =============================================================================

class TestOverrideRules:
    """Tests for the ordered type override rules."""

    def test_reference_column_with_dates_is_text(self, profiler):
        """A case identifier column never becomes a date column."""
        result = profiler.profile_column("case_id", ["2024-01-15", "2024-02-20"])
        assert result.type == "text"
        assert "reference_id" in result.patterns

    def test_reference_codes_are_not_dates(self, profiler):
        result = profiler.profile_column("filed", ["CA-2024-001", "NY-2023-118"])
        assert result.type == "text"

    def test_postal_name_overrides_any_type(self, profiler):
        result = profiler.profile_column("Postal Code", ["abc", "def"])
        assert result.type == "postal_code"
        assert "2 invalid postal code format(s)" in result.issues

    def test_rules_can_be_replaced(self):
        """Without rules the naive detector result stands."""
        bare = ColumnProfiler(override_rules=())
        assert bare.profile_column("zip", ["abc", "def"]).type == "text"

    def test_custom_rule_runs_in_order(self):
        rule = TypeOverrideRule("always_enum", "forced", lambda name, values, inferred: "enum")
        final_type, applied = apply_override_rules("zip", ["90210"], "postal_code", rules=(rule,))
        assert final_type == "enum"
        assert applied is rule

    @pytest.mark.parametrize("name", ["case_id", "CaseNumber", "claim_ref", "record no"])
    def test_reference_names(self, name):
        assert is_reference_column_name(name)

    def test_plain_names_are_not_references(self):
        assert not is_reference_column_name("birth_date")


# =============================================================================
# Quality Tests
# =============================================================================

class TestQuality:
    """Tests for quality tiers and suggestions."""

    def test_quality_tiers(self):
        assert quality_tier(0, 1.0, 0.9) == "excellent"
        assert quality_tier(1, 1.0, 0.9) == "good"
        assert quality_tier(3, 1.0, 0.9) == "fair"
        assert quality_tier(4, 1.0, 0.9) == "poor"
        assert quality_tier(0, 0.3, 0.9) == "poor"

    def test_postal_suggestions(self, profiler):
        result = profiler.profile_column("zip", ["90210", "10001"])
        assert "US 5-digit ZIP code detected" in result.suggestions
        assert "Store as text to preserve leading zeros" in result.suggestions

    def test_samples_are_limited(self):
        result = ColumnProfiler(sample_size=2).profile_column("city", ["Boston", "Denver", "Austin"])
        assert result.samples == ("Boston", "Denver")
        assert result.unique_count == 3
        assert result.uniqueness == 1.0


# =============================================================================
# Staging Analysis Tests
# =============================================================================

class TestStagingAnalysis:
    """Tests for ColumnProfiler.analyze()."""

    def test_clean_source(self, profiler, party_source):
        analysis = profiler.analyze(party_source)

        assert analysis.total_rows == 3
        assert analysis.total_columns == 5
        assert analysis.profile("zip_code").type == "postal_code"
        assert analysis.profile("phone").type == "phone"
        assert analysis.profile("email").type == "email"
        assert analysis.quality_score == 100
        assert analysis.recommendations == ()

    def test_sparse_column_recommendation(self, profiler):
        source = TabularSource.from_rows(["name", "notes"], [["a", ""], ["b", ""], ["c", "x"]])
        analysis = profiler.analyze(source)

        assert analysis.profile("notes").quality == "poor"
        assert any("significant missing data" in r for r in analysis.recommendations)
        completeness = [s for s in analysis.issues_summary if s.kind == "completeness"]
        assert completeness[0].column == "notes"
        assert completeness[0].severity == "high"

    def test_issues_become_profiling_records(self, profiler):
        source = TabularSource.from_rows(["zip"], [["90210"], ["bad"], ["10001"]])
        issues = profiler.analyze(source).as_validation_issues()

        assert len(issues) == 1
        assert issues[0].category is ErrorCategory.PROFILING_ISSUE
        assert not issues[0].is_blocking
        assert any("postal code" in r for r in profiler.analyze(source).recommendations)

    def test_unknown_profile_name(self, profiler, party_source):
        with pytest.raises(KeyError):
            profiler.analyze(party_source).profile("missing")
