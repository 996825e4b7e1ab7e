# =============================================================================
# workers/tests/test_mapping_resolver.py - Schema and Field Mapping Tests
# =============================================================================
# Tests for the target schema registry and the mapping resolver.
# Covers:
#   - Default schema contents and custom fields
#   - Name-based confidence with type adjustment
#   - Operator overrides and the table/field invariant
#   - Required-field checks and mapping templates
# =============================================================================

import pytest

from settlement_import.error_handler import ErrorCategory, SchemaError
from settlement_import.validation.column_profiler import ColumnProfiler
from settlement_import.validation.mapping_resolver import (
    MAPPED,
    SUGGESTED,
    UNMAPPED,
    FieldMapping,
    MappingResolver,
    MappingTemplate,
    mapping_progress,
    normalize_name,
)
from settlement_import.validation.schema_registry import clean_field_name


@pytest.fixture
def resolver(registry) -> MappingResolver:
    return MappingResolver(registry)


# =============================================================================
# Schema Registry Tests
# =============================================================================

class TestSchemaRegistry:
    """Tests for SchemaRegistry."""

    def test_default_tables(self, registry):
        assert registry.table_names == ["individual_parties", "business_parties", "payments", "parties"]
        assert registry.find("individual_parties", "zip_code").type == "text"
        assert registry.find("payments", "amount_due").type == "decimal"
        assert registry.required_fields() == []

    def test_unknown_lookups(self, registry):
        assert registry.find("individual_parties", "nope") is None
        assert registry.find(None, None) is None
        with pytest.raises(SchemaError):
            registry.table("ledger")

    def test_add_custom_field(self, registry):
        added = registry.add_custom_field("payments", "Claim Number!", field_type="text", required=True)

        assert added.field == "claim_number"
        assert added.is_custom
        assert added.category == "Custom Fields"
        assert registry.find("payments", "claim_number") == added
        assert registry.required_fields() == [added]

    def test_custom_enum_keeps_options(self, registry):
        added = registry.add_custom_field("parties", "tier", field_type="enum", enum_values=["gold", " silver ", ""])
        assert added.enum_values == ("gold", "silver")

    @pytest.mark.parametrize("kwargs", [
        {"table": "payments", "name": "   "},
        {"table": "payments", "name": "x", "field_type": "blob"},
        {"table": "payments", "name": "x", "field_type": "enum"},
        {"table": "payments", "name": "amount_due"},
        {"table": "ledger", "name": "x"},
    ])
    def test_invalid_custom_fields(self, registry, kwargs):
        with pytest.raises(SchemaError):
            registry.add_custom_field(**kwargs)

    def test_clean_field_name(self):
        assert clean_field_name("  Date of  Loss (UTC) ") == "date_of_loss_utc"


# =============================================================================
# Confidence Tests
# =============================================================================

class TestMatchConfidence:
    """Tests for MappingResolver.best_match() and match_confidence()."""

    def test_normalize_name(self):
        assert normalize_name("The Zip-Code") == "zipcode"

    def test_zip_code_maps_to_zip_field(self, resolver):
        target, confidence = resolver.best_match("zip_code", "postal_code")
        assert (target.table, target.field) == ("individual_parties", "zip_code")
        assert confidence == 1.0

    def test_email_column(self, resolver):
        target, _ = resolver.best_match("Email", "email")
        assert (target.table, target.field) == ("individual_parties", "email_address")

    def test_pattern_match(self, resolver):
        target, confidence = resolver.best_match("dob", "date")
        assert target.field == "date_of_birth"
        assert confidence > 0.8

    def test_no_match(self, resolver):
        assert resolver.best_match("zzqq") is None

    def test_type_mismatch_lowers_confidence(self, resolver, registry):
        target = registry.find("payments", "amount_due")
        matched = resolver.match_confidence("amount", target, "decimal")
        mismatched = resolver.match_confidence("amount", target, "date")
        assert mismatched < matched

    def test_suggestions_are_ranked(self, resolver):
        suggestions = resolver.suggestions("phone", "phone", limit=3)
        assert len(suggestions) == 3
        scores = [score for _, score in suggestions]
        assert scores == sorted(scores, reverse=True)


# =============================================================================
# Resolution Tests
# =============================================================================

class TestResolve:
    """Tests for MappingResolver.resolve() and operator edits."""

    def test_resolve_party_columns(self, resolver, party_source):
        mappings = resolver.resolve(ColumnProfiler().profile(party_source))
        targets = {m.source_column: m.target_key for m in mappings}

        assert targets == {
            "first_name": ("individual_parties", "first_name"),
            "last_name": ("individual_parties", "last_name"),
            "email": ("individual_parties", "email_address"),
            "phone": ("individual_parties", "home_phone"),
            "zip_code": ("individual_parties", "zip_code"),
        }
        assert all(m.status == MAPPED for m in mappings)

    def test_half_set_mapping_is_rejected(self):
        with pytest.raises(ValueError):
            FieldMapping(source_column="a", target_table="payments")

    def test_operator_update(self, resolver):
        mappings = [FieldMapping(source_column="amt")]
        updated = resolver.update_mapping(mappings, "amt", "payments", "amount_due")

        assert updated[0].target_key == ("payments", "amount_due")
        assert updated[0].confidence == 0.8
        assert updated[0].status == MAPPED
        assert mappings[0].status == UNMAPPED

    def test_operator_clear(self, resolver):
        mappings = [FieldMapping("amt", "payments", "amount_due", status=MAPPED)]
        cleared = resolver.update_mapping(mappings, "amt", None, None)
        assert not cleared[0].is_mapped
        assert cleared[0].status == UNMAPPED

    def test_update_rejects_bad_targets(self, resolver):
        mappings = [FieldMapping(source_column="amt")]
        with pytest.raises(ValueError):
            resolver.update_mapping(mappings, "amt", "payments", None)
        with pytest.raises(SchemaError):
            resolver.update_mapping(mappings, "amt", "payments", "nope")

    def test_auto_map_remaining_keeps_operator_choices(self, resolver):
        mappings = [
            FieldMapping("email", "business_parties", "email_address", confidence=0.8, status=MAPPED),
            FieldMapping("city"),
            FieldMapping("zzqq"),
        ]
        result = resolver.auto_map_remaining(mappings)

        assert result[0].target_table == "business_parties"
        assert result[1].target_key == ("individual_parties", "city")
        assert not result[2].is_mapped

    def test_suggested_status_below_threshold(self, resolver):
        """A date field fed by a numeric column is only suggested."""
        profile = ColumnProfiler().profile_column("dob", ["10", "20", "30"])
        mapping = resolver.resolve([profile])[0]

        assert mapping.target_key == ("individual_parties", "date_of_birth")
        assert mapping.confidence < 0.8
        assert mapping.status == SUGGESTED

    def test_custom_field_wins_exact_name(self, resolver, registry):
        registry.add_custom_field("payments", "claim_number")
        target, confidence = resolver.best_match("Claim Number")
        assert (target.table, target.field) == ("payments", "claim_number")
        assert confidence == 1.0

    def test_missing_required(self, resolver, registry):
        registry.add_custom_field("payments", "claim_number", required=True)
        issues = resolver.missing_required([FieldMapping("zip", "individual_parties", "zip_code")])

        assert len(issues) == 1
        assert issues[0].message == "Required field payments.claim_number has no source column"
        assert issues[0].category is ErrorCategory.MAPPING_ERROR
        assert issues[0].is_blocking

        satisfied = resolver.missing_required([FieldMapping("claim", "payments", "claim_number")])
        assert satisfied == []

    def test_duplicate_targets(self, resolver):
        issues = resolver.duplicate_targets([
            FieldMapping("phone", "individual_parties", "home_phone"),
            FieldMapping("home_phone", "individual_parties", "home_phone"),
            FieldMapping("notes"),
        ])

        assert len(issues) == 1
        assert issues[0].message == "Columns phone and home_phone both map to individual_parties.home_phone"
        assert issues[0].column == "home_phone"
        assert issues[0].category is ErrorCategory.MAPPING_ERROR
        assert issues[0].is_blocking

        distinct = resolver.duplicate_targets([
            FieldMapping("phone", "individual_parties", "home_phone"),
            FieldMapping("cell", "individual_parties", "cell_phone"),
        ])
        assert distinct == []

    def test_mapping_progress(self):
        mappings = [FieldMapping("a", "payments", "amount_due"), FieldMapping("b"),
                    FieldMapping("c", "payments", "bank_name"), FieldMapping("d")]
        assert mapping_progress(mappings) == 50.0
        assert mapping_progress([]) == 0.0


# =============================================================================
# Template Tests
# =============================================================================

class TestTemplates:
    """Tests for saving and applying mapping templates."""

    def test_save_and_apply(self, resolver):
        source_mappings = [FieldMapping("amt", "payments", "amount_due", confidence=0.9, status=MAPPED),
                           FieldMapping("notes")]
        template = resolver.save_template("payments", "Monthly payment file", source_mappings)
        assert [m.source_column for m in template.mappings] == ["amt"]

        restored = MappingTemplate.from_dict(template.to_dict())
        applied = resolver.apply_template(restored, [FieldMapping("amt"), FieldMapping("other")])

        assert applied[0].target_key == ("payments", "amount_due")
        assert applied[0].status == MAPPED
        assert not applied[1].is_mapped

    def test_apply_skips_fields_missing_from_schema(self, resolver):
        template = MappingTemplate("old", "", [FieldMapping("x", "payments", "retired_field")])
        applied = resolver.apply_template(template, [FieldMapping("x")])
        assert not applied[0].is_mapped
