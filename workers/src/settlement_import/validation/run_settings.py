"""
Typed settings for one validation run
"""
from typing import Literal, Optional, Tuple

from pydantic import BaseModel, ConfigDict, Field

from ..config import settings


class CustomDuplicateRules(BaseModel):
    """Column subsets for the custom duplicate match mode"""
    model_config = ConfigDict(frozen=True)

    exact_match_columns: Tuple[str, ...] = ()
    fuzzy_match_columns: Tuple[str, ...] = ()
    ignore_columns: Tuple[str, ...] = ()


class ValidationSettings(BaseModel):
    """Options recognised by the validation engine; immutable for the run"""
    model_config = ConfigDict(frozen=True, extra='forbid')

    # Per-type validator toggles
    validate_emails: bool = True
    validate_phones: bool = True
    validate_dates: bool = True
    validate_postal_codes: bool = True
    validate_currency: bool = True
    validate_ssn: bool = True
    validate_tax_id: bool = True

    # Duplicate detection
    enable_duplicate_detection: bool = True
    duplicate_match_type: Literal['exact', 'fuzzy', 'custom'] = 'exact'
    duplicate_action: Literal['skip', 'error', 'merge', 'flag'] = 'flag'
    duplicate_columns: Tuple[str, ...] = ()
    fuzzy_threshold: int = Field(default_factory=lambda: settings.default_fuzzy_threshold, ge=0, le=100)
    custom_duplicate_rules: CustomDuplicateRules = Field(default_factory=CustomDuplicateRules)

    # Missing data and normalization
    handle_missing_data: Literal['skip', 'error', 'default', 'remove_row'] = 'skip'
    default_value: str = ''
    trim_whitespace: bool = True
    standardize_case: Literal['none', 'upper', 'lower', 'title'] = 'none'
    remove_special_characters: bool = False

    # Strictness
    strict_validation: bool = False
    allow_partial_matches: bool = True
    skip_empty_fields: bool = True

    # Throughput
    batch_size: int = Field(default_factory=lambda: settings.default_batch_size, ge=1)
    max_errors: int = Field(default_factory=lambda: settings.default_max_errors, ge=1)
    sample_validation: bool = False
    sample_size: int = Field(default_factory=lambda: settings.default_sample_size_percent, ge=1, le=100)
    sample_seed: Optional[int] = None

    @property
    def active_validator_count(self) -> int:
        return sum([
            self.validate_emails,
            self.validate_phones,
            self.validate_dates,
            self.validate_postal_codes,
            self.validate_currency,
            self.validate_ssn,
            self.validate_tax_id,
        ])
