"""
Type-specific field validators

Each validator takes the trimmed cell text and returns an error message, or None
when the value satisfies its contract. The validator for a mapped field is chosen
from the target field's type and name.
"""
import re
from typing import Callable, Dict, Optional, Tuple

import phonenumbers
from phonenumbers import NumberParseException

from .column_profiler import EMAIL_PATTERN, has_phone_shape, is_postal_code, is_reference_code, parses_as_date
from .run_settings import ValidationSettings
from .schema_registry import TargetField

CURRENCY_PATTERN = re.compile(r'^(-)?\$?(-)?(\d{1,3}(,\d{3})+|\d+)(\.\d{1,2})?$')
SSN_PATTERN = re.compile(r'^(\d{3})-(\d{2})-(\d{4})$|^(\d{3})(\d{2})(\d{4})$')
EIN_PATTERN = re.compile(r'^\d{2}-\d{7}$|^\d{9}$')
TAX_ID_NAME = re.compile(r'(^|_)(ein|tin)(_number)?$')

Validator = Callable[[str, bool], Optional[str]]


def validate_email(value: str, strict: bool = False) -> Optional[str]:
    if EMAIL_PATTERN.match(value):
        return None
    return f'Invalid email format "{value}"'


def validate_phone(value: str, strict: bool = False) -> Optional[str]:
    if not has_phone_shape(value):
        return f'Invalid phone format "{value}"'
    if strict:
        try:
            parsed = phonenumbers.parse(value, 'US')
        except NumberParseException:
            return f'Invalid phone number "{value}"'
        if not phonenumbers.is_possible_number(parsed):
            return f'Invalid phone number "{value}"'
    return None


def validate_date(value: str, strict: bool = False) -> Optional[str]:
    if not is_reference_code(value) and parses_as_date(value):
        return None
    return f'Invalid date format "{value}"'


def validate_postal_code(value: str, strict: bool = False) -> Optional[str]:
    if is_postal_code(value):
        return None
    return f'Invalid postal code format "{value}"'


def validate_currency(value: str, strict: bool = False) -> Optional[str]:
    match = CURRENCY_PATTERN.match(value.replace(' ', ''))
    if match is None:
        return f'Invalid currency amount "{value}"'
    if strict and (match.group(1) or match.group(2)):
        return f'Negative amount not allowed "{value}"'
    return None


def validate_ssn(value: str, strict: bool = False) -> Optional[str]:
    match = SSN_PATTERN.match(value)
    if match is None:
        return f'Invalid SSN format "{value}"'
    area = match.group(1) or match.group(4)
    if area in ('000', '666') or area.startswith('9'):
        return f'Invalid SSN area number "{value}"'
    return None


def validate_tax_id(value: str, strict: bool = False) -> Optional[str]:
    if EIN_PATTERN.match(value):
        return None
    return f'Invalid tax ID format "{value}"'


# kind -> (validator, settings toggle)
VALIDATORS: Dict[str, Tuple[Validator, str]] = {
    'email': (validate_email, 'validate_emails'),
    'phone': (validate_phone, 'validate_phones'),
    'date': (validate_date, 'validate_dates'),
    'postal': (validate_postal_code, 'validate_postal_codes'),
    'ssn': (validate_ssn, 'validate_ssn'),
    'tax_id': (validate_tax_id, 'validate_tax_id'),
    'currency': (validate_currency, 'validate_currency'),
}


def validator_kind(target: TargetField) -> Optional[str]:
    """Validator kind for a target field, by type first and then by name"""
    name = target.field.lower()
    if target.type == 'email' or 'email' in name:
        return 'email'
    if target.type == 'phone' or 'phone' in name or 'fax' in name:
        return 'phone'
    if target.type == 'date' or 'date' in name or 'birth' in name:
        return 'date'
    if 'zip' in name or 'postal' in name:
        return 'postal'
    if 'ssn' in name:
        return 'ssn'
    if 'tax_id' in name or TAX_ID_NAME.search(name):
        return 'tax_id'
    if target.type == 'decimal' or any(marker in name for marker in ('amount', 'fee', 'rate')):
        return 'currency'
    return None


def validator_for(target: TargetField, validation_settings: ValidationSettings) -> Optional[Validator]:
    """The enabled validator for a field, or None when there is none or its toggle is off"""
    kind = validator_kind(target)
    if kind is None:
        return None
    validator, toggle = VALIDATORS[kind]
    if not getattr(validation_settings, toggle):
        return None
    return validator


def check_max_length(value: str, target: TargetField) -> Optional[str]:
    if target.max_length is not None and len(value) > target.max_length:
        return f"Value exceeds maximum length of {target.max_length} characters"
    return None


def check_enum(value: str, target: TargetField, validation_settings: ValidationSettings) -> Tuple[Optional[str], bool]:
    """Membership check for enum fields; returns (message, is_warning)"""
    if target.type != 'enum' or not target.enum_values:
        return None, False

    if validation_settings.strict_validation:
        if value in target.enum_values:
            return None, False
        candidate = value
        options = target.enum_values
    else:
        candidate = re.sub(r'[\s\-]+', '_', value.lower())
        options = tuple(option.lower() for option in target.enum_values)
        if candidate in options:
            return None, False

    if validation_settings.allow_partial_matches:
        partial = [option for option in options if option.startswith(candidate) or candidate.startswith(option)]
        if candidate and partial:
            return f'Partial match "{value}" for {", ".join(partial)}', True

    return f'Value "{value}" is not one of: {", ".join(target.enum_values)}', False
