"""
Field Mapping System

Binds source columns to (table, field) targets in the schema registry:
- Name-based confidence scoring with pattern groups per domain
- Type-compatibility adjustment from the column profile
- Operator overrides that keep the table/field invariant
- Reusable mapping templates
"""
import re
from dataclasses import dataclass, field, replace
from datetime import datetime, timezone
from typing import Any, Dict, List, Optional, Sequence, Tuple

import structlog

from ..error_handler import ErrorCategory, ErrorSeverity, SchemaError, ValidationIssue
from .column_profiler import ColumnProfile
from .schema_registry import SchemaRegistry, TargetField

logger = structlog.get_logger(__name__)

MAPPED = 'mapped'
SUGGESTED = 'suggested'
UNMAPPED = 'unmapped'

MIN_MATCH_CONFIDENCE = 0.3
MAPPED_CONFIDENCE = 0.8
AUTO_MAP_CONFIDENCE = 0.5
SUGGESTION_CONFIDENCE = 0.1
OPERATOR_CONFIDENCE = 0.8


@dataclass(frozen=True)
class FieldMapping:
    """Binding of one source column to a target field"""
    source_column: str
    target_table: Optional[str] = None
    target_field: Optional[str] = None
    required: bool = False
    confidence: float = 0.0
    validated: bool = False
    status: str = UNMAPPED

    def __post_init__(self):
        if (self.target_table is None) != (self.target_field is None):
            raise ValueError(
                f"Mapping for {self.source_column} must set both target table and field, or neither"
            )

    @property
    def is_mapped(self) -> bool:
        return self.target_table is not None

    @property
    def target_key(self) -> Optional[Tuple[str, str]]:
        return (self.target_table, self.target_field) if self.is_mapped else None

    def to_dict(self) -> Dict[str, Any]:
        return {
            'source_column': self.source_column,
            'target_table': self.target_table,
            'target_field': self.target_field,
            'required': self.required,
            'confidence': self.confidence,
            'validated': self.validated,
            'status': self.status,
        }


@dataclass
class MappingTemplate:
    """Saved set of mappings that can be re-applied to later uploads"""
    name: str
    description: str
    mappings: List[FieldMapping]
    created_at: datetime = field(default_factory=lambda: datetime.now(timezone.utc))
    updated_at: datetime = field(default_factory=lambda: datetime.now(timezone.utc))

    def to_dict(self) -> Dict[str, Any]:
        """Convert to dictionary for storage"""
        return {
            'name': self.name,
            'description': self.description,
            'mappings': [m.to_dict() for m in self.mappings],
            'created_at': self.created_at.isoformat(),
            'updated_at': self.updated_at.isoformat(),
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> 'MappingTemplate':
        """Create from dictionary"""
        return cls(
            name=data['name'],
            description=data.get('description', ''),
            mappings=[FieldMapping(**m) for m in data.get('mappings', [])],
            created_at=datetime.fromisoformat(data['created_at']),
            updated_at=datetime.fromisoformat(data['updated_at']),
        )


# Each entry: (source patterns, target field, base confidence)
PATTERN_GROUPS: Dict[str, List[Tuple[Tuple[str, ...], str, float]]] = {
    'names': [
        (('firstname', 'first_name', 'fname', 'givenname', 'given_name', 'forename'), 'first_name', 0.95),
        (('lastname', 'last_name', 'lname', 'surname', 'familyname', 'family_name'), 'last_name', 0.95),
        (('middlename', 'middle_name', 'mname', 'middleinitial', 'middle_initial', 'mi'), 'middle_name', 0.9),
        (('fullname', 'full_name', 'name', 'clientname', 'client_name'), 'first_name', 0.7),
        (('title', 'prefix', 'salutation', 'mr', 'ms', 'dr'), 'title_prefix', 0.85),
        (('suffix', 'jr', 'sr', 'iii', 'iv'), 'suffix', 0.9),
        (('maidenname', 'maiden_name', 'birthname', 'birth_name'), 'maiden_name', 0.9),
    ],
    'contact': [
        (('email', 'emailaddress', 'email_address', 'e_mail', 'electronic_mail'), 'email_address', 0.95),
        (('phone', 'phonenumber', 'phone_number', 'telephone', 'tel'), 'home_phone', 0.8),
        (('cellphone', 'cell_phone', 'cellular', 'mobile', 'mobilenumber', 'mobile_number'), 'cell_phone', 0.95),
        (('homephone', 'home_phone', 'homenumber', 'home_number'), 'home_phone', 0.95),
        (('workphone', 'work_phone', 'businessphone', 'business_phone', 'officephone', 'office_phone'),
         'work_phone', 0.9),
        (('fax', 'faxnumber', 'fax_number', 'facsimile'), 'fax_number', 0.95),
    ],
    'address': [
        (('address', 'streetaddress', 'street_address', 'addr', 'address1', 'address_1'), 'street_address', 0.9),
        (('city', 'municipality', 'town'), 'city', 0.95),
        (('state', 'province', 'region'), 'state', 0.95),
        (('zip', 'zipcode', 'zip_code', 'postal', 'postalcode', 'postal_code', 'postcode'), 'zip_code', 0.95),
        (('country', 'nation'), 'country', 0.9),
        (('mailingaddress', 'mailing_address', 'mail_address'), 'mailing_address', 0.85),
        (('alternateaddress', 'alternate_address', 'secondaddress', 'second_address'), 'alternate_address', 0.85),
    ],
    'business': [
        (('businessname', 'business_name', 'companyname', 'company_name', 'company', 'corporation', 'corp'),
         'business_name', 0.95),
        (('dba', 'doingbusinessas', 'doing_business_as', 'tradename', 'trade_name'), 'dba_name', 0.9),
        (('ein', 'employeridentification', 'employer_identification', 'taxid', 'tax_id', 'federalid',
          'federal_id'), 'ein', 0.95),
        (('businesstype', 'business_type', 'entitytype', 'entity_type', 'companytype', 'company_type'),
         'business_type', 0.9),
        (('industry', 'industryclass', 'industry_class', 'businesscategory', 'business_category'),
         'industry_classification', 0.85),
    ],
    'payment': [
        (('amount', 'amountdue', 'amount_due', 'payment', 'paymentamount', 'payment_amount'), 'amount_due', 0.9),
        (('settlementclass', 'settlement_class', 'class', 'claimclass', 'claim_class'), 'settlement_class', 0.95),
        (('paymentstatus', 'payment_status', 'status', 'claimstatus', 'claim_status'), 'payment_status', 0.9),
        (('bankname', 'bank_name', 'bank', 'financialinstitution', 'financial_institution'), 'bank_name', 0.9),
        (('accountnumber', 'account_number', 'acctnum', 'acct_num'), 'account_number_encrypted', 0.9),
        (('routingnumber', 'routing_number', 'routing', 'aba', 'abanumber', 'aba_number'), 'routing_number', 0.95),
    ],
    'date': [
        (('dateofbirth', 'date_of_birth', 'birthdate', 'birth_date', 'dob', 'birthday'), 'date_of_birth', 0.95),
        (('dateofdeath', 'date_of_death', 'deathdate', 'death_date', 'dod'), 'date_of_death', 0.95),
        (('incorporationdate', 'incorporation_date', 'formationdate', 'formation_date'),
         'articles_of_incorporation_date', 0.9),
    ],
    'identification': [
        (('ssn', 'socialsecurity', 'social_security', 'socialsecuritynumber', 'social_security_number'),
         'ssn_encrypted', 0.95),
        (('gender', 'sex'), 'gender', 0.95),
        (('maritalstatus', 'marital_status', 'marriagestatus', 'marriage_status'), 'marital_status', 0.9),
    ],
    'legal': [
        (('attorney', 'lawyer', 'attorneyname', 'attorney_name', 'counsel'), 'attorney_name', 0.9),
        (('guardian', 'legalguardian', 'legal_guardian'), 'guardian', 0.95),
        (('representative', 'legalrepresentative', 'legal_representative'), 'representative', 0.9),
    ],
}

COMMON_FIELDS = frozenset({
    'first_name', 'last_name', 'email_address', 'phone_number', 'home_phone', 'cell_phone',
    'street_address', 'city', 'state', 'zip_code', 'business_name', 'amount_due',
})

# Profile type -> field types it sits well in
COMPATIBLE_TYPES: Dict[str, Tuple[str, ...]] = {
    'text': ('text', 'enum'),
    'reference_id': ('text',),
    'postal_code': ('text',),
    'email': ('email', 'text'),
    'phone': ('phone', 'text'),
    'date': ('date',),
    'number': ('number', 'decimal'),
    'decimal': ('decimal', 'number'),
    'boolean': ('boolean',),
    'enum': ('enum', 'text'),
}
STRONG_TYPES = frozenset({'email', 'phone', 'date', 'number', 'decimal', 'boolean'})


def normalize_name(name: str) -> str:
    """Lowercase alphanumerics with a leading article word dropped"""
    lowered = re.sub(r'^(the|a|an)[^a-z0-9]+', '', name.strip().lower())
    return re.sub(r'[^a-z0-9]', '', lowered)


def _pattern_confidence(source: str, target_field: str) -> float:
    best = 0.0
    for entries in PATTERN_GROUPS.values():
        for patterns, field_name, base in entries:
            if field_name != target_field:
                continue
            for pattern in patterns:
                if source == pattern:
                    score = base
                elif pattern in source:
                    score = base * 0.9
                elif source and source in pattern:
                    score = base * 0.8
                else:
                    continue
                best = max(best, score)
                break
    return best


def _type_adjustment(profile_type: Optional[str], field_type: str) -> float:
    if profile_type is None:
        return 1.0
    if field_type in COMPATIBLE_TYPES.get(profile_type, ()):
        return 1.05
    if profile_type in STRONG_TYPES and field_type in STRONG_TYPES:
        return 0.8
    return 1.0


class MappingResolver:
    """Field mapping resolution against a schema registry"""

    def __init__(self, registry: Optional[SchemaRegistry] = None):
        self.registry = registry or SchemaRegistry()

    def match_confidence(self, source_column: str, target: TargetField,
                         profile_type: Optional[str] = None) -> float:
        """Confidence that a source column holds the given target field"""
        normalized_source = normalize_name(source_column)
        normalized_field = normalize_name(target.field)

        if normalized_source and normalized_source == normalized_field:
            confidence = 1.0
        elif normalized_source and (normalized_field in normalized_source
                                    or normalized_source in normalized_field):
            confidence = 0.9
        else:
            confidence = _pattern_confidence(source_column.strip().lower(), target.field)

        if target.field in COMMON_FIELDS:
            confidence *= 1.1
        if target.is_custom and confidence < 0.8:
            confidence *= 0.7
        confidence *= _type_adjustment(profile_type, target.type)

        return min(confidence, 1.0)

    def suggestions(self, source_column: str, profile_type: Optional[str] = None,
                    limit: int = 5) -> List[Tuple[TargetField, float]]:
        """Ranked candidate fields for one column"""
        scored = [
            (target, self.match_confidence(source_column, target, profile_type))
            for target in self.registry.fields()
        ]
        scored = [item for item in scored if item[1] > SUGGESTION_CONFIDENCE]
        scored.sort(key=lambda item: item[1], reverse=True)
        return scored[:limit]

    def best_match(self, source_column: str,
                   profile_type: Optional[str] = None) -> Optional[Tuple[TargetField, float]]:
        best: Optional[Tuple[TargetField, float]] = None
        for target in self.registry.fields():
            confidence = self.match_confidence(source_column, target, profile_type)
            if confidence > MIN_MATCH_CONFIDENCE and (best is None or confidence > best[1]):
                best = (target, confidence)
        return best

    def resolve(self, profiles: Sequence[ColumnProfile]) -> List[FieldMapping]:
        """One mapping per profiled column"""
        mappings = []
        for column_profile in profiles:
            match = self.best_match(column_profile.name, column_profile.type)
            if match is None:
                mappings.append(FieldMapping(source_column=column_profile.name))
                continue

            target, confidence = match
            mappings.append(FieldMapping(
                source_column=column_profile.name,
                target_table=target.table,
                target_field=target.field,
                required=target.required,
                confidence=round(confidence, 4),
                status=MAPPED if confidence >= MAPPED_CONFIDENCE else SUGGESTED,
            ))

        logger.info(
            "Mappings resolved",
            columns=len(mappings),
            mapped=sum(1 for m in mappings if m.is_mapped),
        )
        return mappings

    def auto_map_remaining(self, mappings: Sequence[FieldMapping],
                           profiles: Optional[Sequence[ColumnProfile]] = None) -> List[FieldMapping]:
        """Fill unmapped columns whose best match is above the auto-map threshold"""
        profile_types = {p.name: p.type for p in profiles or ()}
        result = []
        for mapping in mappings:
            if mapping.is_mapped:
                result.append(mapping)
                continue
            match = self.best_match(mapping.source_column, profile_types.get(mapping.source_column))
            if match is not None and match[1] > AUTO_MAP_CONFIDENCE:
                target, confidence = match
                mapping = replace(
                    mapping,
                    target_table=target.table,
                    target_field=target.field,
                    required=target.required,
                    confidence=round(confidence, 4),
                    status=MAPPED if confidence >= MAPPED_CONFIDENCE else SUGGESTED,
                )
            result.append(mapping)
        return result

    def update_mapping(self, mappings: Sequence[FieldMapping], source_column: str,
                       target_table: Optional[str], target_field: Optional[str]) -> List[FieldMapping]:
        """Set or clear the target of one column; returns a new mapping list"""
        if (target_table is None) != (target_field is None):
            raise ValueError("Target table and field must be set together or cleared together")

        if target_table is None:
            new_mapping = FieldMapping(source_column=source_column)
        else:
            target = self.registry.find(target_table, target_field)
            if target is None:
                raise SchemaError(f"Unknown target field: {target_table}.{target_field}")
            new_mapping = FieldMapping(
                source_column=source_column,
                target_table=target.table,
                target_field=target.field,
                required=target.required,
                confidence=OPERATOR_CONFIDENCE,
                status=MAPPED,
            )

        result = [new_mapping if m.source_column == source_column else m for m in mappings]
        if not any(m.source_column == source_column for m in mappings):
            result.append(new_mapping)
        return result

    def missing_required(self, mappings: Sequence[FieldMapping]) -> List[ValidationIssue]:
        """Required target fields that no source column feeds"""
        mapped_keys = {m.target_key for m in mappings if m.is_mapped}
        return [
            ValidationIssue(
                message=f"Required field {target.table}.{target.field} has no source column",
                category=ErrorCategory.MAPPING_ERROR,
                severity=ErrorSeverity.HIGH,
                column=target.field,
            )
            for target in self.registry.required_fields()
            if target.key not in mapped_keys
        ]

    def duplicate_targets(self, mappings: Sequence[FieldMapping]) -> List[ValidationIssue]:
        """Columns whose target field is already fed by an earlier column"""
        claimed: Dict[Tuple[str, str], str] = {}
        issues = []
        for mapping in mappings:
            if not mapping.is_mapped:
                continue
            first = claimed.setdefault(mapping.target_key, mapping.source_column)
            if first != mapping.source_column:
                issues.append(ValidationIssue(
                    message=(f"Columns {first} and {mapping.source_column} both map to "
                             f"{mapping.target_table}.{mapping.target_field}"),
                    category=ErrorCategory.MAPPING_ERROR,
                    severity=ErrorSeverity.HIGH,
                    column=mapping.source_column,
                ))
        return issues

    def save_template(self, name: str, description: str,
                      mappings: Sequence[FieldMapping]) -> MappingTemplate:
        return MappingTemplate(
            name=name,
            description=description,
            mappings=[m for m in mappings if m.is_mapped],
        )

    def apply_template(self, template: MappingTemplate,
                       mappings: Sequence[FieldMapping]) -> List[FieldMapping]:
        """Set mappings for columns the template knows about"""
        templated = {m.source_column: m for m in template.mappings}
        result = []
        for mapping in mappings:
            saved = templated.get(mapping.source_column)
            if saved is not None and self.registry.find(saved.target_table, saved.target_field) is None:
                logger.warning("Template field no longer in schema", template=template.name,
                               table=saved.target_table, field=saved.target_field)
                saved = None
            if saved is not None:
                mapping = replace(mapping, target_table=saved.target_table, target_field=saved.target_field,
                                  required=saved.required, confidence=saved.confidence, status=MAPPED)
            result.append(mapping)
        return result


def mapping_progress(mappings: Sequence[FieldMapping]) -> float:
    """Percentage of source columns with a target"""
    if not mappings:
        return 0.0
    return sum(1 for m in mappings if m.is_mapped) / len(mappings) * 100
