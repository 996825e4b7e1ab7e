"""
Target schema registry

Describes the tables and fields an import can be mapped onto. Ships the default
settlement schema (individual parties, business parties, payments, parties) and
accepts operator-defined custom fields at runtime.
"""
import re
import threading
from dataclasses import dataclass, field
from typing import Dict, Iterable, List, Optional, Tuple

import structlog

from ..error_handler import SchemaError

logger = structlog.get_logger(__name__)

FIELD_TYPES = ('text', 'number', 'date', 'email', 'phone', 'boolean', 'decimal', 'enum')


@dataclass(frozen=True)
class TargetField:
    """One field of a target table"""
    table: str
    field: str
    type: str
    required: bool = False
    description: str = ''
    category: str = ''
    max_length: Optional[int] = None
    enum_values: Tuple[str, ...] = ()
    is_custom: bool = False

    @property
    def key(self) -> Tuple[str, str]:
        return (self.table, self.field)


@dataclass
class TargetTable:
    """A target table and its ordered fields"""
    name: str
    display_name: str
    description: str = ''
    category: str = ''
    fields: List[TargetField] = field(default_factory=list)


# (field, type, description, category, max_length, enum_values)
_INDIVIDUAL_PARTY_FIELDS = [
    ('title_prefix', 'text', 'Title (Mr., Ms., Dr., etc.)', 'Personal Info', 20, None),
    ('first_name', 'text', 'First name', 'Personal Info', 100, None),
    ('middle_name', 'text', 'Middle name', 'Personal Info', 100, None),
    ('last_name', 'text', 'Last name', 'Personal Info', 100, None),
    ('suffix', 'text', 'Suffix (Jr., Sr., III, etc.)', 'Personal Info', 20, None),
    ('maiden_name', 'text', 'Maiden name', 'Personal Info', 100, None),
    ('date_of_birth', 'date', 'Date of birth', 'Personal Info', None, None),
    ('date_of_death', 'date', 'Date of death', 'Personal Info', None, None),
    ('gender', 'enum', 'Gender', 'Personal Info', None,
     ('male', 'female', 'non_binary', 'other', 'prefer_not_to_answer')),
    ('marital_status', 'enum', 'Marital status', 'Personal Info', None,
     ('single', 'married', 'divorced', 'widowed', 'separated', 'domestic_partnership')),
    ('race', 'text', 'Race', 'Demographics', 100, None),
    ('ethnicity', 'text', 'Ethnicity', 'Demographics', 100, None),
    ('employer', 'text', 'Current employer', 'Employment', 200, None),
    ('occupation', 'text', 'Job title/occupation', 'Employment', 200, None),
    ('employment_status', 'text', 'Employment status', 'Employment', 100, None),
    ('guardian', 'text', 'Legal guardian', 'Legal', 200, None),
    ('representative', 'text', 'Legal representative', 'Legal', 200, None),
    ('disability_status', 'text', 'Disability status', 'Legal', 200, None),
    ('ssn_encrypted', 'text', 'Social Security Number (encrypted)', 'Legal', 255, None),
    ('tax_id_number', 'text', 'Tax ID number', 'Legal', 50, None),
    ('email_address', 'email', 'Email address', 'Contact', 255, None),
    ('home_phone', 'phone', 'Home phone', 'Contact', 20, None),
    ('cell_phone', 'phone', 'Cell phone', 'Contact', 20, None),
    ('work_phone', 'phone', 'Work phone', 'Contact', 20, None),
    ('fax_number', 'phone', 'Fax number', 'Contact', 20, None),
    ('street_address', 'text', 'Street address', 'Address', 500, None),
    ('city', 'text', 'City', 'Address', 100, None),
    ('state', 'text', 'State', 'Address', 100, None),
    ('zip_code', 'text', 'ZIP code', 'Address', 20, None),
    ('country', 'text', 'Country', 'Address', 100, None),
    ('alternate_address', 'text', 'Alternate address', 'Address', 500, None),
    ('business_address', 'text', 'Business address', 'Address', 500, None),
    ('previous_address', 'text', 'Previous address', 'Address', 500, None),
    ('mailing_address_for_payment', 'text', 'Mailing address for payments', 'Address', 500, None),
    ('attorney_name', 'text', 'Attorney name', 'Legal', 200, None),
    ('attorney_contact', 'text', 'Attorney contact info', 'Legal', 500, None),
    ('emergency_contact', 'text', 'Emergency contact', 'Contact', 500, None),
]

_BUSINESS_PARTY_FIELDS = [
    ('business_name', 'text', 'Legal business name', 'Business Info', 300, None),
    ('dba_name', 'text', 'Doing business as name', 'Business Info', 300, None),
    ('business_type', 'text', 'Business type (LLC, Corp, etc.)', 'Business Info', 100, None),
    ('ein', 'text', 'Employer Identification Number', 'Registration', 20, None),
    ('business_license_number', 'text', 'Business license number', 'Registration', 100, None),
    ('formation_state', 'text', 'State of formation', 'Registration', 100, None),
    ('articles_of_incorporation_date', 'date', 'Articles of incorporation date', 'Registration', None, None),
    ('dissolution_date', 'date', 'Dissolution date', 'Registration', None, None),
    ('industry_classification', 'text', 'Industry classification', 'Classification', 200, None),
    ('duns_number', 'text', 'DUNS number', 'Classification', 20, None),
    ('sec_filing_number', 'text', 'SEC filing number', 'Classification', 100, None),
    ('parent_company', 'text', 'Parent company', 'Structure', 300, None),
    ('subsidiary_companies', 'text', 'Subsidiary companies', 'Structure', None, None),
    ('email_address', 'email', 'Business email', 'Contact', 255, None),
    ('phone_number', 'phone', 'Business phone', 'Contact', 20, None),
    ('fax_number', 'phone', 'Fax number', 'Contact', 20, None),
    ('website', 'text', 'Website URL', 'Contact', 255, None),
    ('street_address', 'text', 'Street address', 'Address', 500, None),
    ('city', 'text', 'City', 'Address', 100, None),
    ('state', 'text', 'State', 'Address', 100, None),
    ('zip_code', 'text', 'ZIP code', 'Address', 20, None),
    ('country', 'text', 'Country', 'Address', 100, None),
    ('mailing_address', 'text', 'Mailing address', 'Address', 500, None),
    ('registered_agent', 'text', 'Registered agent', 'Legal', 300, None),
    ('registered_agent_address', 'text', 'Registered agent address', 'Legal', 500, None),
    ('attorney_name', 'text', 'Attorney name', 'Legal', 200, None),
    ('attorney_contact', 'text', 'Attorney contact', 'Legal', 500, None),
    ('tax_jurisdiction', 'text', 'Tax jurisdiction', 'Legal', 100, None),
    ('primary_contact_first_name', 'text', 'Primary contact first name', 'Primary Contact', 100, None),
    ('primary_contact_last_name', 'text', 'Primary contact last name', 'Primary Contact', 100, None),
    ('primary_contact_middle_name', 'text', 'Primary contact middle name', 'Primary Contact', 100, None),
    ('primary_contact_title', 'text', 'Primary contact title', 'Primary Contact', 100, None),
    ('insurance_carrier', 'text', 'Insurance carrier', 'Insurance', 200, None),
]

_PAYMENT_FIELDS = [
    ('settlement_class', 'text', 'Settlement class', 'Classification', 100, None),
    ('amount_due', 'decimal', 'Amount due', 'Payment', None, None),
    ('amount_paid', 'decimal', 'Amount paid', 'Payment', None, None),
    ('amount_pending', 'decimal', 'Amount pending', 'Payment', None, None),
    ('net_payment_amount', 'decimal', 'Net payment amount', 'Payment', None, None),
    ('gross_payment_amount', 'decimal', 'Gross payment amount', 'Tax', None, None),
    ('tax_withholding_amount', 'decimal', 'Tax withholding amount', 'Tax', None, None),
    ('backup_withholding_rate', 'decimal', 'Backup withholding rate', 'Tax', None, None),
    ('tin_verification_status', 'text', 'TIN verification status', 'Tax', 50, None),
    ('disbursement_method', 'enum', 'Payment method', 'Method', None,
     ('check', 'ach', 'wire_transfer', 'paypal', 'venmo', 'cash_app', 'other')),
    ('payment_status', 'enum', 'Payment status', 'Status', None,
     ('pending', 'approved', 'processing', 'processed', 'failed', 'returned', 'cancelled', 'on_hold')),
    ('bank_name', 'text', 'Bank name', 'Banking', 200, None),
    ('account_number_encrypted', 'text', 'Account number (encrypted)', 'Banking', 255, None),
    ('routing_number', 'text', 'Routing number', 'Banking', 20, None),
    ('account_type', 'enum', 'Account type', 'Banking', None,
     ('checking', 'savings', 'business_checking', 'business_savings')),
    ('check_number', 'text', 'Check number', 'Check', 50, None),
    ('check_date', 'date', 'Check date', 'Check', None, None),
    ('check_memo', 'text', 'Check memo', 'Check', 200, None),
    ('paypal_email', 'email', 'PayPal email', 'Digital Payment', 255, None),
    ('venmo_username', 'text', 'Venmo username', 'Digital Payment', 100, None),
    ('cash_app_handle', 'text', 'Cash App handle', 'Digital Payment', 50, None),
    ('wire_transfer_reference', 'text', 'Wire transfer reference', 'Wire Transfer', 100, None),
    ('wire_transfer_fee', 'decimal', 'Wire transfer fee', 'Wire Transfer', None, None),
    ('routing_instructions', 'text', 'Routing instructions', 'Wire Transfer', None, None),
    ('currency_type', 'text', 'Currency type', 'Currency', 10, None),
    ('escrow_account', 'text', 'Escrow account', 'Special Accounts', 100, None),
    ('qsf_eligible', 'boolean', 'QSF eligible', 'Special Accounts', None, None),
    ('lien', 'boolean', 'Has lien', 'Liens', None, None),
    ('lien_amount', 'decimal', 'Lien amount', 'Liens', None, None),
    ('lien_holder', 'text', 'Lien holder', 'Liens', 200, None),
    ('payment_authorization_date', 'date', 'Authorization date', 'Dates', None, None),
    ('paid_date', 'date', 'Paid date', 'Dates', None, None),
    ('returned_payment_date', 'date', 'Returned payment date', 'Dates', None, None),
    ('stop_payment_date', 'date', 'Stop payment date', 'Dates', None, None),
    ('payment_schedule', 'enum', 'Payment schedule', 'Schedule', None,
     ('single_payment', 'quarterly', 'annual', 'installments', 'other')),
    ('payment_hold_reason', 'text', 'Hold reason', 'Status', 500, None),
    ('payment_return_reason', 'text', 'Return reason', 'Status', 500, None),
    ('payment_instructions', 'text', 'Payment instructions', 'Instructions', None, None),
    ('mailing_address_for_payment', 'text', 'Mailing address for payment', 'Instructions', None, None),
    ('pro_rata_share', 'decimal', 'Pro rata share', 'Calculation', None, None),
    ('payment_reference_number', 'text', 'Payment reference number', 'Reference', 100, None),
]

_PARTY_FIELDS = [
    ('party_type', 'enum', 'Party type', 'Classification', None, ('individual', 'business')),
    ('party_role', 'text', 'Party role in case', 'Classification', 100, None),
    ('party_status', 'enum', 'Party status', 'Status', None,
     ('active', 'inactive', 'deceased', 'merged', 'duplicate')),
    ('eligibility_status', 'enum', 'Eligibility status', 'Status', None,
     ('eligible', 'ineligible', 'pending_review', 'conditionally_eligible')),
    ('preferred_contact_method', 'enum', 'Preferred contact method', 'Communication', None,
     ('email', 'phone', 'mail', 'text', 'online_portal')),
    ('language_preference', 'text', 'Language preference', 'Communication', 50, None),
]


def _build_table(name: str, display_name: str, description: str, category: str,
                 rows: Iterable[tuple]) -> TargetTable:
    fields = [
        TargetField(
            table=name,
            field=field_name,
            type=field_type,
            description=field_description,
            category=field_category,
            max_length=max_length,
            enum_values=tuple(enum_values or ()),
        )
        for field_name, field_type, field_description, field_category, max_length, enum_values in rows
    ]
    return TargetTable(name=name, display_name=display_name, description=description,
                       category=category, fields=fields)


def default_settlement_tables() -> List[TargetTable]:
    """Fresh copy of the default settlement schema"""
    return [
        _build_table('individual_parties', 'Individual Parties',
                     'Individual person information', 'Parties', _INDIVIDUAL_PARTY_FIELDS),
        _build_table('business_parties', 'Business Parties',
                     'Business entity information', 'Parties', _BUSINESS_PARTY_FIELDS),
        _build_table('payments', 'Payments',
                     'Payment and settlement information', 'Financial', _PAYMENT_FIELDS),
        _build_table('parties', 'Parties',
                     'Main party classification and status', 'Parties', _PARTY_FIELDS),
    ]


def clean_field_name(name: str) -> str:
    """Lowercase, replace anything outside [a-z0-9_] with '_', collapse and strip underscores"""
    cleaned = re.sub(r'[^a-z0-9_]', '_', name.strip().lower())
    cleaned = re.sub(r'_+', '_', cleaned)
    return cleaned.strip('_')


class SchemaRegistry:
    """Tables and fields available as mapping targets"""

    def __init__(self, tables: Optional[Iterable[TargetTable]] = None):
        self._tables: Dict[str, TargetTable] = {}
        self._lock = threading.Lock()
        for table in (default_settlement_tables() if tables is None else tables):
            self._tables[table.name] = table

    @property
    def table_names(self) -> List[str]:
        return list(self._tables)

    def table(self, name: str) -> TargetTable:
        try:
            return self._tables[name]
        except KeyError:
            raise SchemaError(f"Unknown table: {name}") from None

    def fields(self) -> List[TargetField]:
        """All fields in table order"""
        return [f for table in self._tables.values() for f in table.fields]

    def fields_for(self, table_name: str) -> List[TargetField]:
        return list(self.table(table_name).fields)

    def find(self, table_name: Optional[str], field_name: Optional[str]) -> Optional[TargetField]:
        table = self._tables.get(table_name or '')
        if table is None:
            return None
        for target in table.fields:
            if target.field == field_name:
                return target
        return None

    def required_fields(self) -> List[TargetField]:
        return [f for f in self.fields() if f.required]

    def categories(self) -> List[str]:
        return sorted({f.category for f in self.fields() if f.category})

    def add_custom_field(
        self,
        table: str,
        name: str,
        field_type: str = 'text',
        required: bool = False,
        description: str = '',
        category: str = 'Custom Fields',
        max_length: Optional[int] = None,
        enum_values: Optional[Iterable[str]] = None,
    ) -> TargetField:
        """Append an operator-defined field to a table"""
        field_name = clean_field_name(name)
        if not field_name:
            raise SchemaError("Field name is required")
        if field_type not in FIELD_TYPES:
            raise SchemaError(f"Unsupported field type: {field_type}")

        options = tuple(v.strip() for v in (enum_values or ()) if v and v.strip())
        if field_type == 'enum' and not options:
            raise SchemaError("Enum fields require at least one option")

        with self._lock:
            target_table = self.table(table)
            if any(f.field == field_name for f in target_table.fields):
                raise SchemaError(f"Field {field_name} already exists in table {table}")

            new_field = TargetField(
                table=table,
                field=field_name,
                type=field_type,
                required=required,
                description=description or f"Custom field: {name.strip()}",
                category=category,
                max_length=max_length,
                enum_values=options if field_type == 'enum' else (),
                is_custom=True,
            )
            target_table.fields = target_table.fields + [new_field]

        logger.info("Custom field added", table=table, field=field_name, type=field_type)
        return new_field
