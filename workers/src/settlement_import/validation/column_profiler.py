"""
Column Profiler

Infers a semantic type for every column of an uploaded file and annotates it:
- Linear detector battery (postal, email, phone, number, date, boolean, enum)
- Ordered, named override rules for formats the detectors conflate
- Count-based format issues, quality tiers and operator suggestions
- A staging analysis that summarises issues across the whole file

Profiling only annotates; it never raises on bad data.
"""
import re
from dataclasses import dataclass, field
from typing import Callable, Dict, FrozenSet, List, Optional, Sequence, Tuple

import structlog
from dateutil import parser as date_parser

from ..config import settings
from ..error_handler import ErrorCategory, ErrorSeverity, ValidationIssue
from ..parsers.tabular_source import TabularSource

logger = structlog.get_logger(__name__)

PROFILE_TYPES = (
    'text', 'number', 'date', 'email', 'phone', 'postal_code',
    'reference_id', 'boolean', 'decimal', 'enum',
)

QUALITY_SCORES = {'excellent': 100, 'good': 80, 'fair': 60, 'poor': 40}

POSTAL_NAME_PATTERNS = ('zip', 'zipcode', 'zip_code', 'postal', 'postalcode', 'postal_code', 'postcode')
REFERENCE_NAME_FRAGMENTS = ('case_id', 'caseid', 'ref_id', 'refid', 'reference', 'identifier',
                            'case_number', 'casenumber')
REFERENCE_NAME_TOKENS = frozenset({'case', 'id', 'ref', 'number', 'no'})

EMAIL_PATTERN = re.compile(r'^[^\s@]+@[^\s@]+\.[^\s@]+$')
US_ZIP_PATTERN = re.compile(r'^(\d{5}|\d{9})$')
CANADIAN_POSTAL_PATTERN = re.compile(r'^[A-Z]\d[A-Z]\s?\d[A-Z]\d$', re.IGNORECASE)
UK_POSTAL_PATTERN = re.compile(r'^[A-Z]{1,2}\d[A-Z\d]?\s?\d[A-Z]{2}$', re.IGNORECASE)
PHONE_PATTERNS = (
    re.compile(r'^\+?1?[-.\s]?\(?[0-9]{3}\)?[-.\s]?[0-9]{3}[-.\s]?[0-9]{4}$'),
    re.compile(r'^\([0-9]{3}\)\s?[0-9]{3}-[0-9]{4}$'),
    re.compile(r'^[0-9]{3}-[0-9]{3}-[0-9]{4}$'),
    re.compile(r'^\+[1-9]\d{7,14}$'),
)
NUMBER_PATTERN = re.compile(r'^[-+]?(\d+\.?\d*|\.\d+)([eE][-+]?\d+)?$')
REFERENCE_CODE_PATTERNS = (
    re.compile(r'^[A-Z]{2,3}-\d{4}-\d+$', re.IGNORECASE),
    re.compile(r'^[A-Z]+[-_]?\d+[-_]?[A-Z\d]*$', re.IGNORECASE),
)
DATE_SHAPE_PATTERNS = (
    re.compile(r'^\d{1,2}[/\-]\d{1,2}[/\-]\d{2,4}$'),
    re.compile(r'^\d{4}[/\-]\d{1,2}[/\-]\d{1,2}$'),
    re.compile(r'^\d{4}-\d{2}-\d{2}[T ]\d{2}:\d{2}(:\d{2})?'),
    re.compile(r'^(Jan|Feb|Mar|Apr|May|Jun|Jul|Aug|Sep|Oct|Nov|Dec)', re.IGNORECASE),
)
BOOLEAN_TAGS = {
    'true': 'true_false', 'false': 'true_false',
    'yes': 'yes_no', 'no': 'yes_no',
    'y': 'y_n', 'n': 'y_n',
    '1': 'binary', '0': 'binary',
}


# ============================================================================
# Format predicates shared with the validators
# ============================================================================

def is_postal_code(value: str) -> bool:
    cleaned = re.sub(r'[-\s]', '', value)
    return bool(
        US_ZIP_PATTERN.match(cleaned)
        or CANADIAN_POSTAL_PATTERN.match(value)
        or UK_POSTAL_PATTERN.match(value)
    )


def phone_digits(value: str) -> str:
    return re.sub(r'[-.\s()+]', '', value)


def has_phone_shape(value: str) -> bool:
    """Digits-only length 10-15 (never 5 or 9, which are ZIP lengths) or a formatted phone"""
    cleaned = phone_digits(value)
    if cleaned.isdigit() and 10 <= len(cleaned) <= 15:
        return True
    return any(pattern.match(value) for pattern in PHONE_PATTERNS)


def is_reference_code(value: str) -> bool:
    return any(pattern.match(value) for pattern in REFERENCE_CODE_PATTERNS)


def has_date_shape(value: str) -> bool:
    if is_reference_code(value):
        return False
    return any(pattern.match(value) for pattern in DATE_SHAPE_PATTERNS)


def parses_as_date(value: str) -> bool:
    try:
        date_parser.parse(value)
        return True
    except (ValueError, OverflowError):
        return False


def is_postal_column_name(column_name: str) -> bool:
    lowered = column_name.lower()
    return any(pattern in lowered for pattern in POSTAL_NAME_PATTERNS)


def is_reference_column_name(column_name: str) -> bool:
    lowered = column_name.lower()
    if any(fragment in lowered for fragment in REFERENCE_NAME_FRAGMENTS):
        return True
    tokens = re.split(r'[^a-z0-9]+', re.sub(r'([a-z])([A-Z])', r'\1_\2', column_name).lower())
    return any(token in REFERENCE_NAME_TOKENS for token in tokens)


# ============================================================================
# Detectors
# ============================================================================

@dataclass
class DetectionResult:
    type: str
    confidence: float
    patterns: List[str] = field(default_factory=list)


def _unique(items: Sequence[str]) -> List[str]:
    return list(dict.fromkeys(items))


def detect_postal_code(values: List[str], column_name: str) -> DetectionResult:
    tags = []
    matches = 0
    for value in values:
        cleaned = re.sub(r'[-\s]', '', value)
        if US_ZIP_PATTERN.match(cleaned):
            tags.append('us_zip_5' if len(cleaned) == 5 else 'us_zip_9')
        elif CANADIAN_POSTAL_PATTERN.match(value):
            tags.append('canadian_postal')
        elif UK_POSTAL_PATTERN.match(value):
            tags.append('uk_postal')
        else:
            continue
        matches += 1

    confidence = matches / len(values)
    if is_postal_column_name(column_name) and confidence > 0.3:
        confidence = min(confidence + 0.3, 1.0)
    return DetectionResult('postal_code', confidence, ['postal_code'] + _unique(tags))


def detect_email(values: List[str], column_name: str) -> DetectionResult:
    tags = []
    matches = 0
    for value in values:
        if EMAIL_PATTERN.match(value):
            matches += 1
            tags.append(f"domain_{value.split('@')[1].split('.')[0]}")
    return DetectionResult('email', matches / len(values), ['email_format'] + _unique(tags))


def detect_phone(values: List[str], column_name: str) -> DetectionResult:
    tags = []
    matches = 0
    for value in values:
        cleaned = phone_digits(value)
        if cleaned.isdigit() and 10 <= len(cleaned) <= 15:
            tags.append(f"length_{len(cleaned)}")
        elif any(pattern.match(value) for pattern in PHONE_PATTERNS):
            tags.append('formatted_phone')
        else:
            continue
        matches += 1
    return DetectionResult('phone', matches / len(values), ['phone_format'] + _unique(tags))


def detect_number(values: List[str], column_name: str) -> DetectionResult:
    tags = []
    decimal_count = 0
    integer_count = 0
    for value in values:
        cleaned = re.sub(r'[$,\s]', '', value)
        if not NUMBER_PATTERN.match(cleaned):
            continue
        if '.' in cleaned:
            decimal_count += 1
            tags.append('decimal')
        else:
            integer_count += 1
            tags.append('integer')
        if '$' in value:
            tags.append('currency')
        if ',' in value:
            tags.append('thousands_separator')

    matches = decimal_count + integer_count
    number_type = 'decimal' if decimal_count > integer_count else 'number'
    return DetectionResult(number_type, matches / len(values), _unique(tags))


def detect_date(values: List[str], column_name: str) -> DetectionResult:
    tags = []
    matches = 0
    for value in values:
        if not has_date_shape(value) or not parses_as_date(value):
            continue
        matches += 1
        if re.match(r'^\d{4}-\d{2}-\d{2}', value):
            tags.append('iso_format')
        if re.match(r'^\d{1,2}/\d{1,2}/\d{4}$', value):
            tags.append('us_format')
        if re.match(r'^\d{1,2}-\d{1,2}-\d{4}$', value):
            tags.append('dash_format')
        if 'T' in value and ':' in value:
            tags.append('datetime')
    return DetectionResult('date', matches / len(values), ['date_format'] + _unique(tags))


def detect_boolean(values: List[str], column_name: str) -> DetectionResult:
    tags = [BOOLEAN_TAGS[v.lower()] for v in values if v.lower() in BOOLEAN_TAGS]
    return DetectionResult('boolean', len(tags) / len(values), _unique(tags))


def detect_enum(values: List[str], column_name: str) -> DetectionResult:
    """Few distinct labels repeated many times; confidence is fixed below the other detectors"""
    distinct = {v.lower() for v in values}
    if len(values) >= 20 and len(distinct) <= 10 and len(distinct) / len(values) <= 0.05:
        return DetectionResult('enum', 0.75, ['enum_values', f"distinct_{len(distinct)}"])
    return DetectionResult('enum', 0.0, [])


# Priority order; earlier detectors win ties
DETECTORS: Tuple[Callable[[List[str], str], DetectionResult], ...] = (
    detect_postal_code,
    detect_email,
    detect_phone,
    detect_number,
    detect_date,
    detect_boolean,
    detect_enum,
)


# ============================================================================
# Override rules
# ============================================================================

@dataclass(frozen=True)
class TypeOverrideRule:
    """Pure rule: (column name, values, naive type) -> replacement type or None"""
    name: str
    tag: str
    apply: Callable[[str, Sequence[str], str], Optional[str]]


def _postal_code_name_rule(column_name: str, values: Sequence[str], inferred_type: str) -> Optional[str]:
    if is_postal_column_name(column_name):
        return 'postal_code'
    return None


def _reference_id_rule(column_name: str, values: Sequence[str], inferred_type: str) -> Optional[str]:
    if inferred_type != 'date':
        return None
    if is_reference_column_name(column_name) or any(is_reference_code(v) for v in values):
        return 'text'
    return None


TYPE_OVERRIDE_RULES: Tuple[TypeOverrideRule, ...] = (
    TypeOverrideRule('postal_code_name', 'postal_code', _postal_code_name_rule),
    TypeOverrideRule('reference_id', 'reference_id', _reference_id_rule),
)


def apply_override_rules(
    column_name: str,
    values: Sequence[str],
    inferred_type: str,
    rules: Sequence[TypeOverrideRule] = TYPE_OVERRIDE_RULES,
) -> Tuple[str, Optional[TypeOverrideRule]]:
    """First rule returning a type wins"""
    for rule in rules:
        replacement = rule.apply(column_name, values, inferred_type)
        if replacement is not None:
            return replacement, rule
    return inferred_type, None


# ============================================================================
# Profiles
# ============================================================================

@dataclass(frozen=True)
class ColumnProfile:
    """Read-only analysis of one source column"""
    name: str
    type: str
    confidence: float
    patterns: FrozenSet[str]
    samples: Tuple[str, ...]
    null_count: int
    unique_count: int
    total_count: int
    completeness: float
    uniqueness: float
    issues: Tuple[str, ...] = ()
    suggestions: Tuple[str, ...] = ()
    quality: str = 'excellent'

    def to_dict(self) -> Dict:
        return {
            'name': self.name,
            'type': self.type,
            'confidence': self.confidence,
            'patterns': sorted(self.patterns),
            'samples': list(self.samples),
            'null_count': self.null_count,
            'unique_count': self.unique_count,
            'total_count': self.total_count,
            'completeness': round(self.completeness, 4),
            'uniqueness': round(self.uniqueness, 4),
            'issues': list(self.issues),
            'suggestions': list(self.suggestions),
            'quality': self.quality,
        }


@dataclass(frozen=True)
class IssueSummary:
    column: str
    kind: str
    count: int
    description: str
    severity: str


@dataclass(frozen=True)
class StagingAnalysis:
    """File-level view built from the column profiles"""
    total_rows: int
    total_columns: int
    profiles: Tuple[ColumnProfile, ...]
    issues_summary: Tuple[IssueSummary, ...]
    quality_score: int
    recommendations: Tuple[str, ...]

    def profile(self, name: str) -> ColumnProfile:
        for column_profile in self.profiles:
            if column_profile.name == name:
                return column_profile
        raise KeyError(f"Unknown column: {name}")

    def as_validation_issues(self) -> List[ValidationIssue]:
        """Profiling issues as non-blocking issue records"""
        severities = {'low': ErrorSeverity.LOW, 'medium': ErrorSeverity.MEDIUM, 'high': ErrorSeverity.HIGH}
        return [
            ValidationIssue(
                message=summary.description,
                category=ErrorCategory.PROFILING_ISSUE,
                severity=severities[summary.severity],
                column=summary.column,
            )
            for summary in self.issues_summary
        ]


def quality_tier(issue_count: int, completeness: float, confidence: float) -> str:
    tier = 'excellent'
    if issue_count > 0 or completeness < 0.8 or confidence < 0.7:
        tier = 'good'
    if issue_count > 2 or completeness < 0.6 or confidence < 0.5:
        tier = 'fair'
    if issue_count > 3 or completeness < 0.4 or confidence < 0.3:
        tier = 'poor'
    return tier


class ColumnProfiler:
    """Per-column type inference and quality annotation"""

    def __init__(self, override_rules: Sequence[TypeOverrideRule] = TYPE_OVERRIDE_RULES,
                 sample_size: Optional[int] = None, min_confidence: Optional[float] = None):
        self.override_rules = tuple(override_rules)
        self.sample_size = sample_size or settings.profile_sample_values
        self.min_confidence = settings.min_detection_confidence if min_confidence is None else min_confidence

    def profile(self, source: TabularSource) -> List[ColumnProfile]:
        profiles = [
            self.profile_column(header, [cell.text for cell in source.column(header)])
            for header in source.headers
        ]
        logger.info("Columns profiled", file_name=source.file_name, columns=len(profiles),
                    total_rows=source.total_rows)
        return profiles

    def profile_column(self, name: str, values: Sequence[str]) -> ColumnProfile:
        """Profile one column given its trimmed cell texts ('' for empty cells)"""
        total = len(values)
        present = [v for v in values if v]
        null_count = total - len(present)
        unique_count = len(set(present))
        completeness = len(present) / total if total else 0.0
        uniqueness = unique_count / total if total else 0.0

        if present:
            naive_type, confidence, patterns = self._detect(name, present)
        else:
            naive_type, confidence, patterns = 'text', 0.0, ['no_data']

        final_type, rule = apply_override_rules(name, present, naive_type, self.override_rules)
        if rule is not None and rule.tag not in patterns:
            patterns.append(rule.tag)

        issues = self._format_issues(final_type, present, patterns)
        if completeness < 0.5:
            issues.insert(0, f"High missing data rate: {round((1 - completeness) * 100)}%")

        suggestions = self._suggestions(name, final_type, patterns, completeness, uniqueness,
                                        confidence, len(present))

        return ColumnProfile(
            name=name,
            type=final_type,
            confidence=round(confidence, 2),
            patterns=frozenset(patterns),
            samples=tuple(present[:self.sample_size]),
            null_count=null_count,
            unique_count=unique_count,
            total_count=total,
            completeness=completeness,
            uniqueness=uniqueness,
            issues=tuple(issues),
            suggestions=tuple(_unique(suggestions)),
            quality=quality_tier(len(issues), completeness, confidence),
        )

    def analyze(self, source: TabularSource) -> StagingAnalysis:
        """Profile every column and summarise issues for the staging review"""
        profiles = self.profile(source)
        summaries = [
            self._summarize_issue(column_profile.name, issue)
            for column_profile in profiles
            for issue in column_profile.issues
        ]

        score = (
            round(sum(QUALITY_SCORES[p.quality] for p in profiles) / len(profiles))
            if profiles else 0
        )

        recommendations = []
        if any('postal code format' in s.description for s in summaries):
            recommendations.append(
                'Review postal code formats - ensure ZIP codes are not being validated as phone numbers'
            )
        if any('phone format' in s.description for s in summaries):
            recommendations.append('Standardize phone number formats before import')
        sparse_columns = sum(1 for p in profiles if p.total_count and p.null_count / p.total_count > 0.3)
        if sparse_columns:
            recommendations.append(
                f"{sparse_columns} columns have significant missing data - consider data cleaning"
            )
        if score < 70:
            recommendations.append('Overall data quality is below optimal - review data sources')

        return StagingAnalysis(
            total_rows=source.total_rows,
            total_columns=len(source.headers),
            profiles=tuple(profiles),
            issues_summary=tuple(summaries),
            quality_score=score,
            recommendations=tuple(recommendations),
        )

    def _detect(self, name: str, values: List[str]) -> Tuple[str, float, List[str]]:
        best: Optional[DetectionResult] = None
        for detector in DETECTORS:
            result = detector(values, name)
            if best is None or result.confidence > best.confidence:
                best = result

        if best.confidence >= self.min_confidence:
            return best.type, best.confidence, list(best.patterns)
        return 'text', 0.8, list(best.patterns)

    def _format_issues(self, final_type: str, values: List[str], patterns: List[str]) -> List[str]:
        issues = []
        if final_type == 'email':
            invalid = sum(1 for v in values if not EMAIL_PATTERN.match(v))
            if invalid:
                issues.append(f"{invalid} invalid email format(s)")

        if final_type == 'postal_code' or 'postal_code' in patterns:
            invalid = sum(1 for v in values if not is_postal_code(v))
            if invalid:
                issues.append(f"{invalid} invalid postal code format(s)")

        if final_type == 'phone' and 'postal_code' not in patterns:
            invalid = sum(1 for v in values if not has_phone_shape(v))
            if invalid:
                issues.append(f"{invalid} inconsistent phone format(s)")

        if final_type == 'date':
            invalid = sum(1 for v in values if not parses_as_date(v))
            if invalid:
                issues.append(f"{invalid} invalid date format(s)")
        return issues

    def _suggestions(self, name: str, final_type: str, patterns: List[str], completeness: float,
                     uniqueness: float, confidence: float, present_count: int) -> List[str]:
        lowered = name.lower()
        suggestions = []

        if 'no_data' in patterns:
            suggestions.append('Column appears to be empty - consider removing or providing sample data')
        if final_type == 'email' and any(p.startswith('domain_') for p in patterns):
            suggestions.append('Email domain detected - consider validation rules')
        if final_type == 'phone' and 'length_10' in patterns:
            suggestions.append('US phone number format detected')
        if final_type == 'number' and 'currency' in patterns:
            suggestions.append('Currency values detected - consider decimal type')
        if final_type == 'date' and 'iso_format' in patterns:
            suggestions.append('ISO date format detected - good for database storage')
        if final_type == 'enum':
            suggestions.append('Few distinct values detected - consider an enum field')
        if 'reference_id' in patterns:
            suggestions.append('Reference identifiers detected - stored as text, not dates')

        if 'postal_code' in patterns or final_type == 'postal_code':
            if 'us_zip_5' in patterns:
                suggestions.append('US 5-digit ZIP code detected')
            if 'us_zip_9' in patterns:
                suggestions.append('US ZIP+4 format detected')
            if 'canadian_postal' in patterns:
                suggestions.append('Canadian postal code format detected')
            suggestions.append('Store as text to preserve leading zeros')

        if 'email' in lowered:
            suggestions.append('Maps well to email fields in database')
        if 'phone' in lowered or 'cell' in lowered:
            suggestions.append('Maps well to phone fields in database')
        if 'zip' in lowered or 'postal' in lowered:
            suggestions.append('Maps well to zip_code fields in database')
        if 'name' in lowered:
            suggestions.append('Maps well to name fields in database')

        if completeness < 0.8:
            suggestions.append('Consider data cleaning to fill missing values')
        if confidence < 0.7:
            suggestions.append('Review column content for consistent data type')
        if uniqueness < 0.1 and present_count > 10:
            suggestions.append('Low data variety - verify this is expected')
        return suggestions

    def _summarize_issue(self, column: str, issue: str) -> IssueSummary:
        kind, severity = 'data_quality', 'medium'
        if any(marker in issue for marker in ('email format', 'phone format', 'postal code format', 'date format')):
            kind, severity = 'format', 'high'
        elif 'missing data' in issue:
            kind = 'completeness'
            severity = 'high' if 'High' in issue else 'medium'
        elif 'inconsistent' in issue:
            kind, severity = 'consistency', 'medium'

        count_match = re.search(r'(\d+)', issue)
        return IssueSummary(
            column=column,
            kind=kind,
            count=int(count_match.group(1)) if count_match else 1,
            description=issue,
            severity=severity,
        )


# Global profiler instance
column_profiler = ColumnProfiler()
