"""
Validation Engine

Coordinates one validation run over a tabular source:
- Normalization and missing-data policy (progress 0-25)
- Per-field validators chosen from the target schema (progress 25-75)
- Duplicate detection and the configured duplicate action (progress 75-100)
- Max-error circuit breaker returning a partial report instead of failing
- Background execution with cancellation and a single active run per engine
"""
import math
import threading
import time
import uuid
from concurrent.futures import Future, ThreadPoolExecutor
from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional, Sequence, Tuple

import numpy as np
import psutil
import structlog

from ..error_handler import (
    ErrorCategory,
    ErrorSeverity,
    RunInProgressError,
    ValidationIssue,
    validation_error,
    validation_warning,
)
from ..parsers.tabular_source import TabularSource
from .duplicate_detection import DetectionCancelled, DuplicateDetectionSystem, DuplicateReport
from .mapping_resolver import FieldMapping, MappingResolver
from .normalization import DataNormalizer, ProcessedRow
from .progress import ProgressTracker
from .run_settings import ValidationSettings
from .schema_registry import SchemaRegistry, TargetField
from .validators import check_enum, check_max_length, validator_for, validator_kind

logger = structlog.get_logger(__name__)

DUPLICATE_RESULT_FIELD = 'Duplicate Detection'
MISSING_DATA_RESULT_FIELD = 'Missing Data'

NORMALIZATION_ZONE = (0.0, 25.0)
FIELD_ZONE = (25.0, 75.0)
DUPLICATE_ZONE = (75.0, 100.0)


@dataclass
class ValidationResult:
    """Errors and warnings for one mapped field (or a run-level check)"""
    field: str
    target_table: Optional[str] = None
    target_field: Optional[str] = None
    errors: List[ValidationIssue] = field(default_factory=list)
    warnings: List[ValidationIssue] = field(default_factory=list)
    record_count: int = 0
    valid_count: int = 0
    suggestions: List[str] = field(default_factory=list)
    skipped: bool = False

    @property
    def invalid_count(self) -> int:
        return len({issue.row for issue in self.errors if issue.row is not None})

    def to_dict(self) -> Dict[str, Any]:
        return {
            'field': self.field,
            'target_table': self.target_table,
            'target_field': self.target_field,
            'errors': [issue.to_dict() for issue in self.errors],
            'warnings': [issue.to_dict() for issue in self.warnings],
            'record_count': self.record_count,
            'valid_count': self.valid_count,
            'invalid_count': self.invalid_count,
            'suggestions': list(self.suggestions),
            'skipped': self.skipped,
        }


@dataclass
class ValidationReport:
    """Everything a validation run produced, complete or partial"""
    run_id: str
    settings: ValidationSettings
    headers: Tuple[str, ...]
    total_rows: int
    results: List[ValidationResult] = field(default_factory=list)
    duplicate_report: Optional[DuplicateReport] = None
    processed_rows: List[ProcessedRow] = field(default_factory=list)
    examined_rows: int = 0
    sampled: bool = False
    cutoff: bool = False
    cutoff_reason: Optional[str] = None
    cancelled: bool = False
    notices: List[ValidationIssue] = field(default_factory=list)
    elapsed_ms: int = 0
    peak_memory_mb: float = 0.0

    @property
    def error_count(self) -> int:
        return sum(len(r.errors) for r in self.results)

    @property
    def warning_count(self) -> int:
        return sum(len(r.warnings) for r in self.results)

    @property
    def blocking_error_count(self) -> int:
        return sum(1 for r in self.results for issue in r.errors if issue.is_blocking)

    @property
    def can_deploy(self) -> bool:
        return not self.cancelled and not self.cutoff and self.blocking_error_count == 0

    def result_for(self, field_name: str) -> Optional[ValidationResult]:
        for result in self.results:
            if result.field == field_name:
                return result
        return None

    def to_dict(self) -> Dict[str, Any]:
        return {
            'run_id': self.run_id,
            'total_rows': self.total_rows,
            'examined_rows': self.examined_rows,
            'processed_rows': len(self.processed_rows),
            'sampled': self.sampled,
            'cutoff': self.cutoff,
            'cutoff_reason': self.cutoff_reason,
            'cancelled': self.cancelled,
            'error_count': self.error_count,
            'warning_count': self.warning_count,
            'blocking_error_count': self.blocking_error_count,
            'can_deploy': self.can_deploy,
            'results': [r.to_dict() for r in self.results],
            'duplicates': self.duplicate_report.to_dict() if self.duplicate_report else None,
            'notices': [n.to_dict() for n in self.notices],
            'elapsed_ms': self.elapsed_ms,
            'peak_memory_mb': round(self.peak_memory_mb, 2),
        }


class _ErrorBudget:
    """Counts errors across all results and trips at max_errors"""

    def __init__(self, max_errors: int):
        self.max_errors = max_errors
        self.count = 0

    @property
    def exhausted(self) -> bool:
        return self.count >= self.max_errors

    def add(self, result: ValidationResult, issue: ValidationIssue) -> bool:
        """Record an error; returns False once the budget is spent and scanning must stop"""
        if self.exhausted:
            return False
        result.errors.append(issue)
        self.count += 1
        return not self.exhausted


class _RunCancelled(Exception):
    pass


class _MemorySampler:
    def __init__(self):
        self._process = psutil.Process()
        self.peak_mb = 0.0
        self.sample()

    def sample(self) -> None:
        self.peak_mb = max(self.peak_mb, self._process.memory_info().rss / 1024 / 1024)


class ValidationEngine:
    """Runs validation passes; at most one active run per engine"""

    def __init__(self, registry: Optional[SchemaRegistry] = None,
                 tracker: Optional[ProgressTracker] = None):
        self.registry = registry or SchemaRegistry()
        self.tracker = tracker or ProgressTracker()
        self._run_lock = threading.Lock()
        self._cancel_event = threading.Event()
        self._executor = ThreadPoolExecutor(max_workers=1, thread_name_prefix='validation')

    @property
    def is_running(self) -> bool:
        return self._run_lock.locked()

    def validate(self, source: TabularSource, mappings: Sequence[FieldMapping],
                 validation_settings: Optional[ValidationSettings] = None) -> ValidationReport:
        """Run synchronously on the calling thread"""
        self._acquire()
        try:
            return self._run(source, mappings, validation_settings or ValidationSettings())
        finally:
            self._run_lock.release()

    def start(self, source: TabularSource, mappings: Sequence[FieldMapping],
              validation_settings: Optional[ValidationSettings] = None) -> 'Future[ValidationReport]':
        """Run on the engine's worker thread"""
        self._acquire()
        try:
            return self._executor.submit(self._run_and_release, source, mappings,
                                         validation_settings or ValidationSettings())
        except RuntimeError:
            self._run_lock.release()
            raise

    def cancel(self) -> None:
        """Stop the active run at its next batch boundary"""
        if self.is_running:
            logger.info("Validation cancellation requested")
        self._cancel_event.set()

    def shutdown(self, wait: bool = True) -> None:
        self._executor.shutdown(wait=wait)

    def _acquire(self) -> None:
        if not self._run_lock.acquire(blocking=False):
            raise RunInProgressError("A validation run is already in progress")
        self._cancel_event.clear()

    def _run_and_release(self, source: TabularSource, mappings: Sequence[FieldMapping],
                         validation_settings: ValidationSettings) -> ValidationReport:
        try:
            return self._run(source, mappings, validation_settings)
        finally:
            self._run_lock.release()

    def _check_cancel(self) -> None:
        if self._cancel_event.is_set():
            raise _RunCancelled()

    def _publish(self, zone: Tuple[float, float], fraction: float, stage: str) -> None:
        start, end = zone
        self.tracker.update(start + (end - start) * max(0.0, min(1.0, fraction)), stage)

    def sample_indexes(self, total_rows: int, validation_settings: ValidationSettings) -> List[int]:
        """Row indexes examined by the run, in source order"""
        if not validation_settings.sample_validation or total_rows == 0:
            return list(range(total_rows))
        size = min(total_rows, math.ceil(total_rows * validation_settings.sample_size / 100))
        rng = np.random.default_rng(validation_settings.sample_seed)
        chosen = rng.choice(total_rows, size=size, replace=False)
        return sorted(int(i) for i in chosen)

    def _run(self, source: TabularSource, mappings: Sequence[FieldMapping],
             validation_settings: ValidationSettings) -> ValidationReport:
        started = time.monotonic()
        memory = _MemorySampler()
        self.tracker.reset()

        report = ValidationReport(
            run_id=str(uuid.uuid4()),
            settings=validation_settings,
            headers=source.headers,
            total_rows=source.total_rows,
            sampled=validation_settings.sample_validation,
        )
        budget = _ErrorBudget(validation_settings.max_errors)
        log = logger.bind(run_id=report.run_id, file_name=source.file_name)
        log.info("Validation started", total_rows=source.total_rows,
                 active_validators=validation_settings.active_validator_count,
                 sample_validation=validation_settings.sample_validation)

        try:
            fields = self._resolve_fields(source, mappings, report, budget)
            processed = self._normalize(source, mappings, validation_settings, report, fields, budget)
            memory.sample()

            if not budget.exhausted:
                self._validate_fields(processed, fields, validation_settings, report, budget)
                memory.sample()

            if not budget.exhausted and validation_settings.enable_duplicate_detection:
                processed = self._detect_duplicates(source, processed, fields, validation_settings,
                                                    report, budget)
                memory.sample()

            report.processed_rows = processed
            if budget.exhausted:
                self._mark_cutoff(report, validation_settings.max_errors)
            self.tracker.update(100.0, 'complete')
        except (_RunCancelled, DetectionCancelled):
            report.cancelled = True
            report.notices.append(ValidationIssue(
                message="Validation cancelled before completion; results are partial",
                category=ErrorCategory.VALIDATION_WARNING,
                severity=ErrorSeverity.MEDIUM,
            ))
            log.warning("Validation cancelled", examined_rows=report.examined_rows)

        report.elapsed_ms = int((time.monotonic() - started) * 1000)
        report.peak_memory_mb = memory.peak_mb
        log.info(
            "Validation finished",
            errors=report.error_count,
            warnings=report.warning_count,
            cutoff=report.cutoff,
            cancelled=report.cancelled,
            processed_rows=len(report.processed_rows),
            elapsed_ms=report.elapsed_ms,
            peak_memory_mb=round(report.peak_memory_mb, 2),
        )
        return report

    def _mark_cutoff(self, report: ValidationReport, max_errors: int) -> None:
        report.cutoff = True
        report.cutoff_reason = f"Maximum error count of {max_errors} reached"
        report.notices.append(ValidationIssue(
            message=f"Validation stopped after {max_errors} errors; remaining rows were not checked",
            category=ErrorCategory.ENGINE_CUTOFF,
            severity=ErrorSeverity.MEDIUM,
        ))
        logger.warning("Validation cut off", run_id=report.run_id, max_errors=max_errors)

    def _resolve_fields(self, source: TabularSource, mappings: Sequence[FieldMapping],
                        report: ValidationReport,
                        budget: _ErrorBudget) -> List[Tuple[FieldMapping, TargetField, int, ValidationResult]]:
        """Pair each mapped column with its schema field, source position and result"""
        fields = []
        resolver = MappingResolver(self.registry)
        collisions = {issue.column: issue for issue in resolver.duplicate_targets(mappings)}
        for mapping in mappings:
            if not mapping.is_mapped:
                continue
            result = ValidationResult(field=mapping.source_column, target_table=mapping.target_table,
                                      target_field=mapping.target_field)
            report.results.append(result)

            if mapping.source_column in collisions:
                budget.add(result, collisions[mapping.source_column])
                continue

            target = self.registry.find(mapping.target_table, mapping.target_field)
            if target is None:
                budget.add(result, ValidationIssue(
                    message=f"Target field {mapping.target_table}.{mapping.target_field} not found in schema",
                    category=ErrorCategory.MAPPING_ERROR,
                    severity=ErrorSeverity.HIGH,
                    column=mapping.source_column,
                ))
                continue
            if mapping.source_column not in source.headers:
                budget.add(result, validation_error(f"Column {mapping.source_column} not found",
                                                    column=mapping.source_column))
                continue
            fields.append((mapping, target, source.column_index(mapping.source_column), result))
        return fields

    def _normalize(self, source, mappings, validation_settings, report, fields, budget) -> List[ProcessedRow]:
        normalizer = DataNormalizer(source.headers, mappings, validation_settings)
        results_by_column = {mapping.source_column: result for mapping, _, _, result in fields}
        indexes = self.sample_indexes(source.total_rows, validation_settings)

        processed: List[ProcessedRow] = []
        removed = 0
        batch_size = validation_settings.batch_size
        for batch_start in range(0, len(indexes), batch_size):
            self._check_cancel()
            for row_index in indexes[batch_start:batch_start + batch_size]:
                outcome = normalizer.normalize_row(row_index, source.rows[row_index])
                report.examined_rows += 1
                if outcome.removed:
                    removed += 1
                    continue
                processed.append(outcome.row)
                for issue in outcome.issues:
                    result = results_by_column.get(issue.column)
                    if result is not None and not budget.add(result, issue):
                        return processed
            self._publish(NORMALIZATION_ZONE, (batch_start + batch_size) / len(indexes), 'normalization')

        if removed:
            missing = ValidationResult(field=MISSING_DATA_RESULT_FIELD, record_count=len(indexes),
                                       valid_count=len(indexes) - removed)
            missing.warnings.append(validation_warning(f"{removed} row(s) removed for missing mapped values"))
            report.results.append(missing)

        self._publish(NORMALIZATION_ZONE, 1.0, 'normalization')
        return processed

    def _validate_fields(self, processed, fields, validation_settings, report, budget) -> None:
        strict = validation_settings.strict_validation
        batch_size = validation_settings.batch_size
        total_fields = len(fields) or 1

        for field_position, (mapping, target, column_index, result) in enumerate(fields):
            result.record_count = len(processed)
            validator = validator_for(target, validation_settings)
            kind = validator_kind(target)
            if kind is not None and validator is None:
                result.skipped = True

            valid = 0
            for batch_start in range(0, len(processed), batch_size):
                self._check_cancel()
                for offset, row in enumerate(processed[batch_start:batch_start + batch_size], start=batch_start):
                    text = row.text(column_index)
                    if not text:
                        continue

                    error = validator(text, strict) if validator is not None else None
                    if error is None and target.type == 'enum':
                        message, is_warning = check_enum(text, target, validation_settings)
                        if message is not None and is_warning:
                            result.warnings.append(validation_warning(
                                f"Row {row.row_number}: {message}", row=row.row_number,
                                column=mapping.source_column, value=text))
                        elif message is not None:
                            error = message

                    length_problem = check_max_length(text, target)
                    if length_problem is not None:
                        if strict:
                            error = error or length_problem
                        else:
                            result.warnings.append(validation_warning(
                                f"Row {row.row_number}: {length_problem}", row=row.row_number,
                                column=mapping.source_column, value=text))

                    if error is None:
                        valid += 1
                        continue
                    issue = validation_error(f"Row {row.row_number}: {error}", row=row.row_number,
                                             column=mapping.source_column, value=text)
                    if not budget.add(result, issue):
                        result.valid_count = valid
                        if field_position == 0:
                            report.examined_rows = min(report.examined_rows, offset + 1)
                        return

                fraction = (field_position + min(1.0, (batch_start + batch_size) / max(1, len(processed))))
                self._publish(FIELD_ZONE, fraction / total_fields, f"validating {mapping.source_column}")

            result.valid_count = valid
            if result.errors:
                result.suggestions.append(self._suggestion_for(kind))
            self._publish(FIELD_ZONE, (field_position + 1) / total_fields, f"validating {mapping.source_column}")

        self._publish(FIELD_ZONE, 1.0, 'field validation')

    def _suggestion_for(self, kind: Optional[str]) -> str:
        return {
            'email': 'Correct malformed email addresses or disable email validation',
            'phone': 'Standardize phone numbers to 10-15 digits',
            'date': 'Use a consistent date format such as YYYY-MM-DD',
            'postal': 'Use US ZIP, Canadian or UK postal code formats',
            'currency': 'Use plain amounts with at most two decimals',
            'ssn': 'Use ###-##-#### or nine digits for SSNs',
            'tax_id': 'Use ##-####### or nine digits for tax IDs',
        }.get(kind, 'Review values that do not match the target field')

    def _detect_duplicates(self, source, processed, fields, validation_settings, report,
                           budget) -> List[ProcessedRow]:
        mapped_columns = [mapping.source_column for mapping, _, _, _ in fields]
        detector = DuplicateDetectionSystem(source.headers, mapped_columns, validation_settings)
        result = ValidationResult(field=DUPLICATE_RESULT_FIELD, record_count=len(processed))
        report.results.append(result)

        if not detector.detection_columns():
            rules = validation_settings.custom_duplicate_rules
            requested = (rules.exact_match_columns + rules.fuzzy_match_columns
                         if validation_settings.duplicate_match_type == 'custom'
                         else validation_settings.duplicate_columns)
            if requested:
                budget.add(result, validation_error("Selected duplicate columns not found in data"))
            return processed

        self._publish(DUPLICATE_ZONE, 0.0, 'duplicate detection')
        duplicates = detector.detect(
            processed,
            cancel_event=self._cancel_event,
            progress=lambda fraction: self._publish(DUPLICATE_ZONE, fraction * 0.9, 'duplicate detection'),
        )
        self._check_cancel()
        survivors, issues = detector.apply_action(processed, duplicates)
        report.duplicate_report = duplicates

        for issue in issues:
            if issue.category is ErrorCategory.VALIDATION_ERROR:
                if not budget.add(result, issue):
                    break
            else:
                result.warnings.append(issue)
        result.valid_count = len(processed) - duplicates.duplicate_row_count
        return survivors
