"""
Deployment Coordinator

Commits a validated import to a persistence sink:
- Precondition checks that abort before anything is written
- Optional full re-validation, backup snapshot and replace-mode clearing
- Per-table records built from the processed rows of the validation report
- Sequential batches with rollback of everything this run committed on failure
- Background execution with cancellation and a single active deployment
"""
import threading
import time
import uuid
from concurrent.futures import Future, ThreadPoolExecutor
from dataclasses import dataclass, field
from datetime import date, datetime
from typing import Any, Dict, List, Optional, Sequence, Tuple

import structlog
from dateutil import parser as date_parser
from pydantic import BaseModel, ConfigDict, Field

from ..config import settings
from ..error_handler import ErrorCategory, PersistenceError, RunInProgressError
from ..parsers.tabular_source import CellKind, CellValue, TabularSource
from ..validation.mapping_resolver import FieldMapping, MappingResolver
from ..validation.normalization import ProcessedRow
from ..validation.progress import ProgressEstimator, ProgressTracker
from ..validation.schema_registry import TargetField
from ..validation.validation_engine import ValidationEngine, ValidationReport
from .sinks import BatchReceipt, PersistenceSink, Record, Snapshot

logger = structlog.get_logger(__name__)

REVALIDATION_ZONE = (0.0, 10.0)
BACKUP_ZONE = (10.0, 20.0)
WRITE_ZONE = (20.0, 100.0)


class DeploymentSettings(BaseModel):
    """Options for one deployment; immutable for the run"""
    model_config = ConfigDict(frozen=True, extra='forbid')

    create_backup: bool = True
    enable_rollback: bool = True
    run_final_validation: bool = True
    validate_duplicates: bool = True
    # True appends to the target tables, False replaces their contents
    preserve_existing_data: bool = True
    batch_size: int = Field(default_factory=lambda: settings.default_batch_size, ge=1)
    notes: str = ''
    notify_on_completion: bool = False


class DeploymentConfirmation(BaseModel):
    """Operator acknowledgements required before production data changes"""
    model_config = ConfigDict(frozen=True)

    data_reviewed: bool = False
    mappings_verified: bool = False
    settings_confirmed: bool = False
    backup_acknowledged: bool = False

    @classmethod
    def all_confirmed(cls) -> 'DeploymentConfirmation':
        return cls(data_reviewed=True, mappings_verified=True, settings_confirmed=True,
                   backup_acknowledged=True)

    def missing(self) -> List[str]:
        return [name for name, confirmed in self.model_dump().items() if not confirmed]


@dataclass(frozen=True)
class BatchFailure:
    """A batch the sink rejected; row_range is 1-based and inclusive within the table"""
    batch_index: int
    table: str
    row_range: Tuple[int, int]
    error: str

    def to_dict(self) -> Dict[str, Any]:
        return {
            'category': ErrorCategory.DEPLOYMENT_BATCH_FAILURE.value,
            'batch_index': self.batch_index,
            'table': self.table,
            'row_range': list(self.row_range),
            'error': self.error,
        }


@dataclass
class DeploymentOutcome:
    """Result of a deployment: committed, rolled back, partial or aborted"""
    deployment_id: str
    success: bool = False
    aborted: bool = False
    abort_reasons: List[str] = field(default_factory=list)
    committed_records: int = 0
    batches_committed: int = 0
    failures: List[BatchFailure] = field(default_factory=list)
    rollback_triggered: bool = False
    rollback_failed_point: Optional[int] = None
    rollback_error: Optional[str] = None
    cancelled: bool = False
    tables_updated: List[str] = field(default_factory=list)
    duplicates_removed: int = 0
    backup_snapshot_id: Optional[str] = None
    final_validation_run_id: Optional[str] = None
    elapsed_ms: int = 0
    estimated_minutes: int = 0
    notes: str = ''
    notify_on_completion: bool = False

    @property
    def partial(self) -> bool:
        return bool(self.failures) and not self.rollback_triggered and self.committed_records > 0

    def to_dict(self) -> Dict[str, Any]:
        return {
            'deployment_id': self.deployment_id,
            'success': self.success,
            'aborted': self.aborted,
            'abort_reasons': list(self.abort_reasons),
            'committed_records': self.committed_records,
            'batches_committed': self.batches_committed,
            'failures': [f.to_dict() for f in self.failures],
            'partial': self.partial,
            'rollback_triggered': self.rollback_triggered,
            'rollback_failed_point': self.rollback_failed_point,
            'rollback_error': self.rollback_error,
            'cancelled': self.cancelled,
            'tables_updated': list(self.tables_updated),
            'duplicates_removed': self.duplicates_removed,
            'backup_snapshot_id': self.backup_snapshot_id,
            'final_validation_run_id': self.final_validation_run_id,
            'elapsed_ms': self.elapsed_ms,
            'estimated_minutes': self.estimated_minutes,
            'notes': self.notes,
            'notify_on_completion': self.notify_on_completion,
        }


def coerce_cell(cell: CellValue, target: TargetField) -> Any:
    """Convert a processed cell to the value stored for its target field"""
    if cell.is_null:
        return None

    if target.type in ('number', 'decimal'):
        if cell.kind is CellKind.NUMBER:
            return float(cell.value) if target.type == 'decimal' else cell.value
        cleaned = cell.text.replace('$', '').replace(',', '')
        try:
            number = float(cleaned)
        except ValueError:
            return cell.text
        if target.type == 'number' and number.is_integer():
            return int(number)
        return number

    if target.type == 'boolean':
        return cell.value if cell.kind is CellKind.BOOLEAN else cell.text

    if target.type == 'date':
        if isinstance(cell.value, datetime):
            return cell.value.date().isoformat()
        if isinstance(cell.value, date):
            return cell.value.isoformat()
        try:
            return date_parser.parse(cell.text).date().isoformat()
        except (ValueError, OverflowError):
            return cell.text

    return cell.text


@dataclass
class _TablePlan:
    table: str
    columns: List[Tuple[int, TargetField]]
    records: List[Record] = field(default_factory=list)


class _DeploymentCancelled(Exception):
    pass


class _BatchFailed(Exception):
    pass


class DeploymentCoordinator:
    """Batched commits with backup and rollback; at most one active deployment"""

    def __init__(self, sink: PersistenceSink, engine: Optional[ValidationEngine] = None,
                 tracker: Optional[ProgressTracker] = None):
        self.sink = sink
        self.engine = engine or ValidationEngine()
        self.registry = self.engine.registry
        self.resolver = MappingResolver(self.registry)
        self.tracker = tracker or ProgressTracker()
        self._run_lock = threading.Lock()
        self._cancel_event = threading.Event()
        self._executor = ThreadPoolExecutor(max_workers=1, thread_name_prefix='deployment')

    @property
    def is_running(self) -> bool:
        return self._run_lock.locked()

    def deploy(self, source: TabularSource, mappings: Sequence[FieldMapping],
               report: Optional[ValidationReport],
               deployment_settings: Optional[DeploymentSettings] = None,
               confirmation: Optional[DeploymentConfirmation] = None) -> DeploymentOutcome:
        """Run synchronously on the calling thread"""
        self._acquire()
        try:
            return self._run(source, mappings, report, deployment_settings or DeploymentSettings(),
                             confirmation or DeploymentConfirmation())
        finally:
            self._run_lock.release()

    def start(self, source: TabularSource, mappings: Sequence[FieldMapping],
              report: Optional[ValidationReport],
              deployment_settings: Optional[DeploymentSettings] = None,
              confirmation: Optional[DeploymentConfirmation] = None) -> 'Future[DeploymentOutcome]':
        """Run on the coordinator's worker thread"""
        self._acquire()
        try:
            return self._executor.submit(self._run_and_release, source, mappings, report,
                                         deployment_settings or DeploymentSettings(),
                                         confirmation or DeploymentConfirmation())
        except RuntimeError:
            self._run_lock.release()
            raise

    def cancel(self) -> None:
        """Stop before the next batch; committed batches are rolled back when enabled"""
        if self.is_running:
            logger.info("Deployment cancellation requested")
        self._cancel_event.set()
        self.engine.cancel()

    def shutdown(self, wait: bool = True) -> None:
        self._executor.shutdown(wait=wait)

    def _acquire(self) -> None:
        if not self._run_lock.acquire(blocking=False):
            raise RunInProgressError("A deployment is already in progress")
        self._cancel_event.clear()

    def _run_and_release(self, *args) -> DeploymentOutcome:
        try:
            return self._run(*args)
        finally:
            self._run_lock.release()

    def _publish(self, zone: Tuple[float, float], fraction: float, stage: str) -> None:
        start, end = zone
        self.tracker.update(start + (end - start) * max(0.0, min(1.0, fraction)), stage)

    def check_preconditions(self, mappings: Sequence[FieldMapping], report: Optional[ValidationReport],
                            confirmation: DeploymentConfirmation) -> List[str]:
        """Reasons the deployment may not start; empty when it may"""
        reasons = []
        if report is None:
            reasons.append("Validation has not been run")
        else:
            if report.cancelled:
                reasons.append("Validation was cancelled before completion")
            if report.cutoff:
                reasons.append(f"Validation was cut off: {report.cutoff_reason}")
            if report.blocking_error_count:
                reasons.append(f"Validation reported {report.blocking_error_count} blocking error(s)")

        if not any(m.is_mapped for m in mappings):
            reasons.append("No columns are mapped to target fields")
        reasons.extend(issue.message for issue in self.resolver.missing_required(mappings))
        reasons.extend(issue.message for issue in self.resolver.duplicate_targets(mappings))

        missing = confirmation.missing()
        if missing:
            reasons.append(f"Deployment not confirmed: {', '.join(missing)}")
        return reasons

    def _run(self, source: TabularSource, mappings: Sequence[FieldMapping],
             report: Optional[ValidationReport], deployment_settings: DeploymentSettings,
             confirmation: DeploymentConfirmation) -> DeploymentOutcome:
        started = time.monotonic()
        self.tracker.reset()
        outcome = DeploymentOutcome(
            deployment_id=str(uuid.uuid4()),
            notes=deployment_settings.notes,
            notify_on_completion=deployment_settings.notify_on_completion,
        )
        log = logger.bind(deployment_id=outcome.deployment_id, file_name=source.file_name)

        reasons = self.check_preconditions(mappings, report, confirmation)
        if not reasons and report.sampled and not deployment_settings.run_final_validation:
            reasons.append("Validation ran on a sample; a final full validation is required")
        if reasons:
            return self._abort(outcome, reasons, started, log)

        outcome.estimated_minutes = ProgressEstimator.estimate_deployment_minutes(len(report.processed_rows))
        log.info("Deployment started", rows=len(report.processed_rows),
                 batch_size=deployment_settings.batch_size,
                 mode='append' if deployment_settings.preserve_existing_data else 'replace')

        if deployment_settings.run_final_validation:
            self._publish(REVALIDATION_ZONE, 0.0, 'final validation')
            report = self._final_validation(source, mappings, report)
            outcome.final_validation_run_id = report.run_id
            if report.cancelled or self._cancel_event.is_set():
                outcome.cancelled = True
                return self._abort(outcome, ["Deployment cancelled during final validation"], started, log)
            if not report.can_deploy:
                return self._abort(outcome, [
                    f"Final validation reported {report.blocking_error_count} blocking error(s)"
                ], started, log)
            self._publish(REVALIDATION_ZONE, 1.0, 'final validation')

        plans = self._build_plans(source, mappings, report.processed_rows)
        if deployment_settings.validate_duplicates:
            outcome.duplicates_removed = sum(self._drop_duplicate_records(plan) for plan in plans)
        tables = [plan.table for plan in plans]

        snapshot: Optional[Snapshot] = None
        receipts: List[BatchReceipt] = []
        try:
            if deployment_settings.create_backup:
                self._publish(BACKUP_ZONE, 0.0, 'backup')
                snapshot = self.sink.snapshot(tables)
                outcome.backup_snapshot_id = snapshot.snapshot_id
        except PersistenceError as e:
            return self._abort(outcome, [f"Backup failed: {e}"], started, log)

        try:
            if not deployment_settings.preserve_existing_data:
                self._clear_tables(tables, outcome, log)
            self._publish(BACKUP_ZONE, 1.0, 'backup')
            self._write_batches(plans, deployment_settings, outcome, receipts, log)
        except _DeploymentCancelled:
            outcome.cancelled = True
            log.warning("Deployment cancelled", batches_committed=len(receipts))
            if deployment_settings.enable_rollback and (receipts or not deployment_settings.preserve_existing_data):
                self._rollback(outcome, receipts, snapshot, deployment_settings, log)
        except _BatchFailed:
            if deployment_settings.enable_rollback:
                self._rollback(outcome, receipts, snapshot, deployment_settings, log)

        if not outcome.rollback_triggered or outcome.rollback_error:
            outcome.committed_records = sum(r.record_count for r in receipts)
            outcome.batches_committed = len(receipts)
            outcome.tables_updated = [t for t in tables if any(r.table == t for r in receipts)]

        outcome.success = not outcome.failures and not outcome.cancelled
        outcome.elapsed_ms = int((time.monotonic() - started) * 1000)
        self.tracker.update(100.0, 'complete')
        log.info(
            "Deployment finished",
            success=outcome.success,
            committed_records=outcome.committed_records,
            failures=len(outcome.failures),
            rollback_triggered=outcome.rollback_triggered,
            cancelled=outcome.cancelled,
            elapsed_ms=outcome.elapsed_ms,
        )
        return outcome

    def _abort(self, outcome: DeploymentOutcome, reasons: List[str], started: float, log) -> DeploymentOutcome:
        outcome.aborted = True
        outcome.abort_reasons = list(reasons)
        outcome.elapsed_ms = int((time.monotonic() - started) * 1000)
        log.warning("Deployment aborted", category=ErrorCategory.DEPLOYMENT_ABORTED.value, reasons=reasons)
        return outcome

    def _final_validation(self, source: TabularSource, mappings: Sequence[FieldMapping],
                          report: ValidationReport) -> ValidationReport:
        """Re-run validation over every row with the report's settings"""
        final_settings = report.settings
        if report.sampled:
            final_settings = final_settings.model_copy(update={'sample_validation': False})
        return self.engine.validate(source, mappings, final_settings)

    def _build_plans(self, source: TabularSource, mappings: Sequence[FieldMapping],
                     rows: Sequence[ProcessedRow]) -> List[_TablePlan]:
        plans: Dict[str, _TablePlan] = {}
        for mapping in mappings:
            if not mapping.is_mapped or mapping.source_column not in source.headers:
                continue
            target = self.registry.find(mapping.target_table, mapping.target_field)
            if target is None:
                continue
            plan = plans.setdefault(target.table, _TablePlan(table=target.table, columns=[]))
            plan.columns.append((source.column_index(mapping.source_column), target))

        for plan in plans.values():
            for row in rows:
                record = {target.field: coerce_cell(row.cells[index], target) for index, target in plan.columns}
                if any(value is not None for value in record.values()):
                    plan.records.append(record)
        return list(plans.values())

    def _drop_duplicate_records(self, plan: _TablePlan) -> int:
        seen = set()
        unique = []
        for record in plan.records:
            key = tuple(sorted((name, repr(value)) for name, value in record.items()))
            if key in seen:
                continue
            seen.add(key)
            unique.append(record)
        removed = len(plan.records) - len(unique)
        plan.records = unique
        if removed:
            logger.info("Duplicate records removed before deployment", table=plan.table, removed=removed)
        return removed

    def _clear_tables(self, tables: Sequence[str], outcome: DeploymentOutcome, log) -> None:
        for table in tables:
            try:
                cleared = self.sink.clear(table)
            except PersistenceError as e:
                outcome.failures.append(BatchFailure(batch_index=0, table=table, row_range=(0, 0), error=str(e)))
                outcome.rollback_failed_point = 0
                log.error("Target table clear failed", table=table, error=str(e))
                raise _BatchFailed() from e
            log.info("Target table cleared", table=table, records=cleared)

    def _write_batches(self, plans: Sequence[_TablePlan], deployment_settings: DeploymentSettings,
                       outcome: DeploymentOutcome, receipts: List[BatchReceipt], log) -> None:
        batch_size = deployment_settings.batch_size
        batches = [
            (plan.table, start, plan.records[start:start + batch_size])
            for plan in plans
            for start in range(0, len(plan.records), batch_size)
        ]
        total = len(batches) or 1

        for batch_index, (table, start, records) in enumerate(batches, start=1):
            if self._cancel_event.is_set():
                raise _DeploymentCancelled()
            try:
                receipts.append(self.sink.write_batch(table, records))
            except PersistenceError as e:
                outcome.failures.append(BatchFailure(batch_index=batch_index, table=table,
                                                     row_range=(start + 1, start + len(records)),
                                                     error=str(e)))
                log.error("Batch write failed", batch_index=batch_index, table=table,
                          records=len(records), error=str(e))
                if deployment_settings.enable_rollback:
                    outcome.rollback_failed_point = batch_index
                    raise _BatchFailed() from e
            self._publish(WRITE_ZONE, batch_index / total, f"writing {table}")

    def _rollback(self, outcome: DeploymentOutcome, receipts: List[BatchReceipt],
                  snapshot: Optional[Snapshot], deployment_settings: DeploymentSettings, log) -> None:
        """Revert this run's batches; replace mode also restores the backed-up tables"""
        outcome.rollback_triggered = True
        restore = None if deployment_settings.preserve_existing_data else snapshot
        try:
            self.sink.rollback(receipts, restore)
        except PersistenceError as e:
            outcome.rollback_error = str(e)
            log.error("Rollback failed", batches=len(receipts), error=str(e),
                      backup_snapshot_id=outcome.backup_snapshot_id)
            return
        log.info("Deployment rolled back", batches=len(receipts),
                 failed_batch=outcome.rollback_failed_point)
