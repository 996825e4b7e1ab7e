"""
Import pipeline facade

One ImportPipeline owns one import run: the uploaded source, its profiles and
mappings, the latest validation report and the deployment outcome. Every step
keeps the wizard workflow and the upload status in step with the artifacts.
"""
from concurrent.futures import Future, ThreadPoolExecutor
from datetime import datetime, timezone
from pathlib import Path
from typing import List, Optional, Sequence, Union

import structlog

from .deployment.coordinator import (
    DeploymentConfirmation,
    DeploymentCoordinator,
    DeploymentOutcome,
    DeploymentSettings,
)
from .deployment.sinks import InMemorySink, PersistenceSink
from .error_handler import ImportPipelineError, IngestionError, NavigationError
from .parsers.tabular_parser import TabularParser
from .parsers.tabular_source import TabularSource
from .reporting import build_import_report
from .validation.column_profiler import ColumnProfile, ColumnProfiler, StagingAnalysis
from .validation.mapping_resolver import FieldMapping, MappingResolver, MappingTemplate
from .validation.progress import ProgressEstimator, ProgressTracker
from .validation.run_settings import ValidationSettings
from .validation.schema_registry import SchemaRegistry, TargetField
from .validation.validation_engine import ValidationEngine, ValidationReport
from .workflow import ImportWorkflow, UploadStatus

logger = structlog.get_logger(__name__)


class ImportPipeline:
    """Drives a single import from upload to deployment"""

    def __init__(
        self,
        registry: Optional[SchemaRegistry] = None,
        sink: Optional[PersistenceSink] = None,
        parser: Optional[TabularParser] = None,
        profiler: Optional[ColumnProfiler] = None,
    ):
        self.registry = registry or SchemaRegistry()
        self.parser = parser or TabularParser()
        self.profiler = profiler or ColumnProfiler()
        self.resolver = MappingResolver(self.registry)
        self.validation_tracker = ProgressTracker()
        self.deployment_tracker = ProgressTracker()
        self.engine = ValidationEngine(self.registry, self.validation_tracker)
        self.coordinator = DeploymentCoordinator(sink or InMemorySink(), self.engine, self.deployment_tracker)
        self.estimator = ProgressEstimator()
        self.workflow = ImportWorkflow()
        self._executor = ThreadPoolExecutor(max_workers=1, thread_name_prefix='import-pipeline')

        self.analysis: Optional[StagingAnalysis] = None
        self.outcome: Optional[DeploymentOutcome] = None
        self.uploaded_at: Optional[datetime] = None

    @property
    def source(self) -> Optional[TabularSource]:
        return self.workflow.source

    @property
    def profiles(self) -> Sequence[ColumnProfile]:
        return self.workflow.profiles

    @property
    def mappings(self) -> List[FieldMapping]:
        return list(self.workflow.mappings)

    @property
    def validation_report(self) -> Optional[ValidationReport]:
        return self.workflow.report

    def _require_source(self) -> TabularSource:
        if self.workflow.source is None:
            raise ImportPipelineError("No file has been uploaded")
        return self.workflow.source

    def _require_mutable(self) -> None:
        if self.workflow.terminal:
            raise NavigationError("Import has been deployed; start a new import")
        if self.workflow.busy is not None:
            raise NavigationError(f"Cannot change the import while {self.workflow.busy} is running")

    def _invalidate_report(self) -> None:
        self.workflow.report = None
        if self.workflow.mappings:
            self.workflow.set_status(UploadStatus.MAPPED)

    # Upload and staging

    def ingest(self, data: Union[bytes, TabularSource], file_name: str = 'upload.csv') -> TabularSource:
        """Accept raw file bytes or an already built source; replaces any earlier upload"""
        self._require_mutable()
        try:
            source = data if isinstance(data, TabularSource) else self.parser.parse_bytes(data, file_name)
        except IngestionError:
            self.workflow.set_status(UploadStatus.FAILED)
            raise
        return self._accept(source)

    def ingest_file(self, path: Union[str, Path]) -> TabularSource:
        self._require_mutable()
        try:
            source = self.parser.parse_file(path)
        except IngestionError:
            self.workflow.set_status(UploadStatus.FAILED)
            raise
        return self._accept(source)

    def _accept(self, source: TabularSource) -> TabularSource:
        self.workflow.source = source
        self.workflow.profiles = ()
        self.workflow.mappings = ()
        self.workflow.report = None
        self.analysis = None
        self.uploaded_at = datetime.now(timezone.utc)
        self.workflow.set_status(UploadStatus.UPLOADED)
        logger.info("File uploaded", file_name=source.file_name, total_rows=source.total_rows,
                    columns=len(source.headers))
        return source

    def profile(self) -> StagingAnalysis:
        self._require_mutable()
        self.analysis = self.profiler.analyze(self._require_source())
        self.workflow.profiles = self.analysis.profiles
        self.workflow.set_status(UploadStatus.STAGED)
        return self.analysis

    # Mapping

    def map_columns(self) -> List[FieldMapping]:
        """Auto-map every column from its profile"""
        if not self.workflow.profiles:
            self.profile()
        self._require_mutable()
        self.workflow.mappings = self.resolver.resolve(self.workflow.profiles)
        self._invalidate_report()
        return self.mappings

    def update_mapping(self, source_column: str, table: Optional[str],
                       field: Optional[str]) -> List[FieldMapping]:
        self._require_mutable()
        self.workflow.mappings = self.resolver.update_mapping(self.workflow.mappings, source_column, table, field)
        self._invalidate_report()
        return self.mappings

    def auto_map_remaining(self) -> List[FieldMapping]:
        self._require_mutable()
        self.workflow.mappings = self.resolver.auto_map_remaining(self.workflow.mappings, self.workflow.profiles)
        self._invalidate_report()
        return self.mappings

    def add_custom_field(self, table: str, name: str, **options) -> TargetField:
        self._require_mutable()
        return self.registry.add_custom_field(table, name, **options)

    def save_template(self, name: str, description: str = '') -> MappingTemplate:
        return self.resolver.save_template(name, description, self.workflow.mappings)

    def apply_template(self, template: MappingTemplate) -> List[FieldMapping]:
        self._require_mutable()
        self.workflow.mappings = self.resolver.apply_template(template, self.workflow.mappings)
        self._invalidate_report()
        return self.mappings

    # Validation

    def estimate_validation(self, validation_settings: Optional[ValidationSettings] = None) -> int:
        """Predicted validation duration in milliseconds"""
        return self.estimator.estimate_duration_ms(self._require_source().total_rows,
                                                   validation_settings or ValidationSettings())

    def _before_validation(self) -> TabularSource:
        if self.workflow.terminal:
            raise NavigationError("Import has already been deployed")
        source = self._require_source()
        if not any(m.is_mapped for m in self.workflow.mappings):
            raise ImportPipelineError("Map at least one column before validating")
        return source

    def _record_report(self, report: ValidationReport) -> ValidationReport:
        self.workflow.report = report
        if not report.cancelled:
            self.workflow.set_status(UploadStatus.READY if report.can_deploy else UploadStatus.VALIDATED)
        return report

    def validate(self, validation_settings: Optional[ValidationSettings] = None) -> ValidationReport:
        source = self._before_validation()
        self.workflow.begin('validation')
        try:
            report = self.engine.validate(source, self.workflow.mappings, validation_settings)
            return self._record_report(report)
        finally:
            self.workflow.finish()

    def start_validation(self, validation_settings: Optional[ValidationSettings] = None) -> 'Future[ValidationReport]':
        source = self._before_validation()
        self.workflow.begin('validation')
        try:
            return self._executor.submit(self._validate_in_background, source, validation_settings)
        except RuntimeError:
            self.workflow.finish()
            raise

    def _validate_in_background(self, source: TabularSource,
                                validation_settings: Optional[ValidationSettings]) -> ValidationReport:
        try:
            report = self.engine.validate(source, self.workflow.mappings, validation_settings)
            return self._record_report(report)
        finally:
            self.workflow.finish()

    def cancel(self) -> None:
        """Cancel whatever is running"""
        self.engine.cancel()
        self.coordinator.cancel()

    # Deployment

    def _before_deployment(self) -> TabularSource:
        if self.workflow.terminal:
            raise NavigationError("Import has already been deployed")
        return self._require_source()

    def _record_outcome(self, outcome: DeploymentOutcome) -> DeploymentOutcome:
        self.outcome = outcome
        if outcome.success:
            self.workflow.set_status(UploadStatus.DEPLOYED)
        elif outcome.failures:
            self.workflow.set_status(UploadStatus.FAILED)
        return outcome

    def deploy(self, deployment_settings: Optional[DeploymentSettings] = None,
               confirmation: Optional[DeploymentConfirmation] = None) -> DeploymentOutcome:
        source = self._before_deployment()
        self.workflow.begin('deployment')
        try:
            outcome = self.coordinator.deploy(source, self.workflow.mappings, self.workflow.report,
                                              deployment_settings, confirmation)
            return self._record_outcome(outcome)
        finally:
            self.workflow.finish()

    def start_deployment(self, deployment_settings: Optional[DeploymentSettings] = None,
                         confirmation: Optional[DeploymentConfirmation] = None) -> 'Future[DeploymentOutcome]':
        source = self._before_deployment()
        self.workflow.begin('deployment')
        try:
            return self._executor.submit(self._deploy_in_background, source, deployment_settings, confirmation)
        except RuntimeError:
            self.workflow.finish()
            raise

    def _deploy_in_background(self, source: TabularSource, deployment_settings: Optional[DeploymentSettings],
                              confirmation: Optional[DeploymentConfirmation]) -> DeploymentOutcome:
        try:
            outcome = self.coordinator.deploy(source, self.workflow.mappings, self.workflow.report,
                                              deployment_settings, confirmation)
            return self._record_outcome(outcome)
        finally:
            self.workflow.finish()

    # Export

    def report(self, generated_at: Optional[datetime] = None) -> str:
        source = self._require_source()
        validation = self.workflow.report
        return build_import_report(
            file_name=source.file_name,
            upload_status=self.workflow.status.value if self.workflow.status else '',
            total_rows=source.total_rows,
            mappings=self.workflow.mappings,
            results=validation.results if validation is not None else (),
            uploaded_at=self.uploaded_at,
            generated_at=generated_at,
        )

    def shutdown(self, wait: bool = True) -> None:
        self._executor.shutdown(wait=wait)
        self.engine.shutdown(wait=wait)
        self.coordinator.shutdown(wait=wait)
