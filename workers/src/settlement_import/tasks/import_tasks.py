"""
Celery tasks for the import pipeline

Each task takes a file path plus JSON settings, runs one pipeline stage and
returns a JSON-safe summary:
- profile_file: column profiles and the staging analysis
- validate_file: validation report for auto or supplied mappings
- deploy_file: validation followed by a batched deployment
"""
import time
from typing import Any, Dict, List, Optional

import structlog
from celery import Task

from ..deployment.coordinator import DeploymentConfirmation, DeploymentSettings
from ..deployment.sinks import InMemorySink, SupabaseSink
from ..pipeline import ImportPipeline
from ..queue.celery_app import celery_app
from ..validation.progress import ProgressEstimator, ProgressTicker
from ..validation.run_settings import ValidationSettings

logger = structlog.get_logger(__name__)


class BaseImportTask(Task):
    """Base class for import tasks with common failure logging"""

    def on_failure(self, exc, task_id, args, kwargs, einfo):
        logger.error(
            "Task failed",
            task_id=task_id,
            task_name=self.name,
            exception=str(exc),
            args=args,
        )


def _publish_progress(task: Task, stage: str):
    """Callback forwarding smoothed progress to the task state"""
    def callback(snapshot) -> None:
        if task.request.id is None:
            return
        task.update_state(
            state='PROGRESS',
            meta={
                'stage': stage,
                'progress': snapshot.displayed,
                'actual': snapshot.actual,
                'message': snapshot.message,
                'remaining': snapshot.remaining_text,
            },
        )
    return callback


def _prepare(pipeline: ImportPipeline, file_path: str,
             mappings: Optional[List[Dict[str, Any]]]) -> None:
    """Ingest, profile and map; explicit mappings override the automatic ones"""
    pipeline.ingest_file(file_path)
    pipeline.map_columns()
    for mapping in mappings or []:
        pipeline.update_mapping(mapping['source_column'], mapping.get('target_table'),
                                mapping.get('target_field'))


@celery_app.task(bind=True, base=BaseImportTask, name="settlement_import.tasks.profile_file")
def profile_file(self, file_path: str) -> Dict[str, Any]:
    """Profile every column of an uploaded file"""
    start_time = time.time()
    pipeline = ImportPipeline()
    try:
        pipeline.ingest_file(file_path)
        analysis = pipeline.profile()
        mappings = pipeline.map_columns()
    finally:
        pipeline.shutdown(wait=False)

    logger.info("Profiling task completed", file_path=file_path,
                columns=len(analysis.profiles), quality_score=analysis.quality_score)
    return {
        'file_name': pipeline.source.file_name,
        'total_rows': analysis.total_rows,
        'total_columns': analysis.total_columns,
        'quality_score': analysis.quality_score,
        'profiles': [p.to_dict() for p in analysis.profiles],
        'recommendations': list(analysis.recommendations),
        'suggested_mappings': [m.to_dict() for m in mappings],
        'processing_time_ms': int((time.time() - start_time) * 1000),
    }


@celery_app.task(bind=True, base=BaseImportTask, name="settlement_import.tasks.validate_file")
def validate_file(self, file_path: str, validation_settings: Optional[Dict[str, Any]] = None,
                  mappings: Optional[List[Dict[str, Any]]] = None) -> Dict[str, Any]:
    """Validate a file against the target schema"""
    run_settings = ValidationSettings.model_validate(validation_settings or {})
    pipeline = ImportPipeline()
    try:
        _prepare(pipeline, file_path, mappings)
        estimate = pipeline.estimate_validation(run_settings)
        with ProgressTicker(pipeline.validation_tracker, estimate, _publish_progress(self, 'validation')):
            report = pipeline.validate(run_settings)
    finally:
        pipeline.shutdown(wait=False)

    summary = report.to_dict()
    summary['estimated_ms'] = estimate
    summary['mappings'] = [m.to_dict() for m in pipeline.mappings]
    return summary


@celery_app.task(bind=True, base=BaseImportTask, name="settlement_import.tasks.deploy_file")
def deploy_file(
    self,
    file_path: str,
    validation_settings: Optional[Dict[str, Any]] = None,
    deployment_settings: Optional[Dict[str, Any]] = None,
    confirmation: Optional[Dict[str, bool]] = None,
    mappings: Optional[List[Dict[str, Any]]] = None,
    dry_run: bool = False,
) -> Dict[str, Any]:
    """Validate and deploy a file; dry runs write to an in-memory sink"""
    run_settings = ValidationSettings.model_validate(validation_settings or {})
    deploy_settings = DeploymentSettings.model_validate(deployment_settings or {})
    confirmed = DeploymentConfirmation.model_validate(confirmation or {})

    pipeline = ImportPipeline(sink=InMemorySink() if dry_run else SupabaseSink())
    try:
        _prepare(pipeline, file_path, mappings)
        report = pipeline.validate(run_settings)
        estimate = 60000 * max(1, ProgressEstimator.estimate_deployment_minutes(len(report.processed_rows)))
        with ProgressTicker(pipeline.deployment_tracker, estimate, _publish_progress(self, 'deployment')):
            outcome = pipeline.deploy(deploy_settings, confirmed)
    finally:
        pipeline.shutdown(wait=False)

    logger.info("Deployment task completed", file_path=file_path, dry_run=dry_run,
                success=outcome.success, committed_records=outcome.committed_records)
    return {
        'validation': report.to_dict(),
        'deployment': outcome.to_dict(),
        'dry_run': dry_run,
    }
