"""
Settlement Import Workers - bulk data import for settlement case administration

This package provides the import pipeline and its workers:
- Tabular ingestion with encoding and delimiter detection
- Column profiling and schema mapping
- Configurable validation and duplicate detection
- Batched deployment with backup and rollback
- Background job processing with Celery/Redis
"""

__version__ = "1.0.0"

from .queue.celery_app import celery_app
from .pipeline import ImportPipeline
from .parsers.tabular_parser import TabularParser
from .parsers.tabular_source import TabularSource
from .validation.run_settings import ValidationSettings
from .deployment.coordinator import DeploymentConfirmation, DeploymentSettings
from .workflow import ImportWorkflow, UploadStatus, WorkflowStage

__all__ = [
    "celery_app",
    "ImportPipeline",
    "TabularParser",
    "TabularSource",
    "ValidationSettings",
    "DeploymentConfirmation",
    "DeploymentSettings",
    "ImportWorkflow",
    "UploadStatus",
    "WorkflowStage",
]
