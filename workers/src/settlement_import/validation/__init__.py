"""
Profiling, mapping and validation stages of the import pipeline
"""

from .schema_registry import SchemaRegistry, TargetField, TargetTable, clean_field_name
from .column_profiler import (
    ColumnProfile,
    ColumnProfiler,
    IssueSummary,
    StagingAnalysis,
    TypeOverrideRule,
    TYPE_OVERRIDE_RULES,
    column_profiler,
)
from .mapping_resolver import FieldMapping, MappingResolver, MappingTemplate, mapping_progress
from .run_settings import CustomDuplicateRules, ValidationSettings
from .normalization import DataNormalizer, ProcessedRow
from .duplicate_detection import DuplicateDetectionSystem, DuplicateGroup, DuplicateReport
from .progress import (
    ProgressEstimator,
    ProgressSmoother,
    ProgressSnapshot,
    ProgressTicker,
    ProgressTracker,
    format_estimate,
    stage_message,
)
from .validation_engine import ValidationEngine, ValidationReport, ValidationResult

__all__ = [
    "SchemaRegistry",
    "TargetField",
    "TargetTable",
    "clean_field_name",
    "ColumnProfile",
    "ColumnProfiler",
    "IssueSummary",
    "StagingAnalysis",
    "TypeOverrideRule",
    "TYPE_OVERRIDE_RULES",
    "column_profiler",
    "FieldMapping",
    "MappingResolver",
    "MappingTemplate",
    "mapping_progress",
    "CustomDuplicateRules",
    "ValidationSettings",
    "DataNormalizer",
    "ProcessedRow",
    "DuplicateDetectionSystem",
    "DuplicateGroup",
    "DuplicateReport",
    "ProgressEstimator",
    "ProgressSmoother",
    "ProgressSnapshot",
    "ProgressTicker",
    "ProgressTracker",
    "format_estimate",
    "stage_message",
    "ValidationEngine",
    "ValidationReport",
    "ValidationResult",
]
