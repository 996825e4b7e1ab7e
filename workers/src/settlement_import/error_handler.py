"""
Import Error Taxonomy

This module defines how the import pipeline classifies and reports problems:
- Error categories and severities for every stage of a run
- Structured issue records returned to the caller instead of raised
- A small exception hierarchy reserved for caller misuse
"""
from typing import Dict, Any, Optional
from datetime import datetime, timezone
from dataclasses import dataclass, field
from enum import Enum


class ErrorSeverity(Enum):
    """Error severity levels"""
    LOW = "low"
    MEDIUM = "medium"
    HIGH = "high"
    CRITICAL = "critical"


class ErrorCategory(Enum):
    """Error categories across the import stages"""
    PROFILING_ISSUE = "profiling_issue"
    MAPPING_ERROR = "mapping_error"
    VALIDATION_ERROR = "validation_error"
    VALIDATION_WARNING = "validation_warning"
    ENGINE_CUTOFF = "engine_cutoff"
    DEPLOYMENT_BATCH_FAILURE = "deployment_batch_failure"
    DEPLOYMENT_ABORTED = "deployment_aborted"


# Categories that stop a deployment unless the operator fixes them first
BLOCKING_CATEGORIES = frozenset({
    ErrorCategory.MAPPING_ERROR,
    ErrorCategory.VALIDATION_ERROR,
})


@dataclass
class ValidationIssue:
    """A single error or warning produced by a pipeline stage"""
    message: str
    category: ErrorCategory = ErrorCategory.VALIDATION_ERROR
    severity: ErrorSeverity = ErrorSeverity.MEDIUM
    row: Optional[int] = None
    column: Optional[str] = None
    value: Any = None
    created_at: datetime = field(default_factory=lambda: datetime.now(timezone.utc))

    @property
    def is_blocking(self) -> bool:
        return self.category in BLOCKING_CATEGORIES

    def to_dict(self) -> Dict[str, Any]:
        """Convert to dictionary for storage/transmission"""
        return {
            'message': self.message,
            'category': self.category.value,
            'severity': self.severity.value,
            'row': self.row,
            'column': self.column,
            'value': None if self.value is None else str(self.value),
            'created_at': self.created_at.isoformat(),
        }


def validation_error(message: str, row: Optional[int] = None, column: Optional[str] = None,
                     value: Any = None) -> ValidationIssue:
    return ValidationIssue(
        message=message,
        category=ErrorCategory.VALIDATION_ERROR,
        severity=ErrorSeverity.HIGH,
        row=row,
        column=column,
        value=value,
    )


def validation_warning(message: str, row: Optional[int] = None, column: Optional[str] = None,
                       value: Any = None) -> ValidationIssue:
    return ValidationIssue(
        message=message,
        category=ErrorCategory.VALIDATION_WARNING,
        severity=ErrorSeverity.LOW,
        row=row,
        column=column,
        value=value,
    )


class ImportPipelineError(Exception):
    """Base class for errors raised by the import pipeline"""


class IngestionError(ImportPipelineError):
    """The uploaded file could not be turned into a tabular source"""


class SchemaError(ImportPipelineError):
    """An invalid schema or mapping operation was requested"""


class RunInProgressError(ImportPipelineError):
    """A validation or deployment run is already active for this pipeline"""


class NavigationError(ImportPipelineError):
    """A workflow stage transition was rejected by its guard"""


class PersistenceError(ImportPipelineError):
    """A persistence sink rejected a write, snapshot or rollback"""
