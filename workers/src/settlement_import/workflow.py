"""
Import wizard navigation

The six wizard stages form a guarded state machine. Forward moves require the
artifacts of the earlier stages; backward moves are free while nothing runs.
A completed deployment makes the workflow terminal.
"""
import threading
from enum import Enum
from typing import Optional, Sequence

import structlog

from .error_handler import NavigationError, RunInProgressError
from .parsers.tabular_source import TabularSource
from .validation.column_profiler import ColumnProfile
from .validation.mapping_resolver import FieldMapping
from .validation.validation_engine import ValidationReport

logger = structlog.get_logger(__name__)


class WorkflowStage(Enum):
    UPLOAD = "upload"
    STAGING = "staging"
    MAPPING = "mapping"
    VALIDATION = "validation"
    REVIEW = "review"
    DEPLOY = "deploy"

    @property
    def position(self) -> int:
        return STAGE_ORDER.index(self)


STAGE_ORDER = tuple(WorkflowStage)


class UploadStatus(Enum):
    """Lifecycle of the uploaded file across the wizard"""
    UPLOADED = "uploaded"
    STAGED = "staged"
    MAPPED = "mapped"
    VALIDATED = "validated"
    READY = "ready"
    DEPLOYED = "deployed"
    FAILED = "failed"


class ImportWorkflow:
    """Current wizard stage plus the artifacts its guards inspect"""

    def __init__(self):
        self._lock = threading.Lock()
        self._stage = WorkflowStage.UPLOAD
        self._busy: Optional[str] = None
        self.status: Optional[UploadStatus] = None
        self.source: Optional[TabularSource] = None
        self.profiles: Sequence[ColumnProfile] = ()
        self.mappings: Sequence[FieldMapping] = ()
        self.report: Optional[ValidationReport] = None

    @property
    def stage(self) -> WorkflowStage:
        with self._lock:
            return self._stage

    @property
    def busy(self) -> Optional[str]:
        """Name of the running activity, if any"""
        with self._lock:
            return self._busy

    @property
    def terminal(self) -> bool:
        return self.status is UploadStatus.DEPLOYED

    def set_status(self, status: UploadStatus) -> None:
        if self.terminal and status is not UploadStatus.DEPLOYED:
            raise NavigationError("Import has been deployed; its status can no longer change")
        if status is not self.status:
            logger.info("Upload status changed", previous=self.status.value if self.status else None,
                        status=status.value)
        self.status = status

    def begin(self, activity: str) -> None:
        """Mark a validation or deployment as running; navigation is blocked until finish()"""
        with self._lock:
            if self._busy is not None:
                raise RunInProgressError(f"Cannot start {activity} while {self._busy} is running")
            self._busy = activity

    def finish(self) -> None:
        with self._lock:
            self._busy = None

    def blocker(self, stage: WorkflowStage) -> Optional[str]:
        """Why the given stage cannot be entered yet, or None"""
        if stage is WorkflowStage.STAGING and self.source is None:
            return "Upload a file first"
        if stage is WorkflowStage.MAPPING and not self.profiles:
            return "Profile the uploaded file first"
        if stage is WorkflowStage.VALIDATION and not any(m.is_mapped for m in self.mappings):
            return "Map at least one column first"
        if stage is WorkflowStage.REVIEW and self.report is None:
            return "Run validation first"
        if stage is WorkflowStage.DEPLOY and (self.report is None or self.report.blocking_error_count):
            return "Resolve blocking validation errors first"
        return None

    def can_enter(self, stage: WorkflowStage) -> bool:
        current = self.stage
        if stage.position <= current.position:
            return True
        return all(self.blocker(s) is None for s in STAGE_ORDER[current.position + 1:stage.position + 1])

    def go_to(self, stage: WorkflowStage) -> WorkflowStage:
        with self._lock:
            if self._busy is not None:
                raise NavigationError(f"Navigation is disabled while {self._busy} is running")
            if self.terminal:
                raise NavigationError("Import has been deployed; start a new import")

            current = self._stage
            if stage.position > current.position:
                for step in STAGE_ORDER[current.position + 1:stage.position + 1]:
                    reason = self.blocker(step)
                    if reason is not None:
                        raise NavigationError(f"Cannot enter {step.value}: {reason}")

            self._stage = stage

        if stage is not current:
            logger.info("Workflow stage changed", previous=current.value, stage=stage.value)
        return stage

    def advance(self) -> WorkflowStage:
        current = self.stage
        if current is WorkflowStage.DEPLOY:
            raise NavigationError("Already at the final stage")
        return self.go_to(STAGE_ORDER[current.position + 1])

    def back(self) -> WorkflowStage:
        current = self.stage
        if current is WorkflowStage.UPLOAD:
            raise NavigationError("Already at the first stage")
        return self.go_to(STAGE_ORDER[current.position - 1])
