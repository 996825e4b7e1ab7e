# =============================================================================
# workers/tests/test_workflow.py - Import Wizard Navigation Tests
# =============================================================================
# Tests for the guarded stage machine behind the import wizard.
# Covers:
#   - Forward guards for each stage
#   - Free backward navigation
#   - Blocking navigation while a run is active
#   - Terminal state after deployment
# =============================================================================

import pytest

from settlement_import.error_handler import NavigationError, RunInProgressError, validation_error
from settlement_import.parsers.tabular_source import TabularSource
from settlement_import.validation.column_profiler import ColumnProfiler
from settlement_import.validation.mapping_resolver import FieldMapping
from settlement_import.validation.run_settings import ValidationSettings
from settlement_import.validation.validation_engine import ValidationReport, ValidationResult
from settlement_import.workflow import STAGE_ORDER, ImportWorkflow, UploadStatus, WorkflowStage


def make_report(*errors) -> ValidationReport:
    return ValidationReport(
        run_id="run-1",
        settings=ValidationSettings(),
        headers=("a",),
        total_rows=1,
        results=[ValidationResult(field="a", errors=list(errors))],
    )


@pytest.fixture
def workflow() -> ImportWorkflow:
    return ImportWorkflow()


@pytest.fixture
def mapped_workflow(workflow) -> ImportWorkflow:
    """Workflow with a source, profiles and one mapped column."""
    source = TabularSource.from_rows(["a"], [["x"]])
    workflow.source = source
    workflow.profiles = ColumnProfiler().profile(source)
    workflow.mappings = [FieldMapping("a", "individual_parties", "first_name")]
    return workflow


# =============================================================================
# Guard Tests
# =============================================================================

class TestGuards:
    """Tests for forward navigation guards."""

    def test_starts_at_upload(self, workflow):
        assert workflow.stage is WorkflowStage.UPLOAD
        assert STAGE_ORDER[0] is WorkflowStage.UPLOAD
        assert WorkflowStage.DEPLOY.position == 5

    def test_staging_needs_a_file(self, workflow):
        with pytest.raises(NavigationError, match="Upload a file first"):
            workflow.advance()
        assert workflow.stage is WorkflowStage.UPLOAD

    def test_jump_checks_every_intermediate_stage(self, workflow):
        workflow.source = TabularSource.from_rows(["a"], [["x"]])
        with pytest.raises(NavigationError, match="Profile the uploaded file first"):
            workflow.go_to(WorkflowStage.VALIDATION)
        assert not workflow.can_enter(WorkflowStage.VALIDATION)

    def test_walk_to_validation(self, mapped_workflow):
        assert mapped_workflow.go_to(WorkflowStage.VALIDATION) is WorkflowStage.VALIDATION
        with pytest.raises(NavigationError, match="Run validation first"):
            mapped_workflow.advance()

    def test_deploy_blocked_by_errors(self, mapped_workflow):
        mapped_workflow.report = make_report(validation_error("Row 1: bad"))
        assert mapped_workflow.blocker(WorkflowStage.REVIEW) is None
        assert mapped_workflow.blocker(WorkflowStage.DEPLOY) == "Resolve blocking validation errors first"

        mapped_workflow.report = make_report()
        assert mapped_workflow.go_to(WorkflowStage.DEPLOY) is WorkflowStage.DEPLOY

    def test_unmapped_columns_block_validation(self, mapped_workflow):
        mapped_workflow.mappings = [FieldMapping("a")]
        assert mapped_workflow.blocker(WorkflowStage.VALIDATION) == "Map at least one column first"


# =============================================================================
# Backward Navigation Tests
# =============================================================================

class TestBackward:
    """Tests for backward moves."""

    def test_back_is_free(self, mapped_workflow):
        mapped_workflow.go_to(WorkflowStage.MAPPING)
        mapped_workflow.mappings = []
        assert mapped_workflow.can_enter(WorkflowStage.UPLOAD)
        assert mapped_workflow.back() is WorkflowStage.STAGING

    def test_back_from_first_stage(self, workflow):
        with pytest.raises(NavigationError):
            workflow.back()


# =============================================================================
# Busy and Terminal Tests
# =============================================================================

class TestBusyAndTerminal:
    """Tests for runs in progress and completed deployments."""

    def test_navigation_blocked_while_running(self, mapped_workflow):
        mapped_workflow.begin("validation")
        assert mapped_workflow.busy == "validation"
        with pytest.raises(NavigationError, match="validation is running"):
            mapped_workflow.go_to(WorkflowStage.UPLOAD)

        mapped_workflow.finish()
        assert mapped_workflow.busy is None
        assert mapped_workflow.go_to(WorkflowStage.STAGING) is WorkflowStage.STAGING

    def test_second_activity_is_rejected(self, workflow):
        workflow.begin("validation")
        with pytest.raises(RunInProgressError):
            workflow.begin("deployment")

    def test_deployed_is_terminal(self, mapped_workflow):
        mapped_workflow.set_status(UploadStatus.DEPLOYED)

        assert mapped_workflow.terminal
        with pytest.raises(NavigationError):
            mapped_workflow.set_status(UploadStatus.FAILED)
        with pytest.raises(NavigationError):
            mapped_workflow.go_to(WorkflowStage.UPLOAD)
        mapped_workflow.set_status(UploadStatus.DEPLOYED)
