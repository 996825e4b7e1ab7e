# =============================================================================
# workers/tests/test_pipeline.py - Import Pipeline Tests
# =============================================================================
# End-to-end tests for ImportPipeline: upload, staging, mapping, validation,
# deployment and export, with the upload status tracked at each step.
# =============================================================================

import pytest

from settlement_import.deployment.coordinator import DeploymentConfirmation
from settlement_import.deployment.sinks import InMemorySink
from settlement_import.error_handler import (
    ImportPipelineError,
    IngestionError,
    NavigationError,
    RunInProgressError,
)
from settlement_import.pipeline import ImportPipeline
from settlement_import.validation.run_settings import ValidationSettings
from settlement_import.workflow import UploadStatus, WorkflowStage


CONFIRMED = DeploymentConfirmation.all_confirmed()


@pytest.fixture
def sink() -> InMemorySink:
    return InMemorySink()


@pytest.fixture
def pipeline(sink):
    pipeline = ImportPipeline(sink=sink)
    yield pipeline
    pipeline.shutdown()


@pytest.fixture
def validated_pipeline(pipeline, party_source):
    pipeline.ingest(party_source)
    pipeline.map_columns()
    pipeline.validate()
    return pipeline


# =============================================================================
# Upload and Mapping Tests
# =============================================================================

class TestUploadAndMapping:
    """Tests for the steps before validation."""

    def test_ingest_bytes(self, pipeline):
        source = pipeline.ingest(b"name,email\nJane,jane@example.com\n", "people.csv")

        assert source.total_rows == 1
        assert pipeline.workflow.status is UploadStatus.UPLOADED
        assert pipeline.uploaded_at is not None

    def test_ingest_file(self, pipeline, party_csv):
        assert pipeline.ingest_file(party_csv).file_name == "parties.csv"

    def test_failed_ingest_marks_upload_failed(self, pipeline):
        with pytest.raises(IngestionError):
            pipeline.ingest(b"", "empty.csv")
        assert pipeline.workflow.status is UploadStatus.FAILED

    def test_profile_then_map(self, pipeline, party_source):
        pipeline.ingest(party_source)
        analysis = pipeline.profile()
        assert pipeline.workflow.status is UploadStatus.STAGED
        assert len(analysis.profiles) == 5

        mappings = pipeline.map_columns()
        assert pipeline.workflow.status is UploadStatus.MAPPED
        assert {m.source_column: m.target_field for m in mappings} == {
            "first_name": "first_name",
            "last_name": "last_name",
            "email": "email_address",
            "phone": "home_phone",
            "zip_code": "zip_code",
        }

    def test_validate_needs_a_source(self, pipeline):
        with pytest.raises(ImportPipelineError):
            pipeline.validate()

    def test_validate_needs_a_mapping(self, pipeline, party_source):
        pipeline.ingest(party_source)
        pipeline.profile()
        with pytest.raises(ImportPipelineError):
            pipeline.validate()


# =============================================================================
# Validation Tests
# =============================================================================

class TestValidation:
    """Tests for validation through the pipeline."""

    def test_clean_file_is_ready(self, validated_pipeline):
        report = validated_pipeline.validation_report

        assert report.error_count == 0
        assert report.warning_count == 1
        assert validated_pipeline.workflow.status is UploadStatus.READY
        assert validated_pipeline.workflow.go_to(WorkflowStage.DEPLOY) is WorkflowStage.DEPLOY

    def test_blocking_duplicates_leave_file_validated(self, pipeline, party_source):
        pipeline.ingest(party_source)
        pipeline.map_columns()
        report = pipeline.validate(ValidationSettings(duplicate_action="error"))

        assert not report.can_deploy
        assert pipeline.workflow.status is UploadStatus.VALIDATED

    def test_mapping_change_discards_report(self, validated_pipeline):
        validated_pipeline.update_mapping("zip_code", None, None)

        assert validated_pipeline.validation_report is None
        assert validated_pipeline.workflow.status is UploadStatus.MAPPED

    def test_background_validation(self, pipeline, party_source):
        pipeline.ingest(party_source)
        pipeline.map_columns()
        report = pipeline.start_validation().result(timeout=10)

        assert report.total_rows == 3
        assert pipeline.workflow.busy is None
        assert pipeline.workflow.status is UploadStatus.READY

    def test_second_run_is_rejected(self, pipeline, party_source):
        pipeline.ingest(party_source)
        pipeline.map_columns()
        pipeline.workflow.begin("deployment")

        with pytest.raises(RunInProgressError):
            pipeline.validate()

    def test_estimate(self, pipeline, party_source):
        pipeline.ingest(party_source)
        assert pipeline.estimate_validation() > 0


# =============================================================================
# Deployment Tests
# =============================================================================

class TestDeployment:
    """Tests for deployment through the pipeline."""

    def test_deploy_marks_upload_deployed(self, validated_pipeline, sink):
        outcome = validated_pipeline.deploy(confirmation=CONFIRMED)

        assert outcome.success
        assert outcome.duplicates_removed == 1
        assert sink.count("individual_parties") == 2
        assert validated_pipeline.workflow.status is UploadStatus.DEPLOYED

    def test_deployed_import_is_frozen(self, validated_pipeline):
        validated_pipeline.deploy(confirmation=CONFIRMED)

        with pytest.raises(NavigationError):
            validated_pipeline.update_mapping("zip_code", None, None)
        with pytest.raises(NavigationError):
            validated_pipeline.validate()
        with pytest.raises(NavigationError):
            validated_pipeline.deploy(confirmation=CONFIRMED)

    def test_aborted_deploy_keeps_status(self, validated_pipeline, sink):
        outcome = validated_pipeline.deploy()

        assert outcome.aborted
        assert sink.count() == 0
        assert validated_pipeline.workflow.status is UploadStatus.READY

    def test_failed_deploy_marks_upload_failed(self, party_source):
        pipeline = ImportPipeline(sink=InMemorySink(fail_on_batches=[1]))
        try:
            pipeline.ingest(party_source)
            pipeline.map_columns()
            pipeline.validate()
            outcome = pipeline.deploy(confirmation=CONFIRMED)
        finally:
            pipeline.shutdown()

        assert not outcome.success
        assert outcome.failures
        assert pipeline.workflow.status is UploadStatus.FAILED

    def test_background_deploy(self, validated_pipeline, sink):
        outcome = validated_pipeline.start_deployment(confirmation=CONFIRMED).result(timeout=10)

        assert outcome.success
        assert sink.count("individual_parties") == 2


# =============================================================================
# Export Tests
# =============================================================================

class TestReport:
    """Tests for ImportPipeline.report()."""

    def test_report_reflects_status(self, validated_pipeline):
        text = validated_pipeline.report()

        assert text.startswith("Data Import Report\n")
        assert "File Name,parties.csv" in text
        assert "Upload Status,ready" in text
        assert "Total Rows,3" in text
        assert "email,individual_parties,email_address," in text

    def test_report_needs_a_source(self, pipeline):
        with pytest.raises(ImportPipelineError):
            pipeline.report()
