# =============================================================================
# workers/tests/test_progress.py - Progress Tracking and Estimation Tests
# =============================================================================
# Tests for duration estimates and the smoothed progress display.
# Covers:
#   - Validation duration model and deployment minutes
#   - Tracker clamping and monotonicity
#   - Display smoothing bands and the 95% cap
#   - The background ticker
# =============================================================================

import pytest

from settlement_import.validation.progress import (
    MINIMUM_ESTIMATE_MS,
    ProgressEstimator,
    ProgressSmoother,
    ProgressTicker,
    ProgressTracker,
    format_estimate,
    format_remaining,
    stage_message,
)
from settlement_import.validation.run_settings import ValidationSettings


@pytest.fixture
def estimator() -> ProgressEstimator:
    return ProgressEstimator()


# =============================================================================
# Estimator Tests
# =============================================================================

class TestEstimator:
    """Tests for ProgressEstimator."""

    def test_sampled_effective_rows(self, estimator):
        settings = ValidationSettings(sample_validation=True, sample_size=10)
        assert estimator.effective_rows(100000, settings) == 10000
        assert estimator.effective_rows(15, settings) == 2
        assert estimator.effective_rows(100000, ValidationSettings()) == 100000

    def test_minimum_estimate(self, estimator):
        assert estimator.estimate_duration_ms(10, ValidationSettings()) == MINIMUM_ESTIMATE_MS

    def test_estimate_grows_with_rows(self, estimator):
        settings = ValidationSettings()
        estimates = [estimator.estimate_duration_ms(rows, settings) for rows in (100000, 200000, 400000)]
        assert estimates == sorted(estimates)
        assert estimates[0] > MINIMUM_ESTIMATE_MS

    def test_fuzzy_costs_more_than_exact(self, estimator):
        exact = estimator.estimate_duration_ms(200000, ValidationSettings())
        fuzzy = estimator.estimate_duration_ms(200000, ValidationSettings(duplicate_match_type="fuzzy"))
        assert fuzzy > exact

    def test_fewer_validators_cost_less(self, estimator):
        everything = estimator.estimate_duration_ms(200000, ValidationSettings())
        emails_only = estimator.estimate_duration_ms(200000, ValidationSettings(
            validate_phones=False, validate_dates=False, validate_postal_codes=False,
            validate_currency=False, validate_ssn=False, validate_tax_id=False))
        assert emails_only < everything

    def test_sampling_costs_less(self, estimator):
        full = estimator.estimate_duration_ms(500000, ValidationSettings())
        sampled = estimator.estimate_duration_ms(500000, ValidationSettings(sample_validation=True, sample_size=10))
        assert sampled < full

    @pytest.mark.parametrize("rows,minutes", [(0, 0), (1, 2), (10000, 2), (10001, 4), (55000, 12)])
    def test_deployment_minutes(self, rows, minutes):
        assert ProgressEstimator.estimate_deployment_minutes(rows) == minutes


# =============================================================================
# Tracker Tests
# =============================================================================

class TestTracker:
    """Tests for ProgressTracker."""

    def test_never_decreases(self):
        tracker = ProgressTracker()
        tracker.update(40, "validating")
        tracker.update(10)
        assert tracker.value == 40
        assert tracker.stage == "validating"

    def test_clamps(self):
        tracker = ProgressTracker()
        assert tracker.update(150) == 100.0
        tracker.reset()
        assert tracker.value == 0.0
        assert tracker.update(-5) == 0.0


# =============================================================================
# Smoother Tests
# =============================================================================

class TestSmoother:
    """Tests for ProgressSmoother."""

    def test_bands(self):
        smoother = ProgressSmoother(1000)
        assert smoother.update(0, 0) == 0
        assert smoother.update(2000, 10) == 25
        assert smoother.update(2000, 30) == 50
        assert smoother.update(2000, 80) == 80

    def test_display_is_monotonic(self):
        smoother = ProgressSmoother(1000)
        smoother.update(2000, 80)
        assert smoother.update(0, 20) == 80

    def test_capped_until_complete(self):
        smoother = ProgressSmoother(1000)
        for elapsed in range(0, 100000, 5000):
            assert smoother.update(elapsed, 99) <= 95
        assert smoother.update(100000, 100) == 100

    def test_time_alone_moves_early_band(self):
        smoother = ProgressSmoother(10000)
        assert smoother.update(1000, 0) == pytest.approx(10.0)


# =============================================================================
# Formatting Tests
# =============================================================================

class TestFormatting:
    """Tests for operator-facing text."""

    @pytest.mark.parametrize("ms,text", [
        (5000, "< 10 seconds"),
        (30000, "30 seconds"),
        (120000, "2 minute(s)"),
        (600000, "10 minutes"),
    ])
    def test_format_estimate(self, ms, text):
        assert format_estimate(ms) == text

    def test_format_remaining(self):
        assert format_remaining(0) == "< 1 min remaining"
        assert format_remaining(60000) == "1 min remaining"
        assert format_remaining(150000) == "3 mins remaining"

    def test_stage_messages(self):
        assert stage_message(0) == "Initializing validation settings..."
        assert stage_message(60) == "Converting data format..."
        assert stage_message(100) == "Validation complete!"


# =============================================================================
# Ticker Tests
# =============================================================================

class TestTicker:
    """Tests for ProgressTicker."""

    def test_reports_completion(self):
        tracker = ProgressTracker()
        tracker.update(100, "complete")
        snapshots = []

        with ProgressTicker(tracker, 10000, snapshots.append, interval=0.01):
            pass

        assert snapshots
        assert snapshots[-1].displayed == 100
        assert snapshots[-1].message == "Validation complete!"

    def test_sample_without_thread(self):
        tracker = ProgressTracker()
        tracker.update(30, "normalization")
        ticker = ProgressTicker(tracker, 10000, lambda snapshot: None)
        snapshot = ticker.sample()

        assert snapshot.actual == 30
        assert 30 <= snapshot.displayed <= 50
        assert snapshot.stage == "normalization"
