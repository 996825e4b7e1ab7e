"""
Progress tracking and estimation

The engine and the deployment coordinator publish true progress to a
ProgressTracker. A ProgressTicker samples the tracker on its own thread and turns
elapsed time plus true progress into a smoothed, monotonic display value.
"""
import math
import threading
import time
from dataclasses import dataclass
from typing import Callable, Optional

import structlog

from ..config import settings
from .run_settings import ValidationSettings

logger = structlog.get_logger(__name__)

VALIDATOR_ROWS_PER_SECOND = 10000
FUZZY_ROWS_PER_SECOND = 1000
EXACT_ROWS_PER_SECOND = 15000
BATCH_OVERHEAD_SECONDS = 0.1
SAFETY_MARGIN = 1.2
MINIMUM_ESTIMATE_MS = 10000
DISPLAY_CAP = 95.0


class ProgressTracker:
    """Thread-safe true progress of one run, 0-100 and never decreasing"""

    def __init__(self):
        self._lock = threading.Lock()
        self._value = 0.0
        self._stage = 'idle'

    @property
    def value(self) -> float:
        with self._lock:
            return self._value

    @property
    def stage(self) -> str:
        with self._lock:
            return self._stage

    def update(self, value: float, stage: Optional[str] = None) -> float:
        clamped = max(0.0, min(100.0, float(value)))
        with self._lock:
            if clamped > self._value:
                self._value = clamped
            if stage is not None:
                self._stage = stage
            return self._value

    def reset(self) -> None:
        with self._lock:
            self._value = 0.0
            self._stage = 'idle'


class ProgressEstimator:
    """Duration model for validation and deployment runs"""

    @staticmethod
    def effective_rows(total_rows: int, validation_settings: ValidationSettings) -> int:
        if validation_settings.sample_validation:
            return math.ceil(total_rows * validation_settings.sample_size / 100)
        return total_rows

    def estimate_duration_ms(self, total_rows: int, validation_settings: ValidationSettings) -> int:
        rows = self.effective_rows(total_rows, validation_settings)
        seconds = 0.0

        active = validation_settings.active_validator_count
        if active:
            seconds += rows / VALIDATOR_ROWS_PER_SECOND * active

        if validation_settings.enable_duplicate_detection:
            rate = (FUZZY_ROWS_PER_SECOND if validation_settings.duplicate_match_type == 'fuzzy'
                    else EXACT_ROWS_PER_SECOND)
            seconds += rows / rate

        seconds += math.ceil(rows / validation_settings.batch_size) * BATCH_OVERHEAD_SECONDS
        seconds *= SAFETY_MARGIN

        return max(MINIMUM_ESTIMATE_MS, math.ceil(seconds * 1000))

    @staticmethod
    def estimate_deployment_minutes(total_rows: int) -> int:
        """Operator-facing estimate: two minutes per ten thousand rows"""
        return math.ceil(total_rows / 10000) * 2


def format_estimate(estimated_ms: float) -> str:
    seconds = estimated_ms / 1000
    if seconds < 10:
        return '< 10 seconds'
    if seconds < 60:
        return f"{math.ceil(seconds)} seconds"
    if seconds < 300:
        return f"{math.ceil(seconds / 60)} minute(s)"
    return f"{math.ceil(seconds / 60)} minutes"


def format_remaining(remaining_ms: float) -> str:
    minutes = math.ceil(max(0.0, remaining_ms) / 60000)
    if minutes < 1:
        return '< 1 min remaining'
    if minutes == 1:
        return '1 min remaining'
    return f"{minutes} mins remaining"


def stage_message(actual: float) -> str:
    if actual >= 100:
        return 'Validation complete!'
    if actual >= 75:
        return 'Running validation checks... (this may take a while)'
    if actual >= 50:
        return 'Converting data format...'
    if actual >= 25:
        return 'Setting up data validator...'
    return 'Initializing validation settings...'


class ProgressSmoother:
    """Maps (elapsed, true progress) to a displayed percentage"""

    def __init__(self, estimated_ms: float):
        self.estimated_ms = max(1.0, float(estimated_ms))
        self._last = 0.0

    @property
    def last(self) -> float:
        return self._last

    def update(self, elapsed_ms: float, actual: float) -> float:
        if actual >= 100:
            self._last = 100.0
            return self._last

        time_based = min(DISPLAY_CAP, elapsed_ms / self.estimated_ms * 100)
        if actual >= 75:
            displayed = max(actual, 75 + (time_based - 75) * 0.23)
        elif actual >= 50:
            displayed = min(75.0, max(actual, 50 + (time_based - 50) * 0.5))
        elif actual >= 25:
            displayed = min(50.0, max(actual, 25 + (time_based - 25) * 0.5))
        else:
            displayed = min(25.0, max(actual, time_based))

        displayed = min(DISPLAY_CAP, displayed)
        self._last = max(self._last, displayed)
        return self._last


@dataclass(frozen=True)
class ProgressSnapshot:
    displayed: float
    actual: float
    stage: str
    message: str
    elapsed_ms: int
    remaining_ms: int

    @property
    def remaining_text(self) -> str:
        return format_remaining(self.remaining_ms)


class ProgressTicker:
    """Daemon thread that samples a tracker and reports smoothed progress"""

    def __init__(
        self,
        tracker: ProgressTracker,
        estimated_ms: float,
        callback: Callable[[ProgressSnapshot], None],
        interval: Optional[float] = None,
    ):
        self.tracker = tracker
        self.smoother = ProgressSmoother(estimated_ms)
        self.callback = callback
        self.interval = settings.progress_poll_interval_seconds if interval is None else interval
        self._stop = threading.Event()
        self._thread: Optional[threading.Thread] = None
        self._started_at = 0.0

    def start(self) -> 'ProgressTicker':
        self._started_at = time.monotonic()
        self._thread = threading.Thread(target=self._run, name='progress-ticker', daemon=True)
        self._thread.start()
        return self

    def stop(self, timeout: Optional[float] = None) -> None:
        self._stop.set()
        if self._thread is not None and self._thread is not threading.current_thread():
            self._thread.join(timeout)

    def sample(self) -> ProgressSnapshot:
        elapsed_ms = int((time.monotonic() - self._started_at) * 1000)
        actual = self.tracker.value
        displayed = self.smoother.update(elapsed_ms, actual)
        return ProgressSnapshot(
            displayed=round(displayed, 2),
            actual=actual,
            stage=self.tracker.stage,
            message=stage_message(actual),
            elapsed_ms=elapsed_ms,
            remaining_ms=max(0, int(self.smoother.estimated_ms - elapsed_ms)),
        )

    def _run(self) -> None:
        while not self._stop.is_set():
            snapshot = self.sample()
            self.callback(snapshot)
            if snapshot.actual >= 100:
                break
            self._stop.wait(self.interval)

    def __enter__(self) -> 'ProgressTicker':
        return self.start()

    def __exit__(self, exc_type, exc, tb) -> None:
        self.stop()
