"""Per-phase progress estimation from ffmpeg's stats output.

ffmpeg's own progress is unreliable for filter-graph runs, so progress is
derived from the ``time=`` marker against an expected duration. When a
stats line carries no usable time, the ``frame=`` counter against the
expected frame count stands in.
"""

import logging
import time
from typing import Callable

from klyppr.ffutil import format_clock, parse_frame, parse_timestamp
from klyppr.models import ProgressSample

logger = logging.getLogger(__name__)

DETECT = "detect"
ENCODE = "encode"

MIN_INTERVAL = 0.1
MIN_DELTA = 1.0
ETA_MIN_PERCENT = 5.0
ETA_MIN_ELAPSED = 2.0
MAX_RUNNING_PERCENT = 99.0


class ProgressEstimator:
    """Monotonic, throttled 0-100 progress for one phase at a time."""

    def __init__(
        self,
        on_sample: Callable[[ProgressSample], None] | None = None,
        clock: Callable[[], float] = time.monotonic,
    ):
        self.on_sample = on_sample
        self.clock = clock
        self.phase: str | None = None
        self.expected_duration = 0.0
        self.fps = 0.0
        self.percent = 0.0
        self.eta: float | None = None
        self._started_at = 0.0
        self._last_emit_at: float | None = None
        self._last_emit_percent = 0.0

    def begin(self, phase: str, expected_duration: float, fps: float = 0.0, status: str | None = None) -> ProgressSample:
        """Enter a new phase; progress restarts at 0."""
        self.phase = phase
        self.expected_duration = max(expected_duration, 0.0)
        self.fps = fps
        self.percent = 0.0
        self.eta = None
        self._started_at = self.clock()
        return self._emit(status or self._default_status())

    def feed(self, line: str) -> ProgressSample | None:
        """Consume one stderr line; return the sample it produced, if any."""
        if self.phase is None or self.expected_duration <= 0:
            return None

        seconds = parse_timestamp(line)
        if seconds is not None:
            percent = seconds / self.expected_duration * 100
            if self.phase == ENCODE:
                status = (
                    f"Processing: {min(percent, MAX_RUNNING_PERCENT):.1f}% "
                    f"({format_clock(seconds)}/{format_clock(self.expected_duration)})"
                )
            else:
                status = None
            return self.update(percent, status)

        frame = parse_frame(line)
        if frame is not None and self.fps > 0:
            percent = frame / (self.fps * self.expected_duration) * 100
            return self.update(percent, f"Processing: {min(percent, MAX_RUNNING_PERCENT):.1f}% (estimated)")

        return None

    def update(self, percent: float, status: str | None = None) -> ProgressSample | None:
        """Offer a new raw percent; emits only if it passes the throttle."""
        if self.phase is None:
            return None

        percent = min(max(percent, 0.0), MAX_RUNNING_PERCENT)
        percent = max(percent, self.percent)

        now = self.clock()
        due = self._last_emit_at is None or now - self._last_emit_at >= MIN_INTERVAL
        if not due and percent - self._last_emit_percent < MIN_DELTA:
            return None

        self.percent = percent
        elapsed = now - self._started_at
        if percent > ETA_MIN_PERCENT and elapsed > ETA_MIN_ELAPSED:
            self.eta = elapsed * (100 / percent - 1)
        return self._emit(status or self._default_status())

    def finish(self, status: str | None = None) -> ProgressSample:
        """The phase's end signal fired: report 100%."""
        self.percent = 100.0
        self.eta = 0.0
        return self._emit(status or self._default_status())

    def _default_status(self) -> str:
        if self.phase == DETECT:
            return f"Phase 1: Analyzing audio for silence... {self.percent:.1f}%"
        return f"Phase 2: Processing video... {self.percent:.1f}%"

    def _emit(self, status: str) -> ProgressSample:
        sample = ProgressSample(
            phase=self.phase or "",
            status=status,
            percent=self.percent,
            eta=self.eta,
        )
        self._last_emit_at = self.clock()
        self._last_emit_percent = self.percent
        if self.on_sample:
            self.on_sample(sample)
        return sample
