"""Silence detection analyzer.

Turns ffmpeg ``silencedetect`` diagnostics into padded silence intervals,
one stderr line at a time.
"""

import logging
from typing import Callable

from klyppr.ffutil import SILENCE_END_RE, SILENCE_START_RE
from klyppr.models import MIN_SEGMENT_DURATION, SilenceInterval

logger = logging.getLogger(__name__)


class SilenceStreamParser:
    """Line-fed state machine pairing ``silence_start``/``silence_end`` markers.

    Padding is applied inward on both edges so cuts don't clip speech
    onsets. Intervals that end up no longer than MIN_SEGMENT_DURATION are
    dropped. A start that is never closed is discarded by :meth:`finish`.
    """

    def __init__(
        self,
        padding: float = 0.05,
        on_log: Callable[[str], None] | None = None,
    ):
        self.padding = padding
        self.on_log = on_log
        self._pending_start: float | None = None
        self._intervals: list[SilenceInterval] = []

    @property
    def intervals(self) -> list[SilenceInterval]:
        return list(self._intervals)

    def _log(self, message: str) -> None:
        logger.debug(message)
        if self.on_log:
            self.on_log(message)

    def feed(self, line: str) -> SilenceInterval | None:
        """Consume one diagnostic line; return the interval it closed, if any."""
        start_match = SILENCE_START_RE.search(line)
        if start_match:
            # Last start before an end wins.
            self._pending_start = float(start_match.group(1))
            self._log(f"Silence start: {self._pending_start}s")

        end_match = SILENCE_END_RE.search(line)
        if end_match is None or self._pending_start is None:
            return None

        end = float(end_match.group(1))
        adj_start = max(self._pending_start + self.padding, 0.0)
        adj_end = end - self.padding
        self._pending_start = None
        duration = adj_end - adj_start
        self._log(f"Silence end: {end}s, duration after padding: {duration:.3f}s")

        if duration <= MIN_SEGMENT_DURATION:
            self._log(f"Skipped too small silence: {duration:.3f}s")
            return None

        interval = SilenceInterval(start=adj_start, end=adj_end)
        self._intervals.append(interval)
        self._log(f"Added silence range: {adj_start:.3f}s - {adj_end:.3f}s")
        return interval

    def finish(self) -> list[SilenceInterval]:
        """End of stream: drop any unterminated start and return the intervals."""
        if self._pending_start is not None:
            self._log(f"Discarded unterminated silence starting at {self._pending_start}s")
            self._pending_start = None
        return self.intervals
