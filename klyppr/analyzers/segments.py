"""Keep-interval reconstruction from detected silence."""

from typing import Sequence

from klyppr.models import MIN_SEGMENT_DURATION, DurationStats, Interval, KeepInterval


def reconstruct_keep_intervals(
    silences: Sequence[Interval],
    total_duration: float,
) -> list[KeepInterval]:
    """Return the non-silent stretches of a ``total_duration``-long video.

    ``silences`` must be in chronological order. Overlapping silences are
    merged implicitly because the cursor only ever jumps to the latest
    silence end. Keep fragments no longer than MIN_SEGMENT_DURATION are
    dropped. A non-positive duration yields nothing to keep.
    """
    if total_duration <= 0:
        return []

    keep: list[KeepInterval] = []
    prev_end = 0.0

    for silence in silences:
        if prev_end < silence.start and silence.start - prev_end > MIN_SEGMENT_DURATION:
            keep.append(KeepInterval(start=prev_end, end=silence.start))
        prev_end = silence.end

    if prev_end < total_duration and total_duration - prev_end > MIN_SEGMENT_DURATION:
        keep.append(KeepInterval(start=prev_end, end=total_duration))

    return keep


def duration_stats(silences: Sequence[Interval], total_duration: float) -> DurationStats:
    total_silence = sum(s.duration for s in silences)
    return DurationStats(
        input_duration=total_duration,
        total_silence_duration=total_silence,
        expected_output_duration=total_duration - total_silence,
    )
