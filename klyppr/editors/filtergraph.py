"""Filter-graph compiler for the silence-cut encode pass."""

from typing import Sequence

from klyppr.models import Interval

LOUDNORM_FILTER = "loudnorm=I=-16:TP=-1.5:LRA=11"


def _ts(seconds: float) -> str:
    return f"{seconds:.4f}"


def build_filter_script(keep_intervals: Sequence[Interval], normalize: bool = False) -> str:
    """Compile keep intervals into a trim/atrim + concat filter graph.

    The result is meant for ``-filter_complex_script``: a long list of
    intervals easily blows past command-line length limits. Final pads are
    always ``[outv]`` and ``[outa]``.
    """
    if not keep_intervals:
        raise ValueError("build_filter_script called with empty interval list")

    n = len(keep_intervals)
    filter_parts: list[str] = []
    stream_labels: list[str] = []

    for i, seg in enumerate(keep_intervals):
        start, end = _ts(seg.start), _ts(seg.end)
        filter_parts.append(
            f"[0:v]trim=start={start}:end={end},setpts=PTS-STARTPTS[v{i}]"
        )
        filter_parts.append(
            f"[0:a]atrim=start={start}:end={end},asetpts=PTS-STARTPTS[a{i}]"
        )
        stream_labels.append(f"[v{i}][a{i}]")

    concat_input = "".join(stream_labels)
    if normalize:
        filter_parts.append(f"{concat_input}concat=n={n}:v=1:a=1[tmpv][tmpa]")
        filter_parts.append("[tmpv]copy[outv]")
        filter_parts.append(f"[tmpa]{LOUDNORM_FILTER}[outa]")
    else:
        filter_parts.append(f"{concat_input}concat=n={n}:v=1:a=1[outv][outa]")

    return ";\n".join(filter_parts)
