"""Shared data types used across Klyppr."""

from dataclasses import dataclass

# Anything shorter than this is not worth a cut (or a kept fragment).
MIN_SEGMENT_DURATION = 0.05


@dataclass(frozen=True)
class Interval:
    """A start/end time pair in seconds."""

    start: float
    end: float

    @property
    def duration(self) -> float:
        return self.end - self.start


@dataclass(frozen=True)
class SilenceInterval(Interval):
    """A padding-adjusted stretch of silence reported by the analysis pass."""


@dataclass(frozen=True)
class KeepInterval(Interval):
    """A stretch of video that survives into the output."""


@dataclass(frozen=True)
class DurationStats:
    """Input duration versus what remains once silence is removed."""

    input_duration: float
    total_silence_duration: float
    expected_output_duration: float


@dataclass(frozen=True)
class ProgressSample:
    """One progress update for the host shell."""

    phase: str
    status: str
    percent: float
    eta: float | None = None

    def to_dict(self) -> dict:
        return {
            "phase": self.phase,
            "status": self.status,
            "percent": round(self.percent, 2),
            "eta": None if self.eta is None else round(self.eta, 1),
        }


@dataclass
class ProbeResult:
    """Metadata extracted from a media file via ffprobe."""

    duration: float
    width: int
    height: int
    fps: float
    codec_video: str
    audio_sample_rate: int | None = None
    codec_audio: str | None = None

    @property
    def has_audio(self) -> bool:
        return self.codec_audio is not None
