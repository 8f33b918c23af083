"""FFmpeg/ffprobe subprocess helpers."""

import json
import logging
import re
import shutil
import subprocess
from collections import deque
from pathlib import Path
from typing import Iterator, Protocol

from klyppr.models import ProbeResult

logger = logging.getLogger(__name__)

# Diagnostic markers scraped from ffmpeg's stderr. These are a parsing
# contract with ffmpeg's log wording; there is no schema behind them.
SILENCE_START_RE = re.compile(r"silence_start: (-?\d+(?:\.\d+)?(?:[eE][-+]?\d+)?)")
SILENCE_END_RE = re.compile(r"silence_end: (-?\d+(?:\.\d+)?(?:[eE][-+]?\d+)?)")
TIME_RE = re.compile(r"time=(\d+):(\d{2}):(\d{2}(?:\.\d+)?)")
FRAME_RE = re.compile(r"frame=\s*(\d+)")


class FFmpegNotFoundError(RuntimeError):
    pass


class ProbeFailure(RuntimeError):
    """Raised when ffprobe cannot read the input's duration or streams."""


class NoAudioStream(ValueError):
    """Raised when the input file has no audio stream."""


class EngineFailure(RuntimeError):
    """Raised when an ffmpeg run exits non-zero or cannot be started."""

    def __init__(self, message: str, returncode: int | None = None, stderr_tail: str = ""):
        super().__init__(message)
        self.returncode = returncode
        self.stderr_tail = stderr_tail


def check_ffmpeg() -> None:
    """Raise FFmpegNotFoundError if ffmpeg/ffprobe are not on PATH."""
    for cmd in ("ffmpeg", "ffprobe"):
        if shutil.which(cmd) is None:
            raise FFmpegNotFoundError(f"{cmd} not found on PATH")


def probe(input_path: Path) -> ProbeResult:
    """Extract media metadata via ffprobe."""
    cmd = [
        "ffprobe",
        "-v", "quiet",
        "-print_format", "json",
        "-show_format",
        "-show_streams",
        str(input_path),
    ]
    try:
        result = subprocess.run(cmd, capture_output=True, text=True, check=True)
        data = json.loads(result.stdout)
    except (OSError, subprocess.CalledProcessError, json.JSONDecodeError) as e:
        raise ProbeFailure(f"Could not read {input_path}: {e}") from e

    streams = data.get("streams", [])
    video_stream = next((s for s in streams if s.get("codec_type") == "video"), None)
    audio_stream = next((s for s in streams if s.get("codec_type") == "audio"), None)

    if video_stream is None:
        raise ProbeFailure(f"No video stream found in {input_path}")

    try:
        duration = float(data["format"]["duration"])
    except (KeyError, TypeError, ValueError) as e:
        raise ProbeFailure(f"No duration reported for {input_path}") from e
    if duration <= 0:
        raise ProbeFailure(f"Input {input_path} has no playable duration")

    # Parse fps from r_frame_rate (e.g. "30/1")
    num, _, den = video_stream.get("r_frame_rate", "0/1").partition("/")
    fps = int(num) / int(den) if den and int(den) else 0.0

    return ProbeResult(
        duration=duration,
        width=int(video_stream.get("width", 0)),
        height=int(video_stream.get("height", 0)),
        fps=fps,
        codec_video=video_stream.get("codec_name", "unknown"),
        audio_sample_rate=int(audio_stream["sample_rate"]) if audio_stream and "sample_rate" in audio_stream else None,
        codec_audio=audio_stream.get("codec_name", "unknown") if audio_stream else None,
    )


def parse_timestamp(line: str) -> float | None:
    """Return the seconds of a ``time=HH:MM:SS.ff`` marker, or None."""
    m = TIME_RE.search(line)
    if m is None:
        return None
    hours, minutes, seconds = m.groups()
    return int(hours) * 3600 + int(minutes) * 60 + float(seconds)


def parse_frame(line: str) -> int | None:
    """Return the ``frame=N`` counter of a stats line, or None."""
    m = FRAME_RE.search(line)
    return int(m.group(1)) if m else None


def format_clock(seconds: float) -> str:
    """Render seconds as M:SS for status lines."""
    seconds = max(0, int(seconds))
    return f"{seconds // 60}:{seconds % 60:02d}"


def analysis_command(input_path: Path, threshold_db: float, min_duration: float) -> list[str]:
    """ffmpeg invocation running silencedetect on the audio only."""
    return [
        "ffmpeg",
        "-hide_banner", "-nostdin",
        "-vn",
        "-i", str(input_path),
        "-af", f"silencedetect=noise={threshold_db}dB:d={min_duration}",
        "-f", "null", "-",
    ]


def encode_command(
    input_path: Path,
    script_path: Path,
    output_path: Path,
    codec_args: list[str],
    threads: int | None = None,
) -> list[str]:
    """ffmpeg invocation applying a filter-graph script to the input."""
    cmd = [
        "ffmpeg",
        "-hide_banner", "-nostdin", "-y",
        "-i", str(input_path),
        "-filter_complex_script", str(script_path),
        "-map", "[outv]",
        "-map", "[outa]",
        *codec_args,
        "-c:a", "aac",
        "-b:a", "128k",
        "-avoid_negative_ts", "make_zero",
        "-movflags", "+faststart",
    ]
    if threads:
        cmd += ["-threads", str(threads)]
    cmd.append(str(output_path))
    return cmd


def normalize_command(
    input_path: Path,
    output_path: Path,
    loudnorm_filter: str,
    threads: int | None = None,
) -> list[str]:
    """ffmpeg invocation normalizing loudness while copying video as-is."""
    cmd = [
        "ffmpeg",
        "-hide_banner", "-nostdin", "-y",
        "-i", str(input_path),
        "-map", "0:v?",
        "-map", "0:a",
        "-c:v", "copy",
        "-af", loudnorm_filter,
        "-c:a", "aac",
        "-b:a", "128k",
        "-movflags", "+faststart",
    ]
    if threads:
        cmd += ["-threads", str(threads)]
    cmd.append(str(output_path))
    return cmd


def list_encoders() -> str:
    """Return the raw ``ffmpeg -encoders`` listing."""
    result = subprocess.run(
        ["ffmpeg", "-hide_banner", "-encoders"],
        capture_output=True, text=True, check=True,
    )
    return result.stdout + result.stderr


class MediaProcess(Protocol):
    """What the job controller needs from a running ffmpeg invocation."""

    def start(self) -> None: ...

    def lines(self) -> Iterator[str]: ...

    def wait(self) -> int: ...

    def terminate(self) -> None: ...

    def stderr_tail(self) -> str: ...


class FFmpegProcess:
    """An ffmpeg run whose stderr is consumed line by line.

    ffmpeg rewrites its stats line with ``\\r``; text mode reads with
    universal newlines, so each refresh arrives as its own line.
    """

    def __init__(self, cmd: list[str], tail_lines: int = 20):
        self.cmd = cmd
        self._proc: subprocess.Popen | None = None
        self._tail: deque[str] = deque(maxlen=tail_lines)

    def start(self) -> None:
        logger.debug("Running: %s", " ".join(self.cmd))
        try:
            self._proc = subprocess.Popen(
                self.cmd,
                stdin=subprocess.DEVNULL,
                stdout=subprocess.DEVNULL,
                stderr=subprocess.PIPE,
                text=True,
                encoding="utf-8",
                errors="replace",
                start_new_session=True,
            )
        except OSError as e:
            raise EngineFailure(f"Could not start {self.cmd[0]}: {e}") from e

    def lines(self) -> Iterator[str]:
        if self._proc is None or self._proc.stderr is None:
            return
        for line in self._proc.stderr:
            line = line.rstrip("\n")
            if line:
                self._tail.append(line)
                yield line

    def wait(self) -> int:
        if self._proc is None:
            raise EngineFailure("ffmpeg process was never started")
        returncode = self._proc.wait()
        if self._proc.stderr is not None:
            self._proc.stderr.close()
        return returncode

    def terminate(self) -> None:
        if self._proc is not None and self._proc.poll() is None:
            self._proc.terminate()

    def stderr_tail(self) -> str:
        return "\n".join(self._tail)
