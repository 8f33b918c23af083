"""Orchestrator: runs one silence-cut job from probe to finished file."""

import logging
import os
import shutil
import tempfile
import threading
import time
from dataclasses import dataclass, field
from enum import Enum
from pathlib import Path
from typing import Callable, Sequence

from klyppr import ffutil
from klyppr.analyzers.segments import duration_stats, reconstruct_keep_intervals
from klyppr.analyzers.silence import SilenceStreamParser
from klyppr.editors.encoders import EncoderPolicy
from klyppr.editors.filtergraph import LOUDNORM_FILTER, build_filter_script
from klyppr.ffutil import EngineFailure, MediaProcess, NoAudioStream, ProbeFailure
from klyppr.manifest import Manifest
from klyppr.models import DurationStats, KeepInterval, ProbeResult, ProgressSample, SilenceInterval
from klyppr.progress import DETECT, ENCODE, ProgressEstimator

logger = logging.getLogger(__name__)

SCRIPT_NAME = "filter_script.txt"


class NoContentError(RuntimeError):
    """Raised when the whole input was classified as silence."""


class JobCancelled(Exception):
    """The user cancelled the running job."""


class JobBusyError(RuntimeError):
    """Raised when a job is started while another one is still running."""


class JobState(str, Enum):
    IDLE = "idle"
    DETECTING = "detecting"
    NO_SILENCE_FOUND = "no_silence_found"
    SEGMENTS_FOUND = "segments_found"
    RECONSTRUCTING = "reconstructing"
    ENCODING = "encoding"
    CLEANING = "cleaning"
    DONE = "done"
    CANCELLED = "cancelled"
    FAILED = "failed"


TERMINAL_STATES = {JobState.DONE, JobState.CANCELLED, JobState.FAILED}


@dataclass
class EngineResult:
    success: bool = False
    output_path: Path | None = None
    cancelled: bool = False
    error: str | None = None
    segments_removed: int = 0
    duration_original: float = 0.0
    duration_final: float = 0.0
    log: list[str] = field(default_factory=list)

    def to_dict(self) -> dict:
        return {
            "success": self.success,
            "output_path": str(self.output_path) if self.output_path else None,
            "cancelled": self.cancelled,
            "error": self.error,
            "segments_removed": self.segments_removed,
            "duration_original": self.duration_original,
            "duration_final": self.duration_final,
        }


@dataclass
class EncodeJob:
    """Mutable state of the one job a controller is running."""

    manifest: Manifest
    on_log: Callable[[str], None] | None = None
    state: JobState = JobState.IDLE
    process: MediaProcess | None = None
    temp_dir: Path | None = None
    output_started: bool = False
    cancelled: threading.Event = field(default_factory=threading.Event)
    log_lines: list[str] = field(default_factory=list)

    def log(self, message: str) -> None:
        self.log_lines.append(message)
        logger.info(message)
        if self.on_log:
            self.on_log(message)


class JobController:
    """Runs silence-cut jobs one at a time.

    ``run`` blocks the calling thread, which is also the only thread that
    reads ffmpeg's output. ``cancel`` may be called from any other thread.
    """

    def __init__(
        self,
        encoder_policy: EncoderPolicy | None = None,
        process_factory: Callable[[list[str]], MediaProcess] = ffutil.FFmpegProcess,
        prober: Callable[[Path], ProbeResult] = ffutil.probe,
        clock: Callable[[], float] = time.monotonic,
    ):
        self.encoder_policy = encoder_policy or EncoderPolicy()
        self.process_factory = process_factory
        self.prober = prober
        self.clock = clock
        self._lock = threading.Lock()
        self._job: EncodeJob | None = None

    @property
    def active(self) -> bool:
        with self._lock:
            return self._job is not None

    @property
    def state(self) -> JobState:
        with self._lock:
            return self._job.state if self._job else JobState.IDLE

    def cancel(self) -> bool:
        """Request cancellation of the running job. Safe from any thread."""
        with self._lock:
            job = self._job
            if job is None or job.state in TERMINAL_STATES:
                return False
            job.cancelled.set()
            if job.process is not None:
                job.process.terminate()
                job.process = None
        logger.info("Cancellation requested")
        return True

    def run(
        self,
        manifest: Manifest,
        on_progress: Callable[[ProgressSample], None] | None = None,
        on_log: Callable[[str], None] | None = None,
    ) -> EngineResult:
        """Execute a full job and return its terminal result.

        Failures and cancellation are reported in the result, not raised.
        """
        if Path(manifest.input).resolve() == Path(manifest.output).resolve():
            raise ValueError("Output path must differ from the input path")

        with self._lock:
            if self._job is not None:
                raise JobBusyError("Another job is already running")
            job = EncodeJob(manifest=manifest, on_log=on_log)
            self._job = job

        try:
            return self._execute(job, on_progress)
        finally:
            with self._lock:
                self._job = None

    # --- Job phases ---

    def _execute(
        self,
        job: EncodeJob,
        on_progress: Callable[[ProgressSample], None] | None,
    ) -> EngineResult:
        manifest = job.manifest
        estimator = ProgressEstimator(on_sample=on_progress, clock=self.clock)
        result = EngineResult(log=job.log_lines)

        try:
            self._check_cancelled(job)
            probe = self.prober(manifest.input)
            result.duration_original = probe.duration
            job.log(f"Input duration: {probe.duration:.1f}s")
            job.temp_dir = Path(tempfile.mkdtemp(prefix="klyppr_"))

            try:
                silences = self._detect(job, probe, estimator)
            except NoAudioStream as e:
                job.log(f"{e}; skipping silence detection")
                silences = []

            if not silences:
                self._transition(job, JobState.NO_SILENCE_FOUND)
                self._passthrough(job, probe, estimator)
                result.duration_final = probe.duration
            else:
                self._transition(job, JobState.SEGMENTS_FOUND)
                result.segments_removed = len(silences)
                self._transition(job, JobState.RECONSTRUCTING)
                keep = reconstruct_keep_intervals(silences, probe.duration)
                if not keep:
                    raise NoContentError("The whole video was classified as silence")
                stats = duration_stats(silences, probe.duration)
                result.duration_final = stats.expected_output_duration
                job.log(
                    f"Duration analysis: input={stats.input_duration:.1f}s, "
                    f"removing={stats.total_silence_duration:.1f}s, "
                    f"expected output={stats.expected_output_duration:.1f}s"
                )
                self._transition(job, JobState.ENCODING)
                self._encode(job, probe, keep, stats, estimator)

            self._transition(job, JobState.CLEANING)
            self._remove_temp_dir(job)
            self._check_cancelled(job)
            self._transition(job, JobState.DONE)
            result.success = True
            result.output_path = manifest.output
            job.log(f"Done: {manifest.output}")
        except JobCancelled:
            self._abort(job, JobState.CANCELLED)
            result.cancelled = True
            job.log("Job cancelled")
        except EngineFailure as e:
            if job.cancelled.is_set():
                self._abort(job, JobState.CANCELLED)
                result.cancelled = True
                job.log("Job cancelled")
            else:
                self._abort(job, JobState.FAILED)
                result.error = str(e)
                job.log(f"Error: {e}")
                if e.stderr_tail:
                    job.log(e.stderr_tail)
        except (ProbeFailure, NoContentError, OSError) as e:
            self._abort(job, JobState.FAILED)
            result.error = str(e)
            job.log(f"Error: {e}")
        finally:
            self._remove_temp_dir(job)

        return result

    def _detect(
        self,
        job: EncodeJob,
        probe: ProbeResult,
        estimator: ProgressEstimator,
    ) -> list[SilenceInterval]:
        if not probe.has_audio:
            raise NoAudioStream(f"No audio stream found in {job.manifest.input}")

        cfg = job.manifest.silence_cut
        self._transition(job, JobState.DETECTING)
        parser = SilenceStreamParser(padding=cfg.padding, on_log=job.log)
        estimator.begin(DETECT, probe.duration, status="Phase 1: Analyzing audio for silence...")
        job.log("Starting silence analysis...")

        def on_line(line: str) -> None:
            parser.feed(line)
            estimator.feed(line)

        cmd = ffutil.analysis_command(job.manifest.input, cfg.threshold_db, cfg.min_duration)
        self._run_engine(job, cmd, on_line)

        silences = parser.finish()
        job.log(f"Found {len(silences)} silence ranges")
        estimator.finish(f"Analysis complete: {len(silences)} silence ranges")
        return silences

    def _passthrough(self, job: EncodeJob, probe: ProbeResult, estimator: ProgressEstimator) -> None:
        manifest = job.manifest
        if manifest.normalize_audio and probe.has_audio:
            job.log("No silence found, normalizing audio only...")
            estimator.begin(ENCODE, probe.duration, probe.fps, status="Normalizing audio...")
            cmd = ffutil.normalize_command(
                manifest.input, manifest.output, LOUDNORM_FILTER, self._threads(manifest)
            )
            job.output_started = True
            self._run_engine(job, cmd, estimator.feed)
            estimator.finish("Complete! Audio normalized.")
            return

        job.log("No silence found, copying file...")
        estimator.begin(ENCODE, probe.duration, status="No silences detected - copying original file...")
        job.output_started = True
        shutil.copy2(manifest.input, manifest.output)
        self._check_cancelled(job)
        estimator.finish("Complete! No processing needed.")

    def _encode(
        self,
        job: EncodeJob,
        probe: ProbeResult,
        keep: Sequence[KeepInterval],
        stats: DurationStats,
        estimator: ProgressEstimator,
    ) -> None:
        manifest = job.manifest
        script = build_filter_script(keep, normalize=manifest.normalize_audio)
        script_path = job.temp_dir / SCRIPT_NAME
        script_path.write_text(script, encoding="utf-8")
        job.log(f"Filter script: {len(script)} chars for {len(keep)} segments")

        codec_args = self.encoder_policy.video_args(manifest.quality, manifest.use_hardware_encoder)
        job.log(f"Video encoder: {codec_args[1]}")
        cmd = ffutil.encode_command(
            manifest.input, script_path, manifest.output, codec_args, self._threads(manifest)
        )

        expected = stats.expected_output_duration
        if expected <= 0:
            expected = probe.duration
        estimator.begin(ENCODE, expected, probe.fps, status="Phase 2: Processing video (removing silences)...")
        job.output_started = True
        self._run_engine(job, cmd, estimator.feed)
        job.log("Video processing completed successfully")
        estimator.finish("Processing: 100% - Complete!")

    # --- Process lifecycle ---

    def _run_engine(self, job: EncodeJob, cmd: list[str], on_line: Callable[[str], None]) -> None:
        """Run one ffmpeg invocation, feeding each stderr line to ``on_line``."""
        proc = self.process_factory(cmd)
        with self._lock:
            self._check_cancelled(job)
            proc.start()
            job.process = proc
        job.log(f"Running FFmpeg command: {' '.join(cmd)}")

        try:
            for line in proc.lines():
                on_line(line)
            returncode = proc.wait()
        finally:
            with self._lock:
                job.process = None

        self._check_cancelled(job)
        if returncode != 0:
            raise EngineFailure(
                f"ffmpeg exited with code {returncode}",
                returncode=returncode,
                stderr_tail=proc.stderr_tail(),
            )

    @staticmethod
    def _check_cancelled(job: EncodeJob) -> None:
        if job.cancelled.is_set():
            raise JobCancelled()

    @staticmethod
    def _threads(manifest: Manifest) -> int | None:
        cpus = os.cpu_count()
        if manifest.threads is None:
            return cpus
        return min(max(1, manifest.threads), cpus or manifest.threads)

    def _transition(self, job: EncodeJob, state: JobState) -> None:
        self._check_cancelled(job)
        with self._lock:
            logger.debug("Job state %s -> %s", job.state.value, state.value)
            job.state = state

    def _abort(self, job: EncodeJob, state: JobState) -> None:
        with self._lock:
            proc, job.process = job.process, None
        if proc is not None:
            proc.terminate()

        output = Path(job.manifest.output)
        if job.output_started and output.exists():
            try:
                output.unlink()
                job.log(f"Removed partial output {output}")
            except OSError as e:
                job.log(f"Could not remove partial output {output}: {e}")

        with self._lock:
            job.state = state

    def _remove_temp_dir(self, job: EncodeJob) -> None:
        if job.temp_dir is None:
            return
        try:
            shutil.rmtree(job.temp_dir)
        except OSError as e:
            job.log(f"Could not remove temp dir {job.temp_dir}: {e}")
        job.temp_dir = None
