"""Shared test fixtures."""

from pathlib import Path
from typing import Callable

import pytest

from klyppr.models import ProbeResult

FIXTURES_DIR = Path(__file__).parent / "fixtures"


@pytest.fixture
def sample_manifest_path() -> Path:
    return FIXTURES_DIR / "sample_manifest.json"


def make_probe(duration: float = 30.0, has_audio: bool = True) -> ProbeResult:
    return ProbeResult(
        duration=duration,
        width=1920,
        height=1080,
        fps=30.0,
        codec_video="h264",
        audio_sample_rate=44100 if has_audio else None,
        codec_audio="aac" if has_audio else None,
    )


class FakeProcess:
    """Scripted stand-in for FFmpegProcess.

    ``writes`` is created when the process starts, like ffmpeg opening its
    output. ``hook(index, proc)`` runs before each line is yielded.
    """

    def __init__(
        self,
        lines: list[str] | None = None,
        returncode: int = 0,
        writes: Path | None = None,
        hook: Callable[[int, "FakeProcess"], None] | None = None,
    ):
        self.lines_ = lines or []
        self.returncode = returncode
        self.writes = writes
        self.hook = hook
        self.cmd: list[str] = []
        self.started = False
        self.terminated = False

    def start(self) -> None:
        self.started = True
        if self.writes is not None:
            self.writes.write_bytes(b"partial")

    def lines(self):
        for i, line in enumerate(self.lines_):
            if self.hook:
                self.hook(i, self)
            if self.terminated:
                return
            yield line

    def wait(self) -> int:
        return -15 if self.terminated else self.returncode

    def terminate(self) -> None:
        self.terminated = True

    def stderr_tail(self) -> str:
        return "\n".join(self.lines_[-3:])


class FakeFactory:
    """Hands out scripted processes in order and records their commands."""

    def __init__(self, *procs: FakeProcess):
        self.procs = list(procs)
        self.commands: list[list[str]] = []

    def __call__(self, cmd: list[str]) -> FakeProcess:
        self.commands.append(cmd)
        proc = self.procs.pop(0)
        proc.cmd = cmd
        return proc


class FakeClock:
    def __init__(self, now: float = 0.0):
        self.now = now

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += seconds


@pytest.fixture
def clock() -> FakeClock:
    return FakeClock()
