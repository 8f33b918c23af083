"""Tests for the per-phase progress estimator."""

import pytest

from klyppr.progress import DETECT, ENCODE, ProgressEstimator


def _estimator(clock, samples=None):
    return ProgressEstimator(on_sample=samples.append if samples is not None else None, clock=clock)


class TestBeginAndFinish:
    def test_begin_emits_zero(self, clock):
        samples = []
        est = _estimator(clock, samples)
        sample = est.begin(DETECT, 100.0)
        assert sample.percent == 0.0
        assert sample.phase == DETECT
        assert samples == [sample]

    def test_finish_reports_100(self, clock):
        est = _estimator(clock)
        est.begin(DETECT, 100.0)
        assert est.finish("done").percent == 100.0

    def test_new_phase_resets(self, clock):
        est = _estimator(clock)
        est.begin(DETECT, 100.0)
        clock.advance(1)
        est.feed("size=N/A time=00:00:50.00 bitrate=N/A")
        est.finish()
        sample = est.begin(ENCODE, 80.0)
        assert sample.percent == 0.0
        assert est.percent == 0.0
        assert est.eta is None


class TestTimeMarker:
    def test_elapsed_over_expected(self, clock):
        est = _estimator(clock)
        est.begin(DETECT, 200.0)
        clock.advance(1)
        sample = est.feed("size=N/A time=00:01:40.00 bitrate=N/A speed=50x")
        assert sample.percent == pytest.approx(50.0)

    def test_hours_and_fractions(self, clock):
        est = _estimator(clock)
        est.begin(ENCODE, 7200.0)
        clock.advance(1)
        sample = est.feed("frame= 9000 fps=300 q=28.0 size=1024kB time=01:00:00.00 bitrate=2.0kbits/s")
        assert sample.percent == pytest.approx(50.0)
        assert "Processing: 50.0%" in sample.status

    def test_clamped_below_100_while_running(self, clock):
        est = _estimator(clock)
        est.begin(DETECT, 10.0)
        clock.advance(1)
        sample = est.feed("time=00:00:12.00")
        assert sample.percent == 99.0

    def test_unrelated_line(self, clock):
        est = _estimator(clock)
        est.begin(DETECT, 10.0)
        clock.advance(1)
        assert est.feed("[silencedetect @ 0x1] silence_start: 2.0") is None

    def test_no_expected_duration(self, clock):
        est = _estimator(clock)
        est.begin(ENCODE, 0.0)
        clock.advance(1)
        assert est.feed("time=00:00:05.00") is None

    def test_before_begin(self, clock):
        assert _estimator(clock).feed("time=00:00:05.00") is None


class TestFrameFallback:
    def test_frames_used_when_time_missing(self, clock):
        est = _estimator(clock)
        est.begin(ENCODE, 10.0, fps=30.0)
        clock.advance(1)
        sample = est.feed("frame=  150 fps=0.0 q=28.0 size=N/A time=N/A bitrate=N/A")
        assert sample.percent == pytest.approx(50.0)
        assert sample.status.endswith("(estimated)")

    def test_frames_ignored_without_fps(self, clock):
        est = _estimator(clock)
        est.begin(ENCODE, 10.0)
        clock.advance(1)
        assert est.feed("frame=  150 fps=0.0 time=N/A") is None


class TestMonotonicAndThrottle:
    def test_never_decreases(self, clock):
        samples = []
        est = _estimator(clock, samples)
        est.begin(ENCODE, 100.0)
        for t in (10, 40, 20, 35, 60, 5):
            clock.advance(0.5)
            est.feed(f"time=00:00:{t:02d}.00")
        percents = [s.percent for s in samples]
        assert percents == sorted(percents)
        assert est.percent == pytest.approx(60.0)

    def test_small_fast_updates_throttled(self, clock):
        est = _estimator(clock)
        est.begin(ENCODE, 1000.0)
        clock.advance(0.01)
        # 0.5% in 10ms: neither threshold met.
        assert est.update(0.5) is None
        clock.advance(0.01)
        # A full point is enough even inside the window.
        assert est.update(1.5) is not None

    def test_time_window_lets_small_change_through(self, clock):
        est = _estimator(clock)
        est.begin(ENCODE, 1000.0)
        clock.advance(0.1)
        assert est.update(0.2) is not None

    def test_update_rate_bounded(self, clock):
        samples = []
        est = _estimator(clock, samples)
        est.begin(ENCODE, 10000.0)
        # 1000 stats lines in one second, each advancing 0.01%.
        for i in range(1, 1001):
            clock.advance(0.001)
            est.update(i * 0.01)
        assert len(samples) <= 12


class TestEta:
    def test_no_eta_during_warmup(self, clock):
        est = _estimator(clock)
        est.begin(ENCODE, 100.0)
        clock.advance(1.0)
        assert est.update(20.0).eta is None

    def test_no_eta_below_warmup_percent(self, clock):
        est = _estimator(clock)
        est.begin(ENCODE, 100.0)
        clock.advance(6.0)
        assert est.update(4.0).eta is None

    def test_eta_after_warmup(self, clock):
        est = _estimator(clock)
        est.begin(ENCODE, 100.0)
        clock.advance(10.0)
        sample = est.update(25.0)
        assert sample.eta == pytest.approx(30.0)

    def test_sample_dict(self, clock):
        est = _estimator(clock)
        est.begin(ENCODE, 100.0)
        clock.advance(10.0)
        data = est.update(25.0).to_dict()
        assert data == {"phase": "encode", "status": data["status"], "percent": 25.0, "eta": 30.0}
