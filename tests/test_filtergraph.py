"""Tests for the filter-graph compiler."""

import re

import pytest

from klyppr.editors.filtergraph import LOUDNORM_FILTER, build_filter_script
from klyppr.models import KeepInterval

KEEP = [KeepInterval(0.0, 10.0), KeepInterval(15.0, 30.0), KeepInterval(31.25, 40.123456)]


class TestBuildFilterScript:
    def test_trim_clauses(self):
        script = build_filter_script(KEEP[:1])
        assert "[0:v]trim=start=0.0000:end=10.0000,setpts=PTS-STARTPTS[v0]" in script
        assert "[0:a]atrim=start=0.0000:end=10.0000,asetpts=PTS-STARTPTS[a0]" in script

    def test_fixed_precision(self):
        script = build_filter_script(KEEP)
        assert "end=40.1235" in script
        assert "start=31.2500" in script

    def test_concat_of_all_pads_in_order(self):
        script = build_filter_script(KEEP)
        assert "[v0][a0][v1][a1][v2][a2]concat=n=3:v=1:a=1[outv][outa]" in script

    def test_each_interval_referenced_once(self):
        for normalize in (False, True):
            script = build_filter_script(KEEP, normalize=normalize)
            video = re.findall(r"\[0:v\]trim=start=([\d.]+):end=([\d.]+)", script)
            audio = re.findall(r"\[0:a\]atrim=start=([\d.]+):end=([\d.]+)", script)
            expected = [(f"{k.start:.4f}", f"{k.end:.4f}") for k in KEEP]
            assert video == expected
            assert audio == expected
            assert re.findall(r"\[v(\d+)\]", script.split("concat")[0].split(";\n")[-1]) == ["0", "1", "2"]

    def test_no_loudnorm_without_normalize(self):
        script = build_filter_script(KEEP, normalize=False)
        assert "loudnorm" not in script
        assert "[tmpv]" not in script

    def test_loudnorm_with_normalize(self):
        script = build_filter_script(KEEP, normalize=True)
        assert "loudnorm=I=-16:TP=-1.5:LRA=11" in script
        assert script.count(LOUDNORM_FILTER) == 1
        assert "concat=n=3:v=1:a=1[tmpv][tmpa]" in script
        assert "[tmpv]copy[outv]" in script
        assert script.endswith(f"[tmpa]{LOUDNORM_FILTER}[outa]")

    def test_single_interval(self):
        script = build_filter_script([KeepInterval(1.0, 2.0)])
        assert script.count(";\n") == 2
        assert "concat=n=1" in script

    def test_pure(self):
        assert build_filter_script(KEEP, True) == build_filter_script(KEEP, True)

    def test_empty_raises(self):
        with pytest.raises(ValueError, match="empty interval list"):
            build_filter_script([])
