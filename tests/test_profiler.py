"""
Unit tests for pipeline profiling.
"""

from types import SimpleNamespace

import pytest

from stereo_gpu import Profiler, ProfileReport, StageTiming


class FakeEvent:
    """Stand-in for a completed pyopencl.Event."""

    def __init__(self, start_ns: int, end_ns: int) -> None:
        self.profile = SimpleNamespace(start=start_ns, end=end_ns)
        self.waited = False

    def wait(self) -> None:
        self.waited = True


class TestStageTiming:
    """Tests for StageTiming formatting."""

    def test_str(self) -> None:
        line = str(StageTiming("Left greyscale", 0.0015))
        assert line == "Left greyscale      : 0.001500 S."


class TestProfileReport:
    """Tests for ProfileReport lookups and formatting."""

    @pytest.fixture
    def report(self) -> ProfileReport:
        return ProfileReport(
            "OpenCL Depth Estimator",
            0.25,
            (StageTiming("Cross check", 0.001), StageTiming("Convert rgba", 0.002)),
        )

    def test_getitem(self, report: ProfileReport) -> None:
        assert report["Convert rgba"] == 0.002

    def test_getitem_missing(self, report: ProfileReport) -> None:
        with pytest.raises(KeyError):
            report["Left disparity"]

    def test_labels(self, report: ProfileReport) -> None:
        assert report.labels == ("Cross check", "Convert rgba")

    def test_format_verbose(self, report: ProfileReport) -> None:
        lines = report.format_verbose().splitlines()
        assert lines[0] == "---OpenCL Depth Estimator---"
        assert lines[1] == "Total execution time: 0.250000 S."
        assert lines[2].startswith("Cross check")
        assert len(lines) == 4


class TestProfiler:
    """Tests for Profiler event collection."""

    def test_event_durations(self) -> None:
        profiler = Profiler("test")
        event = FakeEvent(1_000, 2_501_000)
        profiler.start()
        profiler.record("Left filter", event)
        profiler.stop()

        report = profiler.report()
        assert event.waited
        assert report["Left filter"] == pytest.approx(0.0025)
        assert report.total_seconds >= 0.0

    def test_submission_order_kept(self) -> None:
        profiler = Profiler()
        profiler.record("b", FakeEvent(0, 1))
        profiler.record_elapsed("a", 0.5)
        profiler.record("c", FakeEvent(0, 1))
        assert len(profiler) == 3
        assert profiler.report().labels == ("b", "a", "c")

    def test_record_elapsed(self) -> None:
        profiler = Profiler()
        profiler.record_elapsed("Cross check", 1)
        assert profiler.report()["Cross check"] == 1.0

    def test_not_started_total_zero(self) -> None:
        assert Profiler().report().total_seconds == 0.0

    def test_stop_before_start(self) -> None:
        with pytest.raises(RuntimeError, match="before it was started"):
            Profiler().stop()
