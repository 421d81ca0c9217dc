"""
Pipeline Profiler
=================

Read-only timing telemetry for one depth-map run: device-reported
durations for every submitted stage plus a host wall-clock total.
Nothing here influences scheduling or results.
"""

from __future__ import annotations

import time
from dataclasses import dataclass
from typing import Protocol


__all__ = [
    "StageTiming",
    "ProfileReport",
    "Profiler",
]


class _ProfiledEvent(Protocol):
    """The slice of pyopencl.Event the profiler reads."""

    @property
    def profile(self): ...

    def wait(self) -> None: ...


@dataclass(frozen=True, slots=True)
class StageTiming:
    """Duration of one pipeline stage."""

    label: str
    seconds: float

    def __str__(self) -> str:
        return f"{self.label:<20}: {self.seconds:f} S."


@dataclass(frozen=True, slots=True)
class ProfileReport:
    """Timings collected during one run.

    Attributes:
        title: Report heading (backend name)
        total_seconds: Wall-clock time from first stage to last join
        stages: Per-stage durations in submission order
    """

    title: str
    total_seconds: float
    stages: tuple[StageTiming, ...]

    def __getitem__(self, label: str) -> float:
        for stage in self.stages:
            if stage.label == label:
                return stage.seconds
        raise KeyError(label)

    @property
    def labels(self) -> tuple[str, ...]:
        return tuple(s.label for s in self.stages)

    def format_verbose(self) -> str:
        """Format as the multi-line diagnostics report."""
        lines = [
            f"---{self.title}---",
            f"Total execution time: {self.total_seconds:f} S.",
        ]
        lines.extend(str(stage) for stage in self.stages)
        return "\n".join(lines)


class Profiler:
    """
    Collects stage events and a wall-clock total for one run.

    Example:
        >>> profiler = Profiler("OpenCL Depth Estimator")
        >>> profiler.start()
        >>> profiler.record("Left greyscale", event)
        >>> profiler.stop()
        >>> print(profiler.report().format_verbose())
    """

    __slots__ = ("_title", "_entries", "_start", "_end")

    def __init__(self, title: str = "Depth Estimator") -> None:
        self._title = title
        self._entries: list[tuple[str, _ProfiledEvent | float]] = []
        self._start: float | None = None
        self._end: float | None = None

    def start(self) -> None:
        """Mark the start of the timed section."""
        self._start = time.perf_counter()
        self._end = None

    def stop(self) -> None:
        """Mark the end of the timed section."""
        if self._start is None:
            raise RuntimeError("Profiler stopped before it was started")
        self._end = time.perf_counter()

    def record(self, label: str, event: _ProfiledEvent) -> None:
        """Keep a submitted stage's completion event for later reporting."""
        self._entries.append((label, event))

    def record_elapsed(self, label: str, seconds: float) -> None:
        """Keep a host-measured stage duration."""
        self._entries.append((label, float(seconds)))

    def __len__(self) -> int:
        return len(self._entries)

    def report(self) -> ProfileReport:
        """
        Build the report, waiting for every recorded event to complete.

        Device timestamps are in nanoseconds.
        """
        stages = []
        for label, entry in self._entries:
            if isinstance(entry, float):
                seconds = entry
            else:
                entry.wait()
                seconds = (entry.profile.end - entry.profile.start) / 1e9
            stages.append(StageTiming(label, seconds))

        if self._start is None:
            total = 0.0
        else:
            end = self._end if self._end is not None else time.perf_counter()
            total = end - self._start

        return ProfileReport(self._title, total, tuple(stages))
