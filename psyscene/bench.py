"""Expected-vs-actual presentation timing, for benchmark runs.

A benchmark task calls `probe.mark(index, expected_ms, is_last)` right before
each `show()` it wants measured; the probe pairs the mark with the next cycle
that completes on the App and records `actual - expected`.
"""
from __future__ import annotations

import logging
import statistics
from collections import deque
from dataclasses import dataclass
from typing import TYPE_CHECKING

if TYPE_CHECKING:
    from psyscene.app import App, SceneTimingRecord

logger = logging.getLogger(__name__)


@dataclass(frozen=True, slots=True)
class TimingSample:
    index: int
    scene: str
    expected_ms: float
    actual_ms: float

    @property
    def error_ms(self) -> float:
        return self.actual_ms - self.expected_ms


@dataclass(frozen=True, slots=True)
class TimingSummary:
    count: int
    mean: float
    std: float
    min: float
    max: float


class TimingProbe:
    def __init__(self, app: App) -> None:
        self.samples: list[TimingSample] = []
        self.done = False
        self._pending: deque[tuple[int, float, bool]] = deque()
        self._unsubscribe = app.on("scene:timing", self._on_timing)
        app.add_cleanup(self.detach)

    def mark(self, index: int, expected_ms: float, is_last: bool) -> None:
        if self.done:
            raise RuntimeError("probe already received its last mark")
        self._pending.append((index, expected_ms, is_last))

    def detach(self) -> None:
        self._unsubscribe()

    def _on_timing(self, record: SceneTimingRecord) -> None:
        if not self._pending:
            return
        duration = record.timing.duration
        if duration is None:
            logger.warning("scene %r closed before onset, mark left pending", record.scene)
            return
        index, expected_ms, is_last = self._pending.popleft()
        self.samples.append(TimingSample(index=index, scene=record.scene, expected_ms=expected_ms, actual_ms=duration))
        if is_last:
            self.done = True
            self.detach()

    def errors(self) -> list[float]:
        return [s.error_ms for s in self.samples]

    def summary(self) -> TimingSummary:
        errors = self.errors()
        if not errors:
            raise ValueError("no timing samples recorded")
        return TimingSummary(
            count=len(errors),
            mean=statistics.fmean(errors),
            std=statistics.stdev(errors) if len(errors) > 1 else 0.0,
            min=min(errors),
            max=max(errors),
        )
