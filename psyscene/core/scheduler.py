"""Frame-aligned presentation timing.

Render logic::

    show -> frame[commit, onset] -> ... -> deadline timer -> frame[offset]

The commit and the offset are both applied inside frame callbacks, so the
presented duration is `offset - onset`, a whole number of frames. The offset
frame is the first one whose timestamp is at or past `onset + duration`:
durations are rounded up, never truncated.

A late offset (dropped frames, contention) is reported, not compensated.
"""
from __future__ import annotations

import logging
import math
from collections.abc import Callable
from dataclasses import asdict, dataclass, field
from enum import StrEnum
from typing import Any

from psyscene.core.frames import FrameClock, TimerHandle

logger = logging.getLogger(__name__)

# Frame timestamps accumulate float error (16.666... ms at 60 Hz); comparisons allow this fraction of a frame.
_FRAME_EPSILON = 1e-6


@dataclass(slots=True)
class ShowTiming:
    """Measured timing of one show cycle. All values in milliseconds."""

    requested_ms: float | None
    frame_ms: float
    onset: float | None = None
    offset: float | None = None
    deadline: float | None = None
    frame_times: list[float] = field(default_factory=list)
    missed: bool = False
    forced: bool = False

    @property
    def duration(self) -> float | None:
        if self.onset is None or self.offset is None:
            return None
        return self.offset - self.onset

    @property
    def lateness(self) -> float | None:
        if self.deadline is None or self.offset is None:
            return None
        return self.offset - self.deadline

    @property
    def frames(self) -> int | None:
        duration = self.duration
        if duration is None:
            return None
        return round(duration / self.frame_ms)

    def as_dict(self) -> dict[str, Any]:
        data = asdict(self)
        data.update(duration=self.duration, lateness=self.lateness, frames=self.frames)
        return data


def presented_duration(duration: float, frame_ms: float) -> float:
    """Duration actually presented for a request: whole frames, rounded up."""

    return math.ceil(duration / frame_ms - _FRAME_EPSILON) * frame_ms


class _Phase(StrEnum):
    created = "created"
    pending_onset = "pending_onset"
    presenting = "presenting"
    done = "done"


class PresentationTimer:
    """Drives one cycle: commit on a frame, arm the deadline, offset on a frame."""

    def __init__(
        self,
        *,
        clock: FrameClock,
        timing: ShowTiming,
        commit: Callable[[], None],
        on_offset: Callable[[float], None],
        on_frame: Callable[[float], None] | None = None,
        miss_tolerance_ms: float,
    ) -> None:
        self._clock = clock
        self.timing = timing
        self._commit = commit
        self._on_offset = on_offset
        self.on_frame = on_frame
        self._miss_tolerance_ms = miss_tolerance_ms
        self._epsilon = timing.frame_ms * _FRAME_EPSILON
        self._phase = _Phase.created
        self._closing = False
        self._manual = False
        self._frame_handle: int | None = None
        self._deadline_handle: TimerHandle | None = None

    @property
    def done(self) -> bool:
        return self._phase is _Phase.done

    @property
    def closing(self) -> bool:
        return self._closing

    def start(self) -> None:
        if self._phase is not _Phase.created:
            raise RuntimeError("presentation already started")
        self._phase = _Phase.pending_onset
        self._request_frame()

    def request_close(self) -> None:
        """Manual close: drop the deadline and take the offset on the next frame."""

        if self._phase is _Phase.done or self._manual:
            return
        self._closing = True
        self._manual = True
        self._cancel_deadline()
        if self._phase is not _Phase.created:
            self._request_frame()

    def abort(self) -> None:
        """End now, off the frame grid. The caller finishes the cycle."""

        if self._phase is _Phase.done:
            return
        self._phase = _Phase.done
        self._cancel_frame()
        self._cancel_deadline()
        self.timing.offset = self._clock.now()
        self.timing.forced = True

    def _request_frame(self) -> None:
        if self._frame_handle is None:
            self._frame_handle = self._clock.request_frame(self._frame)

    def _cancel_frame(self) -> None:
        if self._frame_handle is not None:
            self._clock.cancel_frame(self._frame_handle)
            self._frame_handle = None

    def _cancel_deadline(self) -> None:
        if self._deadline_handle is not None:
            self._deadline_handle.cancel()
            self._deadline_handle = None

    def _deadline_reached(self) -> None:
        self._deadline_handle = None
        if self._phase is not _Phase.presenting:
            return
        self._closing = True
        self._request_frame()

    def _frame(self, timestamp: float) -> None:
        self._frame_handle = None
        if self._phase is _Phase.pending_onset:
            if self._closing:
                # Closed before the stimulus was ever committed.
                self._finish(timestamp)
                return
            self._present(timestamp)
        elif self._phase is _Phase.presenting:
            deadline = self.timing.deadline
            if (self._closing and (self._manual or deadline is None)) or (
                deadline is not None and timestamp >= deadline - self._epsilon
            ):
                self._finish(timestamp)
                return
            self._tick(timestamp)

    def _present(self, timestamp: float) -> None:
        self._commit()
        if self._phase is _Phase.done:
            return
        self._phase = _Phase.presenting
        timing = self.timing
        timing.onset = timestamp
        if timing.requested_ms is not None:
            timing.deadline = timestamp + timing.requested_ms
            # Wake half a frame early; the offset itself stays on a frame.
            self._deadline_handle = self._clock.call_at(timing.deadline - timing.frame_ms / 2, self._deadline_reached)
        logger.debug("onset at %.3f ms (deadline %s)", timestamp, timing.deadline)
        self._tick(timestamp)

    def _tick(self, timestamp: float) -> None:
        if self.on_frame is not None:
            self.on_frame(timestamp)
            if self._phase is _Phase.done:
                return
            self._request_frame()
        elif self._closing:
            # Deadline fired but this frame arrived early; wait for the next one.
            self._request_frame()

    def _finish(self, timestamp: float) -> None:
        self._phase = _Phase.done
        self._cancel_frame()
        self._cancel_deadline()
        timing = self.timing
        timing.offset = timestamp
        lateness = timing.lateness
        if lateness is not None and lateness > self._miss_tolerance_ms + self._epsilon:
            timing.missed = True
            logger.warning(
                "offset missed deadline by %.3f ms (tolerance %.3f ms, requested %s ms, presented %s ms)",
                lateness,
                self._miss_tolerance_ms,
                timing.requested_ms,
                timing.duration,
            )
        self._on_offset(timestamp)


class FrameScheduler:
    """Creates presentation timers bound to one clock and frame interval."""

    def __init__(self, clock: FrameClock, *, frame_ms: float, miss_tolerance_ms: float | None = None) -> None:
        self.clock = clock
        self.frame_ms = frame_ms
        self.miss_tolerance_ms = frame_ms if miss_tolerance_ms is None else miss_tolerance_ms

    def check_duration(self, duration: float) -> float:
        """Warn when `duration` is not a whole number of frames; return what will be presented."""

        presented = presented_duration(duration, self.frame_ms)
        if abs(presented - duration) >= 1:
            logger.warning(
                "duration %s ms is not a multiple of the %.3f ms frame interval, %.3f ms will be presented",
                duration,
                self.frame_ms,
                presented,
            )
        return presented

    def present(
        self,
        *,
        duration: float | None,
        commit: Callable[[], None],
        on_offset: Callable[[float], None],
        on_frame: Callable[[float], None] | None = None,
    ) -> PresentationTimer:
        timing = ShowTiming(requested_ms=None if duration is None else float(duration), frame_ms=self.frame_ms)
        return PresentationTimer(
            clock=self.clock,
            timing=timing,
            commit=commit,
            on_offset=on_offset,
            on_frame=on_frame,
            miss_tolerance_ms=self.miss_tolerance_ms,
        )
