"""Display refresh signal.

A frame clock is the only place that touches host timing primitives: a per-frame
callback queue (the animation-frame signal) and a monotonic millisecond clock.

Timestamps are milliseconds. A frame callback receives the timestamp of the frame
it runs in, the same for every callback of that frame.
"""
from __future__ import annotations

import asyncio
import heapq
import itertools
import logging
import math
import statistics
from collections.abc import Awaitable, Callable, Sequence
from typing import Protocol, TypeVar

logger = logging.getLogger(__name__)

FrameCallback = Callable[[float], None]
T = TypeVar("T")


class TimerHandle(Protocol):
    def cancel(self) -> None: ...


class FrameClock(Protocol):
    frame_ms: float

    def now(self) -> float: ...

    def request_frame(self, callback: FrameCallback) -> int: ...

    def cancel_frame(self, handle: int) -> None: ...

    def call_at(self, when: float, callback: Callable[[], None]) -> TimerHandle: ...


def _run_frame_callbacks(callbacks: Sequence[FrameCallback], timestamp: float) -> None:
    for callback in callbacks:
        try:
            callback(timestamp)
        except Exception:
            # One failing callback must not starve the rest of the frame.
            logger.exception("frame callback %r failed", callback)


class AsyncioFrameClock:
    """Real-time frame clock driven by the running asyncio loop.

    Frames tick on a fixed grid (`origin + k * frame_ms`) anchored at the first
    request, like a display's vsync. Ticks only run while callbacks are pending.
    """

    def __init__(self, refresh_hz: float = 60.0, *, loop: asyncio.AbstractEventLoop | None = None) -> None:
        if refresh_hz <= 0:
            raise ValueError("refresh_hz must be positive")
        self.frame_ms = 1000.0 / refresh_hz
        self._loop = loop
        self._origin: float | None = None
        self._callbacks: dict[int, FrameCallback] = {}
        self._handles = itertools.count(1)
        self._tick: asyncio.TimerHandle | None = None
        self._last_k = 0

    def _get_loop(self) -> asyncio.AbstractEventLoop:
        if self._loop is None:
            self._loop = asyncio.get_running_loop()
        return self._loop

    def now(self) -> float:
        return self._get_loop().time() * 1000.0

    def request_frame(self, callback: FrameCallback) -> int:
        handle = next(self._handles)
        self._callbacks[handle] = callback
        self._schedule_tick()
        return handle

    def cancel_frame(self, handle: int) -> None:
        self._callbacks.pop(handle, None)

    def call_at(self, when: float, callback: Callable[[], None]) -> TimerHandle:
        return self._get_loop().call_at(when / 1000.0, callback)

    def _schedule_tick(self) -> None:
        if self._tick is not None:
            return
        now = self.now()
        if self._origin is None:
            self._origin = now
        # The loop may run a tick slightly early; never repeat a frame.
        k = max(math.floor((now - self._origin) / self.frame_ms) + 1, self._last_k + 1)
        when = self._origin + k * self.frame_ms
        self._tick = self._get_loop().call_at(when / 1000.0, self._on_tick, k, when)

    def _on_tick(self, k: int, timestamp: float) -> None:
        self._tick = None
        self._last_k = k
        callbacks = list(self._callbacks.values())
        self._callbacks.clear()
        _run_frame_callbacks(callbacks, timestamp)


class _VirtualTimer:
    __slots__ = ("when", "callback", "cancelled")

    def __init__(self, when: float, callback: Callable[[], None]) -> None:
        self.when = when
        self.callback = callback
        self.cancelled = False

    def cancel(self) -> None:
        self.cancelled = True


class VirtualFrameClock:
    """Deterministic frame clock in virtual time.

    Nothing happens until the clock is stepped. `step()` advances to the next
    frame boundary, firing due timers first (each at its own timestamp) and then
    the frame callbacks. `skip_frames()` simulates dropped frames: time moves on,
    pending frame callbacks wait for the next delivered frame.
    """

    def __init__(self, frame_ms: float = 16.0, *, start: float = 0.0) -> None:
        if frame_ms <= 0:
            raise ValueError("frame_ms must be positive")
        self.frame_ms = frame_ms
        self._now = start
        self._last_frame = start
        self._callbacks: dict[int, FrameCallback] = {}
        self._handles = itertools.count(1)
        self._timers: list[tuple[float, int, _VirtualTimer]] = []
        self._timer_seq = itertools.count()
        self.frames_delivered = 0

    def now(self) -> float:
        return self._now

    @property
    def pending_frames(self) -> int:
        return len(self._callbacks)

    def request_frame(self, callback: FrameCallback) -> int:
        handle = next(self._handles)
        self._callbacks[handle] = callback
        return handle

    def cancel_frame(self, handle: int) -> None:
        self._callbacks.pop(handle, None)

    def call_at(self, when: float, callback: Callable[[], None]) -> TimerHandle:
        timer = _VirtualTimer(when, callback)
        heapq.heappush(self._timers, (when, next(self._timer_seq), timer))
        return timer

    def step(self) -> float:
        target = self._last_frame + self.frame_ms
        self._run_timers(until=target)
        self._now = self._last_frame = target
        callbacks = list(self._callbacks.values())
        self._callbacks.clear()
        self.frames_delivered += 1
        _run_frame_callbacks(callbacks, target)
        return target

    def skip_frames(self, count: int = 1) -> None:
        for _ in range(count):
            target = self._last_frame + self.frame_ms
            self._run_timers(until=target)
            self._now = self._last_frame = target

    def _run_timers(self, *, until: float) -> None:
        while self._timers and self._timers[0][0] <= until:
            when, _, timer = heapq.heappop(self._timers)
            if timer.cancelled:
                continue
            self._now = max(self._now, when)
            timer.callback()

    async def settle(self, rounds: int = 5) -> None:
        """Let tasks woken by the last step run."""

        for _ in range(rounds):
            await asyncio.sleep(0)

    async def run_frames(self, count: int) -> None:
        for _ in range(count):
            await self.settle()
            self.step()
        await self.settle()

    async def drive(self, awaitable: Awaitable[T], *, max_frames: int = 100_000) -> T:
        """Step frames until `awaitable` completes and return its result."""

        task = asyncio.ensure_future(awaitable)
        await self.settle()
        frames = 0
        while not task.done():
            if frames >= max_frames:
                task.cancel()
                raise TimeoutError(f"awaitable still pending after {max_frames} frames")
            self.step()
            frames += 1
            await self.settle()
        return task.result()


def mean_std(values: Sequence[float]) -> tuple[float, float]:
    mean = statistics.fmean(values)
    std = statistics.stdev(values) if len(values) > 1 else 0.0
    return mean, std


def robust_frame_interval(intervals: Sequence[float]) -> float:
    """Mean of the intervals within two standard deviations of the mean."""

    if not intervals:
        raise ValueError("No frame intervals to average")
    mean, std = mean_std(intervals)
    valid = [v for v in intervals if mean - 2 * std <= v <= mean + 2 * std]
    if not valid:
        raise ValueError("No valid frames found")
    return statistics.fmean(valid)


async def detect_frame_ms(clock: FrameClock, *, frames_count: int = 60) -> float:
    """Measure the display's frame interval from `frames_count` consecutive frames."""

    if frames_count < 1:
        raise ValueError("frames_count must be >= 1")

    done: asyncio.Future[None] = asyncio.get_running_loop().create_future()
    stamps: list[float] = []

    def on_frame(timestamp: float) -> None:
        stamps.append(timestamp)
        if len(stamps) > frames_count:
            if not done.done():
                done.set_result(None)
            return
        clock.request_frame(on_frame)

    clock.request_frame(on_frame)
    await done

    intervals = [b - a for a, b in itertools.pairwise(stamps)]
    frame_ms = robust_frame_interval(intervals)
    logger.info("detected frame interval %.3f ms over %d frames", frame_ms, len(intervals))
    return frame_ms
