from __future__ import annotations

import pytest

from psyscene.app import App
from psyscene.bench import TimingProbe
from psyscene.core.frames import VirtualFrameClock


@pytest.mark.asyncio
async def test_probe_pairs_marks_with_completed_cycles(app: App, clock: VirtualFrameClock, fixation_setup) -> None:
    probe = TimingProbe(app)
    warmup = app.scene(fixation_setup, duration=16)
    target = app.scene(fixation_setup, duration=48, name="target")
    mask = app.scene(fixation_setup, duration=32, name="mask")

    await clock.drive(warmup.show())
    probe.mark(0, 48, False)
    await clock.drive(target.show())
    probe.mark(1, 40, True)
    await clock.drive(mask.show())

    assert [s.scene for s in probe.samples] == ["target", "mask"]
    assert probe.errors() == [0.0, -8.0]
    assert probe.done
    summary = probe.summary()
    assert summary.count == 2
    assert summary.mean == -4.0
    assert summary.min == -8.0
    assert summary.max == 0.0

    with pytest.raises(RuntimeError):
        probe.mark(2, 16, True)


def test_summary_needs_samples(app: App) -> None:
    with pytest.raises(ValueError):
        TimingProbe(app).summary()
