from __future__ import annotations

import asyncio
from pathlib import Path

import pytest

from psyscene.app import App, SceneTimingRecord, create_app
from psyscene.config import Settings
from psyscene.core.dom import Document, h
from psyscene.core.environment import Screen
from psyscene.core.frames import VirtualFrameClock
from psyscene.core.lifecycle import SceneState
from psyscene.core.scene import Scene, SetupResult
from psyscene.errors import DisposalAggregateError, SceneDisposedError


def _named(name: str, log: list[str]):
    def setup(props: dict, ctx: Scene) -> SetupResult:
        ctx.add_cleanup(lambda: log.append(name))
        return SetupResult(node=h("div", None, name))

    return setup


def test_app_mounts_its_root_in_a_document(app: App) -> None:
    assert app.root.is_connected
    assert app.document is not None
    assert app.root.parent is app.document.body
    assert app.root.attrs["class"] == "psyscene-app"


def test_app_uses_a_connected_root_as_is(clock: VirtualFrameClock) -> None:
    doc = Document()
    root = h("main")
    doc.body.append(root)

    with App(root, clock=clock, settings=Settings()) as a:
        assert a.root is root
        assert a.document is None

    assert not root.is_connected


def test_dispose_tears_scenes_down_newest_first(app: App) -> None:
    log: list[str] = []
    first = app.scene(_named("first", log))
    second = app.scene(_named("second", log))

    app.dispose()
    app.dispose()

    assert log == ["second", "first"]
    assert first.state is SceneState.disposed
    assert second.state is SceneState.disposed
    assert not app.root.is_connected
    assert app.disposed


def test_disposed_app_produces_no_scenes(app: App, fixation_setup) -> None:
    app.dispose()

    with pytest.raises(SceneDisposedError):
        app.scene(fixation_setup)


def test_dispose_reports_every_failing_cleanup(app: App) -> None:
    log: list[str] = []

    def leaky(props: dict, ctx: Scene) -> SetupResult:
        def release() -> None:
            raise OSError("texture still bound")

        ctx.add_cleanup(release)
        return SetupResult(node=h("div"))

    app.scene(_named("kept", log))
    app.scene(leaky)

    def app_level() -> None:
        raise RuntimeError("audio context")

    app.add_cleanup(app_level)

    with pytest.raises(DisposalAggregateError) as exc_info:
        app.dispose()

    assert sorted(type(e).__name__ for e in exc_info.value.errors) == ["OSError", "RuntimeError"]
    assert log == ["kept"]
    assert not app.root.is_connected


@pytest.mark.asyncio
async def test_dispose_while_a_scene_is_showing(app: App, clock: VirtualFrameClock, fixation_setup) -> None:
    scene = app.scene(fixation_setup)
    task = asyncio.create_task(scene.show())
    await clock.run_frames(2)

    app.dispose()

    assert await task == {"shown": "+"}
    assert scene.state is SceneState.disposed
    assert clock.pending_frames == 0


@pytest.mark.asyncio
async def test_input_goes_to_the_most_recently_shown_scene(app: App, clock: VirtualFrameClock, fixation_setup) -> None:
    background = app.scene(fixation_setup, close_on="key:b", name="background")
    foreground = app.scene(fixation_setup, close_on="key:f", name="foreground")

    bg_task = asyncio.create_task(background.show())
    await clock.run_frames(1)
    fg_task = asyncio.create_task(foreground.show())
    await clock.run_frames(1)
    assert app.focused is foreground

    app.dispatch_key("b")  # foreground has focus, so nothing closes
    app.dispatch_key("f")
    await clock.run_frames(1)
    assert fg_task.done()
    assert app.focused is background

    app.dispatch_key("b")
    await clock.run_frames(1)
    assert bg_task.done()
    assert app.focused is None
    assert not app.dispatch_key("b")


@pytest.mark.asyncio
async def test_app_emits_a_timing_record_per_cycle(app: App, clock: VirtualFrameClock, fixation_setup) -> None:
    records: list[SceneTimingRecord] = []
    app.on("scene:timing", records.append)
    scene = app.scene(fixation_setup, duration=16, name="fix")

    await clock.drive(scene.show())
    await clock.drive(scene.show())

    assert [(r.scene, r.index) for r in records] == [("fix", 0), ("fix", 1)]
    assert records[0].timing.duration == 16.0


@pytest.mark.asyncio
async def test_text_scene(app: App, clock: VirtualFrameClock) -> None:
    scene = app.text("hello", duration=16, default_props={"color": "red"})

    assert await clock.drive(scene.show(text="bye")) == {"text": "bye"}
    assert await clock.drive(scene.show()) == {"text": "hello"}
    node = scene.root.children[0]
    assert node.style["color"] == "red"


@pytest.mark.asyncio
async def test_create_app_measures_the_frame_interval() -> None:
    clock = VirtualFrameClock(frame_ms=8.0)

    app = await clock.drive(create_app(clock=clock, settings=Settings(), frames_count=12))

    assert app.frame_ms == pytest.approx(8.0)
    assert app.scheduler.frame_ms == pytest.approx(8.0)
    app.dispose()


def test_environment_signals_follow_the_screen(clock: VirtualFrameClock) -> None:
    screen = Screen(800, 600, 2.0)
    app = App(clock=clock, screen=screen, settings=Settings())
    seen: list[tuple[int, int]] = []

    assert app.environment.viewport == (1600, 1200)
    app.environment.viewport_signal.watch(seen.append)
    screen.update(device_pixel_ratio=1.5)
    screen.update(width=800)

    assert app.environment.device_pixel_ratio == 1.5
    assert seen == [(1200, 900)]

    app.dispose()
    assert not app.environment.viewport_signal.subscribed
    assert screen.listener_count("change") == 0


def test_signals_subscribe_lazily(app: App) -> None:
    assert not app.environment.device_pixel_ratio_signal.subscribed
    app.environment.device_pixel_ratio
    assert app.environment.device_pixel_ratio_signal.subscribed


def test_collector_is_saved_on_dispose(app: App, tmp_path: Path) -> None:
    collector = app.collector("session.csv", directory=tmp_path)
    collector.add({"rt": 312, "correct": True})

    app.dispose()

    assert (tmp_path / "session.csv").read_text(encoding="utf-8") == "rt,correct,frame_ms\n312,True,16.0"
