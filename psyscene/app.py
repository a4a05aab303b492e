from __future__ import annotations

import logging
from collections.abc import Iterable, Mapping
from dataclasses import dataclass
from pathlib import Path
from typing import Any

from psyscene.collector import DataCollector, DataStringifier
from psyscene.config import Settings, get_settings
from psyscene.core.disposal import Cleanup, DisposalRegistry
from psyscene.core.dom import Document, Element, h
from psyscene.core.environment import EnvironmentSignals, Screen
from psyscene.core.events import EventEmitter, InputEvent
from psyscene.core.frames import AsyncioFrameClock, FrameClock, detect_frame_ms
from psyscene.core.scene import Scene, SceneOptions, SceneSetup
from psyscene.core.scheduler import FrameScheduler, ShowTiming
from psyscene.errors import ContainerDetachError, DisposalAggregateError, SceneDisposedError
from psyscene.stimuli import text_stim

logger = logging.getLogger(__name__)


@dataclass(frozen=True, slots=True)
class SceneTimingRecord:
    """Emitted by the App as `scene:timing` after every completed cycle."""

    scene: str
    index: int
    timing: ShowTiming


class App(EventEmitter):
    """Root context of one experiment session.

    Owns the root container, the frame scheduler and the environment signals,
    and produces Scenes. Disposing the App disposes every Scene it produced,
    newest first, then detaches the container.
    """

    def __init__(
        self,
        root: Element | None = None,
        *,
        clock: FrameClock,
        frame_ms: float | None = None,
        screen: Screen | None = None,
        settings: Settings | None = None,
        document: Document | None = None,
    ) -> None:
        super().__init__()
        self.settings = settings or get_settings()
        self.clock = clock
        self.frame_ms = frame_ms if frame_ms is not None else clock.frame_ms
        self.scheduler = FrameScheduler(clock, frame_ms=self.frame_ms, miss_tolerance_ms=self.settings.miss_tolerance_ms)

        self.root = root if root is not None else h("div")
        self.root.attrs["class"] = "psyscene-app"
        self.document = document
        if not self.root.is_connected:
            self.document = document or Document()
            self.document.body.append(self.root)

        self.scenes: list[Scene] = []
        self._focus_stack: list[Scene] = []
        self._cycles = 0
        self._disposed = False
        self._registry = DisposalRegistry(owner="app")
        self._registry.register(self.root.remove)
        self.environment = EnvironmentSignals(screen or Screen(), self._registry)

    def __enter__(self) -> "App":
        return self

    def __exit__(self, *exc_info: object) -> None:
        self.dispose()

    async def __aenter__(self) -> "App":
        return self

    async def __aexit__(self, *exc_info: object) -> None:
        self.dispose()

    @property
    def disposed(self) -> bool:
        return self._disposed

    @property
    def focused(self) -> Scene | None:
        return self._focus_stack[-1] if self._focus_stack else None

    def scene(
        self,
        setup: SceneSetup,
        *,
        default_props: Mapping[str, Any] | None = None,
        duration: float | None = None,
        close_on: str | Iterable[str] = (),
        record_frame_times: bool = False,
        name: str | None = None,
    ) -> Scene:
        self._ensure_alive()
        options = SceneOptions(
            default_props=dict(default_props or {}),
            duration=duration,
            close_on=close_on,
            record_frame_times=record_frame_times,
        )
        scene = Scene(self, setup, options, name=name)
        self.scenes.append(scene)
        self._registry.register(scene.dispose)
        logger.debug("created scene %r", scene.name)
        return scene

    def text(self, text: str = "", *, default_props: Mapping[str, Any] | None = None, **options: Any) -> Scene:
        """Scene showing a line of text; `show(text=...)` replaces it for one cycle."""

        props = {"text": text, **(default_props or {})}
        options.setdefault("name", "text")
        return self.scene(text_stim, default_props=props, **options)

    def collector(
        self,
        filename: str | None = None,
        stringifier: DataStringifier | None = None,
        *,
        directory: Path | None = None,
    ) -> DataCollector:
        """Data collector saved when the App is disposed. Rows get a `frame_ms` column."""

        self._ensure_alive()
        collector = DataCollector(filename, stringifier, directory=directory, extra_fields={"frame_ms": self.frame_ms})
        self._registry.register(collector.save)
        return collector

    def add_cleanup(self, cleanup: Cleanup) -> int:
        self._ensure_alive()
        return self._registry.register(cleanup)

    def dispatch_key(self, key: str, timestamp: float | None = None) -> bool:
        stamp = self.clock.now() if timestamp is None else timestamp
        return self._dispatch(InputEvent.for_key(key=key, timestamp=stamp))

    def dispatch_mouse(self, button: int | str, timestamp: float | None = None) -> bool:
        stamp = self.clock.now() if timestamp is None else timestamp
        return self._dispatch(InputEvent.for_mouse(button=button, timestamp=stamp))

    def dispose(self) -> None:
        """Dispose every scene (newest first), the collectors and signals, then detach the container."""

        if self._disposed:
            return
        self._disposed = True

        errors: list[BaseException] = []
        try:
            self.emit("dispose", self)
        except Exception as e:
            logger.warning("app dispose listener failed: %s", e)
            errors.append(e)
        try:
            self._registry.run()
        except DisposalAggregateError as e:
            for error in e.errors:
                if isinstance(error, DisposalAggregateError):
                    errors.extend(error.errors)
                else:
                    errors.append(error)

        if self.root.is_connected:
            raise ContainerDetachError("app root container is still attached after dispose") from (
                errors[0] if errors else None
            )
        logger.debug("app disposed (%d scene(s))", len(self.scenes))
        if errors:
            raise DisposalAggregateError(errors, f"disposing app: {len(errors)} cleanup(s) failed")

    def _ensure_alive(self) -> None:
        if self._disposed:
            raise SceneDisposedError("app is disposed")

    def _dispatch(self, event: InputEvent) -> bool:
        scene = self.focused
        if scene is None:
            logger.debug("input %s with no focused scene dropped", event.type)
            return False
        return scene.dispatch(event)

    def _focus(self, scene: Scene) -> None:
        if scene in self._focus_stack:
            self._focus_stack.remove(scene)
        self._focus_stack.append(scene)

    def _blur(self, scene: Scene) -> None:
        if scene in self._focus_stack:
            self._focus_stack.remove(scene)

    def _record_timing(self, scene: Scene, timing: ShowTiming) -> None:
        record = SceneTimingRecord(scene=scene.name, index=self._cycles, timing=timing)
        self._cycles += 1
        try:
            self.emit("scene:timing", record)
        except Exception:
            logger.exception("scene:timing listener failed for scene %r", scene.name)


async def create_app(
    root: Element | None = None,
    *,
    clock: FrameClock | None = None,
    screen: Screen | None = None,
    settings: Settings | None = None,
    frames_count: int | None = None,
) -> App:
    """Create an App after measuring the display's frame interval."""

    settings = settings or get_settings()
    if clock is None:
        clock = AsyncioFrameClock(refresh_hz=settings.refresh_hz)
    frame_ms = await detect_frame_ms(clock, frames_count=frames_count or settings.frames_count)
    return App(root, clock=clock, frame_ms=frame_ms, screen=screen, settings=settings)
