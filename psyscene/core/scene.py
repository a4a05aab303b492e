from __future__ import annotations

import asyncio
import logging
from collections.abc import Callable, Mapping, Sequence
from dataclasses import dataclass
from typing import TYPE_CHECKING, Any, TypeVar

from pydantic import BaseModel, ConfigDict, Field, field_validator

from psyscene.core.disposal import Cleanup, DisposalRegistry
from psyscene.core.dom import Element, h
from psyscene.core.events import EventEmitter, InputEvent
from psyscene.core.lifecycle import SceneLifecycle, SceneState
from psyscene.core.scheduler import PresentationTimer, ShowTiming
from psyscene.errors import (
    DataError,
    DisposalAggregateError,
    SceneBusyError,
    SceneDisposedError,
    SceneError,
    SetupError,
)

if TYPE_CHECKING:
    from psyscene.app import App

logger = logging.getLogger(__name__)

E = TypeVar("E", bound=BaseException)

DataAccessor = Callable[[], Any]
NodeInput = Element | str | Sequence[Element | str]

_CONFIGURABLE = frozenset({"duration", "close_on", "record_frame_times"})


@dataclass(frozen=True, slots=True)
class SetupResult:
    """What a setup function returns: the node(s) to mount and an optional data getter."""

    node: NodeInput
    data: DataAccessor | None = None


SceneSetup = Callable[[dict[str, Any], "Scene"], SetupResult | Mapping[str, Any]]


class SceneOptions(BaseModel):
    model_config = ConfigDict(frozen=True)

    default_props: dict[str, Any] = Field(default_factory=dict)
    # Milliseconds; None keeps the scene up until close().
    duration: float | None = Field(None, ge=0)
    close_on: tuple[str, ...] = ()
    record_frame_times: bool = False

    @field_validator("close_on", mode="before")
    @classmethod
    def _one_or_many(cls, value: Any) -> Any:
        if value is None:
            return ()
        if isinstance(value, str):
            return (value,)
        return tuple(value)


@dataclass(slots=True, eq=False)
class ShowCycle:
    props: dict[str, Any]
    options: SceneOptions
    registry: DisposalRegistry
    future: asyncio.Future[Any]
    timer: PresentationTimer
    error: BaseException | None = None


def _chain(error: E, cause: BaseException) -> E:
    error.__cause__ = cause
    return error


def _as_nodes(node: NodeInput) -> list[Element | str]:
    if isinstance(node, (Element, str)):
        return [node]
    return list(node)


def _valid_node(node: Any) -> bool:
    if isinstance(node, (Element, str)):
        return True
    return isinstance(node, (list, tuple)) and all(isinstance(n, (Element, str)) for n in node)


def _coerce_result(name: str, result: Any) -> SetupResult:
    if isinstance(result, Mapping) and "node" in result:
        result = SetupResult(node=result["node"], data=result.get("data"))
    if not isinstance(result, SetupResult):
        raise SetupError(f"setup {name!r} must return a SetupResult or a mapping with 'node', got {type(result).__name__}")
    if not _valid_node(result.node):
        raise SetupError(
            f"setup {name!r} returned node of type {type(result.node).__name__}; "
            "expected an element, a string or a list of them"
        )
    if result.data is not None and not callable(result.data):
        raise SetupError(f"setup {name!r} returned a non-callable data accessor")
    return result


class Scene(EventEmitter):
    """A reusable presentation slot.

    The setup function runs once, in the constructor, and builds the scene's
    subtree. Every `show()` reuses that subtree: it merges props over the
    defaults, emits `scene:show` so the setup can re-render, and presents the
    subtree on the frame grid until the deadline or `close()`.

    The scene is the setup's context: setups subscribe with `on()`, end a cycle
    early with `close()`, and register cleanups with `defer()` (this cycle)
    or `add_cleanup()` (scene lifetime).
    """

    def __init__(self, app: App, setup: SceneSetup, options: SceneOptions, *, name: str | None = None) -> None:
        super().__init__()
        self.app = app
        self.name = name or getattr(setup, "__name__", "scene")
        self.root = h(
            "div",
            {"class": "psyscene-scene", "tabindex": -1, "data-scene": self.name},
            style={"visibility": "hidden"},
        )
        self._default_options = options
        self._options = options
        self._lifecycle = SceneLifecycle()
        self._registry = DisposalRegistry(owner=f"scene {self.name!r}")
        self._cycle: ShowCycle | None = None
        self._finishing = False
        self._disposing = False
        self._dispose_pending = False
        self.timing: ShowTiming | None = None

        try:
            result = self.use(setup, dict(options.default_props))
            self.root.append(*_as_nodes(result.node))
        except Exception as e:
            self._registry.run()
            if isinstance(e, SceneError):
                raise
            raise _chain(SetupError(f"setup {self.name!r} returned nodes that cannot be mounted: {e}"), e)
        self._data = result.data
        app.root.append(self.root)
        self._registry.register(self.root.remove)

    def __repr__(self) -> str:
        return f"<Scene {self.name!r} {self.state.value}>"

    def __enter__(self) -> "Scene":
        return self

    def __exit__(self, *exc_info: object) -> None:
        self.dispose()

    async def __aenter__(self) -> "Scene":
        return self

    async def __aexit__(self, *exc_info: object) -> None:
        self.dispose()

    @property
    def state(self) -> SceneState:
        return self._lifecycle.scene_state

    @property
    def options(self) -> SceneOptions:
        return self._options

    @property
    def props(self) -> dict[str, Any] | None:
        """Props of the active cycle, None when idle."""

        return self._cycle.props if self._cycle is not None else None

    def use(self, setup: SceneSetup, props: dict[str, Any] | None = None) -> SetupResult:
        """Run another setup inside this scene and return its node and data getter."""

        name = getattr(setup, "__name__", repr(setup))
        try:
            result = setup(props if props is not None else {}, self)
        except SceneError:
            raise
        except Exception as e:
            raise _chain(SetupError(f"setup {name!r} raised: {e}"), e)
        return _coerce_result(name, result)

    def config(self, **options: Any) -> "Scene":
        """Override `duration`, `close_on` or `record_frame_times` for the next show only."""

        unknown = set(options) - _CONFIGURABLE
        if unknown:
            raise ValueError(f"cannot configure {sorted(unknown)}; allowed: {sorted(_CONFIGURABLE)}")
        base = self._default_options
        fields = {name: getattr(base, name) for name in SceneOptions.model_fields}
        fields.update(options)
        self._options = SceneOptions(**fields)
        return self

    def add_cleanup(self, cleanup: Cleanup) -> int:
        if self.state is SceneState.disposed:
            raise SceneDisposedError(f"scene {self.name!r} is disposed")
        return self._registry.register(cleanup)

    def defer(self, cleanup: Cleanup) -> int:
        """Register a cleanup that runs when the current cycle closes."""

        if self._cycle is None:
            raise SceneError(f"scene {self.name!r} has no active show cycle")
        return self._cycle.registry.register(cleanup)

    def dispatch(self, event: InputEvent | str, payload: Any = None) -> bool:
        """Deliver an input event. Ignored unless the scene is showing."""

        if self.state is not SceneState.showing:
            return False
        if isinstance(event, InputEvent):
            self.emit(event.type, event)
        else:
            self.emit(event, payload)
        return True

    async def show(self, props: Mapping[str, Any] | None = None, /, **overrides: Any) -> Any:
        """Present the scene once and return the setup's `data()` value.

        Props are merged shallowly: defaults, then `props`, then keyword overrides.
        """

        state = self.state
        if state is SceneState.disposed:
            raise SceneDisposedError(f"scene {self.name!r} is disposed")
        if state is not SceneState.idle:
            raise SceneBusyError(f"scene {self.name!r} is already {state.value}")

        options, self._options = self._options, self._default_options
        merged = {**options.default_props, **(props or {}), **overrides}

        timer = self.app.scheduler.present(
            duration=options.duration,
            commit=self._commit,
            on_offset=self._on_offset,
        )
        cycle = ShowCycle(
            props=merged,
            options=options,
            registry=DisposalRegistry(owner=f"cycle of scene {self.name!r}"),
            future=asyncio.get_running_loop().create_future(),
            timer=timer,
        )
        self._lifecycle.begin()
        self._cycle = cycle
        logger.debug("scene %r show %r", self.name, merged)

        if options.duration is not None and self.app.settings.dev:
            self.app.scheduler.check_duration(options.duration)

        try:
            self.emit("scene:show", merged)
        except Exception as e:
            self._fail(cycle, _chain(SetupError(f"scene {self.name!r} failed to render: {e}"), e))
        else:
            if self._cycle is cycle:
                for event in options.close_on:
                    cycle.registry.register(self.on(event, self._close_on_event))
                # Tick every presented frame; `scene:frame` listeners may subscribe mid-cycle.
                timer.on_frame = self._on_frame
                timer.start()

        try:
            return await cycle.future
        except asyncio.CancelledError:
            if self._cycle is cycle:
                logger.debug("scene %r show cancelled, closing", self.name)
                self._abort(cycle)
            raise

    def close(self) -> None:
        """End the current cycle on the next frame. No-op unless showing."""

        cycle = self._cycle
        if cycle is None or self.state is not SceneState.showing:
            return
        self._lifecycle.request_close()
        cycle.timer.request_close()

    def dispose(self) -> None:
        """Tear the scene down for good. Safe to call more than once."""

        if self.state is SceneState.disposed or self._disposing:
            return
        if self._finishing:
            # Called from a cleanup of the closing cycle; finish that first.
            self._dispose_pending = True
            return
        self._disposing = True

        if self._cycle is not None:
            self._abort(self._cycle)

        errors: list[BaseException] = []
        try:
            self.emit("dispose", self)
        except Exception as e:
            logger.warning("dispose listener of scene %r failed: %s", self.name, e)
            errors.append(e)
        try:
            self._registry.run()
        except DisposalAggregateError as e:
            errors.extend(e.errors)
        finally:
            self.root.remove()
            self._lifecycle.retire()
            logger.debug("scene %r disposed", self.name)

        if errors:
            raise DisposalAggregateError(errors, f"disposing scene {self.name!r}: {len(errors)} cleanup(s) failed")

    def _close_on_event(self, _event: Any) -> None:
        self.close()

    def _commit(self) -> None:
        self.root.style["visibility"] = "visible"
        self.app._focus(self)

    def _on_frame(self, timestamp: float) -> None:
        cycle = self._cycle
        if cycle is None:
            return
        if cycle.options.record_frame_times:
            cycle.timer.timing.frame_times.append(timestamp)
        try:
            self.emit("scene:frame", timestamp)
        except Exception as e:
            self._fail(cycle, _chain(SetupError(f"scene {self.name!r} failed on frame: {e}"), e))

    def _on_offset(self, _timestamp: float) -> None:
        if self._cycle is not None:
            self._finish(self._cycle)

    def _fail(self, cycle: ShowCycle, error: BaseException) -> None:
        if cycle.error is None:
            cycle.error = error
        self._abort(cycle)

    def _abort(self, cycle: ShowCycle) -> None:
        cycle.timer.abort()
        self._finish(cycle)

    def _finish(self, cycle: ShowCycle) -> None:
        if self._cycle is not cycle or self._finishing:
            return
        self._finishing = True
        try:
            if self.state is SceneState.showing:
                self._lifecycle.request_close()
            self.root.style["visibility"] = "hidden"
            self.app._blur(self)

            timing = cycle.timer.timing
            error = cycle.error
            disposal_error: DisposalAggregateError | None = None
            result: Any = None

            try:
                self.emit("scene:close", timing)
            except Exception as e:
                if error is None:
                    error = _chain(SetupError(f"scene {self.name!r} failed to close: {e}"), e)
            try:
                cycle.registry.run()
            except DisposalAggregateError as e:
                disposal_error = e

            if error is None and self._data is not None:
                try:
                    result = self._data()
                except Exception as e:
                    error = _chain(DataError(f"data() of scene {self.name!r} raised: {e}"), e)

            if error is None:
                error = disposal_error
            elif disposal_error is not None:
                logger.warning("scene %r: %s (superseded by %r)", self.name, disposal_error, error)

            self._cycle = None
            self.timing = timing
            self._lifecycle.finish()
            logger.debug("scene %r closed after %s ms", self.name, timing.duration)

            if not cycle.future.done():
                if error is not None:
                    cycle.future.set_exception(error)
                else:
                    cycle.future.set_result(result)
            self.app._record_timing(self, timing)
        finally:
            self._finishing = False

        if self._dispose_pending:
            self._dispose_pending = False
            try:
                self.dispose()
            except DisposalAggregateError as e:
                logger.warning("deferred dispose of scene %r: %s", self.name, e)
