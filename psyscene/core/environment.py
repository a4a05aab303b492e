from __future__ import annotations

from collections.abc import Callable
from typing import Generic, TypeVar

from psyscene.core.disposal import DisposalRegistry
from psyscene.core.events import EventEmitter, Listener, Unsubscribe

T = TypeVar("T")


class Screen(EventEmitter):
    """Host display: CSS-pixel viewport and device pixel ratio.

    Host adapters call `update()` when the window is resized or moved to
    another monitor; it emits `change` with the screen itself.
    """

    def __init__(self, width: int = 1920, height: int = 1080, device_pixel_ratio: float = 1.0) -> None:
        super().__init__()
        self.width = width
        self.height = height
        self.device_pixel_ratio = device_pixel_ratio

    def update(
        self,
        *,
        width: int | None = None,
        height: int | None = None,
        device_pixel_ratio: float | None = None,
    ) -> None:
        if width is not None:
            self.width = width
        if height is not None:
            self.height = height
        if device_pixel_ratio is not None:
            self.device_pixel_ratio = device_pixel_ratio
        self.emit("change", self)


class Signal(Generic[T]):
    """A value derived from the screen, subscribed to on first read."""

    def __init__(self, screen: Screen, compute: Callable[[Screen], T], registry: DisposalRegistry) -> None:
        self._screen = screen
        self._compute = compute
        self._registry = registry
        self._emitter = EventEmitter()
        self._value: T | None = None
        self._subscribed = False

    @property
    def subscribed(self) -> bool:
        return self._subscribed

    def get(self) -> T:
        if not self._subscribed:
            self._value = self._compute(self._screen)
            unsubscribe = self._screen.on("change", self._on_change)
            self._subscribed = True

            def teardown() -> None:
                unsubscribe()
                self._subscribed = False

            self._registry.register(teardown)
        return self._value  # type: ignore[return-value]

    def watch(self, listener: Listener) -> Unsubscribe:
        self.get()
        return self._emitter.on("change", listener)

    def _on_change(self, screen: Screen) -> None:
        value = self._compute(screen)
        if value == self._value:
            return
        self._value = value
        self._emitter.emit("change", value)


class EnvironmentSignals:
    """Process-wide environment readings shared by every Scene of an App."""

    def __init__(self, screen: Screen, registry: DisposalRegistry) -> None:
        self.screen = screen
        self.device_pixel_ratio_signal: Signal[float] = Signal(screen, lambda s: s.device_pixel_ratio, registry)
        self.viewport_signal: Signal[tuple[int, int]] = Signal(
            screen,
            lambda s: (round(s.width * s.device_pixel_ratio), round(s.height * s.device_pixel_ratio)),
            registry,
        )

    @property
    def device_pixel_ratio(self) -> float:
        return self.device_pixel_ratio_signal.get()

    @property
    def viewport(self) -> tuple[int, int]:
        """Physical viewport size in device pixels."""

        return self.viewport_signal.get()
