from __future__ import annotations

from collections.abc import Callable
from dataclasses import dataclass
from typing import Any, Literal

SceneEventName = Literal[
    "scene:show",
    "scene:frame",
    "scene:close",
    "dispose",
]

MouseButton = Literal["left", "middle", "right", "unknown"]

_BUTTONS: tuple[MouseButton, ...] = ("left", "middle", "right")

Listener = Callable[[Any], Any]
Unsubscribe = Callable[[], None]


@dataclass(frozen=True, slots=True)
class InputEvent:
    """A participant response delivered by the host (key press or mouse button)."""

    type: str
    timestamp: float
    key: str | None = None
    button: MouseButton | None = None

    @staticmethod
    def for_key(*, key: str, timestamp: float) -> "InputEvent":
        return InputEvent(type=f"key:{key}", timestamp=timestamp, key=key)

    @staticmethod
    def for_mouse(*, button: int | str, timestamp: float) -> "InputEvent":
        if isinstance(button, int):
            name: MouseButton = _BUTTONS[button] if 0 <= button < len(_BUTTONS) else "unknown"
        else:
            name = button if button in _BUTTONS else "unknown"  # type: ignore[assignment]
        return InputEvent(type=f"mouse:{name}", timestamp=timestamp, button=name)


class _Entry:
    __slots__ = ("listener",)

    def __init__(self, listener: Listener) -> None:
        self.listener = listener


class EventEmitter:
    """Minimal synchronous publish/subscribe.

    Contract:
      - `on()` returns an unsubscribe callable that removes exactly that registration.
      - `emit()` calls the listeners registered at emit time, in registration order.
      - no isolation: a raising listener propagates and the remaining listeners are skipped.
      - events emitted without listeners are dropped.
    """

    def __init__(self) -> None:
        self._listeners: dict[str, list[_Entry]] = {}

    def on(self, event: str, listener: Listener) -> Unsubscribe:
        entry = _Entry(listener)
        self._listeners.setdefault(event, []).append(entry)

        def unsubscribe() -> None:
            self._remove(event, entry)

        return unsubscribe

    def once(self, event: str, listener: Listener) -> Unsubscribe:
        unsubscribe: Unsubscribe

        def wrapper(payload: Any) -> Any:
            unsubscribe()
            return listener(payload)

        unsubscribe = self.on(event, wrapper)
        return unsubscribe

    def off(self, event: str, listener: Listener) -> None:
        for entry in self._listeners.get(event, ()):
            if entry.listener == listener:
                self._remove(event, entry)
                return

    def emit(self, event: str, payload: Any = None) -> None:
        entries = self._listeners.get(event)
        if not entries:
            return
        for entry in list(entries):
            entry.listener(payload)

    def listener_count(self, event: str) -> int:
        return len(self._listeners.get(event, ()))

    def event_names(self) -> list[str]:
        return [name for name, entries in self._listeners.items() if entries]

    def _remove(self, event: str, entry: _Entry) -> None:
        entries = self._listeners.get(event)
        if not entries:
            return
        for i, existing in enumerate(entries):
            if existing is entry:
                del entries[i]
                break
        if not entries:
            self._listeners.pop(event, None)
