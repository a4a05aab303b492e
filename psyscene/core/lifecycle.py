from __future__ import annotations

from enum import StrEnum

from statemachine import State, StateMachine


class SceneState(StrEnum):
    idle = "idle"
    showing = "showing"
    closing = "closing"
    disposed = "disposed"


class SceneLifecycle(StateMachine):
    """Guards a Scene's show/close cycle.

    idle -> showing -> closing -> idle, and idle -> disposed (terminal).
    The Scene performs the side effects; the machine only allows or rejects transitions.
    """

    idle = State(SceneState.idle.value, value=SceneState.idle.value, initial=True)
    showing = State(SceneState.showing.value, value=SceneState.showing.value)
    closing = State(SceneState.closing.value, value=SceneState.closing.value)
    disposed = State(SceneState.disposed.value, value=SceneState.disposed.value, final=True)

    begin = idle.to(showing)
    request_close = showing.to(closing)
    finish = closing.to(idle)
    retire = idle.to(disposed)

    @property
    def scene_state(self) -> SceneState:
        return SceneState(str(self.current_state.value))
