from __future__ import annotations

from collections.abc import Iterable


class SceneError(Exception):
    """Base class for every error raised by psyscene."""


class SceneBusyError(SceneError):
    """`show()` was called while the scene still has an active cycle."""


class SceneDisposedError(SceneError):
    """An operation was attempted on a torn-down Scene or App."""


class SetupError(SceneError):
    """Stimulus code raised while building or presenting a scene.

    The original exception is chained as `__cause__`.
    """


class DataError(SceneError):
    """The setup's `data()` accessor raised when the cycle closed.

    The original exception is chained as `__cause__`. Cycle disposal has already run.
    """


class DisposalAggregateError(SceneError):
    """One or more cleanup callbacks raised.

    Every registered cleanup still ran; the failures are kept in `errors` in the order they happened.
    """

    def __init__(self, errors: Iterable[BaseException], message: str | None = None) -> None:
        self.errors: tuple[BaseException, ...] = tuple(errors)
        if message is None:
            message = f"{len(self.errors)} cleanup callback(s) failed"
        super().__init__(message)


class ContainerDetachError(SceneError):
    """The App's root container is still attached after teardown.

    This is the only unrecoverable condition: the container is the sole effectful side channel.
    """
