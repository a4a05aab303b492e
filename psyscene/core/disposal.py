from __future__ import annotations

import logging
from collections.abc import Callable

from psyscene.errors import DisposalAggregateError

logger = logging.getLogger(__name__)

Cleanup = Callable[[], object]


class DisposalRegistry:
    """Run-once cleanup callbacks, released last-registered first.

    A failing cleanup never stops the others: errors are logged, collected and
    re-raised together as `DisposalAggregateError` once every callback ran.
    """

    def __init__(self, owner: str = "") -> None:
        self.owner = owner
        self._callbacks: dict[int, Cleanup] = {}
        self._next_token = 0
        self._done = False

    def __len__(self) -> int:
        return len(self._callbacks)

    @property
    def done(self) -> bool:
        return self._done

    def register(self, cleanup: Cleanup) -> int:
        token = self._next_token
        self._next_token += 1
        if self._done:
            # Owner is already torn down; release right away.
            logger.debug("registry %r already ran, releasing cleanup immediately", self.owner)
            cleanup()
            return token
        self._callbacks[token] = cleanup
        return token

    def unregister(self, token: int) -> bool:
        return self._callbacks.pop(token, None) is not None

    def run(self) -> None:
        if self._done:
            return
        self._done = True

        callbacks = list(self._callbacks.values())
        self._callbacks.clear()

        errors: list[BaseException] = []
        for cleanup in reversed(callbacks):
            try:
                cleanup()
            except Exception as e:
                logger.warning("cleanup %r of %r failed: %s", cleanup, self.owner, e)
                errors.append(e)

        if errors:
            raise DisposalAggregateError(errors, f"{len(errors)} cleanup callback(s) of {self.owner or 'registry'} failed")
