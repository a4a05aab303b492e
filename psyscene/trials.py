"""One-shot trial generators for task loops."""
from __future__ import annotations

import logging
import random
import statistics
from abc import ABC, abstractmethod
from collections.abc import Iterator, Sequence
from dataclasses import dataclass
from typing import Generic, TypeVar

logger = logging.getLogger(__name__)

T = TypeVar("T")
R = TypeVar("R")


class TrialIterator(ABC, Generic[T]):
    """An iterator that can be consumed exactly once."""

    def __init__(self) -> None:
        self._used = False
        self._done = False

    def __iter__(self) -> Iterator[T]:
        if self._used:
            raise RuntimeError("trial iterator can only be used once, create a new one")
        return self

    def __next__(self) -> T:
        if self._done:
            raise StopIteration
        self._used = True
        value = self.next_value()
        if value is None:
            self._done = True
            raise StopIteration
        return value

    @abstractmethod
    def next_value(self) -> T | None:
        """Compute the next trial value, None when exhausted."""


class ResponsiveTrialIterator(TrialIterator[T], Generic[T, R]):
    """Trial iterator whose next value depends on the response to the current one."""

    @abstractmethod
    def response(self, value: R) -> None: ...


class RandomSampling(TrialIterator[T]):
    def __init__(
        self,
        candidates: Sequence[T],
        *,
        sample_size: int | None = None,
        replace: bool = True,
        rng: random.Random | None = None,
    ) -> None:
        super().__init__()
        self.candidates = list(candidates)
        self.sample_size = len(self.candidates) if sample_size is None else sample_size
        self.replace = replace
        self._rng = rng or random.Random()
        self._count = 0

        if not self.candidates:
            logger.warning("no candidates provided, iterator will not yield any values")
        elif not replace and self.sample_size > len(self.candidates):
            logger.warning("sample size should be <= the number of candidates when not replacing")
            self.sample_size = len(self.candidates)

    def next_value(self) -> T | None:
        if not self.candidates or self._count >= self.sample_size:
            return None
        self._count += 1
        idx = self._rng.randrange(len(self.candidates))
        if self.replace:
            return self.candidates[idx]
        return self.candidates.pop(idx)


@dataclass(slots=True)
class StairCaseTrial:
    value: float
    response: bool = False
    is_reversal: bool = False


class StairCase(ResponsiveTrialIterator[float, bool]):
    """Adaptive up/down staircase.

    Steps 1-down-1-up until the first reversal, then `down` consecutive correct
    responses at a level step down and `up` consecutive incorrect ones step up.
    Stops after `reversal` reversals.
    """

    def __init__(
        self,
        *,
        start: float,
        step: float,
        down: int,
        up: int,
        reversal: int,
        min: float | None = None,
        max: float | None = None,
    ) -> None:
        super().__init__()
        self.start = start
        self.step = step
        self.down = down
        self.up = up
        self.reversal = reversal
        self.min = min
        self.max = max
        self.data: list[StairCaseTrial] = []

    @property
    def reversals(self) -> int:
        return sum(1 for trial in self.data if trial.is_reversal)

    def next_value(self) -> float | None:
        n = len(self.data)
        if n == 0:
            self.data.append(StairCaseTrial(value=self.start))
            return self.start

        n_reversals = self.reversals
        if n_reversals >= self.reversal:
            return None

        prev = self.data[-1]
        value = prev.value
        if n_reversals == 0:
            value += -self.step if prev.response else self.step
        else:
            if n >= self.down and all(t.value == prev.value and t.response for t in self.data[-self.down :]):
                value -= self.step
            if n >= self.up and all(t.value == prev.value and not t.response for t in self.data[-self.up :]):
                value += self.step

        if self.min is not None and value < self.min:
            value = self.min
        if self.max is not None and value > self.max:
            value = self.max

        self.data.append(StairCaseTrial(value=value))
        return value

    def response(self, value: bool) -> None:
        if not self.data:
            logger.warning("iterate first to get a value before setting a response")
            return
        current = self.data[-1]
        current.response = value
        if len(self.data) > 1 and value != self.data[-2].response:
            current.is_reversal = True

    def threshold(self, reversal_count: int | None = None) -> float:
        """Mean value over the last `reversal_count` reversal trials."""

        count = self.reversal if reversal_count is None else reversal_count
        reversal_trials = [t for t in self.data if t.is_reversal]
        if len(reversal_trials) < count:
            logger.warning("not enough reversals, only %d found but %d requested", len(reversal_trials), count)
        valid = reversal_trials[-count:] if count > 0 else []
        if not valid:
            raise ValueError("no reversal trials to compute a threshold from")
        return statistics.fmean(t.value for t in valid)
