"""Seeded pseudo-random source for reproducible chaos.

Every chaos decision in the pipeline is drawn from one of these, never from
the ``random`` module, so a stored seed replays a run decision for decision.
"""

from __future__ import annotations

import math
from typing import Final, Sequence, TypeVar

T = TypeVar("T")

# Numerical Recipes LCG parameters
LCG_MULTIPLIER: Final[int] = 1664525
LCG_INCREMENT: Final[int] = 1013904223
LCG_MODULUS: Final[int] = 2**32


class SeededRandom:
    """Linear congruential generator.

    ``state' = (state * 1664525 + 1013904223) mod 2**32`` and
    ``next() = state' / 2**32``. The next output depends only on the
    current state, so identical seed + identical call order gives identical
    decisions.
    """

    __slots__ = ("_state",)

    def __init__(self, seed: int) -> None:
        self._state = int(seed)

    @property
    def state(self) -> int:
        """Current internal state, for debugging and checkpointing."""
        return self._state

    @state.setter
    def state(self, value: int) -> None:
        self._state = int(value)

    def next(self) -> float:
        """Next float in [0, 1)."""
        self._state = (self._state * LCG_MULTIPLIER + LCG_INCREMENT) % LCG_MODULUS
        return self._state / LCG_MODULUS

    def next_int(self, minimum: int, maximum: int) -> int:
        """Random integer in [minimum, maximum)."""
        return math.floor(self.next() * (maximum - minimum)) + minimum

    def next_float(self, minimum: float, maximum: float) -> float:
        """Random float in [minimum, maximum)."""
        return self.next() * (maximum - minimum) + minimum

    def next_boolean(self, probability: float) -> bool:
        """True with the given probability (0.0 to 1.0)."""
        return self.next() < probability

    def choice(self, items: Sequence[T]) -> T:
        """Pick one element uniformly."""
        if not items:
            raise IndexError("Cannot choose from an empty sequence")
        return items[self.next_int(0, len(items))]

    def shuffle(self, items: Sequence[T]) -> list[T]:
        """Return a shuffled copy (Fisher-Yates)."""
        result = list(items)
        for i in range(len(result) - 1, 0, -1):
            j = self.next_int(0, i + 1)
            result[i], result[j] = result[j], result[i]
        return result
