from __future__ import annotations

import math
import random
from collections.abc import MutableSequence, Sequence
from enum import StrEnum
from typing import TypeVar

T = TypeVar("T")


class CognitiveDomain(StrEnum):
    PERCEPTION = "perception"
    SPATIAL = "spatial"
    LOGIC = "logic"
    TEMPORAL = "temporal"
    META = "meta"


class SeededRng:
    """Simple seeded RNG wrapper to keep deterministic streams explicit."""

    def __init__(self, seed: int) -> None:
        self._rng = random.Random(int(seed))

    def randint(self, a: int, b: int) -> int:
        return self._rng.randint(a, b)

    def choice(self, seq: Sequence[T]) -> T:
        return self._rng.choice(seq)

    def uniform(self, a: float, b: float) -> float:
        return self._rng.uniform(a, b)

    def random(self) -> float:
        return self._rng.random()

    def chance(self, p: float) -> bool:
        """True with probability ``p``; p <= 0 never fires."""

        return p > 0.0 and self._rng.random() < p

    def shuffle(self, seq: MutableSequence[T]) -> None:
        self._rng.shuffle(seq)

    def fork(self) -> "SeededRng":
        """Derive an independent stream (one per engine) from this one."""

        return SeededRng(self._rng.randint(1, 2**31 - 1))


def clamp(x: float, lo: float, hi: float) -> float:
    return lo if x <= lo else hi if x >= hi else float(x)


def clamp01(x: float) -> float:
    return 0.0 if x <= 0.0 else 1.0 if x >= 1.0 else float(x)


def lerp(a: float, b: float, t: float) -> float:
    """Exponential-smoothing step: move ``a`` toward ``b`` by fraction ``t``."""

    return a + (b - a) * t


def mean(values: Sequence[float]) -> float:
    if not values:
        return 0.0
    return float(sum(values)) / float(len(values))


def variance(values: Sequence[float]) -> float:
    """Population variance; 0.0 for an empty sequence."""

    if not values:
        return 0.0
    m = mean(values)
    return sum((v - m) ** 2 for v in values) / float(len(values))


def std_dev(values: Sequence[float]) -> float:
    return math.sqrt(variance(values))


def linear_slope(values: Sequence[float]) -> float:
    """Least-squares slope of ``values`` against their index."""

    n = len(values)
    if n < 2:
        return 0.0
    sum_x = n * (n - 1) / 2.0
    sum_y = float(sum(values))
    sum_xy = sum(i * v for i, v in enumerate(values))
    sum_x2 = sum(i * i for i in range(n))
    denom = n * sum_x2 - sum_x * sum_x
    if denom == 0:
        return 0.0
    return (n * sum_xy - sum_x * sum_y) / denom

