"""Automatic analysis heuristic.

Turns the raw readings of an acquisition into defect indications:

    count     = round_half_up(mean(int(r) for r in readings)) % modulus
    per item  = "Detected <kind>, position <pos>"

Kind and position come from an ``IndicationGenerator`` so tests can pin
them; the default draws them at random. Only the shape of the output is
a contract: how many indications, each with a known kind and a position
inside the tube.
"""

from __future__ import annotations

import math
import random
from typing import Optional, Protocol, Sequence

from provenance.errors import InvalidInput


class IndicationGenerator(Protocol):
    def defect_kind(self, kinds: Sequence[str]) -> str: ...

    def position(self, tube_length: float) -> float: ...


class RandomIndicationGenerator:
    """Uniform choice of defect kind and position in [0, tube_length)."""

    def __init__(self, rng: Optional[random.Random] = None) -> None:
        self._rng = rng or random.Random()

    def defect_kind(self, kinds: Sequence[str]) -> str:
        return self._rng.choice(list(kinds))

    def position(self, tube_length: float) -> float:
        return self._rng.random() * tube_length


def _reading(value: str) -> int:
    # Readings are truncated toward zero, "12.7" counts as 12
    try:
        return int(float(value))
    except (ValueError, OverflowError):
        raise InvalidInput(f"Non-numeric reading in raw data: {value!r}") from None


def indication_count(raw_data: Sequence[str], modulus: int) -> int:
    """Number of indications for a set of readings.

    No readings means no indications. A negative mean also yields none.
    """
    if not raw_data:
        return 0
    total = sum(_reading(v) for v in raw_data)
    rounded = math.floor(total / len(raw_data) + 0.5)
    if rounded <= 0:
        return 0
    return rounded % modulus


def automatic_indications(
    raw_data: Sequence[str],
    tube_length: float,
    generator: IndicationGenerator,
    defect_kinds: Sequence[str],
    modulus: int,
) -> list[str]:
    indications = []
    for _ in range(indication_count(raw_data, modulus)):
        kind = generator.defect_kind(defect_kinds)
        pos = generator.position(tube_length)
        indications.append(f"Detected {kind}, position {pos}")
    return indications
