"""
Weighted-random prize selection.

A table is an ordered sequence of (outcome, probability). The unit line [0, 1)
is split into contiguous half-open intervals in table order, so a draw that
lands exactly on a boundary belongs to the later outcome. The random source is
always injected; nothing here touches a global RNG.
"""

import math
import random
from typing import Callable, Sequence, TypeVar

from looksia.models.ledger import PrizeType

O = TypeVar("O")

RandomSource = Callable[[], float]
RewardTable = Sequence[tuple[O, float]]

SUM_TOLERANCE = 1e-9

# pro owns [0, 0.1): a draw below 0.1 wins pro
DEFAULT_TABLE: tuple[tuple[PrizeType, float], ...] = (
    (PrizeType.PRO, 0.1),
    (PrizeType.BASIC, 0.9),
)


def reward_table(pro_probability: float) -> tuple[tuple[PrizeType, float], ...]:
    """Spin table for a configured pro probability, pro first."""
    if not 0.0 <= pro_probability <= 1.0:
        raise ValueError(f"pro probability must be in [0, 1], got {pro_probability}")
    return ((PrizeType.PRO, pro_probability), (PrizeType.BASIC, 1.0 - pro_probability))


def validate_table(table: RewardTable) -> None:
    if not table:
        raise ValueError("reward table is empty")
    total = 0.0
    for outcome, weight in table:
        if not math.isfinite(weight) or weight < 0:
            raise ValueError(f"invalid probability {weight!r} for {outcome!r}")
        total += weight
    if abs(total - 1.0) > SUM_TOLERANCE:
        raise ValueError(f"probabilities sum to {total}, expected 1")


def draw(table: RewardTable, source: RandomSource) -> O:
    validate_table(table)
    value = source()
    if not (isinstance(value, (int, float)) and 0.0 <= value < 1.0):
        raise ValueError(f"random source returned {value!r}, expected a float in [0, 1)")
    cumulative = 0.0
    for outcome, weight in table:
        cumulative += weight
        if value < cumulative:
            return outcome
    # Rounding left the top of the line uncovered
    return table[-1][0]


def system_source() -> RandomSource:
    return random.SystemRandom().random
