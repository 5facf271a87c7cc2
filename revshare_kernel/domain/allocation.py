"""
Allocation -- Proportional distribution of a settlement adjustment.

Responsibility:
    Splits a minimum-guarantee shortfall across a month's split links in
    proportion to each link's raw partner share.

Architecture position:
    Kernel > Domain -- pure functional core, zero I/O.

Invariants enforced:
    - Each portion is round_half_up(adjustment * weight / total).
    - The allocations sum to the adjustment exactly.  The residual left by
      rounding goes to the heaviest weight; ties go to the earliest entry.
    - Input order is preserved in the output.

Failure modes:
    - ValueError when the weights total zero or any weight is negative.
      Callers detect the zero-revenue month before allocating.
"""

from collections.abc import Sequence
from decimal import Decimal
from typing import TypeVar

from revshare_kernel.db.types import round_minor_units

K = TypeVar("K")


def allocate_proportionally(
    adjustment: int,
    weights: Sequence[tuple[K, int]],
) -> list[tuple[K, int]]:
    """
    Distribute ``adjustment`` across ``weights`` proportionally.

    Args:
        adjustment: Amount to distribute, in minor units.
        weights: ``(key, weight)`` pairs in a stable order (earliest first).

    Returns:
        ``(key, portion)`` pairs in the same order, summing to ``adjustment``.

    Example:
        >>> allocate_proportionally(20000, [("a", 10000), ("b", 15000), ("c", 5000)])
        [('a', 6667), ('b', 10000), ('c', 3333)]
    """
    if not weights:
        raise ValueError("Cannot allocate across an empty set")
    if any(weight < 0 for _, weight in weights):
        raise ValueError("Allocation weights must be non-negative")

    total = sum(weight for _, weight in weights)
    if total == 0:
        raise ValueError("Cannot allocate against a zero total")

    portions = [
        round_minor_units(Decimal(adjustment) * Decimal(weight) / Decimal(total))
        for _, weight in weights
    ]

    residual = adjustment - sum(portions)
    if residual:
        heaviest = 0
        for index, (_, weight) in enumerate(weights):
            if weight > weights[heaviest][1]:
                heaviest = index
        portions[heaviest] += residual

    return [(key, portion) for (key, _), portion in zip(weights, portions)]
