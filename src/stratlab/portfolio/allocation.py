"""
Kelly capital allocation.

Splits a capital pool across strategies in proportion to their Kelly
fractions, scaling everything down when the fractions sum past 1 so the
aggregate never exceeds 1x leverage.
"""

from dataclasses import dataclass, field
from typing import Dict, List, Optional, Sequence


@dataclass
class AllocationPlan:
    """Per-strategy capital for one deployment."""
    total_capital: float
    total_kelly: float
    leverage_ratio: float
    allocations: List[float] = field(default_factory=list)
    weights: List[float] = field(default_factory=list)

    @property
    def total_allocated(self) -> float:
        return sum(self.allocations)

    def to_dict(self) -> Dict[str, object]:
        return {
            'total_capital': self.total_capital,
            'total_kelly': self.total_kelly,
            'leverage_ratio': self.leverage_ratio,
            'allocations': list(self.allocations),
            'weights': list(self.weights),
        }


def compute_allocations(
    kelly_fractions: Sequence[Optional[float]],
    total_capital: float,
    default_fraction: float = 0.1
) -> AllocationPlan:
    """
    Allocate ``total_capital`` by fractional Kelly with a 1x leverage cap.

    total_kelly = sum(k_i)
    leverage_ratio = 1 if total_kelly <= 1 else 1 / total_kelly
    allocation_i = total_capital * k_i * leverage_ratio

    Args:
        kelly_fractions: One fraction per strategy; None takes ``default_fraction``
        total_capital: Capital pool to split
        default_fraction: Fraction assumed for strategies without one

    Returns:
        AllocationPlan with allocations and weights in input order

    Raises:
        ValueError: Non-positive capital or a fraction outside [0, 1].
    """
    if total_capital <= 0:
        raise ValueError("total_capital must be positive")

    fractions = [default_fraction if k is None else float(k) for k in kelly_fractions]
    for k in fractions:
        if not 0.0 <= k <= 1.0:
            raise ValueError(f"kelly fraction must be within [0, 1], got {k}")

    total_kelly = sum(fractions)
    leverage_ratio = 1.0 if total_kelly <= 1.0 else 1.0 / total_kelly
    allocations = [total_capital * k * leverage_ratio for k in fractions]

    return AllocationPlan(
        total_capital=total_capital,
        total_kelly=total_kelly,
        leverage_ratio=leverage_ratio,
        allocations=allocations,
        weights=[a / total_capital for a in allocations],
    )
