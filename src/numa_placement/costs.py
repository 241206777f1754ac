"""Memory access cost of a placement and its aggregation.

``AccessCost`` values form a commutative monoid: ``worst`` combines with max,
``best`` with min, ``average`` and ``bandwidth`` with addition. The same
reduction turns per-CPU costs into a per-VM cost and per-VM costs into a
fleet-wide summary, in any order or grouping.
"""

import math
from dataclasses import dataclass
from functools import reduce
from typing import Any, Dict, Iterable


@dataclass(frozen=True)
class AccessCost:
    """Distance and bandwidth figures for a placement."""
    worst: float  # maximum distance observed; -inf for the identity
    average: float  # mean distance (sum while aggregating raw per-CPU costs)
    bandwidth: float  # contention-adjusted bandwidth share, relative unit
    best: float  # minimum distance observed; +inf for the identity

    @classmethod
    def identity(cls) -> "AccessCost":
        return cls(worst=-math.inf, average=0.0, bandwidth=0.0, best=math.inf)

    def combine(self, other: "AccessCost") -> "AccessCost":
        return AccessCost(
            worst=max(self.worst, other.worst),
            average=self.average + other.average,
            bandwidth=self.bandwidth + other.bandwidth,
            best=min(self.best, other.best),
        )

    __add__ = combine

    def not_worse_than(self, baseline: "AccessCost", tolerance: float = 1e-3) -> bool:
        """True when worst, best and average are no higher than ``baseline``'s.

        ``average`` may exceed the baseline by at most ``tolerance``.
        """
        return (self.worst <= baseline.worst
                and self.best <= baseline.best
                and self.average <= baseline.average + tolerance)

    def to_dict(self) -> Dict[str, Any]:
        """Convert to dictionary."""
        return {
            'worst': self.worst,
            'average': self.average,
            'bandwidth': self.bandwidth,
            'best': self.best,
        }

    def __str__(self) -> str:
        return (f"worst={self.worst:g} average={self.average:.3f} "
                f"bandwidth={self.bandwidth:.4f} best={self.best:g}")


def reduce_costs(costs: Iterable[AccessCost]) -> AccessCost:
    """Combine costs with the monoid; an empty input yields the identity."""
    return reduce(AccessCost.combine, costs, AccessCost.identity())
