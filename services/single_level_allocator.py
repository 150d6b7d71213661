"""
Single-level allocator.

Distributes a target volume over the 30 grades of one pooled weight row so
that Σ allocation[g] × weight[g] lands as close to the target as whole units
allow, while no grade receives more than a better grade inside the range.

Algorithm:
1. SEED every grade in range with round_half_up(target / Σ weight)
2. ORDER the weighted grades so none exceeds its predecessor
3. SHED whole units, largest weight first, while a unit fits in the excess
4. CLEAR leftover excess by taking one unit from the smallest-weight grade
5. FILL one unit per grade per round, largest weight first, while it fits
6. TOP UP the smallest-weight grade when overshooting is closer than stopping
7. LEVEL zero-weight grades in range to the next weighted grade toward D1

Steps 3-6 only move a unit where the order survives it. Since the best
weighted grade can always take another unit, |actual - target| stays below
its weight, which is the smallest nonzero weight whenever weights do not
shrink toward D1.
"""

from decimal import Decimal
from typing import Optional, Sequence, Union

import structlog

from config import settings
from exceptions import ContractViolationError, NoCapacityError
from models.grade import GRADE_COUNT, GradeRange, zero_vector
from models.weight_matrix import WeightMatrix
from utils.matrix_utils import enforce_monotonic, round_half_up

logger = structlog.get_logger(__name__)

Number = Union[int, Decimal, str]

TIE_BREAK_LOWEST_INDEX = "lowest_index"
TIE_BREAK_HIGHEST_INDEX = "highest_index"


class SingleLevelAllocator:
    """
    Proportional allocator with residual correction.

    Pure and stateless apart from the tie-break, so one instance can be
    shared across threads.
    """

    def __init__(self, tie_break: Optional[str] = None):
        self.tie_break = tie_break or settings.tie_break
        if self.tie_break not in (TIE_BREAK_LOWEST_INDEX, TIE_BREAK_HIGHEST_INDEX):
            raise ValueError(f"Unknown tie_break: {self.tie_break!r}")

    def allocate(
        self,
        weight_matrix: WeightMatrix,
        target: Number,
        grade_range: Optional[GradeRange] = None
    ) -> list[int]:
        """
        Allocate a target against the pooled rows of a weight matrix.

        Args:
            weight_matrix: Regions to pool
            target: Planned volume (>= 0)
            grade_range: Allowed grades (None = D30..D1)

        Returns:
            30-element allocation vector, zero outside the range

        Raises:
            InvalidRangeError: Malformed grade range
            NoCapacityError: Pooled weights sum to zero inside the range
            ContractViolationError: Negative target
        """
        grade_range = (grade_range or GradeRange.full()).ensure_valid()
        return self.allocate_row(weight_matrix.pooled(grade_range), target, grade_range)

    def allocate_row(
        self,
        weights: Sequence[int],
        target: Number,
        grade_range: Optional[GradeRange] = None
    ) -> list[int]:
        """Same as allocate, on an already pooled 30-grade row."""
        grade_range = (grade_range or GradeRange.full()).ensure_valid()
        target = self._check_target(target)
        self._check_weights(weights)

        if target == 0:
            return zero_vector()

        total = sum(weights[g] for g in grade_range.indices())
        if total == 0:
            logger.warning(
                "no_capacity_in_range",
                grade_range=str(grade_range),
                target=str(target)
            )
            raise NoCapacityError(grade_range.max_index, grade_range.min_index)

        seed = round_half_up(target / Decimal(total))
        allocation = zero_vector()
        for g in grade_range.indices():
            allocation[g] = seed

        logger.debug(
            "allocation_seeded",
            target=str(target),
            total_weight=total,
            seed=seed
        )

        return self.correct(allocation, weights, target, grade_range)

    def correct(
        self,
        allocation: Sequence[int],
        weights: Sequence[int],
        target: Number,
        grade_range: Optional[GradeRange] = None
    ) -> list[int]:
        """
        Residual-correction phase on its own.

        Only grades inside the range count toward the target, and only they
        are moved. Weighted grades in range are first put in non-increasing
        order, then moved one unit at a time without breaking that order;
        zero-weight grades in range end up level with the next weighted grade
        toward D1. A zero target yields an all-zero vector. Returns a new
        vector; the input is left as is.
        """
        grade_range = (grade_range or GradeRange.full()).ensure_valid()
        target = self._check_target(target)
        self._check_weights(weights)

        if len(allocation) != GRADE_COUNT:
            raise ContractViolationError(
                f"Allocation has {len(allocation)} grades, expected {GRADE_COUNT}"
            )

        if target == 0:
            return zero_vector()

        chain = [g for g in grade_range.indices() if weights[g] > 0]
        if not chain:
            raise NoCapacityError(grade_range.max_index, grade_range.min_index)

        result = enforce_monotonic(allocation, chain)
        order = self._correction_order(weights, grade_range)
        above = dict(zip(chain[1:], chain))
        below = dict(zip(chain, chain[1:]))

        def in_range_amount() -> int:
            return sum(result[g] * weights[g] for g in chain)

        def can_remove(g: int) -> bool:
            return result[g] > 0 and (g not in below or result[g] > result[below[g]])

        def can_add(g: int) -> bool:
            return g not in above or result[above[g]] > result[g]

        actual = in_range_amount()

        if actual > target:
            excess = Decimal(actual) - target
            changed = True
            while excess > 0 and changed:
                changed = False
                for g in order:
                    if weights[g] <= excess and can_remove(g):
                        result[g] -= 1
                        excess -= weights[g]
                        changed = True

            if excess > 0:
                for g in reversed(order):
                    if can_remove(g):
                        result[g] -= 1
                        break

            actual = in_range_amount()

        deficit = target - Decimal(actual)
        changed = True
        while deficit > 0 and changed:
            changed = False
            for g in order:
                if weights[g] <= deficit and can_add(g):
                    result[g] += 1
                    deficit -= weights[g]
                    changed = True

        if deficit > 0:
            for g in reversed(order):
                if can_add(g):
                    if weights[g] - deficit < deficit:
                        result[g] += 1
                    break

        self._level_zero_weight_grades(result, weights, grade_range)

        logger.debug(
            "allocation_corrected",
            target=str(target),
            actual=in_range_amount()
        )
        return result

    # ===================
    # HELPERS
    # ===================

    def _correction_order(self, weights: Sequence[int], grade_range: GradeRange) -> list[int]:
        """Weighted grades in range, largest weight first, then by tie-break."""
        sign = 1 if self.tie_break == TIE_BREAK_LOWEST_INDEX else -1
        return sorted(
            (g for g in grade_range.indices() if weights[g] > 0),
            key=lambda g: (-weights[g], sign * g)
        )

    @staticmethod
    def _level_zero_weight_grades(
        result: list[int],
        weights: Sequence[int],
        grade_range: GradeRange
    ) -> None:
        # Walks D1-ward end first; trailing zero-weight grades drop to 0.
        level = 0
        for g in reversed(grade_range.indices()):
            if weights[g] > 0:
                level = result[g]
            else:
                result[g] = level

    @staticmethod
    def _check_target(target: Number) -> Decimal:
        target = Decimal(target)
        if target < 0:
            raise ContractViolationError(
                f"Negative target: {target}",
                details={"target": str(target)}
            )
        return target

    @staticmethod
    def _check_weights(weights: Sequence[int]) -> None:
        if len(weights) != GRADE_COUNT:
            raise ContractViolationError(
                f"Weight row has {len(weights)} grades, expected {GRADE_COUNT}",
                details={"length": len(weights)}
            )
        for index, weight in enumerate(weights):
            if weight < 0:
                raise ContractViolationError(
                    f"Negative weight {weight} at grade index {index}",
                    details={"index": index, "weight": weight}
                )


# Singleton instance
_allocator: Optional[SingleLevelAllocator] = None


def get_single_level_allocator() -> SingleLevelAllocator:
    """Get or create SingleLevelAllocator instance."""
    global _allocator
    if _allocator is None:
        _allocator = SingleLevelAllocator()
    return _allocator
