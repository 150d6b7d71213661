"""
Helpers for allocation vectors and weight rows.

Vectors are plain 30-element int lists, index 0 = D30.
"""

from decimal import Decimal, ROUND_HALF_UP
from typing import Optional, Sequence

from models.grade import GradeRange, zero_vector
from models.weight_matrix import WeightMatrix


def round_half_up(value: Decimal) -> int:
    """Round to the nearest int, .5 away from zero (2.5 → 3)."""
    return int(Decimal(value).quantize(Decimal("1"), rounding=ROUND_HALF_UP))


def actual_amount(allocation: Sequence[int], weights: Sequence[int]) -> int:
    """Σ allocation[g] × weights[g]."""
    return sum(a * w for a, w in zip(allocation, weights))


def matrix_actual_amount(
    allocation_matrix: Sequence[Sequence[int]],
    weight_matrix: WeightMatrix
) -> int:
    """Σ over regions of the row's actual amount."""
    return sum(
        actual_amount(vector, row.weights)
        for vector, row in zip(allocation_matrix, weight_matrix.rows)
    )


def restrict_to_range(vector: Sequence[int], grade_range: GradeRange) -> list[int]:
    """Copy of vector with every grade outside the range set to zero."""
    restricted = zero_vector()
    for g in grade_range.indices():
        restricted[g] = vector[g]
    return restricted


def broadcast(vector: Sequence[int], count: int) -> list[list[int]]:
    """One independent copy of vector per region."""
    return [list(vector) for _ in range(count)]


def enforce_monotonic(vector: Sequence[int], indices: Sequence[int]) -> list[int]:
    """
    Make vector non-increasing along indices while keeping its unit total.

    Walking from D30 toward D1, a grade holding more than the grade before
    it is clipped to that value. The clipped units go back toward D30,
    raising each earlier grade at most to its own predecessor; whatever is
    left lands on the first index.

    >>> enforce_monotonic([3, 1, 4] + [0] * 27, [0, 1, 2])[:3]
    [4, 3, 1]
    """
    result = list(vector)
    for i in range(1, len(indices)):
        upper, current = indices[i - 1], indices[i]
        if result[current] <= result[upper]:
            continue

        excess = result[current] - result[upper]
        result[current] = result[upper]
        for j in range(i - 1, 0, -1):
            if excess <= 0:
                break
            capacity = result[indices[j - 1]] - result[indices[j]]
            if capacity > 0:
                delta = min(excess, capacity)
                result[indices[j]] += delta
                excess -= delta
        if excess > 0:
            result[indices[0]] += excess
    return result


def validate_no_zero_rows_in_range(
    weight_matrix: WeightMatrix,
    grade_range: GradeRange
) -> Optional[str]:
    """
    Message naming regions whose weights are all zero inside the range.

    Returns None when every region has weight somewhere in the range.
    """
    zero_regions = weight_matrix.zero_rows(grade_range)
    if not zero_regions:
        return None
    return (
        f"Regions with no customers in {grade_range}: "
        f"{', '.join(zero_regions)}"
    )
