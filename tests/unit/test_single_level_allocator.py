"""
Unit tests for SingleLevelAllocator.

Run: pytest tests/unit/test_single_level_allocator.py -v
"""

import pytest
from decimal import Decimal

from services.single_level_allocator import SingleLevelAllocator
from models.grade import GradeRange, GRADE_COUNT
from models.weight_matrix import WeightMatrix
from exceptions import ContractViolationError, InvalidRangeError, NoCapacityError
from tests.factories import WeightRowFactory


@pytest.fixture
def allocator():
    return SingleLevelAllocator(tie_break="lowest_index")


def non_increasing(allocation, grade_range):
    indices = list(grade_range.indices())
    return all(allocation[a] >= allocation[b] for a, b in zip(indices, indices[1:]))


def actual(allocation, weights):
    return sum(a * w for a, w in zip(allocation, weights))


# ===================
# ALLOCATE TESTS
# ===================

class TestAllocate:
    """Tests for SingleLevelAllocator.allocate()"""

    def test_exact_ratio_needs_no_correction(self, allocator, uniform_matrix):
        """Weight 10 everywhere, target 300 → one unit per grade."""
        # Act
        allocation = allocator.allocate(uniform_matrix, 300)

        # Assert
        assert allocation == [1] * GRADE_COUNT
        assert actual(allocation, uniform_matrix.pooled()) == 300

    def test_residual_below_smallest_weight_is_kept(self, allocator, uniform_matrix):
        """Target 305 on weights of 10: a residual of 5 is already the closest result."""
        # Act
        allocation = allocator.allocate(uniform_matrix, 305)

        # Assert
        assert allocation == [1] * GRADE_COUNT
        assert abs(actual(allocation, uniform_matrix.pooled()) - 305) < 10

    def test_pools_all_regions(self, allocator, two_region_matrix):
        """Rows are summed before allocation (6 + 4 = 10 per grade)."""
        allocation = allocator.allocate(two_region_matrix, 300)

        assert allocation == [1] * GRADE_COUNT

    def test_zero_target_returns_zero_vector(self, allocator, uniform_matrix):
        """Zero target allocates nothing."""
        allocation = allocator.allocate(uniform_matrix, 0)

        assert allocation == [0] * GRADE_COUNT

    def test_negative_target_is_contract_violation(self, allocator, uniform_matrix):
        """Negative targets signal corrupt input."""
        with pytest.raises(ContractViolationError) as exc_info:
            allocator.allocate(uniform_matrix, -1)

        assert exc_info.value.code == "CONTRACT_VIOLATION"

    def test_zero_weight_in_range_raises_no_capacity(self, allocator):
        """All weight outside the range leaves nothing to allocate against."""
        # Arrange
        matrix = WeightMatrix.from_rows([("城区", WeightRowFactory.with_values({0: 10}))])

        # Act / Assert
        with pytest.raises(NoCapacityError) as exc_info:
            allocator.allocate(matrix, 100, GradeRange(max_index=5, min_index=9))

        assert exc_info.value.details == {"max_index": 5, "min_index": 9}

    def test_inverted_range_raises(self, allocator, uniform_matrix):
        """max_index must not be below min_index."""
        with pytest.raises(InvalidRangeError):
            allocator.allocate(uniform_matrix, 100, GradeRange(max_index=9, min_index=2))

    def test_out_of_range_grades_stay_zero(self, allocator, uniform_matrix):
        """D30..D21 only: indices 10..29 are never allocated."""
        # Act
        allocation = allocator.allocate(uniform_matrix, 100, GradeRange.of_labels("D30", "D21"))

        # Assert
        assert allocation[:10] == [1] * 10
        assert allocation[10:] == [0] * 20

    def test_fractional_target(self, allocator, uniform_matrix):
        """Decimal targets are accepted."""
        allocation = allocator.allocate(uniform_matrix, Decimal("300.4"))

        assert allocation == [1] * GRADE_COUNT


# ===================
# CORRECTION TESTS
# ===================

class TestCorrect:
    """Tests for SingleLevelAllocator.correct()"""

    def test_sheds_excess_units(self, allocator):
        """Two units everywhere against a target of one unit everywhere."""
        # Arrange
        weights = WeightRowFactory.uniform(10)

        # Act
        result = allocator.correct([2] * GRADE_COUNT, weights, 300)

        # Assert
        assert actual(result, weights) == 300
        assert non_increasing(result, GradeRange.full())

    def test_fills_largest_weight_first(self, allocator):
        """Deficit is filled one unit per grade per round, largest weight first."""
        # Arrange
        weights = WeightRowFactory.with_values({0: 50, 1: 30, 2: 20})

        # Act
        result = allocator.correct([0] * GRADE_COUNT, weights, 100)

        # Assert
        assert result[:3] == [1, 1, 1]
        assert actual(result, weights) == 100

    def test_tops_up_smallest_weight_when_closer(self, allocator):
        """Deficit 3 against a smallest weight of 4: overshooting by 1 is closer."""
        # Arrange
        weights = WeightRowFactory.with_values({0: 10, 1: 4})

        # Act
        result = allocator.correct([0] * GRADE_COUNT, weights, 27)

        # Assert
        assert result[:2] == [2, 2]
        assert actual(result, weights) == 28

    def test_no_top_up_when_not_strictly_closer(self, allocator):
        """Deficit 1 against a smallest weight of 4: stopping short is closer."""
        weights = WeightRowFactory.with_values({0: 10, 1: 4})

        result = allocator.correct([0] * GRADE_COUNT, weights, 15)

        assert result[:2] == [1, 1]
        assert actual(result, weights) == 14

    def test_clears_leftover_excess_from_smallest_holder(self, allocator):
        """Excess 2 fits no unit, so one unit leaves the smallest-weight grade."""
        # Arrange
        weights = WeightRowFactory.with_values({0: 10, 1: 4})
        allocation = WeightRowFactory.with_values({0: 1, 1: 1})

        # Act
        result = allocator.correct(allocation, weights, 12)

        # Assert
        assert result[:2] == [1, 0]
        assert abs(actual(result, weights) - 12) < 4

    def test_lower_grade_never_outgrows_higher(self, allocator):
        """A unit that would put D29 above D30 goes to D30 instead."""
        weights = WeightRowFactory.with_values({0: 10, 1: 10})

        result = allocator.correct([0] * GRADE_COUNT, weights, 10)

        assert result[:2] == [1, 0]

    def test_unordered_input_is_reordered(self, allocator):
        """Units above a better grade are pushed back toward D30."""
        # Arrange
        weights = WeightRowFactory.with_values({0: 10, 1: 10, 2: 10})
        allocation = WeightRowFactory.with_values({0: 1, 1: 1, 2: 2})

        # Act
        result = allocator.correct(allocation, weights, 40)

        # Assert
        assert result[:3] == [2, 1, 1]

    @pytest.mark.parametrize("tie_break,expected", [
        ("lowest_index", [3, 1, 0]),
        ("highest_index", [2, 1, 1]),
    ])
    def test_tie_break_between_equal_weights(self, tie_break, expected):
        """Both D30 and D28 may take the last unit; the tie-break decides."""
        weights = WeightRowFactory.with_values({0: 10, 1: 10, 2: 10})
        allocation = WeightRowFactory.with_values({0: 2, 1: 1})

        result = SingleLevelAllocator(tie_break).correct(allocation, weights, 40)

        assert result[:3] == expected

    def test_unknown_tie_break_rejected(self):
        """Only the two documented tie-breaks are accepted."""
        with pytest.raises(ValueError):
            SingleLevelAllocator("random")

    def test_zero_weight_grades_level_with_next_weighted_grade(self, allocator):
        """Grades without customers follow the next weighted grade toward D1."""
        # Arrange
        weights = WeightRowFactory.with_values({0: 10, 5: 10})

        # Act
        result = allocator.correct([0] * GRADE_COUNT, weights, 20)

        # Assert
        assert result == [1] * 6 + [0] * 24
        assert actual(result, weights) == 20

    def test_grades_outside_range_untouched(self, allocator):
        """Correction inside D25..D21 leaves other grades as given."""
        # Arrange
        weights = WeightRowFactory.uniform(10)
        allocation = WeightRowFactory.with_values({0: 7, 29: 9})

        # Act
        result = allocator.correct(allocation, weights, 50, GradeRange(max_index=5, min_index=9))

        # Assert
        assert result[0] == 7
        assert result[29] == 9
        assert result[5:10] == [1] * 5

    def test_input_is_not_mutated(self, allocator):
        """correct() returns a new list."""
        weights = WeightRowFactory.uniform(10)
        allocation = [2] * GRADE_COUNT

        allocator.correct(allocation, weights, 300)

        assert allocation == [2] * GRADE_COUNT

    def test_wrong_length_is_contract_violation(self, allocator):
        """Weight rows must have 30 grades."""
        with pytest.raises(ContractViolationError):
            allocator.correct([0] * GRADE_COUNT, [1] * 29, 10)


# ===================
# PROPERTY TESTS
# ===================

SHUFFLED = [7 + (i * 13) % 40 for i in range(GRADE_COUNT)]
INCREASING = list(range(1, GRADE_COUNT + 1))
DECREASING = list(range(GRADE_COUNT, 0, -1))
SKEWED = [500 if i == 0 else 1 + (i % 3) for i in range(GRADE_COUNT)]
SPARSE = [0 if i % 4 else 3 + i for i in range(GRADE_COUNT)]

ROWS = {
    "shuffled": SHUFFLED,
    "increasing": INCREASING,
    "decreasing": DECREASING,
    "skewed": SKEWED,
    "sparse": SPARSE,
}

RANGES = {
    "full": GradeRange.full(),
    "top": GradeRange(max_index=0, min_index=9),
    "middle": GradeRange(max_index=7, min_index=22),
    "bottom": GradeRange(max_index=25, min_index=29),
}


def first_weight(weights, grade_range):
    return next(weights[g] for g in grade_range.indices() if weights[g] > 0)


class TestAllocationProperties:
    """Invariants that hold for any row, range and target."""

    @pytest.mark.parametrize("row", sorted(ROWS))
    @pytest.mark.parametrize("span", sorted(RANGES))
    @pytest.mark.parametrize("target", [1, 7, 99, 500, 4321, 98765])
    def test_invariants(self, allocator, row, span, target):
        """Non-negative, zero outside range, ordered and within one best-grade weight."""
        # Arrange
        weights = ROWS[row]
        grade_range = RANGES[span]

        # Act
        allocation = allocator.allocate_row(weights, target, grade_range)

        # Assert
        assert all(units >= 0 for units in allocation)
        assert all(
            allocation[g] == 0
            for g in range(GRADE_COUNT) if g not in grade_range.indices()
        )
        assert non_increasing(allocation, grade_range)
        assert abs(actual(allocation, weights) - target) < first_weight(weights, grade_range)

    @pytest.mark.parametrize("target", [1, 7, 99, 250, 1000, 4321, 98765])
    def test_residual_below_smallest_weight(self, allocator, target):
        """Rows whose weights never shrink toward D1 stay within the smallest weight."""
        allocation = allocator.allocate_row(INCREASING, target)

        assert abs(actual(allocation, INCREASING) - target) < min(INCREASING)

    def test_increasing_weights_stay_ordered(self, allocator):
        """Heavier low grades still never receive more than D30."""
        allocation = allocator.allocate_row(INCREASING, 500)

        assert non_increasing(allocation, GradeRange.full())
        assert actual(allocation, INCREASING) == 500

    @pytest.mark.parametrize("target", [17, 1234, 5000])
    def test_allocation_is_deterministic(self, allocator, target):
        """Same inputs, same vector."""
        first = allocator.allocate_row(SHUFFLED, target)

        second = allocator.allocate_row(SHUFFLED, target)

        assert second == first
