"""
Unit tests for grade, matrix and request models.

Run: pytest tests/unit/test_models.py -v
"""

import pytest
from decimal import Decimal
from pydantic import ValidationError

from models.allocation import AllocationPeriod, AllocationRequest, DeliveryKind, DeliveryScope
from models.batch import OutcomeStatus, ProductOutcome
from models.grade import (
    GRADE_LABELS,
    GradeRange,
    grade_label_to_index,
    index_to_grade_label,
)
from models.weight_matrix import RegionWeights, WeightMatrix
from exceptions import ContractViolationError, InvalidGradeLabelError, InvalidRangeError
from tests.factories import WeightRowFactory


# ===================
# GRADE LABEL TESTS
# ===================

class TestGradeLabels:
    """Tests for label ↔ index mapping."""

    def test_axis_orientation(self):
        """D30 is index 0, D1 is index 29."""
        assert GRADE_LABELS[0] == "D30"
        assert GRADE_LABELS[-1] == "D1"
        assert grade_label_to_index("D30") == 0
        assert grade_label_to_index("D1") == 29

    def test_label_parsing_is_lenient(self):
        """Case and whitespace are ignored, leading zeros accepted."""
        assert grade_label_to_index(" d15 ") == 15
        assert grade_label_to_index("D05") == 25

    @pytest.mark.parametrize("label", ["D0", "D31", "X5", "", None, 30])
    def test_invalid_labels_rejected(self, label):
        with pytest.raises(InvalidGradeLabelError):
            grade_label_to_index(label)

    def test_index_to_label(self):
        assert index_to_grade_label(10) == "D20"

        with pytest.raises(InvalidRangeError):
            index_to_grade_label(30)


# ===================
# GRADE RANGE TESTS
# ===================

class TestGradeRange:
    """Tests for GradeRange"""

    def test_blank_labels_default_to_full_axis(self):
        assert GradeRange.of_labels(None, " ") == GradeRange.full()

    def test_of_labels(self):
        grade_range = GradeRange.of_labels("D25", "D10")

        assert grade_range.max_index == 5
        assert grade_range.min_index == 20
        assert grade_range.width == 16
        assert str(grade_range) == "D25..D10"

    def test_inverted_range_invalid(self):
        """D10..D25 puts the lower grade first."""
        with pytest.raises(InvalidRangeError):
            GradeRange.of_labels("D10", "D25").ensure_valid()

    def test_intersect(self):
        a = GradeRange(max_index=0, min_index=9)
        b = GradeRange(max_index=5, min_index=20)

        assert a.intersect(b) == GradeRange(max_index=5, min_index=9)
        assert a.intersect(GradeRange(max_index=10, min_index=12)) is None

    def test_is_frozen(self):
        grade_range = GradeRange.full()

        with pytest.raises(ValidationError):
            grade_range.max_index = 3


# ===================
# WEIGHT MATRIX TESTS
# ===================

class TestWeightMatrix:
    """Tests for RegionWeights / WeightMatrix"""

    def test_wrong_length_rejected(self):
        with pytest.raises(ContractViolationError):
            RegionWeights(region="城区", weights=(1, 2, 3))

    def test_negative_weight_rejected(self):
        with pytest.raises(ContractViolationError):
            WeightMatrix.from_rows([("城区", WeightRowFactory.with_values({4: -1}))])

    def test_pooled_zeroes_outside_range(self, two_region_matrix):
        pooled = two_region_matrix.pooled(GradeRange(max_index=0, min_index=1))

        assert pooled[:2] == [10, 10]
        assert pooled[2:] == [0] * 28
        assert two_region_matrix.total() == 300

    def test_zero_rows(self):
        matrix = WeightMatrix.from_mapping({
            "城区": WeightRowFactory.with_values({0: 3}),
            "郊区": WeightRowFactory.with_values({29: 3}),
        })

        assert matrix.zero_rows(GradeRange(max_index=0, min_index=9)) == ["郊区"]

    def test_subset_keeps_matrix_order(self, two_region_matrix):
        subset = two_region_matrix.subset(["郊区", "城区"])

        assert subset.regions == ["城区", "郊区"]
        assert two_region_matrix.subset(["北区"]).is_empty


# ===================
# DELIVERY SCOPE TESTS
# ===================

class TestDeliveryScope:
    """Tests for DeliveryScope"""

    def test_city_wide_label_wins(self):
        assert DeliveryScope.from_area_text("全市").kind == DeliveryKind.CITY_WIDE
        assert DeliveryScope.from_area_text("").kind == DeliveryKind.CITY_WIDE
        assert DeliveryScope.from_area_text("城区,全市").kind == DeliveryKind.CITY_WIDE

    def test_single_and_multi(self):
        single = DeliveryScope.from_area_text(" 城区 ")
        multi = DeliveryScope.from_area_text("城区，郊区")

        assert single.kind == DeliveryKind.SINGLE_REGION
        assert single.regions == ["城区"]
        assert multi.kind == DeliveryKind.MULTI_REGION_UNIFORM
        assert multi.regions == ["城区", "郊区"]

    def test_extension_makes_ratio_scope(self):
        scope = DeliveryScope.from_area_text(
            "城区、郊区",
            extension_kind="市场类型",
            group_ratios={"城市": Decimal("0.6"), "农村": Decimal("0.4")}
        )

        assert scope.kind == DeliveryKind.MULTI_REGION_RATIO

    def test_single_region_needs_exactly_one(self):
        with pytest.raises(ValidationError):
            DeliveryScope(kind=DeliveryKind.SINGLE_REGION, regions=["城区", "郊区"])

    def test_multi_region_needs_regions(self):
        with pytest.raises(ValidationError):
            DeliveryScope(kind=DeliveryKind.MULTI_REGION_UNIFORM)

    def test_negative_ratio_rejected(self):
        with pytest.raises(ValidationError):
            DeliveryScope.ratio(["城区"], "市场类型", {"城市": Decimal(-1)})


# ===================
# REQUEST / OUTCOME TESTS
# ===================

class TestAllocationRequest:
    """Tests for AllocationRequest and related value objects."""

    def test_negative_target_rejected(self):
        with pytest.raises(ValidationError):
            AllocationRequest(product_code="P1", target=Decimal(-1))

    def test_defaults(self):
        request = AllocationRequest(product_code="P1", target=Decimal(10))

        assert request.scope.kind == DeliveryKind.CITY_WIDE
        assert request.effective_range == GradeRange.full()
        assert request.allocation is None

    def test_period_str(self):
        assert str(AllocationPeriod(year=2025, month=9, week_seq=3)) == "2025-09-W3"

        with pytest.raises(ValidationError):
            AllocationPeriod(year=2025, month=13, week_seq=1)

    def test_relative_error(self):
        outcome = ProductOutcome(
            product_code="P1",
            status=OutcomeStatus.SUCCEEDED,
            target=Decimal(200),
            actual=Decimal(190),
        )
        zero = ProductOutcome(product_code="P2", status=OutcomeStatus.SUCCEEDED, target=Decimal(0))

        assert outcome.relative_error == Decimal("0.05")
        assert zero.relative_error is None
