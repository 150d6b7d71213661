"""
Price band group adjuster.

Products in the same price band compete for the same customers. After each
member has been seeded on its own, the band's claimed grades are split into
contiguous, non-overlapping sub-ranges: the most expensive product takes the
highest grades.

Steps per band with two or more members:
1. SORT members by wholesale price, highest first (ties by product code)
2. SEED members that have no allocation yet
3. SPAN = hull of weighted grades any member allocates to
4. PARTITION the span by cumulative base weight vs cumulative target share
5. TRUNCATE each member to its sub-range and re-run residual correction
"""

from decimal import Decimal
from typing import Optional, Sequence

import structlog

from config import settings
from exceptions import NoCapacityError
from models.allocation import AllocationRequest
from models.batch import BandAdjustmentIssue
from models.grade import GradeRange, zero_vector
from services.single_level_allocator import SingleLevelAllocator, get_single_level_allocator
from utils.matrix_utils import restrict_to_range
from utils.text_utils import needs_biweekly_boost

logger = structlog.get_logger(__name__)


class PriceBandGroupAdjuster:
    """Splits a band's grade span between its members."""

    def __init__(
        self,
        allocator: Optional[SingleLevelAllocator] = None,
        boost_phrase: Optional[str] = None
    ):
        self.allocator = allocator or get_single_level_allocator()
        self.boost_phrase = boost_phrase if boost_phrase is not None else settings.biweekly_boost_phrase

    def adjust(
        self,
        groups_by_band: dict[int, list[AllocationRequest]],
        base_weights: Sequence[int],
        boosted_weights: Optional[Sequence[int]] = None,
        grade_range: Optional[GradeRange] = None
    ) -> list[BandAdjustmentIssue]:
        """
        Adjust every band in place.

        Args:
            groups_by_band: Band code → member requests
            base_weights: Pooled 30-grade row used for partition boundaries
            boosted_weights: Pooled row with biweekly customers doubled
            grade_range: Outer grade limit (None = D30..D1)

        Returns:
            One issue per member that ended up with no usable sub-range
        """
        grade_range = (grade_range or GradeRange.full()).ensure_valid()
        issues: list[BandAdjustmentIssue] = []

        for band_code, members in groups_by_band.items():
            if len(members) < 2:
                continue

            logger.info("adjusting_price_band", band_code=band_code, members=len(members))
            issues.extend(
                self._adjust_band(band_code, members, base_weights, boosted_weights, grade_range)
            )

        if issues:
            logger.warning("price_band_issues", count=len(issues))
        return issues

    # ===================
    # PER BAND
    # ===================

    def _adjust_band(
        self,
        band_code: int,
        members: list[AllocationRequest],
        base_weights: Sequence[int],
        boosted_weights: Optional[Sequence[int]],
        grade_range: GradeRange
    ) -> list[BandAdjustmentIssue]:
        issues: list[BandAdjustmentIssue] = []
        ordered = sorted(
            members,
            key=lambda r: (-(r.wholesale_price or Decimal(0)), r.product_code)
        )

        unseeded: set[str] = set()
        for member in ordered:
            if member.allocation is None:
                issue = self._seed(band_code, member, base_weights, boosted_weights, grade_range)
                if issue:
                    issues.append(issue)
                    unseeded.add(member.product_code)
        ordered = [m for m in ordered if m.product_code not in unseeded]
        if not ordered:
            return issues

        span = self._claimed_span(ordered, base_weights, grade_range)
        if span is None:
            for member in ordered:
                member.allocation = zero_vector()
                issues.append(self._issue(band_code, member, "No weighted grades in band span"))
            return issues

        sub_ranges = self._partition(ordered, base_weights, span)

        for member, sub_range in zip(ordered, sub_ranges):
            usable = None
            if sub_range is not None:
                usable = sub_range.intersect(member.effective_range)
            if usable is not None:
                usable = usable.intersect(grade_range)

            if usable is None or usable.width == 0:
                member.allocation = zero_vector()
                member.band_range = None
                issues.append(self._issue(band_code, member, "No grades left in band span"))
                continue

            weights = self._weights_for(member, base_weights, boosted_weights)
            if sum(weights[g] for g in usable.indices()) == 0:
                member.allocation = zero_vector()
                member.band_range = usable
                issues.append(self._issue(band_code, member, f"No customers in {usable}"))
                continue

            truncated = restrict_to_range(member.allocation, usable)
            member.allocation = self.allocator.correct(truncated, weights, member.target, usable)
            member.band_range = usable

            logger.debug(
                "band_member_adjusted",
                band_code=band_code,
                product_code=member.product_code,
                band_range=str(usable)
            )

        return issues

    def _seed(
        self,
        band_code: int,
        member: AllocationRequest,
        base_weights: Sequence[int],
        boosted_weights: Optional[Sequence[int]],
        grade_range: GradeRange
    ) -> Optional[BandAdjustmentIssue]:
        seed_range = member.effective_range.intersect(grade_range)
        if seed_range is None:
            member.allocation = zero_vector()
            return self._issue(band_code, member, "Product range outside band range")

        weights = self._weights_for(member, base_weights, boosted_weights)
        try:
            member.allocation = self.allocator.allocate_row(weights, member.target, seed_range)
        except NoCapacityError as e:
            member.allocation = zero_vector()
            return self._issue(band_code, member, e.message)
        return None

    def _claimed_span(
        self,
        members: list[AllocationRequest],
        base_weights: Sequence[int],
        grade_range: GradeRange
    ) -> Optional[GradeRange]:
        """Hull of weighted in-range grades that some member allocates to."""
        weighted = [g for g in grade_range.indices() if base_weights[g] > 0]
        claimed = [
            g for g in weighted
            if any(m.allocation and m.allocation[g] > 0 for m in members)
        ]
        grades = claimed or weighted
        if not grades:
            return None
        return GradeRange(max_index=grades[0], min_index=grades[-1])

    def _partition(
        self,
        members: list[AllocationRequest],
        base_weights: Sequence[int],
        span: GradeRange
    ) -> list[Optional[GradeRange]]:
        """
        Contiguous sub-ranges of the span, one per member, highest grades first.

        Each boundary sits where cumulative base weight is closest to the
        cumulative target share (ties go to the later grade). A member gets
        None when earlier members used up the span.
        """
        count = len(members)
        span_weight = Decimal(sum(base_weights[g] for g in span.indices()))
        total_target = sum((m.target for m in members), Decimal(0))

        sub_ranges: list[Optional[GradeRange]] = []
        start = span.max_index
        cum_target = Decimal(0)

        for i, member in enumerate(members):
            if start > span.min_index:
                sub_ranges.append(None)
                continue

            remaining = count - i - 1
            if remaining == 0:
                sub_ranges.append(GradeRange(max_index=start, min_index=span.min_index))
                break

            cum_target += member.target
            if total_target > 0:
                goal = span_weight * cum_target / total_target
            else:
                goal = span_weight * (i + 1) / count

            last_allowed = span.min_index - remaining
            if last_allowed < start:
                end = start
            else:
                end = self._closest_boundary(base_weights, span.max_index, start, last_allowed, goal)

            sub_ranges.append(GradeRange(max_index=start, min_index=end))
            start = end + 1

        return sub_ranges

    @staticmethod
    def _closest_boundary(
        base_weights: Sequence[int],
        span_start: int,
        first: int,
        last: int,
        goal: Decimal
    ) -> int:
        cum = sum(base_weights[g] for g in range(span_start, first))
        best, best_gap = first, None
        for e in range(first, last + 1):
            cum += base_weights[e]
            gap = abs(Decimal(cum) - goal)
            if best_gap is None or gap <= best_gap:
                best, best_gap = e, gap
        return best

    # ===================
    # HELPERS
    # ===================

    def _weights_for(
        self,
        member: AllocationRequest,
        base_weights: Sequence[int],
        boosted_weights: Optional[Sequence[int]]
    ) -> Sequence[int]:
        if boosted_weights is not None and needs_biweekly_boost(member.remark, self.boost_phrase):
            return boosted_weights
        return base_weights

    @staticmethod
    def _issue(band_code: int, member: AllocationRequest, message: str) -> BandAdjustmentIssue:
        logger.warning(
            "band_member_unallocated",
            band_code=band_code,
            product_code=member.product_code,
            reason=message
        )
        return BandAdjustmentIssue(
            product_code=member.product_code,
            band_code=band_code,
            message=message
        )


# Singleton instance
_adjuster: Optional[PriceBandGroupAdjuster] = None


def get_price_band_adjuster() -> PriceBandGroupAdjuster:
    """Get or create PriceBandGroupAdjuster instance."""
    global _adjuster
    if _adjuster is None:
        _adjuster = PriceBandGroupAdjuster()
    return _adjuster
