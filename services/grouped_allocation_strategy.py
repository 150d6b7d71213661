"""
Grouped allocation strategy.

Chooses how a product's target is spread across its regions:

- No secondary dimension: allocate once on the pooled matrix and give every
  region the same grade vector.
- Secondary dimension with ratios: split the target by ratio, allocate each
  region group independently, then recombine in matrix order.
- Secondary dimension missing ratios or a region grouping: ask a registered
  ratio provider (caller ratios still win), else fall back to the pooled
  path.
"""

from decimal import Decimal
from typing import Optional, Union

import structlog

from exceptions import ContractViolationError
from models.allocation import AllocationResult, DeliveryKind
from models.grade import GradeRange
from models.weight_matrix import WeightMatrix
from services.group_ratio_provider import GroupRatioProviderRegistry
from services.single_level_allocator import SingleLevelAllocator, get_single_level_allocator
from utils.matrix_utils import (
    broadcast,
    restrict_to_range,
    round_half_up,
    validate_no_zero_rows_in_range,
)

logger = structlog.get_logger(__name__)


def split_target(target: Decimal, ratios: dict[str, Decimal]) -> dict[str, Decimal]:
    """
    Split a target into per-group sub-targets.

    Ratios are normalised by their total. Every group but the last gets a
    half-up rounded whole number, capped so the running sum never passes the
    target; the last group takes the remainder. The sub-targets always sum to
    the target exactly.

    >>> split_target(Decimal(100), {"城区": Decimal("0.6"), "农村": Decimal("0.4")})
    {'城区': Decimal('60'), '农村': Decimal('40')}
    """
    target = Decimal(target)
    ratio_total = sum(ratios.values(), Decimal(0))
    if ratio_total <= 0:
        raise ContractViolationError(
            "Group ratios sum to zero",
            details={"ratios": {k: str(v) for k, v in ratios.items()}}
        )

    groups = list(ratios)
    remaining = target
    result: dict[str, Decimal] = {}
    for i, group in enumerate(groups):
        if i == len(groups) - 1:
            share = remaining
        else:
            share = min(
                Decimal(round_half_up(target * ratios[group] / ratio_total)),
                remaining
            )
        result[group] = share
        remaining -= share
    return result


class GroupedAllocationStrategy:
    """Dispatch layer over SingleLevelAllocator."""

    def __init__(
        self,
        allocator: Optional[SingleLevelAllocator] = None,
        providers: Optional[GroupRatioProviderRegistry] = None
    ):
        self.allocator = allocator or get_single_level_allocator()
        self.providers = providers or GroupRatioProviderRegistry()

    def execute(
        self,
        weight_matrix: WeightMatrix,
        target: Union[int, Decimal],
        delivery_kind: DeliveryKind,
        extension_kind: Optional[str] = None,
        grade_range: Optional[GradeRange] = None,
        group_ratios: Optional[dict[str, Decimal]] = None,
        region_group_map: Optional[dict[str, str]] = None
    ) -> AllocationResult:
        """
        Allocate a target across the regions of a weight matrix.

        Args:
            weight_matrix: Regions in scope, in output order
            target: Planned volume
            delivery_kind: How the scope was declared
            extension_kind: Secondary dimension, if any
            grade_range: Allowed grades (None = D30..D1)
            group_ratios: Group → share of target
            region_group_map: Region → group; unmapped regions are their own group

        Returns:
            AllocationResult; success=False with a message for empty matrices,
            zero-weight regions and inconsistent groups

        Raises:
            InvalidRangeError: Malformed grade range
            NoCapacityError: Pooled weights sum to zero in range
        """
        grade_range = (grade_range or GradeRange.full()).ensure_valid()
        target = Decimal(target)

        if weight_matrix.is_empty:
            logger.warning("empty_weight_matrix")
            return AllocationResult.failed("Weight matrix has no regions")

        message = validate_no_zero_rows_in_range(weight_matrix, grade_range)
        if message:
            zero_regions = weight_matrix.zero_rows(grade_range)
            logger.warning(
                "zero_weight_regions",
                regions=zero_regions,
                grade_range=str(grade_range)
            )
            return AllocationResult.failed(message, regions=zero_regions)

        if delivery_kind == DeliveryKind.MULTI_REGION_RATIO and extension_kind:
            ratios, group_map = group_ratios, region_group_map
            if not ratios or not group_map:
                provider = self.providers.find(extension_kind)
                if provider is not None:
                    provided = provider.provide(weight_matrix, grade_range, ratios)
                    ratios, group_map = provided.ratios, provided.region_group_map
                    logger.info(
                        "group_ratios_provided",
                        extension_kind=extension_kind,
                        groups=len(ratios)
                    )
            if ratios:
                return self._execute_grouped(
                    weight_matrix, target, grade_range, ratios, group_map or {}
                )
            logger.info("no_group_ratios_fallback", extension_kind=extension_kind)

        return self._execute_pooled(weight_matrix, target, grade_range)

    # ===================
    # MODES
    # ===================

    def _execute_pooled(
        self,
        weight_matrix: WeightMatrix,
        target: Decimal,
        grade_range: GradeRange
    ) -> AllocationResult:
        vector = self.allocator.allocate(weight_matrix, target, grade_range)
        vector = restrict_to_range(vector, grade_range)

        logger.debug("pooled_allocation", regions=len(weight_matrix))
        return AllocationResult.ok(
            matrix=broadcast(vector, len(weight_matrix)),
            customer_matrix=[list(row.weights) for row in weight_matrix.rows],
            regions=weight_matrix.regions,
        )

    def _execute_grouped(
        self,
        weight_matrix: WeightMatrix,
        target: Decimal,
        grade_range: GradeRange,
        ratios: dict[str, Decimal],
        region_group_map: dict[str, str]
    ) -> AllocationResult:
        # Groups in order of first appearance in the matrix
        groups: dict[str, list[str]] = {}
        for region in weight_matrix.regions:
            groups.setdefault(region_group_map.get(region, region), []).append(region)

        for group, members in groups.items():
            if group not in ratios:
                return AllocationResult.failed(
                    f"No ratio for group {group!r} (regions: {', '.join(members)})",
                    regions=members
                )
        for group in ratios:
            if group not in groups:
                return AllocationResult.failed(f"Group {group!r} has no regions")

        group_ratios = {g: ratios[g] for g in groups}
        if sum(group_ratios.values(), Decimal(0)) <= 0:
            return AllocationResult.failed("Group ratios sum to zero")

        sub_targets = split_target(target, group_ratios)

        vectors: dict[str, list[int]] = {}
        for group, members in groups.items():
            sub_matrix = weight_matrix.subset(members)
            vector = self.allocator.allocate(sub_matrix, sub_targets[group], grade_range)
            vector = restrict_to_range(vector, grade_range)
            for region in members:
                vectors[region] = list(vector)

            logger.debug(
                "group_allocated",
                group=group,
                regions=len(members),
                sub_target=str(sub_targets[group])
            )

        return AllocationResult.ok(
            matrix=[vectors[region] for region in weight_matrix.regions],
            customer_matrix=[list(row.weights) for row in weight_matrix.rows],
            regions=weight_matrix.regions,
            message=f"Allocated across {len(groups)} groups",
        )


# Singleton instance
_strategy: Optional[GroupedAllocationStrategy] = None


def get_grouped_allocation_strategy() -> GroupedAllocationStrategy:
    """Get or create GroupedAllocationStrategy instance."""
    global _strategy
    if _strategy is None:
        _strategy = GroupedAllocationStrategy()
    return _strategy
