"""
Weight matrix builder.

Turns customer statistics rows into the region × grade weight matrix a
product is allocated against.

Steps:
1. FETCH statistics rows for the period (and regions, if scoped)
2. MAP grade labels to indices, doubling biweekly customers when boosted
3. AGGREGATE rows per region (one region can have several visit cycles)
4. SELECT the city-wide row, or the requested regions in request order
5. CHECK every selected region has customers inside the grade range
"""

from decimal import Decimal, InvalidOperation
from typing import Optional, Protocol

import pandas as pd
import structlog

from config import settings as default_settings
from config.settings import Settings
from exceptions import ContractViolationError, EmptyScopeError, ZeroWeightRegionError
from models.allocation import AllocationPeriod, DeliveryKind, DeliveryScope
from models.grade import GRADE_COUNT, GradeRange, grade_label_to_index, zero_vector
from models.weight_matrix import CustomerStatRecord, WeightMatrix
from services.customer_statistics_service import get_customer_statistics_service
from utils.text_utils import normalize_region_name

logger = structlog.get_logger(__name__)


class StatisticsSource(Protocol):
    def fetch_records(
        self,
        period: AllocationPeriod,
        regions: Optional[list[str]] = None
    ) -> list[CustomerStatRecord]:
        ...


class WeightMatrixBuilder:
    """Builds weight matrices from a statistics source."""

    def __init__(
        self,
        source: Optional[StatisticsSource] = None,
        settings: Optional[Settings] = None
    ):
        self.source = source or get_customer_statistics_service()
        self.settings = settings or default_settings
        self._biweekly_cycles = frozenset(self.settings.biweekly_visit_cycles)

    def build(
        self,
        scope: DeliveryScope,
        period: AllocationPeriod,
        grade_range: Optional[GradeRange] = None,
        biweekly_boost: bool = False
    ) -> WeightMatrix:
        """
        Build the weight matrix for a delivery scope.

        Args:
            scope: Delivery scope of the product
            period: Statistics partition
            grade_range: Range used for the zero-row check (None = D30..D1)
            biweekly_boost: Double counts from biweekly visit cycles

        Returns:
            WeightMatrix with one row per region in scope

        Raises:
            EmptyScopeError: No rows for the period or a requested region
            ZeroWeightRegionError: A region has no customers inside the range
            InvalidGradeLabelError: Unknown grade label in the source
            ContractViolationError: Negative customer count
        """
        grade_range = (grade_range or GradeRange.full()).ensure_valid()
        city_wide = scope.kind == DeliveryKind.CITY_WIDE
        regions = [] if city_wide else self._requested_regions(scope)

        logger.info(
            "building_weight_matrix",
            kind=scope.kind.value,
            regions=len(regions),
            period=str(period),
            biweekly_boost=biweekly_boost
        )

        records = self.source.fetch_records(period, regions=None if city_wide else regions)
        by_region = self._aggregate(records, biweekly_boost)

        if by_region.empty:
            logger.warning("no_customer_statistics", period=str(period))
            raise EmptyScopeError(
                f"No customer statistics for period {period}",
                regions=regions
            )

        if city_wide:
            matrix = self._city_wide(by_region)
        else:
            missing = [r for r in regions if r not in by_region.index]
            if missing:
                logger.warning("regions_without_statistics", regions=missing)
                raise EmptyScopeError(
                    f"No customer statistics for regions: {', '.join(missing)}",
                    regions=missing
                )
            matrix = self._to_matrix(by_region.loc[regions])

        zero_regions = matrix.zero_rows(grade_range)
        if zero_regions:
            logger.warning(
                "zero_weight_regions",
                regions=zero_regions,
                grade_range=str(grade_range)
            )
            raise ZeroWeightRegionError(zero_regions)

        logger.info(
            "weight_matrix_built",
            rows=len(matrix),
            total=matrix.total(grade_range)
        )
        return matrix

    # ===================
    # HELPERS
    # ===================

    def _requested_regions(self, scope: DeliveryScope) -> list[str]:
        regions: list[str] = []
        for region in scope.regions:
            name = normalize_region_name(region)
            if name and name not in regions:
                regions.append(name)
        return regions

    def _aggregate(
        self,
        records: list[CustomerStatRecord],
        biweekly_boost: bool
    ) -> pd.DataFrame:
        """Region-indexed frame of summed grade counts, columns 0..29."""
        if not records:
            return pd.DataFrame(columns=range(GRADE_COUNT))

        frame = pd.DataFrame(
            [self._record_vector(r, biweekly_boost) for r in records],
            index=[normalize_region_name(r.region) or "" for r in records],
            columns=range(GRADE_COUNT),
        )
        return frame.groupby(level=0, sort=False).sum()

    def _record_vector(self, record: CustomerStatRecord, biweekly_boost: bool) -> list[int]:
        factor = 2 if biweekly_boost and record.visit_cycle in self._biweekly_cycles else 1
        vector = zero_vector()
        for label, value in record.grade_counts.items():
            index = grade_label_to_index(label)
            count = self._whole_count(value, record.region, label)
            vector[index] += count * factor
        return vector

    @staticmethod
    def _whole_count(value, region: str, label: str) -> int:
        """Customer count as an int; blanks are 0, fractions and negatives are corrupt."""
        details = {"region": region, "label": label, "count": str(value)}
        try:
            count = Decimal(str(value or 0).strip() or 0)
        except InvalidOperation as e:
            raise ContractViolationError(
                f"Customer count {value!r} for {region!r} {label} is not a number",
                details=details
            ) from e

        if not count.is_finite() or count != count.to_integral_value():
            raise ContractViolationError(
                f"Customer count {value} for {region!r} {label} is not a whole number",
                details=details
            )
        if count < 0:
            raise ContractViolationError(
                f"Negative customer count {value} for {region!r} {label}",
                details=details
            )
        return int(count)

    def _city_wide(self, by_region: pd.DataFrame) -> WeightMatrix:
        label = self.settings.city_wide_label
        if label in by_region.index:
            weights = by_region.loc[label]
        else:
            weights = by_region.sum(axis=0)
        return WeightMatrix.from_rows([(label, weights.tolist())])

    @staticmethod
    def _to_matrix(frame: pd.DataFrame) -> WeightMatrix:
        return WeightMatrix.from_rows(
            (region, values.tolist()) for region, values in frame.iterrows()
        )


# Singleton instance
_builder: Optional[WeightMatrixBuilder] = None


def get_weight_matrix_builder() -> WeightMatrixBuilder:
    """Get or create WeightMatrixBuilder instance."""
    global _builder
    if _builder is None:
        _builder = WeightMatrixBuilder()
    return _builder
