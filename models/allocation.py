"""
Allocation request and result schemas.

A request describes one product: how much to allocate, where it is
delivered, which grades it may reach and whether it shares a price band
with other products.
"""

from dataclasses import dataclass, field
from decimal import Decimal
from enum import Enum
from typing import Optional

from pydantic import ConfigDict, Field, model_validator

from models.base import BaseSchema
from models.grade import GradeRange
from utils.text_utils import parse_delivery_areas


class DeliveryKind(str, Enum):
    """How a product's delivery scope is declared."""
    CITY_WIDE = "CITY_WIDE"
    SINGLE_REGION = "SINGLE_REGION"
    MULTI_REGION_UNIFORM = "MULTI_REGION_UNIFORM"
    MULTI_REGION_RATIO = "MULTI_REGION_RATIO"


class DeliveryScope(BaseSchema):
    """
    Where a product is delivered.

    CITY_WIDE ignores regions. SINGLE_REGION carries exactly one region.
    MULTI_REGION_UNIFORM gives every region the same grade vector.
    MULTI_REGION_RATIO splits the target across region groups of a secondary
    dimension (extension_kind), using group_ratios when supplied.
    """

    kind: DeliveryKind = Field(..., description="Scope kind")
    regions: list[str] = Field(
        default_factory=list,
        description="Regions in scope, in request order"
    )
    extension_kind: Optional[str] = Field(
        None,
        description="Secondary dimension, e.g. 市场类型 or 诚信互助小组"
    )
    group_ratios: Optional[dict[str, Decimal]] = Field(
        None,
        description="Group name → share of the target"
    )
    region_group_map: Optional[dict[str, str]] = Field(
        None,
        description="Region → group name; unmapped regions form their own group"
    )

    @model_validator(mode="after")
    def regions_match_kind(self) -> "DeliveryScope":
        if self.kind == DeliveryKind.SINGLE_REGION and len(self.regions) != 1:
            raise ValueError(
                f"SINGLE_REGION needs exactly one region, got {len(self.regions)}"
            )
        if self.kind in (
            DeliveryKind.MULTI_REGION_UNIFORM,
            DeliveryKind.MULTI_REGION_RATIO,
        ) and not self.regions:
            raise ValueError(f"{self.kind.value} needs at least one region")
        if self.group_ratios:
            for group, ratio in self.group_ratios.items():
                if ratio < 0:
                    raise ValueError(f"Negative ratio for group {group!r}: {ratio}")
        return self

    @classmethod
    def city_wide(cls) -> "DeliveryScope":
        return cls(kind=DeliveryKind.CITY_WIDE)

    @classmethod
    def single(cls, region: str) -> "DeliveryScope":
        return cls(kind=DeliveryKind.SINGLE_REGION, regions=[region])

    @classmethod
    def uniform(cls, regions: list[str]) -> "DeliveryScope":
        return cls(kind=DeliveryKind.MULTI_REGION_UNIFORM, regions=list(regions))

    @classmethod
    def ratio(
        cls,
        regions: list[str],
        extension_kind: str,
        group_ratios: Optional[dict[str, Decimal]] = None,
        region_group_map: Optional[dict[str, str]] = None
    ) -> "DeliveryScope":
        return cls(
            kind=DeliveryKind.MULTI_REGION_RATIO,
            regions=list(regions),
            extension_kind=extension_kind,
            group_ratios=group_ratios,
            region_group_map=region_group_map,
        )

    @classmethod
    def from_area_text(
        cls,
        text: Optional[str],
        extension_kind: Optional[str] = None,
        group_ratios: Optional[dict[str, Decimal]] = None,
        region_group_map: Optional[dict[str, str]] = None,
        city_wide_label: str = "全市"
    ) -> "DeliveryScope":
        """
        Build a scope from a free-text delivery area.

        "全市" or blank → CITY_WIDE
        "城区" → SINGLE_REGION
        "城区,郊区" → MULTI_REGION_UNIFORM, or MULTI_REGION_RATIO with an extension
        """
        regions = parse_delivery_areas(text)

        if not regions or city_wide_label in regions:
            return cls.city_wide()

        if extension_kind:
            return cls.ratio(regions, extension_kind, group_ratios, region_group_map)

        if len(regions) == 1:
            return cls.single(regions[0])

        return cls.uniform(regions)


class AllocationPeriod(BaseSchema):
    """Time partition of the statistics and write-back tables."""

    model_config = ConfigDict(frozen=True)

    year: int = Field(..., ge=2000, le=2100)
    month: int = Field(..., ge=1, le=12)
    week_seq: int = Field(..., ge=1, le=6, description="Week of the month")

    def __str__(self) -> str:
        return f"{self.year}-{self.month:02d}-W{self.week_seq}"


class AllocationRequest(BaseSchema):
    """
    One product to allocate.

    allocation is filled in by the engine (30 ints, index 0 = D30).
    band_range is set by the band adjuster when the product shares a band.
    """

    product_code: str = Field(..., min_length=1, description="Product code")
    product_name: str = Field("", description="Display name")
    target: Decimal = Field(..., ge=0, description="Planned volume")
    scope: DeliveryScope = Field(
        default_factory=DeliveryScope.city_wide,
        description="Delivery scope"
    )
    grade_range: Optional[GradeRange] = Field(
        None,
        description="Allowed grades; None = D30..D1"
    )
    wholesale_price: Optional[Decimal] = Field(
        None,
        ge=0,
        description="Wholesale price, used for band resolution"
    )
    price_band_grouping: bool = Field(
        False,
        description="Allocate jointly with other products of the same band"
    )
    remark: Optional[str] = Field(
        None,
        description="Free-text remark; may carry the biweekly-boost marker"
    )
    allocation: Optional[list[int]] = None
    band_range: Optional[GradeRange] = None

    @property
    def effective_range(self) -> GradeRange:
        return self.grade_range or GradeRange.full()


@dataclass
class AllocationResult:
    """Outcome of GroupedAllocationStrategy.execute."""
    success: bool
    matrix: list[list[int]] = field(default_factory=list)
    customer_matrix: list[list[int]] = field(default_factory=list)
    regions: list[str] = field(default_factory=list)
    message: str = ""

    @classmethod
    def ok(
        cls,
        matrix: list[list[int]],
        customer_matrix: list[list[int]],
        regions: list[str],
        message: str = "ok"
    ) -> "AllocationResult":
        return cls(
            success=True,
            matrix=matrix,
            customer_matrix=customer_matrix,
            regions=regions,
            message=message,
        )

    @classmethod
    def failed(cls, message: str, regions: Optional[list[str]] = None) -> "AllocationResult":
        return cls(success=False, regions=regions or [], message=message)
