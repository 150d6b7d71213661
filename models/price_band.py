"""
Price band schemas.

A price band is a wholesale-price interval. Products landing in the same band
share the grade axis and are split across it by the band adjuster.
"""

from decimal import Decimal
from typing import Optional

from pydantic import ConfigDict, Field, model_validator

from models.base import BaseSchema


class PriceBandDefinition(BaseSchema):
    """
    One price band: [min_price_inclusive, max_price_exclusive).

    A None bound is open on that side.
    """

    model_config = ConfigDict(frozen=True)

    code: int = Field(..., ge=1, description="Band code, 1 = most expensive")
    label: str = Field(..., min_length=1, description="Display label")
    min_price_inclusive: Optional[Decimal] = Field(
        None,
        ge=0,
        description="Lower bound (inclusive), None = open"
    )
    max_price_exclusive: Optional[Decimal] = Field(
        None,
        ge=0,
        description="Upper bound (exclusive), None = open"
    )

    @model_validator(mode="after")
    def bounds_ordered(self) -> "PriceBandDefinition":
        """Lower bound must sit below the upper bound."""
        if (
            self.min_price_inclusive is not None
            and self.max_price_exclusive is not None
            and self.min_price_inclusive >= self.max_price_exclusive
        ):
            raise ValueError(
                f"Band {self.code}: min {self.min_price_inclusive} "
                f">= max {self.max_price_exclusive}"
            )
        return self

    def contains(self, price: Decimal) -> bool:
        if self.min_price_inclusive is not None and price < self.min_price_inclusive:
            return False
        if self.max_price_exclusive is not None and price >= self.max_price_exclusive:
            return False
        return True


def _band(code: int, low: Optional[str], high: Optional[str]) -> PriceBandDefinition:
    return PriceBandDefinition(
        code=code,
        label=f"第{code}段",
        min_price_inclusive=Decimal(low) if low is not None else None,
        max_price_exclusive=Decimal(high) if high is not None else None,
    )


# Wholesale price bands (yuan per carton)
DEFAULT_PRICE_BANDS: tuple[PriceBandDefinition, ...] = (
    _band(1, "600", None),
    _band(2, "400", "600"),
    _band(3, "300", "400"),
    _band(4, "240", "300"),
    _band(5, "200", "240"),
    _band(6, "170", "200"),
    _band(7, "158", "170"),
    _band(8, "130", "158"),
    _band(9, "109", "130"),
)


class PriceBandConfig(BaseSchema):
    """Ordered, immutable band table. The first matching band wins."""

    model_config = ConfigDict(frozen=True)

    bands: tuple[PriceBandDefinition, ...] = DEFAULT_PRICE_BANDS

    def resolve(self, price: Optional[Decimal]) -> Optional[PriceBandDefinition]:
        """Band containing the price, or None."""
        if price is None:
            return None
        for band in self.bands:
            if band.contains(price):
                return band
        return None

    def by_code(self, code: int) -> Optional[PriceBandDefinition]:
        for band in self.bands:
            if band.code == code:
                return band
        return None
