"""
Price band service.

Resolves wholesale prices to bands and groups band-managed products.
"""

from dataclasses import dataclass, field
from decimal import Decimal
from typing import Optional

import structlog

from config import settings
from models.allocation import AllocationRequest
from models.price_band import PriceBandConfig, PriceBandDefinition

logger = structlog.get_logger(__name__)


@dataclass
class BandGrouping:
    """Band-managed requests split by band code."""
    groups: dict[int, list[AllocationRequest]] = field(default_factory=dict)
    unmatched: list[AllocationRequest] = field(default_factory=list)


class PriceBandService:
    """Band lookups against an immutable band table."""

    def __init__(self, config: Optional[PriceBandConfig] = None):
        self.config = config or settings.price_band_config

    def resolve(self, price: Optional[Decimal]) -> Optional[PriceBandDefinition]:
        """First band whose bounds contain the price, or None."""
        return self.config.resolve(price)

    def group(self, requests: list[AllocationRequest]) -> BandGrouping:
        """
        Group requests by band, keeping request order inside each band.

        Requests with no price, or a price outside every band, go to
        unmatched.
        """
        grouping = BandGrouping()
        for request in requests:
            band = self.resolve(request.wholesale_price)
            if band is None:
                logger.warning(
                    "price_band_unmatched",
                    product_code=request.product_code,
                    price=str(request.wholesale_price)
                )
                grouping.unmatched.append(request)
                continue
            grouping.groups.setdefault(band.code, []).append(request)

        logger.info(
            "price_bands_grouped",
            bands=len(grouping.groups),
            unmatched=len(grouping.unmatched)
        )
        return grouping


# Singleton instance
_service: Optional[PriceBandService] = None


def get_price_band_service() -> PriceBandService:
    """Get or create PriceBandService instance."""
    global _service
    if _service is None:
        _service = PriceBandService()
    return _service
