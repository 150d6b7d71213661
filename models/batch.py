"""
Batch report models.

The batch report is what users read to judge a run: how many products were
allocated, skipped or failed, and how far the allocations landed from their
targets.
"""

from datetime import datetime
from decimal import Decimal
from enum import Enum
from typing import List, Optional

from pydantic import Field

from models.base import BaseSchema
from models.grade import GradeRange


class OutcomeStatus(str, Enum):
    """Per-product result of a batch run."""
    SUCCEEDED = "SUCCEEDED"
    SKIPPED = "SKIPPED"   # expected data condition, batch continues
    FAILED = "FAILED"     # write-back or database failure


class BandAdjustmentIssue(BaseSchema):
    """A band member that could not be given a usable sub-range."""

    product_code: str = Field(..., description="Product code")
    band_code: Optional[int] = Field(None, description="Band code, None if unmatched")
    message: str = Field(..., description="What went wrong")


class ProductOutcome(BaseSchema):
    """Result for one product in a batch."""

    product_code: str = Field(..., description="Product code")
    status: OutcomeStatus = Field(..., description="Outcome")
    message: str = Field(default="", description="Reason for skip/failure")
    error_code: Optional[str] = Field(None, description="AppError code when not succeeded")
    target: Decimal = Field(default=Decimal("0"), ge=0, description="Requested volume")
    actual: Decimal = Field(default=Decimal("0"), ge=0, description="Σ allocation × weight")
    band_code: Optional[int] = Field(None, description="Price band, if grouped")
    band_range: Optional[GradeRange] = Field(None, description="Sub-range from the band adjuster")

    @property
    def relative_error(self) -> Optional[Decimal]:
        """|actual - target| / target, None for a zero target."""
        if self.target == 0:
            return None
        return abs(self.actual - self.target) / self.target


class BatchReport(BaseSchema):
    """Summary of one batch run."""

    period: str = Field(..., description="Allocation period, e.g. 2025-09-W3")
    generated_at: datetime = Field(default_factory=datetime.utcnow)
    outcomes: List[ProductOutcome] = Field(default_factory=list)
    band_issues: List[BandAdjustmentIssue] = Field(default_factory=list)
    avg_relative_error: Decimal = Field(default=Decimal("0"), ge=0)
    max_relative_error: Decimal = Field(default=Decimal("0"), ge=0)
    within_tolerance: bool = Field(default=True)

    @property
    def attempted(self) -> int:
        return len(self.outcomes)

    @property
    def succeeded(self) -> int:
        return self._count(OutcomeStatus.SUCCEEDED)

    @property
    def skipped(self) -> int:
        return self._count(OutcomeStatus.SKIPPED)

    @property
    def failed(self) -> int:
        return self._count(OutcomeStatus.FAILED)

    def by_status(self, status: OutcomeStatus) -> List[ProductOutcome]:
        return [o for o in self.outcomes if o.status == status]

    def _count(self, status: OutcomeStatus) -> int:
        return sum(1 for o in self.outcomes if o.status == status)
