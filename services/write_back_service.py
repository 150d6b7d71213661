"""
Write-back sink.

Persists one product's allocation matrix for a period. Rows are upserted on
(product, period, region) first; only once that succeeds are rows for regions
the product no longer covers deleted, so a failed write never leaves the
product without rows.
"""

from decimal import Decimal
from typing import Optional, Sequence
import structlog

from config import get_supabase_client, settings
from exceptions import DatabaseError
from models.allocation import AllocationPeriod, AllocationRequest
from models.grade import GRADE_LABELS
from models.weight_matrix import WeightMatrix
from utils.matrix_utils import actual_amount, matrix_actual_amount

logger = structlog.get_logger(__name__)

# One row per product, period and region
CONFLICT_COLUMNS = "product_code,year,month,week_seq,region"


class WriteBackService:
    """
    Writes allocation rows to the prediction table.
    """

    def __init__(self):
        self.db = get_supabase_client()
        self.table = settings.write_back_table

    def write_back(
        self,
        allocation_matrix: Sequence[Sequence[int]],
        weight_matrix: WeightMatrix,
        regions: Sequence[str],
        request: AllocationRequest,
        period: AllocationPeriod
    ) -> bool:
        """
        Upsert the product's rows for the period, then drop stale regions.

        Args:
            allocation_matrix: One 30-grade vector per region
            weight_matrix: Weights the matrix was computed against
            regions: Region names, same order as allocation_matrix
            request: The product being written
            period: Partition to write into

        Returns:
            True if every row was written

        Raises:
            DatabaseError: If the upsert or the stale-region delete fails
        """
        if len(allocation_matrix) != len(regions):
            logger.error(
                "write_back_shape_mismatch",
                product_code=request.product_code,
                rows=len(allocation_matrix),
                regions=len(regions)
            )
            return False

        total_actual = matrix_actual_amount(allocation_matrix, weight_matrix)
        rows = [
            self._to_row(vector, weight_matrix, region, request, period, total_actual)
            for vector, region in zip(allocation_matrix, regions)
        ]

        logger.info(
            "writing_allocation",
            product_code=request.product_code,
            period=str(period),
            rows=len(rows)
        )

        try:
            result = (
                self.db.table(self.table)
                .upsert(rows, on_conflict=CONFLICT_COLUMNS)
                .execute()
            )
        except Exception as e:
            logger.error(
                "write_back_failed",
                product_code=request.product_code,
                period=str(period),
                error=str(e)
            )
            raise DatabaseError("upsert", str(e))

        written = len(result.data or [])
        if written != len(rows):
            logger.warning(
                "write_back_incomplete",
                product_code=request.product_code,
                expected=len(rows),
                written=written
            )
            return False

        self._delete_stale_regions(request.product_code, period, [row["region"] for row in rows])

        logger.info(
            "allocation_written",
            product_code=request.product_code,
            rows=written
        )
        return True

    def _delete_stale_regions(
        self,
        product_code: str,
        period: AllocationPeriod,
        regions: list[str]
    ) -> None:
        """Drop rows for regions this write no longer covers."""
        try:
            (
                self.db.table(self.table)
                .delete()
                .eq("product_code", product_code)
                .eq("year", period.year)
                .eq("month", period.month)
                .eq("week_seq", period.week_seq)
                .not_.in_("region", regions)
                .execute()
            )
        except Exception as e:
            logger.error(
                "stale_region_delete_failed",
                product_code=product_code,
                period=str(period),
                error=str(e)
            )
            raise DatabaseError("delete", str(e))

    @staticmethod
    def _to_row(
        vector: Sequence[int],
        weight_matrix: WeightMatrix,
        region: str,
        request: AllocationRequest,
        period: AllocationPeriod,
        total_actual: int
    ) -> dict:
        weight_row = weight_matrix.row(region)
        region_actual = actual_amount(vector, weight_row.weights) if weight_row else 0

        row = {
            "product_code": request.product_code,
            "product_name": request.product_name,
            "year": period.year,
            "month": period.month,
            "week_seq": period.week_seq,
            "region": region,
            "delivery_kind": request.scope.kind.value,
            "extension_kind": request.scope.extension_kind,
            "target": str(request.target),
            "actual": str(Decimal(total_actual)),
            "region_actual": region_actual,
            "remark": request.remark,
        }
        for label, units in zip(GRADE_LABELS, vector):
            row[label] = units
        return row


# Singleton instance
_service: Optional[WriteBackService] = None


def get_write_back_service() -> WriteBackService:
    """Get or create WriteBackService instance."""
    global _service
    if _service is None:
        _service = WriteBackService()
    return _service
