"""
Customer statistics source.

Reads region × grade customer counts for one period from Supabase. Each row
is one (region, visit cycle) pair with one column per grade label.
"""

import re
from typing import Optional
import structlog

from config import get_supabase_client, settings
from exceptions import DatabaseError
from models.allocation import AllocationPeriod
from models.weight_matrix import CustomerStatRecord

logger = structlog.get_logger(__name__)

# Grade columns look like "D30" / "d30"; anything else is metadata
_GRADE_COLUMN = re.compile(r"^[Dd]\d+$")


class CustomerStatisticsService:
    """
    Read-only access to the customer statistics table.
    """

    def __init__(self):
        self.db = get_supabase_client()
        self.table = settings.statistics_table

    def fetch_records(
        self,
        period: AllocationPeriod,
        regions: Optional[list[str]] = None
    ) -> list[CustomerStatRecord]:
        """
        Get statistics rows for a period.

        Args:
            period: Year / month / week partition
            regions: Restrict to these regions (None = all)

        Returns:
            One CustomerStatRecord per row
        """
        logger.info(
            "fetching_customer_statistics",
            period=str(period),
            region_count=len(regions) if regions else None
        )

        try:
            query = (
                self.db.table(self.table)
                .select("*")
                .eq("year", period.year)
                .eq("month", period.month)
                .eq("week_seq", period.week_seq)
            )
            if regions:
                query = query.in_("region", regions)

            result = query.execute()

        except Exception as e:
            logger.error(
                "fetch_customer_statistics_failed",
                period=str(period),
                error=str(e)
            )
            raise DatabaseError("select", str(e))

        records = [self._to_record(row) for row in result.data]

        logger.info(
            "customer_statistics_retrieved",
            period=str(period),
            count=len(records)
        )
        return records

    @staticmethod
    def _to_record(row: dict) -> CustomerStatRecord:
        grade_counts = {
            key.upper(): value if value is not None else 0
            for key, value in row.items()
            if _GRADE_COLUMN.match(key)
        }
        return CustomerStatRecord(
            region=(row.get("region") or "").strip(),
            visit_cycle=row.get("visit_cycle"),
            grade_counts=grade_counts,
        )


# Singleton instance
_service: Optional[CustomerStatisticsService] = None


def get_customer_statistics_service() -> CustomerStatisticsService:
    """Get or create CustomerStatisticsService instance."""
    global _service
    if _service is None:
        _service = CustomerStatisticsService()
    return _service
