"""
Allocation orchestrator.

Runs a batch of products for one period and reports how it went. A single
product's problem never aborts the batch: expected allocation errors become
SKIPPED outcomes, write-back problems and unexpected errors become FAILED
outcomes. Only contract violations (corrupt upstream data) propagate.

Independent products:
    scope → weight matrix → grouped strategy → validate → write back

Price-band products:
    resolve bands → build city-wide matrix once → seed every member →
    adjust every band → validate → write back
"""

from concurrent.futures import ThreadPoolExecutor
from decimal import Decimal
from itertools import repeat
from typing import Optional, Protocol, Sequence

import structlog

from config import settings as default_settings
from config.settings import Settings
from exceptions import (
    AllocationError,
    AppError,
    ContractViolationError,
    DatabaseError,
    ExternalServiceError,
)
from models.allocation import AllocationPeriod, AllocationRequest, DeliveryScope
from models.batch import BandAdjustmentIssue, BatchReport, OutcomeStatus, ProductOutcome
from models.grade import GradeRange
from models.weight_matrix import WeightMatrix
from services.grouped_allocation_strategy import (
    GroupedAllocationStrategy,
    get_grouped_allocation_strategy,
)
from services.price_band_adjuster import PriceBandGroupAdjuster, get_price_band_adjuster
from services.price_band_service import PriceBandService, get_price_band_service
from services.single_level_allocator import SingleLevelAllocator, get_single_level_allocator
from services.weight_matrix_builder import WeightMatrixBuilder, get_weight_matrix_builder
from utils.matrix_utils import matrix_actual_amount
from utils.text_utils import needs_biweekly_boost

logger = structlog.get_logger(__name__)

UNEXPECTED_ERROR = "UNEXPECTED_ERROR"


class WriteBackSink(Protocol):
    def write_back(
        self,
        allocation_matrix: Sequence[Sequence[int]],
        weight_matrix: WeightMatrix,
        regions: Sequence[str],
        request: AllocationRequest,
        period: AllocationPeriod
    ) -> bool:
        ...


class AllocationOrchestrator:
    """Batch driver tying the allocation services together."""

    def __init__(
        self,
        sink: WriteBackSink,
        builder: Optional[WeightMatrixBuilder] = None,
        strategy: Optional[GroupedAllocationStrategy] = None,
        allocator: Optional[SingleLevelAllocator] = None,
        band_service: Optional[PriceBandService] = None,
        adjuster: Optional[PriceBandGroupAdjuster] = None,
        settings: Optional[Settings] = None
    ):
        self.sink = sink
        self.builder = builder or get_weight_matrix_builder()
        self.strategy = strategy or get_grouped_allocation_strategy()
        self.allocator = allocator or get_single_level_allocator()
        self.band_service = band_service or get_price_band_service()
        self.adjuster = adjuster or get_price_band_adjuster()
        self.settings = settings or default_settings

    def run_batch(
        self,
        requests: list[AllocationRequest],
        period: AllocationPeriod
    ) -> BatchReport:
        """
        Allocate and write back every request.

        Args:
            requests: Products to allocate; allocation fields are filled in
            period: Statistics / write-back partition

        Returns:
            BatchReport with one outcome per request, in request order

        Raises:
            ContractViolationError: Corrupt weights or targets upstream
        """
        independent = [r for r in requests if not r.price_band_grouping]
        banded = [r for r in requests if r.price_band_grouping]

        logger.info(
            "batch_started",
            period=str(period),
            independent=len(independent),
            banded=len(banded)
        )

        outcomes: dict[int, ProductOutcome] = {}
        band_issues: list[BandAdjustmentIssue] = []

        workers = self.settings.batch_max_workers
        if workers > 1 and len(independent) > 1:
            with ThreadPoolExecutor(max_workers=workers) as executor:
                results = list(executor.map(self.process_product, independent, repeat(period)))
        else:
            results = [self.process_product(r, period) for r in independent]
        for request, outcome in zip(independent, results):
            outcomes[id(request)] = outcome

        if banded:
            outcomes.update(self._process_banded(banded, period, band_issues))

        report = self._build_report(
            [outcomes[id(r)] for r in requests],
            band_issues,
            period
        )

        logger.info(
            "batch_complete",
            period=str(period),
            attempted=report.attempted,
            succeeded=report.succeeded,
            skipped=report.skipped,
            failed=report.failed,
            avg_relative_error=str(report.avg_relative_error),
            max_relative_error=str(report.max_relative_error)
        )
        return report

    def process_product(
        self,
        request: AllocationRequest,
        period: AllocationPeriod
    ) -> ProductOutcome:
        """
        Allocate and write back one independent product.

        Anything but a contract violation ends as an outcome, so a failing
        product never takes the rest of the batch down with it.
        """
        try:
            return self._process_product(request, period)
        except ContractViolationError:
            raise
        except Exception as e:
            logger.exception(
                "product_failed_unexpectedly",
                product_code=request.product_code,
                error=str(e),
                error_type=type(e).__name__
            )
            return self._unexpected(request, e)

    def _process_product(
        self,
        request: AllocationRequest,
        period: AllocationPeriod
    ) -> ProductOutcome:
        log = logger.bind(product_code=request.product_code)
        grade_range = self._range_for(request)

        try:
            weight_matrix = self.builder.build(
                request.scope,
                period,
                grade_range,
                biweekly_boost=self._needs_boost(request)
            )
            result = self.strategy.execute(
                weight_matrix,
                request.target,
                request.scope.kind,
                extension_kind=request.scope.extension_kind,
                grade_range=grade_range,
                group_ratios=request.scope.group_ratios,
                region_group_map=request.scope.region_group_map,
            )
        except AllocationError as e:
            log.warning("product_skipped", code=e.code, reason=e.message)
            return self._skipped(request, e.message, e.code)

        if not result.success:
            log.warning("product_skipped", reason=result.message)
            return self._skipped(request, result.message, "ALLOCATION_FAILED")

        problem = self._validate(result.matrix, request.target)
        if problem:
            log.warning("product_skipped", reason=problem)
            return self._skipped(request, problem, "INVALID_RESULT")

        request.allocation = list(result.matrix[0])
        return self._write(request, result.matrix, weight_matrix, result.regions, period)

    # ===================
    # PRICE BANDS
    # ===================

    def _process_banded(
        self,
        requests: list[AllocationRequest],
        period: AllocationPeriod,
        band_issues: list[BandAdjustmentIssue]
    ) -> dict[int, ProductOutcome]:
        outcomes: dict[int, ProductOutcome] = {}
        grouping = self.band_service.group(requests)

        band_of: dict[int, Optional[int]] = {}
        for code, members in grouping.groups.items():
            for member in members:
                band_of[id(member)] = code
        for request in grouping.unmatched:
            band_of[id(request)] = None
            band_issues.append(BandAdjustmentIssue(
                product_code=request.product_code,
                band_code=None,
                message=f"Price {request.wholesale_price} matches no band; allocated alone"
            ))

        city_wide = DeliveryScope.city_wide()
        boost_needed = any(self._needs_boost(r) for r in requests)
        try:
            base_matrix = self.builder.build(city_wide, period)
            boosted_matrix = (
                self.builder.build(city_wide, period, biweekly_boost=True)
                if boost_needed else None
            )
        except AllocationError as e:
            logger.warning("price_band_matrix_failed", code=e.code, reason=e.message)
            return {
                id(r): self._skipped(r, e.message, e.code, band_of.get(id(r)))
                for r in requests
            }

        base_weights = base_matrix.pooled()
        boosted_weights = boosted_matrix.pooled() if boosted_matrix else None

        # Seed every member before any band is adjusted
        for request in requests:
            weights = boosted_weights if boosted_weights and self._needs_boost(request) else base_weights
            try:
                request.allocation = self.allocator.allocate_row(
                    weights, request.target, self._range_for(request)
                )
            except AllocationError as e:
                outcomes[id(request)] = self._skipped(
                    request, e.message, e.code, band_of.get(id(request))
                )

        groups = {
            code: [m for m in members if id(m) not in outcomes]
            for code, members in grouping.groups.items()
        }
        issues = self.adjuster.adjust(groups, base_weights, boosted_weights, GradeRange.full())
        band_issues.extend(issues)
        issue_by_code = {issue.product_code: issue for issue in issues}

        for request in requests:
            if id(request) in outcomes:
                continue
            band_code = band_of.get(id(request))

            issue = issue_by_code.get(request.product_code)
            if issue is not None:
                outcomes[id(request)] = self._skipped(
                    request, issue.message, "BAND_ADJUSTMENT", band_code
                )
                continue

            problem = self._validate([request.allocation], request.target)
            if problem:
                outcomes[id(request)] = self._skipped(request, problem, "INVALID_RESULT", band_code)
                continue

            weight_matrix = (
                boosted_matrix if boosted_matrix and self._needs_boost(request) else base_matrix
            )
            outcomes[id(request)] = self._write(
                request,
                [list(request.allocation)],
                weight_matrix,
                weight_matrix.regions,
                period,
                band_code
            )

        return outcomes

    # ===================
    # HELPERS
    # ===================

    def _write(
        self,
        request: AllocationRequest,
        allocation_matrix: list[list[int]],
        weight_matrix: WeightMatrix,
        regions: list[str],
        period: AllocationPeriod,
        band_code: Optional[int] = None
    ) -> ProductOutcome:
        actual = Decimal(matrix_actual_amount(allocation_matrix, weight_matrix))
        outcome = ProductOutcome(
            product_code=request.product_code,
            status=OutcomeStatus.SUCCEEDED,
            target=request.target,
            actual=actual,
            band_code=band_code,
            band_range=request.band_range,
        )

        try:
            written = self.sink.write_back(allocation_matrix, weight_matrix, regions, request, period)
        except (DatabaseError, ExternalServiceError) as e:
            logger.error(
                "product_write_back_failed",
                product_code=request.product_code,
                error=e.message
            )
            return self._failed(outcome, e)
        except ContractViolationError:
            raise
        except Exception as e:
            logger.exception(
                "product_write_back_crashed",
                product_code=request.product_code,
                error=str(e),
                error_type=type(e).__name__
            )
            return outcome.model_copy(update={
                "status": OutcomeStatus.FAILED,
                "message": str(e),
                "error_code": UNEXPECTED_ERROR,
            })

        if not written:
            logger.error("product_write_back_rejected", product_code=request.product_code)
            return outcome.model_copy(update={
                "status": OutcomeStatus.FAILED,
                "message": "Write-back returned no rows",
                "error_code": "WRITE_BACK_FAILED",
            })

        logger.info(
            "allocation_complete",
            product_code=request.product_code,
            target=str(request.target),
            actual=str(actual)
        )
        return outcome

    def _range_for(self, request: AllocationRequest) -> GradeRange:
        if request.grade_range is not None:
            return request.grade_range
        return GradeRange.of_labels(
            self.settings.default_max_grade,
            self.settings.default_min_grade
        )

    def _needs_boost(self, request: AllocationRequest) -> bool:
        return needs_biweekly_boost(request.remark, self.settings.biweekly_boost_phrase)

    @staticmethod
    def _validate(allocation_matrix: list[list[int]], target: Decimal) -> Optional[str]:
        """Problem with a computed matrix, or None if it can be written."""
        if not allocation_matrix:
            return "Allocation matrix is empty"
        if target > 0 and not any(any(row) for row in allocation_matrix):
            return "Allocation is all zero for a positive target"
        return None

    @staticmethod
    def _skipped(
        request: AllocationRequest,
        message: str,
        code: str,
        band_code: Optional[int] = None
    ) -> ProductOutcome:
        return ProductOutcome(
            product_code=request.product_code,
            status=OutcomeStatus.SKIPPED,
            message=message,
            error_code=code,
            target=request.target,
            band_code=band_code,
        )

    @staticmethod
    def _unexpected(request: AllocationRequest, error: Exception) -> ProductOutcome:
        return ProductOutcome(
            product_code=request.product_code,
            status=OutcomeStatus.FAILED,
            message=str(error) or type(error).__name__,
            error_code=UNEXPECTED_ERROR,
            target=request.target,
        )

    @staticmethod
    def _failed(outcome: ProductOutcome, error: AppError) -> ProductOutcome:
        return outcome.model_copy(update={
            "status": OutcomeStatus.FAILED,
            "message": error.message,
            "error_code": error.code,
        })

    def _build_report(
        self,
        outcomes: list[ProductOutcome],
        band_issues: list[BandAdjustmentIssue],
        period: AllocationPeriod
    ) -> BatchReport:
        errors = [
            o.relative_error for o in outcomes
            if o.status == OutcomeStatus.SUCCEEDED and o.relative_error is not None
        ]
        avg_error = sum(errors, Decimal(0)) / len(errors) if errors else Decimal(0)
        max_error = max(errors) if errors else Decimal(0)

        within = (
            avg_error <= Decimal(str(self.settings.avg_error_tolerance))
            and max_error <= Decimal(str(self.settings.max_error_tolerance))
        )
        if not within:
            logger.warning(
                "batch_error_above_tolerance",
                period=str(period),
                avg_relative_error=str(avg_error),
                max_relative_error=str(max_error),
                avg_tolerance=self.settings.avg_error_tolerance,
                max_tolerance=self.settings.max_error_tolerance
            )

        return BatchReport(
            period=str(period),
            outcomes=outcomes,
            band_issues=band_issues,
            avg_relative_error=avg_error,
            max_relative_error=max_error,
            within_tolerance=within,
        )

