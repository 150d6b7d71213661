"""
Allocation services.

Each service handles one step of the allocation pipeline.
"""

from services.single_level_allocator import SingleLevelAllocator, get_single_level_allocator
from services.group_ratio_provider import (
    GroupRatios,
    GroupRatioProviderRegistry,
    IntegrityGroupRatioProvider,
)
from services.grouped_allocation_strategy import (
    GroupedAllocationStrategy,
    get_grouped_allocation_strategy,
    split_target,
)
from services.price_band_service import PriceBandService, get_price_band_service
from services.price_band_adjuster import PriceBandGroupAdjuster, get_price_band_adjuster
from services.customer_statistics_service import (
    CustomerStatisticsService,
    get_customer_statistics_service,
)
from services.weight_matrix_builder import WeightMatrixBuilder, get_weight_matrix_builder
from services.write_back_service import WriteBackService, get_write_back_service
from services.allocation_orchestrator import AllocationOrchestrator

__all__ = [
    "SingleLevelAllocator",
    "get_single_level_allocator",
    "GroupRatios",
    "GroupRatioProviderRegistry",
    "IntegrityGroupRatioProvider",
    "GroupedAllocationStrategy",
    "get_grouped_allocation_strategy",
    "split_target",
    "PriceBandService",
    "get_price_band_service",
    "PriceBandGroupAdjuster",
    "get_price_band_adjuster",
    "CustomerStatisticsService",
    "get_customer_statistics_service",
    "WeightMatrixBuilder",
    "get_weight_matrix_builder",
    "WriteBackService",
    "get_write_back_service",
    "AllocationOrchestrator",
]
