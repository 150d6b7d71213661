"""
Pydantic models and value objects for the allocation engine.
"""

from models.base import BaseSchema
from models.grade import (
    GRADE_COUNT,
    GRADE_LABELS,
    GradeRange,
    grade_label_to_index,
    index_to_grade_label,
    zero_vector,
)
from models.weight_matrix import (
    CustomerStatRecord,
    RegionWeights,
    WeightMatrix,
)
from models.allocation import (
    DeliveryKind,
    DeliveryScope,
    AllocationPeriod,
    AllocationRequest,
    AllocationResult,
)
from models.price_band import (
    DEFAULT_PRICE_BANDS,
    PriceBandDefinition,
    PriceBandConfig,
)
from models.batch import (
    OutcomeStatus,
    BandAdjustmentIssue,
    ProductOutcome,
    BatchReport,
)

__all__ = [
    # Base
    "BaseSchema",

    # Grade
    "GRADE_COUNT",
    "GRADE_LABELS",
    "GradeRange",
    "grade_label_to_index",
    "index_to_grade_label",
    "zero_vector",

    # Weights
    "CustomerStatRecord",
    "RegionWeights",
    "WeightMatrix",

    # Allocation
    "DeliveryKind",
    "DeliveryScope",
    "AllocationPeriod",
    "AllocationRequest",
    "AllocationResult",

    # Price band
    "DEFAULT_PRICE_BANDS",
    "PriceBandDefinition",
    "PriceBandConfig",

    # Batch
    "OutcomeStatus",
    "BandAdjustmentIssue",
    "ProductOutcome",
    "BatchReport",
]
