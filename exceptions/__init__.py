"""
Custom exceptions module.

Recoverable allocation failures derive from AllocationError; corrupt input
raises ContractViolationError.
"""

from exceptions.errors import (
    # Base exceptions
    AppError,
    ExternalServiceError,
    DatabaseError,
    DatabaseConnectionError,

    # Contract
    ContractViolationError,

    # Allocation
    AllocationError,
    EmptyScopeError,
    NoCapacityError,
    InvalidRangeError,
    InvalidGradeLabelError,
    ZeroWeightRegionError,
)

__all__ = [
    # Base
    "AppError",
    "ExternalServiceError",
    "DatabaseError",
    "DatabaseConnectionError",

    # Contract
    "ContractViolationError",

    # Allocation
    "AllocationError",
    "EmptyScopeError",
    "NoCapacityError",
    "InvalidRangeError",
    "InvalidGradeLabelError",
    "ZeroWeightRegionError",
]
