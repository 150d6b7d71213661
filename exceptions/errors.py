"""
Custom exception classes for the allocation engine.

Every error carries a stable code, a human-readable message and a details
dict so batch reports can surface it without parsing strings.
"""

from typing import Optional, Any
from datetime import datetime


class AppError(Exception):
    """
    Base exception for all application errors.

    All custom exceptions inherit from this.

    Attributes:
        code: Error code (e.g., "EMPTY_SCOPE")
        message: Human-readable message
        status_code: HTTP-style status code (kept for callers that expose errors)
        details: Additional context
    """

    def __init__(
        self,
        code: str,
        message: str,
        status_code: int = 500,
        details: Optional[dict[str, Any]] = None
    ):
        self.code = code
        self.message = message
        self.status_code = status_code
        self.details = details or {}
        self.timestamp = datetime.utcnow().isoformat()
        super().__init__(message)

    def to_dict(self) -> dict:
        """Convert to report format."""
        return {
            "error": {
                "code": self.code,
                "message": self.message,
                "details": self.details,
                "timestamp": self.timestamp
            }
        }


class ExternalServiceError(AppError):
    """External service failure (503)."""

    def __init__(
        self,
        service: str,
        message: str,
        details: Optional[dict] = None
    ):
        super().__init__(
            code=f"{service.upper()}_ERROR",
            message=message,
            status_code=503,
            details={"service": service, **(details or {})}
        )


class DatabaseError(AppError):
    """Database operation failed (500)."""

    def __init__(
        self,
        operation: str,
        message: str,
        details: Optional[dict] = None
    ):
        super().__init__(
            code="DATABASE_ERROR",
            message=f"Database {operation} failed: {message}",
            status_code=500,
            details={"operation": operation, **(details or {})}
        )


class DatabaseConnectionError(ExternalServiceError):
    """Supabase is not configured or unreachable."""

    def __init__(self, message: str):
        super().__init__(service="supabase", message=message)


# ===================
# CONTRACT VIOLATIONS
# ===================

class ContractViolationError(AppError):
    """
    Corrupt input from an upstream collaborator.

    Negative weights, rows that are not 30 grades long, negative targets.
    Never converted into a per-product outcome: it signals a bug upstream.
    """

    def __init__(self, message: str, details: Optional[dict] = None):
        super().__init__(
            code="CONTRACT_VIOLATION",
            message=message,
            status_code=500,
            details=details
        )


# ===================
# ALLOCATION ERRORS
# ===================

class AllocationError(AppError):
    """
    Expected, recoverable allocation failure (422).

    The orchestrator turns these into a skipped outcome and moves on.
    """

    def __init__(
        self,
        code: str,
        message: str,
        details: Optional[dict] = None
    ):
        super().__init__(
            code=code,
            message=message,
            status_code=422,
            details=details
        )


class EmptyScopeError(AllocationError):
    """No weight data for the requested delivery scope."""

    def __init__(
        self,
        message: str,
        regions: Optional[list[str]] = None,
        code: str = "EMPTY_SCOPE"
    ):
        self.regions = regions or []
        super().__init__(
            code=code,
            message=message,
            details={"regions": self.regions}
        )


class NoCapacityError(AllocationError):
    """Pooled weights sum to zero inside the grade range."""

    def __init__(self, max_index: int, min_index: int):
        super().__init__(
            code="NO_CAPACITY",
            message=f"Weight matrix sums to zero in grade range [{max_index}, {min_index}]",
            details={"max_index": max_index, "min_index": min_index}
        )


class InvalidRangeError(AllocationError):
    """Grade range is out of bounds, inverted or non-contiguous."""

    def __init__(self, message: str, details: Optional[dict] = None):
        super().__init__(
            code="INVALID_RANGE",
            message=message,
            details=details
        )


class InvalidGradeLabelError(AllocationError):
    """Grade label not in the D30..D1 table."""

    def __init__(self, label: Any):
        super().__init__(
            code="INVALID_GRADE_LABEL",
            message=f"Unknown grade label: {label!r}",
            details={"label": label, "valid": "D30..D1"}
        )


class ZeroWeightRegionError(EmptyScopeError):
    """One or more regions have an all-zero weight row inside the range."""

    def __init__(self, regions: list[str]):
        super().__init__(
            message=f"Regions with no customers in grade range: {', '.join(regions)}",
            regions=regions,
            code="ZERO_WEIGHT_REGION"
        )
