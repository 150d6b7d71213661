"""
Grade Allocation Engine - composition root.

Configures logging and wires the orchestrator to the Supabase statistics
source and write-back sink.
"""

import logging
from typing import Optional
import structlog

from config import settings, check_connection
from models.allocation import AllocationPeriod, AllocationRequest
from models.batch import BatchReport
from services.allocation_orchestrator import AllocationOrchestrator, WriteBackSink
from services.weight_matrix_builder import WeightMatrixBuilder
from services.write_back_service import get_write_back_service

# Configure structured logging
logging.basicConfig(format="%(message)s", level=settings.log_level)

structlog.configure(
    processors=[
        structlog.stdlib.filter_by_level,
        structlog.stdlib.add_logger_name,
        structlog.stdlib.add_log_level,
        structlog.processors.TimeStamper(fmt="iso"),
        structlog.processors.JSONRenderer() if settings.is_production
            else structlog.dev.ConsoleRenderer()
    ],
    wrapper_class=structlog.stdlib.BoundLogger,
    context_class=dict,
    logger_factory=structlog.stdlib.LoggerFactory(),
    cache_logger_on_first_use=True,
)

logger = structlog.get_logger(__name__)


def build_orchestrator(
    sink: Optional[WriteBackSink] = None,
    builder: Optional[WeightMatrixBuilder] = None
) -> AllocationOrchestrator:
    """
    Orchestrator with default collaborators.

    Without arguments the statistics source and the sink both talk to
    Supabase.
    """
    return AllocationOrchestrator(
        sink=sink or get_write_back_service(),
        builder=builder,
        settings=settings,
    )


def run_allocation(
    requests: list[AllocationRequest],
    period: AllocationPeriod,
    orchestrator: Optional[AllocationOrchestrator] = None
) -> BatchReport:
    """
    Run one batch and log its summary.

    Without an orchestrator, the database connection is checked first.
    """
    logger.info(
        "allocation_run_starting",
        environment=settings.environment,
        period=str(period),
        products=len(requests)
    )

    if orchestrator is None:
        db_status = check_connection()
        if db_status["status"] != "healthy":
            logger.error(
                "database_connection_failed",
                error=db_status.get("error")
            )
        orchestrator = build_orchestrator()

    report = orchestrator.run_batch(requests, period)

    for outcome in report.outcomes:
        if outcome.message:
            logger.info(
                "product_outcome",
                product_code=outcome.product_code,
                status=outcome.status.value,
                message=outcome.message
            )

    return report
