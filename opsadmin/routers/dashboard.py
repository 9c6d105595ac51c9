import logging
from typing import Optional

from fastapi import APIRouter, Depends, HTTPException, Response

from ..core.errors import DependencyUnavailableError, error_message
from ..dependencies import get_dashboard_service
from ..services.dashboard_service import DashboardService, DashboardSummary


logger = logging.getLogger(__name__)

router = APIRouter(prefix="/dashboard", tags=["Dashboard"])


@router.get("/summary", response_model=DashboardSummary)
def get_dashboard_summary(dashboard_service: Optional[DashboardService] = Depends(get_dashboard_service)):
    """Aggregated portfolio metrics, cached for five minutes."""
    logger.info("GET /dashboard/summary - Retrieving dashboard summary")

    if dashboard_service is None:
        logger.error("Dashboard service is unavailable (not configured)")
        raise HTTPException(status_code=503, detail="Dashboard service is currently unavailable")

    try:
        summary = dashboard_service.get_summary()
    except DependencyUnavailableError as e:
        logger.error(f"Dashboard data source unavailable: {e}")
        raise HTTPException(status_code=503, detail=f"Dashboard service is currently unavailable: {error_message(e)}")
    except Exception as e:
        logger.error(f"Failed to retrieve dashboard summary: {error_message(e)}", exc_info=True)
        raise HTTPException(status_code=500, detail=f"Failed to retrieve dashboard summary: {error_message(e)}")

    logger.info(
        f"Successfully retrieved dashboard summary - Portfolio: {summary.total_portfolio_value}, "
        f"Active Loans: {summary.active_loans_count}, Active Borrowers: {summary.active_borrowers_count}"
    )
    return summary


@router.post("/cache/invalidate", status_code=204)
def invalidate_dashboard_cache(dashboard_service: Optional[DashboardService] = Depends(get_dashboard_service)):
    logger.info("POST /dashboard/cache/invalidate - Invalidating dashboard cache")
    # Nothing cached without a service; the next read reports 503 anyway
    if dashboard_service is not None:
        dashboard_service.invalidate_cache()
    return Response(status_code=204)
