import logging
from typing import Optional

from fastapi import HTTPException, Request

from .services.dashboard_service import DashboardService
from .services.entity_service import EntityService


logger = logging.getLogger(__name__)


def get_entity_service(request: Request) -> EntityService:
    service = getattr(request.app.state, "entity_service", None)
    if service is None:
        logger.error("Entity service is unavailable (not configured on app.state)")
        raise HTTPException(status_code=503, detail="Entity service is currently unavailable")
    return service


def get_dashboard_service(request: Request) -> Optional[DashboardService]:
    return getattr(request.app.state, "dashboard_service", None)
