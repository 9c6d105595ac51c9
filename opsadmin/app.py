import logging
import time
from datetime import datetime
from typing import Optional

from fastapi import FastAPI
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware

from . import __version__
from .core.config import Config
from .core.middleware import global_exception_handler, log_requests, validation_exception_handler
from .models.registry import ENTITY_MODELS
from .routers import all_routers
from .services.dashboard_service import DashboardService
from .services.entity_service import EntityService, InMemoryEntityService
from .services.supabase_service import SupabaseEntityService


logger = logging.getLogger(__name__)

SERVICE_NAME = "opsadmin-api"
HEALTH_PROBE_ID = "__health__"


def build_entity_service() -> EntityService:
    """In-memory platform in development, Supabase everywhere else."""
    if Config.is_development():
        logger.warning("ENVIRONMENT=development: using the in-memory entity platform")
        return InMemoryEntityService()
    return SupabaseEntityService()


def create_app(
    entity_service: Optional[EntityService] = None,
    dashboard_service: Optional[DashboardService] = None,
) -> FastAPI:
    """Build the admin API with its collaborators injected explicitly."""
    if entity_service is None:
        entity_service = build_entity_service()
    if dashboard_service is None:
        dashboard_service = DashboardService(entity_service, ttl_seconds=Config.DASHBOARD_CACHE_TTL_SECONDS)

    app = FastAPI(title="Operations Admin API", version=__version__)
    app.state.entity_service = entity_service
    app.state.dashboard_service = dashboard_service

    app.add_middleware(
        CORSMiddleware,
        allow_origins=Config.allowed_origins(),
        allow_credentials=True,
        allow_methods=["GET", "POST", "PUT", "DELETE", "OPTIONS"],
        allow_headers=["*"],
    )

    @app.middleware("http")
    async def _log_requests(request, call_next):
        return await log_requests(request, call_next)

    app.add_exception_handler(RequestValidationError, validation_exception_handler)
    app.add_exception_handler(Exception, global_exception_handler)

    for router in all_routers():
        app.include_router(router)

    @app.get("/health")
    def health_check():
        """Basic health and dependency checks for the API."""
        health_start_time = time.time()

        try:
            app.state.entity_service.find_by_business_id(ENTITY_MODELS[0], HEALTH_PROBE_ID)
            health_duration = time.time() - health_start_time

            return {
                "status": "healthy",
                "service": SERVICE_NAME,
                "timestamp": datetime.now().isoformat(),
                "response_time_ms": round(health_duration * 1000, 2),
            }
        except Exception as e:
            health_duration = time.time() - health_start_time
            logger.error(f"Health check failed: {str(e)} - Duration: {health_duration:.1f}s")

            return {
                "status": "unhealthy",
                "service": SERVICE_NAME,
                "timestamp": datetime.now().isoformat(),
                "error": str(e),
                "response_time_ms": round(health_duration * 1000, 2),
            }

    @app.get("/")
    def root():
        """Return basic API information."""
        endpoints = {model.label: f"/{model.path}" for model in ENTITY_MODELS}
        endpoints["dashboard"] = "/dashboard/summary"
        endpoints["health"] = "/health"

        return {
            "service": "Operations Admin API",
            "version": __version__,
            "endpoints": endpoints,
            "timestamp": datetime.now().isoformat(),
            "description": "CRUD and workflow transitions for loan and clinical-operations entities",
        }

    return app


app = create_app()
