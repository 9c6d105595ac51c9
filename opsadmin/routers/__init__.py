"""HTTP routers: the generic entity router plus the type-specific extras."""

from typing import List

from fastapi import APIRouter

from ..models.registry import ENTITY_MODELS
from . import dashboard, payment, shipment, study
from .entities import build_entity_router


def all_routers() -> List[APIRouter]:
    # Type-specific routes first so their literal path segments win
    routers = [shipment.router, study.router, payment.router, dashboard.router]
    routers.extend(build_entity_router(model) for model in ENTITY_MODELS)
    return routers
