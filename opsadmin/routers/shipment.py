import logging
from datetime import datetime, timezone
from typing import Dict, List, Optional

from fastapi import APIRouter, Depends, HTTPException
from pydantic import BaseModel, ConfigDict, Field

from ..core.errors import DependencyUnavailableError, EntityNotFoundError, InvalidTransitionError
from ..dependencies import get_entity_service
from ..models.conditions import all_of, equals
from ..models.envelope import EntityWithMetadata
from ..models.registry import SHIPMENT
from ..services.entity_service import EntityService
from .common import failure, unavailable


logger = logging.getLogger(__name__)

router = APIRouter(prefix=f"/{SHIPMENT.path}", tags=[SHIPMENT.name])

# Lower-cased status -> workflow transition
STATUS_TRANSITIONS: Dict[str, str] = {
    "waiting_to_send": "ready_to_send",
    "sent": "mark_sent",
    "delivered": "mark_delivered",
}


class PickingUpdate(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    sku: str
    qty_picked: Optional[int] = Field(default=None, alias="qtyPicked")


class ShippingUpdate(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    sku: str
    qty_shipped: Optional[int] = Field(default=None, alias="qtyShipped")


def transition_for_status(status: str) -> str:
    transition = STATUS_TRANSITIONS.get(status.lower())
    if transition is None:
        raise InvalidTransitionError(status, sorted(STATUS_TRANSITIONS))
    return transition


def _timestamp() -> str:
    return datetime.now(timezone.utc).isoformat()


def _find_shipment(service: EntityService, shipment_id: str) -> EntityWithMetadata:
    found = service.find_by_business_id(SHIPMENT, shipment_id)
    if found is None:
        raise EntityNotFoundError(SHIPMENT.name, shipment_id)
    return found


def _apply_line_updates(entity: dict, updates: Dict[str, Optional[int]], field_name: str) -> None:
    for line in entity.get("lines") or []:
        sku = line.get("sku")
        if sku in updates:
            line[field_name] = updates[sku]
            logger.debug(f"Updated {field_name} for {sku}: {updates[sku]}")


@router.put("/{shipment_id}/status/{status}", response_model=EntityWithMetadata)
def update_shipment_status(shipment_id: str, status: str, service: EntityService = Depends(get_entity_service)):
    """Move a shipment to ``status`` by firing the matching workflow transition."""
    try:
        transition = transition_for_status(status)
    except InvalidTransitionError as e:
        logger.warning(f"Rejected status update for shipment {shipment_id}: {e}")
        raise HTTPException(status_code=400, detail=str(e))

    try:
        shipment = _find_shipment(service, shipment_id)
        entity = shipment.entity
        entity["status"] = status.upper()
        entity["updatedAt"] = _timestamp()
        updated = service.update_by_business_id(SHIPMENT, shipment_id, entity, transition)
    except EntityNotFoundError as e:
        raise HTTPException(status_code=404, detail=str(e))
    except DependencyUnavailableError as e:
        raise unavailable(e)
    except Exception as e:
        raise failure(e, f"update status of shipment '{shipment_id}'")

    logger.info(f"Shipment {shipment_id} transitioned with: {transition}")
    return updated


@router.get("/order/{order_id}", response_model=List[EntityWithMetadata])
def get_shipments_by_order(order_id: str, service: EntityService = Depends(get_entity_service)):
    try:
        return service.search(SHIPMENT, all_of([equals("orderId", order_id)]))
    except DependencyUnavailableError as e:
        raise unavailable(e)
    except Exception as e:
        raise failure(e, f"get shipments for order '{order_id}'")


def _update_quantities(
    service: EntityService,
    shipment_id: str,
    updates: Dict[str, Optional[int]],
    field_name: str,
) -> EntityWithMetadata:
    try:
        shipment = _find_shipment(service, shipment_id)
        entity = shipment.entity
        _apply_line_updates(entity, updates, field_name)
        entity["updatedAt"] = _timestamp()
        # No transition: the shipment stays in its current state
        updated = service.update(SHIPMENT, shipment.id, entity)
    except EntityNotFoundError as e:
        raise HTTPException(status_code=404, detail=str(e))
    except DependencyUnavailableError as e:
        raise unavailable(e)
    except Exception as e:
        raise failure(e, f"update {field_name} for shipment '{shipment_id}'")

    logger.info(f"{field_name} updated for shipment: {shipment_id}")
    return updated


@router.post("/{shipment_id}/pick", response_model=EntityWithMetadata)
def update_picking_quantities(
    shipment_id: str,
    picking_updates: List[PickingUpdate],
    service: EntityService = Depends(get_entity_service),
):
    updates = {update.sku: update.qty_picked for update in picking_updates}
    return _update_quantities(service, shipment_id, updates, "qtyPicked")


@router.post("/{shipment_id}/ship", response_model=EntityWithMetadata)
def update_shipping_quantities(
    shipment_id: str,
    shipping_updates: List[ShippingUpdate],
    service: EntityService = Depends(get_entity_service),
):
    updates = {update.sku: update.qty_shipped for update in shipping_updates}
    return _update_quantities(service, shipment_id, updates, "qtyShipped")
