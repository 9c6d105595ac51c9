import logging

from fastapi import APIRouter, Depends, HTTPException

from ..core.errors import DependencyUnavailableError, EntityNotFoundError
from ..dependencies import get_entity_service
from ..models.envelope import EntityWithMetadata
from ..models.registry import PAYMENT
from ..services.entity_service import EntityService
from .common import failure, unavailable


logger = logging.getLogger(__name__)

router = APIRouter(prefix=f"/{PAYMENT.path}", tags=[PAYMENT.name])

CANCELLABLE_STATUS = "INITIATED"
CANCEL_TRANSITION = "cancel_payment"


@router.post("/{payment_id}/cancel", response_model=EntityWithMetadata)
def cancel_payment(payment_id: str, service: EntityService = Depends(get_entity_service)):
    """Cancel a payment that has not progressed past INITIATED."""
    try:
        payment = service.find_by_business_id(PAYMENT, payment_id)
        if payment is None:
            raise EntityNotFoundError(PAYMENT.name, payment_id)

        current_status = payment.entity.get("status")
        if current_status != CANCELLABLE_STATUS:
            raise HTTPException(
                status_code=400,
                detail=f"Can only cancel payments in {CANCELLABLE_STATUS} status. Current status: {current_status}",
            )

        cancelled = service.update(PAYMENT, payment.id, payment.entity, CANCEL_TRANSITION)
    except HTTPException:
        raise
    except EntityNotFoundError as e:
        raise HTTPException(status_code=404, detail=str(e))
    except DependencyUnavailableError as e:
        raise unavailable(e)
    except Exception as e:
        raise failure(e, f"cancel payment '{payment_id}'")

    logger.info(f"Payment {payment_id} canceled")
    return cancelled
