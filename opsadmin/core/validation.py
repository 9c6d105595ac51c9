import logging
from typing import Any, Optional

from fastapi import HTTPException


logger = logging.getLogger(__name__)


def validate_entity_body(body: Any, label: str) -> dict:
    if not isinstance(body, dict) or not body:
        raise HTTPException(status_code=400, detail=f"{label} data is required")
    return body


def validate_business_id(body: dict, business_key: str) -> str:
    value = body.get(business_key)
    if value is None or not str(value).strip():
        raise HTTPException(status_code=400, detail=f"{business_key} is required")
    return str(value)


def normalize_transition(transition: Optional[str]) -> Optional[str]:
    """Return the transition name, or None when it is absent or blank."""
    if transition is None or not transition.strip():
        return None
    return transition
