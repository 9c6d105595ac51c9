"""Error taxonomy shared by the entity platform clients and the routers.

Routers translate these into HTTP status codes:

- ``DuplicateEntityError`` -> 409
- ``EntityNotFoundError`` -> 404
- ``InvalidTransitionError`` -> 400
- ``DependencyUnavailableError`` -> 503
- ``DashboardAggregationError`` -> 500
"""

from typing import Optional


class EntityServiceError(Exception):
    """Base class for failures reported by the entity platform."""


class DuplicateEntityError(EntityServiceError):
    def __init__(self, model_name: str, business_key: str, value: str):
        self.model_name = model_name
        self.business_key = business_key
        self.value = value
        super().__init__(f"{model_name} already exists with {business_key}: {value}")


class EntityNotFoundError(EntityServiceError):
    def __init__(self, model_name: str, identifier: object):
        self.model_name = model_name
        self.identifier = identifier
        super().__init__(f"{model_name} not found: {identifier}")


class InvalidTransitionError(EntityServiceError):
    def __init__(self, value: str, allowed: Optional[list[str]] = None):
        self.value = value
        self.allowed = allowed or []
        message = f"Invalid transition: {value}"
        if self.allowed:
            message += f". Allowed: {', '.join(self.allowed)}"
        super().__init__(message)


class DependencyUnavailableError(EntityServiceError):
    """The external platform (or another collaborator) cannot be reached."""


class DashboardAggregationError(Exception):
    """Computing the dashboard summary failed."""


def error_message(exc: BaseException) -> str:
    """Best-effort human readable message for any exception."""
    message = getattr(exc, "message", None)
    if isinstance(message, str) and message.strip():
        return message
    text = str(exc)
    if text.strip():
        return text
    return type(exc).__name__
