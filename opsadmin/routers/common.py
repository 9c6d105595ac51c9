import logging

from fastapi import HTTPException

from ..core.errors import error_message


logger = logging.getLogger(__name__)


def unavailable(exc: Exception) -> HTTPException:
    logger.error(f"Entity platform unavailable: {exc}")
    return HTTPException(status_code=503, detail=f"Entity platform unavailable: {error_message(exc)}")


def failure(exc: Exception, action: str, status_code: int = 400) -> HTTPException:
    logger.error(f"Failed to {action}: {error_message(exc)} ({type(exc).__name__})", exc_info=True)
    return HTTPException(status_code=status_code, detail=f"Failed to {action}: {error_message(exc)}")
