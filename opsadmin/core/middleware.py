import logging
import time
from typing import Callable

from fastapi import Request
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse

from .config import Config


logger = logging.getLogger(__name__)


def _request_id(request: Request) -> str:
    return f"{int(time.time() * 1000)}-{id(request)}"


def _with_cors_headers(request: Request, response: JSONResponse) -> JSONResponse:
    origin = request.headers.get("origin")
    if origin and origin in Config.allowed_origins():
        response.headers["Access-Control-Allow-Origin"] = origin
        response.headers["Access-Control-Allow-Credentials"] = "true"
        response.headers["Access-Control-Allow-Methods"] = "GET, POST, PUT, DELETE, OPTIONS"
        response.headers["Access-Control-Allow-Headers"] = "*"
    return response


async def log_requests(request: Request, call_next: Callable):
    start_time = time.time()
    request_id = _request_id(request)

    try:
        response = await call_next(request)
        process_time = time.time() - start_time
        # Only log slow requests (>1s) or errors
        if process_time > 1.0 or response.status_code >= 400:
            logger.info(f"[{request_id}] {request.method} {request.url.path} - {response.status_code} - {process_time:.2f}s")
        return response
    except Exception as e:
        process_time = time.time() - start_time
        logger.error(f"[{request_id}] {request.method} {request.url.path} - ERROR: {str(e)} - {process_time:.2f}s")
        raise


async def validation_exception_handler(request: Request, exc: RequestValidationError):
    request_id = _request_id(request)
    errors = exc.errors()
    logger.warning(f"[{request_id}] Invalid request to {request.method} {request.url.path}: {errors}")

    messages = []
    for error in errors:
        location = ".".join(str(part) for part in error.get("loc", ()) if part != "body")
        messages.append(f"{location}: {error.get('msg')}" if location else str(error.get("msg")))
    detail = "; ".join(messages) or "Invalid request"
    return _with_cors_headers(request, JSONResponse(status_code=400, content={"detail": detail}))


async def global_exception_handler(request: Request, exc: Exception):
    request_id = _request_id(request)
    logger.error(f"[{request_id}] Unhandled exception in {request.method} {request.url.path}: {str(exc)}", exc_info=True)

    response = JSONResponse(status_code=500, content={"detail": "Internal server error"})
    return _with_cors_headers(request, response)
