"""Progression error taxonomy and the JSON error envelope used by every endpoint."""
from typing import Any

import sentry_sdk
import structlog
from fastapi import HTTPException, Request
from fastapi.responses import JSONResponse
from pydantic import BaseModel

logger = structlog.get_logger()


class ProgressionError(Exception):
    """Base class for every error raised by the progression engine."""

    error_code = "progression_error"
    status_code = 500
    retryable = False

    def __init__(self, message: str, **detail: Any) -> None:
        super().__init__(message)
        self.message = message
        self.detail = detail or None


class InvalidInputError(ProgressionError):
    """Unknown action tag, bad score kind or out-of-range value. Nothing was written."""

    error_code = "invalid_input"
    status_code = 422


class CatalogLookupError(ProgressionError):
    """A badge or level id is not in the static catalog. Programmer error."""

    error_code = "catalog_lookup_failed"
    status_code = 500


class StorageError(ProgressionError):
    """An atomic increment/insert/update could not be committed. Safe to retry."""

    error_code = "storage_failure"
    status_code = 503
    retryable = True


class ErrorResponse(BaseModel):
    """Standard error envelope returned by all API error handlers."""
    error: str
    message: str
    detail: Any = None
    retryable: bool = False
    request_id: str = "unknown"


async def progression_exception_handler(request: Request, exc: ProgressionError) -> JSONResponse:
    """Map domain errors onto the shared envelope."""
    request_id = request.headers.get("x-request-id", "unknown")

    if exc.status_code >= 500:
        logger.error(
            "progression_error",
            error=exc.message,
            error_type=type(exc).__name__,
            path=request.url.path,
            request_id=request_id,
        )
        sentry_sdk.capture_exception(exc)

    body = ErrorResponse(
        error=exc.error_code,
        message=exc.message,
        detail=exc.detail,
        retryable=exc.retryable,
        request_id=request_id,
    )
    return JSONResponse(status_code=exc.status_code, content=body.model_dump())


async def global_exception_handler(request: Request, exc: Exception) -> JSONResponse:
    """Catch unhandled exceptions and return a consistent JSON envelope."""
    request_id = request.headers.get("x-request-id", "unknown")

    logger.error(
        "unhandled_exception",
        error=str(exc),
        error_type=type(exc).__name__,
        path=request.url.path,
        method=request.method,
        request_id=request_id,
    )

    sentry_sdk.capture_exception(exc)

    return JSONResponse(
        status_code=500,
        content={
            "error": "internal_server_error",
            "message": "An unexpected error occurred. Our team has been notified.",
            "request_id": request_id,
        },
    )


async def http_exception_handler(request: Request, exc: HTTPException) -> JSONResponse:
    """Standardize HTTPException responses into the same JSON envelope."""
    request_id = request.headers.get("x-request-id", "unknown")

    if isinstance(exc.detail, dict):
        error = exc.detail.get("error", f"http_{exc.status_code}")
        message = exc.detail.get("message", str(exc.detail))
        detail: Any = exc.detail.get("detail")
    else:
        error = f"http_{exc.status_code}"
        message = str(exc.detail)
        detail = exc.detail

    return JSONResponse(
        status_code=exc.status_code,
        content={
            "error": error,
            "message": message,
            "detail": detail,
            "request_id": request_id,
        },
        headers=dict(exc.headers or {}),
    )
