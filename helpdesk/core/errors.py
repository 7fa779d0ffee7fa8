"""Error taxonomy shared by the domain services and the HTTP layer."""

from __future__ import annotations

import logging
import uuid

from fastapi import FastAPI, Request
from fastapi.encoders import jsonable_encoder
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse

logger = logging.getLogger(__name__)


class ServiceError(RuntimeError):
    """Base error for domain service failures.

    Subclasses pin the HTTP status and a stable ``error_code`` so routes can
    let them propagate to the registered handler.
    """

    status_code: int = 400
    error_code: str = "service_error"


class ValidationFailedError(ServiceError):
    """Raised when input is missing or malformed."""

    status_code = 400
    error_code = "validation_error"


class NotFoundError(ServiceError):
    """Raised when a referenced entity does not exist."""

    status_code = 404
    error_code = "not_found"


class ConflictError(ServiceError):
    """Raised when a unique key is already taken."""

    status_code = 409
    error_code = "conflict"


class BusinessRuleError(ServiceError):
    """Raised when an operation violates a lifecycle rule."""

    status_code = 400
    error_code = "business_rule"


class IntegrationError(ServiceError):
    """Raised when an external provider call fails."""

    status_code = 502
    error_code = "integration_error"


class IntegrationNotConfiguredError(ServiceError):
    """Raised when a provider is called without credentials."""

    status_code = 503
    error_code = "not_configured"


def new_log_ref() -> str:
    return uuid.uuid4().hex[:8]


async def service_error_handler(request: Request, exc: ServiceError) -> JSONResponse:
    if exc.status_code >= 500:
        logger.warning("%s %s failed: %s", request.method, request.url.path, exc)
    else:
        logger.info("%s %s rejected (%s): %s", request.method, request.url.path, exc.error_code, exc)
    return JSONResponse(
        status_code=exc.status_code,
        content={"detail": str(exc), "error_code": exc.error_code},
    )


async def request_validation_handler(request: Request, exc: RequestValidationError) -> JSONResponse:
    return JSONResponse(
        status_code=400,
        content={
            "detail": "Validation error",
            "error_code": "validation_error",
            "errors": jsonable_encoder(exc.errors()),
        },
    )


async def unhandled_exception_handler(request: Request, exc: Exception) -> JSONResponse:
    log_ref = new_log_ref()
    logger.exception(
        "Unhandled error [%s] on %s %s", log_ref, request.method, request.url.path, extra={"log_ref": log_ref}
    )
    return JSONResponse(
        status_code=500,
        content={"detail": "Internal server error", "error_code": "internal_error", "log_ref": log_ref},
    )


def register_error_handlers(app: FastAPI) -> None:
    """Install the JSON error handlers on ``app``."""

    app.add_exception_handler(ServiceError, service_error_handler)
    app.add_exception_handler(RequestValidationError, request_validation_handler)
    app.add_exception_handler(Exception, unhandled_exception_handler)
