"""
Custom exception handlers for FastAPI.
Provides clear, actionable error messages for validation, domain and server errors.
"""

import logging

import sentry_sdk
from fastapi import Request
from fastapi.encoders import jsonable_encoder
from fastapi.exception_handlers import RequestValidationError
from fastapi.responses import JSONResponse
from starlette.status import HTTP_400_BAD_REQUEST, HTTP_500_INTERNAL_SERVER_ERROR

from reimburseme.core.config import settings
from reimburseme.core.exceptions import ReimburseError

logger = logging.getLogger(__name__)


def _capture(exc: Exception) -> None:
    # Best-effort capture to Sentry if configured
    if settings.SENTRY_DSN:
        try:
            sentry_sdk.capture_exception(exc)
        except Exception:
            logger.debug("Sentry capture failed", exc_info=True)


def validation_exception_handler(request: Request, exc: RequestValidationError):
    return JSONResponse(
        status_code=HTTP_400_BAD_REQUEST,
        content={
            "error": "Validation error",
            "details": jsonable_encoder(exc.errors()),
        },
    )


def domain_exception_handler(request: Request, exc: ReimburseError):
    if exc.status_code >= 500:
        logger.error("%s %s failed: %s", request.method, request.url.path, exc, exc_info=exc)
        _capture(exc)
    return JSONResponse(status_code=exc.status_code, content={"error": exc.message})


def generic_exception_handler(request: Request, exc: Exception):
    logger.error("Unhandled error on %s %s", request.method, request.url.path, exc_info=exc)
    _capture(exc)
    return JSONResponse(
        status_code=HTTP_500_INTERNAL_SERVER_ERROR,
        content={"error": "Internal server error"},
    )


def register_exception_handlers(app) -> None:
    app.add_exception_handler(RequestValidationError, validation_exception_handler)
    app.add_exception_handler(ReimburseError, domain_exception_handler)
    app.add_exception_handler(Exception, generic_exception_handler)
