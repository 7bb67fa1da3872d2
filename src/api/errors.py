"""
API error mapping - Domain exceptions to HTTP responses.

Every non-2xx response produced from a domain error has the shape
``{"success": false, "error": {"code", "message"}, ...extras}``. Gateway
errors are shaped by the error classifier; stack traces never reach clients.
"""

import logging
from typing import Any

from fastapi import FastAPI, Request, status
from fastapi.responses import JSONResponse
from starlette.exceptions import HTTPException

from src.domain.classifier import classify
from src.domain.exceptions import (
    AlreadyCancelled,
    AlreadyRegistered,
    Forbidden,
    GatewayError,
    ImmutableField,
    ModificationNotAllowed,
    NothingToModify,
    RegistrationError,
    RegistrationNotFound,
    RegistrationValidationError,
    RetryRecordNotFound,
    StorageInconsistency,
)

logger = logging.getLogger(__name__)

RETRY_ENDPOINT = "/v1/registrations/retry"

_STATUS_BY_EXCEPTION: list[tuple[type[RegistrationError], int]] = [
    (RegistrationValidationError, status.HTTP_400_BAD_REQUEST),
    (NothingToModify, status.HTTP_400_BAD_REQUEST),
    (ImmutableField, status.HTTP_400_BAD_REQUEST),
    (AlreadyCancelled, status.HTTP_400_BAD_REQUEST),
    (ModificationNotAllowed, status.HTTP_400_BAD_REQUEST),
    (AlreadyRegistered, status.HTTP_409_CONFLICT),
    (Forbidden, status.HTTP_403_FORBIDDEN),
    (RegistrationNotFound, status.HTTP_404_NOT_FOUND),
    (RetryRecordNotFound, status.HTTP_404_NOT_FOUND),
    (StorageInconsistency, status.HTTP_500_INTERNAL_SERVER_ERROR),
]

_HTTP_CODES = {
    401: "UNAUTHORIZED",
    403: "FORBIDDEN",
    404: "NOT_FOUND",
    405: "METHOD_NOT_ALLOWED",
}


def error_body(code: str, message: str, **extras: Any) -> dict[str, Any]:
    body: dict[str, Any] = {"success": False, "error": {"code": code, "message": message}}
    body.update({k: v for k, v in extras.items() if v is not None})
    return body


def error_response(exc: RegistrationError, **extras: Any) -> JSONResponse:
    """
    Build the HTTP response for a domain error.

    Args:
        exc: Domain error to render
        extras: Additional top-level body fields (e.g. ``retryId``)
    """
    headers = None

    if isinstance(exc, StorageInconsistency):
        classification = classify(exc.code)
        extras.setdefault("externalOrderId", exc.external_order_id)
        extras.setdefault("suggestions", list(classification.suggestions))
        status_code = classification.http_status
    elif isinstance(exc, GatewayError):
        classification = classify(exc.code)
        status_code = classification.http_status
        extras.setdefault("retryable", classification.retryable)
        if classification.retryable:
            extras.setdefault("retryEndpoint", RETRY_ENDPOINT)
            if classification.retry_after_seconds is not None:
                extras.setdefault("retryAfter", classification.retry_after_seconds)
                headers = {"Retry-After": str(classification.retry_after_seconds)}
        extras.setdefault("suggestions", list(classification.suggestions))
        extras.setdefault("troubleshooting", list(classification.troubleshooting))
    else:
        status_code = next(
            (code for exc_type, code in _STATUS_BY_EXCEPTION if isinstance(exc, exc_type)),
            status.HTTP_500_INTERNAL_SERVER_ERROR,
        )

    return JSONResponse(
        status_code=status_code,
        content=error_body(exc.code, exc.message, **extras),
        headers=headers,
    )


async def _registration_error_handler(request: Request, exc: RegistrationError) -> JSONResponse:
    if isinstance(exc, StorageInconsistency):
        logger.error("Storage inconsistency on %s %s order=%s", request.method, request.url.path, exc.external_order_id)
    else:
        logger.info("Request failed %s %s code=%s", request.method, request.url.path, exc.code)
    return error_response(exc)


async def _http_error_handler(request: Request, exc: HTTPException) -> JSONResponse:
    code = _HTTP_CODES.get(exc.status_code, "HTTP_ERROR")
    return JSONResponse(
        status_code=exc.status_code,
        content=error_body(code, str(exc.detail)),
        headers=getattr(exc, "headers", None),
    )


def register_exception_handlers(app: FastAPI) -> None:
    """Install the domain and HTTP error handlers on ``app``."""
    app.add_exception_handler(RegistrationError, _registration_error_handler)
    app.add_exception_handler(HTTPException, _http_error_handler)
