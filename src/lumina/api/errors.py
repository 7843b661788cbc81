"""Rendering of service errors as HTTP responses.

Every ServiceError becomes ``{"error": {"code": ..., "message": ...}}`` with a
status code chosen from its type.
"""

import structlog
from fastapi import FastAPI, Request, status
from fastapi.responses import JSONResponse

from lumina.services.exceptions import (
    AuthenticationError,
    IdentityProviderError,
    InsufficientCreditsError,
    NotFoundError,
    PollTimeoutError,
    ProviderError,
    RateLimitExceededError,
    ServiceError,
    StorageTransferFailedError,
    ValidationError,
)

logger = structlog.get_logger()

# Checked in order, first match wins (subclasses before their bases)
STATUS_BY_ERROR: tuple[tuple[type[ServiceError], int], ...] = (
    (ValidationError, status.HTTP_400_BAD_REQUEST),
    (InsufficientCreditsError, status.HTTP_402_PAYMENT_REQUIRED),
    (NotFoundError, status.HTTP_404_NOT_FOUND),
    (RateLimitExceededError, status.HTTP_429_TOO_MANY_REQUESTS),
    (AuthenticationError, status.HTTP_401_UNAUTHORIZED),
    (IdentityProviderError, status.HTTP_503_SERVICE_UNAVAILABLE),
    (PollTimeoutError, status.HTTP_504_GATEWAY_TIMEOUT),
    (ProviderError, status.HTTP_502_BAD_GATEWAY),
    (StorageTransferFailedError, status.HTTP_502_BAD_GATEWAY),
)


def status_for(error: ServiceError) -> int:
    for error_type, status_code in STATUS_BY_ERROR:
        if isinstance(error, error_type):
            return status_code
    return status.HTTP_500_INTERNAL_SERVER_ERROR


def error_body(code: str, message: str) -> dict:
    return {"error": {"code": code, "message": message}}


async def service_error_handler(request: Request, exc: ServiceError) -> JSONResponse:
    status_code = status_for(exc)
    headers = None
    if isinstance(exc, RateLimitExceededError) and exc.retry_after_seconds:
        headers = {"Retry-After": str(exc.retry_after_seconds)}

    log = logger.warning if status_code < 500 else logger.error
    log(
        "api.service_error",
        path=request.url.path,
        code=exc.code,
        status_code=status_code,
        error=exc.message,
    )
    return JSONResponse(
        status_code=status_code,
        content=error_body(exc.code, exc.message),
        headers=headers,
    )


def register_error_handlers(app: FastAPI) -> None:
    app.add_exception_handler(ServiceError, service_error_handler)
