"""Mapping of domain errors onto HTTP responses."""

import logfire
from fastapi import FastAPI, Request, status
from fastapi.responses import JSONResponse

from keystone.domain.error import (
    AccountLockedError,
    DomainError,
    RateLimitExceededError,
    StepUpRequiredError,
)

ERROR_STATUS: dict[str, int] = {
    "VALIDATION_ERROR": status.HTTP_400_BAD_REQUEST,
    "LAST_AUTH_METHOD": status.HTTP_400_BAD_REQUEST,
    "INVALID_CREDENTIAL": status.HTTP_401_UNAUTHORIZED,
    "INVALID_TOKEN": status.HTTP_401_UNAUTHORIZED,
    "TOKEN_EXPIRED": status.HTTP_401_UNAUTHORIZED,
    "OTP_INVALID": status.HTTP_401_UNAUTHORIZED,
    "OTP_EXHAUSTED": status.HTTP_401_UNAUTHORIZED,
    "OTP_REQUIRED": status.HTTP_403_FORBIDDEN,
    "OTP_VERIFICATION_REQUIRED": status.HTTP_403_FORBIDDEN,
    "ACCOUNT_INACTIVE": status.HTTP_403_FORBIDDEN,
    "FORBIDDEN": status.HTTP_403_FORBIDDEN,
    "NOT_FOUND": status.HTTP_404_NOT_FOUND,
    "ALREADY_LINKED": status.HTTP_409_CONFLICT,
    "EMAIL_IN_USE": status.HTTP_409_CONFLICT,
    "USERNAME_TAKEN": status.HTTP_409_CONFLICT,
    "ACCOUNT_LOCKED": status.HTTP_423_LOCKED,
    "RATE_LIMITED": status.HTTP_429_TOO_MANY_REQUESTS,
    "PROVIDER_UNAVAILABLE": status.HTTP_503_SERVICE_UNAVAILABLE,
}


def error_body(error: DomainError) -> dict:
    """Serialize a domain error, adding the details clients act on."""
    body: dict = {"error": error.code, "message": str(error)}
    if isinstance(error, StepUpRequiredError):
        body["operation"] = error.operation
        body["methods"] = error.methods
    if isinstance(error, AccountLockedError) and error.locked_until:
        body["locked_until"] = error.locked_until.isoformat()
    return body


async def domain_error_handler(request: Request, exc: DomainError) -> JSONResponse:
    """Render a domain error with its mapped status code."""
    status_code = ERROR_STATUS.get(exc.code, status.HTTP_400_BAD_REQUEST)
    if status_code >= 500:
        logfire.error("Request failed", error=exc.code, path=request.url.path)
    else:
        logfire.info("Request rejected", error=exc.code, path=request.url.path)

    headers = {}
    if isinstance(exc, RateLimitExceededError) and exc.retry_after_seconds:
        headers["Retry-After"] = str(exc.retry_after_seconds)
    if status_code == status.HTTP_401_UNAUTHORIZED:
        headers["WWW-Authenticate"] = "Bearer"

    return JSONResponse(
        status_code=status_code, content=error_body(exc), headers=headers or None
    )


def register_error_handlers(app: FastAPI) -> None:
    """Install the domain error handler on ``app``."""
    app.add_exception_handler(DomainError, domain_error_handler)
