"""
Application exceptions and their HTTP rendering
"""
import logging
from typing import Optional

from fastapi import FastAPI, Request, status
from fastapi.encoders import jsonable_encoder
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse
from starlette.exceptions import HTTPException


logger = logging.getLogger(__name__)


class AppException(Exception):
    """Base class for errors surfaced to API callers."""

    status_code: int = status.HTTP_500_INTERNAL_SERVER_ERROR

    def __init__(self, message: str, status_code: Optional[int] = None) -> None:
        super().__init__(message)
        self.message = message
        if status_code is not None:
            self.status_code = status_code


class InvalidInputError(AppException):
    """Bad period length, unknown tier, malformed webhook payload."""

    status_code = status.HTTP_400_BAD_REQUEST


class PaymentProviderError(AppException):
    """The payment provider call failed or answered with a non-success status."""

    status_code = status.HTTP_502_BAD_GATEWAY

    def __init__(
        self,
        message: str,
        raw_response: Optional[str] = None,
        provider_status: Optional[int] = None,
    ) -> None:
        super().__init__(message)
        self.raw_response = raw_response
        self.provider_status = provider_status


class StaleEventError(AppException):
    """
    The conditional subscription write was refused.

    Raised by the repository when the stored record already reflects an
    event at least as new as the incoming one. Never reaches the client.
    """

    status_code = status.HTTP_200_OK

    def __init__(self, user_id: str, event_timestamp: int) -> None:
        super().__init__(f"Event at {event_timestamp} is not newer than stored state for {user_id}")
        self.user_id = user_id
        self.event_timestamp = event_timestamp


class PersistenceUnavailableError(AppException):
    """The data store could not be reached; callers should retry."""

    status_code = status.HTTP_503_SERVICE_UNAVAILABLE


class AmountMismatchError(AppException):
    """Paid amount does not match the quoted total for the claimed purchase."""

    status_code = status.HTTP_200_OK

    def __init__(self, expected: object, paid: object) -> None:
        super().__init__(f"Paid amount {paid} does not match expected total {expected}")
        self.expected = expected
        self.paid = paid


class RateLimitExceededError(AppException):
    status_code = status.HTTP_429_TOO_MANY_REQUESTS


class DuplicateRequestError(AppException):
    status_code = status.HTTP_409_CONFLICT


async def app_exception_handler(request: Request, exc: AppException) -> JSONResponse:
    if exc.status_code >= 500:
        logger.error(f"{request.method} {request.url.path} failed: {exc.message}")
    else:
        logger.info(f"{request.method} {request.url.path} rejected: {exc.message}")
    return JSONResponse(status_code=exc.status_code, content={"message": exc.message})


async def http_exception_handler(request: Request, exc: HTTPException) -> JSONResponse:
    return JSONResponse(
        status_code=exc.status_code,
        content={"message": exc.detail},
        headers=getattr(exc, "headers", None),
    )


async def validation_exception_handler(
    request: Request, exc: RequestValidationError
) -> JSONResponse:
    return JSONResponse(
        status_code=status.HTTP_400_BAD_REQUEST,
        content={"message": "Invalid request payload", "errors": jsonable_encoder(exc.errors())},
    )


def register_exception_handlers(app: FastAPI) -> None:
    """Render every error as a ``{"message": ...}`` body."""

    app.add_exception_handler(AppException, app_exception_handler)
    app.add_exception_handler(HTTPException, http_exception_handler)
    app.add_exception_handler(RequestValidationError, validation_exception_handler)
