"""
FraudGuard — Error Handling & Exception Classes

Centralised exception handling with proper HTTP status codes and
safe error messages (avoids information leakage).
"""

import logging
from typing import Any, Dict, Optional, Tuple

from fastapi import status
from fastapi.encoders import jsonable_encoder
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse
from sqlalchemy.exc import InterfaceError, OperationalError
from starlette.exceptions import HTTPException as StarletteHTTPException

logger = logging.getLogger("fraudguard.errors")


# ===========================================================================
# Custom Exceptions (domain-specific)
# ===========================================================================
class FraudGuardException(Exception):
    """Base exception for all FraudGuard errors."""
    pass


class NotFound(FraudGuardException):
    """Referenced transaction, rule or blacklist entry does not exist."""
    pass


class Conflict(FraudGuardException):
    """Uniqueness violation, e.g. a second blacklist entry for a recipient."""
    pass


class InvalidRule(FraudGuardException):
    """Malformed rule configuration (missing or inconsistent thresholds)."""

    def __init__(self, code: Optional[str], message: str):
        super().__init__(f"rule {code or '<unnamed>'}: {message}")
        self.code = code


class ValidationError(FraudGuardException):
    """Input validation errors (e.g. negative amount, empty recipient)."""
    pass


class StoreError(FraudGuardException):
    """Transient store failure; safe for the caller to retry with backoff."""
    retryable = True


class StoreTimeout(StoreError):
    """A store read exceeded the configured timeout."""
    pass


class StoreUnavailable(StoreError):
    """The store rejected or dropped the connection."""
    pass


class AuthenticationError(FraudGuardException):
    """Authentication/Authorization errors."""
    pass


# ===========================================================================
# HTTP Error Response Factory
# ===========================================================================
class ErrorResponse:
    """Standardised error response format."""

    def __init__(
        self,
        error_code: str,
        message: str,
        status_code: int = status.HTTP_400_BAD_REQUEST,
        details: Optional[Dict[str, Any]] = None,
        request_id: Optional[str] = None,
        retryable: bool = False,
    ):
        self.error_code = error_code
        self.message = message
        self.status_code = status_code
        self.details = details or {}
        self.request_id = request_id
        self.retryable = retryable

    def to_dict(self) -> Dict[str, Any]:
        """Convert to JSON-serializable dict."""
        return {
            "error": {
                "code": self.error_code,
                "message": self.message,
                "request_id": self.request_id,
                "retryable": self.retryable,
            },
            **({'details': self.details} if self.details else {}),
        }

    def to_response(self, headers: Optional[Dict[str, str]] = None) -> JSONResponse:
        return JSONResponse(
            status_code=self.status_code,
            content=self.to_dict(),
            headers=headers,
        )


# ===========================================================================
# Exception to HTTP Response Mapping
# ===========================================================================
# exception class → (error code, HTTP status, log level)
_DOMAIN_ERRORS = (
    (NotFound, "NOT_FOUND", status.HTTP_404_NOT_FOUND, "info"),
    (Conflict, "CONFLICT", status.HTTP_409_CONFLICT, "warning"),
    (InvalidRule, "INVALID_RULE", status.HTTP_422_UNPROCESSABLE_ENTITY, "warning"),
    (ValidationError, "VALIDATION_ERROR", status.HTTP_422_UNPROCESSABLE_ENTITY, "warning"),
    (StoreTimeout, "STORE_TIMEOUT", status.HTTP_503_SERVICE_UNAVAILABLE, "error"),
    (StoreUnavailable, "STORE_UNAVAILABLE", status.HTTP_503_SERVICE_UNAVAILABLE, "error"),
)

_HTTP_ERROR_CODES = {
    status.HTTP_401_UNAUTHORIZED: "AUTHENTICATION_ERROR",
    status.HTTP_403_FORBIDDEN: "FORBIDDEN",
    status.HTTP_404_NOT_FOUND: "NOT_FOUND",
    status.HTTP_405_METHOD_NOT_ALLOWED: "METHOD_NOT_ALLOWED",
}


def exception_to_response(
    exc: Exception,
    request_id: Optional[str] = None,
) -> Tuple[JSONResponse, str]:
    """
    Convert an exception to an HTTP response.

    Parameters
    ----------
    exc : Exception
        The exception to handle
    request_id : str
        Request ID for tracking

    Returns
    -------
    response : JSONResponse
    log_level : str
        Logging level (error, warning, info)
    """

    # Request body / query validation (FastAPI)
    if isinstance(exc, RequestValidationError):
        error_resp = ErrorResponse(
            error_code="VALIDATION_ERROR",
            message="Input validation failed",
            status_code=status.HTTP_422_UNPROCESSABLE_ENTITY,
            details={"errors": jsonable_encoder(exc.errors())},
            request_id=request_id,
        )
        return error_resp.to_response(), "warning"

    for exc_class, error_code, status_code, log_level in _DOMAIN_ERRORS:
        if isinstance(exc, exc_class):
            retryable = isinstance(exc, StoreError)
            error_resp = ErrorResponse(
                error_code=error_code,
                message=str(exc),
                status_code=status_code,
                request_id=request_id,
                retryable=retryable,
            )
            headers = {"Retry-After": "1"} if retryable else None
            return error_resp.to_response(headers=headers), log_level

    # Connection-level store failures raised outside bounded() (write paths)
    if isinstance(exc, (OperationalError, InterfaceError)):
        error_resp = ErrorResponse(
            error_code="STORE_UNAVAILABLE",
            message="The data store is unavailable. Retry shortly.",
            status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
            request_id=request_id,
            retryable=True,
        )
        return error_resp.to_response(headers={"Retry-After": "1"}), "error"

    # Framework HTTP errors (401/403 from security dependencies, 404 routes …)
    if isinstance(exc, StarletteHTTPException):
        error_resp = ErrorResponse(
            error_code=_HTTP_ERROR_CODES.get(exc.status_code, "HTTP_ERROR"),
            message=str(exc.detail),
            status_code=exc.status_code,
            request_id=request_id,
        )
        return error_resp.to_response(headers=getattr(exc, "headers", None)), "info"

    # Authentication errors
    if isinstance(exc, AuthenticationError):
        error_resp = ErrorResponse(
            error_code="AUTHENTICATION_ERROR",
            message="Invalid or missing authentication",
            status_code=status.HTTP_401_UNAUTHORIZED,
            request_id=request_id,
        )
        return error_resp.to_response(headers={"WWW-Authenticate": "Bearer"}), "warning"

    # Generic error (never expose full traceback to client)
    error_resp = ErrorResponse(
        error_code="INTERNAL_ERROR",
        message="An internal error occurred. Please try again later.",
        status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
        request_id=request_id,
    )
    logger.error("Unhandled exception: %s", exc, exc_info=exc)
    return error_resp.to_response(), "error"
