"""
API Error Mapping

Translates QueryLens exceptions into HTTP errors for the REST endpoints.
"""

from __future__ import annotations

from fastapi import HTTPException, status

from src.core.exceptions import (
    AccessDeniedError,
    BackendError,
    ConfigurationError,
    InvalidIdentifierError,
    PermissionsConfigError,
    QueryLensError,
    QueryTimeoutError,
    SQLValidationError,
)

_STATUS_BY_ERROR: list[tuple[type[QueryLensError], int]] = [
    (AccessDeniedError, status.HTTP_403_FORBIDDEN),
    (InvalidIdentifierError, status.HTTP_400_BAD_REQUEST),
    (SQLValidationError, status.HTTP_400_BAD_REQUEST),
    (PermissionsConfigError, status.HTTP_400_BAD_REQUEST),
    (QueryTimeoutError, status.HTTP_504_GATEWAY_TIMEOUT),
    (BackendError, status.HTTP_502_BAD_GATEWAY),
    (ConfigurationError, status.HTTP_503_SERVICE_UNAVAILABLE),
]


def status_for(exc: QueryLensError) -> int:
    for error_type, code in _STATUS_BY_ERROR:
        if isinstance(exc, error_type):
            return code
    return status.HTTP_500_INTERNAL_SERVER_ERROR


def to_http_exception(exc: QueryLensError) -> HTTPException:
    """Build the HTTPException for a QueryLens error; raise it `from exc`."""
    return HTTPException(status_code=status_for(exc), detail=str(exc))
