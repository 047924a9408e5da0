"""Helpers for research routes."""

import logging
from typing import Any

from fastapi import HTTPException, status

from keywordscope.api.v1.research.constants import INTERNAL_ERROR_DETAIL
from keywordscope.core.exceptions import (
    APIKeyMissingError,
    ClusterCancelledError,
    ClusterTimeoutError,
    ClusteringError,
    ExternalAPIError,
    InvalidInputError,
    InvariantViolationError,
    KeywordScopeError,
    RateLimitExceededError,
    ResearchConflictError,
    ResearchNotFoundError,
    VolumeEnrichmentError,
)

logger = logging.getLogger(__name__)

# First match wins; subclasses are listed before their bases.
_STATUS_BY_ERROR: tuple[tuple[type[KeywordScopeError], int], ...] = (
    (ResearchNotFoundError, status.HTTP_404_NOT_FOUND),
    (ResearchConflictError, status.HTTP_409_CONFLICT),
    (InvalidInputError, status.HTTP_422_UNPROCESSABLE_ENTITY),
    (InvariantViolationError, status.HTTP_500_INTERNAL_SERVER_ERROR),
    (ClusterTimeoutError, status.HTTP_504_GATEWAY_TIMEOUT),
    (ClusterCancelledError, status.HTTP_503_SERVICE_UNAVAILABLE),
    (ClusteringError, status.HTTP_502_BAD_GATEWAY),
    (APIKeyMissingError, status.HTTP_503_SERVICE_UNAVAILABLE),
    (RateLimitExceededError, status.HTTP_429_TOO_MANY_REQUESTS),
    (ExternalAPIError, status.HTTP_502_BAD_GATEWAY),
    (VolumeEnrichmentError, status.HTTP_502_BAD_GATEWAY),
)


def status_for_error(exc: KeywordScopeError) -> int:
    for error_type, status_code in _STATUS_BY_ERROR:
        if isinstance(exc, error_type):
            return status_code
    return status.HTTP_500_INTERNAL_SERVER_ERROR


def to_http_exception(exc: KeywordScopeError) -> HTTPException:
    """Translate a domain error into the HTTP error returned to clients."""
    status_code = status_for_error(exc)
    if isinstance(exc, InvariantViolationError):
        logger.error("Research invariant violated", extra={"error": exc.message, **exc.details})
        return HTTPException(status_code=status_code, detail=INTERNAL_ERROR_DETAIL)

    detail: dict[str, Any] = {"message": exc.message}
    if isinstance(exc, VolumeEnrichmentError):
        detail["batch_errors"] = [str(error) for error in exc.errors]
    elif exc.details:
        detail["details"] = exc.details

    headers = None
    if isinstance(exc, RateLimitExceededError) and exc.retry_after_seconds:
        headers = {"Retry-After": str(int(exc.retry_after_seconds))}
    return HTTPException(status_code=status_code, detail=detail, headers=headers)
