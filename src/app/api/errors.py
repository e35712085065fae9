"""Translate service exceptions into HTTP errors."""

from __future__ import annotations

import logging

from fastapi import HTTPException, status

from ..models.errors import InvalidPlanRequest, NoPlanPossibleError, TripNotFoundError, TripStateError

logger = logging.getLogger(__name__)


def to_http_exception(exc: Exception, action: str) -> HTTPException:
    if isinstance(exc, HTTPException):
        return exc
    if isinstance(exc, TripNotFoundError):
        return HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail=str(exc))
    if isinstance(exc, TripStateError):
        return HTTPException(status_code=status.HTTP_409_CONFLICT, detail=str(exc))
    if isinstance(exc, NoPlanPossibleError):
        return HTTPException(status_code=status.HTTP_422_UNPROCESSABLE_ENTITY, detail=str(exc))
    if isinstance(exc, (InvalidPlanRequest, ValueError)):
        return HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail=str(exc))
    if isinstance(exc, ConnectionError):
        logger.warning(f"Upstream service unavailable while trying to {action}: {exc}")
        return HTTPException(
            status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
            detail=f"Upstream service unavailable: {exc}",
        )
    logging.exception(f"Failed to {action}: {exc}")
    return HTTPException(
        status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
        detail=f"Failed to {action}: {str(exc)}",
    )
