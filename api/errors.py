"""Mapping of contract errors onto HTTP responses."""

import logging

from fastapi import HTTPException, status

from contracts.errors import (
    AuthorizationError,
    CompensationFailedError,
    ContractError,
    ForbiddenError,
    InsufficientSupplyError,
    NotFoundError,
    SettlementError,
    ValidationError,
)

logger = logging.getLogger(__name__)


def http_exception(error: ContractError) -> HTTPException:
    """Build the HTTPException for a contract error.

    Store and compensation failures only expose a generic message. When the
    error carries a transaction record its id is included in the detail.
    """
    if isinstance(error, (ValidationError, InsufficientSupplyError)):
        code, message = status.HTTP_400_BAD_REQUEST, str(error)
    elif isinstance(error, ForbiddenError):
        code, message = status.HTTP_403_FORBIDDEN, str(error)
    elif isinstance(error, AuthorizationError):
        code, message = status.HTTP_401_UNAUTHORIZED, str(error)
    elif isinstance(error, NotFoundError):
        code, message = status.HTTP_404_NOT_FOUND, str(error)
    elif isinstance(error, SettlementError):
        code, message = status.HTTP_500_INTERNAL_SERVER_ERROR, "Payment could not be settled"
    elif isinstance(error, CompensationFailedError):
        code, message = status.HTTP_500_INTERNAL_SERVER_ERROR, "Purchase failed and is pending reconciliation"
    else:
        code, message = status.HTTP_500_INTERNAL_SERVER_ERROR, "Internal server error"

    if code >= 500:
        logger.error(f"Request failed: {error}")

    record = getattr(error, 'record', None)
    if record is not None:
        return HTTPException(
            status_code=code,
            detail={"message": message, "transaction_id": str(record.id)}
        )
    return HTTPException(status_code=code, detail=message)
