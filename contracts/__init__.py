"""Contracts module for issuing, transferring and purchasing contracts.

This module provides:
- Issuance of contract instances from listing supply
- Ownership transfer to buyers
- The purchase workflow with compensating supply restoration
- Settlement providers
"""

from .errors import (
    AuthorizationError,
    CompensationFailedError,
    ContractError,
    ForbiddenError,
    InsufficientSupplyError,
    ListingNotFoundError,
    NotFoundError,
    PersistenceError,
    SettlementError,
    TransactionNotFoundError,
    UnknownBuyerError,
    ValidationError,
)
from .issuance import IssuanceEngine
from .settlement import NoopSettlement, SettlementProvider
from .transactions import TransactionOrchestrator
from .transfer import OwnershipTransfer

__all__ = [
    'ContractError',
    'ValidationError',
    'NotFoundError',
    'ListingNotFoundError',
    'UnknownBuyerError',
    'TransactionNotFoundError',
    'AuthorizationError',
    'ForbiddenError',
    'InsufficientSupplyError',
    'PersistenceError',
    'SettlementError',
    'CompensationFailedError',
    'IssuanceEngine',
    'OwnershipTransfer',
    'SettlementProvider',
    'NoopSettlement',
    'TransactionOrchestrator',
]
