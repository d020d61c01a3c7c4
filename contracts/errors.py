"""Error taxonomy for contract issuance, transfer and purchase.

Every error raised out of a purchase carries the final audit record in
``record`` once the orchestrator has handled it.
"""

from typing import Optional
from uuid import UUID


class ContractError(Exception):
    """Base class for contract market errors."""

    def __init__(self, message: str = ''):
        super().__init__(message)
        self.record = None


class ValidationError(ContractError):
    """Raised for bad input shape or range."""
    pass


class NotFoundError(ContractError):
    """Raised when an entity does not exist."""
    pass


class ListingNotFoundError(NotFoundError):
    """Raised when the requested listing does not exist."""
    pass


class UnknownBuyerError(NotFoundError):
    """Raised when the buyer does not resolve to a user."""
    pass


class TransactionNotFoundError(NotFoundError):
    """Raised when a transaction record does not exist."""
    pass


class AuthorizationError(ContractError):
    """Raised when the caller is unauthenticated or not allowed."""
    pass


class ForbiddenError(AuthorizationError):
    """Raised when the caller does not own the resource."""
    pass


class InsufficientSupplyError(ContractError):
    """Raised when a listing cannot cover the requested quantity."""

    def __init__(self, listing_id: UUID, available: int, requested: int):
        self.listing_id = listing_id
        self.available = available
        self.requested = requested
        super().__init__(
            f"Insufficient supply for listing {listing_id}: "
            f"available {available}, requested {requested}"
        )


class PersistenceError(ContractError):
    """Raised when the backing store fails."""
    pass


class SettlementError(ContractError):
    """Raised when the settlement provider rejects or fails a transaction."""
    pass


class CompensationFailedError(ContractError):
    """Raised when supply restoration fails after a downstream failure.

    The store is left inconsistent and needs operator reconciliation.
    """

    def __init__(self, listing_id: UUID, quantity: int, original: Optional[Exception]):
        self.listing_id = listing_id
        self.quantity = quantity
        self.original = original
        super().__init__(
            f"Failed to restore {quantity} units of supply to listing {listing_id} "
            f"after: {original}"
        )
