"""Entity model for the contract market.

Listings carry a finite supply that is issued as contract instances. Each
instance is an immutable ``ContractHeader`` plus a mutable ``ContractState``
keyed by the header id. Purchases are audited by ``TransactionRecord``.

Prices are integers in nanos (the smallest value unit) to avoid
floating point drift.
"""

from datetime import datetime, timezone
from enum import Enum
from typing import Optional
from uuid import UUID, uuid4

from pydantic import BaseModel, ConfigDict, Field, model_validator


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


class ContractStatus(str, Enum):
    """Lifecycle of a contract instance.

    Only ``listed`` and ``owned`` are produced by the purchase workflow.
    """
    DRAFT = 'draft'
    LISTED = 'listed'
    MATCHED = 'matched'
    OWNED = 'owned'
    UNLOCKED = 'unlocked'
    EXPIRED = 'expired'

    @property
    def rank(self) -> int:
        return _CONTRACT_ORDER.index(self)

    def can_transition_to(self, new_status: 'ContractStatus') -> bool:
        """Transitions only move forward, except re-ownership back to owned."""
        if self is ContractStatus.EXPIRED:
            return False
        if new_status is ContractStatus.OWNED:
            return True
        return new_status.rank >= self.rank


_CONTRACT_ORDER = list(ContractStatus)


class TransactionStatus(str, Enum):
    """Lifecycle of a purchase attempt."""
    PENDING = 'pending'
    REQUIRES_PAYMENT = 'requires_payment'
    PAID = 'paid'
    FULFILLED = 'fulfilled'
    FAILED = 'failed'
    EXPIRED = 'expired'

    def can_transition_to(self, new_status: 'TransactionStatus') -> bool:
        if self is new_status:
            return True
        return new_status in _TRANSACTION_TRANSITIONS[self]


_TRANSACTION_TRANSITIONS = {
    TransactionStatus.PENDING: {
        TransactionStatus.REQUIRES_PAYMENT,
        TransactionStatus.PAID,
        TransactionStatus.FULFILLED,
        TransactionStatus.FAILED,
        TransactionStatus.EXPIRED,
    },
    TransactionStatus.REQUIRES_PAYMENT: {
        TransactionStatus.PAID,
        TransactionStatus.FAILED,
        TransactionStatus.EXPIRED,
    },
    TransactionStatus.PAID: {
        TransactionStatus.FULFILLED,
        TransactionStatus.FAILED,
        TransactionStatus.EXPIRED,
    },
    TransactionStatus.FULFILLED: set(),
    TransactionStatus.FAILED: set(),
    TransactionStatus.EXPIRED: set(),
}


class Entity(BaseModel):
    """Base for persisted records."""
    model_config = ConfigDict(from_attributes=True)


class User(Entity):
    """A marketplace identity, unique per (auth_provider, auth_subject)."""
    id: UUID = Field(default_factory=uuid4)
    email: Optional[str] = None
    auth_provider: str
    auth_subject: str
    created_at: datetime = Field(default_factory=utcnow)
    updated_at: datetime = Field(default_factory=utcnow)


class Listing(Entity):
    """A seller's standing offer with finite supply and a unit price."""
    id: UUID = Field(default_factory=uuid4)
    seller_id: UUID
    list_price_nanos: int = Field(ge=0)
    supply_limit: int = Field(ge=0)
    supply_remaining: int = Field(ge=0)
    exercise_by: Optional[datetime] = None
    created_at: datetime = Field(default_factory=utcnow)
    updated_at: datetime = Field(default_factory=utcnow)

    @model_validator(mode='after')
    def check_supply(self) -> 'Listing':
        if self.supply_remaining > self.supply_limit:
            raise ValueError(
                f"supply_remaining ({self.supply_remaining}) exceeds "
                f"supply_limit ({self.supply_limit})"
            )
        return self

    @classmethod
    def new(
        cls,
        seller_id: UUID,
        list_price_nanos: int,
        supply_limit: int,
        exercise_by: Optional[datetime] = None
    ) -> 'Listing':
        """A fresh listing with its whole supply remaining."""
        now = utcnow()
        return cls(
            seller_id=seller_id,
            list_price_nanos=list_price_nanos,
            supply_limit=supply_limit,
            supply_remaining=supply_limit,
            exercise_by=exercise_by,
            created_at=now,
            updated_at=now,
        )

    @property
    def supply_issued(self) -> int:
        return self.supply_limit - self.supply_remaining


class ContractHeader(Entity):
    """Immutable identity of one minted contract instance."""
    model_config = ConfigDict(from_attributes=True, frozen=True)

    id: UUID = Field(default_factory=uuid4)
    listing_id: UUID
    created_at: datetime = Field(default_factory=utcnow)


class ContractState(Entity):
    """Ownership and status of one contract instance."""
    header_id: UUID
    owner_id: UUID
    last_purchase_at: datetime = Field(default_factory=utcnow)
    status: ContractStatus = ContractStatus.DRAFT


class TransactionRecord(Entity):
    """Audit record of one purchase attempt, including failed ones.

    The checkout, payment intent, currency, fee and fulfillment fields
    belong to the settlement provider and are passed through untouched.
    """
    id: UUID = Field(default_factory=uuid4)
    listing_id: UUID
    seller_id: Optional[UUID] = None
    buyer_id: UUID
    purchase_quantity: int
    unit_price_nanos: int = 0
    status: TransactionStatus = TransactionStatus.PENDING

    checkout_session_id: Optional[str] = None
    payment_intent_id: Optional[str] = None
    currency: Optional[str] = None
    platform_fee_nanos: int = 0
    fulfilled: bool = False
    fulfilled_at: Optional[datetime] = None

    failure_reason: Optional[str] = None
    created_at: datetime = Field(default_factory=utcnow)
    updated_at: datetime = Field(default_factory=utcnow)

    @property
    def total_price_nanos(self) -> int:
        return self.unit_price_nanos * self.purchase_quantity


__all__ = [
    'utcnow',
    'ContractStatus',
    'TransactionStatus',
    'Entity',
    'User',
    'Listing',
    'ContractHeader',
    'ContractState',
    'TransactionRecord',
]
