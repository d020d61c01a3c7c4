"""Persistence ports.

Business logic depends only on these interfaces. Every port raises
``RecordNotFoundError`` when a lookup, update or delete matches nothing and
``DatabaseError`` when the backing store fails.
"""

from abc import ABC, abstractmethod
from datetime import datetime
from typing import Generic, List, Optional, TypeVar
from uuid import UUID

from models import (
    ContractHeader,
    ContractState,
    ContractStatus,
    Listing,
    TransactionRecord,
    TransactionStatus,
    User,
)

T = TypeVar('T')


class BaseRepository(ABC, Generic[T]):
    """CRUD capability shared by every entity type."""

    @abstractmethod
    async def find_by_id(self, record_id: UUID) -> T:
        """Fetch one record or raise RecordNotFoundError."""

    @abstractmethod
    async def find_all(self) -> List[T]:
        """Fetch every record."""

    @abstractmethod
    async def create(self, entity: T) -> T:
        """Insert a record and return it as stored."""

    @abstractmethod
    async def update(self, entity: T) -> T:
        """Overwrite a record and return it as stored."""

    @abstractmethod
    async def delete(self, record_id: UUID) -> None:
        """Delete a record or raise RecordNotFoundError."""


class UserRepository(BaseRepository[User]):

    @abstractmethod
    async def find_by_auth(self, provider: str, subject: str) -> User:
        """Fetch the user for an external identity."""

    @abstractmethod
    async def find_or_create_by_auth(
        self,
        provider: str,
        subject: str,
        email: Optional[str] = None
    ) -> User:
        """Return the user for an external identity, creating it on first sight.

        The stored email is backfilled only when it is currently blank.
        """


class ListingRepository(BaseRepository[Listing]):
    """Listings port.

    ``update`` never writes ``supply_limit`` or ``supply_remaining``; supply
    only changes through the conditional primitives below, which are
    serialized per listing.
    """

    @abstractmethod
    async def find_all_by_seller_id(self, seller_id: UUID) -> List[Listing]:
        pass

    @abstractmethod
    async def find_all_by_price_range(self, min_price_nanos: int, max_price_nanos: int) -> List[Listing]:
        pass

    @abstractmethod
    async def find_all_expiring_before(self, deadline: datetime) -> List[Listing]:
        pass

    @abstractmethod
    async def find_all_valid(self, now: datetime) -> List[Listing]:
        """Listings without an exercise deadline or whose deadline is after ``now``."""

    @abstractmethod
    async def decrement_supply(self, listing_id: UUID, quantity: int) -> Optional[Listing]:
        """Take ``quantity`` units of supply in one conditional step.

        Returns:
            The updated listing, or None when less than ``quantity`` remains
        """

    @abstractmethod
    async def restore_supply(self, listing_id: UUID, quantity: int) -> Optional[Listing]:
        """Give back ``quantity`` units of supply in one conditional step.

        Returns:
            The updated listing, or None when the result would exceed the limit
        """

    @abstractmethod
    async def update_terms(
        self,
        listing_id: UUID,
        list_price_nanos: int,
        supply_limit: int,
        exercise_by: Optional[datetime] = None
    ) -> Optional[Listing]:
        """Change price and supply limit, shifting remaining supply by the limit delta.

        Returns:
            The updated listing, or None when the new limit is below the issued count
        """

    @abstractmethod
    async def delete_unissued(self, listing_id: UUID) -> Optional[Listing]:
        """Delete a listing only while its whole supply remains and no contract exists.

        Returns:
            The deleted listing, or None when supply was taken or contracts were minted
        """


class ContractHeaderRepository(BaseRepository[ContractHeader]):

    @abstractmethod
    async def find_all_by_listing_id(self, listing_id: UUID) -> List[ContractHeader]:
        pass

    @abstractmethod
    async def find_all_by_seller_id(self, seller_id: UUID) -> List[ContractHeader]:
        pass

    @abstractmethod
    async def find_all_by_price_range(self, min_price_nanos: int, max_price_nanos: int) -> List[ContractHeader]:
        pass

    @abstractmethod
    async def find_all_expiring_before(self, deadline: datetime) -> List[ContractHeader]:
        pass


class ContractStateRepository(BaseRepository[ContractState]):
    """States are keyed by their header id."""

    @abstractmethod
    async def find_all_by_owner_id(self, owner_id: UUID) -> List[ContractState]:
        pass

    @abstractmethod
    async def find_all_by_status(self, status: ContractStatus) -> List[ContractState]:
        pass

    @abstractmethod
    async def find_by_header_id_and_status(self, header_id: UUID, status: ContractStatus) -> ContractState:
        pass

    @abstractmethod
    async def update_status(self, header_id: UUID, status: ContractStatus) -> ContractState:
        """Move a contract to ``status``.

        Raises:
            ValueError: If the move would go backwards or leave ``expired``
        """


class TransactionRepository(BaseRepository[TransactionRecord]):

    @abstractmethod
    async def find_all_by_buyer_id(self, buyer_id: UUID) -> List[TransactionRecord]:
        pass

    @abstractmethod
    async def find_all_by_seller_id(self, seller_id: UUID) -> List[TransactionRecord]:
        pass

    @abstractmethod
    async def find_all_by_listing_id(self, listing_id: UUID) -> List[TransactionRecord]:
        pass

    @abstractmethod
    async def find_all_by_status(self, status: TransactionStatus) -> List[TransactionRecord]:
        pass
