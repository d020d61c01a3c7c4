"""Issuance of contract instances from a listing's supply."""

import logging
from typing import List, Tuple

from database.exceptions import DatabaseError, RecordNotFoundError
from models import ContractHeader, ContractState, ContractStatus, Listing, utcnow
from repos import ContractHeaderRepository, ContractStateRepository, ListingRepository
from .errors import (
    CompensationFailedError,
    InsufficientSupplyError,
    ListingNotFoundError,
    PersistenceError,
)

logger = logging.getLogger(__name__)

Issued = List[Tuple[ContractHeader, ContractState]]


class IssuanceEngine:
    """Converts listing supply into seller-held contract instances."""

    def __init__(
        self,
        listings: ListingRepository,
        headers: ContractHeaderRepository,
        states: ContractStateRepository
    ) -> None:
        self.listings = listings
        self.headers = headers
        self.states = states

    async def issue(self, listing: Listing, quantity: int) -> Issued:
        """Take ``quantity`` units of supply and mint one header/state pair per unit.

        The decrement is a single conditional store update, so concurrent
        issuers against one listing cannot both pass the supply check.
        ``listing`` is refreshed from the stored row on success.

        Args:
            listing: Listing to issue from
            quantity: Number of units, at least 1

        Returns:
            The minted (header, state) pairs, states owned by the seller and ``listed``

        Raises:
            InsufficientSupplyError: If quantity is below 1 or above remaining supply
            ListingNotFoundError: If the listing no longer exists
            PersistenceError: If the store fails; nothing stays issued
            CompensationFailedError: If minting failed and supply could not be restored
        """
        if quantity < 1 or quantity > listing.supply_remaining:
            raise InsufficientSupplyError(listing.id, listing.supply_remaining, quantity)

        try:
            updated = await self.listings.decrement_supply(listing.id, quantity)
        except RecordNotFoundError:
            raise ListingNotFoundError(f"Listing {listing.id} not found")
        except DatabaseError as e:
            raise PersistenceError(f"Failed to decrement supply for listing {listing.id}: {e}")

        if updated is None:
            # Another purchase took the supply between our read and the update
            current = await self._current_supply(listing)
            raise InsufficientSupplyError(listing.id, current, quantity)

        listing.supply_remaining = updated.supply_remaining
        listing.updated_at = updated.updated_at
        logger.info(
            f"Decremented supply of listing {listing.id} by {quantity} "
            f"({updated.supply_remaining} remaining)"
        )

        return await self._mint(listing, quantity)

    async def _current_supply(self, listing: Listing) -> int:
        try:
            return (await self.listings.find_by_id(listing.id)).supply_remaining
        except DatabaseError:
            return listing.supply_remaining

    async def _mint(self, listing: Listing, quantity: int) -> Issued:
        issued: Issued = []
        try:
            for _ in range(quantity):
                header = ContractHeader(listing_id=listing.id)
                await self.headers.create(header)
                state = ContractState(
                    header_id=header.id,
                    owner_id=listing.seller_id,
                    last_purchase_at=utcnow(),
                    status=ContractStatus.LISTED,
                )
                try:
                    await self.states.create(state)
                except DatabaseError:
                    await self._discard([(header, state)])
                    raise
                issued.append((header, state))
        except DatabaseError as e:
            logger.error(f"Minting for listing {listing.id} failed after {len(issued)} units: {e}")
            await self._discard(issued)
            await self._restore(listing, quantity, e)
            raise PersistenceError(f"Failed to mint contracts for listing {listing.id}: {e}")

        logger.info(f"Issued {quantity} contracts from listing {listing.id}")
        return issued

    async def _discard(self, issued: Issued) -> None:
        for header, _ in issued:
            try:
                await self.headers.delete(header.id)
            except DatabaseError as e:
                logger.error(f"Could not discard contract header {header.id}: {e}")

    async def _restore(self, listing: Listing, quantity: int, cause: Exception) -> None:
        try:
            restored = await self.listings.restore_supply(listing.id, quantity)
        except DatabaseError as e:
            restored = None
            logger.critical(f"Supply restoration for listing {listing.id} raised: {e}")
        if restored is None:
            logger.critical(
                f"Could not restore {quantity} units to listing {listing.id} "
                f"after minting failed: {cause}"
            )
            raise CompensationFailedError(listing.id, quantity, cause)
        listing.supply_remaining = restored.supply_remaining
        listing.updated_at = restored.updated_at
