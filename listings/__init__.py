"""Listings module for managing contract listings.

This module provides functionality for:
- Creating listings with a finite contract supply
- Searching and filtering listings
- Seller-only price and supply edits
- Listing withdrawal
"""

import logging
from datetime import datetime
from typing import List, Optional
from uuid import UUID

from database.exceptions import DatabaseError, RecordNotFoundError
from contracts.errors import (
    ForbiddenError,
    ListingNotFoundError,
    PersistenceError,
    ValidationError,
)
from models import Listing
from repos import Repositories

logger = logging.getLogger(__name__)


class ListingManager:
    """Manager class for handling listing operations."""

    def __init__(self, repos: Repositories):
        """Initialize the listing manager.

        Args:
            repos: Repositories to read and write listings through
        """
        self.repos = repos

    async def create_listing(
        self,
        seller_id: UUID,
        list_price_nanos: int,
        supply_limit: int,
        exercise_by: Optional[datetime] = None
    ) -> Listing:
        """Create a new listing with its whole supply remaining.

        Args:
            seller_id: The selling user
            list_price_nanos: Unit price in nanos
            supply_limit: Number of contracts that may be issued
            exercise_by: Optional exercise deadline

        Returns:
            The stored listing

        Raises:
            ValidationError: If price or supply is negative
            PersistenceError: If the store fails
        """
        if list_price_nanos < 0:
            raise ValidationError("list_price_nanos must not be negative")
        if supply_limit < 0:
            raise ValidationError("supply_limit must not be negative")

        listing = Listing.new(seller_id, list_price_nanos, supply_limit, exercise_by)
        try:
            created = await self.repos.listings.create(listing)
        except DatabaseError as e:
            logger.error(f"Error creating listing: {e}")
            raise PersistenceError(f"Failed to create listing: {e}")

        logger.info(f"Created listing {created.id} for seller {seller_id} with supply {supply_limit}")
        return created

    async def get_listing(self, listing_id: UUID) -> Listing:
        """Get a listing by ID.

        Raises:
            ListingNotFoundError: If listing doesn't exist
            PersistenceError: If the store fails
        """
        try:
            return await self.repos.listings.find_by_id(listing_id)
        except RecordNotFoundError:
            raise ListingNotFoundError(f"Listing {listing_id} not found")
        except DatabaseError as e:
            logger.error(f"Error getting listing {listing_id}: {e}")
            raise PersistenceError(f"Failed to get listing: {e}")

    async def list_listings(
        self,
        seller_id: Optional[UUID] = None,
        min_price_nanos: Optional[int] = None,
        max_price_nanos: Optional[int] = None
    ) -> List[Listing]:
        """List listings, optionally filtered by seller and price range.

        The first filter present is answered by the store; the others are
        applied to its result.
        """
        if (
            min_price_nanos is not None
            and max_price_nanos is not None
            and min_price_nanos > max_price_nanos
        ):
            raise ValidationError("min_price_nanos must not exceed max_price_nanos")

        try:
            if seller_id is not None:
                listings = await self.repos.listings.find_all_by_seller_id(seller_id)
            elif min_price_nanos is not None and max_price_nanos is not None:
                listings = await self.repos.listings.find_all_by_price_range(min_price_nanos, max_price_nanos)
            else:
                listings = await self.repos.listings.find_all()
        except DatabaseError as e:
            logger.error(f"Error listing listings: {e}")
            raise PersistenceError(f"Failed to list listings: {e}")

        if min_price_nanos is not None:
            listings = [l for l in listings if l.list_price_nanos >= min_price_nanos]
        if max_price_nanos is not None:
            listings = [l for l in listings if l.list_price_nanos <= max_price_nanos]
        return listings

    async def _owned_listing(self, listing_id: UUID, seller_id: UUID) -> Listing:
        listing = await self.get_listing(listing_id)
        if listing.seller_id != seller_id:
            raise ForbiddenError(f"Listing {listing_id} belongs to another seller")
        return listing

    async def update_listing(
        self,
        listing_id: UUID,
        seller_id: UUID,
        list_price_nanos: Optional[int] = None,
        supply_limit: Optional[int] = None,
        exercise_by: Optional[datetime] = None,
        clear_exercise_by: bool = False
    ) -> Listing:
        """Change a listing's price, supply limit or exercise deadline.

        Omitted values keep their current setting; ``clear_exercise_by``
        removes the deadline. A new supply limit shifts the remaining supply
        by the same amount and may not drop below the number of contracts
        already issued.

        Raises:
            ListingNotFoundError: If listing doesn't exist
            ForbiddenError: If ``seller_id`` is not the listing's seller
            ValidationError: If the new terms are invalid
            PersistenceError: If the store fails
        """
        if clear_exercise_by and exercise_by is not None:
            raise ValidationError("exercise_by cannot be both set and cleared")

        listing = await self._owned_listing(listing_id, seller_id)

        price = listing.list_price_nanos if list_price_nanos is None else list_price_nanos
        limit = listing.supply_limit if supply_limit is None else supply_limit
        if clear_exercise_by:
            deadline = None
        else:
            deadline = listing.exercise_by if exercise_by is None else exercise_by
        if price < 0:
            raise ValidationError("list_price_nanos must not be negative")
        if limit < 0:
            raise ValidationError("supply_limit must not be negative")

        try:
            updated = await self.repos.listings.update_terms(listing_id, price, limit, deadline)
        except RecordNotFoundError:
            raise ListingNotFoundError(f"Listing {listing_id} not found")
        except DatabaseError as e:
            logger.error(f"Error updating listing {listing_id}: {e}")
            raise PersistenceError(f"Failed to update listing: {e}")

        if updated is None:
            raise ValidationError(
                f"supply_limit {limit} is below the {listing.supply_issued} contracts already issued"
            )

        logger.info(f"Updated listing {listing_id}: price {price}, supply limit {limit}")
        return updated

    async def delete_listing(self, listing_id: UUID, seller_id: UUID) -> None:
        """Withdraw a listing that has not issued any contracts.

        The check and the delete are one conditional write, so a purchase
        that has already taken supply keeps the listing alive.

        Raises:
            ListingNotFoundError: If listing doesn't exist
            ForbiddenError: If ``seller_id`` is not the listing's seller
            ValidationError: If supply was taken or contracts were issued from it
            PersistenceError: If the store fails
        """
        await self._owned_listing(listing_id, seller_id)

        try:
            deleted = await self.repos.listings.delete_unissued(listing_id)
        except RecordNotFoundError:
            raise ListingNotFoundError(f"Listing {listing_id} not found")
        except DatabaseError as e:
            logger.error(f"Error deleting listing {listing_id}: {e}")
            raise PersistenceError(f"Failed to delete listing: {e}")

        if deleted is None:
            raise ValidationError(
                f"Listing {listing_id} has issued contracts and cannot be deleted"
            )
        logger.info(f"Deleted listing {listing_id}")


__all__ = ['ListingManager']
