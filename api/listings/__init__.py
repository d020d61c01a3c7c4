"""Listings API endpoints."""

from datetime import datetime
from typing import List, Optional
from uuid import UUID

from fastapi import APIRouter, Depends, Query, Response, Security, status
from pydantic import BaseModel, Field

from auth import get_current_user
from contracts.errors import ContractError
from listings import ListingManager
from models import Listing, User
from ..dependencies import get_listing_manager
from ..errors import http_exception

router = APIRouter(
    prefix="/listings",
    tags=["Listings"]
)


class CreateListingRequest(BaseModel):
    """Request model for creating a listing."""
    list_price_nanos: int = Field(ge=0)
    supply_limit: int = Field(ge=0)
    exercise_by: Optional[datetime] = None


class UpdateListingRequest(BaseModel):
    """Request model for updating a listing.

    Omitted fields are unchanged; an explicit null ``exercise_by`` clears the
    deadline.
    """
    list_price_nanos: Optional[int] = Field(default=None, ge=0)
    supply_limit: Optional[int] = Field(default=None, ge=0)
    exercise_by: Optional[datetime] = None


""" Public Endpoints - No Authentication Required """
@router.get("", response_model=List[Listing])
async def list_listings(
    seller_id: Optional[UUID] = Query(None),
    min_price_nanos: Optional[int] = Query(None, ge=0),
    max_price_nanos: Optional[int] = Query(None, ge=0),
    manager: ListingManager = Depends(get_listing_manager)
):
    """Get listings, optionally filtered by seller and price range."""
    try:
        return await manager.list_listings(
            seller_id=seller_id,
            min_price_nanos=min_price_nanos,
            max_price_nanos=max_price_nanos
        )
    except ContractError as e:
        raise http_exception(e)


@router.get("/{listing_id}", response_model=Listing)
async def get_listing(
    listing_id: UUID,
    manager: ListingManager = Depends(get_listing_manager)
):
    """Get a listing by ID."""
    try:
        return await manager.get_listing(listing_id)
    except ContractError as e:
        raise http_exception(e)


""" Protected Endpoints - Authentication Required """
@router.post("", response_model=Listing, status_code=status.HTTP_201_CREATED)
async def create_listing(
    request: CreateListingRequest,
    user: User = Security(get_current_user),
    manager: ListingManager = Depends(get_listing_manager)
):
    """Create a listing sold by the authenticated user."""
    try:
        return await manager.create_listing(
            seller_id=user.id,
            list_price_nanos=request.list_price_nanos,
            supply_limit=request.supply_limit,
            exercise_by=request.exercise_by
        )
    except ContractError as e:
        raise http_exception(e)


@router.put("/{listing_id}", response_model=Listing)
async def update_listing(
    listing_id: UUID,
    request: UpdateListingRequest,
    user: User = Security(get_current_user),
    manager: ListingManager = Depends(get_listing_manager)
):
    """Update price, supply limit or exercise deadline. Seller only."""
    try:
        return await manager.update_listing(
            listing_id,
            user.id,
            list_price_nanos=request.list_price_nanos,
            supply_limit=request.supply_limit,
            exercise_by=request.exercise_by,
            clear_exercise_by=(
                'exercise_by' in request.model_fields_set and request.exercise_by is None
            )
        )
    except ContractError as e:
        raise http_exception(e)


@router.delete("/{listing_id}", status_code=status.HTTP_204_NO_CONTENT)
async def delete_listing(
    listing_id: UUID,
    user: User = Security(get_current_user),
    manager: ListingManager = Depends(get_listing_manager)
):
    """Delete a listing that has not issued contracts. Seller only."""
    try:
        await manager.delete_listing(listing_id, user.id)
    except ContractError as e:
        raise http_exception(e)
    return Response(status_code=status.HTTP_204_NO_CONTENT)


# Export the router
__all__ = ['router']
