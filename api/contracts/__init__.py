"""Contract purchase and ownership endpoints."""

from typing import List
from uuid import UUID

from fastapi import APIRouter, Depends, Security, status
from pydantic import BaseModel, Field

from auth import get_current_user
from contracts import ContractError, TransactionOrchestrator
from models import ContractState, TransactionRecord, User
from ..dependencies import get_orchestrator
from ..errors import http_exception

router = APIRouter(
    prefix="/contracts",
    tags=["Contracts"]
)


class PurchaseRequest(BaseModel):
    """Request model for buying contracts from a listing."""
    listing_id: UUID
    quantity: int = Field(ge=1)


@router.post("", response_model=TransactionRecord, status_code=status.HTTP_201_CREATED)
async def purchase_contracts(
    request: PurchaseRequest,
    user: User = Security(get_current_user),
    orchestrator: TransactionOrchestrator = Depends(get_orchestrator)
):
    """Buy contracts for the authenticated user and return the transaction record."""
    try:
        return await orchestrator.purchase(request.listing_id, user.id, request.quantity)
    except ContractError as e:
        raise http_exception(e)


@router.get("", response_model=List[ContractState])
async def list_owned_contracts(
    user: User = Security(get_current_user),
    orchestrator: TransactionOrchestrator = Depends(get_orchestrator)
):
    """Get the contracts owned by the authenticated user."""
    try:
        return await orchestrator.owned_contracts(user.id)
    except ContractError as e:
        raise http_exception(e)


# Export the router
__all__ = ['router']
