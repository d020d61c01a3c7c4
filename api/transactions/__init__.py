"""Transaction record endpoints."""

from uuid import UUID

from fastapi import APIRouter, Depends, Security

from auth import get_current_user
from contracts import ContractError, TransactionOrchestrator
from models import TransactionRecord, User
from ..dependencies import get_orchestrator
from ..errors import http_exception

router = APIRouter(
    prefix="/transactions",
    tags=["Transactions"]
)


@router.get("/{transaction_id}", response_model=TransactionRecord)
async def get_transaction(
    transaction_id: UUID,
    user: User = Security(get_current_user),
    orchestrator: TransactionOrchestrator = Depends(get_orchestrator)
):
    """Get a transaction record. Visible to its buyer and seller only."""
    try:
        return await orchestrator.get_record(transaction_id, user.id)
    except ContractError as e:
        raise http_exception(e)


# Export the router
__all__ = ['router']
