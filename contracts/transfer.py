"""Ownership transfer of minted contracts to buyers."""

import logging
from uuid import UUID

from database.exceptions import DatabaseError, RecordNotFoundError
from models import ContractState, ContractStatus, utcnow
from repos import ContractStateRepository, UserRepository
from .errors import PersistenceError, UnknownBuyerError, ValidationError

logger = logging.getLogger(__name__)


class OwnershipTransfer:
    """Moves a contract state to a new owner."""

    def __init__(self, users: UserRepository, states: ContractStateRepository) -> None:
        self.users = users
        self.states = states

    async def transfer(self, buyer_id: UUID, state: ContractState) -> UUID:
        """Transfer ``state`` to ``buyer_id``.

        The caller's ``state`` is only changed once the new owner has been
        written to the store.

        Returns:
            The previous owner id

        Raises:
            UnknownBuyerError: If the buyer does not exist
            ValidationError: If the contract has expired
            PersistenceError: If the store fails
        """
        try:
            await self.users.find_by_id(buyer_id)
        except RecordNotFoundError:
            raise UnknownBuyerError(f"Buyer {buyer_id} not found")
        except DatabaseError as e:
            raise PersistenceError(f"Failed to resolve buyer {buyer_id}: {e}")

        if state.status is ContractStatus.EXPIRED:
            raise ValidationError(f"Contract {state.header_id} has expired")

        updated = state.model_copy(update={
            'owner_id': buyer_id,
            'status': ContractStatus.OWNED,
            'last_purchase_at': utcnow(),
        })
        try:
            stored = await self.states.update(updated)
        except DatabaseError as e:
            raise PersistenceError(f"Failed to transfer contract {state.header_id}: {e}")

        previous_owner = state.owner_id
        state.owner_id = stored.owner_id
        state.status = stored.status
        state.last_purchase_at = stored.last_purchase_at

        logger.info(f"Transferred contract {state.header_id} from {previous_owner} to {buyer_id}")
        return previous_owner
