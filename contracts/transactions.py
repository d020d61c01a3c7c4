"""Purchase workflow.

A purchase runs issuance, one transfer per unit and settlement in order,
recording every transition on a ``TransactionRecord``. When a transfer or
settlement fails, the whole quantity is given back to the listing and the
units that never left the seller are discarded. Units already transferred
stay with the buyer.
"""

import logging
from typing import List
from uuid import UUID

from database.exceptions import DatabaseError, RecordNotFoundError
from models import ContractState, ContractStatus, Listing, TransactionRecord, TransactionStatus, utcnow
from repos import Repositories
from .errors import (
    CompensationFailedError,
    ContractError,
    ForbiddenError,
    ListingNotFoundError,
    PersistenceError,
    SettlementError,
    TransactionNotFoundError,
)
from .issuance import IssuanceEngine, Issued
from .settlement import SettlementProvider
from .transfer import OwnershipTransfer

logger = logging.getLogger(__name__)

SETTLEMENT_FAILURES = (TransactionStatus.FAILED, TransactionStatus.EXPIRED)


class TransactionOrchestrator:
    """Runs purchases against a set of repositories."""

    def __init__(self, repos: Repositories, settlement: SettlementProvider) -> None:
        self.repos = repos
        self.settlement = settlement
        self.issuance = IssuanceEngine(repos.listings, repos.headers, repos.states)
        self.transfers = OwnershipTransfer(repos.users, repos.states)

    async def purchase(self, listing_id: UUID, buyer_id: UUID, quantity: int) -> TransactionRecord:
        """Buy ``quantity`` contracts from a listing.

        Args:
            listing_id: Listing to buy from
            buyer_id: User receiving the contracts
            quantity: Number of contracts

        Returns:
            The final transaction record, ``fulfilled`` or ``requires_payment``

        Raises:
            ContractError: Any failure, with the final record in ``record``
        """
        record = TransactionRecord(
            listing_id=listing_id,
            buyer_id=buyer_id,
            purchase_quantity=quantity,
        )
        await self._create_record(record)
        logger.info(f"Started transaction {record.id}: {quantity} from listing {listing_id} for {buyer_id}")

        # Resolve listing
        try:
            listing = await self.repos.listings.find_by_id(listing_id)
        except RecordNotFoundError:
            error = ListingNotFoundError(f"Listing {listing_id} not found")
            await self._fail(record, error)
            raise error
        except DatabaseError as e:
            error = PersistenceError(f"Failed to load listing {listing_id}: {e}")
            await self._fail(record, error)
            raise error

        record.seller_id = listing.seller_id
        record.unit_price_nanos = listing.list_price_nanos
        await self._save_record(record)

        # Issue; the engine undoes its own decrement on failure
        try:
            issued = await self.issuance.issue(listing, quantity)
        except ContractError as e:
            await self._fail(record, e)
            raise

        # Transfer
        try:
            for _, state in issued:
                await self.transfers.transfer(buyer_id, state)
        except ContractError as e:
            await self._fail(record, e)
            await self._compensate(record, listing, issued, e)
            raise

        # Settle
        try:
            settled = await self.settlement.settle(record)
        except ContractError as e:
            await self._fail(record, e)
            await self._compensate(record, listing, issued, e)
            raise
        except Exception as e:
            logger.exception(f"Settlement provider raised for transaction {record.id}")
            error = SettlementError(f"Settlement failed for transaction {record.id}: {e}")
            await self._fail(record, error)
            await self._compensate(record, listing, issued, error)
            raise error from e

        if settled.status in SETTLEMENT_FAILURES:
            error = SettlementError(f"Settlement for transaction {record.id} ended {settled.status.value}")
            await self._fail(settled, error, status=settled.status)
            await self._compensate(settled, listing, issued, error)
            raise error

        if settled.status is not TransactionStatus.REQUIRES_PAYMENT:
            settled.status = TransactionStatus.FULFILLED
            settled.fulfilled = True
            settled.fulfilled_at = utcnow()

        await self._save_record(settled)
        logger.info(f"Transaction {settled.id} {settled.status.value}")
        return settled

    async def get_record(self, transaction_id: UUID, viewer_id: UUID) -> TransactionRecord:
        """Fetch a transaction record for its buyer or seller.

        Raises:
            TransactionNotFoundError: If the record does not exist
            ForbiddenError: If ``viewer_id`` is neither buyer nor seller
            PersistenceError: If the store fails
        """
        try:
            record = await self.repos.transactions.find_by_id(transaction_id)
        except RecordNotFoundError:
            raise TransactionNotFoundError(f"Transaction {transaction_id} not found")
        except DatabaseError as e:
            raise PersistenceError(f"Failed to load transaction {transaction_id}: {e}")

        if viewer_id not in (record.buyer_id, record.seller_id):
            raise ForbiddenError(f"Transaction {transaction_id} belongs to other users")
        return record

    async def owned_contracts(self, owner_id: UUID) -> List[ContractState]:
        try:
            return await self.repos.states.find_all_by_owner_id(owner_id)
        except DatabaseError as e:
            raise PersistenceError(f"Failed to load contracts for {owner_id}: {e}")

    async def _create_record(self, record: TransactionRecord) -> None:
        try:
            await self.repos.transactions.create(record)
        except DatabaseError as e:
            logger.warning(f"Could not create transaction record {record.id}: {e}")

    async def _save_record(self, record: TransactionRecord) -> None:
        """Persist ``record``; audit writes never abort a purchase."""
        try:
            stored = await self.repos.transactions.update(record)
            record.updated_at = stored.updated_at
        except RecordNotFoundError:
            # The initial create did not land
            await self._create_record(record)
        except DatabaseError as e:
            logger.warning(f"Could not update transaction record {record.id}: {e}")

    async def _fail(
        self,
        record: TransactionRecord,
        error: ContractError,
        status: TransactionStatus = TransactionStatus.FAILED
    ) -> None:
        record.status = status
        record.failure_reason = str(error)
        await self._save_record(record)
        error.record = record
        logger.error(f"Transaction {record.id} failed: {error}")

    async def _compensate(
        self,
        record: TransactionRecord,
        listing: Listing,
        issued: Issued,
        cause: ContractError
    ) -> None:
        """Give the purchased quantity back to the listing.

        Raises:
            CompensationFailedError: If the supply cannot be restored
        """
        quantity = record.purchase_quantity
        try:
            restored = await self.repos.listings.restore_supply(listing.id, quantity)
        except DatabaseError as e:
            logger.error(f"Restoring supply to listing {listing.id} raised: {e}")
            restored = None

        if restored is None:
            logger.critical(
                f"Could not restore {quantity} units to listing {listing.id} "
                f"for transaction {record.id} after: {cause}"
            )
            error = CompensationFailedError(listing.id, quantity, cause)
            error.record = record
            raise error from cause

        logger.info(
            f"Restored {quantity} units to listing {listing.id} "
            f"({restored.supply_remaining} remaining)"
        )
        await self._discard_unsold(listing, issued)

    async def _discard_unsold(self, listing: Listing, issued: Issued) -> None:
        unsold = [header for header, state in issued if state.status is ContractStatus.LISTED]
        for header in unsold:
            try:
                await self.repos.headers.delete(header.id)
            except DatabaseError as e:
                logger.warning(f"Could not discard unsold contract {header.id}: {e}")
