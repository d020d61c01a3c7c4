"""Tests for the purchase workflow."""

import asyncio
from dataclasses import replace
from uuid import uuid4

import pytest
import pytest_asyncio

from contracts import (
    CompensationFailedError,
    ForbiddenError,
    InsufficientSupplyError,
    ListingNotFoundError,
    NoopSettlement,
    PersistenceError,
    SettlementError,
    SettlementProvider,
    TransactionNotFoundError,
    TransactionOrchestrator,
    UnknownBuyerError,
)
from database.exceptions import DatabaseError
from models import ContractStatus, Listing, TransactionRecord, TransactionStatus
from repos.memory import MemoryListingRepository, MemoryTransactionRepository, MemoryUserRepository


class VanishingUserRepository(MemoryUserRepository):
    """Deletes every user once it has been looked up ``lookups`` times."""

    def __init__(self, store, lookups):
        super().__init__(store)
        self.lookups = lookups

    async def find_by_id(self, record_id):
        if self.lookups == 0:
            self.store.users.pop(record_id, None)
        else:
            self.lookups -= 1
        return await super().find_by_id(record_id)


class StuckListingRepository(MemoryListingRepository):
    """Supply can be taken but never given back."""

    async def restore_supply(self, listing_id, quantity):
        return None


class UnreadableListingRepository(MemoryListingRepository):

    async def find_by_id(self, record_id):
        raise DatabaseError("connection reset by peer")


class UnavailableTransactionRepository(MemoryTransactionRepository):

    async def create(self, entity):
        raise DatabaseError("audit table offline")

    async def update(self, entity):
        raise DatabaseError("audit table offline")


class FixedSettlement(SettlementProvider):

    def __init__(self, status):
        self.status = status

    async def settle(self, record):
        return record.model_copy(update={'status': self.status, 'checkout_session_id': 'cs_test'})


class ExplodingSettlement(SettlementProvider):

    async def settle(self, record):
        raise RuntimeError("provider unreachable")


@pytest.fixture
def settlement():
    return NoopSettlement(currency='usd', platform_fee_bps=100)


@pytest.fixture
def orchestrator(repos, settlement):
    return TransactionOrchestrator(repos, settlement)


async def owned_by(repos, user_id):
    return await repos.states.find_all_by_owner_id(user_id)


@pytest_asyncio.fixture
async def single_unit_listing(repos, seller):
    return await repos.listings.create(Listing.new(seller.id, list_price_nanos=500, supply_limit=1))


@pytest.mark.asyncio
async def test_purchase_fulfills(orchestrator, repos, seller, buyer, listing):
    record = await orchestrator.purchase(listing.id, buyer.id, 2)

    assert record.status is TransactionStatus.FULFILLED
    assert record.fulfilled is True
    assert record.fulfilled_at is not None
    assert record.seller_id == seller.id
    assert record.buyer_id == buyer.id
    assert record.unit_price_nanos == 1_000
    assert record.currency == 'usd'
    assert record.platform_fee_nanos == 20

    stored = await repos.transactions.find_by_id(record.id)
    assert stored.status is TransactionStatus.FULFILLED
    assert stored.fulfilled is True

    assert (await repos.listings.find_by_id(listing.id)).supply_remaining == 3
    owned = await owned_by(repos, buyer.id)
    assert len(owned) == 2
    assert all(state.status is ContractStatus.OWNED for state in owned)
    assert await owned_by(repos, seller.id) == []


@pytest.mark.asyncio
async def test_purchase_three_then_three(orchestrator, repos, buyer, listing):
    first = await orchestrator.purchase(listing.id, buyer.id, 3)
    assert first.status is TransactionStatus.FULFILLED

    with pytest.raises(InsufficientSupplyError) as exc:
        await orchestrator.purchase(listing.id, buyer.id, 3)

    assert exc.value.available == 2
    assert exc.value.record.status is TransactionStatus.FAILED
    assert (await repos.transactions.find_by_id(exc.value.record.id)).status is TransactionStatus.FAILED
    assert (await repos.listings.find_by_id(listing.id)).supply_remaining == 2
    assert len(await owned_by(repos, buyer.id)) == 3


@pytest.mark.asyncio
async def test_concurrent_purchases_of_last_unit(orchestrator, repos, seller, single_unit_listing):
    buyers = [
        await repos.users.find_or_create_by_auth('clerk', 'racer_a'),
        await repos.users.find_or_create_by_auth('clerk', 'racer_b'),
    ]

    results = await asyncio.gather(
        *[orchestrator.purchase(single_unit_listing.id, b.id, 1) for b in buyers],
        return_exceptions=True
    )

    succeeded = [r for r in results if isinstance(r, TransactionRecord)]
    rejected = [r for r in results if isinstance(r, InsufficientSupplyError)]
    assert len(succeeded) == 1
    assert len(rejected) == 1
    assert succeeded[0].status is TransactionStatus.FULFILLED
    assert rejected[0].record.status is TransactionStatus.FAILED
    assert (await repos.listings.find_by_id(single_unit_listing.id)).supply_remaining == 0
    assert len(await repos.headers.find_all_by_listing_id(single_unit_listing.id)) == 1


@pytest.mark.asyncio
async def test_unknown_listing(orchestrator, repos, buyer):
    with pytest.raises(ListingNotFoundError) as exc:
        await orchestrator.purchase(uuid4(), buyer.id, 1)

    record = exc.value.record
    assert record.status is TransactionStatus.FAILED
    assert record.seller_id is None
    assert record.failure_reason
    assert (await repos.transactions.find_by_id(record.id)).status is TransactionStatus.FAILED


@pytest.mark.asyncio
async def test_listing_read_failure(store, repos, settlement, buyer, listing):
    orchestrator = TransactionOrchestrator(
        replace(repos, listings=UnreadableListingRepository(store)),
        settlement
    )

    with pytest.raises(PersistenceError) as exc:
        await orchestrator.purchase(listing.id, buyer.id, 1)

    stored = await repos.transactions.find_by_id(exc.value.record.id)
    assert stored.status is TransactionStatus.FAILED
    assert stored.seller_id is None
    assert stored.failure_reason
    assert (await repos.listings.find_by_id(listing.id)).supply_remaining == 5
    assert await repos.headers.find_all() == []


@pytest.mark.asyncio
async def test_zero_quantity_is_rejected(orchestrator, repos, buyer, listing):
    with pytest.raises(InsufficientSupplyError) as exc:
        await orchestrator.purchase(listing.id, buyer.id, 0)
    assert exc.value.record.status is TransactionStatus.FAILED
    assert (await repos.listings.find_by_id(listing.id)).supply_remaining == 5


@pytest.mark.asyncio
async def test_first_transfer_failure_restores_supply(store, repos, settlement, buyer, listing):
    orchestrator = TransactionOrchestrator(
        replace(repos, users=VanishingUserRepository(store, lookups=0)),
        settlement
    )

    with pytest.raises(UnknownBuyerError) as exc:
        await orchestrator.purchase(listing.id, buyer.id, 3)

    assert exc.value.record.status is TransactionStatus.FAILED
    assert (await repos.listings.find_by_id(listing.id)).supply_remaining == 5
    assert await repos.headers.find_all() == []
    assert await repos.states.find_all() == []


@pytest.mark.asyncio
async def test_buyer_deleted_mid_flight(store, repos, settlement, buyer, listing):
    orchestrator = TransactionOrchestrator(
        replace(repos, users=VanishingUserRepository(store, lookups=1)),
        settlement
    )

    with pytest.raises(UnknownBuyerError) as exc:
        await orchestrator.purchase(listing.id, buyer.id, 2)

    record = await repos.transactions.find_by_id(exc.value.record.id)
    assert record.status is TransactionStatus.FAILED
    assert record.fulfilled is False
    assert (await repos.listings.find_by_id(listing.id)).supply_remaining == 5

    # The unit transferred before the failure stays with the buyer
    owned = await owned_by(repos, buyer.id)
    assert len(owned) == 1
    assert owned[0].status is ContractStatus.OWNED
    assert len(await repos.headers.find_all_by_listing_id(listing.id)) == 1


@pytest.mark.asyncio
async def test_failed_restore_raises_compensation_error(store, repos, settlement, buyer, listing):
    orchestrator = TransactionOrchestrator(
        replace(
            repos,
            users=VanishingUserRepository(store, lookups=0),
            listings=StuckListingRepository(store)
        ),
        settlement
    )

    with pytest.raises(CompensationFailedError) as exc:
        await orchestrator.purchase(listing.id, buyer.id, 2)

    assert isinstance(exc.value.original, UnknownBuyerError)
    assert exc.value.record.status is TransactionStatus.FAILED
    assert (await repos.listings.find_by_id(listing.id)).supply_remaining == 3


@pytest.mark.asyncio
@pytest.mark.parametrize("status", [TransactionStatus.FAILED, TransactionStatus.EXPIRED])
async def test_settlement_rejection_compensates(repos, buyer, listing, status):
    orchestrator = TransactionOrchestrator(repos, FixedSettlement(status))

    with pytest.raises(SettlementError) as exc:
        await orchestrator.purchase(listing.id, buyer.id, 2)

    record = exc.value.record
    assert record.status is status
    assert record.checkout_session_id == 'cs_test'
    assert (await repos.transactions.find_by_id(record.id)).status is status
    assert (await repos.listings.find_by_id(listing.id)).supply_remaining == 5
    # Transferred units are not taken back
    assert len(await owned_by(repos, buyer.id)) == 2


@pytest.mark.asyncio
async def test_settlement_exception_compensates(repos, buyer, listing):
    orchestrator = TransactionOrchestrator(repos, ExplodingSettlement())

    with pytest.raises(SettlementError) as exc:
        await orchestrator.purchase(listing.id, buyer.id, 1)

    assert exc.value.record.status is TransactionStatus.FAILED
    assert (await repos.listings.find_by_id(listing.id)).supply_remaining == 5


@pytest.mark.asyncio
async def test_pending_payment_is_not_fulfilled(repos, buyer, listing):
    orchestrator = TransactionOrchestrator(repos, FixedSettlement(TransactionStatus.REQUIRES_PAYMENT))

    record = await orchestrator.purchase(listing.id, buyer.id, 1)

    assert record.status is TransactionStatus.REQUIRES_PAYMENT
    assert record.fulfilled is False
    assert record.fulfilled_at is None
    assert (await repos.transactions.find_by_id(record.id)).status is TransactionStatus.REQUIRES_PAYMENT
    assert (await repos.listings.find_by_id(listing.id)).supply_remaining == 4


@pytest.mark.asyncio
async def test_audit_failures_do_not_abort(store, repos, settlement, buyer, listing):
    orchestrator = TransactionOrchestrator(
        replace(repos, transactions=UnavailableTransactionRepository(store)),
        settlement
    )

    record = await orchestrator.purchase(listing.id, buyer.id, 1)

    assert record.status is TransactionStatus.FULFILLED
    assert await repos.transactions.find_all() == []


@pytest.mark.asyncio
async def test_get_record_visibility(orchestrator, repos, seller, buyer, listing):
    record = await orchestrator.purchase(listing.id, buyer.id, 1)
    stranger = await repos.users.find_or_create_by_auth('clerk', 'stranger')

    assert (await orchestrator.get_record(record.id, buyer.id)).id == record.id
    assert (await orchestrator.get_record(record.id, seller.id)).id == record.id
    with pytest.raises(ForbiddenError):
        await orchestrator.get_record(record.id, stranger.id)
    with pytest.raises(TransactionNotFoundError):
        await orchestrator.get_record(uuid4(), buyer.id)
