"""Tests for the in-memory repositories."""

import asyncio
from datetime import timedelta
from uuid import uuid4

import pytest

from database.exceptions import DatabaseError, RecordNotFoundError
from models import (
    ContractHeader,
    ContractState,
    ContractStatus,
    Listing,
    TransactionRecord,
    TransactionStatus,
    User,
    utcnow,
)


@pytest.mark.asyncio
async def test_find_by_id_missing(repos):
    with pytest.raises(RecordNotFoundError) as exc:
        await repos.listings.find_by_id(uuid4())
    assert exc.value.entity == 'listing'


@pytest.mark.asyncio
async def test_returned_records_are_copies(repos, listing):
    fetched = await repos.listings.find_by_id(listing.id)
    fetched.list_price_nanos = 1
    assert (await repos.listings.find_by_id(listing.id)).list_price_nanos == 1_000


@pytest.mark.asyncio
async def test_create_duplicate_key(repos, listing):
    with pytest.raises(DatabaseError):
        await repos.listings.create(listing)


@pytest.mark.asyncio
async def test_update_and_delete_missing(repos, seller):
    missing = Listing.new(seller.id, 1, 1)
    with pytest.raises(RecordNotFoundError):
        await repos.listings.update(missing)
    with pytest.raises(RecordNotFoundError):
        await repos.listings.delete(missing.id)


@pytest.mark.asyncio
async def test_listing_update_leaves_supply_alone(repos, listing):
    changed = listing.model_copy(update={
        'list_price_nanos': 2_000,
        'supply_limit': 50,
        'supply_remaining': 50,
    })
    stored = await repos.listings.update(changed)
    assert stored.list_price_nanos == 2_000
    assert stored.supply_limit == 5
    assert stored.supply_remaining == 5
    assert stored.updated_at >= listing.updated_at


@pytest.mark.asyncio
async def test_listing_filters(repos, seller, listing):
    other_seller = await repos.users.create(User(auth_provider='clerk', auth_subject='other'))
    cheap = await repos.listings.create(
        Listing.new(other_seller.id, 10, 1, exercise_by=utcnow() - timedelta(days=1))
    )

    assert [l.id for l in await repos.listings.find_all_by_seller_id(seller.id)] == [listing.id]
    assert [l.id for l in await repos.listings.find_all_by_price_range(0, 100)] == [cheap.id]
    assert [l.id for l in await repos.listings.find_all_expiring_before(utcnow())] == [cheap.id]
    assert [l.id for l in await repos.listings.find_all_valid(utcnow())] == [listing.id]
    assert len(await repos.listings.find_all()) == 2


@pytest.mark.asyncio
async def test_decrement_and_restore_supply(repos, listing):
    updated = await repos.listings.decrement_supply(listing.id, 3)
    assert updated.supply_remaining == 2

    assert await repos.listings.decrement_supply(listing.id, 3) is None
    assert (await repos.listings.find_by_id(listing.id)).supply_remaining == 2

    restored = await repos.listings.restore_supply(listing.id, 3)
    assert restored.supply_remaining == 5
    assert await repos.listings.restore_supply(listing.id, 1) is None


@pytest.mark.asyncio
async def test_supply_primitives_on_missing_listing(repos):
    with pytest.raises(RecordNotFoundError):
        await repos.listings.decrement_supply(uuid4(), 1)
    with pytest.raises(RecordNotFoundError):
        await repos.listings.restore_supply(uuid4(), 1)


@pytest.mark.asyncio
async def test_concurrent_decrements_never_oversell(repos, listing):
    results = await asyncio.gather(*[
        repos.listings.decrement_supply(listing.id, 1) for _ in range(8)
    ])
    assert sum(1 for result in results if result is not None) == 5
    assert (await repos.listings.find_by_id(listing.id)).supply_remaining == 0


@pytest.mark.asyncio
async def test_update_terms_shifts_remaining(repos, listing):
    await repos.listings.decrement_supply(listing.id, 2)

    raised = await repos.listings.update_terms(listing.id, 700, 8)
    assert raised.list_price_nanos == 700
    assert raised.supply_limit == 8
    assert raised.supply_remaining == 6

    lowered = await repos.listings.update_terms(listing.id, 700, 2)
    assert lowered.supply_remaining == 0

    assert await repos.listings.update_terms(listing.id, 700, 1) is None
    assert (await repos.listings.find_by_id(listing.id)).supply_limit == 2


@pytest.mark.asyncio
async def test_find_or_create_by_auth(repos):
    first = await repos.users.find_or_create_by_auth('clerk', 'user_1')
    assert first.email is None

    again = await repos.users.find_or_create_by_auth('clerk', 'user_1', 'one@example.com')
    assert again.id == first.id
    assert again.email == 'one@example.com'

    # A stored email is never overwritten
    kept = await repos.users.find_or_create_by_auth('clerk', 'user_1', 'other@example.com')
    assert kept.email == 'one@example.com'

    other_provider = await repos.users.find_or_create_by_auth('auth0', 'user_1')
    assert other_provider.id != first.id
    assert len(await repos.users.find_all()) == 2


@pytest.mark.asyncio
async def test_concurrent_find_or_create_yields_one_user(repos):
    users = await asyncio.gather(*[
        repos.users.find_or_create_by_auth('clerk', 'racer') for _ in range(5)
    ])
    assert len({user.id for user in users}) == 1


@pytest.mark.asyncio
async def test_user_identity_is_unique(repos, seller):
    with pytest.raises(DatabaseError):
        await repos.users.create(User(auth_provider='clerk', auth_subject='seller'))
    assert (await repos.users.find_by_auth('clerk', 'seller')).id == seller.id
    with pytest.raises(RecordNotFoundError):
        await repos.users.find_by_auth('clerk', 'nobody')


@pytest.mark.asyncio
async def test_header_queries_and_cascade(repos, seller, listing):
    header = await repos.headers.create(ContractHeader(listing_id=listing.id))
    await repos.states.create(ContractState(header_id=header.id, owner_id=seller.id, status=ContractStatus.LISTED))

    assert [h.id for h in await repos.headers.find_all_by_listing_id(listing.id)] == [header.id]
    assert [h.id for h in await repos.headers.find_all_by_seller_id(seller.id)] == [header.id]
    assert [h.id for h in await repos.headers.find_all_by_price_range(1_000, 1_000)] == [header.id]
    assert await repos.headers.find_all_expiring_before(utcnow()) == []

    await repos.headers.delete(header.id)
    with pytest.raises(RecordNotFoundError):
        await repos.states.find_by_id(header.id)


@pytest.mark.asyncio
async def test_state_status_moves_forward_only(repos, seller, listing):
    header = await repos.headers.create(ContractHeader(listing_id=listing.id))
    await repos.states.create(ContractState(header_id=header.id, owner_id=seller.id, status=ContractStatus.LISTED))

    owned = await repos.states.update_status(header.id, ContractStatus.OWNED)
    assert owned.status is ContractStatus.OWNED
    assert (await repos.states.find_by_header_id_and_status(header.id, ContractStatus.OWNED)).owner_id == seller.id
    with pytest.raises(RecordNotFoundError):
        await repos.states.find_by_header_id_and_status(header.id, ContractStatus.LISTED)

    with pytest.raises(ValueError):
        await repos.states.update_status(header.id, ContractStatus.LISTED)

    await repos.states.update_status(header.id, ContractStatus.EXPIRED)
    with pytest.raises(ValueError):
        await repos.states.update_status(header.id, ContractStatus.OWNED)
    assert [s.header_id for s in await repos.states.find_all_by_status(ContractStatus.EXPIRED)] == [header.id]


@pytest.mark.asyncio
async def test_listing_locks_follow_listing_lifetime(store, repos, listing):
    missing = uuid4()
    with pytest.raises(RecordNotFoundError):
        await repos.listings.update_terms(missing, 1, 1)
    with pytest.raises(RecordNotFoundError):
        await repos.listings.delete_unissued(missing)
    with pytest.raises(RecordNotFoundError):
        await repos.listings.decrement_supply(missing, 1)
    with pytest.raises(RecordNotFoundError):
        await repos.listings.restore_supply(missing, 1)
    assert store.listing_locks == {}

    await repos.listings.decrement_supply(listing.id, 1)
    assert list(store.listing_locks) == [listing.id]

    await repos.listings.delete(listing.id)
    assert store.listing_locks == {}


@pytest.mark.asyncio
async def test_delete_unissued(store, repos, seller, listing):
    await repos.listings.decrement_supply(listing.id, 1)
    assert await repos.listings.delete_unissued(listing.id) is None

    # Full supply back, but a minted contract still points at the listing
    await repos.listings.restore_supply(listing.id, 1)
    header = await repos.headers.create(ContractHeader(listing_id=listing.id))
    assert await repos.listings.delete_unissued(listing.id) is None

    await repos.headers.delete(header.id)
    deleted = await repos.listings.delete_unissued(listing.id)
    assert deleted.id == listing.id
    assert listing.id not in store.listings
    assert store.listing_locks == {}


@pytest.mark.asyncio
async def test_transaction_status_only_moves_forward(repos, seller, listing):
    record = await repos.transactions.create(
        TransactionRecord(listing_id=listing.id, buyer_id=seller.id, purchase_quantity=1)
    )
    record.status = TransactionStatus.REQUIRES_PAYMENT
    await repos.transactions.update(record)
    record.status = TransactionStatus.FULFILLED
    with pytest.raises(ValueError):
        await repos.transactions.update(record)

    record.status = TransactionStatus.PAID
    await repos.transactions.update(record)
    record.status = TransactionStatus.FULFILLED
    stored = await repos.transactions.update(record)
    assert stored.status is TransactionStatus.FULFILLED

    record.status = TransactionStatus.PENDING
    with pytest.raises(ValueError):
        await repos.transactions.update(record)
    assert (await repos.transactions.find_by_id(record.id)).status is TransactionStatus.FULFILLED
