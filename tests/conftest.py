"""Shared fixtures backed by the in-memory repositories."""

import pytest
import pytest_asyncio

from models import Listing, User
from repos import MemoryStore, memory_repositories


@pytest.fixture
def store():
    return MemoryStore()


@pytest.fixture
def repos(store):
    return memory_repositories(store)


@pytest_asyncio.fixture
async def seller(repos):
    return await repos.users.create(User(auth_provider='clerk', auth_subject='seller', email='seller@example.com'))


@pytest_asyncio.fixture
async def buyer(repos):
    return await repos.users.create(User(auth_provider='clerk', auth_subject='buyer', email='buyer@example.com'))


@pytest_asyncio.fixture
async def listing(repos, seller):
    """Listing with 5 contracts at 1000 nanos each."""
    return await repos.listings.create(Listing.new(seller.id, list_price_nanos=1_000, supply_limit=5))
