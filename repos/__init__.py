"""Repositories module providing the persistence ports and their adapters.

This module provides:
- Abstract ports per entity type (``repos.base``)
- An asyncpg adapter for PostgreSQL/CockroachDB (``repos.postgres``)
- An in-process adapter (``repos.memory``)
- ``create_repositories`` to build a matching set for a storage backend
"""

import logging
from dataclasses import dataclass
from typing import Optional

from .base import (
    BaseRepository,
    ContractHeaderRepository,
    ContractStateRepository,
    ListingRepository,
    TransactionRepository,
    UserRepository,
)
from .memory import (
    MemoryContractHeaderRepository,
    MemoryContractStateRepository,
    MemoryListingRepository,
    MemoryStore,
    MemoryTransactionRepository,
    MemoryUserRepository,
)

logger = logging.getLogger(__name__)


@dataclass
class Repositories:
    """One repository per entity type, all backed by the same store."""
    users: UserRepository
    listings: ListingRepository
    headers: ContractHeaderRepository
    states: ContractStateRepository
    transactions: TransactionRepository


def memory_repositories(store: Optional[MemoryStore] = None) -> Repositories:
    store = store or MemoryStore()
    return Repositories(
        users=MemoryUserRepository(store),
        listings=MemoryListingRepository(store),
        headers=MemoryContractHeaderRepository(store),
        states=MemoryContractStateRepository(store),
        transactions=MemoryTransactionRepository(store),
    )


def postgres_repositories(pool) -> Repositories:
    from .postgres import (
        PostgresContractHeaderRepository,
        PostgresContractStateRepository,
        PostgresListingRepository,
        PostgresTransactionRepository,
        PostgresUserRepository,
    )
    return Repositories(
        users=PostgresUserRepository(pool),
        listings=PostgresListingRepository(pool),
        headers=PostgresContractHeaderRepository(pool),
        states=PostgresContractStateRepository(pool),
        transactions=PostgresTransactionRepository(pool),
    )


def create_repositories(backend: str, pool=None) -> Repositories:
    """Build repositories for a storage backend.

    Args:
        backend: ``postgres`` or ``memory``
        pool: asyncpg pool, required for ``postgres``

    Raises:
        ValueError: If the backend is unknown or the pool is missing
    """
    if backend == 'memory':
        logger.info("Using in-memory storage")
        return memory_repositories()
    if backend == 'postgres':
        if pool is None:
            raise ValueError("A database pool is required for the postgres backend")
        return postgres_repositories(pool)
    raise ValueError(f"Unknown storage backend: {backend}")


__all__ = [
    'BaseRepository',
    'UserRepository',
    'ListingRepository',
    'ContractHeaderRepository',
    'ContractStateRepository',
    'TransactionRepository',
    'MemoryStore',
    'Repositories',
    'memory_repositories',
    'postgres_repositories',
    'create_repositories',
]
