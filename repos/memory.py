"""In-process persistence adapter.

Records are stored as copies so that callers only see changes they have
written back. Every call yields to the event loop once, the way a database
round-trip would, and supply changes hold a per-listing lock.
"""

import asyncio
import logging
from contextlib import asynccontextmanager
from datetime import datetime
from typing import Dict, List, Optional, Tuple
from uuid import UUID

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
from .base import (
    ContractHeaderRepository,
    ContractStateRepository,
    ListingRepository,
    TransactionRepository,
    UserRepository,
)

logger = logging.getLogger(__name__)


class MemoryStore:
    """Tables shared by the memory repositories."""

    def __init__(self):
        self.users: Dict[UUID, User] = {}
        self.listings: Dict[UUID, Listing] = {}
        self.headers: Dict[UUID, ContractHeader] = {}
        self.states: Dict[UUID, ContractState] = {}
        self.transactions: Dict[UUID, TransactionRecord] = {}
        # Created on first supply change, dropped with the listing
        self.listing_locks: Dict[UUID, asyncio.Lock] = {}
        self.user_lock = asyncio.Lock()


async def _roundtrip() -> None:
    await asyncio.sleep(0)


class MemoryRepository:
    """CRUD over one table of a ``MemoryStore``."""

    entity_name = 'record'
    table_name = ''
    key = 'id'
    # Columns left untouched by update()
    preserved_on_update: Tuple[str, ...] = ('created_at',)

    def __init__(self, store: MemoryStore):
        self.store = store

    @property
    def _rows(self) -> Dict:
        return getattr(self.store, self.table_name)

    def _key_of(self, entity) -> UUID:
        return getattr(entity, self.key)

    def _select(self, predicate=None) -> List:
        rows = [row for row in self._rows.values() if predicate is None or predicate(row)]
        if rows and hasattr(rows[0], 'created_at'):
            rows.sort(key=lambda row: row.created_at)
        return [row.model_copy(deep=True) for row in rows]

    async def find_by_id(self, record_id: UUID):
        await _roundtrip()
        row = self._rows.get(record_id)
        if row is None:
            raise RecordNotFoundError(self.entity_name, record_id)
        return row.model_copy(deep=True)

    async def find_all(self) -> List:
        await _roundtrip()
        return self._select()

    async def create(self, entity):
        await _roundtrip()
        key = self._key_of(entity)
        if key in self._rows:
            raise DatabaseError(f"Failed to create {self.entity_name}: duplicate key {key}")
        self._rows[key] = entity.model_copy(deep=True)
        return entity.model_copy(deep=True)

    async def update(self, entity):
        await _roundtrip()
        key = self._key_of(entity)
        current = self._rows.get(key)
        if current is None:
            raise RecordNotFoundError(self.entity_name, key)
        self._check_update(current, entity)
        changes = entity.model_dump(exclude=set(self.preserved_on_update) | {self.key})
        if 'updated_at' in type(entity).model_fields:
            changes['updated_at'] = utcnow()
        stored = current.model_copy(update=changes, deep=True)
        self._rows[key] = stored
        return stored.model_copy(deep=True)

    def _check_update(self, current, entity) -> None:
        """Raise when ``entity`` may not replace the stored ``current``."""

    async def delete(self, record_id: UUID) -> None:
        await _roundtrip()
        if self._rows.pop(record_id, None) is None:
            raise RecordNotFoundError(self.entity_name, record_id)


class MemoryUserRepository(MemoryRepository, UserRepository):
    entity_name = 'user'
    table_name = 'users'

    async def find_by_auth(self, provider: str, subject: str) -> User:
        await _roundtrip()
        for user in self._rows.values():
            if user.auth_provider == provider and user.auth_subject == subject:
                return user.model_copy(deep=True)
        raise RecordNotFoundError(self.entity_name, f"{provider}:{subject}")

    async def create(self, entity: User) -> User:
        async with self.store.user_lock:
            for user in self._rows.values():
                if (user.auth_provider, user.auth_subject) == (entity.auth_provider, entity.auth_subject):
                    raise DatabaseError(
                        f"Failed to create user: identity {entity.auth_provider}:{entity.auth_subject} exists"
                    )
            return await super().create(entity)

    async def find_or_create_by_auth(
        self,
        provider: str,
        subject: str,
        email: Optional[str] = None
    ) -> User:
        async with self.store.user_lock:
            await _roundtrip()
            for key, user in self._rows.items():
                if user.auth_provider == provider and user.auth_subject == subject:
                    if email and not user.email:
                        user = user.model_copy(update={'email': email, 'updated_at': utcnow()})
                        self._rows[key] = user
                        logger.info(f"Backfilled email for user {user.id}")
                    return user.model_copy(deep=True)

            user = User(auth_provider=provider, auth_subject=subject, email=email or None)
            self._rows[user.id] = user
            logger.info(f"Created user {user.id} for {provider} subject")
            return user.model_copy(deep=True)


class MemoryListingRepository(MemoryRepository, ListingRepository):
    entity_name = 'listing'
    table_name = 'listings'
    preserved_on_update = ('created_at', 'supply_limit', 'supply_remaining')

    async def find_all_by_seller_id(self, seller_id: UUID) -> List[Listing]:
        await _roundtrip()
        return self._select(lambda l: l.seller_id == seller_id)

    async def find_all_by_price_range(self, min_price_nanos: int, max_price_nanos: int) -> List[Listing]:
        await _roundtrip()
        return self._select(lambda l: min_price_nanos <= l.list_price_nanos <= max_price_nanos)

    async def find_all_expiring_before(self, deadline: datetime) -> List[Listing]:
        await _roundtrip()
        return self._select(lambda l: l.exercise_by is not None and l.exercise_by < deadline)

    async def find_all_valid(self, now: datetime) -> List[Listing]:
        await _roundtrip()
        return self._select(lambda l: l.exercise_by is None or l.exercise_by > now)

    @asynccontextmanager
    async def _locked(self, listing_id: UUID):
        """Hold the listing's supply lock and yield its current row."""
        if listing_id not in self._rows:
            await _roundtrip()
            raise RecordNotFoundError(self.entity_name, listing_id)
        lock = self.store.listing_locks.setdefault(listing_id, asyncio.Lock())
        async with lock:
            await _roundtrip()
            # Deleted while we waited
            current = self._rows.get(listing_id)
            if current is None:
                raise RecordNotFoundError(self.entity_name, listing_id)
            yield current

    def _store(self, listing: Listing) -> Listing:
        self._rows[listing.id] = listing
        return listing.model_copy(deep=True)

    async def _shift_supply(self, listing_id: UUID, delta: int) -> Optional[Listing]:
        async with self._locked(listing_id) as current:
            remaining = current.supply_remaining + delta
            if remaining < 0 or remaining > current.supply_limit:
                return None
            return self._store(
                current.model_copy(update={'supply_remaining': remaining, 'updated_at': utcnow()})
            )

    async def decrement_supply(self, listing_id: UUID, quantity: int) -> Optional[Listing]:
        return await self._shift_supply(listing_id, -quantity)

    async def restore_supply(self, listing_id: UUID, quantity: int) -> Optional[Listing]:
        return await self._shift_supply(listing_id, quantity)

    async def update_terms(
        self,
        listing_id: UUID,
        list_price_nanos: int,
        supply_limit: int,
        exercise_by: Optional[datetime] = None
    ) -> Optional[Listing]:
        async with self._locked(listing_id) as current:
            remaining = current.supply_remaining + (supply_limit - current.supply_limit)
            if remaining < 0:
                return None
            return self._store(current.model_copy(update={
                'list_price_nanos': list_price_nanos,
                'supply_limit': supply_limit,
                'supply_remaining': remaining,
                'exercise_by': exercise_by,
                'updated_at': utcnow(),
            }))

    async def delete(self, record_id: UUID) -> None:
        await super().delete(record_id)
        self.store.listing_locks.pop(record_id, None)

    async def delete_unissued(self, listing_id: UUID) -> Optional[Listing]:
        async with self._locked(listing_id) as current:
            minted = any(h.listing_id == listing_id for h in self.store.headers.values())
            if minted or current.supply_remaining != current.supply_limit:
                return None
            del self._rows[listing_id]
            self.store.listing_locks.pop(listing_id, None)
            return current.model_copy(deep=True)


class MemoryContractHeaderRepository(MemoryRepository, ContractHeaderRepository):
    entity_name = 'contract header'
    table_name = 'headers'

    def _listing_matches(self, predicate):
        listings = self.store.listings

        def check(header: ContractHeader) -> bool:
            listing = listings.get(header.listing_id)
            return listing is not None and predicate(listing)
        return check

    async def delete(self, record_id: UUID) -> None:
        await super().delete(record_id)
        # States cascade with their header
        self.store.states.pop(record_id, None)

    async def find_all_by_listing_id(self, listing_id: UUID) -> List[ContractHeader]:
        await _roundtrip()
        return self._select(lambda h: h.listing_id == listing_id)

    async def find_all_by_seller_id(self, seller_id: UUID) -> List[ContractHeader]:
        await _roundtrip()
        return self._select(self._listing_matches(lambda l: l.seller_id == seller_id))

    async def find_all_by_price_range(self, min_price_nanos: int, max_price_nanos: int) -> List[ContractHeader]:
        await _roundtrip()
        return self._select(self._listing_matches(
            lambda l: min_price_nanos <= l.list_price_nanos <= max_price_nanos
        ))

    async def find_all_expiring_before(self, deadline: datetime) -> List[ContractHeader]:
        await _roundtrip()
        return self._select(self._listing_matches(
            lambda l: l.exercise_by is not None and l.exercise_by < deadline
        ))


class MemoryContractStateRepository(MemoryRepository, ContractStateRepository):
    entity_name = 'contract state'
    table_name = 'states'
    key = 'header_id'
    preserved_on_update = ()

    async def find_all_by_owner_id(self, owner_id: UUID) -> List[ContractState]:
        await _roundtrip()
        return self._select(lambda s: s.owner_id == owner_id)

    async def find_all_by_status(self, status: ContractStatus) -> List[ContractState]:
        await _roundtrip()
        return self._select(lambda s: s.status == status)

    async def find_by_header_id_and_status(self, header_id: UUID, status: ContractStatus) -> ContractState:
        await _roundtrip()
        row = self._rows.get(header_id)
        if row is None or row.status != status:
            raise RecordNotFoundError(self.entity_name, header_id)
        return row.model_copy(deep=True)

    async def update_status(self, header_id: UUID, status: ContractStatus) -> ContractState:
        await _roundtrip()
        current = self._rows.get(header_id)
        if current is None:
            raise RecordNotFoundError(self.entity_name, header_id)
        if not current.status.can_transition_to(status):
            raise ValueError(f"Cannot move contract {header_id} from {current.status.value} to {status.value}")
        stored = current.model_copy(update={'status': status})
        self._rows[header_id] = stored
        return stored.model_copy(deep=True)


class MemoryTransactionRepository(MemoryRepository, TransactionRepository):
    entity_name = 'transaction record'
    table_name = 'transactions'

    async def find_all_by_buyer_id(self, buyer_id: UUID) -> List[TransactionRecord]:
        await _roundtrip()
        return self._select(lambda t: t.buyer_id == buyer_id)

    async def find_all_by_seller_id(self, seller_id: UUID) -> List[TransactionRecord]:
        await _roundtrip()
        return self._select(lambda t: t.seller_id == seller_id)

    async def find_all_by_listing_id(self, listing_id: UUID) -> List[TransactionRecord]:
        await _roundtrip()
        return self._select(lambda t: t.listing_id == listing_id)

    async def find_all_by_status(self, status: TransactionStatus) -> List[TransactionRecord]:
        await _roundtrip()
        return self._select(lambda t: t.status == status)

    def _check_update(self, current: TransactionRecord, entity: TransactionRecord) -> None:
        if not current.status.can_transition_to(entity.status):
            raise ValueError(
                f"Cannot move transaction {entity.id} from "
                f"{current.status.value} to {entity.status.value}"
            )
