"""asyncpg persistence adapter.

Supply changes are single conditional UPDATE statements so that concurrent
purchases against one listing can never over-issue.
"""

import logging
from contextlib import asynccontextmanager
from datetime import datetime
from enum import Enum
from typing import Any, List, Optional, Sequence, Tuple, Type
from uuid import UUID

from asyncpg.exceptions import InterfaceError, PostgresError
from asyncpg.pool import Pool

from database.exceptions import DatabaseError, RecordNotFoundError
from models import (
    ContractHeader,
    ContractState,
    ContractStatus,
    Entity,
    Listing,
    TransactionRecord,
    TransactionStatus,
    User,
)
from .base import (
    ContractHeaderRepository,
    ContractStateRepository,
    ListingRepository,
    TransactionRepository,
    UserRepository,
)

logger = logging.getLogger(__name__)

DB_ERRORS = (PostgresError, InterfaceError, OSError)


def _value(value: Any) -> Any:
    if isinstance(value, Enum):
        return value.value
    return value


def _affected(status: str) -> int:
    """Row count from an asyncpg command status such as ``DELETE 1``."""
    try:
        return int(status.split()[-1])
    except (ValueError, IndexError):
        return 0


class PostgresRepository:
    """CRUD over one table through an asyncpg pool."""

    entity_name = 'record'
    table = ''
    key = 'id'
    model: Type[Entity] = Entity
    columns: Tuple[str, ...] = ()
    # Columns left untouched by update()
    preserved_on_update: Tuple[str, ...] = ('created_at',)

    def __init__(self, pool: Pool):
        self.pool = pool

    @asynccontextmanager
    async def _connection(self, action: str):
        try:
            async with self.pool.acquire() as conn:
                yield conn
        except DB_ERRORS as e:
            logger.error(f"Database error during {action} on {self.table}: {e}")
            raise DatabaseError(f"Failed to {action} {self.entity_name}: {e}") from e

    def _to_entity(self, row):
        return self.model.model_validate(dict(row))

    def _params(self, entity, columns: Sequence[str]) -> List[Any]:
        return [_value(getattr(entity, column)) for column in columns]

    async def _fetch(self, action: str, query: str, *args) -> List:
        async with self._connection(action) as conn:
            rows = await conn.fetch(query, *args)
        return [self._to_entity(row) for row in rows]

    async def _fetch_one(self, action: str, query: str, *args):
        async with self._connection(action) as conn:
            row = await conn.fetchrow(query, *args)
        return self._to_entity(row) if row else None

    async def find_by_id(self, record_id: UUID):
        entity = await self._fetch_one(
            'find',
            f'SELECT * FROM {self.table} WHERE {self.key} = $1',
            record_id
        )
        if entity is None:
            raise RecordNotFoundError(self.entity_name, record_id)
        return entity

    async def find_all(self) -> List:
        return await self._fetch('list', f'SELECT * FROM {self.table} {self._order_by()}')

    def _order_by(self) -> str:
        return 'ORDER BY created_at' if 'created_at' in self.columns else ''

    async def create(self, entity):
        placeholders = ', '.join(f'${i}' for i in range(1, len(self.columns) + 1))
        return await self._fetch_one(
            'create',
            f'''
            INSERT INTO {self.table} ({', '.join(self.columns)})
            VALUES ({placeholders})
            RETURNING *
            ''',
            *self._params(entity, self.columns)
        )

    async def update(self, entity):
        updated = await self._update_where(entity)
        if updated is None:
            raise RecordNotFoundError(self.entity_name, getattr(entity, self.key))
        return updated

    async def _update_where(self, entity, condition: Optional[str] = None, *args):
        """UPDATE one row by key, optionally guarded by ``condition``.

        ``condition`` refers to its first extra argument as ``{arg}``.
        """
        columns = [
            c for c in self.columns
            if c != self.key and c not in self.preserved_on_update and c != 'updated_at'
        ]
        assignments = ', '.join(f'{c} = ${i}' for i, c in enumerate(columns, start=2))
        where = f'{self.key} = $1'
        if condition:
            where += ' AND ' + condition.format(arg=f'${len(columns) + 2}')
        return await self._fetch_one(
            'update',
            f'''
            UPDATE {self.table}
            SET {assignments}
            WHERE {where}
            RETURNING *
            ''',
            getattr(entity, self.key),
            *self._params(entity, columns),
            *args
        )

    async def delete(self, record_id: UUID) -> None:
        async with self._connection('delete') as conn:
            status = await conn.execute(
                f'DELETE FROM {self.table} WHERE {self.key} = $1',
                record_id
            )
        if _affected(status) == 0:
            raise RecordNotFoundError(self.entity_name, record_id)


class PostgresUserRepository(PostgresRepository, UserRepository):
    entity_name = 'user'
    table = 'users'
    model = User
    columns = ('id', 'email', 'auth_provider', 'auth_subject', 'created_at', 'updated_at')

    async def find_by_auth(self, provider: str, subject: str) -> User:
        user = await self._fetch_one(
            'find',
            'SELECT * FROM users WHERE auth_provider = $1 AND auth_subject = $2',
            provider,
            subject
        )
        if user is None:
            raise RecordNotFoundError(self.entity_name, f"{provider}:{subject}")
        return user

    async def find_or_create_by_auth(
        self,
        provider: str,
        subject: str,
        email: Optional[str] = None
    ) -> User:
        candidate = User(auth_provider=provider, auth_subject=subject, email=email or None)
        async with self._connection('find or create') as conn:
            async with conn.transaction():
                row = await conn.fetchrow(
                    '''
                    INSERT INTO users (id, email, auth_provider, auth_subject)
                    VALUES ($1, $2, $3, $4)
                    ON CONFLICT (auth_provider, auth_subject) DO UPDATE
                    SET email = EXCLUDED.email
                    WHERE (users.email IS NULL OR users.email = '')
                    AND EXCLUDED.email IS NOT NULL
                    RETURNING *
                    ''',
                    candidate.id,
                    candidate.email,
                    provider,
                    subject
                )
                if row is None:
                    # Conflict without backfill: the user already exists as stored
                    row = await conn.fetchrow(
                        'SELECT * FROM users WHERE auth_provider = $1 AND auth_subject = $2',
                        provider,
                        subject
                    )
        return self._to_entity(row)


class PostgresListingRepository(PostgresRepository, ListingRepository):
    entity_name = 'listing'
    table = 'contract_listings'
    model = Listing
    columns = (
        'id', 'seller_id', 'list_price_nanos', 'supply_limit', 'supply_remaining',
        'exercise_by', 'created_at', 'updated_at'
    )
    preserved_on_update = ('created_at', 'supply_limit', 'supply_remaining')

    async def find_all_by_seller_id(self, seller_id: UUID) -> List[Listing]:
        return await self._fetch(
            'list',
            'SELECT * FROM contract_listings WHERE seller_id = $1 ORDER BY created_at',
            seller_id
        )

    async def find_all_by_price_range(self, min_price_nanos: int, max_price_nanos: int) -> List[Listing]:
        return await self._fetch(
            'list',
            '''
            SELECT * FROM contract_listings
            WHERE list_price_nanos BETWEEN $1 AND $2
            ORDER BY created_at
            ''',
            min_price_nanos,
            max_price_nanos
        )

    async def find_all_expiring_before(self, deadline: datetime) -> List[Listing]:
        return await self._fetch(
            'list',
            'SELECT * FROM contract_listings WHERE exercise_by < $1 ORDER BY created_at',
            deadline
        )

    async def find_all_valid(self, now: datetime) -> List[Listing]:
        return await self._fetch(
            'list',
            '''
            SELECT * FROM contract_listings
            WHERE exercise_by IS NULL OR exercise_by > $1
            ORDER BY created_at
            ''',
            now
        )

    async def _conditional(self, action: str, query: str, listing_id: UUID, *args) -> Optional[Listing]:
        async with self._connection(action) as conn:
            row = await conn.fetchrow(query, listing_id, *args)
            if row is None:
                exists = await conn.fetchval(
                    'SELECT EXISTS(SELECT 1 FROM contract_listings WHERE id = $1)',
                    listing_id
                )
                if not exists:
                    raise RecordNotFoundError(self.entity_name, listing_id)
                return None
        return self._to_entity(row)

    async def decrement_supply(self, listing_id: UUID, quantity: int) -> Optional[Listing]:
        return await self._conditional(
            'decrement supply of',
            '''
            UPDATE contract_listings
            SET supply_remaining = supply_remaining - $2
            WHERE id = $1 AND supply_remaining >= $2
            RETURNING *
            ''',
            listing_id,
            quantity
        )

    async def restore_supply(self, listing_id: UUID, quantity: int) -> Optional[Listing]:
        return await self._conditional(
            'restore supply of',
            '''
            UPDATE contract_listings
            SET supply_remaining = supply_remaining + $2
            WHERE id = $1 AND supply_remaining + $2 <= supply_limit
            RETURNING *
            ''',
            listing_id,
            quantity
        )

    async def update_terms(
        self,
        listing_id: UUID,
        list_price_nanos: int,
        supply_limit: int,
        exercise_by: Optional[datetime] = None
    ) -> Optional[Listing]:
        # Right-hand sides see the pre-update row
        return await self._conditional(
            'update terms of',
            '''
            UPDATE contract_listings
            SET list_price_nanos = $2,
                supply_limit = $3,
                supply_remaining = supply_remaining + ($3 - supply_limit),
                exercise_by = $4
            WHERE id = $1 AND supply_remaining + ($3 - supply_limit) >= 0
            RETURNING *
            ''',
            listing_id,
            list_price_nanos,
            supply_limit,
            exercise_by
        )

    async def delete_unissued(self, listing_id: UUID) -> Optional[Listing]:
        # A concurrent decrement holds the row lock; the supply check is
        # re-evaluated against its result.
        return await self._conditional(
            'delete',
            '''
            DELETE FROM contract_listings
            WHERE id = $1
            AND supply_remaining = supply_limit
            AND NOT EXISTS (SELECT 1 FROM contract_headers WHERE listing_id = $1)
            RETURNING *
            ''',
            listing_id
        )


class PostgresContractHeaderRepository(PostgresRepository, ContractHeaderRepository):
    entity_name = 'contract header'
    table = 'contract_headers'
    model = ContractHeader
    columns = ('id', 'listing_id', 'created_at')

    async def find_all_by_listing_id(self, listing_id: UUID) -> List[ContractHeader]:
        return await self._fetch(
            'list',
            'SELECT * FROM contract_headers WHERE listing_id = $1 ORDER BY created_at',
            listing_id
        )

    async def _find_by_listing(self, condition: str, *args) -> List[ContractHeader]:
        return await self._fetch(
            'list',
            f'''
            SELECT h.* FROM contract_headers h
            JOIN contract_listings l ON l.id = h.listing_id
            WHERE {condition}
            ORDER BY h.created_at
            ''',
            *args
        )

    async def find_all_by_seller_id(self, seller_id: UUID) -> List[ContractHeader]:
        return await self._find_by_listing('l.seller_id = $1', seller_id)

    async def find_all_by_price_range(self, min_price_nanos: int, max_price_nanos: int) -> List[ContractHeader]:
        return await self._find_by_listing(
            'l.list_price_nanos BETWEEN $1 AND $2', min_price_nanos, max_price_nanos
        )

    async def find_all_expiring_before(self, deadline: datetime) -> List[ContractHeader]:
        return await self._find_by_listing('l.exercise_by < $1', deadline)


class PostgresContractStateRepository(PostgresRepository, ContractStateRepository):
    entity_name = 'contract state'
    table = 'contract_states'
    key = 'header_id'
    model = ContractState
    columns = ('header_id', 'owner_id', 'last_purchase_at', 'status')
    preserved_on_update = ()

    async def find_all_by_owner_id(self, owner_id: UUID) -> List[ContractState]:
        return await self._fetch(
            'list',
            'SELECT * FROM contract_states WHERE owner_id = $1 ORDER BY last_purchase_at',
            owner_id
        )

    async def find_all_by_status(self, status: ContractStatus) -> List[ContractState]:
        return await self._fetch(
            'list',
            'SELECT * FROM contract_states WHERE status = $1',
            status.value
        )

    async def find_by_header_id_and_status(self, header_id: UUID, status: ContractStatus) -> ContractState:
        state = await self._fetch_one(
            'find',
            'SELECT * FROM contract_states WHERE header_id = $1 AND status = $2',
            header_id,
            status.value
        )
        if state is None:
            raise RecordNotFoundError(self.entity_name, header_id)
        return state

    async def update_status(self, header_id: UUID, status: ContractStatus) -> ContractState:
        async with self._connection('update status of') as conn:
            async with conn.transaction():
                row = await conn.fetchrow(
                    'SELECT * FROM contract_states WHERE header_id = $1 FOR UPDATE',
                    header_id
                )
                if row is None:
                    raise RecordNotFoundError(self.entity_name, header_id)
                current = ContractStatus(row['status'])
                if not current.can_transition_to(status):
                    raise ValueError(
                        f"Cannot move contract {header_id} from {current.value} to {status.value}"
                    )
                row = await conn.fetchrow(
                    'UPDATE contract_states SET status = $2 WHERE header_id = $1 RETURNING *',
                    header_id,
                    status.value
                )
        return self._to_entity(row)


class PostgresTransactionRepository(PostgresRepository, TransactionRepository):
    entity_name = 'transaction record'
    table = 'transaction_records'
    model = TransactionRecord
    columns = (
        'id', 'listing_id', 'seller_id', 'buyer_id', 'purchase_quantity',
        'unit_price_nanos', 'status', 'checkout_session_id', 'payment_intent_id',
        'currency', 'platform_fee_nanos', 'fulfilled', 'fulfilled_at',
        'failure_reason', 'created_at', 'updated_at'
    )

    async def update(self, entity: TransactionRecord) -> TransactionRecord:
        # Only a stored status that may move to the new one is overwritten
        allowed = [s.value for s in TransactionStatus if s.can_transition_to(entity.status)]
        updated = await self._update_where(entity, 'status = ANY({arg}::text[])', allowed)
        if updated is None:
            current = await self.find_by_id(entity.id)
            raise ValueError(
                f"Cannot move transaction {entity.id} from "
                f"{current.status.value} to {entity.status.value}"
            )
        return updated

    async def _find_by(self, column: str, value: Any) -> List[TransactionRecord]:
        return await self._fetch(
            'list',
            f'SELECT * FROM transaction_records WHERE {column} = $1 ORDER BY created_at',
            value
        )

    async def find_all_by_buyer_id(self, buyer_id: UUID) -> List[TransactionRecord]:
        return await self._find_by('buyer_id', buyer_id)

    async def find_all_by_seller_id(self, seller_id: UUID) -> List[TransactionRecord]:
        return await self._find_by('seller_id', seller_id)

    async def find_all_by_listing_id(self, listing_id: UUID) -> List[TransactionRecord]:
        return await self._find_by('listing_id', listing_id)

    async def find_all_by_status(self, status: TransactionStatus) -> List[TransactionRecord]:
        return await self._find_by('status', status.value)
