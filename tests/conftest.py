"""Shared fixtures.

Unit tests run against a mocked asyncpg pool. Tests that need a real store use
the ``db_pool`` fixture, which connects to $BEST_ORDERS_TEST_DB_URL and skips
the test when it is not set. That database is dropped and recreated per test.
"""

import os
from decimal import Decimal
from typing import Iterable, Optional, Tuple
from unittest.mock import AsyncMock, MagicMock

import pytest
import pytest_asyncio

from database import init_db, close as close_db
from order_updates import Job, JobStatus, OrderInfo

TEST_DB_URL = os.environ.get('BEST_ORDERS_TEST_DB_URL')

class MockAcquire:
    """Async context manager standing in for pool.acquire()."""

    def __init__(self, conn):
        self.conn = conn

    async def __aenter__(self):
        return self.conn

    async def __aexit__(self, exc_type, exc, tb):
        return False

@pytest.fixture
def conn():
    """Mocked connection; configure return values per test."""
    conn = MagicMock()
    conn.fetch = AsyncMock(return_value=[])
    conn.fetchrow = AsyncMock(return_value=None)
    conn.fetchval = AsyncMock(return_value=None)
    conn.execute = AsyncMock(return_value='UPDATE 1')
    return conn

@pytest.fixture
def mock_pool(conn):
    """Mocked pool handing out ``conn``."""
    pool = MagicMock()
    pool.acquire.side_effect = lambda: MockAcquire(conn)
    return pool

def make_job(
    order_id: str = 'A',
    context: str = 'new-order-A',
    attempts_made: int = 1,
    max_attempts: int = 5
) -> Job:
    info = OrderInfo(context=context, order_id=order_id)
    return Job(
        id=info.job_id,
        name=order_id,
        data=info,
        status=JobStatus.ACTIVE,
        attempts_made=attempts_made,
        max_attempts=max_attempts
    )

@pytest.fixture
def job_factory():
    return make_job

@pytest_asyncio.fixture
async def db_pool():
    """Create and return a pool on a freshly recreated test database."""
    if not TEST_DB_URL:
        pytest.skip("BEST_ORDERS_TEST_DB_URL not set")
    pool = await init_db(TEST_DB_URL, force_recreate=True)
    yield pool
    await close_db()

class StoreHelper:
    """Writes order book fixtures the way the ingestion side would."""

    def __init__(self, pool):
        self.pool = pool

    async def add_token_set(self, token_set_id: str, tokens: Iterable[Tuple[str, int]]) -> None:
        async with self.pool.acquire() as conn:
            await conn.execute(
                'INSERT INTO token_sets (id) VALUES ($1) ON CONFLICT DO NOTHING',
                token_set_id
            )
            for contract, token_id in tokens:
                await conn.execute(
                    'INSERT INTO tokens (contract, token_id) VALUES ($1, $2) ON CONFLICT DO NOTHING',
                    contract,
                    Decimal(token_id)
                )
                await conn.execute(
                    '''
                    INSERT INTO token_sets_tokens (token_set_id, contract, token_id)
                    VALUES ($1, $2, $3)
                    ON CONFLICT DO NOTHING
                    ''',
                    token_set_id,
                    contract,
                    Decimal(token_id)
                )

    async def add_single_token_set(self, contract: str, token_id: int) -> str:
        token_set_id = f"token:{contract}:{token_id}"
        await self.add_token_set(token_set_id, [(contract, token_id)])
        return token_set_id

    async def add_order(
        self,
        order_id: str,
        side: str,
        token_set_id: str,
        value: int,
        maker: str = '0xmaker',
        fillability_status: str = 'fillable',
        approval_status: str = 'approved'
    ) -> None:
        async with self.pool.acquire() as conn:
            await conn.execute(
                '''
                INSERT INTO orders (
                    id, side, token_set_id, value, maker,
                    fillability_status, approval_status
                ) VALUES ($1, $2, $3, $4, $5, $6, $7)
                ''',
                order_id,
                side,
                token_set_id,
                Decimal(value),
                maker,
                fillability_status,
                approval_status
            )

    async def set_order_status(self, order_id: str, fillability_status: str) -> None:
        async with self.pool.acquire() as conn:
            await conn.execute(
                'UPDATE orders SET fillability_status = $2, updated_at = now() WHERE id = $1',
                order_id,
                fillability_status
            )

    async def set_balance(self, contract: str, token_id: int, owner: str, amount: int) -> None:
        async with self.pool.acquire() as conn:
            await conn.execute(
                '''
                INSERT INTO nft_balances (contract, token_id, owner, amount)
                VALUES ($1, $2, $3, $4)
                ON CONFLICT (contract, token_id, owner) DO UPDATE SET amount = EXCLUDED.amount
                ''',
                contract,
                Decimal(token_id),
                owner,
                Decimal(amount)
            )

    async def token(self, contract: str, token_id: int):
        async with self.pool.acquire() as conn:
            return await conn.fetchrow(
                'SELECT * FROM tokens WHERE contract = $1 AND token_id = $2',
                contract,
                Decimal(token_id)
            )

    async def token_set(self, token_set_id: str):
        async with self.pool.acquire() as conn:
            return await conn.fetchrow(
                'SELECT * FROM token_sets WHERE id = $1',
                token_set_id
            )

@pytest_asyncio.fixture
async def store(db_pool) -> StoreHelper:
    return StoreHelper(db_pool)
