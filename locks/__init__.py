"""Leased locks for mutual exclusion across service instances.

A lock is a row in the ``locks`` table. Acquiring it is a single upsert that
only succeeds when nobody holds the name or the previous lease has expired, so
a holder that dies simply lets the lease run out. The lease must be longer
than the work it protects and, for periodic work, shorter than the period.
"""

import logging
import os
import socket
from datetime import datetime
from typing import Optional
from uuid import uuid4

from asyncpg.pool import Pool

logger = logging.getLogger(__name__)

class LockError(Exception):
    """Base class for lock errors."""
    pass

class LockNotAcquiredError(LockError):
    """Raised when the lock is currently held by someone else."""
    def __init__(self, name: str):
        self.name = name
        super().__init__(f"Lock {name} is held by another instance")

def default_holder_id() -> str:
    """Identify this process among all instances sharing the store."""
    return f"{socket.gethostname()}:{os.getpid()}:{uuid4().hex[:8]}"

class Lease:
    """A held lock."""

    def __init__(self, lock: 'LeaseLock', name: str, holder: str, expires_at: datetime) -> None:
        self.lock = lock
        self.name = name
        self.holder = holder
        self.expires_at = expires_at

    async def extend(self, lease_seconds: float) -> None:
        await self.lock.extend(self, lease_seconds)

    async def release(self) -> None:
        await self.lock.release(self)

    async def __aenter__(self) -> 'Lease':
        return self

    async def __aexit__(self, exc_type, exc, tb) -> None:
        await self.release()

    def __repr__(self) -> str:
        return f"Lease(name={self.name!r}, holder={self.holder!r}, expires_at={self.expires_at!r})"

class LeaseLock:
    """Acquires auto-expiring named locks stored in the database."""

    def __init__(self, pool: Pool, holder: Optional[str] = None) -> None:
        """Initialize the lock client.

        Args:
            pool: Database connection pool
            holder: Identity recorded on acquired locks, unique per instance
        """
        self.pool = pool
        self.holder = holder or default_holder_id()

    async def acquire(self, name: str, lease_seconds: float) -> Lease:
        """Acquire ``name`` for ``lease_seconds``.

        Raises:
            LockNotAcquiredError: If another holder's lease is still live
        """
        async with self.pool.acquire() as conn:
            row = await conn.fetchrow(
                '''
                INSERT INTO locks (name, holder, expires_at, acquired_at)
                VALUES ($1, $2, now() + $3::float8 * interval '1 second', now())
                ON CONFLICT (name) DO UPDATE SET
                    holder = EXCLUDED.holder,
                    expires_at = EXCLUDED.expires_at,
                    acquired_at = EXCLUDED.acquired_at
                WHERE locks.expires_at <= now()
                RETURNING expires_at
                ''',
                name,
                self.holder,
                float(lease_seconds)
            )

        if not row:
            raise LockNotAcquiredError(name)

        logger.debug(f"Acquired lock {name} until {row['expires_at']}")
        return Lease(self, name, self.holder, row['expires_at'])

    async def extend(self, lease: Lease, lease_seconds: float) -> None:
        """Push the expiry of a lease we still hold.

        Raises:
            LockNotAcquiredError: If the lease already expired and was taken over
        """
        async with self.pool.acquire() as conn:
            row = await conn.fetchrow(
                '''
                UPDATE locks
                SET expires_at = now() + $3::float8 * interval '1 second'
                WHERE name = $1 AND holder = $2 AND expires_at > now()
                RETURNING expires_at
                ''',
                lease.name,
                lease.holder,
                float(lease_seconds)
            )

        if not row:
            raise LockNotAcquiredError(lease.name)
        lease.expires_at = row['expires_at']

    async def release(self, lease: Lease) -> None:
        """Release a lease. Releasing a lease that was taken over is a no-op."""
        async with self.pool.acquire() as conn:
            await conn.execute(
                'DELETE FROM locks WHERE name = $1 AND holder = $2',
                lease.name,
                lease.holder
            )
        logger.debug(f"Released lock {lease.name}")

__all__ = ['LeaseLock', 'Lease', 'LockError', 'LockNotAcquiredError', 'default_holder_id']
