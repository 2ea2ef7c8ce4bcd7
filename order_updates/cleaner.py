"""Periodic trimming of the order-updates job history.

Every instance runs a cleaner, but a sweep only happens in the instance that
wins the cleanup lock. The lock is left to expire instead of being released,
with a lease slightly shorter than the interval, so the whole deployment
sweeps at most once per interval.
"""

import asyncio
import logging
from typing import Optional

from locks import LeaseLock, LockNotAcquiredError
from .models import JobStatus
from .queue import OrderUpdatesQueue

logger = logging.getLogger(__name__)

class QueueCleaner:
    """Trims finished jobs and recovers stalled ones under a leased lock."""

    def __init__(
        self,
        queue: OrderUpdatesQueue,
        lock: LeaseLock,
        interval: float = 60,
        lock_lease: float = 55,
        grace: float = 600,
        limit: int = 10000,
        keep_completed: Optional[int] = 10000,
        keep_failed: Optional[int] = 10000
    ) -> None:
        """Initialize the cleaner.

        Args:
            queue: Queue whose history is trimmed
            lock: Lock client used to elect the sweeping instance
            interval: Seconds between sweeps
            lock_lease: Lease of the cleanup lock, must be below ``interval``
            grace: Finished jobs younger than this are kept
            limit: Maximum number of jobs removed per status and sweep
            keep_completed: Completed jobs kept at most, None to keep all
            keep_failed: Failed jobs kept at most, None to keep all
        """
        if not 0 < lock_lease < interval:
            raise ValueError("lock_lease must be positive and shorter than interval")
        self.queue = queue
        self.lock = lock
        self.interval = interval
        self.lock_lease = lock_lease
        self.grace = grace
        self.limit = limit
        self.keep = {
            JobStatus.COMPLETED: keep_completed,
            JobStatus.FAILED: keep_failed,
        }
        self.running = False
        self._task: Optional[asyncio.Task] = None

    @property
    def lock_name(self) -> str:
        return f"{self.queue.name}-queue-clean-lock"

    async def run_once(self) -> bool:
        """Sweep once if this instance wins the cleanup lock.

        Never raises: losing the lock is expected, and cleanup is best-effort.

        Returns:
            True if a sweep ran to completion
        """
        try:
            await self.lock.acquire(self.lock_name, self.lock_lease)
        except LockNotAcquiredError:
            return False
        except Exception as e:
            logger.warning(f"[{self.queue.name}] Could not acquire cleanup lock: {e}")
            return False

        try:
            removed = {}
            for status in (JobStatus.COMPLETED, JobStatus.FAILED):
                removed[status.value] = await self.queue.clean(self.grace, self.limit, status)
                if self.keep[status] is not None:
                    removed[status.value] += await self.queue.trim(self.keep[status], status)
            recovered = await self.queue.requeue_stalled()
        except Exception as e:
            logger.warning(f"[{self.queue.name}] Queue cleanup failed: {e}")
            return False

        if any(removed.values()) or recovered:
            logger.info(
                f"[{self.queue.name}] Cleaned {removed['completed']} completed and "
                f"{removed['failed']} failed jobs, recovered {recovered} stalled jobs"
            )
        return True

    async def _loop(self) -> None:
        while self.running:
            await self.run_once()
            await asyncio.sleep(self.interval)

    def start(self) -> None:
        if self.running:
            return
        self.running = True
        self._task = asyncio.create_task(self._loop(), name=f"{self.queue.name}-cleaner")
        logger.info(f"[{self.queue.name}] Queue cleaner running every {self.interval:g}s")

    async def stop(self) -> None:
        self.running = False
        if self._task:
            self._task.cancel()
            try:
                await self._task
            except asyncio.CancelledError:
                pass
            self._task = None
