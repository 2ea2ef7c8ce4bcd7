"""Wiring of the order-updates queue, worker pool and cleaner."""

import logging
from typing import Any, Dict, Optional

from asyncpg.pool import Pool

from locks import LeaseLock, default_holder_id
from .cleaner import QueueCleaner
from .queue import OrderUpdatesQueue
from .recompute import BestOrderRecomputer
from .retry import RetryPolicy
from .worker import OrderUpdatesWorker

logger = logging.getLogger(__name__)

class OrderUpdatesService:
    """Owns every order-updates component for one process."""

    def __init__(self, pool: Pool, settings: Dict[str, Any], instance_id: Optional[str] = None) -> None:
        """Build the components from validated settings.

        Args:
            pool: Database connection pool
            settings: Validated settings (see config)
            instance_id: Identity of this process on jobs and locks
        """
        self.pool = pool
        self.settings = settings
        self.instance_id = instance_id or default_holder_id()

        self.queue = OrderUpdatesQueue(pool, RetryPolicy.from_settings(settings))
        self.recomputer = BestOrderRecomputer(pool, queue_name=self.queue.name)
        self.worker = OrderUpdatesWorker(
            self.queue,
            self.recomputer,
            concurrency=settings['worker_concurrency'],
            poll_interval=settings['worker_poll_interval'],
            lease_seconds=settings['job_lease_seconds'],
            worker_id=self.instance_id
        )
        self.cleaner = QueueCleaner(
            self.queue,
            LeaseLock(pool, holder=self.instance_id),
            interval=settings['cleanup_interval'],
            lock_lease=settings['cleanup_lock_lease'],
            grace=settings['cleanup_grace'],
            limit=settings['cleanup_limit'],
            keep_completed=settings['remove_on_complete'],
            keep_failed=settings['remove_on_fail']
        )
        self.background = bool(settings['do_background_work'])

    def start(self) -> None:
        """Start background processing if enabled for this process."""
        if not self.background:
            logger.info(f"[{self.queue.name}] Background work disabled, only enqueueing")
            return
        self.worker.start()
        self.cleaner.start()

    async def stop(self) -> None:
        await self.cleaner.stop()
        await self.worker.stop()
