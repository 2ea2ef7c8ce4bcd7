"""Worker pool processing order-update jobs.

A fixed number of loops run side by side; each claims one job at a time, so at
most ``concurrency`` recomputations hit the store at once regardless of how
deep the queue is.
"""

import asyncio
import logging
from typing import List, Optional

from locks import default_holder_id
from .models import Job, RecomputeResult
from .queue import OrderUpdatesQueue
from .recompute import BestOrderRecomputer

logger = logging.getLogger(__name__)

class OrderUpdatesWorker:
    """Pulls jobs from the queue and recomputes best orders."""

    def __init__(
        self,
        queue: OrderUpdatesQueue,
        recomputer: BestOrderRecomputer,
        concurrency: int = 3,
        poll_interval: float = 1.0,
        lease_seconds: float = 300,
        worker_id: Optional[str] = None
    ) -> None:
        """Initialize the worker pool.

        Args:
            queue: Queue to pull jobs from
            recomputer: Store recomputation logic
            concurrency: Number of jobs processed at the same time
            poll_interval: Seconds to wait before polling an empty queue again
            lease_seconds: Time a claimed job may run before it counts as stalled
            worker_id: Identity recorded on claimed jobs
        """
        if concurrency < 1:
            raise ValueError("concurrency must be at least 1")
        self.queue = queue
        self.recomputer = recomputer
        self.concurrency = concurrency
        self.poll_interval = poll_interval
        self.lease_seconds = lease_seconds
        self.worker_id = worker_id or default_holder_id()
        self.running = False
        self._tasks: List[asyncio.Task] = []

    @property
    def name(self) -> str:
        return self.queue.name

    async def process(self, job: Job) -> RecomputeResult:
        """Run the recomputation for one job.

        Raises:
            Exception: Whatever the recomputation raised, after logging it
        """
        try:
            return await self.recomputer.recompute(job.data.order_id)
        except Exception as e:
            logger.error(
                f"[{self.name}] Failed to handle order info "
                f"{job.data.model_dump_json(by_alias=True)} (job {job.id}, attempt "
                f"{job.attempts_made}/{job.max_attempts}): {e}"
            )
            raise

    async def run_once(self) -> bool:
        """Claim and process a single job.

        Returns:
            True if a job was found, False if the queue had nothing due
        """
        job = await self.queue.claim(self.worker_id, self.lease_seconds)
        if job is None:
            return False

        try:
            await self.process(job)
        except Exception as e:
            await self.queue.fail(job, self.worker_id, e)
        else:
            if not await self.queue.complete(job, self.worker_id):
                logger.warning(f"[{self.name}] Job {job.id} finished after losing its lease")
        return True

    async def _loop(self, index: int) -> None:
        logger.debug(f"[{self.name}] Worker loop {index} started")
        while self.running:
            try:
                found = await self.run_once()
            except asyncio.CancelledError:
                raise
            except Exception as e:
                logger.error(f"[{self.name}] Worker errored: {e}")
                found = False

            if not found and self.running:
                await asyncio.sleep(self.poll_interval)
        logger.debug(f"[{self.name}] Worker loop {index} stopped")

    def start(self) -> None:
        """Start the worker loops on the running event loop."""
        if self.running:
            return
        self.running = True
        self._tasks = [
            asyncio.create_task(self._loop(index), name=f"{self.name}-worker-{index}")
            for index in range(self.concurrency)
        ]
        logger.info(
            f"[{self.name}] Started {self.concurrency} workers as {self.worker_id}"
        )

    async def stop(self, timeout: Optional[float] = None) -> None:
        """Stop the worker loops, letting in-flight jobs finish.

        Args:
            timeout: Seconds to wait before cancelling jobs still running
        """
        if not self._tasks:
            self.running = False
            return

        self.running = False
        done, pending = await asyncio.wait(self._tasks, timeout=timeout)
        for task in pending:
            task.cancel()
        if pending:
            await asyncio.gather(*pending, return_exceptions=True)
            logger.warning(f"[{self.name}] Cancelled {len(pending)} workers still running")
        self._tasks = []
        logger.info(f"[{self.name}] Workers stopped")
