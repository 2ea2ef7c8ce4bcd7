"""Durable, deduplicating job queue for order updates.

Jobs live in the ``order_update_jobs`` table, keyed by queue name and the
deterministic id ``"{context}-{order id}"``. Inserts use ``ON CONFLICT DO NOTHING``,
so any number of triggers for the same (context, order) pair collapse into a
single unit of work. Finished jobs stay in the table until the cleaner trims
them, which keeps absorbing repeats of work that already ran.

Job lifecycle::

    waiting -> active -> completed
                  |
                  +--> delayed -> active ...   (retry with backoff)
                  +--> failed                  (attempts exhausted)
"""

import json
import logging
from typing import Any, Dict, Iterable, List, Optional, Union

from asyncpg.pool import Pool
from pydantic import ValidationError

from .models import HASH_ZERO, Job, JobStatus, OrderInfo
from .retry import RetryPolicy

logger = logging.getLogger(__name__)

QUEUE_NAME = "order-updates-by-id"

FINISHED_STATUSES = (JobStatus.COMPLETED, JobStatus.FAILED)

JOB_COLUMNS = '''
    id, name, data, status, attempts_made, max_attempts, run_at,
    last_error, created_at, processed_at, finished_at
'''

def _affected_rows(status: str) -> int:
    """Row count from an asyncpg command tag such as 'DELETE 12'."""
    try:
        return int(status.split()[-1])
    except (AttributeError, IndexError, ValueError):
        return 0

class OrderUpdatesQueue:
    """Client for the order-updates job table."""

    def __init__(
        self,
        pool: Pool,
        retry_policy: Optional[RetryPolicy] = None,
        name: str = QUEUE_NAME
    ) -> None:
        """Initialize the queue client.

        Args:
            pool: Database connection pool
            retry_policy: Attempt ceiling and backoff applied to new and failed jobs
            name: Queue name, lets several queues share the job table
        """
        self.pool = pool
        self.retry_policy = retry_policy or RetryPolicy()
        self.name = name

    def _prepare(self, order_infos: Iterable[Union[OrderInfo, Dict[str, Any]]]) -> List[OrderInfo]:
        """Validate a batch, dropping malformed and placeholder entries."""
        prepared: Dict[str, OrderInfo] = {}
        for item in order_infos:
            if isinstance(item, OrderInfo):
                info = item
            else:
                try:
                    info = OrderInfo.model_validate(item)
                except ValidationError as e:
                    logger.warning(f"[{self.name}] Dropping malformed order info {item!r}: {e}")
                    continue

            # Ignore empty orders
            if not info.order_id or info.order_id == HASH_ZERO:
                continue

            prepared.setdefault(info.job_id, info)
        return list(prepared.values())

    async def enqueue(self, order_infos: Iterable[Union[OrderInfo, Dict[str, Any]]]) -> List[str]:
        """Submit a batch of recomputation requests.

        Invalid entries are filtered out rather than raising. A job whose id
        already exists in the queue, pending or retained, is not added again.

        Args:
            order_infos: Requests as OrderInfo models or dicts with context/orderId

        Returns:
            Ids of the jobs that were actually added
        """
        infos = self._prepare(order_infos)
        if not infos:
            return []

        async with self.pool.acquire() as conn:
            rows = await conn.fetch(
                '''
                INSERT INTO order_update_jobs (id, queue, name, data, max_attempts)
                SELECT u.id, $1, u.name, u.data::jsonb, $5
                FROM unnest($2::text[], $3::text[], $4::text[]) AS u(id, name, data)
                ON CONFLICT (queue, id) DO NOTHING
                RETURNING id
                ''',
                self.name,
                [info.job_id for info in infos],
                [info.order_id for info in infos],
                [info.model_dump_json(by_alias=True, exclude_none=True) for info in infos],
                self.retry_policy.attempts
            )

        added = [row['id'] for row in rows]
        logger.debug(
            f"[{self.name}] Enqueued {len(added)} of {len(infos)} jobs "
            f"({len(infos) - len(added)} already known)"
        )
        return added

    async def claim(self, worker_id: str, lease_seconds: float) -> Optional[Job]:
        """Move the oldest due job to active and hand it to ``worker_id``.

        Returns:
            The claimed job, or None if nothing is due
        """
        async with self.pool.acquire() as conn:
            row = await conn.fetchrow(
                f'''
                WITH next AS (
                    SELECT id
                    FROM order_update_jobs
                    WHERE queue = $1
                    AND status IN ('waiting', 'delayed')
                    AND run_at <= now()
                    ORDER BY run_at, created_at
                    LIMIT 1
                    FOR UPDATE SKIP LOCKED
                )
                UPDATE order_update_jobs j
                SET
                    status = 'active',
                    attempts_made = j.attempts_made + 1,
                    locked_by = $2,
                    lease_expires_at = now() + $3::float8 * interval '1 second',
                    processed_at = now()
                FROM next
                WHERE j.queue = $1 AND j.id = next.id
                RETURNING {', '.join(f'j.{col.strip()}' for col in JOB_COLUMNS.split(','))}
                ''',
                self.name,
                worker_id,
                float(lease_seconds)
            )

        return self._row_to_job(row) if row else None

    async def complete(self, job: Job, worker_id: str) -> bool:
        """Mark an active job as completed.

        Returns:
            False if the job was no longer held by ``worker_id`` (its lease
            expired and it was requeued)
        """
        async with self.pool.acquire() as conn:
            status = await conn.execute(
                '''
                UPDATE order_update_jobs
                SET
                    status = 'completed',
                    finished_at = now(),
                    locked_by = NULL,
                    lease_expires_at = NULL
                WHERE queue = $3 AND id = $1 AND status = 'active' AND locked_by = $2
                ''',
                job.id,
                worker_id,
                self.name
            )
        return _affected_rows(status) == 1

    async def fail(self, job: Job, worker_id: str, error: BaseException) -> Optional[JobStatus]:
        """Record a failed attempt, rescheduling the job while attempts remain.

        Returns:
            The job's new status, or None if it was no longer held by ``worker_id``
        """
        message = f"{type(error).__name__}: {error}"
        if self.retry_policy.should_retry(job.attempts_made, job.max_attempts):
            delay = self.retry_policy.delay_for(job.attempts_made)
            new_status = JobStatus.DELAYED
        else:
            delay = 0.0
            new_status = JobStatus.FAILED

        async with self.pool.acquire() as conn:
            status = await conn.execute(
                '''
                UPDATE order_update_jobs
                SET
                    status = $3,
                    last_error = $4,
                    run_at = now() + $5::float8 * interval '1 second',
                    finished_at = CASE WHEN $3 = 'failed' THEN now() END,
                    locked_by = NULL,
                    lease_expires_at = NULL
                WHERE queue = $6 AND id = $1 AND status = 'active' AND locked_by = $2
                ''',
                job.id,
                worker_id,
                new_status.value,
                message,
                delay,
                self.name
            )

        if _affected_rows(status) != 1:
            return None

        if new_status is JobStatus.DELAYED:
            logger.info(
                f"[{self.name}] Job {job.id} failed attempt {job.attempts_made}/{job.max_attempts}, "
                f"retrying in {delay:g}s"
            )
        else:
            logger.error(
                f"[{self.name}] Job {job.id} failed permanently after {job.attempts_made} attempts: {message}"
            )
        return new_status

    async def requeue_stalled(self) -> int:
        """Recover active jobs whose lease ran out (their worker died or hung).

        Jobs with attempts left go back to waiting, the rest are failed.

        Returns:
            Number of recovered jobs
        """
        async with self.pool.acquire() as conn:
            rows = await conn.fetch(
                '''
                WITH stalled AS (
                    SELECT id
                    FROM order_update_jobs
                    WHERE queue = $1
                    AND status = 'active'
                    AND lease_expires_at <= now()
                    FOR UPDATE SKIP LOCKED
                )
                UPDATE order_update_jobs j
                SET
                    status = CASE WHEN j.attempts_made < j.max_attempts THEN 'waiting' ELSE 'failed' END,
                    last_error = 'job stalled: lease expired before completion',
                    run_at = now(),
                    finished_at = CASE WHEN j.attempts_made < j.max_attempts THEN NULL ELSE now() END,
                    locked_by = NULL,
                    lease_expires_at = NULL
                FROM stalled
                WHERE j.queue = $1 AND j.id = stalled.id
                RETURNING j.id, j.status
                ''',
                self.name
            )

        for row in rows:
            logger.warning(f"[{self.name}] Recovered stalled job {row['id']} as {row['status']}")
        return len(rows)

    async def clean(self, grace_seconds: float, limit: int, status: JobStatus) -> int:
        """Delete up to ``limit`` finished jobs that finished more than ``grace_seconds`` ago.

        Returns:
            Number of deleted jobs
        """
        status = JobStatus(status)
        if status not in FINISHED_STATUSES:
            raise ValueError(f"Only finished jobs can be cleaned, got {status.value}")

        async with self.pool.acquire() as conn:
            result = await conn.execute(
                '''
                DELETE FROM order_update_jobs
                WHERE queue = $1 AND id IN (
                    SELECT id
                    FROM order_update_jobs
                    WHERE queue = $1
                    AND status = $2
                    AND finished_at < now() - $3::float8 * interval '1 second'
                    ORDER BY finished_at
                    LIMIT $4
                )
                ''',
                self.name,
                status.value,
                float(grace_seconds),
                limit
            )
        return _affected_rows(result)

    async def trim(self, keep: int, status: JobStatus) -> int:
        """Keep only the ``keep`` most recently finished jobs of ``status``.

        Returns:
            Number of deleted jobs
        """
        status = JobStatus(status)
        if status not in FINISHED_STATUSES:
            raise ValueError(f"Only finished jobs can be trimmed, got {status.value}")

        async with self.pool.acquire() as conn:
            result = await conn.execute(
                '''
                DELETE FROM order_update_jobs
                WHERE queue = $1 AND id IN (
                    SELECT id
                    FROM order_update_jobs
                    WHERE queue = $1
                    AND status = $2
                    ORDER BY finished_at DESC, id
                    OFFSET $3
                )
                ''',
                self.name,
                status.value,
                keep
            )
        return _affected_rows(result)

    async def get_job(self, job_id: str) -> Optional[Job]:
        async with self.pool.acquire() as conn:
            row = await conn.fetchrow(
                f'SELECT {JOB_COLUMNS} FROM order_update_jobs WHERE queue = $1 AND id = $2',
                self.name,
                job_id
            )
        return self._row_to_job(row) if row else None

    async def get_counts(self) -> Dict[str, int]:
        """Number of jobs per status."""
        async with self.pool.acquire() as conn:
            rows = await conn.fetch(
                '''
                SELECT status, COUNT(*) AS count
                FROM order_update_jobs
                WHERE queue = $1
                GROUP BY status
                ''',
                self.name
            )
        counts = {status.value: 0 for status in JobStatus}
        counts.update({row['status']: row['count'] for row in rows})
        return counts

    @staticmethod
    def _row_to_job(row) -> Job:
        record = dict(row)
        data = record['data']
        if isinstance(data, str):
            data = json.loads(data)
        record['data'] = OrderInfo.model_validate(data)
        return Job.model_validate(record)
