"""Tests for the order-updates queue client."""

import json
from datetime import datetime, timezone

import pytest

from order_updates import (
    HASH_ZERO,
    JobStatus,
    OrderInfo,
    OrderUpdatesQueue,
    QUEUE_NAME,
    RetryPolicy,
)

@pytest.fixture
def queue(mock_pool):
    return OrderUpdatesQueue(mock_pool, RetryPolicy(attempts=5, delay=10))

@pytest.mark.asyncio
async def test_enqueue_uses_context_and_order_as_job_id(queue, conn):
    """Job ids are '{context}-{orderId}' so repeated triggers collapse."""
    conn.fetch.return_value = [{'id': 'new-order-A-A'}]

    queued = await queue.enqueue([{'context': 'new-order-A', 'orderId': 'A'}])

    assert queued == ['new-order-A-A']
    conn.fetch.assert_awaited_once()
    args = conn.fetch.await_args.args
    assert "ON CONFLICT (queue, id) DO NOTHING" in args[0]
    assert args[1] == QUEUE_NAME
    assert args[2] == ['new-order-A-A']
    assert args[3] == ['A']
    assert json.loads(args[4][0]) == {'context': 'new-order-A', 'orderId': 'A'}
    assert args[5] == 5

@pytest.mark.asyncio
async def test_enqueue_drops_placeholder_and_malformed_entries(queue, conn):
    conn.fetch.return_value = [{'id': 'ctx-B'}]

    await queue.enqueue([
        {'context': 'ctx', 'orderId': HASH_ZERO},
        {'context': 'ctx', 'orderId': ''},
        {'context': 'ctx'},
        {'orderId': 'C'},
        'not an order info',
        {'context': 'ctx', 'orderId': 'B'},
    ])

    args = conn.fetch.await_args.args
    assert args[2] == ['ctx-B']

@pytest.mark.asyncio
async def test_enqueue_only_placeholders_skips_database(queue, conn):
    queued = await queue.enqueue([
        {'context': 'ctx', 'orderId': HASH_ZERO},
        {'context': 'ctx', 'orderId': ''},
    ])

    assert queued == []
    conn.fetch.assert_not_awaited()

@pytest.mark.asyncio
async def test_enqueue_empty_batch(queue, conn):
    assert await queue.enqueue([]) == []
    conn.fetch.assert_not_awaited()

@pytest.mark.asyncio
async def test_enqueue_dedups_within_batch(queue, conn):
    conn.fetch.return_value = [{'id': 'ctx-A'}, {'id': 'other-A'}]

    await queue.enqueue([
        OrderInfo(context='ctx', order_id='A'),
        {'context': 'ctx', 'orderId': 'A'},
        {'context': 'other', 'orderId': 'A'},
    ])

    args = conn.fetch.await_args.args
    # Same order under another context is separate work
    assert args[2] == ['ctx-A', 'other-A']

@pytest.mark.asyncio
async def test_enqueue_keeps_trigger_payload(queue, conn):
    conn.fetch.return_value = [{'id': 'ctx-A'}]

    await queue.enqueue([{
        'context': 'ctx',
        'orderId': 'A',
        'trigger': {'kind': 'cancel', 'txHash': '0xabc', 'logIndex': 3},
    }])

    data = json.loads(conn.fetch.await_args.args[4][0])
    assert data['trigger'] == {'kind': 'cancel', 'txHash': '0xabc', 'logIndex': 3}

@pytest.mark.asyncio
async def test_enqueue_reports_only_new_jobs(queue, conn):
    """Ids the store already knows are absent from the result."""
    conn.fetch.return_value = []

    queued = await queue.enqueue([{'context': 'ctx', 'orderId': 'A'}])

    assert queued == []

@pytest.mark.asyncio
async def test_claim_returns_job(queue, conn):
    now = datetime.now(timezone.utc)
    conn.fetchrow.return_value = {
        'id': 'ctx-A',
        'name': 'A',
        'data': json.dumps({'context': 'ctx', 'orderId': 'A'}),
        'status': 'active',
        'attempts_made': 1,
        'max_attempts': 5,
        'run_at': now,
        'last_error': None,
        'created_at': now,
        'processed_at': now,
        'finished_at': None,
    }

    job = await queue.claim('worker-1', 300)

    assert job.id == 'ctx-A'
    assert job.status is JobStatus.ACTIVE
    assert job.data.order_id == 'A'
    assert job.data.context == 'ctx'
    assert job.attempts_made == 1
    args = conn.fetchrow.await_args.args
    assert 'FOR UPDATE SKIP LOCKED' in args[0]
    assert args[1:] == (QUEUE_NAME, 'worker-1', 300.0)

@pytest.mark.asyncio
async def test_claim_empty_queue(queue, conn):
    conn.fetchrow.return_value = None

    assert await queue.claim('worker-1', 300) is None

@pytest.mark.asyncio
async def test_complete(queue, conn, job_factory):
    job = job_factory()

    assert await queue.complete(job, 'worker-1') is True
    args = conn.execute.await_args.args
    assert args[1:] == (job.id, 'worker-1', QUEUE_NAME)

@pytest.mark.asyncio
async def test_complete_after_losing_lease(queue, conn, job_factory):
    conn.execute.return_value = 'UPDATE 0'

    assert await queue.complete(job_factory(), 'worker-1') is False

@pytest.mark.asyncio
async def test_fail_with_attempts_left_delays_job(queue, conn, job_factory):
    job = job_factory(attempts_made=2, max_attempts=5)

    status = await queue.fail(job, 'worker-1', ConnectionError('store unreachable'))

    assert status is JobStatus.DELAYED
    args = conn.execute.await_args.args
    assert args[1:] == (
        job.id,
        'worker-1',
        'delayed',
        'ConnectionError: store unreachable',
        20.0,
        QUEUE_NAME,
    )

@pytest.mark.asyncio
async def test_fail_on_last_attempt_fails_job(queue, conn, job_factory):
    job = job_factory(attempts_made=5, max_attempts=5)

    status = await queue.fail(job, 'worker-1', RuntimeError('boom'))

    assert status is JobStatus.FAILED
    args = conn.execute.await_args.args
    assert args[3] == 'failed'
    assert args[5] == 0.0

@pytest.mark.asyncio
async def test_fail_after_losing_lease(queue, conn, job_factory):
    conn.execute.return_value = 'UPDATE 0'

    assert await queue.fail(job_factory(), 'worker-1', RuntimeError('boom')) is None

@pytest.mark.asyncio
async def test_requeue_stalled(queue, conn):
    conn.fetch.return_value = [
        {'id': 'ctx-A', 'status': 'waiting'},
        {'id': 'ctx-B', 'status': 'failed'},
    ]

    assert await queue.requeue_stalled() == 2

@pytest.mark.asyncio
async def test_clean_returns_deleted_count(queue, conn):
    conn.execute.return_value = 'DELETE 12'

    removed = await queue.clean(600, 10000, JobStatus.COMPLETED)

    assert removed == 12
    args = conn.execute.await_args.args
    assert args[1:] == (QUEUE_NAME, 'completed', 600.0, 10000)

@pytest.mark.asyncio
async def test_trim_returns_deleted_count(queue, conn):
    conn.execute.return_value = 'DELETE 3'

    assert await queue.trim(10000, 'failed') == 3
    assert conn.execute.await_args.args[1:] == (QUEUE_NAME, 'failed', 10000)

@pytest.mark.asyncio
@pytest.mark.parametrize('status', [JobStatus.WAITING, JobStatus.ACTIVE, JobStatus.DELAYED])
async def test_unfinished_jobs_are_never_cleaned(queue, conn, status):
    with pytest.raises(ValueError):
        await queue.clean(600, 100, status)
    with pytest.raises(ValueError):
        await queue.trim(100, status)
    conn.execute.assert_not_awaited()

@pytest.mark.asyncio
async def test_get_counts_reports_every_status(queue, conn):
    conn.fetch.return_value = [{'status': 'waiting', 'count': 4}]

    counts = await queue.get_counts()

    assert counts == {
        'waiting': 4,
        'delayed': 0,
        'active': 0,
        'completed': 0,
        'failed': 0,
    }

@pytest.mark.asyncio
async def test_get_job_unknown(queue, conn):
    conn.fetchrow.return_value = None

    assert await queue.get_job('ctx-missing') is None
