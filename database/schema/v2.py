"""Schema v2 - Order updates job queue and leased locks.

This version adds:
- order_update_jobs: durable, deduplicated recomputation jobs
- locks: named leases used for cross-instance mutual exclusion
"""
from database.schema.v1 import schema as v1

order_update_jobs = {
    'name': 'order_update_jobs',
    'columns': [
        {'name': 'id', 'type': 'TEXT', 'nullable': False},  # "{context}-{order id}"
        {'name': 'queue', 'type': 'TEXT', 'nullable': False},
        {'name': 'name', 'type': 'TEXT', 'nullable': False},
        {'name': 'data', 'type': 'JSONB', 'nullable': False},
        {'name': 'status', 'type': 'TEXT', 'nullable': False, 'default': "'waiting'"},
        {'name': 'attempts_made', 'type': 'INT4', 'nullable': False, 'default': '0'},
        {'name': 'max_attempts', 'type': 'INT4', 'nullable': False},
        {'name': 'run_at', 'type': 'TIMESTAMPTZ', 'nullable': False, 'default': 'now()'},
        {'name': 'locked_by', 'type': 'TEXT'},
        {'name': 'lease_expires_at', 'type': 'TIMESTAMPTZ'},
        {'name': 'last_error', 'type': 'TEXT'},
        {'name': 'created_at', 'type': 'TIMESTAMPTZ', 'nullable': False, 'default': 'now()'},
        {'name': 'processed_at', 'type': 'TIMESTAMPTZ'},
        {'name': 'finished_at', 'type': 'TIMESTAMPTZ'}
    ],
    'primary_key': ['queue', 'id'],
    'indexes': [
        {
            'name': 'idx_order_update_jobs_due',
            'columns': ['queue', 'run_at', 'created_at'],
            'where': "status IN ('waiting', 'delayed')"
        },
        {'name': 'idx_order_update_jobs_finished', 'columns': ['queue', 'status', 'finished_at']},
        {
            'name': 'idx_order_update_jobs_lease',
            'columns': ['queue', 'lease_expires_at'],
            'where': "status = 'active'"
        }
    ]
}

locks = {
    'name': 'locks',
    'columns': [
        {'name': 'name', 'type': 'TEXT', 'primary_key': True},
        {'name': 'holder', 'type': 'TEXT', 'nullable': False},
        {'name': 'expires_at', 'type': 'TIMESTAMPTZ', 'nullable': False},
        {'name': 'acquired_at', 'type': 'TIMESTAMPTZ', 'nullable': False, 'default': 'now()'}
    ]
}

schema = {
    'version': 2,
    'tables': v1['tables'] + [order_update_jobs, locks],
    'migrations': [
        '''
        CREATE TABLE IF NOT EXISTS order_update_jobs (
            id TEXT NOT NULL,
            queue TEXT NOT NULL,
            name TEXT NOT NULL,
            data JSONB NOT NULL,
            status TEXT NOT NULL DEFAULT 'waiting',
            attempts_made INT4 NOT NULL DEFAULT 0,
            max_attempts INT4 NOT NULL,
            run_at TIMESTAMPTZ NOT NULL DEFAULT now(),
            locked_by TEXT,
            lease_expires_at TIMESTAMPTZ,
            last_error TEXT,
            created_at TIMESTAMPTZ NOT NULL DEFAULT now(),
            processed_at TIMESTAMPTZ,
            finished_at TIMESTAMPTZ,
            PRIMARY KEY (queue, id)
        )
        ''',
        '''
        CREATE INDEX IF NOT EXISTS idx_order_update_jobs_due
        ON order_update_jobs(queue, run_at, created_at)
        WHERE status IN ('waiting', 'delayed')
        ''',
        '''
        CREATE INDEX IF NOT EXISTS idx_order_update_jobs_finished
        ON order_update_jobs(queue, status, finished_at)
        ''',
        '''
        CREATE INDEX IF NOT EXISTS idx_order_update_jobs_lease
        ON order_update_jobs(queue, lease_expires_at)
        WHERE status = 'active'
        ''',
        '''
        CREATE TABLE IF NOT EXISTS locks (
            name TEXT PRIMARY KEY,
            holder TEXT NOT NULL,
            expires_at TIMESTAMPTZ NOT NULL,
            acquired_at TIMESTAMPTZ NOT NULL DEFAULT now()
        )
        '''
    ]
}
