"""Order updates module for keeping cached best orders fresh.

This module handles:
- Deduplicated, durable queueing of order update triggers
- Recomputing token set and token best-order pointers
- A bounded worker pool with retry and exponential backoff
- Periodic, lock-protected cleanup of the job history
"""

from .models import (
    HASH_ZERO,
    Job,
    JobStatus,
    OrderInfo,
    OrderUpdateTrigger,
    RecomputeResult,
    Side,
    TokenPointer,
)
from .retry import RetryPolicy, InvalidRetryPolicyError
from .queue import OrderUpdatesQueue, QUEUE_NAME
from .recompute import BestOrderRecomputer
from .worker import OrderUpdatesWorker
from .cleaner import QueueCleaner
from .service import OrderUpdatesService

__all__ = [
    'HASH_ZERO',
    'Job',
    'JobStatus',
    'OrderInfo',
    'OrderUpdateTrigger',
    'RecomputeResult',
    'Side',
    'TokenPointer',
    'RetryPolicy',
    'InvalidRetryPolicyError',
    'OrderUpdatesQueue',
    'QUEUE_NAME',
    'BestOrderRecomputer',
    'OrderUpdatesWorker',
    'QueueCleaner',
    'OrderUpdatesService',
]
