"""Retry policy for failed order-update jobs.

Failed jobs are not retried in place: the queue reschedules them with a delay
taken from the same wait generators the ``backoff`` package uses for its
decorators, so the n-th retry of an exponential policy waits
``delay * 2 ** (n - 1)`` seconds.
"""
from itertools import islice
from typing import Callable, Dict, Iterator, Optional

import backoff

BACKOFF_TYPES: Dict[str, Callable[[float], Iterator[float]]] = {
    'exponential': lambda delay: backoff.expo(base=2, factor=delay),
    'fixed': lambda delay: backoff.constant(interval=delay),
}

class InvalidRetryPolicyError(ValueError):
    """Raised when a retry policy is misconfigured."""
    pass

class RetryPolicy:
    """Attempt ceiling plus backoff schedule applied to every job."""

    def __init__(self, attempts: int = 5, backoff_type: str = 'exponential', delay: float = 10) -> None:
        if attempts < 1:
            raise InvalidRetryPolicyError("attempts must be at least 1")
        if backoff_type not in BACKOFF_TYPES:
            raise InvalidRetryPolicyError(
                f"Unknown backoff type {backoff_type!r}, expected one of {sorted(BACKOFF_TYPES)}"
            )
        if delay < 0:
            raise InvalidRetryPolicyError("delay must not be negative")
        self.attempts = attempts
        self.backoff_type = backoff_type
        self.delay = delay

    @classmethod
    def from_settings(cls, settings: Dict) -> 'RetryPolicy':
        return cls(
            attempts=settings['job_attempts'],
            backoff_type=settings['job_backoff_type'],
            delay=settings['job_backoff_delay'],
        )

    def should_retry(self, attempts_made: int, max_attempts: Optional[int] = None) -> bool:
        """Whether a job that failed its ``attempts_made``-th attempt runs again."""
        return attempts_made < (max_attempts if max_attempts is not None else self.attempts)

    def delay_for(self, attempts_made: int) -> float:
        """Seconds to wait before the attempt following ``attempts_made`` failures."""
        if attempts_made < 1:
            return 0.0
        wait = BACKOFF_TYPES[self.backoff_type](self.delay)
        # The first value only primes the generator
        next(wait)
        return float(next(islice(wait, attempts_made - 1, None)))

    def __repr__(self) -> str:
        return (
            f"RetryPolicy(attempts={self.attempts}, backoff_type={self.backoff_type!r}, "
            f"delay={self.delay})"
        )
