"""Retry combinator shared by every retried network call."""

from __future__ import annotations

import logging
import random
import time
from dataclasses import dataclass
from typing import Callable, Literal, Optional, TypeVar

logger = logging.getLogger(__name__)

T = TypeVar("T")

Backoff = Literal["fixed", "exponential"]


@dataclass(frozen=True)
class RetryPolicy:
    """How often and how patiently an operation is retried.

    Attributes:
        max_attempts: Total number of attempts, including the first one
        delay: Base delay between attempts in seconds
        backoff: ``"fixed"`` waits ``delay`` every time, ``"exponential"``
            waits ``delay * 2**n`` with +/- 25% jitter
        max_delay: Upper bound for a single wait
    """

    max_attempts: int = 3
    delay: float = 1.0
    backoff: Backoff = "fixed"
    max_delay: float = 30.0

    def delay_for(self, attempt: int) -> float:
        """Delay to wait after the given failed attempt (1-based)."""
        if self.backoff == "fixed":
            return min(self.delay, self.max_delay)
        base_delay = self.delay * (2 ** (attempt - 1))
        jitter = base_delay * 0.25 * (2 * random.random() - 1)
        return min(base_delay + jitter, self.max_delay)


# Chunk uploads: three attempts, one second apart.
CHUNK_RETRY_POLICY = RetryPolicy(max_attempts=3, delay=1.0, backoff="fixed")


def retry_call(
    operation: Callable[[], T],
    policy: RetryPolicy,
    retry_on: tuple[type[BaseException], ...] = (Exception,),
    should_retry: Optional[Callable[[BaseException], bool]] = None,
    on_retry: Optional[Callable[[int, BaseException], None]] = None,
    delay_override: Optional[Callable[[BaseException], Optional[float]]] = None,
) -> T:
    """Call ``operation`` until it succeeds or the policy gives up.

    Args:
        operation: Zero-argument callable performing one attempt
        policy: Attempt budget and backoff
        retry_on: Exception types that count as retryable failures
        should_retry: Optional extra predicate; returning False re-raises at once
        on_retry: Called with (attempt, error) before sleeping
        delay_override: Optional hook returning a server-mandated delay
            (e.g. ``Retry-After``) for an error, or None to use the policy

    Returns:
        Whatever ``operation`` returns on its first successful attempt

    Raises:
        The last error once attempts are exhausted, or any non-retryable error
    """
    attempt = 0
    while True:
        attempt += 1
        try:
            return operation()
        except retry_on as e:
            if attempt >= policy.max_attempts:
                raise
            if should_retry is not None and not should_retry(e):
                raise
            delay = None
            if delay_override is not None:
                delay = delay_override(e)
            if delay is None:
                delay = policy.delay_for(attempt)
            if on_retry is not None:
                on_retry(attempt, e)
            logger.debug(
                "Attempt %d/%d failed (%s), retrying in %.2fs",
                attempt,
                policy.max_attempts,
                e,
                delay,
            )
            time.sleep(delay)
