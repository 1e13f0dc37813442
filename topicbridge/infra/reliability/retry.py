# =============================================================================
# File: topicbridge/infra/reliability/retry.py
# Description: Backoff calculation and per-call timeouts
# =============================================================================

import asyncio
import random
from dataclasses import dataclass
from typing import TypeVar, Optional, Awaitable

from topicbridge.common.exceptions.exceptions import TransientError

T = TypeVar('T')


@dataclass(frozen=True)
class RetryPolicy:
    """Bounded exponential backoff settings"""
    max_attempts: int = 3
    base_delay: float = 1.0
    max_delay: float = 30.0
    backoff_factor: float = 2.0
    jitter: bool = True

    @classmethod
    def from_bridge_config(cls, config) -> 'RetryPolicy':
        return cls(
            max_attempts=config.max_attempts,
            base_delay=config.backoff_base_seconds,
            max_delay=config.backoff_max_seconds,
            jitter=config.backoff_jitter,
        )


def compute_backoff(attempt: int, policy: RetryPolicy, retry_after: Optional[float] = None) -> float:
    """
    Delay in seconds before retry number `attempt` (1-based).

    delay = min(base * factor ** (attempt - 1), max) plus 0-25% jitter.
    A server-provided retry_after wins when it is longer, still capped at max.
    """
    delay = min(policy.base_delay * (policy.backoff_factor ** max(attempt - 1, 0)), policy.max_delay)
    if policy.jitter:
        delay += random.uniform(0, delay * 0.25)
    if retry_after is not None and retry_after > delay:
        delay = min(retry_after, policy.max_delay)
    return delay


async def call_with_timeout(awaitable: Awaitable[T], timeout: Optional[float], context: str = "operation") -> T:
    """Await with a deadline; expiry is reported as a TransientError."""
    if timeout is None:
        return await awaitable
    try:
        async with asyncio.timeout(timeout):
            return await awaitable
    except TimeoutError as e:
        raise TransientError(f"{context} timed out after {timeout:.0f}s") from e

