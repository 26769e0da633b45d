"""
Retry with exponential backoff and jitter for remote DAV calls.

Only transient failures are retried: connection errors, timeouts, HTTP 5xx
and 429. A 412 (ConflictError) or any other client-side failure propagates
on the first attempt.
"""

import asyncio
import logging
import random
from dataclasses import dataclass
from typing import Awaitable, Callable, Optional, TypeVar

import requests

from .errors import ConflictError, RemoteRequestError


logger = logging.getLogger(__name__)

T = TypeVar('T')


@dataclass(frozen=True)
class RetryPolicy:
    """
    Retry configuration.

    max_attempts counts the first try. The delay before retry n is
    min(base_delay * 2**(n-1), max_delay) scaled by a random factor in
    [0.5, 1.0].
    """
    max_attempts: int = 3
    base_delay: float = 1.0
    max_delay: float = 10.0

    def delay_for(self, attempt: int) -> float:
        """
        Seconds to wait after the given failed attempt (1-based).
        """
        delay = min(self.base_delay * (2 ** (attempt - 1)), self.max_delay)
        return delay * random.uniform(0.5, 1.0)


DEFAULT_POLICY = RetryPolicy()


def is_transient(error: BaseException) -> bool:
    """Whether a failed remote call is worth repeating."""
    if isinstance(error, ConflictError):
        return False
    if isinstance(error, RemoteRequestError):
        return error.transient
    if isinstance(error, (requests.exceptions.ConnectionError, requests.exceptions.Timeout)):
        return True
    return isinstance(error, (ConnectionError, TimeoutError, asyncio.TimeoutError))


async def with_retry(
    operation: Callable[[], Awaitable[T]],
    policy: Optional[RetryPolicy] = None,
    description: str = "",
) -> T:
    """
    Await operation(), retrying transient failures.

    Args:
        operation: Zero-argument coroutine function
        policy: Retry policy, DEFAULT_POLICY if None
        description: Name of the operation for log messages

    Returns:
        Whatever operation() returns

    Raises:
        The first non-transient error, or the last transient error once
        all attempts are used.
    """
    policy = policy or DEFAULT_POLICY
    attempt = 1
    while True:
        try:
            return await operation()
        except Exception as e:
            if not is_transient(e) or attempt >= policy.max_attempts:
                raise
            delay = policy.delay_for(attempt)
            logger.warning(
                "Transient failure, retrying",
                extra={
                    "operation": description,
                    "attempt": attempt,
                    "max_attempts": policy.max_attempts,
                    "delay": round(delay, 3),
                    "error": str(e),
                },
            )
            await asyncio.sleep(delay)
            attempt += 1
