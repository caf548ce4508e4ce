"""Retry and backoff utilities for resilient operations.

The scheduler uses this for the send-marker write: once an email has been
accepted, failing to record it means the next run may send it again, so
the write gets several attempts before giving up.
"""

import asyncio
import random
from collections.abc import Awaitable, Callable
from dataclasses import dataclass, field

from junto.core.logging import get_logger

logger = get_logger(__name__)


@dataclass
class RetryConfig:
    """Configuration for retry behavior."""

    max_attempts: int = 3
    backoff_base: float = 1.0
    backoff_max: float = 30.0
    jitter: bool = True
    retryable_exceptions: tuple[type[Exception], ...] = field(default_factory=lambda: (Exception,))

    def delay_for(self, attempt: int) -> float:
        """Seconds to wait after the given zero-based failed attempt."""
        delay = min(self.backoff_base * (2**attempt), self.backoff_max)
        if self.jitter:
            delay *= 0.5 + random.random()
        return delay


async def retry_with_backoff[T](
    fn: Callable[[], Awaitable[T]],
    config: RetryConfig | None = None,
    operation_name: str = "operation",
) -> T:
    """
    Execute async function with exponential backoff retry.

    Each retry waits for min(backoff_base * 2^attempt, backoff_max) seconds,
    with random jitter applied if enabled. Exceptions outside
    `retryable_exceptions` propagate immediately.

    Args:
        fn: Async function to execute (no arguments)
        config: Retry configuration, uses defaults if not provided
        operation_name: Name for logging purposes

    Returns:
        Result of fn()

    Raises:
        Exception: The last exception if all retries are exhausted

    Example:
        ```python
        config = RetryConfig(max_attempts=3, retryable_exceptions=(StorageUnavailable,))
        await retry_with_backoff(
            lambda: markers.mark_sent(user_id, today),
            config=config,
            operation_name=f"mark_sent:{user_id}",
        )
        ```
    """
    config = config or RetryConfig()
    attempts = max(config.max_attempts, 1)
    log = logger.bind(operation=operation_name, max_attempts=attempts)

    for attempt in range(attempts):
        try:
            return await fn()
        except config.retryable_exceptions as e:
            if attempt + 1 == attempts:
                log.bind(error=str(e)).error("retry_exhausted")
                raise

            delay = config.delay_for(attempt)
            log.bind(
                attempt=attempt + 1,
                delay_seconds=round(delay, 2),
                error=str(e),
            ).warning("retry_attempt")
            await asyncio.sleep(delay)

    raise RuntimeError("Unexpected state in retry_with_backoff")
