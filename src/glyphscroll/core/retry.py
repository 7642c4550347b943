"""Retry with exponential backoff for ledger calls."""

import asyncio
import logging
from typing import Awaitable, Callable, Optional, Tuple, Type, TypeVar

from glyphscroll.core.errors import NetworkError, RateLimitError

logger = logging.getLogger(__name__)

T = TypeVar("T")

RETRYABLE_ERRORS: Tuple[Type[Exception], ...] = (NetworkError, RateLimitError)


class RetryConfig:
    """Configuration for retry logic."""

    def __init__(
        self,
        max_attempts: int = 3,
        initial_backoff_s: float = 1.0,
        backoff_factor: float = 2.0,
        max_backoff_s: float = 10.0,
        rate_limit_factor: float = 3.0,
    ):
        """
        Initialize retry configuration.

        Args:
            max_attempts: Maximum number of attempts (including the first)
            initial_backoff_s: Initial backoff delay in seconds
            backoff_factor: Exponential backoff multiplier
            max_backoff_s: Maximum backoff delay
            rate_limit_factor: Extra multiplier applied after a RateLimitError
        """
        self.max_attempts = max(1, max_attempts)
        self.initial_backoff_s = max(0.0, initial_backoff_s)
        self.backoff_factor = max(1.0, backoff_factor)
        self.max_backoff_s = max(self.initial_backoff_s, max_backoff_s)
        self.rate_limit_factor = max(1.0, rate_limit_factor)

    def delay_for(self, attempt: int, error: Exception) -> float:
        """Backoff before attempt ``attempt + 1`` (attempts count from 1)."""
        delay = self.initial_backoff_s * (self.backoff_factor ** (attempt - 1))
        if isinstance(error, RateLimitError):
            delay *= self.rate_limit_factor
            return min(delay, self.max_backoff_s * self.rate_limit_factor)
        return min(delay, self.max_backoff_s)


async def retry_async(
    func: Callable[[], Awaitable[T]],
    config: Optional[RetryConfig] = None,
    retry_on: Tuple[Type[Exception], ...] = RETRYABLE_ERRORS,
    on_retry: Optional[Callable[[int, Exception], None]] = None,
    description: str = "operation",
) -> T:
    """
    Await ``func()`` with exponential backoff retry.

    Only exceptions in ``retry_on`` are retried; anything else propagates
    immediately.

    Args:
        func: Zero-argument coroutine factory
        config: RetryConfig instance
        on_retry: Callback on retry (attempt_num, exception)
        description: Label used in log messages

    Returns:
        Result of the first successful call

    Raises:
        The last exception encountered if all attempts fail
    """
    if config is None:
        config = RetryConfig()

    for attempt in range(1, config.max_attempts + 1):
        try:
            return await func()
        except retry_on as e:
            if attempt >= config.max_attempts:
                logger.error(f"{description} failed after {attempt} attempts: {e}")
                raise
            delay = config.delay_for(attempt, e)
            logger.warning(
                f"{description} attempt {attempt}/{config.max_attempts} failed: {e}; "
                f"retrying in {delay:.2f}s"
            )
            if on_retry:
                on_retry(attempt, e)
            await asyncio.sleep(delay)

    # Unreachable: the loop either returns or raises
    raise RuntimeError(f"{description}: retry loop exited without result")
