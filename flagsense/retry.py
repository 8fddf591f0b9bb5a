"""
Retry utility with a flat delay between attempts.
"""

import asyncio
import random
from dataclasses import dataclass
from typing import Callable, TypeVar, Optional, Awaitable, Generic

from flagsense.errors import classify_error

T = TypeVar("T")


@dataclass
class RetryConfig:
    """Configuration for retry behavior."""

    max_retries: int = 3
    """Maximum number of additional attempts after the first one."""

    retry_delay_ms: int = 2000
    """Delay between attempts in milliseconds."""

    jitter_factor: float = 0.0
    """Jitter factor 0-1 to randomize delays."""


@dataclass
class RetryResult(Generic[T]):
    """Result of a retry operation."""

    success: bool
    data: Optional[T] = None
    error: Optional[Exception] = None
    attempts: int = 1


FETCH_RETRY_CONFIG = RetryConfig(max_retries=3, retry_delay_ms=2000)
UPLOAD_RETRY_CONFIG = RetryConfig(max_retries=4, retry_delay_ms=5000)


def calculate_delay(config: RetryConfig) -> float:
    """
    Calculate the delay before the next attempt.

    Args:
        config: Retry configuration

    Returns:
        Delay in seconds
    """
    jitter = config.retry_delay_ms * config.jitter_factor * (random.random() * 2 - 1)
    delay_ms = max(0, config.retry_delay_ms + jitter)
    return delay_ms / 1000.0


def is_retryable_error(error: Exception) -> bool:
    """
    Check if an error is retryable.

    Network failures and statuses in {205, 408, 422, 429} or 5xx are retried.

    Args:
        error: The exception to check

    Returns:
        True if the error should be retried
    """
    return classify_error(error).retryable


async def fetch_with_retry(
    fn: Callable[[], Awaitable[T]],
    config: Optional[RetryConfig] = None,
) -> RetryResult[T]:
    """
    Execute an async function with retry logic and a flat delay.

    Args:
        fn: Async function to execute
        config: Retry configuration

    Returns:
        RetryResult with success status and data/error
    """
    cfg = config or FETCH_RETRY_CONFIG
    last_error: Optional[Exception] = None

    for attempt in range(cfg.max_retries + 1):
        try:
            data = await fn()
            return RetryResult(success=True, data=data, attempts=attempt + 1)
        except Exception as error:
            last_error = error

            # Don't retry non-retryable errors
            if not is_retryable_error(error):
                return RetryResult(success=False, error=error, attempts=attempt + 1)

            # Don't sleep after the last attempt
            if attempt < cfg.max_retries:
                await asyncio.sleep(calculate_delay(cfg))

    return RetryResult(
        success=False,
        error=last_error or Exception("Retry exhausted"),
        attempts=cfg.max_retries + 1,
    )

