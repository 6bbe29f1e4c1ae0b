"""
Retry of permission store reads.

Transport failures (connection resets, timeouts, driver errors) are retried
with exponential backoff. Domain errors raised by the store are answers,
not failures, and pass through on the first attempt.
"""

import asyncio
import functools
import random
from typing import Any, Optional, Callable, Awaitable

from shared.errors import PermissionEngineException
from shared.logging import get_logger

logger = get_logger("permissions.retry")


class RetryConfig:
    """Backoff settings for store reads."""

    def __init__(self,
                 max_attempts: int = 3,
                 base_delay: float = 0.5,
                 max_delay: float = 10.0,
                 exponential_base: float = 2.0,
                 jitter: bool = True):
        self.max_attempts = max(1, max_attempts)
        self.base_delay = base_delay
        self.max_delay = max_delay
        self.exponential_base = exponential_base
        self.jitter = jitter

    @classmethod
    def from_service_config(cls, config) -> "RetryConfig":
        """Build from the ``snapshot_retry_*`` service settings."""
        return cls(
            max_attempts=config.snapshot_retry_attempts,
            base_delay=config.snapshot_retry_base_delay,
            max_delay=config.snapshot_retry_max_delay,
        )

    def delay_for(self, attempt: int) -> float:
        """Seconds to wait after the given failed attempt (1-based)."""
        delay = min(self.base_delay * (self.exponential_base ** (attempt - 1)), self.max_delay)
        if self.jitter:
            delay += random.uniform(-0.1 * delay, 0.1 * delay)
        return max(0.0, delay)


class RetryError(Exception):
    """A store operation kept failing after every attempt."""

    def __init__(self, operation: str, attempts: int, last_exception: Exception):
        super().__init__(f"{operation} failed after {attempts} attempts: {last_exception}")
        self.operation = operation
        self.attempts = attempts
        self.last_exception = last_exception


def retry_store_call(operation: str, config: Optional[RetryConfig] = None) -> Callable:
    """Retry an async store call on non-domain failures."""

    if config is None:
        config = RetryConfig()

    def decorator(func: Callable[..., Awaitable[Any]]) -> Callable[..., Awaitable[Any]]:
        @functools.wraps(func)
        async def wrapper(*args, **kwargs) -> Any:
            for attempt in range(1, config.max_attempts + 1):
                try:
                    result = await func(*args, **kwargs)
                except PermissionEngineException:
                    raise
                except Exception as e:
                    if attempt == config.max_attempts:
                        logger.error("Store call failed on every attempt", operation=operation,
                                     attempts=attempt, error=str(e))
                        raise RetryError(operation, attempt, e) from e

                    delay = config.delay_for(attempt)
                    logger.warning("Store call failed, retrying", operation=operation,
                                   attempt=attempt, delay=round(delay, 3), error=str(e))
                    await asyncio.sleep(delay)
                    continue

                if attempt > 1:
                    logger.info("Store call recovered", operation=operation, attempt=attempt)
                return result

        return wrapper

    return decorator
