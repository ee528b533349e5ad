"""
Bounded retry for provider calls.

Only TransientAPIError is retried; permanent failures and anything
unexpected propagate on the first attempt.
"""

import asyncio
import logging
import random
from collections.abc import Awaitable, Callable
from dataclasses import dataclass
from typing import TypeVar

from liverelay.errors import TransientAPIError

logger = logging.getLogger(__name__)

T = TypeVar("T")


@dataclass
class RetryConfig:
    """Configuration for retry attempts."""

    max_retries: int = 2
    backoff_base: float = 1.0
    backoff_max: float = 10.0
    use_exponential_backoff: bool = True
    jitter: float = 0.1  # fraction of the delay


class RetryManager:
    """Runs an operation, retrying transient failures with backoff."""

    def __init__(self, config: RetryConfig | None = None):
        self.config = config or RetryConfig()

    def _calculate_backoff(self, attempt: int) -> float:
        if self.config.use_exponential_backoff:
            delay = self.config.backoff_base * (2 ** attempt)
        else:
            delay = self.config.backoff_base
        delay = min(delay, self.config.backoff_max)
        if self.config.jitter and delay > 0:
            delay += random.uniform(0, delay * self.config.jitter)
        return delay

    async def execute_with_retry(
        self,
        operation: Callable[[], Awaitable[T]],
        operation_name: str = "operation",
    ) -> T:
        """
        Execute an operation, retrying TransientAPIError.

        Raises:
            TransientAPIError: after max_retries + 1 failed attempts
            Exception: any non-transient error, immediately
        """
        attempts = self.config.max_retries + 1
        for attempt in range(attempts):
            try:
                result = await operation()
                if attempt > 0:
                    logger.info(f"{operation_name} succeeded after {attempt} retry attempt(s)")
                return result
            except TransientAPIError as e:
                if attempt + 1 >= attempts:
                    logger.error(f"{operation_name} failed after {attempts} attempts: {e.message}")
                    raise
                delay = self._calculate_backoff(attempt)
                logger.warning(
                    f"{operation_name} failed ({e.error_type.value}, attempt {attempt + 1}/{attempts}), "
                    f"retrying in {delay:.1f}s"
                )
                await asyncio.sleep(delay)
        raise RuntimeError(f"{operation_name} failed after retries")
