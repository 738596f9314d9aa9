import asyncio
import logging
from enum import Enum
from typing import Any, Awaitable, Callable, Optional

from pydantic import BaseModel, Field

from .exceptions import NetworkError

logger = logging.getLogger(__name__)


class BackoffStrategy(str, Enum):
    EXPONENTIAL = "exponential"
    LINEAR = "linear"
    CONSTANT = "constant"

class RetryConfig(BaseModel):
    max_retries: int = Field(default=3, description="Retry attempts after the first failure")
    backoff_strategy: BackoffStrategy = Field(default=BackoffStrategy.EXPONENTIAL)
    base_delay: float = Field(default=1.0, description="Initial delay in seconds")
    multiplier: float = Field(default=2.0, description="Growth factor for exponential backoff")
    max_delay: Optional[float] = Field(default=None, description="Upper bound on a single delay in seconds")


class RetryPolicy:
    """
    Decides whether and how long to wait before re-sending a request that got
    no response. Failures that carry an HTTP response are never retried here.
    """
    def __init__(self, config: RetryConfig, sleep: Callable[[float], Awaitable[Any]] = asyncio.sleep):
        self.config = config
        self.sleep = sleep

    def should_retry(self, attempt: int) -> bool:
        return attempt < self.config.max_retries

    def delay_for(self, attempt: int) -> float:
        """Calculate delay based on backoff strategy (attempt is zero-indexed)"""
        if self.config.backoff_strategy == BackoffStrategy.EXPONENTIAL:
            delay = self.config.base_delay * (self.config.multiplier ** attempt)
        elif self.config.backoff_strategy == BackoffStrategy.LINEAR:
            delay = self.config.base_delay * (attempt + 1)
        else:  # CONSTANT
            delay = self.config.base_delay

        if self.config.max_delay is not None:
            return min(delay, self.config.max_delay)
        return delay

    async def execute(
        self,
        operation: Callable[[], Awaitable[Any]],
        operation_name: str,
        on_retry: Optional[Callable[[int, float], Any]] = None,
        initial_error: Optional[NetworkError] = None,
    ) -> Any:
        """
        Run operation, which has already failed once at the network level,
        until it succeeds or the retries are exhausted.
        """
        last_exception = initial_error
        attempt = 0

        while self.should_retry(attempt):
            delay = self.delay_for(attempt)
            logger.info(f"Retrying {operation_name} in {delay:.2f}s (attempt {attempt + 1}/{self.config.max_retries})")
            if on_retry is not None:
                on_retry(attempt, delay)
            await self.sleep(delay)

            try:
                result = await operation()
            except NetworkError as e:
                last_exception = e
                attempt += 1
                continue

            logger.info(f"{operation_name} succeeded on retry {attempt + 1}")
            return result

        raise NetworkError(cause=last_exception, attempts=attempt + 1) from last_exception
