"""
Retry with Exponential Backoff

One combinator for every external call: an error classifier decides whether
a failure is rate limiting, transient or fatal, and the policy picks the
backoff schedule accordingly.
"""

import asyncio
import random
from collections.abc import Awaitable, Callable
from dataclasses import dataclass
from enum import Enum
from typing import Generic, TypeVar

import httpx
import structlog

from diffwarden.errors import (
    EmbeddingError,
    RateLimitError,
    SourceControlError,
    TransientModelError,
    VectorStoreError,
)

logger = structlog.get_logger(__name__)

T = TypeVar("T")


class ErrorClass(str, Enum):
    """How a failure should be treated by the retry policy."""

    RATE_LIMITED = "rate_limited"  # Back off on the long schedule
    TRANSIENT = "transient"  # Back off on the short schedule
    FATAL = "fatal"  # Do not retry


def classify_error(error: Exception) -> ErrorClass:
    """Default classifier for model, store and hosting failures."""
    if isinstance(error, RateLimitError):
        return ErrorClass.RATE_LIMITED
    if isinstance(error, TransientModelError):
        return ErrorClass.TRANSIENT
    if isinstance(error, SourceControlError):
        if error.status_code == 429:
            return ErrorClass.RATE_LIMITED
        if error.status_code is None or error.status_code >= 500:
            return ErrorClass.TRANSIENT
        return ErrorClass.FATAL
    if isinstance(error, (VectorStoreError, EmbeddingError)):
        return ErrorClass.TRANSIENT
    if isinstance(error, (httpx.TimeoutException, httpx.TransportError)):
        return ErrorClass.TRANSIENT
    return ErrorClass.FATAL


@dataclass
class RetryConfig:
    """Retry configuration."""

    max_attempts: int = 3
    base_delay: float = 1.0  # 1s, 2s, 4s, ...
    rate_limit_base_delay: float = 10.0  # 10s, 20s, 40s, ...
    max_delay: float = 60.0
    exponential_base: float = 2.0
    jitter: bool = True


class RetryPolicy(Generic[T]):
    """
    Retry policy with exponential backoff and jitter.

    Usage:
        policy = RetryPolicy(RetryConfig(max_attempts=3))

        response = await policy.execute(lambda: client.generate(prompt))
    """

    def __init__(
        self,
        config: RetryConfig | None = None,
        classify: Callable[[Exception], ErrorClass] = classify_error,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
    ):
        self.config = config or RetryConfig()
        self.classify = classify
        self._sleep = sleep

    async def execute(
        self,
        func: Callable[[], Awaitable[T]],
        on_retry: Callable[[Exception, int, float], None] | None = None,
    ) -> T:
        """
        Execute function with retry.

        Args:
            func: Async function to execute
            on_retry: Callback on retry with (error, attempt, delay)

        Returns:
            Result of func()

        Raises:
            The last exception once attempts are exhausted, or the first
            fatal one.
        """
        attempt = 0
        while True:
            try:
                return await func()
            except Exception as e:
                error_class = self.classify(e)
                attempt += 1

                if error_class == ErrorClass.FATAL or attempt >= self.config.max_attempts:
                    raise

                delay = self.delay_for(error_class, attempt - 1)
                if on_retry:
                    on_retry(e, attempt, delay)

                logger.warning(
                    "retry_attempt",
                    attempt=attempt,
                    max_attempts=self.config.max_attempts,
                    error_class=error_class.value,
                    delay=round(delay, 2),
                    error=str(e),
                )
                await self._sleep(delay)

    def delay_for(self, error_class: ErrorClass, attempt: int) -> float:
        """Delay before retry number ``attempt`` (0-based)."""
        base = (
            self.config.rate_limit_base_delay
            if error_class == ErrorClass.RATE_LIMITED
            else self.config.base_delay
        )
        delay = min(base * (self.config.exponential_base**attempt), self.config.max_delay)

        if self.config.jitter:
            delay = delay * (0.5 + random.random() * 0.5)

        return delay
