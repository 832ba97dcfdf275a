"""
Retry with exponential backoff for upstream calls.

Each invocation owns its backoff state; there is no circuit breaker
shared across calls. The delay starts at initial_delay_ms and after every
retry becomes delay * 2 + jitter, with jitter drawn from 0..1000 ms.
Only errors classified as rate-limit/overload are retried, and at most
max_retries times, so an operation runs at most max_retries + 1 times.
"""

import asyncio
import logging
import random
from dataclasses import dataclass
from typing import Any, Awaitable, Callable, Generic, Optional, TypeVar

from ..constants import DEFAULT_INITIAL_DELAY_MS, DEFAULT_MAX_RETRIES, MAX_JITTER_MS
from .errors import AUTH_HINT, ClassifiedError, classify_error

T = TypeVar("T")


def random_jitter_ms() -> int:
    return random.randint(0, MAX_JITTER_MS)


@dataclass
class InvokeResult(Generic[T]):
    """Result of try_invoke: either a value or a classified error."""

    value: Optional[T] = None
    error: Optional[ClassifiedError] = None
    exception: Optional[BaseException] = None
    attempts: int = 0

    @property
    def ok(self) -> bool:
        return self.error is None


class BackoffInvoker:
    """Runs an async operation, retrying rate-limit/overload failures."""

    def __init__(
        self,
        max_retries: int = DEFAULT_MAX_RETRIES,
        initial_delay_ms: int = DEFAULT_INITIAL_DELAY_MS,
        sleep: Callable[[float], Awaitable[Any]] = asyncio.sleep,
        jitter: Callable[[], int] = random_jitter_ms,
        logger=None,
    ):
        """
        Args:
            max_retries: Retries allowed after the first attempt
            initial_delay_ms: Delay before the first retry
            sleep: Async sleep taking seconds (injectable for tests)
            jitter: Returns the jitter in ms added after each retry
            logger: Optional logger instance
        """
        self.max_retries = max_retries
        self.initial_delay_ms = initial_delay_ms
        self._sleep = sleep
        self._jitter = jitter
        self.logger = logger or logging.getLogger(__name__)

    async def invoke(
        self,
        operation: Callable[[], Awaitable[T]],
        max_retries: Optional[int] = None,
        initial_delay_ms: Optional[int] = None,
        description: str = "request",
    ) -> T:
        """
        Await operation(), retrying retryable failures.

        Non-retryable errors, and retryable ones once the budget is spent,
        are re-raised unchanged.
        """
        retries_allowed = self.max_retries if max_retries is None else max_retries
        delay = self.initial_delay_ms if initial_delay_ms is None else initial_delay_ms
        retry_count = 0

        while True:
            try:
                return await operation()
            except Exception as e:
                classified = classify_error(e)
                if classified.is_authentication:
                    self.logger.error(AUTH_HINT)
                    raise
                if not classified.retryable or retry_count >= retries_allowed:
                    raise

                retry_count += 1
                self.logger.warning(
                    f"{description} failed with retryable error ({classified.error_type or classified.http_status}), "
                    f"retry {retry_count}/{retries_allowed} in {delay}ms"
                )
                await self._sleep(delay / 1000)
                delay = delay * 2 + self._jitter()

    async def try_invoke(
        self,
        operation: Callable[[], Awaitable[T]],
        max_retries: Optional[int] = None,
        initial_delay_ms: Optional[int] = None,
        description: str = "request",
    ) -> InvokeResult[T]:
        """Like invoke(), but returns the final error as a value instead of raising."""
        attempts = 0

        async def counted() -> T:
            nonlocal attempts
            attempts += 1
            return await operation()

        try:
            value = await self.invoke(counted, max_retries, initial_delay_ms, description)
        except Exception as e:
            return InvokeResult(error=classify_error(e), exception=e, attempts=attempts)
        return InvokeResult(value=value, attempts=attempts)
