"""
Retry and timeout helpers for provider and pipeline calls.

Backoff: base delay multiplied by `backoff_multiplier` per attempt, plus up
to `max_jitter_seconds` of random jitter, capped at `max_delay_seconds`.
Non-retryable errors short-circuit immediately. A RateLimitError with a
retry_after waits at least that long.
"""

import asyncio
import random
from typing import Any, Awaitable, Callable, Optional, TypeVar

import structlog
from pydantic import BaseModel, Field

from simengine.config import get_settings
from simengine.engine.errors import ProcessingTimeoutError, RateLimitError, is_retryable_error

logger = structlog.get_logger()

T = TypeVar("T")


class RetryPolicy(BaseModel):
    """Exponential backoff settings."""

    max_retries: int = Field(default=3, ge=0, description="Retries after the first attempt")
    base_delay_seconds: float = Field(default=1.0, ge=0)
    backoff_multiplier: float = Field(default=2.0, ge=1.0)
    max_delay_seconds: float = Field(default=10.0, ge=0)
    max_jitter_seconds: float = Field(default=1.0, ge=0)

    @classmethod
    def from_settings(cls) -> "RetryPolicy":
        settings = get_settings()
        return cls(
            max_retries=settings.retry_max_attempts,
            base_delay_seconds=settings.retry_base_delay_seconds,
            backoff_multiplier=settings.retry_backoff_multiplier,
            max_delay_seconds=settings.retry_max_delay_seconds,
            max_jitter_seconds=settings.retry_max_jitter_seconds,
        )

    def delay_for(self, attempt: int, error: Optional[BaseException] = None) -> float:
        """Seconds to wait before retry number `attempt` (0-based)."""
        delay = self.base_delay_seconds * (self.backoff_multiplier ** attempt)
        delay += random.uniform(0, self.max_jitter_seconds) if self.max_jitter_seconds else 0.0
        delay = min(delay, self.max_delay_seconds)
        if isinstance(error, RateLimitError) and error.retry_after:
            delay = max(delay, error.retry_after)
        return delay


async def with_retry(
    operation: Callable[[], Awaitable[T]],
    policy: Optional[RetryPolicy] = None,
    operation_name: str = "operation",
    sleep: Callable[[float], Awaitable[Any]] = asyncio.sleep,
) -> T:
    """
    Run an async operation, retrying retryable failures with backoff.

    Args:
        operation: Zero-argument coroutine factory
        policy: Backoff policy (settings defaults when omitted)
        operation_name: Name used in log events
        sleep: Awaitable sleep, injectable for tests

    Returns:
        The operation's result

    Raises:
        The last error once retries are exhausted, or the first
        non-retryable error
    """
    policy = policy or RetryPolicy.from_settings()

    for attempt in range(policy.max_retries + 1):
        try:
            return await operation()
        except Exception as e:
            if not is_retryable_error(e) or attempt >= policy.max_retries:
                logger.warning(
                    "retry_giving_up",
                    operation=operation_name,
                    attempt=attempt + 1,
                    retryable=is_retryable_error(e),
                    error=str(e),
                )
                raise
            delay = policy.delay_for(attempt, e)
            logger.info(
                "retry_scheduled",
                operation=operation_name,
                attempt=attempt + 1,
                delay_seconds=round(delay, 3),
                error=str(e),
            )
            await sleep(delay)

    raise RuntimeError("unreachable")  # pragma: no cover


async def with_timeout(awaitable: Awaitable[T], timeout_seconds: float) -> T:
    """
    Await with a time budget.

    Raises:
        ProcessingTimeoutError: If the budget is exceeded
    """
    try:
        return await asyncio.wait_for(awaitable, timeout=timeout_seconds)
    except asyncio.TimeoutError as e:
        raise ProcessingTimeoutError(
            f"Operation timed out after {timeout_seconds}s", timeout_seconds
        ) from e
