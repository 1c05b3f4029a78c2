"""
Settlement Engine - Retry Policy.

============================================================
PURPOSE
============================================================
Bounded exponential-backoff retry for exchange calls.

SAFETY RULES:
- Only retryable errors are retried (rate limit, 5xx, transport)
- Definitive client errors and compliance denials never retry
- Retry count is bounded

The policy is pure: the sleep function is injected so the
behavior can be tested without waiting.

============================================================
"""

import asyncio
import logging
from dataclasses import dataclass
from typing import Awaitable, Callable, List, Optional, TypeVar

import aiohttp

from .config import RetryConfig
from .types import ExchangeError


logger = logging.getLogger(__name__)

T = TypeVar("T")


def is_retryable_exception(exc: BaseException) -> bool:
    """Default classification of which failures are worth repeating."""
    if isinstance(exc, ExchangeError):
        return exc.is_retryable
    return isinstance(exc, (asyncio.TimeoutError, aiohttp.ClientError))


@dataclass
class RetryPolicy:
    """
    Retry schedule plus error classification.
    """

    max_retries: int = 4
    """Retries after the first call."""

    initial_delay_seconds: float = 1.5
    backoff_multiplier: float = 2.0
    max_delay_seconds: float = 30.0

    classify: Callable[[BaseException], bool] = is_retryable_exception
    """Returns True when the exception may be retried."""

    @classmethod
    def from_config(cls, config: RetryConfig) -> "RetryPolicy":
        return cls(
            max_retries=config.max_retries,
            initial_delay_seconds=config.initial_delay_seconds,
            backoff_multiplier=config.backoff_multiplier,
            max_delay_seconds=config.max_delay_seconds,
        )

    def delays(self) -> List[float]:
        """Delays before each retry, in order."""
        result = []
        delay = self.initial_delay_seconds
        for _ in range(self.max_retries):
            result.append(delay)
            delay = min(delay * self.backoff_multiplier, self.max_delay_seconds)
        return result


async def retry(
    operation: Callable[[], Awaitable[T]],
    policy: RetryPolicy,
    sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
    description: str = "operation",
) -> T:
    """
    Run `operation` until it succeeds or the retry budget is spent.

    Non-retryable errors propagate unchanged on first occurrence.
    A retryable error that outlives the budget is raised as an
    ExchangeError with code RETRIES_EXHAUSTED.

    Args:
        operation: Zero-argument coroutine factory
        policy: Retry schedule and classification
        sleep: Awaitable sleep (injected in tests)
        description: Name used in log messages

    Returns:
        The operation's result
    """
    delays = policy.delays()
    last_error: Optional[BaseException] = None

    for attempt in range(len(delays) + 1):
        try:
            return await operation()
        except Exception as e:
            if not policy.classify(e):
                raise
            last_error = e
            if attempt >= len(delays):
                break
            delay = delays[attempt]
            logger.warning(
                f"{description} failed "
                f"(attempt {attempt + 1}/{len(delays) + 1}): {e}. "
                f"Retrying in {delay:.1f}s..."
            )
            await sleep(delay)

    logger.error(f"{description} failed after {len(delays) + 1} attempts: {last_error}")
    http_status = getattr(last_error, "http_status", None)
    raise ExchangeError(
        f"{description} failed after {len(delays) + 1} attempts: {last_error}",
        code="RETRIES_EXHAUSTED",
        category=getattr(last_error, "category", None),
        http_status=http_status,
        is_retryable=False,
    ) from last_error
