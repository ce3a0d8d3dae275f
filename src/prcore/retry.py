from __future__ import annotations

import asyncio
import logging
import random
from typing import Awaitable, Callable, Tuple, Type, TypeVar

from .config import RetryConfig
from .errors import (
    EmbeddingProviderError,
    ModelRateLimitError,
    ModelTimeoutError,
)

logger = logging.getLogger(__name__)

T = TypeVar("T")

RETRYABLE: Tuple[Type[BaseException], ...] = (
    ModelTimeoutError,
    ModelRateLimitError,
    EmbeddingProviderError,
)


def backoff_delay(attempt: int, policy: RetryConfig) -> float:
    delay = policy.base_delay * (2**attempt) + random.uniform(0, policy.jitter)
    return min(delay, policy.max_delay)


async def call_with_retry(
    fn: Callable[[], Awaitable[T]],
    policy: RetryConfig,
    label: str,
    retry_on: Tuple[Type[BaseException], ...] = RETRYABLE,
) -> T:
    """Await ``fn()`` under a timeout, retrying retryable failures with backoff.

    A call exceeding ``policy.timeout`` becomes ``ModelTimeoutError``. The
    last failure is re-raised once ``policy.max_attempts`` is exhausted.
    """
    attempts = max(1, policy.max_attempts)
    for attempt in range(attempts):
        try:
            return await asyncio.wait_for(fn(), timeout=policy.timeout)
        except asyncio.TimeoutError:
            error: BaseException = ModelTimeoutError(
                f"{label} timed out after {policy.timeout}s"
            )
        except retry_on as e:
            error = e

        if not isinstance(error, retry_on):
            raise error
        logger.warning(f"{label} attempt {attempt + 1}/{attempts} failed: {error}")
        if attempt == attempts - 1:
            raise error
        await asyncio.sleep(backoff_delay(attempt, policy))

    raise AssertionError("unreachable")
