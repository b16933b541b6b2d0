from __future__ import annotations

import asyncio
from dataclasses import dataclass
from typing import Awaitable, Callable, TypeVar

from facility_ingest.core.exceptions import CommitFailedError

T = TypeVar("T")


@dataclass(frozen=True)
class RetryPolicy:
    max_retries: int = 6
    base_delay_seconds: float = 0.1
    max_delay_seconds: float = 10.0

    def __post_init__(self) -> None:
        if self.max_retries < 0:
            raise ValueError("max_retries must be >= 0")
        if self.base_delay_seconds <= 0:
            raise ValueError("base_delay_seconds must be > 0")
        if self.max_delay_seconds < self.base_delay_seconds:
            raise ValueError("max_delay_seconds must be >= base_delay_seconds")

    def delay_for(self, attempt: int) -> float:
        return min(self.base_delay_seconds * (2**attempt), self.max_delay_seconds)


async def with_exponential_backoff(
    operation: Callable[[], Awaitable[T]],
    policy: RetryPolicy,
    should_retry: Callable[[Exception], bool],
    on_retry: Callable[[int, float, Exception], None] | None = None,
    sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
) -> T:
    """Run ``operation``, retrying retryable failures up to ``policy.max_retries`` times.

    Non-retryable exceptions propagate unchanged. When retries are exhausted a
    ``CommitFailedError`` is raised from the last failure.
    """
    attempt = 0
    while True:
        try:
            return await operation()
        except Exception as exc:
            if not should_retry(exc):
                raise
            if attempt >= policy.max_retries:
                raise CommitFailedError(f"retry attempts exhausted after {attempt} retries: {exc}") from exc
            delay = policy.delay_for(attempt)
            attempt += 1
            if on_retry:
                on_retry(attempt, delay, exc)
            await sleep(delay)
