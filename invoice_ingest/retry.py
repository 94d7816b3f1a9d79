"""
Exponential backoff for rate-limited extraction attempts.
"""

import asyncio
from dataclasses import dataclass
from typing import Awaitable, Callable, Optional, TypeVar

from .config import MAX_RETRIES, RETRY_BASE_DELAY_MS, logger
from .errors import BatchCancelled, RateLimited

T = TypeVar("T")

SleepFn = Callable[[float], Awaitable[None]]


@dataclass
class RetryNotice:
    """
    Emitted before each backoff wait.

    Attributes:
        retry: 1-based number of the retry about to happen
        max_retries: Retry ceiling
        delay_ms: How long the scheduler is about to wait
        cause: The rate-limit error that triggered the wait
    """
    retry: int
    max_retries: int
    delay_ms: int
    cause: RateLimited

    @property
    def message(self) -> str:
        seconds = -(-self.delay_ms // 1000)
        return f"API rate limit - waiting {seconds}s (retry {self.retry}/{self.max_retries})"


async def with_retry(
    attempt_fn: Callable[[], Awaitable[T]],
    max_retries: int = MAX_RETRIES,
    base_delay_ms: int = RETRY_BASE_DELAY_MS,
    *,
    sleep: SleepFn = asyncio.sleep,
    on_wait: Optional[Callable[[RetryNotice], None]] = None,
    should_stop: Optional[Callable[[], bool]] = None,
) -> T:
    """
    Run attempt_fn, retrying only on RateLimited.

    Attempt k (0-based) that is rate limited is followed by a wait of
    base_delay_ms * 2**k before the next attempt, up to max_retries retries.
    Any other failure, or a rate limit after the last retry, propagates.

    Raises:
        BatchCancelled: should_stop() returned True before or after a wait
    """
    attempt = 0
    while True:
        try:
            return await attempt_fn()
        except RateLimited as e:
            if attempt >= max_retries:
                logger.error(f"Rate limited after {attempt + 1} attempts, giving up")
                raise

            delay_ms = base_delay_ms * (2 ** attempt)
            notice = RetryNotice(
                retry=attempt + 1,
                max_retries=max_retries,
                delay_ms=delay_ms,
                cause=e,
            )
            logger.warning(notice.message)
            if on_wait is not None:
                on_wait(notice)

            _check_stop(should_stop)
            await sleep(delay_ms / 1000)
            _check_stop(should_stop)
            attempt += 1


def _check_stop(should_stop: Optional[Callable[[], bool]]) -> None:
    if should_stop is not None and should_stop():
        raise BatchCancelled("Batch cancelled during rate-limit backoff")
