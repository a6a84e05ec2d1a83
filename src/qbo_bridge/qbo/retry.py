"""Bounded exponential-backoff retry for QBO API calls."""

import asyncio
from collections.abc import Awaitable, Callable
from dataclasses import dataclass, field
from typing import TypeVar

import structlog

logger = structlog.get_logger(__name__)

T = TypeVar("T")

DEFAULT_RETRYABLE_STATUSES = frozenset({429, 500, 503})


@dataclass(frozen=True)
class RetryPolicy:
    """Retry rate-limit and server errors with delays of base * 2**attempt.

    With the defaults a call is tried at most four times, waiting 1s, 2s and
    4s between attempts. ``sleep`` is injectable so tests can run on a fake
    clock.
    """

    max_retries: int = 3
    base_delay: float = 1.0
    retryable_statuses: frozenset[int] = DEFAULT_RETRYABLE_STATUSES
    sleep: Callable[[float], Awaitable[None]] = field(default=asyncio.sleep, compare=False)

    def delay_for(self, attempt: int) -> float:
        return self.base_delay * (2**attempt)

    def is_retryable(self, error: Exception) -> bool:
        status = getattr(error, "status_code", None)
        return status in self.retryable_statuses

    async def run(self, call: Callable[[], Awaitable[T]], operation: str = "qbo_call") -> T:
        """Await ``call()``, retrying while it raises a retryable error."""
        attempt = 0
        while True:
            try:
                return await call()
            except Exception as e:
                if not self.is_retryable(e) or attempt >= self.max_retries:
                    raise
                wait = self.delay_for(attempt)
                logger.warning(
                    "qbo_retry",
                    operation=operation,
                    status_code=getattr(e, "status_code", None),
                    attempt=attempt + 1,
                    wait_seconds=wait,
                )
                await self.sleep(wait)
                attempt += 1
